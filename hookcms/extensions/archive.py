"""
Extension upload archives.

A plugin or theme zip holds one top-level folder (the slug) with the
package ``__init__.py`` directly inside it.
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path, PurePosixPath

from hookcms.exceptions import ValidationError
from hookcms.extensions.loader import ENTRY_POINT

SLUG_CHARS = set("abcdefghijklmnopqrstuvwxyz0123456789-_")


def find_slug(names: list[str]) -> str:
    for name in names:
        parts = PurePosixPath(name).parts
        if len(parts) == 2 and parts[1] == ENTRY_POINT:
            slug = parts[0]
            if not slug or not set(slug.lower()) <= SLUG_CHARS:
                raise ValidationError(f"Invalid extension folder name: {slug}", field="file")
            return slug
    raise ValidationError(f"Invalid extension structure. Must contain {ENTRY_POINT} in the root folder.", field="file")


def extract_archive(data: bytes, destination: Path) -> tuple[str, Path]:
    """Extract ``data`` under ``destination``; returns the slug and its extracted folder."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ValidationError("Uploaded file is not a valid zip archive", field="file") from e

    with archive:
        names = archive.namelist()
        slug = find_slug(names)
        root = destination.resolve()
        for name in names:
            target = (root / name).resolve()
            if target != root and root not in target.parents:
                raise ValidationError("Invalid zip file: path traversal detected", field="file")
            if not name.startswith(f"{slug}/"):
                raise ValidationError("Archive must contain a single top-level folder", field="file")
        archive.extractall(root)

    return slug, root / slug
