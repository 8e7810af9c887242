"""
Upload Service

Stores uploaded files under ``<content>/uploads/YYYY/MM/`` and records each
one as a post of the ``attachments`` type with status ``inherit``. The
attachment's ``file`` meta holds the filename, original name, mime type,
size and the path relative to the uploads folder.

Hook points: the ``pre_upload`` filter can abort by returning False,
``sanitize_file_name`` and ``attachment_metadata`` shape each file, and
``after_upload`` fires once with every attachment.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import UploadFile

from hookcms.config import settings
from hookcms.exceptions import InvalidOperationError, ValidationError
from hookcms.services.post_service import PostService
from hookcms.utils.dates import utcnow
from hookcms.utils.slugify import slugify

if TYPE_CHECKING:
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

ATTACHMENTS = "attachments"
ATTACHMENT_STATUS = "inherit"


def safe_file_name(name: str) -> str:
    """Basename of ``name`` with runs of whitespace turned into underscores."""
    return re.sub(r"\s+", "_", Path(name or "file").name) or "file"


class UploadService:
    def __init__(self, hooks: Hooks):
        self.hooks = hooks
        self.posts = PostService(hooks.db, hooks)

    @property
    def uploads_dir(self) -> Path:
        return self.hooks.context.uploads_dir

    @staticmethod
    def check_file(name: str, size: int) -> None:
        allowed = settings.get_allowed_file_extensions()
        extension = Path(name).suffix.lower().lstrip(".")
        if allowed is not None and extension not in allowed:
            raise ValidationError(
                f"File type .{extension} is not allowed. Allowed types: {', '.join(allowed)}", field="files"
            )
        if size > settings.max_file_size:
            raise ValidationError(f"{name} exceeds the {settings.max_file_size} byte limit", field="files")

    def _destination(self, name: str) -> Path:
        now = utcnow()
        folder = self.uploads_dir / f"{now.year}" / f"{now.month:02d}"
        folder.mkdir(parents=True, exist_ok=True)
        stamp = int(time.time() * 1000)
        path = folder / f"{stamp}-{name}"
        while path.exists():
            stamp += 1
            path = folder / f"{stamp}-{name}"
        return path

    async def store(
        self,
        files: list[UploadFile],
        post_type: str | None = None,
        id_or_slug: str | None = None,
        field_slug: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Save ``files`` as attachments and return their metadata.

        With ``post_type``, ``id_or_slug`` and ``field_slug`` the list of
        attachments also replaces that field on the target post.
        """
        if not files:
            raise ValidationError("No files provided", field="files")

        target = None
        if post_type and id_or_slug and field_slug:
            target = await self.posts.get_post(post_type, id_or_slug)

        if await self.hooks.apply_filters("pre_upload", files) is False:
            raise InvalidOperationError("Upload aborted by filter")

        user_id = self.hooks.user.id if self.hooks.user else None
        attachments = []
        for upload in files:
            content = await upload.read()
            original_name = upload.filename or "file"
            self.check_file(original_name, len(content))

            path = self._destination(safe_file_name(original_name))
            await asyncio.to_thread(path.write_bytes, content)

            file_meta = {
                "filename": path.name,
                "original_name": await self.hooks.apply_filters("sanitize_file_name", original_name),
                "mime_type": upload.content_type,
                "size": len(content),
                "path": path.relative_to(self.uploads_dir).as_posix(),
            }
            file_meta = await self.hooks.apply_filters("attachment_metadata", file_meta)

            attachment = await self.posts.create_post(
                ATTACHMENTS,
                {
                    "slug": slugify(f"{Path(original_name).stem}-{int(time.time() * 1000)}"),
                    "status": ATTACHMENT_STATUS,
                    "title": original_name,
                    "file": file_meta,
                },
                author_id=user_id,
            )
            attachments.append({"attachment_id": attachment["id"], **file_meta})
            logger.info("Stored upload %s as attachment %s", file_meta["path"], attachment["id"])

        post = None
        if target is not None:
            post = await self.posts.update_post(post_type, target["id"], {field_slug: attachments})

        await self.hooks.do_action("after_upload", attachments, post)
        return attachments

    async def get_attachment_url(self, id_or_slug: int | str) -> str | None:
        """Public URL of an attachment's file, or None when there is none."""
        post = await self.posts.find_post(ATTACHMENTS, id_or_slug)
        if post is None:
            return None
        file_meta = (await self.posts.load_meta([post.id])).get(post.id, {}).get("file")
        if not isinstance(file_meta, dict) or not file_meta.get("path"):
            return None
        path = str(file_meta["path"]).replace("\\", "/")
        return f"{settings.app_url.rstrip('/')}/uploads/{path}"
