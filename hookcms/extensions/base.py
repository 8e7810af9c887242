"""
Extension base classes.

ExtensionMeta: manifest data read from ``plugin.json`` / ``theme.json``.
PluginBase:    base class for the object an extension's ``setup(hooks)`` returns.

An extension lives in its own directory::

    content/plugins/<slug>/
        plugin.json          name, version, description, author, dependencies
        __init__.py          defines setup(hooks) -> PluginBase
        requirements.txt     optional, installed on install/upgrade
        migrations/          optional, YYYYMMDDHHMMSS_name.py with up()/down()

Themes use the same layout under ``content/themes/<slug>`` with ``theme.json``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"


@dataclass
class ExtensionMeta:
    """
    Declarative metadata describing a plugin or theme.

    Attributes:
        slug:         Directory name, used as the extension's id.
        name:         Display name (defaults to the slug).
        version:      Semver string (defaults to "1.0.0").
        description:  Human-readable description shown in the admin app.
        author:       Extension author.
        dependencies: Slugs of plugins that must be active first.
        manifest:     The raw manifest dict.
    """

    slug: str
    name: str
    version: str = DEFAULT_VERSION
    description: str = ""
    author: str = ""
    dependencies: list[str] = field(default_factory=list)
    manifest: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_directory(cls, slug: str, path: Path, manifest_name: str) -> ExtensionMeta:
        manifest_path = path / manifest_name
        manifest: dict[str, Any] = {}
        if manifest_path.exists():
            try:
                manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                logger.error("Failed to read manifest for %s: %s", slug, exc)

        dependencies = manifest.get("dependencies") or []
        if isinstance(dependencies, dict):
            dependencies = list(dependencies)

        return cls(
            slug=slug,
            name=manifest.get("name") or slug,
            version=manifest.get("version") or DEFAULT_VERSION,
            description=manifest.get("description") or "",
            author=manifest.get("author") or "",
            dependencies=[str(dep) for dep in dependencies],
            manifest=manifest,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "dependencies": list(self.dependencies),
        }


class PluginBase:
    """
    Base class for plugins and themes.

    ``init`` runs on every request the extension is loaded for and is where
    actions, filters, post types and menu pages get registered. The
    lifecycle methods receive an event dict (``slug``, ``timestamp`` and
    transition-specific keys) and default to no-ops, so subclasses only
    override what they need. Any of them may be sync or async.
    """

    def __init__(self, hooks: Hooks | None = None) -> None:
        self.hooks = hooks

    async def init(self) -> None:  # noqa: B027
        """Register hooks for the current request."""

    async def on_install(self, event: dict[str, Any]) -> None:  # noqa: B027
        """Called once after dependencies and migrations are in place."""

    async def on_activate(self, event: dict[str, Any]) -> None:  # noqa: B027
        """Called on activation, and on first load after a restart with ``is_startup``."""

    async def on_deactivate(self, event: dict[str, Any]) -> None:  # noqa: B027
        pass

    async def on_uninstall(self, event: dict[str, Any]) -> None:  # noqa: B027
        pass

    async def on_upgrade(self, event: dict[str, Any]) -> None:  # noqa: B027
        """``event`` carries ``old_version`` and ``new_version``."""

    async def on_downgrade(self, event: dict[str, Any]) -> None:  # noqa: B027
        pass


ThemeBase = PluginBase
