"""
Extension loader

Imports plugin and theme packages from the content directory, caches the
module per extension and re-imports it when any file in the extension's
directory changes. On every request the active theme and each active plugin
get ``setup(hooks)`` + ``init()``; the first time an extension loads in this
process its ``on_activate`` hook also runs with ``is_startup=True``.

A broken extension is logged and skipped; it never takes the request down.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from hookcms.config import settings
from hookcms.extensions.base import ExtensionMeta, PluginBase
from hookcms.hooks.registry import maybe_await
from hookcms.services.options_service import OptionsService

if TYPE_CHECKING:
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

PLUGINS = "plugins"
THEMES = "themes"
MANIFESTS = {PLUGINS: "plugin.json", THEMES: "theme.json"}
ENTRY_POINT = "__init__.py"
IGNORED_DIRS = {"__pycache__", ".backups", ".git"}


def folder_hash(path: Path) -> str:
    """md5 over the mtimes of every file under ``path``."""
    mtimes = []
    for file in sorted(path.rglob("*")):
        if any(part in IGNORED_DIRS for part in file.relative_to(path).parts):
            continue
        if file.is_file():
            mtimes.append(f"{file.relative_to(path)}:{file.stat().st_mtime_ns}")
    return hashlib.md5("|".join(mtimes).encode()).hexdigest()


class ExtensionLoader:
    def __init__(self, content_dir: Path | None = None) -> None:
        self.content_dir = Path(content_dir or settings.content_dir)
        self._modules: dict[tuple[str, str], tuple[ModuleType, str]] = {}
        self._started: set[tuple[str, str]] = set()

    # ── Paths & metadata ──────────────────────────────────────────────────────

    def base_dir(self, kind: str) -> Path:
        return self.content_dir / kind

    def extension_path(self, kind: str, slug: str) -> Path:
        return self.base_dir(kind) / slug

    def exists(self, kind: str, slug: str) -> bool:
        return (self.extension_path(kind, slug) / ENTRY_POINT).exists()

    def get_metadata(self, kind: str, slug: str) -> ExtensionMeta:
        return ExtensionMeta.from_directory(slug, self.extension_path(kind, slug), MANIFESTS[kind])

    def list_slugs(self, kind: str) -> list[str]:
        base = self.base_dir(kind)
        if not base.is_dir():
            return []
        return sorted(
            entry.name
            for entry in base.iterdir()
            if entry.is_dir() and not entry.name.startswith((".", "_"))
        )

    # ── Import ────────────────────────────────────────────────────────────────

    @staticmethod
    def module_name(kind: str, slug: str) -> str:
        return f"hookcms_{kind}_{slug.replace('-', '_')}"

    def invalidate(self, kind: str, slug: str) -> None:
        self._modules.pop((kind, slug), None)
        prefix = self.module_name(kind, slug)
        for name in [name for name in sys.modules if name == prefix or name.startswith(prefix + ".")]:
            del sys.modules[name]

    def import_module(self, kind: str, slug: str) -> ModuleType:
        path = self.extension_path(kind, slug)
        entry = path / ENTRY_POINT
        if not entry.exists():
            raise FileNotFoundError(f"{kind[:-1].capitalize()} '{slug}' has no {ENTRY_POINT}")

        current = folder_hash(path)
        cached = self._modules.get((kind, slug))
        if cached and cached[1] == current:
            return cached[0]

        self.invalidate(kind, slug)
        name = self.module_name(kind, slug)
        spec = importlib.util.spec_from_file_location(name, entry, submodule_search_locations=[str(path)])
        module = importlib.util.module_from_spec(spec)
        sys.modules[name] = module
        try:
            spec.loader.exec_module(module)
        except Exception:
            sys.modules.pop(name, None)
            raise

        self._modules[(kind, slug)] = (module, current)
        logger.info("Loaded %s module %s", kind[:-1], slug, extra={"extension": slug})
        return module

    async def instantiate(self, kind: str, slug: str, hooks: Hooks | None) -> PluginBase:
        module = self.import_module(kind, slug)
        setup = getattr(module, "setup", None)
        if not callable(setup):
            raise AttributeError(f"{kind[:-1].capitalize()} '{slug}' does not define setup(hooks)")
        return await maybe_await(setup(hooks))

    # ── Lifecycle hook dispatch ───────────────────────────────────────────────

    async def call_lifecycle_hook(
        self, kind: str, slug: str, hook_name: str, hooks: Hooks | None = None, **event: Any
    ) -> bool:
        """
        Call ``hook_name`` on a fresh instance of the extension.

        Returns False when the extension or the hook does not exist.
        Exceptions raised by the hook propagate.
        """
        if not self.exists(kind, slug):
            return False
        instance = await self.instantiate(kind, slug, hooks)
        method = getattr(instance, hook_name, None)
        if not callable(method):
            return False
        payload = {"slug": slug, "timestamp": datetime.now(timezone.utc).isoformat(), **event}
        await maybe_await(method(payload))
        return True

    # ── Per-request boot ──────────────────────────────────────────────────────

    async def _boot(self, kind: str, slug: str, hooks: Hooks) -> PluginBase | None:
        if not self.exists(kind, slug):
            logger.warning("Active %s '%s' is missing, skipping", kind[:-1], slug)
            return None
        try:
            instance = await self.instantiate(kind, slug, hooks)
            if instance is not None and callable(getattr(instance, "init", None)):
                await maybe_await(instance.init())
        except Exception:
            logger.exception("Failed to load %s '%s'", kind[:-1], slug, extra={"extension": slug})
            return None

        if (kind, slug) not in self._started:
            self._started.add((kind, slug))
            try:
                await self.call_lifecycle_hook(kind, slug, "on_activate", hooks, is_startup=True)
            except Exception as exc:
                logger.warning("on_activate for %s '%s' failed on startup: %s", kind[:-1], slug, exc)
        return instance

    async def load_active(self, hooks: Hooks) -> dict[str, dict[str, PluginBase]]:
        loaded: dict[str, dict[str, PluginBase]] = {THEMES: {}, PLUGINS: {}}

        theme = await OptionsService.get_active_theme(hooks.db)
        if theme:
            instance = await self._boot(THEMES, theme, hooks)
            if instance is not None:
                loaded[THEMES][theme] = instance

        for slug in await OptionsService.get_active_plugins(hooks.db):
            instance = await self._boot(PLUGINS, slug, hooks)
            if instance is not None:
                loaded[PLUGINS][slug] = instance

        return loaded

    def mark_started(self, kind: str, slug: str) -> None:
        self._started.add((kind, slug))

    def forget(self, kind: str, slug: str) -> None:
        """Drop cached module and startup state, e.g. after deactivation."""
        self.invalidate(kind, slug)
        self._started.discard((kind, slug))
