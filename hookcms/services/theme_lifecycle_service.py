"""
Theme Lifecycle Service

Only one theme is active at a time; its slug is stored in the ``theme``
option.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from hookcms.exceptions import ExtensionError
from hookcms.extensions.loader import ENTRY_POINT, MANIFESTS, THEMES
from hookcms.services.extension_lifecycle import ExtensionLifecycleService
from hookcms.services.options_service import OptionsService
from hookcms.utils.dates import utcnow

logger = logging.getLogger(__name__)


class ThemeLifecycleService(ExtensionLifecycleService):
    kind = THEMES
    state_prefix = "theme_state_"

    async def get_active_theme(self) -> str | None:
        return await OptionsService.get_active_theme(self.db)

    async def is_active(self, slug: str) -> bool:
        return await self.get_active_theme() == slug

    async def set_active_theme(self, slug: str | None) -> None:
        await OptionsService.set_option(self.db, "theme", slug or "")

    async def on_activate(self, slug: str) -> dict[str, Any]:
        validation = self.validate_theme(slug)
        if not validation["valid"]:
            raise ExtensionError(f"Invalid theme: {', '.join(validation['errors'])}", extension=slug)

        current = await self.get_active_theme()
        if current and current != slug:
            await self.on_deactivate(current)

        await self.run_pip_install(slug, "activate")
        await self.call_lifecycle_hook(slug, "on_activate", previous_theme=current)
        await self.set_active_theme(slug)
        self.loader.mark_started(THEMES, slug)

        logger.info("Theme %s activated", slug, extra={"extension": slug})
        return await self.store_state(slug, {"activated_at": utcnow().isoformat(), "status": "active"})

    async def on_deactivate(self, slug: str) -> dict[str, Any]:
        await self.call_lifecycle_hook(slug, "on_deactivate")
        if await self.get_active_theme() == slug:
            await self.set_active_theme(None)
        await self.context.scheduler.teardown_tasks_by_owner(slug)
        self.loader.forget(THEMES, slug)

        logger.info("Theme %s deactivated", slug, extra={"extension": slug})
        return await self.store_state(slug, {"deactivated_at": utcnow().isoformat(), "status": "inactive"})

    async def on_uninstall(self, slug: str) -> None:
        if await self.get_active_theme() == slug:
            raise ExtensionError(
                "Cannot uninstall the active theme. Please activate a different theme first.", extension=slug
            )

        await self.call_lifecycle_hook(slug, "on_uninstall")
        await self.migrations.reset(slug)
        await self.remove_state(slug)
        self.loader.forget(THEMES, slug)

    def validate_theme(self, slug: str) -> dict[str, Any]:
        errors: list[str] = []
        warnings: list[str] = []
        path = self.extension_path(slug)

        if not path.is_dir():
            return {"valid": False, "errors": ["Theme directory does not exist"], "warnings": warnings}

        if not (path / ENTRY_POINT).exists():
            errors.append(f"Missing {ENTRY_POINT} file")

        manifest_path = path / MANIFESTS[THEMES]
        if not manifest_path.exists():
            warnings.append(f"Missing {manifest_path.name} file")
        else:
            try:
                manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            except ValueError:
                errors.append(f"Invalid {manifest_path.name} format")
            else:
                if not manifest.get("name"):
                    warnings.append(f"{manifest_path.name} missing name field")
                if not manifest.get("version"):
                    warnings.append(f"{manifest_path.name} missing version field")

        return {"valid": not errors, "errors": errors, "warnings": warnings}
