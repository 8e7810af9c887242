"""
Plugin Lifecycle Service

Install, activate, deactivate, uninstall, upgrade and downgrade plugins
while respecting the dependencies declared in their manifests.
"""

from __future__ import annotations

import logging
from typing import Any

from hookcms.exceptions import ExtensionError
from hookcms.extensions.loader import PLUGINS
from hookcms.services.extension_lifecycle import ExtensionLifecycleService
from hookcms.services.options_service import OptionsService
from hookcms.utils.dates import utcnow

logger = logging.getLogger(__name__)


class PluginLifecycleService(ExtensionLifecycleService):
    kind = PLUGINS
    state_prefix = "plugin_state_"

    async def is_active(self, slug: str) -> bool:
        return slug in await OptionsService.get_active_plugins(self.db)

    async def check_dependencies(self, slug: str) -> dict[str, Any]:
        required = self.get_metadata(slug).dependencies
        active = set(await OptionsService.get_active_plugins(self.db))
        missing = [dep for dep in required if dep not in active]
        return {"satisfied": not missing, "missing": missing}

    def get_dependent_plugins(self, slug: str) -> list[str]:
        """Slugs of installed plugins that declare ``slug`` as a dependency."""
        return [
            other
            for other in self.loader.list_slugs(PLUGINS)
            if other != slug and slug in self.get_metadata(other).dependencies
        ]

    async def on_activate(self, slug: str) -> dict[str, Any]:
        deps = await self.check_dependencies(slug)
        if not deps["satisfied"]:
            raise ExtensionError(f"Missing dependencies: {', '.join(deps['missing'])}", extension=slug)

        await self.run_pip_install(slug, "activate")
        await self.call_lifecycle_hook(slug, "on_activate")

        active = await OptionsService.get_active_plugins(self.db)
        if slug not in active:
            await OptionsService.set_active_plugins(self.db, [*active, slug])
        self.loader.mark_started(PLUGINS, slug)

        logger.info("Plugin %s activated", slug, extra={"extension": slug})
        return await self.store_state(slug, {"activated_at": utcnow().isoformat(), "status": "active"})

    async def on_deactivate(self, slug: str) -> dict[str, Any]:
        active = await OptionsService.get_active_plugins(self.db)
        blocking = [other for other in self.get_dependent_plugins(slug) if other in active]
        if blocking:
            raise ExtensionError(
                f"Cannot deactivate. The following plugins depend on it: {', '.join(blocking)}",
                extension=slug,
            )

        await self.call_lifecycle_hook(slug, "on_deactivate")
        await OptionsService.set_active_plugins(self.db, [other for other in active if other != slug])
        await self.context.scheduler.teardown_tasks_by_owner(slug)
        self.loader.forget(PLUGINS, slug)

        logger.info("Plugin %s deactivated", slug, extra={"extension": slug})
        return await self.store_state(slug, {"deactivated_at": utcnow().isoformat(), "status": "inactive"})

    async def on_uninstall(self, slug: str) -> None:
        if slug in await OptionsService.get_active_plugins(self.db):
            raise ExtensionError("Cannot uninstall an active plugin. Please deactivate it first.", extension=slug)

        await self.call_lifecycle_hook(slug, "on_uninstall")
        result = await self.migrations.reset(slug)
        if not result["success"]:
            logger.warning("Could not roll back migrations for %s: %s", slug, result["errors"])
        await self.remove_state(slug)
        self.loader.forget(PLUGINS, slug)
        logger.info("Plugin %s uninstalled", slug, extra={"extension": slug})
