"""
Plugin Routes

    GET    /api/v1/plugins                    installed plugins with their state
    GET    /api/v1/plugins/{slug}             one plugin
    GET    /api/v1/plugins/{slug}/migrations  migration status
    GET    /api/v1/plugins/{slug}/versions    installed version and versions kept in backups
    POST   /api/v1/plugins/upload             install, upgrade or downgrade from a zip
    POST   /api/v1/plugins/{slug}/change-version  switch to a backed-up version
    POST   /api/v1/plugins/{slug}/activate
    POST   /api/v1/plugins/{slug}/deactivate
    DELETE /api/v1/plugins/{slug}             uninstall and remove the files
"""

import logging
import shutil
import tempfile
from pathlib import Path

from fastapi import APIRouter, Depends, File, UploadFile

from hookcms.auth import get_hooks, require_capabilities
from hookcms.exceptions import ResourceNotFoundError
from hookcms.extensions.archive import extract_archive
from hookcms.extensions.loader import PLUGINS
from hookcms.hooks import Hooks
from hookcms.schemas.content import VersionChange
from hookcms.services.options_service import OptionsService
from hookcms.services.plugin_lifecycle_service import PluginLifecycleService

router = APIRouter(tags=["Plugins"])
logger = logging.getLogger(__name__)

can_read = require_capabilities(can_one_of=["read", "read_plugin"])


def _lifecycle(hooks: Hooks) -> PluginLifecycleService:
    return PluginLifecycleService(hooks.db, hooks.context, hooks)


def _require_plugin(hooks: Hooks, slug: str) -> None:
    if not hooks.context.extensions.exists(PLUGINS, slug):
        raise ResourceNotFoundError("Plugin", slug)


async def _describe(service: PluginLifecycleService, slug: str, active: list[str]) -> dict:
    return {
        **service.get_metadata(slug).to_dict(),
        "active": slug in active,
        "state": await service.get_state(slug),
    }


@router.get("/")
async def list_plugins(hooks: Hooks = Depends(get_hooks)):
    """Installed plugins; users without ``read_plugin`` get an empty list."""
    if not await hooks.guard.user(can_one_of=["read", "read_plugin"]):
        return []
    service = _lifecycle(hooks)
    active = await OptionsService.get_active_plugins(hooks.db)
    return [
        await _describe(service, slug, active)
        for slug in hooks.context.extensions.list_slugs(PLUGINS)
        if hooks.context.extensions.exists(PLUGINS, slug)
    ]


@router.post("/upload")
async def upload_plugin(
    file: UploadFile = File(...),
    hooks: Hooks = Depends(require_capabilities(can_one_of=["create", "upload_plugins"])),
):
    service = _lifecycle(hooks)
    with tempfile.TemporaryDirectory() as tmp:
        slug, source = extract_archive(await file.read(), Path(tmp))
        existed = hooks.context.extensions.exists(PLUGINS, slug)
        service.base_dir.mkdir(parents=True, exist_ok=True)
        state = await service.install_from(slug, source)

    logger.info("Plugin %s uploaded (%s)", slug, "replaced" if existed else "new")
    return {
        "success": True,
        "message": "Plugin updated successfully" if existed else "Plugin uploaded successfully",
        "plugin": service.get_metadata(slug).to_dict(),
        "state": state,
    }


@router.get("/{slug}")
async def get_plugin(slug: str, hooks: Hooks = Depends(can_read)):
    _require_plugin(hooks, slug)
    active = await OptionsService.get_active_plugins(hooks.db)
    return await _describe(_lifecycle(hooks), slug, active)


@router.get("/{slug}/migrations")
async def get_plugin_migrations(slug: str, hooks: Hooks = Depends(can_read)):
    _require_plugin(hooks, slug)
    return await _lifecycle(hooks).migrations.get_status(slug)


@router.get("/{slug}/versions")
async def get_plugin_versions(slug: str, hooks: Hooks = Depends(can_read)):
    _require_plugin(hooks, slug)
    return _lifecycle(hooks).list_versions(slug)


@router.post("/{slug}/change-version")
async def change_plugin_version(
    slug: str,
    body: VersionChange,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "upload_plugins"])),
):
    _require_plugin(hooks, slug)
    service = _lifecycle(hooks)
    state = await service.change_version(slug, body.version)
    return {
        "success": True,
        "message": f"Plugin changed to version {body.version}",
        "plugin": service.get_metadata(slug).to_dict(),
        "state": state,
    }


@router.post("/{slug}/activate")
async def activate_plugin(
    slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "activate_plugins"]))
):
    _require_plugin(hooks, slug)
    if slug not in await OptionsService.get_active_plugins(hooks.db):
        await _lifecycle(hooks).on_activate(slug)
    return {"success": True, "message": "Plugin activated"}


@router.post("/{slug}/deactivate")
async def deactivate_plugin(
    slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "deactivate_plugins"]))
):
    _require_plugin(hooks, slug)
    if slug in await OptionsService.get_active_plugins(hooks.db):
        await _lifecycle(hooks).on_deactivate(slug)
    return {"success": True, "message": "Plugin deactivated"}


@router.delete("/{slug}")
async def delete_plugin(slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["delete", "delete_plugins"]))):
    _require_plugin(hooks, slug)
    service = _lifecycle(hooks)
    await service.on_uninstall(slug)
    shutil.rmtree(service.extension_path(slug))
    return {"success": True, "message": "Plugin deleted"}
