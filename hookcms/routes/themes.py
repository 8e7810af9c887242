"""
Theme Routes

Same surface as the plugin routes, but only one theme is active at a time:
activating a theme deactivates the current one first.
"""

import logging
import shutil
import tempfile
from pathlib import Path

from fastapi import APIRouter, Depends, File, UploadFile

from hookcms.auth import get_hooks, require_capabilities
from hookcms.exceptions import ResourceNotFoundError
from hookcms.extensions.archive import extract_archive
from hookcms.extensions.loader import THEMES
from hookcms.hooks import Hooks
from hookcms.schemas.content import VersionChange
from hookcms.services.theme_lifecycle_service import ThemeLifecycleService

router = APIRouter(tags=["Themes"])
logger = logging.getLogger(__name__)

can_read = require_capabilities(can_one_of=["read", "read_theme"])


def _lifecycle(hooks: Hooks) -> ThemeLifecycleService:
    return ThemeLifecycleService(hooks.db, hooks.context, hooks)


def _require_theme(hooks: Hooks, slug: str) -> None:
    if not hooks.context.extensions.extension_path(THEMES, slug).is_dir():
        raise ResourceNotFoundError("Theme", slug)


async def _describe(service: ThemeLifecycleService, slug: str, active: str | None) -> dict:
    return {
        **service.get_metadata(slug).to_dict(),
        "active": slug == active,
        "state": await service.get_state(slug),
        "validation": service.validate_theme(slug),
    }


@router.get("/")
async def list_themes(hooks: Hooks = Depends(get_hooks)):
    if not await hooks.guard.user(can_one_of=["read", "read_theme"]):
        return []
    service = _lifecycle(hooks)
    active = await service.get_active_theme()
    return [await _describe(service, slug, active) for slug in hooks.context.extensions.list_slugs(THEMES)]


@router.post("/upload")
async def upload_theme(
    file: UploadFile = File(...),
    hooks: Hooks = Depends(require_capabilities(can_one_of=["create", "upload_themes"])),
):
    service = _lifecycle(hooks)
    with tempfile.TemporaryDirectory() as tmp:
        slug, source = extract_archive(await file.read(), Path(tmp))
        existed = service.extension_path(slug).is_dir()
        service.base_dir.mkdir(parents=True, exist_ok=True)
        state = await service.install_from(slug, source)

    logger.info("Theme %s uploaded (%s)", slug, "replaced" if existed else "new")
    return {
        "success": True,
        "message": "Theme updated successfully" if existed else "Theme uploaded successfully",
        "theme": service.get_metadata(slug).to_dict(),
        "state": state,
    }


@router.post("/deactivate")
async def deactivate_active_theme(
    hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "deactivate_themes"]))
):
    """Deactivate whichever theme is active. A no-op when none is."""
    service = _lifecycle(hooks)
    active = await service.get_active_theme()
    if active:
        await service.on_deactivate(active)
    return {"success": True, "message": "Theme deactivated", "theme": active}


@router.get("/{slug}")
async def get_theme(slug: str, hooks: Hooks = Depends(can_read)):
    _require_theme(hooks, slug)
    service = _lifecycle(hooks)
    return await _describe(service, slug, await service.get_active_theme())


@router.get("/{slug}/versions")
async def get_theme_versions(slug: str, hooks: Hooks = Depends(can_read)):
    _require_theme(hooks, slug)
    return _lifecycle(hooks).list_versions(slug)


@router.post("/{slug}/change-version")
async def change_theme_version(
    slug: str,
    body: VersionChange,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "upload_themes"])),
):
    _require_theme(hooks, slug)
    service = _lifecycle(hooks)
    state = await service.change_version(slug, body.version)
    return {
        "success": True,
        "message": f"Theme changed to version {body.version}",
        "theme": service.get_metadata(slug).to_dict(),
        "state": state,
    }


@router.post("/{slug}/activate")
async def activate_theme(
    slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "activate_themes"]))
):
    _require_theme(hooks, slug)
    service = _lifecycle(hooks)
    if await service.get_active_theme() != slug:
        await service.on_activate(slug)
    return {"success": True, "message": "Theme activated"}


@router.post("/{slug}/deactivate")
async def deactivate_theme(
    slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "deactivate_themes"]))
):
    _require_theme(hooks, slug)
    service = _lifecycle(hooks)
    if await service.get_active_theme() == slug:
        await service.on_deactivate(slug)
    return {"success": True, "message": "Theme deactivated"}


@router.delete("/{slug}")
async def delete_theme(slug: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["delete", "delete_themes"]))):
    _require_theme(hooks, slug)
    service = _lifecycle(hooks)
    await service.on_uninstall(slug)
    shutil.rmtree(service.extension_path(slug))
    return {"success": True, "message": "Theme deleted"}
