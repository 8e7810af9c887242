from fastapi import APIRouter, Depends

from hookcms.auth import get_hooks
from hookcms.hooks import Hooks

router = APIRouter(tags=["Dashboard"])


@router.get("/menu")
async def get_menu(hooks: Hooks = Depends(get_hooks)):
    """Admin menu tree visible to the current user, children sorted by position."""
    return await hooks.admin_menu.get_menu_tree()


@router.get("/controls")
async def get_controls(hooks: Hooks = Depends(get_hooks)):
    return await hooks.controls.get_controls()
