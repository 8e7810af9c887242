from fastapi import APIRouter, Depends, Query, status

from hookcms.auth import get_hooks, require_capabilities
from hookcms.exceptions import AuthorizationError
from hookcms.hooks import Hooks
from hookcms.schemas.content import UserCreate, UserRolesUpdate, UserUpdate
from hookcms.services.user_service import UserService, serialize_user

router = APIRouter(tags=["Users"])


@router.get("/")
async def list_users(
    search: str | None = None,
    user_status: str | None = Query(None, alias="status"),
    trashed: bool = False,
    limit: int = Query(10, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    order_by: str = Query("id", alias="orderBy"),
    order: str = "desc",
    hooks: Hooks = Depends(get_hooks),
):
    """
    List users.

    Callers without ``read_user`` only see their own account.
    """
    can_read = await hooks.guard.user(can_one_of=["read", "read_user"])
    return await UserService(hooks.db).list_users(
        search=search,
        status=user_status,
        only_user_id=None if can_read else hooks.user.id,
        trashed=trashed,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order=order,
    )


@router.get("/me")
async def get_me(hooks: Hooks = Depends(get_hooks)):
    data = serialize_user(hooks.user)
    data["capabilities"] = sorted(await hooks.guard.get_capabilities())
    return data


@router.get("/{id_or_username}")
async def get_user(id_or_username: str, hooks: Hooks = Depends(require_capabilities(can_one_of=["read", "read_user"]))):
    return serialize_user(await UserService(hooks.db).get_user(id_or_username))


@router.get("/{id_or_username}/roles")
async def get_user_roles(id_or_username: str, hooks: Hooks = Depends(get_hooks)):
    """Roles of a user. Anyone may read their own."""
    user = await UserService(hooks.db).get_user(id_or_username)
    if user.id != hooks.user.id and not await hooks.guard.user(can_one_of=["manage_roles", "read_user"]):
        raise AuthorizationError(required_capabilities=["read_user"])
    return UserService.get_roles(user)


@router.put("/{id_or_username}/roles")
async def set_user_roles(
    id_or_username: str,
    body: UserRolesUpdate,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["manage_roles"])),
):
    roles = await UserService(hooks.db).set_roles(id_or_username, body.roles)
    return {"success": True, "roles": roles}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_user(
    body: UserCreate, hooks: Hooks = Depends(require_capabilities(can_one_of=["create", "create_users"]))
):
    user = await UserService(hooks.db).create_user(body.model_dump())
    return serialize_user(user)


@router.patch("/{id_or_username}")
async def update_user(
    id_or_username: str,
    body: UserUpdate,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["update", "edit_users"])),
):
    user = await UserService(hooks.db).update_user(id_or_username, body.model_dump(exclude_unset=True))
    return serialize_user(user)


@router.delete("/{id_or_username}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    id_or_username: str,
    force: bool = False,
    hooks: Hooks = Depends(require_capabilities(can_one_of=["delete", "delete_users"])),
):
    await UserService(hooks.db).delete_user(id_or_username, force=force)
