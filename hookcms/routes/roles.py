import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import select

from hookcms.auth import require_capabilities
from hookcms.exceptions import DuplicateResourceError, InvalidOperationError, ResourceNotFoundError, ValidationError
from hookcms.hooks import Hooks
from hookcms.models.user import Capability, Role
from hookcms.schemas.content import RoleCreate, RoleUpdate
from hookcms.seeds import ROLES

router = APIRouter(tags=["Roles"])
logger = logging.getLogger(__name__)

BUILTIN_ROLES = {slug for slug, _ in ROLES}

can_read_roles = require_capabilities(can_one_of=["manage_roles", "read"])
can_manage_roles = require_capabilities(can_one_of=["manage_roles"])


def _serialize(role: Role) -> dict:
    return {
        "id": role.id,
        "slug": role.slug,
        "name": role.name,
        "description": role.description,
        "capabilities": sorted(cap.slug for cap in role.capabilities),
    }


async def _get_role(db, slug: str) -> Role:
    role = (await db.execute(select(Role).where(Role.slug == slug))).scalar_one_or_none()
    if role is None:
        raise ResourceNotFoundError("Role", slug)
    return role


async def _capabilities(db, slugs: list[str]) -> list[Capability]:
    if not slugs:
        return []
    found = list((await db.execute(select(Capability).where(Capability.slug.in_(slugs)))).scalars().all())
    unknown = set(slugs) - {cap.slug for cap in found}
    if unknown:
        raise ValidationError(f"Unknown capabilities: {', '.join(sorted(unknown))}", field="capabilities")
    return found


@router.get("/")
async def list_roles(hooks: Hooks = Depends(can_read_roles)):
    """Fetch all roles with their direct capabilities."""
    result = await hooks.db.execute(select(Role).order_by(Role.id))
    return [_serialize(role) for role in result.scalars().all()]


@router.get("/{slug}")
async def get_role(slug: str, hooks: Hooks = Depends(can_read_roles)):
    return _serialize(await _get_role(hooks.db, slug))


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_role(body: RoleCreate, hooks: Hooks = Depends(can_manage_roles)):
    db = hooks.db
    if (await db.execute(select(Role.id).where(Role.slug == body.slug))).first() is not None:
        raise DuplicateResourceError("Role", "slug", body.slug)

    role = Role(
        slug=body.slug,
        name=body.name or body.slug,
        description=body.description,
        capabilities=await _capabilities(db, body.capabilities),
    )
    db.add(role)
    await db.commit()
    await db.refresh(role)
    logger.info("Created role %s", role.slug)
    return _serialize(role)


@router.patch("/{slug}")
async def update_role(slug: str, body: RoleUpdate, hooks: Hooks = Depends(can_manage_roles)):
    role = await _get_role(hooks.db, slug)
    if body.name is not None:
        role.name = body.name
    if body.description is not None:
        role.description = body.description
    if body.capabilities is not None:
        role.capabilities = await _capabilities(hooks.db, body.capabilities)
    await hooks.db.commit()
    await hooks.db.refresh(role)
    return _serialize(role)


@router.put("/{slug}/capabilities")
async def set_role_capabilities(slug: str, capabilities: list[str], hooks: Hooks = Depends(can_manage_roles)):
    role = await _get_role(hooks.db, slug)
    role.capabilities = await _capabilities(hooks.db, capabilities)
    await hooks.db.commit()
    await hooks.db.refresh(role)
    return _serialize(role)


@router.delete("/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(slug: str, hooks: Hooks = Depends(can_manage_roles)):
    if slug in BUILTIN_ROLES:
        raise InvalidOperationError(f"The built-in role '{slug}' cannot be deleted")
    role = await _get_role(hooks.db, slug)
    await hooks.db.delete(role)
    await hooks.db.commit()
