from fastapi import APIRouter, Depends
from sqlalchemy import select

from hookcms.auth import require_capabilities
from hookcms.exceptions import ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.models.user import Capability
from hookcms.services.guard import expand_capabilities, load_inheritance_map

router = APIRouter(tags=["Capabilities"])

can_read = require_capabilities(can_one_of=["manage_roles", "read"])


@router.get("/")
async def list_capabilities(hooks: Hooks = Depends(can_read)):
    """All capabilities, each with the capabilities it directly implies."""
    inheritance = await load_inheritance_map(hooks.db)
    result = await hooks.db.execute(select(Capability).order_by(Capability.slug))
    return [
        {"id": cap.id, "slug": cap.slug, "name": cap.name, "children": sorted(inheritance.get(cap.slug, []))}
        for cap in result.scalars().all()
    ]


@router.get("/{slug}")
async def get_capability(slug: str, hooks: Hooks = Depends(can_read)):
    cap = (await hooks.db.execute(select(Capability).where(Capability.slug == slug))).scalar_one_or_none()
    if cap is None:
        raise ResourceNotFoundError("Capability", slug)

    inheritance = await load_inheritance_map(hooks.db)
    return {
        "id": cap.id,
        "slug": cap.slug,
        "name": cap.name,
        "description": cap.description,
        "children": sorted(inheritance.get(cap.slug, [])),
        "implies": sorted(expand_capabilities([cap.slug], inheritance) - {cap.slug}),
    }
