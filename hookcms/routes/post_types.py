"""
Post Type Routes

Database-backed post types and their custom fields. Listing goes through the
post type registry, so runtime registrations from plugins and themes are
included alongside the stored rows.
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy import delete, select

from hookcms.auth import require_capabilities
from hookcms.exceptions import DuplicateResourceError, InvalidOperationError, ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.hooks.base import row_to_dict
from hookcms.hooks.jobs import JOBS_POST_TYPE
from hookcms.models.post import Post, PostType, PostTypeField
from hookcms.schemas.content import FieldCreate, PostTypeCreate, PostTypeUpdate
from hookcms.utils.slugify import slugify

router = APIRouter(tags=["Post Types"])
logger = logging.getLogger(__name__)

can_read = require_capabilities(can_one_of=["read", "read_post_type"])
can_create = require_capabilities(can_one_of=["create", "create_post_types"])
can_update = require_capabilities(can_one_of=["update", "edit_post_types"])
can_delete = require_capabilities(can_one_of=["delete", "delete_post_types"])


async def _get_row(db, slug: str) -> PostType:
    row = (await db.execute(select(PostType).where(PostType.slug == slug))).scalar_one_or_none()
    if row is None:
        raise ResourceNotFoundError("Post type", slug)
    return row


def _field_out(entry: dict) -> dict:
    return {**entry["field"], "priority": entry["priority"], "source": entry["source"]}


@router.get("/")
async def list_post_types(hooks: Hooks = Depends(can_read)):
    return await hooks.post_types.get_all_post_types()


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_post_type(body: PostTypeCreate, hooks: Hooks = Depends(can_create)):
    slug = slugify(body.slug, "_")
    if (await hooks.db.execute(select(PostType.id).where(PostType.slug == slug))).first() is not None:
        raise DuplicateResourceError("Post type", "slug", slug)

    row = PostType(**{**body.model_dump(), "slug": slug})
    hooks.db.add(row)
    await hooks.db.commit()
    logger.info("Created post type %s", slug)
    return row_to_dict(row)


@router.get("/{slug}")
async def get_post_type(slug: str, hooks: Hooks = Depends(can_read)):
    post_type = await hooks.post_types.get_post_type(slug)
    if post_type is None:
        raise ResourceNotFoundError("Post type", slug)
    return post_type


@router.patch("/{slug}")
async def update_post_type(slug: str, body: PostTypeUpdate, hooks: Hooks = Depends(can_update)):
    row = await _get_row(hooks.db, slug)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(row, key, value)
    await hooks.db.commit()
    return row_to_dict(row)


@router.delete("/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_post_type(slug: str, hooks: Hooks = Depends(can_delete)):
    if slug == JOBS_POST_TYPE:
        raise InvalidOperationError("The jobs post type cannot be deleted")
    row = await _get_row(hooks.db, slug)
    if (await hooks.db.execute(select(Post.id).where(Post.post_type_slug == slug).limit(1))).first() is not None:
        raise InvalidOperationError(f"Post type '{slug}' still has posts")

    await hooks.db.execute(delete(PostTypeField).where(PostTypeField.post_type_slug == slug))
    await hooks.db.delete(row)
    await hooks.db.commit()


# ── Fields ────────────────────────────────────────────────────────────────────


@router.get("/{slug}/fields")
async def list_fields(slug: str, hooks: Hooks = Depends(can_read)):
    if await hooks.post_types.get_post_type(slug) is None:
        raise ResourceNotFoundError("Post type", slug)
    return [_field_out(entry) for entry in await hooks.post_types.get_fields(slug)]


@router.post("/{slug}/fields", status_code=status.HTTP_201_CREATED)
async def create_field(slug: str, body: FieldCreate, hooks: Hooks = Depends(can_update)):
    await _get_row(hooks.db, slug)
    field_slug = slugify(body.slug, "_")
    existing = await hooks.db.execute(
        select(PostTypeField.id).where(PostTypeField.post_type_slug == slug, PostTypeField.slug == field_slug)
    )
    if existing.first() is not None:
        raise DuplicateResourceError("Field", "slug", field_slug)

    row = PostTypeField(**{**body.model_dump(), "slug": field_slug, "post_type_slug": slug})
    hooks.db.add(row)
    await hooks.db.commit()
    return row_to_dict(row)


@router.delete("/{slug}/fields/{field_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_field(slug: str, field_id: int, hooks: Hooks = Depends(can_update)):
    row = await hooks.db.get(PostTypeField, field_id)
    if row is None or row.post_type_slug != slug:
        raise ResourceNotFoundError("Field", field_id)
    await hooks.db.delete(row)
    await hooks.db.commit()
