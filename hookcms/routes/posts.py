"""
Post Routes

CRUD for posts of any registered post type:

    GET    /api/v1/{post_type}               list (search, status, meta_query, paging)
    POST   /api/v1/{post_type}               create
    GET    /api/v1/{post_type}/{id_or_slug}  fetch by id or slug
    PATCH  /api/v1/{post_type}/{id_or_slug}  update
    DELETE /api/v1/{post_type}/{id_or_slug}  trash, or remove with ?force=true
    POST   /api/v1/{post_type}/upload        store files as attachments
    POST   /api/v1/{post_type}/upload/{id_or_slug}/{field_slug}
                                             store files and set them on a post field

This router matches any first path segment, so it is included last.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, File, Query, UploadFile, status

from hookcms.auth import authorize_post_type, get_hooks
from hookcms.exceptions import AuthorizationError
from hookcms.hooks import Hooks
from hookcms.routes.terms import parse_meta_query
from hookcms.services.post_service import PostService
from hookcms.services.upload_service import UploadService

router = APIRouter(tags=["Posts"])


@router.get("/{post_type}")
async def list_posts(
    post_type: str,
    post_status: str | None = Query(None, alias="status"),
    search: str | None = None,
    meta_query: str | None = Query(None, description='JSON, e.g. {"relation": "AND", "queries": [...]}'),
    limit: int = Query(10, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    order_by: str = Query("created_at", alias="orderBy"),
    order: str = "desc",
    trashed: bool = False,
    hooks: Hooks = Depends(get_hooks),
):
    await authorize_post_type(hooks, post_type, "read")
    query = parse_meta_query(meta_query)
    service = PostService(hooks.db, hooks)

    items = await service.list_posts(
        post_type,
        status=post_status,
        search=search,
        meta_query=query,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order=order,
        include_deleted=trashed,
    )
    total = await service.get_post_count(post_type, status=post_status, meta_query=query, search=search)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.post("/{post_type}", status_code=status.HTTP_201_CREATED)
async def create_post(post_type: str, data: dict[str, Any] = Body(...), hooks: Hooks = Depends(get_hooks)):
    await authorize_post_type(hooks, post_type, "create")
    return await PostService(hooks.db, hooks).create_post(post_type, data, author_id=hooks.user.id)


async def _authorize_upload(hooks: Hooks) -> None:
    if not await hooks.guard.user(can_one_of=["create", "create_attachments"]):
        raise AuthorizationError(required_capabilities=["create_attachments"])


@router.post("/{post_type}/upload")
async def upload_files(post_type: str, files: list[UploadFile] = File(...), hooks: Hooks = Depends(get_hooks)):
    await _authorize_upload(hooks)
    return {"success": True, "attachments": await UploadService(hooks).store(files)}


@router.post("/{post_type}/upload/{id_or_slug}/{field_slug}")
async def upload_field_files(
    post_type: str,
    id_or_slug: str,
    field_slug: str,
    files: list[UploadFile] = File(...),
    hooks: Hooks = Depends(get_hooks),
):
    await _authorize_upload(hooks)
    await authorize_post_type(hooks, post_type, "update")
    attachments = await UploadService(hooks).store(files, post_type, id_or_slug, field_slug)
    return {"success": True, "attachments": attachments}


@router.get("/{post_type}/{id_or_slug}")
async def get_post(post_type: str, id_or_slug: str, hooks: Hooks = Depends(get_hooks)):
    await authorize_post_type(hooks, post_type, "read")
    return await PostService(hooks.db, hooks).get_post(post_type, id_or_slug)


@router.patch("/{post_type}/{id_or_slug}")
async def update_post(
    post_type: str, id_or_slug: str, data: dict[str, Any] = Body(...), hooks: Hooks = Depends(get_hooks)
):
    await authorize_post_type(hooks, post_type, "update")
    return await PostService(hooks.db, hooks).update_post(post_type, id_or_slug, data)


@router.delete("/{post_type}/{id_or_slug}")
async def delete_post(post_type: str, id_or_slug: str, force: bool = False, hooks: Hooks = Depends(get_hooks)):
    await authorize_post_type(hooks, post_type, "delete")
    return await PostService(hooks.db, hooks).delete_post(post_type, id_or_slug, force=force)
