import json
from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status

from hookcms.auth import authorize_post_type, get_hooks
from hookcms.exceptions import AuthorizationError, ResourceNotFoundError, ValidationError
from hookcms.hooks import Hooks
from hookcms.services.term_service import TermService

router = APIRouter(tags=["Terms"])

TERM_CAPABILITIES = {
    "read": ["read", "read_term"],
    "create": ["create", "create_terms"],
    "update": ["update", "edit_terms"],
    "delete": ["delete", "delete_terms"],
}


def parse_meta_query(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"meta_query is not valid JSON: {e.msg}", field="meta_query") from e
    if not isinstance(value, dict):
        raise ValidationError("meta_query must be a JSON object", field="meta_query")
    return value


async def _authorize(hooks: Hooks, post_type: str, taxonomy: str, action: str) -> None:
    await authorize_post_type(hooks, post_type, "read")
    entry = await hooks.taxonomies.get_taxonomy(post_type, taxonomy)
    if entry is None:
        raise ResourceNotFoundError("Taxonomy", taxonomy)
    if entry.get("capabilities"):
        allowed = action in (entry.get("resolved_capabilities") or [])
    else:
        allowed = bool(await hooks.guard.user(can_one_of=TERM_CAPABILITIES[action]))
    if not allowed:
        raise AuthorizationError(required_capabilities=TERM_CAPABILITIES[action])


@router.get("/{post_type}/terms/{taxonomy}")
async def list_terms(
    post_type: str,
    taxonomy: str,
    search: str | None = None,
    meta_query: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    hooks: Hooks = Depends(get_hooks),
):
    await _authorize(hooks, post_type, taxonomy, "read")
    items, total = await TermService(hooks.db).list_terms(
        post_type, taxonomy, search=search, meta_query=parse_meta_query(meta_query), limit=limit, offset=offset
    )
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.get("/{post_type}/terms/{taxonomy}/{id_or_slug}")
async def get_term(post_type: str, taxonomy: str, id_or_slug: str, hooks: Hooks = Depends(get_hooks)):
    await _authorize(hooks, post_type, taxonomy, "read")
    return await TermService(hooks.db).get_term(post_type, taxonomy, id_or_slug)


@router.post("/{post_type}/terms/{taxonomy}", status_code=status.HTTP_201_CREATED)
async def create_term(
    post_type: str, taxonomy: str, data: dict[str, Any] = Body(...), hooks: Hooks = Depends(get_hooks)
):
    await _authorize(hooks, post_type, taxonomy, "create")
    if not (data.get("slug") or data.get("name")):
        raise ValidationError("A term needs a name or slug", field="name")
    return await TermService(hooks.db).create_term(post_type, taxonomy, data)


@router.patch("/{post_type}/terms/{taxonomy}/{id_or_slug}")
async def update_term(
    post_type: str,
    taxonomy: str,
    id_or_slug: str,
    data: dict[str, Any] = Body(...),
    hooks: Hooks = Depends(get_hooks),
):
    await _authorize(hooks, post_type, taxonomy, "update")
    return await TermService(hooks.db).update_term(post_type, taxonomy, id_or_slug, data)


@router.delete("/{post_type}/terms/{taxonomy}/{id_or_slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_term(
    post_type: str, taxonomy: str, id_or_slug: str, force: bool = False, hooks: Hooks = Depends(get_hooks)
):
    await _authorize(hooks, post_type, taxonomy, "delete")
    await TermService(hooks.db).delete_term(post_type, taxonomy, id_or_slug, force=force)
