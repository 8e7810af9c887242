from fastapi import APIRouter, Depends, status
from sqlalchemy import delete, select

from hookcms.auth import authorize_post_type, require_capabilities
from hookcms.exceptions import DuplicateResourceError, ResourceNotFoundError
from hookcms.hooks import Hooks
from hookcms.hooks.base import row_to_dict
from hookcms.models.taxonomy import Taxonomy, TaxonomyField, Term, TermMeta, TermRelationship
from hookcms.schemas.content import FieldCreate, TaxonomyCreate, TaxonomyUpdate
from hookcms.utils.slugify import slugify

router = APIRouter(tags=["Taxonomies"])

can_read = require_capabilities(can_one_of=["read", "read_taxonomy"])
can_create = require_capabilities(can_one_of=["create", "create_taxonomies"])
can_update = require_capabilities(can_one_of=["update", "edit_taxonomies"])
can_delete = require_capabilities(can_one_of=["delete", "delete_taxonomies"])


async def _get_row(db, post_type: str, slug: str) -> Taxonomy:
    row = (
        await db.execute(select(Taxonomy).where(Taxonomy.post_type_slug == post_type, Taxonomy.slug == slug))
    ).scalar_one_or_none()
    if row is None:
        raise ResourceNotFoundError("Taxonomy", slug)
    return row


@router.get("/{post_type}/taxonomies")
async def list_taxonomies(post_type: str, hooks: Hooks = Depends(can_read)):
    await authorize_post_type(hooks, post_type, "read")
    return await hooks.taxonomies.get_taxonomies(post_type)


@router.post("/{post_type}/taxonomies", status_code=status.HTTP_201_CREATED)
async def create_taxonomy(post_type: str, body: TaxonomyCreate, hooks: Hooks = Depends(can_create)):
    await authorize_post_type(hooks, post_type, "read")
    slug = slugify(body.slug, "_")
    existing = await hooks.db.execute(
        select(Taxonomy.id).where(Taxonomy.post_type_slug == post_type, Taxonomy.slug == slug)
    )
    if existing.first() is not None:
        raise DuplicateResourceError("Taxonomy", "slug", slug)

    row = Taxonomy(**{**body.model_dump(), "slug": slug, "post_type_slug": post_type})
    hooks.db.add(row)
    await hooks.db.commit()
    return row_to_dict(row)


@router.get("/{post_type}/taxonomies/{slug}")
async def get_taxonomy(post_type: str, slug: str, hooks: Hooks = Depends(can_read)):
    taxonomy = await hooks.taxonomies.get_taxonomy(post_type, slug)
    if taxonomy is None:
        raise ResourceNotFoundError("Taxonomy", slug)
    fields = await hooks.taxonomies.get_fields(post_type, slug)
    return {**taxonomy, "fields": [{**entry["field"], "priority": entry["priority"]} for entry in fields]}


@router.patch("/{post_type}/taxonomies/{slug}")
async def update_taxonomy(post_type: str, slug: str, body: TaxonomyUpdate, hooks: Hooks = Depends(can_update)):
    row = await _get_row(hooks.db, post_type, slug)
    for key, value in body.model_dump(exclude_unset=True).items():
        setattr(row, key, value)
    await hooks.db.commit()
    return row_to_dict(row)


@router.post("/{post_type}/taxonomies/{slug}/fields", status_code=status.HTTP_201_CREATED)
async def create_taxonomy_field(post_type: str, slug: str, body: FieldCreate, hooks: Hooks = Depends(can_update)):
    await _get_row(hooks.db, post_type, slug)
    data = body.model_dump(exclude={"conditions", "revisions"})
    row = TaxonomyField(**{**data, "slug": slugify(body.slug, "_"), "taxonomy_slug": slug, "post_type_slug": post_type})
    hooks.db.add(row)
    await hooks.db.commit()
    return row_to_dict(row)


@router.delete("/{post_type}/taxonomies/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_taxonomy(post_type: str, slug: str, hooks: Hooks = Depends(can_delete)):
    row = await _get_row(hooks.db, post_type, slug)
    await hooks.db.execute(
        delete(TaxonomyField).where(TaxonomyField.post_type_slug == post_type, TaxonomyField.taxonomy_slug == slug)
    )
    term_ids = select(Term.id).where(Term.post_type_slug == post_type, Term.taxonomy_slug == slug)
    await hooks.db.execute(delete(TermMeta).where(TermMeta.term_id.in_(term_ids)))
    await hooks.db.execute(delete(TermRelationship).where(TermRelationship.term_id.in_(term_ids)))
    await hooks.db.execute(delete(Term).where(Term.post_type_slug == post_type, Term.taxonomy_slug == slug))
    await hooks.db.delete(row)
    await hooks.db.commit()
