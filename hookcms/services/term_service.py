"""
Term Service

CRUD for the terms of one taxonomy. Like posts, a term's name, description
and custom fields live in term_meta.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import DuplicateResourceError, ResourceNotFoundError
from hookcms.models.taxonomy import Term, TermMeta, TermRelationship
from hookcms.services.meta_query import build_meta_condition
from hookcms.utils.dates import utcnow
from hookcms.utils.json_utils import normalize_value, parse_value
from hookcms.utils.slugify import slugify

logger = logging.getLogger(__name__)

TERM_KEYS = {"id", "slug", "status", "taxonomy", "post_type", "meta", "created_at", "updated_at", "deleted_at"}


class TermService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_meta(self, term_ids: list[int]) -> dict[int, dict[str, Any]]:
        if not term_ids:
            return {}
        result = await self.db.execute(select(TermMeta).where(TermMeta.term_id.in_(term_ids)))
        meta: dict[int, dict[str, Any]] = {}
        for row in result.scalars().all():
            meta.setdefault(row.term_id, {})[row.field_slug] = parse_value(row.value)
        return meta

    @staticmethod
    def serialize(term: Term, meta: dict[str, Any]) -> dict[str, Any]:
        data = {
            "id": term.id,
            "slug": term.slug,
            "status": term.status,
            "taxonomy": term.taxonomy_slug,
            "post_type": term.post_type_slug,
            "created_at": term.created_at.isoformat() if term.created_at else None,
            "updated_at": term.updated_at.isoformat() if term.updated_at else None,
        }
        for key, value in meta.items():
            data.setdefault(key, value)
        return data

    async def load_terms(self, term_ids: list[int]) -> dict[int, dict[str, Any]]:
        """Batch-load live terms by id."""
        ids = list(dict.fromkeys(term_ids))
        if not ids:
            return {}
        terms = (
            await self.db.execute(select(Term).where(Term.id.in_(ids), Term.deleted_at.is_(None)))
        ).scalars().all()
        meta = await self.load_meta([term.id for term in terms])
        return {term.id: self.serialize(term, meta.get(term.id, {})) for term in terms}

    def _query(self, post_type: str, taxonomy: str):
        return select(Term).where(
            Term.post_type_slug == post_type, Term.taxonomy_slug == taxonomy, Term.deleted_at.is_(None)
        )

    async def list_terms(
        self,
        post_type: str,
        taxonomy: str,
        search: str | None = None,
        meta_query: dict[str, Any] | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        query = self._query(post_type, taxonomy)
        if search:
            named = select(TermMeta.term_id).where(TermMeta.field_slug == "name", TermMeta.value.like(f"%{search}%"))
            query = query.where(or_(Term.slug.like(f"%{search}%"), Term.id.in_(named)))
        condition = build_meta_condition(Term.id, TermMeta, "term_id", meta_query)
        if condition is not None:
            query = query.where(condition)

        total = (await self.db.execute(select(func.count()).select_from(query.subquery()))).scalar() or 0
        terms = (await self.db.execute(query.order_by(Term.id).limit(limit).offset(offset))).scalars().all()
        meta = await self.load_meta([term.id for term in terms])
        return [self.serialize(term, meta.get(term.id, {})) for term in terms], total

    async def find_term(self, post_type: str, taxonomy: str, id_or_slug: int | str) -> Term | None:
        query = self._query(post_type, taxonomy)
        if isinstance(id_or_slug, int) or str(id_or_slug).isdigit():
            query = query.where(or_(Term.id == int(id_or_slug), Term.slug == str(id_or_slug)))
        else:
            query = query.where(Term.slug == str(id_or_slug))
        return (await self.db.execute(query.order_by(Term.id))).scalars().first()

    async def get_term(self, post_type: str, taxonomy: str, id_or_slug: int | str) -> dict[str, Any]:
        term = await self.find_term(post_type, taxonomy, id_or_slug)
        if term is None:
            raise ResourceNotFoundError("Term", id_or_slug)
        meta = await self.load_meta([term.id])
        return self.serialize(term, meta.get(term.id, {}))

    async def _save_meta(self, term_id: int, data: dict[str, Any]) -> None:
        meta = dict(data.get("meta") or {})
        meta.update({key: value for key, value in data.items() if key not in TERM_KEYS})
        if not meta:
            return
        existing = {
            row.field_slug: row
            for row in (
                await self.db.execute(
                    select(TermMeta).where(TermMeta.term_id == term_id, TermMeta.field_slug.in_(list(meta)))
                )
            ).scalars()
        }
        for key, value in meta.items():
            if key in existing:
                existing[key].value = normalize_value(value)
            else:
                self.db.add(TermMeta(term_id=term_id, field_slug=key, value=normalize_value(value)))

    async def _ensure_slug_free(self, post_type: str, taxonomy: str, slug: str, exclude_id: int | None = None) -> None:
        query = select(Term.id).where(
            Term.post_type_slug == post_type, Term.taxonomy_slug == taxonomy, Term.slug == slug
        )
        if exclude_id is not None:
            query = query.where(Term.id != exclude_id)
        if (await self.db.execute(query)).first() is not None:
            raise DuplicateResourceError("Term", "slug", slug)

    async def create_term(self, post_type: str, taxonomy: str, data: dict[str, Any]) -> dict[str, Any]:
        slug = slugify(str(data.get("slug") or data.get("name") or ""))
        await self._ensure_slug_free(post_type, taxonomy, slug)

        term = Term(post_type_slug=post_type, taxonomy_slug=taxonomy, slug=slug, status=data.get("status") or "published")
        self.db.add(term)
        await self.db.flush()
        await self._save_meta(term.id, data)
        await self.db.commit()

        logger.info("Created term %s in %s/%s", term.id, post_type, taxonomy)
        return await self.get_term(post_type, taxonomy, term.id)

    async def update_term(self, post_type: str, taxonomy: str, id_or_slug: int | str, data: dict[str, Any]) -> dict[str, Any]:
        term = await self.find_term(post_type, taxonomy, id_or_slug)
        if term is None:
            raise ResourceNotFoundError("Term", id_or_slug)

        if data.get("slug") and slugify(str(data["slug"])) != term.slug:
            slug = slugify(str(data["slug"]))
            await self._ensure_slug_free(post_type, taxonomy, slug, exclude_id=term.id)
            term.slug = slug
        if data.get("status"):
            term.status = data["status"]
        term.updated_at = utcnow()
        await self._save_meta(term.id, data)
        await self.db.commit()
        return await self.get_term(post_type, taxonomy, term.id)

    async def delete_term(self, post_type: str, taxonomy: str, id_or_slug: int | str, force: bool = False) -> None:
        term = await self.find_term(post_type, taxonomy, id_or_slug)
        if term is None:
            raise ResourceNotFoundError("Term", id_or_slug)

        await self.db.execute(delete(TermRelationship).where(TermRelationship.term_id == term.id))
        if force:
            await self.db.execute(delete(TermMeta).where(TermMeta.term_id == term.id))
            await self.db.delete(term)
        else:
            term.deleted_at = utcnow()
        await self.db.commit()
