"""
Post Service

Posts keep only slug, status and timestamps as columns. Title, content,
excerpt and every custom field live in post_meta as normalized text, and
terms are attached through term_relationships. Serialized posts flatten
their meta to top-level keys and carry a ``taxonomies`` map of
taxonomy slug -> terms.

When a Hooks instance is given, ``insertPostData`` and ``post`` filters and
the ``savePost`` / ``deletePost`` actions fire.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import String, cast, delete, func, insert, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import ResourceNotFoundError, ValidationError
from hookcms.models.post import Post, PostMeta, post_authors
from hookcms.models.taxonomy import TermRelationship
from hookcms.models.user import User
from hookcms.services.meta_query import build_meta_condition
from hookcms.services.term_service import TermService
from hookcms.utils.dates import utcnow
from hookcms.utils.json_utils import normalize_value, parse_value
from hookcms.utils.slugify import slugify

if TYPE_CHECKING:
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

DEFAULT_STATUS = "draft"
SEARCH_FIELDS = ("title", "content", "excerpt")
ORDER_COLUMNS = {"id": Post.id, "slug": Post.slug, "status": Post.status, "created_at": Post.created_at, "updated_at": Post.updated_at}
RESERVED_KEYS = {"id", "post_type", "slug", "status", "authors", "taxonomies", "meta", "created_at", "updated_at", "deleted_at"}


def resolve_term_ids(taxonomies: Any) -> list[int]:
    """Collect term ids from ``{taxonomy: [id | {"id": id}, ...]}`` or a flat list."""
    groups = taxonomies.values() if isinstance(taxonomies, dict) else [taxonomies]
    ids: list[int] = []
    for group in groups:
        items = group if isinstance(group, (list, tuple)) else [group]
        for item in items:
            term_id = item.get("id") if isinstance(item, dict) else item
            if term_id is None or term_id == "":
                continue
            term_id = int(term_id)
            if term_id not in ids:
                ids.append(term_id)
    return ids


def _split_payload(data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Separate column values from meta values."""
    columns = {key: data[key] for key in ("slug", "status") if key in data}
    meta = dict(data.get("meta") or {})
    for key, value in data.items():
        if key not in RESERVED_KEYS:
            meta[key] = value
    return columns, meta


class PostService:
    def __init__(self, db: AsyncSession, hooks: Hooks | None = None):
        self.db = db
        self.hooks = hooks

    # ── Loading & serialization ───────────────────────────────────────────────

    async def load_meta(self, post_ids: list[int]) -> dict[int, dict[str, Any]]:
        if not post_ids:
            return {}
        result = await self.db.execute(select(PostMeta).where(PostMeta.post_id.in_(post_ids)))
        meta: dict[int, dict[str, Any]] = {}
        for row in result.scalars().all():
            meta.setdefault(row.post_id, {})[row.field_slug] = parse_value(row.value)
        return meta

    async def with_taxonomies_many(self, posts: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not posts:
            return posts
        result = await self.db.execute(
            select(TermRelationship.post_id, TermRelationship.term_id)
            .where(TermRelationship.post_id.in_([post["id"] for post in posts]))
            .order_by(TermRelationship.id)
        )
        relationships = result.all()
        terms = await TermService(self.db).load_terms([term_id for _, term_id in relationships])

        by_post: dict[int, dict[str, list[dict[str, Any]]]] = {}
        for post_id, term_id in relationships:
            term = terms.get(term_id)
            if term is not None:
                by_post.setdefault(post_id, {}).setdefault(term["taxonomy"], []).append(term)

        for post in posts:
            post["taxonomies"] = by_post.get(post["id"], {})
        return posts

    @staticmethod
    def serialize(post: Post, meta: dict[str, Any]) -> dict[str, Any]:
        data = {
            "id": post.id,
            "post_type": post.post_type_slug,
            "slug": post.slug,
            "status": post.status,
            "authors": [{"id": user.id, "username": user.username, "email": user.email} for user in post.authors],
            "created_at": post.created_at.isoformat() if post.created_at else None,
            "updated_at": post.updated_at.isoformat() if post.updated_at else None,
            "deleted_at": post.deleted_at.isoformat() if post.deleted_at else None,
        }
        for key, value in meta.items():
            data.setdefault(key, value)
        return data

    async def _hydrate(self, posts: list[Post]) -> list[dict[str, Any]]:
        meta = await self.load_meta([post.id for post in posts])
        items = await self.with_taxonomies_many([self.serialize(post, meta.get(post.id, {})) for post in posts])
        if self.hooks is not None:
            items = [await self.hooks.apply_filters("post", item) for item in items]
        return items

    # ── Queries ───────────────────────────────────────────────────────────────

    def _base_query(self, post_type: str, status: str | None, search: str | None, meta_query, include_deleted: bool):
        query = select(Post).where(Post.post_type_slug == post_type)
        if not include_deleted:
            query = query.where(Post.deleted_at.is_(None))
        if status:
            query = query.where(Post.status == status)
        if search:
            matches = select(PostMeta.post_id).where(
                PostMeta.field_slug.in_(SEARCH_FIELDS), PostMeta.value.like(f"%{search}%")
            )
            query = query.where(or_(Post.slug.like(f"%{search}%"), Post.id.in_(matches)))
        condition = build_meta_condition(Post.id, PostMeta, "post_id", meta_query)
        if condition is not None:
            query = query.where(condition)
        return query

    async def list_posts(
        self,
        post_type: str,
        status: str | None = None,
        search: str | None = None,
        meta_query: dict[str, Any] | None = None,
        limit: int = 10,
        offset: int = 0,
        order_by: str = "created_at",
        order: str = "desc",
        include_deleted: bool = False,
    ) -> list[dict[str, Any]]:
        query = self._base_query(post_type, status, search, meta_query, include_deleted)

        if order_by in ORDER_COLUMNS:
            sort = ORDER_COLUMNS[order_by]
        else:
            sort = (
                select(cast(PostMeta.value, String))
                .where(PostMeta.post_id == Post.id, PostMeta.field_slug == order_by)
                .limit(1)
                .scalar_subquery()
            )
        sort = sort.asc() if str(order).lower() == "asc" else sort.desc()
        query = query.order_by(sort, Post.id.desc()).limit(limit).offset(offset)

        posts = (await self.db.execute(query)).scalars().all()
        return await self._hydrate(list(posts))

    async def get_post_count(
        self,
        post_type: str,
        status: str | None = None,
        meta_query: dict[str, Any] | None = None,
        search: str | None = None,
    ) -> int:
        query = self._base_query(post_type, status, search, meta_query, False)
        result = await self.db.execute(select(func.count()).select_from(query.subquery()))
        return result.scalar() or 0

    async def find_post(self, post_type: str, id_or_slug: int | str, include_deleted: bool = False) -> Post | None:
        query = select(Post).where(Post.post_type_slug == post_type)
        if isinstance(id_or_slug, int) or str(id_or_slug).isdigit():
            query = query.where(or_(Post.id == int(id_or_slug), Post.slug == str(id_or_slug)))
        else:
            query = query.where(Post.slug == str(id_or_slug))
        if not include_deleted:
            query = query.where(Post.deleted_at.is_(None))
        result = await self.db.execute(query.order_by(Post.id).execution_options(populate_existing=True))
        return result.scalars().first()

    async def get_post(self, post_type: str, id_or_slug: int | str, include_deleted: bool = False) -> dict[str, Any]:
        post = await self.find_post(post_type, id_or_slug, include_deleted)
        if post is None:
            raise ResourceNotFoundError("Post", id_or_slug)
        return (await self._hydrate([post]))[0]

    # ── Writes ────────────────────────────────────────────────────────────────

    async def _unique_slug(self, post_type: str, base: str, exclude_id: int | None = None) -> str:
        base = base or "post"
        candidate, n = base, 2
        while True:
            query = select(Post.id).where(Post.post_type_slug == post_type, Post.slug == candidate)
            if exclude_id is not None:
                query = query.where(Post.id != exclude_id)
            if (await self.db.execute(query)).first() is None:
                return candidate
            candidate, n = f"{base}-{n}", n + 1

    async def update_post_meta(self, post_id: int, meta: dict[str, Any]) -> None:
        if not meta:
            return
        result = await self.db.execute(
            select(PostMeta).where(PostMeta.post_id == post_id, PostMeta.field_slug.in_(list(meta)))
        )
        existing = {row.field_slug: row for row in result.scalars().all()}
        for key, value in meta.items():
            normalized = normalize_value(value)
            row = existing.get(key)
            if row is None:
                self.db.add(PostMeta(post_id=post_id, field_slug=key, value=normalized))
            elif row.value != normalized:
                row.value = normalized

    async def set_taxonomies(self, post_id: int, taxonomies: Any) -> None:
        await self.db.execute(delete(TermRelationship).where(TermRelationship.post_id == post_id))
        for term_id in resolve_term_ids(taxonomies):
            self.db.add(TermRelationship(post_id=post_id, term_id=term_id))

    async def _filter_input(self, data: dict[str, Any], post_type: str, post_id: int | None) -> dict[str, Any]:
        if self.hooks is None:
            return dict(data)
        filtered = await self.hooks.apply_filters("insertPostData", dict(data), post_type, post_id)
        if not isinstance(filtered, dict):
            raise ValidationError("insertPostData filter must return a dict")
        return filtered

    async def create_post(self, post_type: str, data: dict[str, Any], author_id: int | None = None) -> dict[str, Any]:
        data = await self._filter_input(data, post_type, None)
        columns, meta = _split_payload(data)

        slug = columns.get("slug") or slugify(str(meta.get("title") or ""))
        post = Post(
            post_type_slug=post_type,
            slug=await self._unique_slug(post_type, slug),
            status=columns.get("status") or DEFAULT_STATUS,
        )
        self.db.add(post)
        await self.db.flush()

        if author_id:
            await self.db.execute(insert(post_authors).values(post_id=post.id, user_id=author_id))
        await self.update_post_meta(post.id, meta)
        if data.get("taxonomies"):
            await self.set_taxonomies(post.id, data["taxonomies"])
        await self.db.commit()

        saved = await self.get_post(post_type, post.id)
        logger.info("Created %s post %s", post_type, post.id)
        if self.hooks is not None:
            await self.hooks.do_action("savePost", saved, True)
        return saved

    async def update_post(self, post_type: str, id_or_slug: int | str, data: dict[str, Any]) -> dict[str, Any]:
        post = await self.find_post(post_type, id_or_slug)
        if post is None:
            raise ResourceNotFoundError("Post", id_or_slug)

        data = await self._filter_input(data, post_type, post.id)
        columns, meta = _split_payload(data)
        if "slug" in columns and columns["slug"] != post.slug:
            post.slug = await self._unique_slug(post_type, slugify(str(columns["slug"])), exclude_id=post.id)
        if columns.get("status"):
            post.status = columns["status"]
        post.updated_at = utcnow()

        await self.update_post_meta(post.id, meta)
        if "taxonomies" in data:
            await self.set_taxonomies(post.id, data["taxonomies"] or {})
        if "authors" in data:
            ids = [int(a["id"] if isinstance(a, dict) else a) for a in data["authors"] or []]
            users = (await self.db.execute(select(User).where(User.id.in_(ids)))).scalars().all() if ids else []
            post.authors = list(users)
        await self.db.commit()

        saved = await self.get_post(post_type, post.id)
        if self.hooks is not None:
            await self.hooks.do_action("savePost", saved, False)
        return saved

    async def delete_post(self, post_type: str, id_or_slug: int | str, force: bool = False) -> dict[str, Any]:
        """Soft-delete by default; ``force`` removes the row with its meta and relationships."""
        post = await self.find_post(post_type, id_or_slug, include_deleted=force)
        if post is None:
            raise ResourceNotFoundError("Post", id_or_slug)
        snapshot = (await self._hydrate([post]))[0]

        if force:
            await self.db.execute(delete(TermRelationship).where(TermRelationship.post_id == post.id))
            await self.db.execute(delete(PostMeta).where(PostMeta.post_id == post.id))
            await self.db.delete(post)
        else:
            post.deleted_at = utcnow()
            snapshot["deleted_at"] = post.deleted_at.isoformat()
        await self.db.commit()

        logger.info("%s %s post %s", "Deleted" if force else "Trashed", post_type, snapshot["id"])
        if self.hooks is not None:
            await self.hooks.do_action("deletePost", snapshot, force)
        return snapshot
