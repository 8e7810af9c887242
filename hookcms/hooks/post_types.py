"""
Post type registry.

Database rows load lazily at priority 5; extensions register at runtime
(default priority 10). A registration is ignored when its priority is lower
than the entry already held for that slug.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select

from hookcms.exceptions import ValidationError
from hookcms.hooks.base import RegistryBase, row_to_dict
from hookcms.models.post import PostType, PostTypeField

logger = logging.getLogger(__name__)

DB_PRIORITY = 5
DEFAULT_FIELD_ORDER = 1000


class PostTypes(RegistryBase):
    def __init__(self, hooks) -> None:
        super().__init__(hooks)
        self.post_types: dict[str, dict[str, Any]] = {}
        self.fields: dict[str, list[dict[str, Any]]] = {}
        # database rows the current user may not see; requests for them are 403, not 404
        self.restricted: set[str] = set()
        self.loaded = False

    # ── DB loading ────────────────────────────────────────────────────────────

    async def load(self) -> None:
        if self.loaded:
            return
        self.loaded = True

        rows = (await self.db.execute(select(PostType).order_by(PostType.position, PostType.id))).scalars().all()
        for row in rows:
            data = row_to_dict(row)
            data["capabilities"] = data.get("capabilities") or {}
            if not await self._grant(data):
                self.restricted.add(row.slug)
                continue
            priority = data.get("priority") or DB_PRIORITY
            self.post_types[row.slug] = {"data": data, "priority": priority, "source": "database"}
            if data.get("show_in_menu"):
                await self._add_menu_pages(data)

        fields = (
            (await self.db.execute(select(PostTypeField).order_by(PostTypeField.order, PostTypeField.id)))
            .scalars()
            .all()
        )
        for row in fields:
            field = row_to_dict(row)
            self.fields.setdefault(row.post_type_slug, []).append(
                {"field": field, "priority": field.get("priority") or DB_PRIORITY, "source": "database"}
            )

    async def _add_menu_pages(self, data: dict[str, Any]) -> None:
        menu = self.hooks.admin_menu
        capabilities = data.get("capabilities") or {}
        await menu.add_menu_page(
            slug=data["slug"],
            page_title=data.get("name_plural"),
            menu_title=data.get("name_plural"),
            name_singular=data.get("name_singular"),
            name_plural=data.get("name_plural"),
            icon=data.get("icon"),
            badge=data.get("badge") or 0,
            position=data.get("position") or 0,
            capabilities=capabilities,
        )
        await menu.add_sub_menu_page(
            parent_slug=data["slug"],
            slug="",
            page_title="Home",
            menu_title="Home",
            position=100,
            capabilities=capabilities,
        )
        await menu.add_sub_menu_page(
            parent_slug=data["slug"],
            slug="fields/admin",
            page_title="Fields",
            menu_title="Fields",
            position=10000,
            capabilities=capabilities,
        )

    # ── Runtime registration ──────────────────────────────────────────────────

    async def register_post_type(self, post_type: dict[str, Any], priority: int = 10) -> bool:
        """Register or override a post type. Returns False when it was skipped."""
        await self.load()
        data = dict(post_type)
        if not data.get("slug"):
            raise ValidationError("Post type slug is required", field="slug")

        if not await self._grant(data):
            self.restricted.add(data["slug"])
            return False

        existing = self.post_types.get(data["slug"])
        if existing and priority < existing["priority"]:
            logger.debug("Post type %s kept at priority %s", data["slug"], existing["priority"])
            return False

        self.post_types[data["slug"]] = {"data": data, "priority": priority, "source": "runtime"}
        await self.hooks.do_action("postTypeRegistered", data)

        if data.get("show_in_menu"):
            await self._add_menu_pages(data)
        return True

    async def register_post_field(self, post_type_slug: str, field: dict[str, Any], priority: int = 10) -> bool:
        await self.load()
        if post_type_slug not in self.post_types:
            return False

        entries = self.fields.setdefault(post_type_slug, [])
        entry = {"field": dict(field), "priority": priority, "source": "runtime"}
        for index, existing in enumerate(entries):
            if existing["field"]["slug"] == field["slug"]:
                if priority >= existing["priority"]:
                    entries[index] = entry
                break
        else:
            entries.append(entry)

        await self.hooks.do_action("postFieldRegistered", post_type_slug, field)
        return True

    # ── Getters ───────────────────────────────────────────────────────────────

    def get_post_type_entry(self, slug: str) -> dict[str, Any] | None:
        return self.post_types.get(slug)

    def is_restricted(self, slug: str) -> bool:
        """True when the post type exists but the current user lacks its capabilities."""
        return slug in self.restricted

    async def get_post_type(self, slug: str) -> dict[str, Any] | None:
        await self.load()
        entry = self.post_types.get(slug)
        if entry is None:
            return None
        data = dict(entry["data"])
        if not await self._grant(data):
            return None
        return await self.hooks.apply_filters("postType", data)

    async def get_fields(self, slug: str) -> list[dict[str, Any]]:
        await self.load()
        entries = sorted(
            self.fields.get(slug, []),
            key=lambda entry: (
                entry["field"].get("order") if entry["field"].get("order") is not None else DEFAULT_FIELD_ORDER,
                entry.get("priority") if entry.get("priority") is not None else DB_PRIORITY,
            ),
        )
        return await self.hooks.apply_filters("postTypeFields", entries, slug)

    async def get_all_post_types(self) -> list[dict[str, Any]]:
        await self.load()
        visible = []
        for entry in self.post_types.values():
            data = dict(entry["data"])
            if await self._grant(data):
                visible.append(data)
        return await self.hooks.apply_filters("allPostTypes", visible)
