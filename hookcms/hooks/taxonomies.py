"""
Taxonomy registry, keyed ``"{post_type_slug}:{slug}"``.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import select

from hookcms.exceptions import ValidationError
from hookcms.hooks.base import RegistryBase, row_to_dict
from hookcms.models.taxonomy import Taxonomy, TaxonomyField

DB_PRIORITY = 5


def taxonomy_key(post_type_slug: str, slug: str) -> str:
    return f"{post_type_slug}:{slug}"


class Taxonomies(RegistryBase):
    def __init__(self, hooks) -> None:
        super().__init__(hooks)
        self.taxonomies: dict[str, dict[str, Any]] = {}
        self.by_post_type: dict[str, list[str]] = {}
        self.fields: dict[str, list[dict[str, Any]]] = {}
        self.loaded = False

    def _index(self, post_type_slug: str, key: str) -> None:
        keys = self.by_post_type.setdefault(post_type_slug, [])
        if key not in keys:
            keys.append(key)

    async def load(self) -> None:
        if self.loaded:
            return
        self.loaded = True

        for row in (await self.db.execute(select(Taxonomy).order_by(Taxonomy.id))).scalars().all():
            data = row_to_dict(row)
            data["capabilities"] = data.get("capabilities") or {}
            if not await self._grant(data):
                continue
            key = taxonomy_key(row.post_type_slug, row.slug)
            self.taxonomies[key] = {"data": data, "priority": data.get("priority") or DB_PRIORITY, "source": "database"}
            self._index(row.post_type_slug, key)

        for row in (await self.db.execute(select(TaxonomyField).order_by(TaxonomyField.order))).scalars().all():
            key = taxonomy_key(row.post_type_slug, row.taxonomy_slug)
            field = row_to_dict(row)
            self.fields.setdefault(key, []).append(
                {"field": field, "priority": field.get("priority") or DB_PRIORITY, "source": "database"}
            )

    async def register_taxonomy(self, taxonomy: dict[str, Any], priority: int = 10) -> bool:
        await self.load()
        if not taxonomy.get("slug") or not taxonomy.get("post_type_slug"):
            raise ValidationError("slug and post_type_slug are required")

        data = dict(taxonomy)
        if not await self._grant(data):
            return False

        key = taxonomy_key(data["post_type_slug"], data["slug"])
        existing = self.taxonomies.get(key)
        if existing and priority < existing["priority"]:
            return False

        self.taxonomies[key] = {"data": data, "priority": priority, "source": "runtime"}
        self._index(data["post_type_slug"], key)
        await self.hooks.do_action("taxonomyRegistered", data)

        if data.get("show_in_menu"):
            await self.hooks.admin_menu.add_sub_menu_page(
                parent_slug=data["post_type_slug"],
                slug=f"terms/{data['slug']}",
                page_title=data.get("name_plural"),
                menu_title=data.get("name_plural"),
                name_singular=data.get("name_singular"),
                name_plural=data.get("name_plural"),
                badge=data.get("badge") or 0,
                position=data.get("position") or 0,
                capabilities=data.get("capabilities") or {},
            )
        return True

    async def register_taxonomy_field(
        self, post_type_slug: str, taxonomy_slug: str, field: dict[str, Any], priority: int = 10
    ) -> bool:
        await self.load()
        key = taxonomy_key(post_type_slug, taxonomy_slug)
        if key not in self.taxonomies:
            return False

        entries = self.fields.setdefault(key, [])
        entry = {"field": dict(field), "priority": priority, "source": "runtime"}
        for index, existing in enumerate(entries):
            if existing["field"]["slug"] == field["slug"]:
                if priority >= existing["priority"]:
                    entries[index] = entry
                break
        else:
            entries.append(entry)

        await self.hooks.do_action("taxonomyFieldRegistered", key, field)
        return True

    async def get_taxonomy(self, post_type_slug: str, slug: str) -> dict[str, Any] | None:
        await self.load()
        entry = self.taxonomies.get(taxonomy_key(post_type_slug, slug))
        if entry is None:
            return None
        data = dict(entry["data"])
        if not await self._grant(data):
            return None
        return await self.hooks.apply_filters("taxonomy", data)

    async def get_fields(self, post_type_slug: str, slug: str) -> list[dict[str, Any]]:
        await self.load()
        key = taxonomy_key(post_type_slug, slug)
        return await self.hooks.apply_filters("taxonomyFields", list(self.fields.get(key, [])), key)

    async def get_taxonomies(self, post_type_slug: str) -> list[dict[str, Any]]:
        await self.load()
        visible = []
        for key in self.by_post_type.get(post_type_slug, []):
            data = dict(self.taxonomies[key]["data"])
            if await self._grant(data):
                visible.append(data)
        return await self.hooks.apply_filters("allTaxonomies", visible, post_type_slug)
