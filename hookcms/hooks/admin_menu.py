"""
Admin menu registry.

Pages are only added when the current user holds one of the page's
capabilities (pages without capabilities are public to every signed-in
user). Menus and submenus are kept sorted by position. A page's optional
``callback`` renders the component the admin app mounts for it.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hookcms.hooks.base import RegistryBase
from hookcms.hooks.registry import maybe_await


class AdminMenu(RegistryBase):
    def __init__(self, hooks) -> None:
        super().__init__(hooks)
        self.menus: list[dict[str, Any]] = []
        self.submenus: list[dict[str, Any]] = []

    async def add_menu_page(
        self,
        slug: str,
        page_title: str | None = None,
        menu_title: str | None = None,
        name_singular: str | None = None,
        name_plural: str | None = None,
        icon: str | None = None,
        callback: Callable | None = None,
        position: int = 0,
        badge: int = 0,
        capabilities: dict[str, str] | list[str] | None = None,
    ) -> bool:
        page = {
            "slug": slug,
            "page_title": page_title,
            "menu_title": menu_title,
            "name_singular": name_singular,
            "name_plural": name_plural,
            "icon": icon,
            "callback": callback,
            "position": position,
            "badge": badge,
            "capabilities": capabilities or {},
        }
        if not await self._grant(page):
            return False

        self.menus.append(page)
        self.menus.sort(key=lambda item: item["position"])
        await self.hooks.do_action(
            "menuPageAdded", {"slug": slug, "page_title": page_title, "menu_title": menu_title, "position": position}
        )
        return True

    async def add_sub_menu_page(
        self,
        parent_slug: str,
        slug: str,
        page_title: str | None = None,
        menu_title: str | None = None,
        name_singular: str | None = None,
        name_plural: str | None = None,
        callback: Callable | None = None,
        position: int = 0,
        badge: int = 0,
        capabilities: dict[str, str] | list[str] | None = None,
    ) -> bool:
        page = {
            "parent_slug": parent_slug,
            "slug": slug,
            "page_title": page_title,
            "menu_title": menu_title,
            "name_singular": name_singular,
            "name_plural": name_plural,
            "callback": callback,
            "position": position,
            "badge": badge,
            "capabilities": capabilities or {},
        }
        if not await self._grant(page):
            return False

        self.submenus.append(page)
        self.submenus.sort(key=lambda item: item["position"])
        await self.hooks.do_action(
            "subMenuPageAdded",
            {"parent_slug": parent_slug, "slug": slug, "page_title": page_title, "menu_title": menu_title, "position": position},
        )
        return True

    @staticmethod
    async def _render(page: dict[str, Any]) -> dict[str, Any]:
        rendered = {key: value for key, value in page.items() if key != "callback"}
        rendered["component"] = await maybe_await(page["callback"]()) if page.get("callback") else None
        return rendered

    async def get_menu_tree(self) -> list[dict[str, Any]]:
        tree = []
        for menu in self.menus:
            item = await self._render(menu)
            item["children"] = [
                await self._render(sub) for sub in self.submenus if sub["parent_slug"] == menu["slug"]
            ]
            tree.append(item)
        return await self.hooks.apply_filters("adminMenu", tree)
