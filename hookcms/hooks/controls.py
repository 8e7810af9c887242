from __future__ import annotations

from collections.abc import Callable
from typing import Any

from hookcms.hooks.base import RegistryBase
from hookcms.hooks.registry import maybe_await


class Controls(RegistryBase):
    """Custom field controls contributed by extensions to the admin app."""

    def __init__(self, hooks) -> None:
        super().__init__(hooks)
        self.controls: list[dict[str, Any]] = []

    async def add_control(self, slug: str, callback: Callable) -> None:
        self.controls.append({"slug": slug, "callback": callback})
        await self.hooks.do_action("controlAdded", {"slug": slug})

    async def get_controls(self) -> list[dict[str, Any]]:
        return [
            {"slug": control["slug"], "component": await maybe_await(control["callback"]())}
            for control in self.controls
        ]
