from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect as sa_inspect

if TYPE_CHECKING:
    from hookcms.hooks import Hooks


def row_to_dict(row: Any) -> dict[str, Any]:
    """Column values of an ORM row as a plain dict."""
    return {attr.key: getattr(row, attr.key) for attr in sa_inspect(row).mapper.column_attrs}


class RegistryBase:
    """Shared plumbing for registries bound to one request's Hooks."""

    def __init__(self, hooks: Hooks) -> None:
        self.hooks = hooks

    @property
    def db(self):
        return self.hooks.db

    async def _grant(self, data: dict[str, Any]) -> bool:
        """
        Check ``data["capabilities"]`` against the current user.

        Entries without capabilities are visible to everyone. On success the
        matched canonical names are stored under ``resolved_capabilities``.
        """
        caps = data.get("capabilities")
        if not caps:
            return True
        resolved = await self.hooks.guard.user(can_one_of=caps)
        if not resolved:
            return False
        data["resolved_capabilities"] = resolved
        return True
