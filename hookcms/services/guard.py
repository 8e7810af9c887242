"""
User Guard

Resolves a user's effective capabilities (direct + role, or the guest role
when anonymous), expands them through capability_inheritance, and answers
"can one of" / "can all of" checks.

Checks accept either a list of capability slugs or a mapping of
canonical name -> required slug. They return the list of matched canonical
names, or None when the check fails.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from typing import Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from hookcms.models.user import Capability, CapabilityInheritance, Role, User, role_capabilities

logger = logging.getLogger(__name__)

CapabilitySpec = Union[Mapping[str, str], Iterable[str], None]


def _as_mapping(caps: CapabilitySpec) -> dict[str, str]:
    if not caps:
        return {}
    if isinstance(caps, Mapping):
        return dict(caps)
    if isinstance(caps, str):
        return {caps: caps}
    return {cap: cap for cap in caps}


async def load_inheritance_map(db: AsyncSession) -> dict[str, list[str]]:
    parent = aliased(Capability)
    child = aliased(Capability)
    result = await db.execute(
        select(parent.slug, child.slug)
        .select_from(CapabilityInheritance)
        .join(parent, CapabilityInheritance.parent_capability_id == parent.id)
        .join(child, CapabilityInheritance.child_capability_id == child.id)
    )
    inheritance: dict[str, list[str]] = {}
    for parent_slug, child_slug in result.all():
        inheritance.setdefault(parent_slug, []).append(child_slug)
    return inheritance


def expand_capabilities(caps: Iterable[str], inheritance: Mapping[str, list[str]]) -> set[str]:
    """Breadth-first closure of ``caps`` over the inheritance map."""
    resolved: set[str] = set()
    queue = deque(caps)
    while queue:
        cap = queue.popleft()
        if cap in resolved:
            continue
        resolved.add(cap)
        queue.extend(inheritance.get(cap, []))
    return resolved


class UserGuard:
    def __init__(self, db: AsyncSession, user: User | None = None):
        self.db = db
        self.current_user = user
        self._resolved: dict[int | None, set[str]] = {}

    @property
    def user_id(self) -> int | None:
        return self.current_user.id if self.current_user else None

    async def _guest_capabilities(self) -> list[str]:
        result = await self.db.execute(
            select(Capability.slug)
            .join(role_capabilities, role_capabilities.c.capability_id == Capability.id)
            .join(Role, Role.id == role_capabilities.c.role_id)
            .where(Role.slug == "guest")
        )
        return list(result.scalars().all())

    async def _user_capabilities(self, user_id: int) -> list[str]:
        if self.current_user is not None and self.current_user.id == user_id:
            user = self.current_user
        else:
            user = await self.db.get(User, user_id)
            if user is None:
                return []
        caps = {cap.slug for cap in user.capabilities}
        for role in user.roles:
            caps.update(cap.slug for cap in role.capabilities)
        return list(caps)

    async def get_capabilities(self, user_id: int | None = None) -> set[str]:
        """Return the expanded capability set, cached per user for the guard's lifetime."""
        if user_id is None:
            user_id = self.user_id
        if user_id not in self._resolved:
            direct = await self._user_capabilities(user_id) if user_id else await self._guest_capabilities()
            inheritance = await load_inheritance_map(self.db)
            self._resolved[user_id] = expand_capabilities(direct, inheritance)
        return self._resolved[user_id]

    async def user(
        self,
        can_one_of: CapabilitySpec = None,
        can_all_of: CapabilitySpec = None,
        user_id: int | None = None,
    ) -> list[str] | None:
        effective = await self.get_capabilities(user_id)
        matched: list[str] = []

        for canonical, required in _as_mapping(can_all_of).items():
            if required not in effective:
                return None
            matched.append(canonical)

        one_of = _as_mapping(can_one_of)
        if one_of:
            found = [canonical for canonical, required in one_of.items() if required in effective]
            if not found:
                return None
            matched.extend(found)

        return matched or None

    async def can_one_of(self, caps: CapabilitySpec, user_id: int | None = None) -> list[str] | None:
        return await self.user(can_one_of=caps, user_id=user_id)

    async def can_all_of(self, caps: CapabilitySpec, user_id: int | None = None) -> list[str] | None:
        return await self.user(can_all_of=caps, user_id=user_id)
