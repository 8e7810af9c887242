"""
Hook Registry

Actions and filters keyed by name. Each hook holds a list of
``{"callback", "priority"}`` entries kept sorted ascending by priority;
entries with equal priority keep their registration order.

Callbacks may be plain functions or coroutine functions. Exceptions raised
by a callback propagate to the caller.
"""

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 10
EXCERPT_LENGTH = 55

_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class HookRegistry:
    def __init__(self) -> None:
        self._actions: dict[str, list[dict[str, Any]]] = {}
        self._filters: dict[str, list[dict[str, Any]]] = {}

    # ── Registration ──────────────────────────────────────────────────────────

    @staticmethod
    def _add(store: dict[str, list[dict[str, Any]]], name: str, callback: Callable, priority: int) -> None:
        entries = store.setdefault(name, [])
        entries.append({"callback": callback, "priority": priority})
        # list.sort is stable, so equal priorities stay in registration order
        entries.sort(key=lambda entry: entry["priority"])

    @staticmethod
    def _remove(store: dict[str, list[dict[str, Any]]], name: str, callback: Callable) -> bool:
        entries = store.get(name, [])
        remaining = [entry for entry in entries if entry["callback"] is not callback]
        store[name] = remaining
        return len(remaining) != len(entries)

    def add_action(self, name: str, callback: Callable, priority: int = DEFAULT_PRIORITY) -> None:
        self._add(self._actions, name, callback, priority)

    def add_filter(self, name: str, callback: Callable, priority: int = DEFAULT_PRIORITY) -> None:
        self._add(self._filters, name, callback, priority)

    def remove_action(self, name: str, callback: Callable) -> bool:
        return self._remove(self._actions, name, callback)

    def remove_filter(self, name: str, callback: Callable) -> bool:
        return self._remove(self._filters, name, callback)

    def has_action(self, name: str) -> bool:
        return bool(self._actions.get(name))

    def has_filter(self, name: str) -> bool:
        return bool(self._filters.get(name))

    def get_actions(self, name: str) -> list[dict[str, Any]]:
        return list(self._actions.get(name, []))

    def get_filters(self, name: str) -> list[dict[str, Any]]:
        return list(self._filters.get(name, []))

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def do_action(self, name: str, *args: Any, **kwargs: Any) -> None:
        """Call every callback registered for ``name`` in priority order."""
        for entry in list(self._actions.get(name, [])):
            await maybe_await(entry["callback"](*args, **kwargs))

    async def apply_filters(self, name: str, value: Any, *args: Any, **kwargs: Any) -> Any:
        """Pass ``value`` through each filter in priority order and return the result."""
        for entry in list(self._filters.get(name, [])):
            value = await maybe_await(entry["callback"](value, *args, **kwargs))
        return value

    # ── Template helpers ──────────────────────────────────────────────────────

    async def the_excerpt(self, post: dict[str, Any], length: int = EXCERPT_LENGTH) -> str:
        """
        Excerpt of a post, passed through the ``the_excerpt`` filter.

        An explicit ``excerpt`` wins. Otherwise the content is stripped of
        tags and cut to the first ``length`` words, with "…" appended when
        the content reaches ``length`` words. Entities are left as written.
        """
        excerpt = post.get("excerpt") or ""
        if not excerpt and post.get("content"):
            text = _TAG_RE.sub("", str(post["content"]))
            words = [word for word in _WHITESPACE_RE.split(text) if word][:length]
            excerpt = " ".join(words)
            if len(words) == length:
                excerpt += "…"

        return await self.apply_filters("the_excerpt", excerpt, post)
