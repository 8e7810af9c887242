"""
Email provider registry.

A provider is any object exposing ``name``, an async ``configure(db)``
returning a :class:`TransportConfig`, and an async ``is_configured(db)``.
Providers are kept sorted by priority; the lowest number that reports itself
configured is the active one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import ValidationError
from hookcms.services.options_service import OptionsService

if TYPE_CHECKING:
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_PRIORITY = 10


@dataclass
class TransportConfig:
    host: str | None = None
    port: int = 587
    secure: bool = False
    user: str | None = None
    password: str | None = None
    from_address: str | None = None
    from_name: str | None = None


class SMTPProvider:
    """Built-in provider configured through the smtp_* options."""

    name = "smtp"
    priority = DEFAULT_PROVIDER_PRIORITY

    async def configure(self, db: AsyncSession) -> TransportConfig:
        options = {
            key: await OptionsService.get_raw_option(db, key)
            for key in ("smtp_host", "smtp_port", "smtp_secure", "smtp_user", "smtp_password", "smtp_from", "smtp_from_name")
        }
        return TransportConfig(
            host=options["smtp_host"],
            port=int(options["smtp_port"] or 587),
            secure=options["smtp_secure"] == "true",
            user=options["smtp_user"],
            password=options["smtp_password"],
            from_address=options["smtp_from"] or options["smtp_user"],
            from_name=options["smtp_from_name"],
        )

    async def is_configured(self, db: AsyncSession) -> bool:
        for key in ("smtp_host", "smtp_user", "smtp_password"):
            if not await OptionsService.get_raw_option(db, key):
                return False
        return True


class EmailProviders:
    def __init__(self, db: AsyncSession, hooks: Hooks | None = None) -> None:
        self.db = db
        self.hooks = hooks
        self.providers: list[dict[str, Any]] = []

    async def init(self) -> None:
        await self.register_provider(SMTPProvider())

    async def register_provider(self, provider: Any, priority: int | None = None) -> None:
        name = getattr(provider, "name", None)
        if not name or not callable(getattr(provider, "configure", None)) or not callable(
            getattr(provider, "is_configured", None)
        ):
            raise ValidationError("Email provider must have name, configure, and is_configured")

        if priority is None:
            priority = getattr(provider, "priority", None) or DEFAULT_PROVIDER_PRIORITY

        self.providers.append({"name": name, "priority": priority, "provider": provider})
        self.providers.sort(key=lambda entry: entry["priority"])
        logger.debug("Email provider registered: %s (priority %s)", name, priority)

        if self.hooks is not None:
            await self.hooks.do_action("emailProviderRegistered", {"name": name, "priority": priority})

    async def get_active_provider(self) -> Any | None:
        for entry in self.providers:
            if await entry["provider"].is_configured(self.db):
                return entry["provider"]
        return None

    def get_providers(self) -> list[dict[str, Any]]:
        return [{"name": entry["name"], "priority": entry["priority"]} for entry in self.providers]

    def get_provider(self, name: str) -> Any | None:
        for entry in self.providers:
            if entry["name"] == name:
                return entry["provider"]
        return None
