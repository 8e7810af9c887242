"""
Options Service

Key/value site configuration stored in the options table. Structured values
are stored as JSON text.
"""

import json
import logging
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.models.option import Option
from hookcms.utils.json_utils import normalize_value, parse_value

logger = logging.getLogger(__name__)


class OptionsService:
    @staticmethod
    async def get_option(db: AsyncSession, name: str, default: Any = None) -> Any:
        """Return the option's value (JSON decoded when possible) or ``default``."""
        result = await db.execute(select(Option.value).where(Option.name == name))
        row = result.first()
        if row is None or row[0] is None:
            return default
        return parse_value(row[0])

    @staticmethod
    async def get_raw_option(db: AsyncSession, name: str) -> str | None:
        result = await db.execute(select(Option.value).where(Option.name == name))
        return result.scalar_one_or_none()

    @staticmethod
    async def set_option(db: AsyncSession, name: str, value: Any, autoload: bool = True, commit: bool = True) -> Option:
        result = await db.execute(select(Option).where(Option.name == name))
        option = result.scalar_one_or_none()
        serialized = json.dumps(value) if isinstance(value, (list, dict, bool)) else normalize_value(value)

        if option is None:
            option = Option(name=name, value=serialized, autoload=autoload)
            db.add(option)
        else:
            option.value = serialized

        if commit:
            await db.commit()
        else:
            await db.flush()
        return option

    @staticmethod
    async def delete_option(db: AsyncSession, name: str, commit: bool = True) -> bool:
        result = await db.execute(delete(Option).where(Option.name == name))
        if commit:
            await db.commit()
        return result.rowcount > 0

    @staticmethod
    async def list_options(db: AsyncSession, prefix: str | None = None) -> list[Option]:
        query = select(Option).order_by(Option.name)
        if prefix:
            query = query.where(Option.name.like(f"{prefix}%"))
        result = await db.execute(query)
        return list(result.scalars().all())

    # ── Active plugins ────────────────────────────────────────────────────────

    @staticmethod
    async def get_active_plugins(db: AsyncSession) -> list[str]:
        value = await OptionsService.get_option(db, "active_plugins", [])
        if not isinstance(value, list):
            logger.warning("active_plugins option is not a list; treating as empty")
            return []
        return [str(slug) for slug in value]

    @staticmethod
    async def set_active_plugins(db: AsyncSession, slugs: list[str], commit: bool = True) -> None:
        await OptionsService.set_option(db, "active_plugins", list(dict.fromkeys(slugs)), commit=commit)

    @staticmethod
    async def get_active_theme(db: AsyncSession) -> str | None:
        value = await OptionsService.get_option(db, "theme")
        return str(value) if value else None
