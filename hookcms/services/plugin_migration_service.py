"""
Plugin Migration Service

Runs an extension's own schema migrations. Migration files live in the
extension's ``migrations/`` directory, are named ``YYYYMMDDHHMMSS_name.py``
and define ``up(connection)`` and ``down(connection)``, both taking a
synchronous SQLAlchemy ``Connection``. Ran migrations are recorded per
extension in ``plugin_migrations`` and grouped in batches so the last run
can be rolled back as a unit.
"""

import importlib.util
import logging
import re
from pathlib import Path
from types import ModuleType
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.models.plugin_migration import PluginMigration

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = "migrations"
MIGRATION_RE = re.compile(r"^(\d{14})_(\w+)\.py$")


def _result(direction: str, migrations: list[str], errors: list[str]) -> dict[str, Any]:
    return {"success": not errors, "direction": direction, "migrations": migrations, "errors": errors}


class PluginMigrationService:
    def __init__(self, db: AsyncSession, base_dir: Path) -> None:
        """``base_dir`` is the directory holding the extensions, e.g. ``content/plugins``."""
        self.db = db
        self.base_dir = Path(base_dir)

    async def ensure_migration_table(self) -> None:
        await self.db.run_sync(lambda session: PluginMigration.__table__.create(session.connection(), checkfirst=True))

    def migrations_path(self, slug: str) -> Path:
        return self.base_dir / slug / MIGRATIONS_DIR

    def get_migration_files(self, slug: str) -> list[dict[str, Any]]:
        path = self.migrations_path(slug)
        if not path.is_dir():
            return []

        files = []
        for entry in path.iterdir():
            match = MIGRATION_RE.match(entry.name)
            if not match or not entry.is_file():
                continue
            files.append({"name": entry.name, "path": entry, "timestamp": int(match.group(1))})
        return sorted(files, key=lambda item: (item["timestamp"], item["name"]))

    async def get_ran_migrations(self, slug: str) -> list[PluginMigration]:
        await self.ensure_migration_table()
        result = await self.db.execute(
            select(PluginMigration).where(PluginMigration.plugin_slug == slug).order_by(PluginMigration.id)
        )
        return list(result.scalars().all())

    async def get_pending_migrations(self, slug: str) -> list[dict[str, Any]]:
        ran = {record.migration_name for record in await self.get_ran_migrations(slug)}
        return [item for item in self.get_migration_files(slug) if item["name"] not in ran]

    async def get_next_batch(self, slug: str) -> int:
        result = await self.db.execute(
            select(func.max(PluginMigration.batch)).where(PluginMigration.plugin_slug == slug)
        )
        return (result.scalar() or 0) + 1

    def _load(self, slug: str, path: Path) -> ModuleType:
        name = f"hookcms_migration_{slug.replace('-', '_')}_{path.stem}"
        spec = importlib.util.spec_from_file_location(name, path)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    async def _apply(self, slug: str, path: Path, direction: str) -> None:
        module = self._load(slug, path)
        fn = getattr(module, direction, None)
        if not callable(fn):
            raise AttributeError(f"Migration {path.name} must define {direction}(connection)")
        await self.db.run_sync(lambda session: fn(session.connection()))

    # ── Running ───────────────────────────────────────────────────────────────

    async def run_migrations(self, slug: str) -> dict[str, Any]:
        """Run every pending migration in one new batch; stops at the first failure."""
        pending = await self.get_pending_migrations(slug)
        if not pending:
            return _result("up", [], [])

        batch = await self.get_next_batch(slug)
        ran: list[str] = []
        errors: list[str] = []

        for migration in pending:
            try:
                logger.info("Running migration %s/%s", slug, migration["name"], extra={"extension": slug})
                await self._apply(slug, migration["path"], "up")
                self.db.add(PluginMigration(plugin_slug=slug, migration_name=migration["name"], batch=batch))
                await self.db.commit()
                ran.append(migration["name"])
            except Exception as exc:
                await self.db.rollback()
                logger.error("Migration %s/%s failed: %s", slug, migration["name"], exc, extra={"extension": slug})
                errors.append(f"{migration['name']}: {exc}")
                break

        return _result("up", ran, errors)

    async def _run_down(self, slug: str, records: list[PluginMigration]) -> dict[str, Any]:
        rolled: list[str] = []
        errors: list[str] = []

        for record in records:
            name = record.migration_name
            try:
                path = self.migrations_path(slug) / name
                if not path.exists():
                    raise FileNotFoundError(f"Migration file not found: {name}")
                logger.info("Rolling back %s/%s", slug, name, extra={"extension": slug})
                await self._apply(slug, path, "down")
                await self.db.execute(delete(PluginMigration).where(PluginMigration.id == record.id))
                await self.db.commit()
                rolled.append(name)
            except Exception as exc:
                await self.db.rollback()
                logger.error("Rollback of %s/%s failed: %s", slug, name, exc, extra={"extension": slug})
                errors.append(f"{name}: {exc}")
                break

        return _result("down", rolled, errors)

    async def rollback(self, slug: str) -> dict[str, Any]:
        """Roll back the last batch, newest migration first."""
        ran = await self.get_ran_migrations(slug)
        if not ran:
            return _result("down", [], [])
        last_batch = max(record.batch for record in ran)
        records = [record for record in ran if record.batch == last_batch]
        return await self._run_down(slug, list(reversed(records)))

    async def reset(self, slug: str) -> dict[str, Any]:
        """Roll back everything the extension has run."""
        ran = await self.get_ran_migrations(slug)
        records = sorted(ran, key=lambda record: (record.batch, record.id), reverse=True)
        return await self._run_down(slug, records)

    async def get_status(self, slug: str) -> list[dict[str, Any]]:
        ran = {record.migration_name: record for record in await self.get_ran_migrations(slug)}
        status = []
        for migration in self.get_migration_files(slug):
            record = ran.get(migration["name"])
            status.append(
                {
                    "name": migration["name"],
                    "ran": record is not None,
                    "batch": record.batch if record else None,
                    "ran_at": record.ran_at.isoformat() if record and record.ran_at else None,
                }
            )
        return status
