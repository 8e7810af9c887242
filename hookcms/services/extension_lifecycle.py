"""
Extension lifecycle base

Shared plumbing for the plugin and theme lifecycle services: metadata,
per-extension state stored as an option, ``requirements.txt`` installs run
as background jobs, migrations, and the backup/restore dance around
upgrades and downgrades.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncSession

from hookcms.exceptions import ExtensionError
from hookcms.extensions.base import ExtensionMeta
from hookcms.extensions.loader import MANIFESTS
from hookcms.services.options_service import OptionsService
from hookcms.services.plugin_migration_service import PluginMigrationService
from hookcms.utils.dates import utcnow

if TYPE_CHECKING:
    from hookcms.context import AppContext
    from hookcms.hooks import Hooks

logger = logging.getLogger(__name__)

BACKUPS_DIR = ".backups"
KEEP_BACKUPS = 5
REQUIREMENTS_FILE = "requirements.txt"


def version_key(version: str) -> tuple[int, ...]:
    """Numeric sort key for "1.2.3"-style versions; non-numeric parts count as 0."""
    parts = []
    for piece in version.split("-")[0].split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


class ExtensionLifecycleService:
    kind = ""
    state_prefix = ""

    def __init__(self, db: AsyncSession, context: AppContext, hooks: Hooks | None = None) -> None:
        self.db = db
        self.context = context
        self.hooks = hooks
        self.loader = context.extensions

    @property
    def label(self) -> str:
        return self.kind[:-1]

    @property
    def base_dir(self) -> Path:
        return self.loader.base_dir(self.kind)

    def extension_path(self, slug: str) -> Path:
        return self.loader.extension_path(self.kind, slug)

    def get_metadata(self, slug: str) -> ExtensionMeta:
        return self.loader.get_metadata(self.kind, slug)

    @property
    def migrations(self) -> PluginMigrationService:
        return PluginMigrationService(self.db, self.base_dir)

    async def call_lifecycle_hook(self, slug: str, hook_name: str, **event: Any) -> bool:
        try:
            return await self.loader.call_lifecycle_hook(self.kind, slug, hook_name, self.hooks, **event)
        except Exception as exc:
            logger.error("%s hook %s failed for %s: %s", self.label, hook_name, slug, exc, extra={"extension": slug})
            raise

    # ── State ─────────────────────────────────────────────────────────────────

    def _state_option(self, slug: str) -> str:
        return f"{self.state_prefix}{slug}"

    async def get_state(self, slug: str) -> dict[str, Any]:
        state = await OptionsService.get_option(self.db, self._state_option(slug), {})
        return state if isinstance(state, dict) else {}

    async def store_state(self, slug: str, state: dict[str, Any]) -> dict[str, Any]:
        merged = {**await self.get_state(slug), **state}
        await OptionsService.set_option(self.db, self._state_option(slug), merged, autoload=False)
        return merged

    async def remove_state(self, slug: str) -> None:
        await OptionsService.delete_option(self.db, self._state_option(slug))

    # ── Dependencies ──────────────────────────────────────────────────────────

    async def run_pip_install(self, slug: str, action: str = "install") -> bool:
        """
        Install the extension's ``requirements.txt`` with pip, tracked as a job.

        Returns False when there is nothing to install.
        """
        requirements = self.extension_path(slug) / REQUIREMENTS_FILE
        if not requirements.exists() or not requirements.read_text(encoding="utf-8").strip():
            logger.debug("No requirements for %s %s, skipping pip install", self.label, slug)
            return False

        job = await self.context.jobs.create_job(
            name=f"Installing dependencies for {slug}",
            job_type="pip_install",
            description=f"Running pip install for {self.label} {slug} ({action})",
            metadata={"slug": slug, "kind": self.label, "action": action},
            source=self.label,
            show_notification=True,
        )
        await job.start()
        await job.update_progress(10, {"status": "Starting installation..."})

        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-m",
            "pip",
            "install",
            "--disable-pip-version-check",
            "-r",
            str(requirements),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()

        if process.returncode != 0:
            message = (stderr or stdout).decode(errors="replace").strip() or "pip install failed"
            await job.fail(message)
            raise ExtensionError(f"Failed to install dependencies: {message}", extension=slug)

        self.loader.invalidate(self.kind, slug)
        await job.complete({"message": f"Dependencies installed successfully for {slug}"})
        return True

    async def run_migrations(self, slug: str) -> dict[str, Any]:
        result = await self.migrations.run_migrations(slug)
        if not result["success"]:
            raise ExtensionError(f"Migration failed: {'; '.join(result['errors'])}", extension=slug)
        return result

    # ── Backups ───────────────────────────────────────────────────────────────

    def create_backup(self, slug: str) -> Path:
        stamp = int(time.time() * 1000)
        backup_path = self.base_dir / BACKUPS_DIR / f"{slug}_{stamp}"
        while backup_path.exists():
            stamp += 1
            backup_path = self.base_dir / BACKUPS_DIR / f"{slug}_{stamp}"
        backup_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self.extension_path(slug), backup_path, ignore=shutil.ignore_patterns("__pycache__"))
        logger.info("Created backup for %s %s at %s", self.label, slug, backup_path)
        return backup_path

    def restore_backup(self, slug: str, backup_path: Path) -> None:
        target = self.extension_path(slug)
        if target.exists():
            shutil.rmtree(target)
        shutil.copytree(backup_path, target)
        self.loader.invalidate(self.kind, slug)
        logger.info("Restored %s %s from backup", self.label, slug)

    def cleanup_backups(self, slug: str, keep: int = KEEP_BACKUPS) -> list[Path]:
        backups_dir = self.base_dir / BACKUPS_DIR
        if not backups_dir.is_dir():
            return []
        backups = sorted(
            (entry for entry in backups_dir.iterdir() if entry.is_dir() and entry.name.startswith(f"{slug}_")),
            key=lambda entry: entry.name,
            reverse=True,
        )
        removed = backups[keep:]
        for entry in removed:
            shutil.rmtree(entry, ignore_errors=True)
        return removed

    def backup_versions(self, slug: str) -> dict[str, Path]:
        """Version -> newest backup folder holding it."""
        backups_dir = self.base_dir / BACKUPS_DIR
        if not backups_dir.is_dir():
            return {}
        found: dict[str, Path] = {}
        for entry in sorted(backups_dir.iterdir(), key=lambda entry: entry.name):
            if entry.is_dir() and entry.name.startswith(f"{slug}_"):
                version = ExtensionMeta.from_directory(slug, entry, MANIFESTS[self.kind]).version
                found[version] = entry
        return found

    def list_versions(self, slug: str) -> dict[str, Any]:
        """The installed version plus every version a backup can restore, newest first."""
        current = self.get_metadata(slug).version
        versions = sorted({current, *self.backup_versions(slug)}, key=version_key, reverse=True)
        index = versions.index(current)
        return {
            "current_version": current,
            "latest_version": versions[0],
            "all_versions": versions,
            "newer_versions": versions[:index],
            "older_versions": versions[index + 1 :],
        }

    async def is_active(self, slug: str) -> bool:
        raise NotImplementedError

    async def change_version(self, slug: str, version: str) -> dict[str, Any]:
        """
        Switch ``slug`` to a version kept in its backups.

        An active extension is deactivated first and reactivated afterwards.
        The switch itself goes through ``install_from``, so the current files
        are backed up and ``on_upgrade`` or ``on_downgrade`` runs.
        """
        current = self.get_metadata(slug).version
        if version == current:
            return await self.get_state(slug)
        source = self.backup_versions(slug).get(version)
        if source is None:
            raise ExtensionError(f"Version {version} is not available", extension=slug)

        was_active = await self.is_active(slug)
        if was_active:
            await self.on_deactivate(slug)
        state = await self.install_from(slug, source)
        if was_active:
            state = await self.on_activate(slug)
        logger.info("%s %s changed from %s to %s", self.label, slug, current, version, extra={"extension": slug})
        return state

    # ── Shared transitions ────────────────────────────────────────────────────

    async def on_install(self, slug: str) -> dict[str, Any]:
        logger.info("Installing %s %s", self.label, slug, extra={"extension": slug})
        await self.run_pip_install(slug, "install")
        await self.run_migrations(slug)
        await self.call_lifecycle_hook(slug, "on_install")
        return await self.store_state(slug, {"installed_at": utcnow().isoformat(), "status": "installed"})

    async def _change_version(
        self,
        slug: str,
        old_version: str,
        new_version: str,
        direction: str,
        backup_path: Path | None = None,
    ) -> dict[str, Any]:
        action = "upgrade" if direction == "upgraded" else "downgrade"
        if backup_path is None:
            backup_path = self.create_backup(slug)
        try:
            await self.run_pip_install(slug, action)
            await self.run_migrations(slug)
            await self.call_lifecycle_hook(
                slug, f"on_{action}", old_version=old_version, new_version=new_version
            )
            state = await self.store_state(
                slug,
                {
                    f"{direction}_at": utcnow().isoformat(),
                    "version": new_version,
                    "previous_version": old_version,
                    "backup_path": str(backup_path),
                },
            )
        except Exception:
            logger.error("%s of %s %s failed, restoring backup", action.capitalize(), self.label, slug)
            self.restore_backup(slug, backup_path)
            raise

        self.cleanup_backups(slug)
        return state

    async def on_upgrade(self, slug: str, old_version: str, new_version: str) -> dict[str, Any]:
        return await self._change_version(slug, old_version, new_version, "upgraded")

    async def on_downgrade(self, slug: str, old_version: str, new_version: str) -> dict[str, Any]:
        return await self._change_version(slug, old_version, new_version, "downgraded")

    async def install_from(self, slug: str, source: Path) -> dict[str, Any]:
        """
        Copy ``source`` in as ``slug``.

        A new extension goes through ``on_install``. An existing one is
        backed up, replaced, and then upgraded or downgraded depending on
        how the manifest versions compare; a failure restores the old files.
        """
        target = self.extension_path(slug)
        if not target.exists():
            shutil.copytree(source, target)
            try:
                return await self.on_install(slug)
            except Exception:
                shutil.rmtree(target, ignore_errors=True)
                raise

        old_version = self.get_metadata(slug).version
        backup_path = self.create_backup(slug)
        shutil.rmtree(target)
        shutil.copytree(source, target)
        self.loader.invalidate(self.kind, slug)

        new_version = self.get_metadata(slug).version
        direction = "downgraded" if version_key(new_version) < version_key(old_version) else "upgraded"
        return await self._change_version(slug, old_version, new_version, direction, backup_path=backup_path)
