"""
Scheduler Service

Cron-style recurring tasks on APScheduler's AsyncIOScheduler.

    scheduler.call(cleanup, owner="my-plugin").daily_at("03:30")
    scheduler.call(sync).every_n_minutes(5).allow_overlapping()

Tasks do not overlap unless ``allow_overlapping()`` is set: each run takes a
lock stored in the ``scheduler_lock_{name}`` option, and a lock younger than
60 seconds makes other runs skip. Every run is tracked as a job of type
``scheduled_task``. Task metadata is mirrored to ``scheduler_task_{name}``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from hookcms.exceptions import ValidationError
from hookcms.hooks.registry import maybe_await
from hookcms.services.options_service import OptionsService

if TYPE_CHECKING:
    from hookcms.hooks.jobs import Jobs

logger = logging.getLogger(__name__)

LOCK_TIMEOUT_MS = 60000
LOCK_PREFIX = "scheduler_lock_"
TASK_PREFIX = "scheduler_task_"


def validate_cron(expression: str) -> None:
    try:
        CronTrigger.from_crontab(expression)
    except ValueError as e:
        raise ValidationError(f"Invalid cron expression '{expression}': {e}", field="cron") from e


class ScheduledTask:
    def __init__(self, service: SchedulerService, callback: Callable, name: str, owner: str | None = None):
        self._service = service
        self._owner = owner
        self.callback = callback
        self.task_name = name
        self.cron_expression: str | None = None
        self.without_overlapping = True

    @property
    def owner(self) -> str | None:
        return self._owner

    def _set(self, expression: str) -> ScheduledTask:
        validate_cron(expression)
        self.cron_expression = expression
        self._service._reschedule(self)
        return self

    # ── Fluent schedule ───────────────────────────────────────────────────────

    def cron(self, expression: str) -> ScheduledTask:
        return self._set(expression)

    def every_minute(self) -> ScheduledTask:
        return self._set("* * * * *")

    def every_n_minutes(self, n: int) -> ScheduledTask:
        return self._set(f"*/{n} * * * *")

    def every_five_minutes(self) -> ScheduledTask:
        return self.every_n_minutes(5)

    def every_fifteen_minutes(self) -> ScheduledTask:
        return self.every_n_minutes(15)

    def hourly(self) -> ScheduledTask:
        return self._set("0 * * * *")

    def hourly_at(self, minute: int) -> ScheduledTask:
        return self._set(f"{minute} * * * *")

    def daily(self) -> ScheduledTask:
        return self._set("0 0 * * *")

    def daily_at(self, at: str) -> ScheduledTask:
        hour, _, minute = at.partition(":")
        try:
            expression = f"{int(minute or 0)} {int(hour)} * * *"
        except ValueError as e:
            raise ValidationError(f"Invalid time '{at}', expected HH:MM", field="cron") from e
        return self._set(expression)

    def weekly(self) -> ScheduledTask:
        return self._set("0 0 * * 0")

    def monthly(self) -> ScheduledTask:
        return self._set("0 0 1 * *")

    def allow_overlapping(self) -> ScheduledTask:
        self.without_overlapping = False
        return self

    def name(self, name: str) -> ScheduledTask:
        self._service._rename(self, name)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.task_name,
            "owner": self.owner,
            "schedule": self.cron_expression,
            "without_overlapping": self.without_overlapping,
        }


class SchedulerService:
    def __init__(self, session_factory, jobs: Jobs | None = None):
        self.session_factory = session_factory
        self.jobs = jobs
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.tasks: dict[str, ScheduledTask] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def call(self, callback: Callable, name: str | None = None, owner: str | None = None) -> ScheduledTask:
        """Register ``callback``; a task with the same name is replaced."""
        name = name or f"{owner or 'core'}.{getattr(callback, '__qualname__', 'task')}"
        existing = self.tasks.get(name)
        if existing is not None and existing.owner != owner:
            raise ValidationError(f"Scheduled task '{name}' is owned by {existing.owner or 'core'}", field="name")

        task = ScheduledTask(self, callback, name, owner)
        self.tasks[name] = task
        return task

    def _rename(self, task: ScheduledTask, name: str) -> None:
        if self.tasks.get(task.task_name) is task:
            del self.tasks[task.task_name]
            self._unschedule(task.task_name)
        task.task_name = name
        self.tasks[name] = task
        self._reschedule(task)

    # ── APScheduler wiring ────────────────────────────────────────────────────

    def _reschedule(self, task: ScheduledTask) -> None:
        if not self.running or not task.cron_expression:
            return
        self._add_job(task)
        self._spawn(self._record_task(task))

    def _add_job(self, task: ScheduledTask) -> None:
        self.scheduler.add_job(
            self.run_task,
            trigger=CronTrigger.from_crontab(task.cron_expression, timezone="UTC"),
            args=[task.task_name],
            id=task.task_name,
            replace_existing=True,
        )

    def _unschedule(self, name: str) -> None:
        if self.running and self.scheduler.get_job(name):
            self.scheduler.remove_job(name)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record_task(self, task: ScheduledTask) -> None:
        async with self.session_factory() as db:
            await OptionsService.set_option(
                db, f"{TASK_PREFIX}{task.task_name}", {**task.to_dict(), "registered_at": int(time.time() * 1000)}, autoload=False
            )

    async def start(self) -> None:
        if self.running:
            return
        self.scheduler.start()
        for task in list(self.tasks.values()):
            if not task.cron_expression:
                logger.warning("No schedule defined for task %s, skipping", task.task_name)
                continue
            try:
                self._add_job(task)
                await self._record_task(task)
            except Exception:
                logger.exception("Failed to schedule task %s", task.task_name)
        logger.info("Scheduler started with %d task(s)", len(self.scheduler.get_jobs()))

    async def stop(self) -> None:
        if self.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        for task in list(self._pending):
            task.cancel()

    async def teardown_tasks_by_owner(self, owner: str) -> list[str]:
        removed = [name for name, task in self.tasks.items() if task.owner == owner]
        for name in removed:
            del self.tasks[name]
            self._unschedule(name)
        if removed:
            async with self.session_factory() as db:
                for name in removed:
                    await OptionsService.delete_option(db, f"{TASK_PREFIX}{name}", commit=False)
                await db.commit()
            logger.info("Removed %d scheduled task(s) owned by %s", len(removed), owner)
        return removed

    def get_tasks(self) -> list[dict[str, Any]]:
        return [task.to_dict() for task in self.tasks.values()]

    def get_tasks_by_owner(self, owner: str) -> list[dict[str, Any]]:
        return [task.to_dict() for task in self.tasks.values() if task.owner == owner]

    # ── Execution ─────────────────────────────────────────────────────────────

    async def _acquire_lock(self, task: ScheduledTask) -> bool:
        lock_name = f"{LOCK_PREFIX}{task.task_name}"
        now = int(time.time() * 1000)
        async with self.session_factory() as db:
            lock = await OptionsService.get_option(db, lock_name)
            if task.without_overlapping and isinstance(lock, dict) and now - int(lock.get("locked_at", 0)) < LOCK_TIMEOUT_MS:
                return False
            await OptionsService.set_option(db, lock_name, {"locked_at": now, "worker_pid": os.getpid()}, autoload=False)
        return True

    async def _release_lock(self, task: ScheduledTask) -> None:
        async with self.session_factory() as db:
            await OptionsService.delete_option(db, f"{LOCK_PREFIX}{task.task_name}")

    async def run_task(self, name: str) -> bool:
        """Run a task now. Returns False if it was skipped or is unknown."""
        task = self.tasks.get(name)
        if task is None:
            return False
        if not await self._acquire_lock(task):
            logger.info("Task %s is already running, skipping", name)
            return False

        job = None
        if self.jobs is not None:
            job = await self.jobs.create_job(
                name=f"Scheduled: {name}",
                job_type="scheduled_task",
                metadata={"task_name": name},
                source=task.owner or "scheduler",
            )
            await job.start()

        try:
            logger.info("Executing scheduled task %s", name)
            await maybe_await(task.callback())
        except Exception as e:
            logger.exception("Scheduled task %s failed", name)
            if job is not None:
                await job.fail(str(e))
        else:
            if job is not None:
                await job.complete()
        finally:
            await self._release_lock(task)
        return True


def register_core_tasks(scheduler: SchedulerService) -> None:
    """Daily housekeeping: old jobs, expired tokens and reset tokens."""
    from hookcms.services.auth_service import AuthService
    from hookcms.services.password_reset_service import PasswordResetService

    async def cleanup() -> None:
        if scheduler.jobs is not None:
            await scheduler.jobs.cleanup_old_jobs()
        async with scheduler.session_factory() as db:
            await AuthService(db).purge_expired_tokens()
            await db.commit()
            await PasswordResetService.clear_expired_tokens(db)

    scheduler.call(cleanup, name="core.cleanup").daily_at("03:00")
