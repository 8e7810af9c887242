"""
Tests for the cron-style task scheduler
"""

import time

import pytest

from hookcms.exceptions import ValidationError
from hookcms.services.options_service import OptionsService
from hookcms.services.scheduler import SchedulerService, register_core_tasks


@pytest.fixture
async def scheduler(context, db):
    service = context.scheduler
    yield service
    await service.stop()


def noop():
    return None


class TestSchedule:
    @pytest.mark.parametrize(
        "method, args, expected",
        [
            ("every_minute", (), "* * * * *"),
            ("every_n_minutes", (10,), "*/10 * * * *"),
            ("every_five_minutes", (), "*/5 * * * *"),
            ("hourly", (), "0 * * * *"),
            ("hourly_at", (15,), "15 * * * *"),
            ("daily", (), "0 0 * * *"),
            ("daily_at", ("03:30",), "30 3 * * *"),
            ("weekly", (), "0 0 * * 0"),
            ("monthly", (), "0 0 1 * *"),
        ],
    )
    def test_fluent_helpers(self, scheduler, method, args, expected):
        task = getattr(scheduler.call(noop, name="t"), method)(*args)
        assert task.cron_expression == expected

    def test_custom_cron(self, scheduler):
        assert scheduler.call(noop, name="t").cron("5 4 * * 1-5").cron_expression == "5 4 * * 1-5"

    def test_invalid_cron(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.call(noop, name="t").cron("not a cron")

    @pytest.mark.parametrize(
        "method, arg",
        [("every_n_minutes", 0), ("hourly_at", 75), ("daily_at", "25:00"), ("daily_at", "noon")],
    )
    def test_invalid_fluent_schedules(self, scheduler, method, arg):
        task = scheduler.call(noop, name="t")

        with pytest.raises(ValidationError):
            getattr(task, method)(arg)
        assert task.cron_expression is None

    def test_default_name_and_to_dict(self, scheduler):
        task = scheduler.call(noop, owner="alpha").daily().allow_overlapping()

        assert task.to_dict() == {
            "name": "alpha.noop",
            "owner": "alpha",
            "schedule": "0 0 * * *",
            "without_overlapping": False,
        }

    def test_rename(self, scheduler):
        scheduler.call(noop, name="old").hourly().name("new")

        assert [task["name"] for task in scheduler.get_tasks()] == ["new"]


class TestRegistration:
    def test_same_owner_replaces(self, scheduler):
        scheduler.call(noop, name="sync", owner="alpha").hourly()
        scheduler.call(noop, name="sync", owner="alpha").daily()

        assert scheduler.get_tasks() == [
            {"name": "sync", "owner": "alpha", "schedule": "0 0 * * *", "without_overlapping": True}
        ]

    def test_other_owner_is_rejected(self, scheduler):
        scheduler.call(noop, name="sync", owner="alpha")

        with pytest.raises(ValidationError):
            scheduler.call(noop, name="sync", owner="beta")

    async def test_teardown_by_owner(self, scheduler):
        scheduler.call(noop, name="a", owner="alpha").hourly()
        scheduler.call(noop, name="b", owner="beta").hourly()

        assert await scheduler.teardown_tasks_by_owner("alpha") == ["a"]
        assert scheduler.get_tasks_by_owner("alpha") == []
        assert [task["name"] for task in scheduler.get_tasks_by_owner("beta")] == ["b"]

    def test_core_tasks(self, scheduler):
        register_core_tasks(scheduler)
        assert scheduler.get_tasks() == [
            {"name": "core.cleanup", "owner": None, "schedule": "0 3 * * *", "without_overlapping": True}
        ]


class TestExecution:
    async def test_run_task_tracks_a_job(self, scheduler, context):
        calls = []

        async def work():
            calls.append(1)

        scheduler.call(work, name="work", owner="alpha").hourly()

        assert await scheduler.run_task("work") is True

        assert calls == [1]
        [job] = await context.jobs.get_jobs(job_type="scheduled_task")
        assert (job["status"], job["source"], job["metadata"]) == ("completed", "alpha", {"task_name": "work"})

    async def test_failing_task_fails_its_job(self, scheduler, context):
        def broken():
            raise RuntimeError("nope")

        scheduler.call(broken, name="broken").hourly()

        assert await scheduler.run_task("broken") is True

        [job] = await context.jobs.get_jobs(job_type="scheduled_task")
        assert job["status"] == "failed"
        assert job["error_message"] == "nope"

    async def test_lock_prevents_overlap(self, scheduler, db):
        calls = []
        scheduler.call(lambda: calls.append(1), name="locked").hourly()
        await OptionsService.set_option(db, "scheduler_lock_locked", {"locked_at": int(time.time() * 1000)})

        assert await scheduler.run_task("locked") is False
        assert calls == []

    async def test_stale_lock_is_ignored(self, scheduler, db):
        calls = []
        scheduler.call(lambda: calls.append(1), name="stale").hourly()
        await OptionsService.set_option(db, "scheduler_lock_stale", {"locked_at": 0})

        assert await scheduler.run_task("stale") is True
        assert calls == [1]
        assert await OptionsService.get_option(db, "scheduler_lock_stale") is None

    async def test_unknown_task(self, scheduler):
        assert await scheduler.run_task("ghost") is False

    async def test_start_schedules_and_records_tasks(self, session_factory, db):
        service = SchedulerService(session_factory)
        service.call(noop, name="nightly").daily_at("02:15")
        service.call(noop, name="unscheduled")

        await service.start()
        try:
            assert service.running
            assert service.scheduler.get_job("nightly") is not None
            assert service.scheduler.get_job("unscheduled") is None
            recorded = await OptionsService.get_option(db, "scheduler_task_nightly")
            assert recorded["schedule"] == "15 2 * * *"
        finally:
            await service.stop()

    async def test_one_broken_task_does_not_stop_start(self, session_factory, db, caplog):
        service = SchedulerService(session_factory)
        service.call(noop, name="broken").cron_expression = "99 * * * *"
        service.call(noop, name="healthy").hourly()

        await service.start()
        try:
            assert service.running
            assert service.scheduler.get_job("broken") is None
            assert service.scheduler.get_job("healthy") is not None
            assert await OptionsService.get_option(db, "scheduler_task_healthy") is not None
            assert "Failed to schedule task broken" in caplog.text
        finally:
            await service.stop()

    async def test_invalid_reschedule_after_start_keeps_job(self, session_factory):
        service = SchedulerService(session_factory)
        task = service.call(noop, name="nightly").daily()

        await service.start()
        try:
            with pytest.raises(ValidationError):
                task.hourly_at(60)
            assert task.cron_expression == "0 0 * * *"
            assert service.scheduler.get_job("nightly") is not None
        finally:
            await service.stop()
