"""Unit tests for EscalationScheduler and the APScheduler timer backend."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from taskflow.config import SchedulerState
from taskflow.sla.infrastructure.scheduler import (
    PASS_JOB_ID,
    APSchedulerTimerBackend,
    EscalationScheduler,
)
from tests.helpers import GatedEngine, GatedMetrics


@pytest.fixture
def gated() -> GatedEngine:
    return GatedEngine()


@pytest.fixture
def scheduler(gated, clock) -> EscalationScheduler:
    return EscalationScheduler(gated, clock, interval_seconds=3600, history_size=3, recent_runs=2)


class TestLifecycle:
    """Start and stop."""

    @pytest.mark.asyncio
    async def test_start_runs_startup_pass(self, scheduler, gated) -> None:
        assert await scheduler.start() is True
        await asyncio.wait_for(gated.started.wait(), timeout=1)

        assert scheduler.state == SchedulerState.RUNNING
        assert scheduler.pass_in_progress

        gated.release.set()
        await scheduler.stop()
        assert scheduler.history()[0].trigger == "startup"

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, scheduler, gated) -> None:
        gated.release.set()

        assert await scheduler.start() is True
        assert await scheduler.start() is False
        assert await scheduler.stop() is True
        assert await scheduler.stop() is False
        assert scheduler.state == SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_stop_waits_for_inflight_pass(self, scheduler, gated) -> None:
        await scheduler.start()
        await asyncio.wait_for(gated.started.wait(), timeout=1)

        stopping = asyncio.create_task(scheduler.stop())
        await asyncio.sleep(0.01)

        assert not stopping.done()
        assert scheduler.state == SchedulerState.RUNNING

        gated.release.set()
        assert await asyncio.wait_for(stopping, timeout=1) is True
        assert scheduler.state == SchedulerState.STOPPED
        assert scheduler.last_run is not None
        assert not scheduler.pass_in_progress

    @pytest.mark.asyncio
    async def test_tick_ignored_when_stopped(self, scheduler, gated) -> None:
        await scheduler.tick()

        assert gated.calls == 0


class TestOverlap:
    """Passes never overlap."""

    @pytest.mark.asyncio
    async def test_tick_during_pass_is_skipped(self, scheduler, gated) -> None:
        await scheduler.start()
        await asyncio.wait_for(gated.started.wait(), timeout=1)

        await scheduler.tick()
        await scheduler.tick()

        assert gated.calls == 1
        assert scheduler.status()["skipped_ticks"] == 2

        gated.release.set()
        await scheduler.stop()
        assert gated.max_concurrent == 1

    @pytest.mark.asyncio
    async def test_manual_trigger_during_pass_returns_none(self, scheduler, gated) -> None:
        await scheduler.start()
        await asyncio.wait_for(gated.started.wait(), timeout=1)

        assert await scheduler.trigger_now() is None

        gated.release.set()
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_guard_held_until_metrics_exported(self, gated, clock) -> None:
        metrics = GatedMetrics()
        scheduler = EscalationScheduler(gated, clock, interval_seconds=3600, metrics=metrics)
        gated.release.set()

        first = asyncio.create_task(scheduler.trigger_now())
        await asyncio.wait_for(metrics.started.wait(), timeout=1)

        assert scheduler.pass_in_progress
        assert await scheduler.trigger_now() is None

        metrics.release.set()
        record = await asyncio.wait_for(first, timeout=1)

        assert record.checked == 3
        assert not scheduler.pass_in_progress
        assert gated.calls == 1
        assert metrics.exported[0]["escalation_items_checked"] == 3

    @pytest.mark.asyncio
    async def test_manual_trigger_while_stopped(self, scheduler, gated) -> None:
        gated.release.set()

        record = await scheduler.trigger_now()

        assert record.trigger == "manual"
        assert record.checked == 3
        assert scheduler.state == SchedulerState.STOPPED


class TestHistory:
    """Run history and status."""

    @pytest.mark.asyncio
    async def test_history_is_bounded(self, scheduler, gated) -> None:
        gated.release.set()
        for _ in range(5):
            await scheduler.trigger_now()

        assert len(scheduler.history()) == 3
        assert scheduler.status()["total_runs"] == 5

    @pytest.mark.asyncio
    async def test_status_reports_recent_runs(self, scheduler, gated, clock) -> None:
        gated.release.set()
        await scheduler.trigger_now()
        clock.advance(minutes=15)
        await scheduler.trigger_now()
        clock.advance(minutes=15)
        await scheduler.trigger_now()

        status = scheduler.status()

        assert status["state"] == "STOPPED"
        assert status["interval_seconds"] == 3600
        assert len(status["recent_runs"]) == 2
        assert status["recent_runs"][0]["timestamp"] == clock.now().isoformat()
        assert status["last_run"]["timestamp"] == clock.now().isoformat()
        assert status["pass_in_progress"] is False
        assert status["last_error"] is None

    @pytest.mark.asyncio
    async def test_failed_pass_recorded_as_error(self, scheduler, gated, clock) -> None:
        gated.fail_with = ConnectionError("item store unreachable")
        gated.release.set()

        assert await scheduler.trigger_now() is None

        status = scheduler.status()
        assert status["last_error"] == "item store unreachable"
        assert status["last_error_at"] == clock.now().isoformat()
        assert scheduler.history() == []
        assert not scheduler.pass_in_progress


class TestIntervalJob:
    """APScheduler wiring."""

    @pytest.mark.asyncio
    async def test_interval_job_registered(self, scheduler, gated) -> None:
        gated.release.set()
        await scheduler.start()

        job = scheduler._scheduler.get_job(PASS_JOB_ID)

        assert job is not None
        assert job.trigger.interval == timedelta(seconds=3600)
        await scheduler.stop()
        assert scheduler._scheduler is None


class TestAPSchedulerTimerBackend:
    """Reminder timers as date jobs."""

    @pytest.mark.asyncio
    async def test_schedule_replace_and_cancel(self) -> None:
        now = datetime.now(timezone.utc)
        backend = APSchedulerTimerBackend()
        backend.start()

        async def callback():
            return None

        try:
            backend.schedule("TASK-1", now + timedelta(hours=3), callback)
            backend.schedule("TASK-1", now + timedelta(hours=5), callback)

            jobs = backend._scheduler.get_jobs()
            assert [job.id for job in jobs] == ["reminder:TASK-1"]

            backend.cancel("TASK-1")
            backend.cancel("TASK-1")
            assert backend._scheduler.get_jobs() == []
        finally:
            backend.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_all(self) -> None:
        now = datetime.now(timezone.utc)
        backend = APSchedulerTimerBackend()
        backend.start()

        async def callback():
            return None

        try:
            backend.schedule("TASK-1", now + timedelta(hours=3), callback)
            backend.schedule("TASK-2", now + timedelta(hours=4), callback)
            backend.cancel_all()

            assert backend._scheduler.get_jobs() == []
        finally:
            backend.shutdown()
