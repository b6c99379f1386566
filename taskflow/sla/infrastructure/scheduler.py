"""
Escalation Scheduler
====================

Drives the escalation engine on a fixed interval with APScheduler, and
provides the APScheduler-backed timer backend for reminders.

Passes never overlap: a tick that finds a pass in progress is skipped
and counted, not queued. Passes run as their own asyncio tasks so that
shutting the interval job down never cancels one mid-flight.
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from taskflow.config import SchedulerState
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.shared.infrastructure.metrics import OTLPMetricsExporter
from taskflow.sla.application.services import EscalationEngine, IClock, ITimerBackend
from taskflow.sla.domain import RunRecord

logger = get_logger(__name__)

PASS_JOB_ID = "escalation_pass"


class EscalationScheduler:
    """
    Lifecycle wrapper running escalation passes on an interval.

    States are STOPPED and RUNNING; start and stop are idempotent.
    """

    def __init__(
        self,
        engine: EscalationEngine,
        clock: IClock,
        interval_seconds: int = 900,
        history_size: int = 100,
        recent_runs: int = 10,
        metrics: Optional[OTLPMetricsExporter] = None
    ):
        self._engine = engine
        self._clock = clock
        self.interval_seconds = interval_seconds
        self._recent_runs = recent_runs
        self._metrics = metrics

        self._state = SchedulerState.STOPPED
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._history: Deque[RunRecord] = deque(maxlen=history_size)
        self._total_runs = 0
        self._skipped_ticks = 0
        self._pass_in_progress = False
        self._inflight: Optional[asyncio.Task] = None
        self._last_error: Optional[str] = None
        self._last_error_at: Optional[datetime] = None

    async def start(self) -> bool:
        """
        Start the interval job and run a startup pass immediately.

        Returns:
            False if the scheduler was already running
        """
        if self._state == SchedulerState.RUNNING:
            logger.info("Escalation scheduler already running")
            return False

        self._state = SchedulerState.RUNNING
        self._begin_pass("startup")

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            self.tick,
            "interval",
            seconds=self.interval_seconds,
            id=PASS_JOB_ID,
            name="Escalation Pass",
            misfire_grace_time=60,
            coalesce=True,
            max_instances=1,
            replace_existing=True
        )
        self._scheduler.start()

        logger.info(
            "Escalation scheduler started",
            extra={"interval_seconds": self.interval_seconds}
        )
        return True

    async def stop(self) -> bool:
        """
        Stop the interval job, then wait for any in-flight pass to finish.

        Returns:
            False if the scheduler was already stopped
        """
        if self._state == SchedulerState.STOPPED:
            logger.info("Escalation scheduler already stopped")
            return False

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.info("Waiting for in-flight escalation pass before stopping")
            await inflight

        self._state = SchedulerState.STOPPED
        logger.info("Escalation scheduler stopped")
        return True

    async def tick(self) -> None:
        """Interval job handler."""
        if self._state != SchedulerState.RUNNING:
            return
        try:
            self._begin_pass("scheduled")
        except Exception as e:
            logger.error(
                "Escalation tick failed",
                extra={"error": str(e), "error_type": type(e).__name__}
            )

    async def trigger_now(self) -> Optional[RunRecord]:
        """
        Run a manual pass under the same overlap guard.

        Returns:
            The run record, or None if a pass was already in progress or failed
        """
        task = self._begin_pass("manual")
        if task is None:
            return None
        return await task

    def _begin_pass(self, trigger: str) -> Optional[asyncio.Task]:
        # Check and set with no await in between.
        if self._pass_in_progress:
            self._skipped_ticks += 1
            logger.info(
                "Escalation pass already in progress, skipping",
                extra={"trigger": trigger, "skipped_ticks": self._skipped_ticks}
            )
            return None

        self._pass_in_progress = True
        self._inflight = asyncio.create_task(self._run_pass(trigger))
        return self._inflight

    async def _run_pass(self, trigger: str) -> Optional[RunRecord]:
        # The guard stays set until the record and metrics are written.
        try:
            return await self._execute_pass(trigger)
        finally:
            self._pass_in_progress = False

    async def _execute_pass(self, trigger: str) -> Optional[RunRecord]:
        started = time.perf_counter()
        try:
            result = await self._engine.run_pass(self._clock.now())
        except Exception as e:
            self._last_error = str(e) or type(e).__name__
            self._last_error_at = self._clock.now()
            logger.error(
                "Escalation pass failed",
                extra={"trigger": trigger, "error": self._last_error, "error_type": type(e).__name__}
            )
            return None

        record = RunRecord(
            timestamp=result.started_at,
            trigger=trigger,
            checked=result.checked,
            escalated=result.total_escalations,
            failed=len(result.failures),
            duration_ms=int((time.perf_counter() - started) * 1000),
            high_volume=result.high_volume,
        )
        self._history.append(record)
        self._total_runs += 1

        if self._metrics is not None and self._metrics.is_enabled():
            await self._metrics.export_gauges(
                {
                    "escalation_pass_duration_ms": record.duration_ms,
                    "escalation_items_checked": record.checked,
                    "escalations_fired": record.escalated,
                    "escalation_failures": record.failed,
                },
                attributes={"trigger": trigger},
            )

        return record

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._state == SchedulerState.RUNNING

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def pass_in_progress(self) -> bool:
        return self._pass_in_progress

    @property
    def last_run(self) -> Optional[RunRecord]:
        return self._history[-1] if self._history else None

    def history(self) -> list:
        """All retained run records, oldest first."""
        return list(self._history)

    def status(self) -> dict:
        """Scheduler status with rolling figures over the recent runs."""
        recent = list(self._history)[-self._recent_runs:]
        avg_duration = (
            sum(r.duration_ms for r in recent) / len(recent) if recent else 0.0
        )
        return {
            "is_running": self.is_running,
            "state": self._state.value,
            "interval_seconds": self.interval_seconds,
            "last_run": recent[-1].to_dict() if recent else None,
            "total_runs": self._total_runs,
            "recent_runs": [r.to_dict() for r in reversed(recent)],
            "avg_duration_ms": round(avg_duration, 2),
            "total_escalations": sum(r.escalated for r in recent),
            "skipped_ticks": self._skipped_ticks,
            "pass_in_progress": self._pass_in_progress,
            "last_error": self._last_error,
            "last_error_at": self._last_error_at.isoformat() if self._last_error_at else None,
        }


class APSchedulerTimerBackend(ITimerBackend):
    """One-shot timers as APScheduler date jobs keyed by item id."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)

    @staticmethod
    def _job_id(key: str) -> str:
        return f"reminder:{key}"

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def schedule(self, key: str, fire_at: datetime, callback) -> None:
        self._scheduler.add_job(
            callback,
            "date",
            run_date=fire_at,
            id=self._job_id(key),
            name=f"Reminder {key}",
            misfire_grace_time=300,
            replace_existing=True
        )

    def cancel(self, key: str) -> None:
        try:
            self._scheduler.remove_job(self._job_id(key))
        except JobLookupError:
            pass

    def cancel_all(self) -> None:
        self._scheduler.remove_all_jobs()
