"""Unit tests for SLAPauseService and EscalationService."""

from datetime import timedelta

import pytest

from taskflow.config import (
    EscalationStatus,
    ItemKind,
    PauseReason,
    SLAStatus,
    TriggerType,
)
from taskflow.core import (
    InvalidStateTransition,
    PermissionDeniedException,
    ResourceNotFoundException,
)
from taskflow.sla.application import EscalationService
from taskflow.sla.domain import EscalationLog
from tests.helpers import DEFAULT_START, make_item

T0 = DEFAULT_START


class TestSLAPauseService:
    """Pausing and resuming through the item store."""

    @pytest.fixture(autouse=True)
    def _item(self, item_repo) -> None:
        item_repo.add(make_item(sla_started_at=T0, sla_deadline=T0 + timedelta(hours=4)))

    @pytest.mark.asyncio
    async def test_pause_persists_and_cancels_reminder(self, pause_service, item_repo, reminders, clock) -> None:
        reminders.schedule_for_item(await item_repo.get("TASK-1"))
        clock.advance(hours=1)

        reading = await pause_service.pause("TASK-1", PauseReason.CUSTOMER_VISIT)

        stored = await item_repo.get("TASK-1")
        assert reading.status == SLAStatus.PAUSED
        assert stored.pause_started_at == clock.now()
        assert stored.pause_reason == PauseReason.CUSTOMER_VISIT
        assert reminders.get("TASK-1") is None

    @pytest.mark.asyncio
    async def test_resume_folds_pause_and_reschedules(self, pause_service, item_repo, reminders, clock) -> None:
        clock.advance(hours=1)
        await pause_service.pause("TASK-1")
        clock.advance(hours=2)

        reading = await pause_service.resume("TASK-1")

        stored = await item_repo.get("TASK-1")
        assert stored.total_paused == timedelta(hours=2)
        assert not stored.is_paused
        assert reading.remaining == timedelta(hours=3)
        assert reminders.get("TASK-1").fire_at == T0 + timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_clock_frozen_while_paused(self, pause_service, clock) -> None:
        await pause_service.pause("TASK-1")
        before = await pause_service.read("TASK-1")
        clock.advance(hours=6)
        after = await pause_service.read("TASK-1")

        assert before.remaining == after.remaining == timedelta(hours=4)

    @pytest.mark.asyncio
    async def test_double_pause_rejected(self, pause_service) -> None:
        await pause_service.pause("TASK-1")

        with pytest.raises(InvalidStateTransition):
            await pause_service.pause("TASK-1")

    @pytest.mark.asyncio
    async def test_resume_unpaused_rejected(self, pause_service) -> None:
        with pytest.raises(InvalidStateTransition):
            await pause_service.resume("TASK-1")

    @pytest.mark.asyncio
    async def test_unknown_item(self, pause_service) -> None:
        with pytest.raises(ResourceNotFoundException):
            await pause_service.read("TASK-404")

    @pytest.mark.asyncio
    async def test_sync_cancels_reminder_of_closed_item(self, pause_service, item_repo, reminders) -> None:
        reminders.schedule_for_item(await item_repo.get("TASK-1"))
        item_repo.add(
            make_item(sla_started_at=T0, sla_deadline=T0 + timedelta(hours=4), lifecycle_status="DONE")
        )

        entry = await pause_service.sync_reminder("TASK-1")

        assert entry is None
        assert reminders.get("TASK-1") is None

    @pytest.mark.asyncio
    async def test_sync_follows_moved_deadline(self, pause_service, item_repo, reminders) -> None:
        reminders.schedule_for_item(await item_repo.get("TASK-1"))
        item_repo.add(make_item(sla_started_at=T0, sla_deadline=T0 + timedelta(hours=8)))

        entry = await pause_service.sync_reminder("TASK-1")

        assert entry.fire_at == T0 + timedelta(hours=7)
        assert reminders.get("TASK-1") == entry

    @pytest.mark.asyncio
    async def test_sync_unknown_item(self, pause_service) -> None:
        with pytest.raises(ResourceNotFoundException):
            await pause_service.sync_reminder("TASK-404")


class TestEscalationService:
    """Recipient-side escalation lifecycle."""

    @pytest.fixture
    def service(self, log_repo, clock) -> EscalationService:
        return EscalationService(log_repo, clock)

    @pytest.fixture
    async def log_id(self, log_repo) -> str:
        log = await log_repo.append(EscalationLog(
            id=None,
            item_id="TASK-1",
            item_kind=ItemKind.TASK,
            rule_id="task-overdue",
            trigger_type=TriggerType.OVERDUE_BY_DURATION,
            recipient_id="user-leader",
            reason="OVERDUE_BY_DURATION",
            fired_at=T0,
        ))
        return log.id

    @pytest.mark.asyncio
    async def test_acknowledge(self, service, log_id, clock) -> None:
        clock.advance(minutes=5)

        log = await service.acknowledge(log_id, "user-leader")

        assert log.status == EscalationStatus.ACKNOWLEDGED
        assert log.acknowledged_at == clock.now()
        assert log.is_unresolved

    @pytest.mark.asyncio
    async def test_acknowledge_twice_is_noop(self, service, log_id, clock) -> None:
        first = await service.acknowledge(log_id, "user-leader")
        clock.advance(minutes=5)
        second = await service.acknowledge(log_id, "user-leader")

        assert second.acknowledged_at == first.acknowledged_at

    @pytest.mark.asyncio
    async def test_only_recipient_may_act(self, service, log_id) -> None:
        with pytest.raises(PermissionDeniedException):
            await service.acknowledge(log_id, "user-assignee")
        with pytest.raises(PermissionDeniedException):
            await service.resolve(log_id, "user-assignee")

    @pytest.mark.asyncio
    async def test_resolve_with_notes(self, service, log_id) -> None:
        log = await service.resolve(log_id, "user-leader", "Reassigned to on-call")

        assert log.status == EscalationStatus.RESOLVED
        assert log.resolution_note == "Reassigned to on-call"

    @pytest.mark.asyncio
    async def test_resolved_escalation_is_final(self, service, log_id) -> None:
        await service.resolve(log_id, "user-leader")

        with pytest.raises(InvalidStateTransition):
            await service.resolve(log_id, "user-leader")
        with pytest.raises(InvalidStateTransition):
            await service.acknowledge(log_id, "user-leader")

    @pytest.mark.asyncio
    async def test_unknown_escalation(self, service) -> None:
        with pytest.raises(ResourceNotFoundException):
            await service.acknowledge("missing", "user-leader")

    @pytest.mark.asyncio
    async def test_active_and_stats(self, service, log_id) -> None:
        await service.acknowledge(log_id, "user-leader")

        active = await service.active_for("user-leader")
        stats = await service.stats("user-leader")

        assert [log.id for log in active] == [log_id]
        assert stats == {"total": 1, "pending": 0, "acknowledged": 1, "resolved": 0}
        assert await service.active_for("user-admin") == []
