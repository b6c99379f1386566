"""Unit tests for ReminderRegistry."""

from datetime import timedelta

import pytest

from taskflow.config import ItemKind, PauseReason, SLAStatus
from taskflow.sla.application import ReminderRegistry
from taskflow.sla.domain import ReminderPayload
from tests.helpers import ACTIVE_STATUSES, DEFAULT_START, FailingItemRepository, FakeTimerBackend, make_item

T0 = DEFAULT_START


def item_due_in(hours: float, item_id: str = "TASK-1", **overrides):
    return make_item(
        item_id,
        sla_started_at=T0,
        sla_deadline=T0 + timedelta(hours=hours),
        **overrides,
    )


def payload(item_id: str = "TASK-1"):
    return ReminderPayload(
        item_id=item_id,
        item_kind=ItemKind.TASK,
        recipient_id="user-assignee",
        deadline=T0 + timedelta(hours=4),
    )


class TestSchedule:
    """Scheduling and cancelling reminders."""

    def test_schedule_registers_timer(self, reminders, timer_backend) -> None:
        entry = reminders.schedule("TASK-1", T0 + timedelta(hours=3), payload())

        assert reminders.get("TASK-1") == entry
        assert timer_backend.fire_at("TASK-1") == T0 + timedelta(hours=3)

    def test_reschedule_replaces_entry(self, reminders, timer_backend) -> None:
        first = reminders.schedule("TASK-1", T0 + timedelta(hours=3), payload())
        second = reminders.schedule("TASK-1", T0 + timedelta(hours=5), payload())

        assert first.token != second.token
        assert len(reminders.pending()) == 1
        assert reminders.get("TASK-1").fire_at == T0 + timedelta(hours=5)
        assert timer_backend.fire_at("TASK-1") == T0 + timedelta(hours=5)

    def test_cancel(self, reminders, timer_backend) -> None:
        reminders.schedule("TASK-1", T0 + timedelta(hours=3), payload())

        assert reminders.cancel("TASK-1") is True
        assert reminders.cancel("TASK-1") is False
        assert reminders.get("TASK-1") is None
        assert "TASK-1" not in timer_backend.timers

    def test_pending_ordered_by_fire_time(self, reminders) -> None:
        reminders.schedule("TASK-late", T0 + timedelta(hours=9), payload("TASK-late"))
        reminders.schedule("TASK-soon", T0 + timedelta(hours=1), payload("TASK-soon"))

        assert [e.item_id for e in reminders.pending()] == ["TASK-soon", "TASK-late"]
        assert reminders.stats()["next_fire_at"] == (T0 + timedelta(hours=1)).isoformat()


class TestScheduleForItem:
    """Reminder times derived from the item clock."""

    def test_fires_lead_before_deadline(self, reminders) -> None:
        entry = reminders.schedule_for_item(item_due_in(4))

        assert entry.fire_at == T0 + timedelta(hours=3)
        assert entry.payload.deadline == T0 + timedelta(hours=4)
        assert entry.payload.recipient_id == "user-assignee"
        assert entry.payload.reason == "DEADLINE_APPROACHING"

    def test_accounts_for_paused_time(self, reminders) -> None:
        entry = reminders.schedule_for_item(item_due_in(4, total_paused=timedelta(hours=2)))

        assert entry.fire_at == T0 + timedelta(hours=5)

    def test_past_reminder_time_not_scheduled(self, reminders) -> None:
        assert reminders.schedule_for_item(item_due_in(0.5)) is None

    def test_paused_item_not_scheduled(self, reminders) -> None:
        item = item_due_in(
            4,
            sla_status=SLAStatus.PAUSED,
            pause_started_at=T0,
            pause_reason=PauseReason.MEETING,
        )

        assert reminders.schedule_for_item(item) is None

    def test_inactive_item_not_scheduled(self, reminders) -> None:
        assert reminders.schedule_for_item(item_due_in(4, lifecycle_status="DONE")) is None

    def test_item_without_deadline_not_scheduled(self, reminders) -> None:
        assert reminders.schedule_for_item(make_item()) is None

    def test_sync_cancels_when_no_longer_eligible(self, reminders) -> None:
        item = item_due_in(4)
        reminders.schedule_for_item(item)

        reminders.sync_item(item_due_in(4, lifecycle_status="DONE"))

        assert reminders.get("TASK-1") is None


class TestReload:
    """Rebuilding reminders from the item store."""

    def test_reload_replaces_everything(self, reminders, timer_backend) -> None:
        reminders.schedule("TASK-gone", T0 + timedelta(hours=1), payload("TASK-gone"))

        scheduled = reminders.reload_all([item_due_in(4, "TASK-1"), item_due_in(0.5, "TASK-2")])

        assert scheduled == 1
        assert [e.item_id for e in reminders.pending()] == ["TASK-1"]
        assert timer_backend.cancel_all_calls == 1
        assert "TASK-gone" not in timer_backend.timers
        assert reminders.stats()["last_reload_at"] == T0.isoformat()

    def test_restart_yields_same_schedule(self, clock, rule_repo, dispatcher) -> None:
        items = [item_due_in(4, "TASK-1"), item_due_in(8, "TASK-2"), item_due_in(2, "TASK-3")]

        before = ReminderRegistry(FakeTimerBackend(), clock, rule_repo, dispatcher.dispatch_reminder)
        for item in items:
            before.schedule_for_item(item)

        after = ReminderRegistry(FakeTimerBackend(), clock, rule_repo, dispatcher.dispatch_reminder)
        after.reload_all(items)

        assert [(e.item_id, e.fire_at, e.payload) for e in before.pending()] == [
            (e.item_id, e.fire_at, e.payload) for e in after.pending()
        ]


class TestFire:
    """Timer firing."""

    @pytest.mark.asyncio
    async def test_fire_delivers_and_removes(self, reminders, timer_backend, dispatcher, clock) -> None:
        reminders.schedule_for_item(item_due_in(4))
        clock.advance(hours=3)

        fired = await timer_backend.fire_due(clock.now())

        assert fired == 1
        assert reminders.get("TASK-1") is None
        event = dispatcher.reminders[0]
        assert event.item_id == "TASK-1"
        assert event.fire_at == T0 + timedelta(hours=3)
        assert event.fired_at == clock.now()
        assert event.to_dict()["event"] == "reminder"
        assert reminders.stats()["fired"] == 1

    @pytest.mark.asyncio
    async def test_callback_failure_still_removes_entry(self, reminders, timer_backend, dispatcher) -> None:
        dispatcher.fail_reminders = True
        reminders.schedule_for_item(item_due_in(4))

        await timer_backend.fire("TASK-1")

        assert reminders.get("TASK-1") is None
        assert reminders.stats()["callback_failures"] == 1

    @pytest.mark.asyncio
    async def test_stale_timer_ignored(self, reminders, timer_backend, dispatcher) -> None:
        reminders.schedule("TASK-1", T0 + timedelta(hours=3), payload())
        _, stale_callback = timer_backend.timers["TASK-1"]
        reminders.schedule("TASK-1", T0 + timedelta(hours=5), payload())

        await stale_callback()

        assert dispatcher.reminders == []
        assert reminders.get("TASK-1").fire_at == T0 + timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_cancelled_timer_ignored(self, reminders, timer_backend, dispatcher) -> None:
        reminders.schedule("TASK-1", T0 + timedelta(hours=3), payload())
        _, callback = timer_backend.timers["TASK-1"]
        reminders.cancel("TASK-1")

        await callback()

        assert dispatcher.reminders == []
        assert reminders.stats()["fired"] == 0


@pytest.fixture
def checked_reminders(timer_backend, clock, rule_repo, dispatcher, item_repo) -> ReminderRegistry:
    return ReminderRegistry(
        timer_backend,
        clock,
        rule_repo,
        dispatcher.dispatch_reminder,
        active_statuses=ACTIVE_STATUSES,
        item_loader=item_repo.get,
    )


class TestFireRechecksItem:
    """Items that changed in the store after their reminder was scheduled."""

    @pytest.mark.asyncio
    async def test_closed_item_is_not_reminded(self, checked_reminders, item_repo, timer_backend, dispatcher, clock) -> None:
        item_repo.add(item_due_in(4))
        checked_reminders.reload_all([item_due_in(4)])
        item_repo.add(item_due_in(4, lifecycle_status="DONE"))
        clock.advance(hours=3)

        await timer_backend.fire_due(clock.now())

        assert dispatcher.reminders == []
        assert checked_reminders.get("TASK-1") is None
        assert checked_reminders.stats()["dropped"] == 1

    @pytest.mark.asyncio
    async def test_deleted_item_is_not_reminded(self, checked_reminders, timer_backend, dispatcher, clock) -> None:
        checked_reminders.schedule_for_item(item_due_in(4))
        clock.advance(hours=3)

        await timer_backend.fire_due(clock.now())

        assert dispatcher.reminders == []

    @pytest.mark.asyncio
    async def test_moved_deadline_reschedules(self, checked_reminders, item_repo, timer_backend, dispatcher, clock) -> None:
        checked_reminders.schedule_for_item(item_due_in(4))
        item_repo.add(item_due_in(6))
        clock.advance(hours=3)

        await timer_backend.fire_due(clock.now())

        assert dispatcher.reminders == []
        assert checked_reminders.get("TASK-1").fire_at == T0 + timedelta(hours=5)
        assert timer_backend.fire_at("TASK-1") == T0 + timedelta(hours=5)

    @pytest.mark.asyncio
    async def test_unchanged_item_is_reminded(self, checked_reminders, item_repo, timer_backend, dispatcher, clock) -> None:
        item_repo.add(item_due_in(4))
        checked_reminders.schedule_for_item(item_due_in(4))
        clock.advance(hours=3)

        await timer_backend.fire_due(clock.now())

        assert [event.item_id for event in dispatcher.reminders] == ["TASK-1"]
        assert checked_reminders.stats()["dropped"] == 0

    @pytest.mark.asyncio
    async def test_lookup_failure_still_reminds(self, timer_backend, clock, rule_repo, dispatcher) -> None:
        registry = ReminderRegistry(
            timer_backend,
            clock,
            rule_repo,
            dispatcher.dispatch_reminder,
            item_loader=FailingItemRepository().get,
        )
        registry.schedule_for_item(item_due_in(4))
        clock.advance(hours=3)

        await timer_backend.fire_due(clock.now())

        assert len(dispatcher.reminders) == 1
