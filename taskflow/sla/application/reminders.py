"""
Reminder Registry
=================

One-shot "deadline approaching" reminders, one live timer per item.

Entries are keyed by item id and carry a token naming the timer that
owns them, so a timer that fires after its entry was replaced or
cancelled does nothing. The entry map is guarded by a threading.Lock
because timer backends may call back from worker threads.
"""

import threading
from datetime import datetime
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application.services import IClock, ISLAPolicyProvider, ITimerBackend
from taskflow.sla.domain import (
    ClockPolicy,
    ReminderEntry,
    ReminderFired,
    ReminderPayload,
    TrackedItem,
    effective_deadline,
)

logger = get_logger(__name__)

ReminderCallback = Callable[[ReminderFired], Awaitable[None]]
ItemLoader = Callable[[str], Awaitable[Optional[TrackedItem]]]


class ReminderRegistry:
    """
    Registry of pending reminder timers.

    Usage:
        registry = ReminderRegistry(backend, clock, policy_provider, dispatcher.dispatch_reminder)
        registry.reload_all(items)
    """

    def __init__(
        self,
        timer_backend: ITimerBackend,
        clock: IClock,
        policy_provider: ISLAPolicyProvider,
        callback: ReminderCallback,
        active_statuses: Optional[List[str]] = None,
        item_loader: Optional[ItemLoader] = None
    ):
        self._timers = timer_backend
        self._clock = clock
        self._policy_provider = policy_provider
        self._callback = callback
        self._active_statuses = active_statuses
        self._item_loader = item_loader
        self._entries: Dict[str, ReminderEntry] = {}
        self._lock = threading.Lock()
        self._fired = 0
        self._callback_failures = 0
        self._dropped = 0
        self._last_reload_at: Optional[datetime] = None

    def schedule(self, item_id: str, fire_at: datetime, payload: ReminderPayload) -> ReminderEntry:
        """Schedule a reminder, replacing any pending one for the item."""
        entry = ReminderEntry(
            item_id=item_id,
            fire_at=fire_at,
            payload=payload,
            token=uuid4().hex,
        )
        with self._lock:
            self._entries[item_id] = entry
            self._timers.schedule(item_id, fire_at, partial(self._fire, item_id, entry.token))

        logger.debug(
            "Reminder scheduled",
            extra={"item_id": item_id, "fire_at": fire_at.isoformat()}
        )
        return entry

    def cancel(self, item_id: str) -> bool:
        """
        Cancel an item's pending reminder.

        Returns:
            True if a reminder was pending
        """
        with self._lock:
            entry = self._entries.pop(item_id, None)
            if entry is not None:
                self._timers.cancel(item_id)

        if entry is not None:
            logger.debug("Reminder cancelled", extra={"item_id": item_id})
        return entry is not None

    def reminder_time(self, item: TrackedItem, policy: ClockPolicy) -> Optional[datetime]:
        """Instant at which the item's reminder is due, ignoring eligibility."""
        adjusted = effective_deadline(
            self._clock.now(), item.sla_deadline, item.pause_started_at, item.total_paused
        )
        if adjusted is None:
            return None
        return adjusted - policy.reminder_lead

    def _is_eligible(self, item: TrackedItem) -> bool:
        if item.is_paused or item.sla_deadline is None:
            return False
        return self._active_statuses is None or item.is_active(self._active_statuses)

    def _eligible_fire_at(
        self,
        item: TrackedItem,
        now: datetime,
        policy: ClockPolicy
    ) -> Optional[datetime]:
        if not self._is_eligible(item):
            return None
        fire_at = self.reminder_time(item, policy)
        if fire_at is None or fire_at <= now:
            return None
        return fire_at

    def schedule_for_item(
        self,
        item: TrackedItem,
        now: Optional[datetime] = None,
        policy: Optional[ClockPolicy] = None
    ) -> Optional[ReminderEntry]:
        """
        Schedule the item's reminder from its clock.

        Returns:
            The new entry, or None when the item gets no reminder
        """
        now = now or self._clock.now()
        policy = policy or self._policy_provider.get_clock_policy()

        fire_at = self._eligible_fire_at(item, now, policy)
        if fire_at is None:
            return None

        payload = ReminderPayload(
            item_id=item.id,
            item_kind=item.kind,
            recipient_id=item.assignee_id,
            deadline=fire_at + policy.reminder_lead,
            deep_link=item.deep_link,
        )
        return self.schedule(item.id, fire_at, payload)

    def sync_item(self, item: TrackedItem) -> Optional[ReminderEntry]:
        """Bring an item's reminder in line with its current state."""
        entry = self.schedule_for_item(item)
        if entry is None:
            self.cancel(item.id)
        return entry

    def reload_all(self, items: List[TrackedItem]) -> int:
        """
        Rebuild every reminder from scratch.

        Returns:
            Number of reminders scheduled
        """
        now = self._clock.now()
        policy = self._policy_provider.get_clock_policy()

        with self._lock:
            self._entries.clear()
            self._timers.cancel_all()

        scheduled = 0
        for item in items:
            if self.schedule_for_item(item, now, policy) is not None:
                scheduled += 1

        self._last_reload_at = now
        logger.info(
            "Reminders reloaded",
            extra={"items": len(items), "scheduled": scheduled}
        )
        return scheduled

    async def _still_due(self, item_id: str) -> bool:
        """
        Re-check the item at fire time.

        An item that was closed, paused or lost its deadline since the
        reminder was scheduled drops it; one whose deadline moved later gets
        a fresh timer instead. A failed lookup still delivers.
        """
        try:
            item = await self._item_loader(item_id)
        except Exception as e:
            logger.warning(
                "Reminder item lookup failed, delivering anyway",
                extra={"item_id": item_id, "error": str(e), "error_type": type(e).__name__}
            )
            return True

        if item is None or not self._is_eligible(item):
            self._dropped += 1
            logger.info("Reminder dropped, item no longer eligible", extra={"item_id": item_id})
            return False

        moved = self.schedule_for_item(item)
        if moved is not None:
            logger.info(
                "Reminder moved with the item deadline",
                extra={"item_id": item_id, "fire_at": moved.fire_at.isoformat()}
            )
            return False
        return True

    async def _fire(self, item_id: str, token: str) -> None:
        with self._lock:
            entry = self._entries.get(item_id)
            if entry is None or entry.token != token:
                entry = None
            else:
                del self._entries[item_id]

        if entry is None:
            logger.debug("Stale reminder timer ignored", extra={"item_id": item_id})
            return

        if self._item_loader is not None and not await self._still_due(item_id):
            return

        event = ReminderFired.from_entry(entry, self._clock.now())
        self._fired += 1

        try:
            await self._callback(event)
        except Exception as e:
            self._callback_failures += 1
            logger.error(
                "Reminder callback failed",
                extra={"item_id": item_id, "error": str(e), "error_type": type(e).__name__}
            )
            return

        logger.info(
            "Reminder fired",
            extra={"item_id": item_id, "recipient_id": event.recipient_id}
        )

    def pending(self) -> List[ReminderEntry]:
        """Pending reminders ordered by fire time."""
        with self._lock:
            entries = list(self._entries.values())
        return sorted(entries, key=lambda e: e.fire_at)

    def get(self, item_id: str) -> Optional[ReminderEntry]:
        with self._lock:
            return self._entries.get(item_id)

    def stats(self) -> dict:
        """Counters for status reporting."""
        pending = self.pending()
        return {
            "pending": len(pending),
            "fired": self._fired,
            "callback_failures": self._callback_failures,
            "dropped": self._dropped,
            "next_fire_at": pending[0].fire_at.isoformat() if pending else None,
            "last_reload_at": self._last_reload_at.isoformat() if self._last_reload_at else None,
        }
