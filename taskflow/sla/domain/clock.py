"""
Deadline Clock
==============

Pure functions computing the effective SLA deadline of an item whose
clock can be paused and resumed.

While an item is paused its remaining time is frozen: the current pause
is added to the deadline as it elapses, so `remaining` does not move.
On resume the pause is folded into `total_paused`.
"""

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from taskflow.config import SLAStatus, PauseReason
from taskflow.core.exceptions import InvalidStateTransition
from taskflow.sla.domain.entities import TrackedItem
from taskflow.sla.domain.value_objects import ClockPolicy, ClockReading


def _current_pause(now: datetime, pause_started_at: Optional[datetime]) -> timedelta:
    if pause_started_at is None:
        return timedelta(0)
    # A pause recorded slightly ahead of the reading clock counts as zero.
    return max(now - pause_started_at, timedelta(0))


def effective_deadline(
    now: datetime,
    deadline: Optional[datetime],
    pause_started_at: Optional[datetime],
    total_paused: timedelta,
) -> Optional[datetime]:
    """
    Deadline shifted by all pause time, including the ongoing pause.

    Returns:
        The adjusted deadline, or None when the item has no deadline.
    """
    if deadline is None:
        return None
    return deadline + total_paused + _current_pause(now, pause_started_at)


def effective_remaining(
    now: datetime,
    deadline: Optional[datetime],
    pause_started_at: Optional[datetime],
    total_paused: timedelta,
) -> Optional[timedelta]:
    """
    Time left before the adjusted deadline; negative once overdue.

    Args:
        now: Evaluation instant
        deadline: Nominal SLA deadline
        pause_started_at: Start of the ongoing pause, if paused
        total_paused: Pause time accumulated by completed pauses

    Returns:
        Remaining time, or None when the item has no deadline.
    """
    adjusted = effective_deadline(now, deadline, pause_started_at, total_paused)
    if adjusted is None:
        return None
    return adjusted - now


def derive_status(
    remaining: Optional[timedelta],
    window: Optional[timedelta],
    policy: ClockPolicy,
    paused: bool = False,
) -> SLAStatus:
    """
    Classify remaining time into an SLA status.

    PAUSED wins over everything. An item with no deadline is ON_TIME.
    AT_RISK applies when remaining is within `at_risk_percent` of the
    nominal window or within the fixed lookahead, whichever is configured.
    """
    if paused:
        return SLAStatus.PAUSED
    if remaining is None:
        return SLAStatus.ON_TIME
    if remaining <= timedelta(0):
        return SLAStatus.OVERDUE

    if window is not None and window > timedelta(0):
        if remaining <= window * (policy.at_risk_percent / 100):
            return SLAStatus.AT_RISK
    if policy.at_risk_lookahead is not None and remaining <= policy.at_risk_lookahead:
        return SLAStatus.AT_RISK

    return SLAStatus.ON_TIME


def read_clock(item: TrackedItem, now: datetime, policy: ClockPolicy) -> ClockReading:
    """Read an item's clock at `now`."""
    remaining = effective_remaining(
        now, item.sla_deadline, item.pause_started_at, item.total_paused
    )
    adjusted = now + remaining if remaining is not None else None
    window = item.sla_window

    percent = None
    if remaining is not None and window is not None and window > timedelta(0):
        percent = max(0.0, min(100.0, remaining / window * 100))

    return ClockReading(
        item_id=item.id,
        read_at=now,
        status=derive_status(remaining, window, policy, item.is_paused),
        is_paused=item.is_paused,
        total_paused=item.total_paused,
        remaining=remaining,
        effective_deadline=adjusted,
        percent_remaining=percent,
    )


def pause_clock(
    item: TrackedItem,
    now: datetime,
    reason: PauseReason = PauseReason.MANUAL,
) -> TrackedItem:
    """
    Freeze an item's SLA clock.

    Raises:
        InvalidStateTransition: If the item is already paused or has no deadline
    """
    if item.is_paused:
        raise InvalidStateTransition(item.id, "pause", "SLA clock is already paused")
    if item.sla_deadline is None:
        raise InvalidStateTransition(item.id, "pause", "item has no SLA deadline")

    return replace(
        item,
        pause_started_at=now,
        pause_reason=reason,
        sla_status=SLAStatus.PAUSED,
    )


def resume_clock(item: TrackedItem, now: datetime, policy: ClockPolicy) -> TrackedItem:
    """
    Restart a paused SLA clock, folding the pause into `total_paused`.

    Raises:
        InvalidStateTransition: If the item is not paused
    """
    if not item.is_paused:
        raise InvalidStateTransition(item.id, "resume", "SLA clock is not paused")

    total_paused = item.total_paused + _current_pause(now, item.pause_started_at)
    remaining = effective_remaining(now, item.sla_deadline, None, total_paused)

    return replace(
        item,
        pause_started_at=None,
        pause_reason=None,
        total_paused=total_paused,
        sla_status=derive_status(remaining, item.sla_window, policy),
    )
