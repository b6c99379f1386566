"""
SLA Domain Entities
====================

Pure Python domain entities for deadline tracking and escalation.

Following Domain-Driven Design principles, these entities contain
business logic and are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from taskflow.config import (
    ItemKind, SLAStatus, PauseReason, TriggerType,
    EscalationAction, EscalationStatus, UNRESOLVED_ESCALATION_STATUSES
)


@dataclass(frozen=True)
class TrackedItem:
    """
    Snapshot of a request or task as read from the item store.

    Frozen: clock transitions produce a new snapshot via dataclasses.replace,
    so a pause or resume is a single state change.
    """

    id: str
    kind: ItemKind
    lifecycle_status: str
    title: str = ""

    # SLA clock
    sla_deadline: Optional[datetime] = None
    sla_started_at: Optional[datetime] = None
    sla_status: SLAStatus = SLAStatus.ON_TIME
    pause_started_at: Optional[datetime] = None
    pause_reason: Optional[PauseReason] = None
    total_paused: timedelta = field(default_factory=timedelta)

    # Confirmation
    confirmation_deadline: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    # Workflow context
    status_changed_at: Optional[datetime] = None
    assignee_id: Optional[str] = None
    team_id: Optional[str] = None
    category_id: Optional[str] = None
    deep_link: Optional[str] = None

    def __post_init__(self):
        """Reject inconsistent clock state."""
        if self.pause_started_at is not None and self.sla_status != SLAStatus.PAUSED:
            raise ValueError("paused item must have sla_status PAUSED")
        if self.total_paused < timedelta(0):
            raise ValueError("total_paused cannot be negative")
        if (self.sla_started_at and self.sla_deadline
                and self.sla_deadline < self.sla_started_at):
            raise ValueError("sla_deadline cannot be before sla_started_at")

    @property
    def is_paused(self) -> bool:
        """Check if the SLA clock is currently frozen."""
        return self.pause_started_at is not None

    @property
    def sla_window(self) -> Optional[timedelta]:
        """Nominal SLA window, when the clock start is known."""
        if self.sla_deadline is None or self.sla_started_at is None:
            return None
        return self.sla_deadline - self.sla_started_at

    def is_active(self, active_statuses: List[str]) -> bool:
        """Check if the lifecycle status is one the engine evaluates."""
        return self.lifecycle_status.upper() in active_statuses


@dataclass
class EscalationLog:
    """
    Append-only record of one rule firing for one item.

    At most one unresolved (PENDING or ACKNOWLEDGED) log exists per
    (item_id, rule_id).
    """

    id: Optional[str]
    item_id: str
    item_kind: ItemKind
    rule_id: str
    trigger_type: TriggerType
    recipient_id: str
    reason: str
    fired_at: datetime

    status: EscalationStatus = EscalationStatus.PENDING
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None

    notification_sent: bool = False
    notification_sent_at: Optional[datetime] = None

    @property
    def is_unresolved(self) -> bool:
        """Check if this log still blocks re-firing of its rule."""
        return self.status in UNRESOLVED_ESCALATION_STATUSES

    def cooldown_elapsed(self, cooldown: Optional[timedelta], now: datetime) -> bool:
        """Check if an explicit cooldown allows a new firing."""
        if cooldown is None:
            return False
        return now - self.fired_at >= cooldown

    def mark_notification_sent(self, timestamp: datetime) -> None:
        """Mark notification as sent."""
        self.notification_sent = True
        self.notification_sent_at = timestamp


@dataclass(frozen=True)
class EscalationDecision:
    """A rule fired for an item; handed to the notification dispatcher."""

    item_id: str
    item_kind: ItemKind
    rule_id: str
    rule_name: str
    trigger_type: TriggerType
    action: EscalationAction
    recipient_id: str
    reason: str
    fired_at: datetime
    escalation_id: Optional[str] = None
    deep_link: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for events and API responses."""
        return {
            "event": "escalation",
            "escalation_id": self.escalation_id,
            "item_id": self.item_id,
            "item_kind": self.item_kind.value,
            "rule_id": self.rule_id,
            "rule_name": self.rule_name,
            "trigger_type": self.trigger_type.value,
            "action": self.action.value,
            "recipient_id": self.recipient_id,
            "reason": self.reason,
            "fired_at": self.fired_at.isoformat(),
            "deep_link": self.deep_link,
        }


@dataclass(frozen=True)
class ReminderPayload:
    """What a reminder is about."""

    item_id: str
    item_kind: ItemKind
    recipient_id: Optional[str]
    deadline: datetime
    reason: str = "DEADLINE_APPROACHING"
    deep_link: Optional[str] = None


@dataclass(frozen=True)
class ReminderEntry:
    """A pending one-shot reminder timer."""

    item_id: str
    fire_at: datetime
    payload: ReminderPayload
    token: str


@dataclass(frozen=True)
class ReminderFired:
    """Event emitted when a reminder timer fires."""

    item_id: str
    item_kind: ItemKind
    recipient_id: Optional[str]
    fire_at: datetime
    fired_at: datetime
    reason: str
    deadline: datetime
    deep_link: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: ReminderEntry, fired_at: datetime) -> "ReminderFired":
        """Build the event for a firing entry."""
        payload = entry.payload
        return cls(
            item_id=entry.item_id,
            item_kind=payload.item_kind,
            recipient_id=payload.recipient_id,
            fire_at=entry.fire_at,
            fired_at=fired_at,
            reason=payload.reason,
            deadline=payload.deadline,
            deep_link=payload.deep_link,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for events."""
        return {
            "event": "reminder",
            "item_id": self.item_id,
            "item_kind": self.item_kind.value,
            "recipient_id": self.recipient_id,
            "reason": self.reason,
            "fire_at": self.fire_at.isoformat(),
            "fired_at": self.fired_at.isoformat(),
            "deadline": self.deadline.isoformat(),
            "deep_link": self.deep_link,
        }


@dataclass(frozen=True)
class ItemFailure:
    """An (item, rule) evaluation that failed during a pass."""

    item_id: str
    rule_id: Optional[str]
    error_type: str
    message: str


@dataclass
class PassResult:
    """Outcome of one escalation pass."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    escalations: List[EscalationDecision] = field(default_factory=list)
    resolved: int = 0
    redelivered: int = 0
    failures: List[ItemFailure] = field(default_factory=list)
    by_rule: Dict[str, int] = field(default_factory=dict)
    by_trigger_type: Dict[str, int] = field(default_factory=dict)
    escalations_last_hour: int = 0
    high_volume: bool = False
    summary_error: Optional[str] = None

    @property
    def total_escalations(self) -> int:
        """Number of escalations decided in this pass."""
        return len(self.escalations)

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "checked": self.checked,
            "total_escalations": self.total_escalations,
            "resolved": self.resolved,
            "redelivered": self.redelivered,
            "failed": len(self.failures),
            "by_rule": dict(self.by_rule),
            "by_trigger_type": dict(self.by_trigger_type),
            "escalations_last_hour": self.escalations_last_hour,
            "high_volume": self.high_volume,
            "summary_error": self.summary_error,
            "escalations": [d.to_dict() for d in self.escalations],
        }


@dataclass(frozen=True)
class RunRecord:
    """One completed pass in the scheduler's run history."""

    timestamp: datetime
    trigger: str
    checked: int
    escalated: int
    failed: int
    duration_ms: int
    high_volume: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for status reporting."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "trigger": self.trigger,
            "checked": self.checked,
            "escalated": self.escalated,
            "failed": self.failed,
            "duration_ms": self.duration_ms,
            "high_volume": self.high_volume,
        }
