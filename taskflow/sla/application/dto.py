"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from taskflow.sla.domain import ClockReading, EscalationLog, ReminderEntry, RunRecord


# ========== Type Aliases for Literals ==========
PauseReasonStr = Literal["MEETING", "CUSTOMER_VISIT", "CLARIFICATION", "MANUAL"]
SLAStatusStr = Literal["ON_TIME", "AT_RISK", "OVERDUE", "PAUSED"]
EscalationStatusStr = Literal["PENDING", "ACKNOWLEDGED", "RESOLVED"]
SchedulerStateStr = Literal["STOPPED", "RUNNING"]


# ========== Request DTOs ==========

class PauseRequest(BaseModel):
    """Request model for pausing an SLA clock."""
    reason: PauseReasonStr = Field(default="MANUAL", description="Why the clock is paused")


class AcknowledgeRequest(BaseModel):
    """Request model for acknowledging an escalation."""
    user_id: str = Field(..., min_length=1, description="Acting user (must be the recipient)")


class ResolveRequest(BaseModel):
    """Request model for resolving an escalation."""
    user_id: str = Field(..., min_length=1, description="Acting user (must be the recipient)")
    notes: Optional[str] = Field(None, max_length=2000, description="Resolution notes")


# ========== Response DTOs ==========

class ClockResponse(BaseModel):
    """Response model for an item's SLA clock."""
    item_id: str
    read_at: datetime
    status: SLAStatusStr
    is_paused: bool
    total_paused_seconds: float
    remaining_seconds: Optional[float] = Field(None, description="Negative once overdue")
    effective_deadline: Optional[datetime] = None
    percent_remaining: Optional[float] = None

    @classmethod
    def from_domain(cls, reading: ClockReading) -> "ClockResponse":
        """Create from a clock reading."""
        return cls(
            item_id=reading.item_id,
            read_at=reading.read_at,
            status=reading.status.value,
            is_paused=reading.is_paused,
            total_paused_seconds=reading.total_paused.total_seconds(),
            remaining_seconds=(
                reading.remaining.total_seconds() if reading.remaining is not None else None
            ),
            effective_deadline=reading.effective_deadline,
            percent_remaining=reading.percent_remaining,
        )


class EscalationResponse(BaseModel):
    """Response model for an escalation log entry."""
    id: str
    item_id: str
    item_kind: str
    rule_id: str
    trigger_type: str
    recipient_id: str
    reason: str
    fired_at: datetime
    status: EscalationStatusStr
    acknowledged_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None
    notification_sent: bool = False

    @classmethod
    def from_domain(cls, log: EscalationLog) -> "EscalationResponse":
        """Create from domain entity."""
        return cls(
            id=log.id,
            item_id=log.item_id,
            item_kind=log.item_kind.value,
            rule_id=log.rule_id,
            trigger_type=log.trigger_type.value,
            recipient_id=log.recipient_id,
            reason=log.reason,
            fired_at=log.fired_at,
            status=log.status.value,
            acknowledged_at=log.acknowledged_at,
            resolved_at=log.resolved_at,
            resolution_note=log.resolution_note,
            notification_sent=log.notification_sent,
        )


class EscalationListResponse(BaseModel):
    """Response model for a recipient's escalations."""
    escalations: List[EscalationResponse]
    stats: Dict[str, int]


class RunRecordResponse(BaseModel):
    """Response model for one completed pass."""
    timestamp: datetime
    trigger: str
    checked: int
    escalated: int
    failed: int
    duration_ms: int
    high_volume: bool = False

    @classmethod
    def from_domain(cls, record: RunRecord) -> "RunRecordResponse":
        return cls(**record.to_dict())


class SchedulerStatusResponse(BaseModel):
    """Response model for scheduler status."""
    is_running: bool
    state: SchedulerStateStr
    interval_seconds: int
    last_run: Optional[RunRecordResponse] = None
    total_runs: int
    recent_runs: List[RunRecordResponse] = Field(default_factory=list)
    avg_duration_ms: float
    total_escalations: int = Field(..., description="Escalations over the recent runs")
    skipped_ticks: int
    pass_in_progress: bool
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None


class TriggerResponse(BaseModel):
    """Response model for a manual pass."""
    triggered: bool = Field(..., description="False when a pass was already in progress")
    run: Optional[RunRecordResponse] = None


class ReminderResponse(BaseModel):
    """Response model for a pending reminder."""
    item_id: str
    item_kind: str
    fire_at: datetime
    deadline: datetime
    recipient_id: Optional[str] = None

    @classmethod
    def from_domain(cls, entry: ReminderEntry) -> "ReminderResponse":
        return cls(
            item_id=entry.item_id,
            item_kind=entry.payload.item_kind.value,
            fire_at=entry.fire_at,
            deadline=entry.payload.deadline,
            recipient_id=entry.payload.recipient_id,
        )


class ReminderListResponse(BaseModel):
    """Response model for pending reminders."""
    reminders: List[ReminderResponse]
    pending: int
    fired: int
    callback_failures: int
    dropped: int = 0


class ReminderSyncResponse(BaseModel):
    """Response model for a reminder re-sync."""
    item_id: str
    scheduled: bool
    reminder: Optional[ReminderResponse] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: Literal["healthy", "degraded"]
    version: str
    scheduler_state: SchedulerStateStr
    last_run: Optional[RunRecordResponse] = None
    degraded_reasons: List[str] = Field(default_factory=list)
