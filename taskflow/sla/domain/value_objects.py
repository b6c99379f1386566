"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Annotated, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from taskflow.config import (
    ItemKind, SLAStatus, TriggerType, RecipientStrategy, EscalationAction
)


# ========== Clock ==========

@dataclass(frozen=True)
class ClockPolicy:
    """Thresholds the deadline clock derives SLA status and reminders from."""

    at_risk_percent: float = 20.0
    at_risk_lookahead: Optional[timedelta] = None
    reminder_lead: timedelta = timedelta(hours=1)

    @classmethod
    def from_settings(cls, settings) -> "ClockPolicy":
        """Build the policy from application settings."""
        lookahead = None
        if settings.at_risk_lookahead_minutes is not None:
            lookahead = timedelta(minutes=settings.at_risk_lookahead_minutes)
        return cls(
            at_risk_percent=settings.at_risk_percent,
            at_risk_lookahead=lookahead,
            reminder_lead=timedelta(minutes=settings.reminder_lead_minutes),
        )


@dataclass(frozen=True)
class ClockReading:
    """Point-in-time view of an item's SLA clock."""

    item_id: str
    read_at: datetime
    status: SLAStatus
    is_paused: bool
    total_paused: timedelta
    remaining: Optional[timedelta] = None
    effective_deadline: Optional[datetime] = None
    percent_remaining: Optional[float] = None

    @property
    def is_overdue(self) -> bool:
        return self.status == SLAStatus.OVERDUE

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "item_id": self.item_id,
            "read_at": self.read_at.isoformat(),
            "status": self.status.value,
            "is_paused": self.is_paused,
            "total_paused_seconds": self.total_paused.total_seconds(),
            "remaining_seconds": (
                self.remaining.total_seconds() if self.remaining is not None else None
            ),
            "effective_deadline": (
                self.effective_deadline.isoformat() if self.effective_deadline else None
            ),
            "percent_remaining": self.percent_remaining,
        }


# ========== Triggers ==========

@dataclass(frozen=True)
class UnconfirmedPastDuration:
    """Item not confirmed `threshold` after its confirmation deadline."""

    threshold: timedelta
    type: TriggerType = TriggerType.UNCONFIRMED_PAST_DURATION


@dataclass(frozen=True)
class OverdueByDuration:
    """Item's effective remaining time at or below `-threshold`."""

    threshold: timedelta
    type: TriggerType = TriggerType.OVERDUE_BY_DURATION


@dataclass(frozen=True)
class StatusStuckPastDuration:
    """Item sitting in one of `statuses` for at least `threshold`."""

    statuses: Tuple[str, ...]
    threshold: timedelta
    type: TriggerType = TriggerType.STATUS_STUCK_PAST_DURATION


Trigger = Union[UnconfirmedPastDuration, OverdueByDuration, StatusStuckPastDuration]


# ========== YAML policy configuration ==========

class ClockPolicyConfig(BaseModel):
    """Optional clock overrides from the policy file."""
    at_risk_percent: Optional[float] = Field(default=None, ge=0, le=100)
    at_risk_lookahead_minutes: Optional[int] = Field(default=None, ge=0)
    reminder_lead_minutes: Optional[int] = Field(default=None, ge=0)

    def apply(self, base: ClockPolicy) -> ClockPolicy:
        """Overlay configured values on a base policy."""
        return ClockPolicy(
            at_risk_percent=(
                self.at_risk_percent if self.at_risk_percent is not None
                else base.at_risk_percent
            ),
            at_risk_lookahead=(
                timedelta(minutes=self.at_risk_lookahead_minutes)
                if self.at_risk_lookahead_minutes is not None
                else base.at_risk_lookahead
            ),
            reminder_lead=(
                timedelta(minutes=self.reminder_lead_minutes)
                if self.reminder_lead_minutes is not None
                else base.reminder_lead
            ),
        )


class UnconfirmedTriggerConfig(BaseModel):
    type: Literal["UNCONFIRMED_PAST_DURATION"]
    threshold_minutes: int = Field(default=0, ge=0)

    def to_trigger(self) -> UnconfirmedPastDuration:
        return UnconfirmedPastDuration(threshold=timedelta(minutes=self.threshold_minutes))


class OverdueTriggerConfig(BaseModel):
    type: Literal["OVERDUE_BY_DURATION"]
    threshold_minutes: int = Field(default=0, ge=0)

    def to_trigger(self) -> OverdueByDuration:
        return OverdueByDuration(threshold=timedelta(minutes=self.threshold_minutes))


class StatusStuckTriggerConfig(BaseModel):
    type: Literal["STATUS_STUCK_PAST_DURATION"]
    statuses: List[str] = Field(min_length=1)
    threshold_minutes: int = Field(ge=0)

    @field_validator("statuses")
    @classmethod
    def normalise_statuses(cls, v: List[str]) -> List[str]:
        return [status.upper() for status in v]

    def to_trigger(self) -> StatusStuckPastDuration:
        return StatusStuckPastDuration(
            statuses=tuple(self.statuses),
            threshold=timedelta(minutes=self.threshold_minutes),
        )


TriggerConfig = Annotated[
    Union[UnconfirmedTriggerConfig, OverdueTriggerConfig, StatusStuckTriggerConfig],
    Field(discriminator="type"),
]


class EscalationRuleConfig(BaseModel):
    """A single escalation rule as written in the policy file."""
    id: str = Field(min_length=1)
    name: str
    applies_to: ItemKind
    trigger: TriggerConfig
    recipient: RecipientStrategy
    custom_recipient_id: Optional[str] = None
    action: EscalationAction = EscalationAction.NOTIFY
    cooldown_minutes: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @model_validator(mode="after")
    def validate_custom_recipient(self) -> "EscalationRuleConfig":
        """CUSTOM rules must name their recipient."""
        if self.recipient == RecipientStrategy.CUSTOM and not self.custom_recipient_id:
            raise ValueError(f"rule {self.id}: CUSTOM recipient requires custom_recipient_id")
        return self


class EscalationPolicyConfig(BaseModel):
    """
    Escalation policy loaded from YAML.

    Holds the rule set and optional clock overrides. This is a value
    object - validated once at load time and replaced wholesale on reload.
    """
    clock: ClockPolicyConfig = Field(default_factory=ClockPolicyConfig)
    rules: List[EscalationRuleConfig] = Field(default_factory=list)

    @field_validator("rules")
    @classmethod
    def validate_unique_ids(cls, v: List[EscalationRuleConfig]) -> List[EscalationRuleConfig]:
        """Rule ids key the escalation log, so they must be unique."""
        seen = set()
        for rule in v:
            if rule.id in seen:
                raise ValueError(f"duplicate rule id: {rule.id}")
            seen.add(rule.id)
        return v

    def active_rules(self) -> List[EscalationRuleConfig]:
        return [rule for rule in self.rules if rule.is_active]
