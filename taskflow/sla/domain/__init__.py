"""
SLA Domain Layer
================

Domain layer for deadline tracking and escalation.

Contains:
- Entities: TrackedItem, EscalationLog, ReminderEntry, PassResult, ...
- Value Objects: ClockPolicy, ClockReading, trigger variants, EscalationPolicyConfig
- Deadline Clock: pure functions over pausable deadlines
- Rule Set: EscalationRule and trigger evaluation

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from taskflow.sla.domain.entities import (
    TrackedItem,
    EscalationLog,
    EscalationDecision,
    ReminderPayload,
    ReminderEntry,
    ReminderFired,
    ItemFailure,
    PassResult,
    RunRecord,
)
from taskflow.sla.domain.value_objects import (
    ClockPolicy,
    ClockReading,
    UnconfirmedPastDuration,
    OverdueByDuration,
    StatusStuckPastDuration,
    EscalationPolicyConfig,
    EscalationRuleConfig,
)
from taskflow.sla.domain.clock import (
    effective_deadline,
    effective_remaining,
    derive_status,
    read_clock,
    pause_clock,
    resume_clock,
)
from taskflow.sla.domain.rules import EscalationRule, build_rules, evaluate_trigger

__all__ = [
    # Entities
    "TrackedItem",
    "EscalationLog",
    "EscalationDecision",
    "ReminderPayload",
    "ReminderEntry",
    "ReminderFired",
    "ItemFailure",
    "PassResult",
    "RunRecord",
    # Value Objects
    "ClockPolicy",
    "ClockReading",
    "UnconfirmedPastDuration",
    "OverdueByDuration",
    "StatusStuckPastDuration",
    "EscalationPolicyConfig",
    "EscalationRuleConfig",
    # Deadline Clock
    "effective_deadline",
    "effective_remaining",
    "derive_status",
    "read_clock",
    "pause_clock",
    "resume_clock",
    # Rule Set
    "EscalationRule",
    "build_rules",
    "evaluate_trigger",
]
