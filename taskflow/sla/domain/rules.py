"""
Escalation Rule Set
===================

Escalation rules and the trigger predicates they fire on.

A rule is a pure description: which item kind it applies to, what
condition fires it, who receives the escalation and what action is
requested. Evaluating a trigger needs only the item and the current time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from taskflow.config import ItemKind, RecipientStrategy, EscalationAction, TriggerType
from taskflow.sla.domain.clock import effective_remaining
from taskflow.sla.domain.entities import TrackedItem
from taskflow.sla.domain.value_objects import (
    Trigger,
    UnconfirmedPastDuration,
    OverdueByDuration,
    StatusStuckPastDuration,
    EscalationPolicyConfig,
    EscalationRuleConfig,
)


@dataclass(frozen=True)
class EscalationRule:
    """A configured escalation rule."""

    id: str
    name: str
    applies_to: ItemKind
    trigger: Trigger
    recipient: RecipientStrategy
    action: EscalationAction = EscalationAction.NOTIFY
    custom_recipient_id: Optional[str] = None
    cooldown: Optional[timedelta] = None
    is_active: bool = True

    @property
    def trigger_type(self) -> TriggerType:
        return self.trigger.type

    def applies(self, item: TrackedItem) -> bool:
        """Check if this rule should be evaluated for the item."""
        return self.is_active and item.kind == self.applies_to

    @classmethod
    def from_config(cls, config: EscalationRuleConfig) -> "EscalationRule":
        """Build a rule from its validated YAML form."""
        return cls(
            id=config.id,
            name=config.name,
            applies_to=config.applies_to,
            trigger=config.trigger.to_trigger(),
            recipient=config.recipient,
            action=config.action,
            custom_recipient_id=config.custom_recipient_id,
            cooldown=(
                timedelta(minutes=config.cooldown_minutes)
                if config.cooldown_minutes else None
            ),
            is_active=config.is_active,
        )


def build_rules(policy: EscalationPolicyConfig) -> List[EscalationRule]:
    """Convert a loaded policy into the active rule list."""
    return [EscalationRule.from_config(rule) for rule in policy.active_rules()]


def evaluate_trigger(trigger: Trigger, item: TrackedItem, now: datetime) -> bool:
    """
    Evaluate a trigger predicate against an item snapshot.

    Args:
        trigger: One of the trigger variants
        item: Item snapshot as of `now`
        now: Evaluation instant

    Returns:
        True if the trigger condition holds

    Raises:
        ValueError: If the trigger is not a known variant
    """
    match trigger:
        case UnconfirmedPastDuration(threshold=threshold):
            if item.confirmation_deadline is None or item.confirmed_at is not None:
                return False
            return now >= item.confirmation_deadline + threshold

        case OverdueByDuration(threshold=threshold):
            if item.is_paused:
                return False
            remaining = effective_remaining(
                now, item.sla_deadline, item.pause_started_at, item.total_paused
            )
            if remaining is None:
                return False
            return remaining <= -threshold

        case StatusStuckPastDuration(statuses=statuses, threshold=threshold):
            if item.is_paused or item.status_changed_at is None:
                return False
            if item.lifecycle_status.upper() not in statuses:
                return False
            return now - item.status_changed_at >= threshold

        case _:
            raise ValueError(f"Unknown trigger: {trigger!r}")
