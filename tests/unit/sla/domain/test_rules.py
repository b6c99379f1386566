"""Unit tests for escalation rules and trigger evaluation."""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from taskflow.config import (
    EscalationAction,
    ItemKind,
    PauseReason,
    RecipientStrategy,
    SLAStatus,
    TriggerType,
)
from taskflow.sla.domain import (
    ClockPolicy,
    EscalationPolicyConfig,
    EscalationRule,
    EscalationRuleConfig,
    OverdueByDuration,
    StatusStuckPastDuration,
    UnconfirmedPastDuration,
    build_rules,
    evaluate_trigger,
)
from tests.helpers import DEFAULT_START, make_item, overdue_rule

T0 = DEFAULT_START


class TestUnconfirmedTrigger:
    """UNCONFIRMED_PAST_DURATION."""

    trigger = UnconfirmedPastDuration(threshold=timedelta(hours=1))

    def test_fires_threshold_after_confirmation_deadline(self) -> None:
        item = make_item(kind=ItemKind.REQUEST, confirmation_deadline=T0)

        assert not evaluate_trigger(self.trigger, item, T0 + timedelta(minutes=59))
        assert evaluate_trigger(self.trigger, item, T0 + timedelta(hours=1))

    def test_confirmed_item_never_fires(self) -> None:
        item = make_item(confirmation_deadline=T0, confirmed_at=T0 + timedelta(minutes=10))

        assert not evaluate_trigger(self.trigger, item, T0 + timedelta(days=1))

    def test_no_confirmation_deadline_never_fires(self) -> None:
        assert not evaluate_trigger(self.trigger, make_item(), T0 + timedelta(days=1))


class TestOverdueTrigger:
    """OVERDUE_BY_DURATION."""

    def test_zero_threshold_fires_at_deadline(self) -> None:
        item = make_item(sla_started_at=T0, sla_deadline=T0 + timedelta(hours=4))
        trigger = OverdueByDuration(threshold=timedelta(0))

        assert not evaluate_trigger(trigger, item, T0 + timedelta(hours=3, minutes=59))
        assert evaluate_trigger(trigger, item, T0 + timedelta(hours=4))

    def test_threshold_past_deadline(self) -> None:
        item = make_item(sla_deadline=T0)
        trigger = OverdueByDuration(threshold=timedelta(minutes=30))

        assert not evaluate_trigger(trigger, item, T0 + timedelta(minutes=29))
        assert evaluate_trigger(trigger, item, T0 + timedelta(minutes=30))

    def test_accounts_for_completed_pauses(self) -> None:
        item = make_item(sla_deadline=T0, total_paused=timedelta(hours=1))
        trigger = OverdueByDuration(threshold=timedelta(0))

        assert not evaluate_trigger(trigger, item, T0 + timedelta(minutes=30))

    def test_paused_item_never_fires(self) -> None:
        item = make_item(
            sla_deadline=T0,
            sla_status=SLAStatus.PAUSED,
            pause_started_at=T0 - timedelta(hours=1),
            pause_reason=PauseReason.MEETING,
        )

        assert not evaluate_trigger(OverdueByDuration(threshold=timedelta(0)), item, T0 + timedelta(days=2))

    def test_no_deadline_never_fires(self) -> None:
        assert not evaluate_trigger(OverdueByDuration(threshold=timedelta(0)), make_item(), T0)


class TestStatusStuckTrigger:
    """STATUS_STUCK_PAST_DURATION."""

    trigger = StatusStuckPastDuration(statuses=("BLOCKED",), threshold=timedelta(hours=8))

    def test_fires_after_threshold_in_status(self) -> None:
        item = make_item(lifecycle_status="blocked", status_changed_at=T0)

        assert not evaluate_trigger(self.trigger, item, T0 + timedelta(hours=7))
        assert evaluate_trigger(self.trigger, item, T0 + timedelta(hours=8))

    def test_other_status_never_fires(self) -> None:
        item = make_item(lifecycle_status="IN_PROGRESS", status_changed_at=T0)

        assert not evaluate_trigger(self.trigger, item, T0 + timedelta(days=3))

    def test_unknown_status_change_time_never_fires(self) -> None:
        item = make_item(lifecycle_status="BLOCKED")

        assert not evaluate_trigger(self.trigger, item, T0 + timedelta(days=3))


class TestEvaluateUnknownTrigger:
    def test_unknown_variant_raises(self) -> None:
        with pytest.raises(ValueError):
            evaluate_trigger(object(), make_item(), T0)


class TestEscalationRule:
    """Rule applicability and construction."""

    def test_applies_to_matching_kind_only(self) -> None:
        rule = overdue_rule()

        assert rule.applies(make_item(kind=ItemKind.TASK))
        assert not rule.applies(make_item(kind=ItemKind.REQUEST))

    def test_inactive_rule_never_applies(self) -> None:
        assert not overdue_rule(is_active=False).applies(make_item())

    def test_trigger_type_follows_trigger(self) -> None:
        assert overdue_rule().trigger_type == TriggerType.OVERDUE_BY_DURATION

    def test_from_config(self) -> None:
        config = EscalationRuleConfig(
            id="blocked-too-long",
            name="Blocked too long",
            applies_to="TASK",
            trigger={
                "type": "STATUS_STUCK_PAST_DURATION",
                "statuses": ["blocked", "in_review"],
                "threshold_minutes": 480,
            },
            recipient="TEAM_LEADER",
            action="REASSIGN",
            cooldown_minutes=120,
        )

        rule = EscalationRule.from_config(config)

        assert rule.trigger == StatusStuckPastDuration(
            statuses=("BLOCKED", "IN_REVIEW"), threshold=timedelta(hours=8)
        )
        assert rule.recipient == RecipientStrategy.TEAM_LEADER
        assert rule.action == EscalationAction.REASSIGN
        assert rule.cooldown == timedelta(hours=2)

    def test_from_config_without_cooldown(self) -> None:
        config = EscalationRuleConfig(
            id="overdue",
            name="Overdue",
            applies_to="REQUEST",
            trigger={"type": "OVERDUE_BY_DURATION"},
            recipient="ASSIGNEE",
        )

        rule = EscalationRule.from_config(config)

        assert rule.cooldown is None
        assert rule.trigger == OverdueByDuration(threshold=timedelta(0))


class TestEscalationPolicyConfig:
    """Policy file validation."""

    def _rule(self, rule_id: str, **overrides) -> dict:
        values = {
            "id": rule_id,
            "name": rule_id,
            "applies_to": "TASK",
            "trigger": {"type": "OVERDUE_BY_DURATION", "threshold_minutes": 0},
            "recipient": "ASSIGNEE",
        }
        values.update(overrides)
        return values

    def test_duplicate_rule_ids_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EscalationPolicyConfig(rules=[self._rule("a"), self._rule("a")])

    def test_custom_recipient_requires_id(self) -> None:
        with pytest.raises(ValidationError):
            EscalationPolicyConfig(rules=[self._rule("a", recipient="CUSTOM")])

    def test_unknown_trigger_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EscalationPolicyConfig(rules=[self._rule("a", trigger={"type": "NEVER"})])

    def test_zero_cooldown_rejected(self) -> None:
        with pytest.raises(ValidationError):
            EscalationPolicyConfig(rules=[self._rule("a", cooldown_minutes=0)])

    def test_build_rules_skips_inactive(self) -> None:
        policy = EscalationPolicyConfig(
            rules=[self._rule("a"), self._rule("b", is_active=False)]
        )

        assert [rule.id for rule in build_rules(policy)] == ["a"]

    def test_clock_overrides_apply_over_base(self) -> None:
        policy = EscalationPolicyConfig(clock={"at_risk_percent": 25, "reminder_lead_minutes": 30})
        base = ClockPolicy(at_risk_percent=20.0, at_risk_lookahead=timedelta(hours=1))

        applied = policy.clock.apply(base)

        assert applied.at_risk_percent == 25
        assert applied.reminder_lead == timedelta(minutes=30)
        assert applied.at_risk_lookahead == timedelta(hours=1)
