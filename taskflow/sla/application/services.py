"""
SLA Application Services
=========================

Application services orchestrate business logic and coordinate between
domain entities and repositories.

Following SOLID principles:
- Single Responsibility: Each service has one clear purpose
- Dependency Inversion: Depend on abstractions (ports), not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Dict, List, Optional

from taskflow.config import (
    EscalationAction, EscalationStatus, PauseReason, RecipientStrategy
)
from taskflow.core.exceptions import (
    DuplicateEscalationError,
    ExternalDependencyTimeout,
    InvalidStateTransition,
    ItemEvaluationError,
    PermissionDeniedException,
    ResourceNotFoundException,
)
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.domain import (
    ClockPolicy,
    ClockReading,
    EscalationDecision,
    EscalationLog,
    EscalationRule,
    ItemFailure,
    PassResult,
    ReminderEntry,
    ReminderFired,
    TrackedItem,
    evaluate_trigger,
    pause_clock,
    read_clock,
    resume_clock,
)

if TYPE_CHECKING:
    from taskflow.sla.application.reminders import ReminderRegistry

logger = get_logger(__name__)

HIGH_VOLUME_WINDOW = timedelta(hours=1)


# ========== Ports (Dependency Inversion) ==========

class IClock(ABC):
    """Source of the current UTC time."""

    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware UTC instant."""


class ITrackedItemRepository(ABC):
    """Interface for request/task data access."""

    @abstractmethod
    async def list_active(self, now: datetime) -> List[TrackedItem]:
        """Items in an active lifecycle status as of `now`."""

    @abstractmethod
    async def get(self, item_id: str) -> Optional[TrackedItem]:
        """Get item by ID."""

    @abstractmethod
    async def save_clock_state(self, item: TrackedItem) -> None:
        """Persist the SLA clock fields of an item in one write."""


class IEscalationRuleRepository(ABC):
    """Interface for escalation rule access."""

    @abstractmethod
    async def list_active(self) -> List[EscalationRule]:
        """Get currently active rules."""


class ISLAPolicyProvider(ABC):
    """Interface for deadline clock policy access."""

    @abstractmethod
    def get_clock_policy(self) -> ClockPolicy:
        """Get current clock policy."""


class IEscalationLogRepository(ABC):
    """
    Interface for the escalation log.

    Implementations must reject a second unresolved log for the same
    (item_id, rule_id) with DuplicateEscalationError.
    """

    @abstractmethod
    async def find_unresolved(self, item_id: str, rule_id: str) -> Optional[EscalationLog]:
        """Get the unresolved log for an (item, rule) pair, if any."""

    @abstractmethod
    async def append(self, log: EscalationLog) -> EscalationLog:
        """Append a new log and return it with its assigned ID."""

    @abstractmethod
    async def get(self, log_id: str) -> Optional[EscalationLog]:
        """Get log by ID."""

    @abstractmethod
    async def resolve(self, log_id: str, resolved_at: datetime, note: Optional[str] = None) -> EscalationLog:
        """Mark a log resolved."""

    @abstractmethod
    async def acknowledge(self, log_id: str, acknowledged_at: datetime) -> EscalationLog:
        """Mark a log acknowledged."""

    @abstractmethod
    async def mark_notified(self, log_id: str, sent_at: datetime) -> None:
        """Record successful notification delivery."""

    @abstractmethod
    async def list_unresolved_unsent(self) -> List[EscalationLog]:
        """Unresolved logs whose notification was never delivered."""

    @abstractmethod
    async def count_fired_since(self, since: datetime) -> int:
        """Number of logs fired at or after `since`."""

    @abstractmethod
    async def list_for_recipient(
        self,
        recipient_id: Optional[str],
        unresolved_only: bool = False
    ) -> List[EscalationLog]:
        """Logs addressed to a recipient (all logs when recipient_id is None)."""


class IRecipientDirectory(ABC):
    """Interface for resolving escalation recipients."""

    @abstractmethod
    async def team_leader_of(self, user_id: Optional[str], team_id: Optional[str]) -> Optional[str]:
        """Leader of the user's team, or of `team_id` when given."""

    @abstractmethod
    async def first_admin(self) -> Optional[str]:
        """First active administrator."""

    @abstractmethod
    async def category_chain(self, category_id: str) -> List[str]:
        """Ordered escalation chain configured for a category."""


class INotificationDispatcher(ABC):
    """
    Interface for delivering escalation and reminder events.

    Implementations raise on delivery failure.
    """

    @abstractmethod
    async def dispatch_escalation(self, decision: EscalationDecision) -> None:
        """Deliver an escalation event."""

    @abstractmethod
    async def dispatch_reminder(self, event: ReminderFired) -> None:
        """Deliver a reminder event."""


class ITimerBackend(ABC):
    """Interface for one-shot timers keyed by string."""

    @abstractmethod
    def schedule(self, key: str, fire_at: datetime, callback) -> None:
        """Run `callback()` at `fire_at`, replacing any timer with the same key."""

    @abstractmethod
    def cancel(self, key: str) -> None:
        """Cancel a timer; no-op if absent."""

    @abstractmethod
    def cancel_all(self) -> None:
        """Cancel every timer."""


# ========== Application Services ==========

class EscalationEngine:
    """
    Evaluates escalation rules against active items.

    One pass loads rules and items once, evaluates every (item, rule) pair,
    appends escalation logs before notifying and resolves logs whose
    condition has cleared. Per-item failures never abort the pass.
    """

    def __init__(
        self,
        item_repository: ITrackedItemRepository,
        rule_repository: IEscalationRuleRepository,
        log_repository: IEscalationLogRepository,
        directory: IRecipientDirectory,
        dispatcher: INotificationDispatcher,
        clock: IClock,
        volume_alert_threshold: int = 10,
        concurrency: int = 8,
        call_timeout_seconds: float = 10.0
    ):
        self._item_repo = item_repository
        self._rule_repo = rule_repository
        self._log_repo = log_repository
        self._directory = directory
        self._dispatcher = dispatcher
        self._clock = clock
        self._volume_alert_threshold = volume_alert_threshold
        self._concurrency = concurrency
        self._call_timeout = call_timeout_seconds

    async def run_pass(self, now: Optional[datetime] = None) -> PassResult:
        """
        Run one escalation pass.

        Args:
            now: Evaluation instant (defaults to the engine clock)

        Returns:
            PassResult summarising the pass

        Raises:
            ExternalDependencyTimeout: If rules or items cannot be loaded in time
        """
        now = now or self._clock.now()
        result = PassResult(started_at=now)

        rules = await self._call("rule repository", self._rule_repo.list_active())
        items = await self._call("item store", self._item_repo.list_active(now))

        await self._redeliver_unsent(rules, now, result)

        semaphore = asyncio.Semaphore(self._concurrency)

        async def evaluate(item: TrackedItem) -> None:
            async with semaphore:
                await self._evaluate_item(item, rules, now, result)

        await asyncio.gather(*(evaluate(item) for item in items))
        result.checked = len(items)

        try:
            await self._summarize(result, now)
        except Exception as e:
            result.summary_error = str(e) or type(e).__name__
            logger.error(
                "Escalation pass summary failed",
                extra={"error": result.summary_error, "error_type": type(e).__name__}
            )

        result.finished_at = self._clock.now()

        logger.info(
            "Escalation pass completed",
            extra={
                "checked": result.checked,
                "escalations": result.total_escalations,
                "resolved": result.resolved,
                "redelivered": result.redelivered,
                "failed": len(result.failures),
                "high_volume": result.high_volume,
            }
        )
        return result

    async def _call(
        self,
        dependency: str,
        awaitable: Awaitable[Any],
        item_id: str = "",
        rule_id: Optional[str] = None
    ) -> Any:
        """Await an external call bounded by the configured timeout."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._call_timeout)
        except asyncio.TimeoutError:
            raise ExternalDependencyTimeout(
                dependency, self._call_timeout, item_id, rule_id
            ) from None

    async def _evaluate_item(
        self,
        item: TrackedItem,
        rules: List[EscalationRule],
        now: datetime,
        result: PassResult
    ) -> None:
        for rule in rules:
            if not rule.applies(item):
                continue
            try:
                await self._evaluate_rule(item, rule, now, result)
            except Exception as e:
                self._record_failure(result, item.id, rule.id, e)

    async def _evaluate_rule(
        self,
        item: TrackedItem,
        rule: EscalationRule,
        now: datetime,
        result: PassResult
    ) -> None:
        fired = evaluate_trigger(rule.trigger, item, now)
        existing = await self._call(
            "escalation log", self._log_repo.find_unresolved(item.id, rule.id), item.id, rule.id
        )

        if not fired:
            if existing is not None:
                await self._call(
                    "escalation log",
                    self._log_repo.resolve(existing.id, now, "condition cleared"),
                    item.id, rule.id
                )
                result.resolved += 1
                logger.info(
                    "Escalation resolved",
                    extra={"item_id": item.id, "rule_id": rule.id, "escalation_id": existing.id}
                )
            return

        if existing is not None:
            if not existing.cooldown_elapsed(rule.cooldown, now):
                return
            await self._call(
                "escalation log",
                self._log_repo.resolve(existing.id, now, "cooldown elapsed"),
                item.id, rule.id
            )
            result.resolved += 1

        recipient_id = await self._resolve_recipient(rule, item)
        if recipient_id is None:
            logger.warning(
                "No recipient for escalation, rule not fired",
                extra={"item_id": item.id, "rule_id": rule.id, "recipient": rule.recipient.value}
            )
            return

        log = EscalationLog(
            id=None,
            item_id=item.id,
            item_kind=item.kind,
            rule_id=rule.id,
            trigger_type=rule.trigger_type,
            recipient_id=recipient_id,
            reason=rule.trigger_type.value,
            fired_at=now,
        )
        try:
            log = await self._call(
                "escalation log", self._log_repo.append(log), item.id, rule.id
            )
        except DuplicateEscalationError:
            logger.info(
                "Escalation already recorded, skipping",
                extra={"item_id": item.id, "rule_id": rule.id}
            )
            return

        decision = EscalationDecision(
            item_id=item.id,
            item_kind=item.kind,
            rule_id=rule.id,
            rule_name=rule.name,
            trigger_type=rule.trigger_type,
            action=rule.action,
            recipient_id=recipient_id,
            reason=log.reason,
            fired_at=now,
            escalation_id=log.id,
            deep_link=item.deep_link,
        )
        result.escalations.append(decision)
        result.by_rule[rule.id] = result.by_rule.get(rule.id, 0) + 1
        trigger_key = rule.trigger_type.value
        result.by_trigger_type[trigger_key] = result.by_trigger_type.get(trigger_key, 0) + 1

        logger.info(
            "Escalation fired",
            extra={
                "item_id": item.id,
                "rule_id": rule.id,
                "escalation_id": log.id,
                "recipient_id": recipient_id,
                "trigger_type": trigger_key,
            }
        )

        await self._notify(log.id, decision, item.id, rule.id)

    async def _notify(
        self,
        log_id: str,
        decision: EscalationDecision,
        item_id: str,
        rule_id: str
    ) -> None:
        await self._call(
            "notification dispatcher",
            self._dispatcher.dispatch_escalation(decision),
            item_id, rule_id
        )
        await self._call(
            "escalation log",
            self._log_repo.mark_notified(log_id, self._clock.now()),
            item_id, rule_id
        )

    async def _resolve_recipient(self, rule: EscalationRule, item: TrackedItem) -> Optional[str]:
        """Resolve the escalation recipient by the rule's strategy, with fallbacks."""
        match rule.recipient:
            case RecipientStrategy.ASSIGNEE:
                return item.assignee_id

            case RecipientStrategy.CUSTOM:
                return rule.custom_recipient_id

            case RecipientStrategy.ADMIN:
                return await self._first_admin(item.id, rule.id)

            case RecipientStrategy.TEAM_LEADER:
                leader = await self._team_leader(item, rule.id)
                return leader or await self._first_admin(item.id, rule.id)

            case RecipientStrategy.CATEGORY_CHAIN:
                if item.category_id:
                    chain = await self._call(
                        "recipient directory",
                        self._directory.category_chain(item.category_id),
                        item.id, rule.id
                    )
                    if chain:
                        return chain[0]
                leader = await self._team_leader(item, rule.id)
                return leader or await self._first_admin(item.id, rule.id)

        return None

    async def _team_leader(self, item: TrackedItem, rule_id: str) -> Optional[str]:
        if item.assignee_id is None and item.team_id is None:
            return None
        return await self._call(
            "recipient directory",
            self._directory.team_leader_of(item.assignee_id, item.team_id),
            item.id, rule_id
        )

    async def _first_admin(self, item_id: str, rule_id: str) -> Optional[str]:
        return await self._call(
            "recipient directory", self._directory.first_admin(), item_id, rule_id
        )

    async def _redeliver_unsent(
        self,
        rules: List[EscalationRule],
        now: datetime,
        result: PassResult
    ) -> None:
        """Re-dispatch unresolved logs left unsent by an earlier pass."""
        try:
            pending = await self._call(
                "escalation log", self._log_repo.list_unresolved_unsent()
            )
        except Exception as e:
            self._record_failure(result, "", None, e)
            return

        rules_by_id: Dict[str, EscalationRule] = {rule.id: rule for rule in rules}

        for log in pending:
            if log.fired_at >= now:
                continue
            try:
                item = await self._call(
                    "item store", self._item_repo.get(log.item_id), log.item_id, log.rule_id
                )
                rule = rules_by_id.get(log.rule_id)
                decision = EscalationDecision(
                    item_id=log.item_id,
                    item_kind=log.item_kind,
                    rule_id=log.rule_id,
                    rule_name=rule.name if rule else log.rule_id,
                    trigger_type=log.trigger_type,
                    action=rule.action if rule else EscalationAction.NOTIFY,
                    recipient_id=log.recipient_id,
                    reason=log.reason,
                    fired_at=log.fired_at,
                    escalation_id=log.id,
                    deep_link=item.deep_link if item else None,
                )
                await self._notify(log.id, decision, log.item_id, log.rule_id)
                result.redelivered += 1
                logger.info(
                    "Escalation notification re-delivered",
                    extra={"item_id": log.item_id, "rule_id": log.rule_id, "escalation_id": log.id}
                )
            except Exception as e:
                self._record_failure(result, log.item_id, log.rule_id, e)

    async def _summarize(self, result: PassResult, now: datetime) -> None:
        result.escalations_last_hour = await self._call(
            "escalation log", self._log_repo.count_fired_since(now - HIGH_VOLUME_WINDOW)
        )
        result.high_volume = result.escalations_last_hour > self._volume_alert_threshold
        if result.high_volume:
            logger.warning(
                "High escalation volume",
                extra={
                    "escalations_last_hour": result.escalations_last_hour,
                    "threshold": self._volume_alert_threshold,
                }
            )

    @staticmethod
    def _record_failure(
        result: PassResult,
        item_id: str,
        rule_id: Optional[str],
        error: Exception
    ) -> None:
        if isinstance(error, ItemEvaluationError):
            item_id = error.item_id or item_id
            rule_id = error.rule_id or rule_id
        failure = ItemFailure(
            item_id=item_id,
            rule_id=rule_id,
            error_type=type(error).__name__,
            message=str(error),
        )
        result.failures.append(failure)
        logger.error(
            "Escalation evaluation failed",
            extra={
                "item_id": item_id,
                "rule_id": rule_id,
                "error_type": failure.error_type,
                "error": failure.message,
            }
        )


class SLAPauseService:
    """
    Service for pausing and resuming item SLA clocks.

    Each transition is persisted with a single write; the item's reminder
    is cancelled on pause and rescheduled on resume.
    """

    def __init__(
        self,
        item_repository: ITrackedItemRepository,
        policy_provider: ISLAPolicyProvider,
        clock: IClock,
        reminders: Optional["ReminderRegistry"] = None
    ):
        self._item_repo = item_repository
        self._policy_provider = policy_provider
        self._clock = clock
        self._reminders = reminders

    async def _get_item(self, item_id: str) -> TrackedItem:
        item = await self._item_repo.get(item_id)
        if item is None:
            raise ResourceNotFoundException("Item", item_id)
        return item

    async def read(self, item_id: str) -> ClockReading:
        """Read an item's clock now."""
        item = await self._get_item(item_id)
        return read_clock(item, self._clock.now(), self._policy_provider.get_clock_policy())

    async def pause(self, item_id: str, reason: PauseReason = PauseReason.MANUAL) -> ClockReading:
        """
        Pause an item's SLA clock.

        Raises:
            ResourceNotFoundException: If the item does not exist
            InvalidStateTransition: If already paused or without a deadline
        """
        item = await self._get_item(item_id)
        now = self._clock.now()

        paused = pause_clock(item, now, reason)
        await self._item_repo.save_clock_state(paused)

        if self._reminders is not None:
            self._reminders.cancel(item_id)

        logger.info(
            "SLA clock paused",
            extra={"item_id": item_id, "pause_reason": reason.value}
        )
        return read_clock(paused, now, self._policy_provider.get_clock_policy())

    async def resume(self, item_id: str) -> ClockReading:
        """
        Resume a paused SLA clock.

        Raises:
            ResourceNotFoundException: If the item does not exist
            InvalidStateTransition: If the item is not paused
        """
        item = await self._get_item(item_id)
        now = self._clock.now()
        policy = self._policy_provider.get_clock_policy()

        resumed = resume_clock(item, now, policy)
        await self._item_repo.save_clock_state(resumed)

        if self._reminders is not None:
            self._reminders.sync_item(resumed)

        logger.info(
            "SLA clock resumed",
            extra={
                "item_id": item_id,
                "total_paused_seconds": resumed.total_paused.total_seconds(),
            }
        )
        return read_clock(resumed, now, policy)

    async def sync_reminder(self, item_id: str) -> Optional[ReminderEntry]:
        """
        Reschedule or cancel an item's reminder from its stored state.

        Returns:
            The pending entry, or None when the item gets no reminder

        Raises:
            ResourceNotFoundException: If the item does not exist
        """
        item = await self._get_item(item_id)
        if self._reminders is None:
            return None

        entry = self._reminders.sync_item(item)
        logger.info(
            "Reminder synced",
            extra={"item_id": item_id, "scheduled": entry is not None}
        )
        return entry


class EscalationService:
    """Service for the escalation lifecycle as seen by recipients."""

    def __init__(self, log_repository: IEscalationLogRepository, clock: IClock):
        self._log_repo = log_repository
        self._clock = clock

    async def _get_owned(self, escalation_id: str, user_id: str) -> EscalationLog:
        log = await self._log_repo.get(escalation_id)
        if log is None:
            raise ResourceNotFoundException("Escalation", escalation_id)
        if log.recipient_id != user_id:
            raise PermissionDeniedException(
                "Only the escalation recipient can act on it",
                {"escalation_id": escalation_id, "user_id": user_id}
            )
        return log

    async def acknowledge(self, escalation_id: str, user_id: str) -> EscalationLog:
        """
        Acknowledge an escalation.

        Acknowledged escalations stay unresolved, so the rule does not re-fire.
        """
        log = await self._get_owned(escalation_id, user_id)
        if log.status == EscalationStatus.RESOLVED:
            raise InvalidStateTransition(escalation_id, "acknowledge", "escalation is resolved")
        if log.status == EscalationStatus.ACKNOWLEDGED:
            return log

        log = await self._log_repo.acknowledge(escalation_id, self._clock.now())
        logger.info(
            "Escalation acknowledged",
            extra={"escalation_id": escalation_id, "user_id": user_id}
        )
        return log

    async def resolve(
        self,
        escalation_id: str,
        user_id: str,
        notes: Optional[str] = None
    ) -> EscalationLog:
        """Resolve an escalation with optional notes."""
        log = await self._get_owned(escalation_id, user_id)
        if log.status == EscalationStatus.RESOLVED:
            raise InvalidStateTransition(escalation_id, "resolve", "escalation is already resolved")

        log = await self._log_repo.resolve(escalation_id, self._clock.now(), notes)
        logger.info(
            "Escalation resolved by recipient",
            extra={"escalation_id": escalation_id, "user_id": user_id}
        )
        return log

    async def active_for(self, user_id: str) -> List[EscalationLog]:
        """Unresolved escalations addressed to a user."""
        return await self._log_repo.list_for_recipient(user_id, unresolved_only=True)

    async def stats(self, user_id: Optional[str] = None) -> Dict[str, int]:
        """Escalation counts by status."""
        logs = await self._log_repo.list_for_recipient(user_id)
        counts = Counter(log.status for log in logs)
        return {
            "total": len(logs),
            "pending": counts[EscalationStatus.PENDING],
            "acknowledged": counts[EscalationStatus.ACKNOWLEDGED],
            "resolved": counts[EscalationStatus.RESOLVED],
        }
