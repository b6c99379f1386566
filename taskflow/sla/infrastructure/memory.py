"""
In-Memory Adapters
==================

Process-local implementations of the SLA ports.

Used when `use_in_memory_store` is set (local development without a
database) and by the test suite. State is lost on restart.
"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from taskflow.config import EscalationStatus
from taskflow.core import DuplicateEscalationError, RepositoryException
from taskflow.sla.application.services import (
    IEscalationLogRepository,
    IEscalationRuleRepository,
    IRecipientDirectory,
    ISLAPolicyProvider,
    ITrackedItemRepository,
)
from taskflow.sla.domain import ClockPolicy, EscalationLog, EscalationRule, TrackedItem


class InMemoryTrackedItemRepository(ITrackedItemRepository):
    """Item store backed by a dict."""

    def __init__(self, active_statuses: List[str], items: Iterable[TrackedItem] = ()):
        self._active_statuses = active_statuses
        self._items: Dict[str, TrackedItem] = {item.id: item for item in items}

    def add(self, item: TrackedItem) -> None:
        """Insert or replace an item."""
        self._items[item.id] = item

    async def list_active(self, now: datetime) -> List[TrackedItem]:
        return [
            item for item in self._items.values()
            if item.is_active(self._active_statuses)
        ]

    async def get(self, item_id: str) -> Optional[TrackedItem]:
        return self._items.get(item_id)

    async def save_clock_state(self, item: TrackedItem) -> None:
        current = self._items.get(item.id)
        if current is None:
            raise RepositoryException(f"Item {item.id} not found")
        self._items[item.id] = replace(
            current,
            sla_status=item.sla_status,
            pause_started_at=item.pause_started_at,
            pause_reason=item.pause_reason,
            total_paused=item.total_paused,
        )


class InMemoryEscalationLogRepository(IEscalationLogRepository):
    """Escalation log backed by a dict, in append order."""

    def __init__(self):
        self._logs: Dict[str, EscalationLog] = {}

    def _require(self, log_id: str) -> EscalationLog:
        log = self._logs.get(log_id)
        if log is None:
            raise RepositoryException(f"Escalation {log_id} not found")
        return log

    def all(self) -> List[EscalationLog]:
        return list(self._logs.values())

    async def find_unresolved(self, item_id: str, rule_id: str) -> Optional[EscalationLog]:
        for log in self._logs.values():
            if log.item_id == item_id and log.rule_id == rule_id and log.is_unresolved:
                return replace(log)
        return None

    async def append(self, log: EscalationLog) -> EscalationLog:
        if await self.find_unresolved(log.item_id, log.rule_id) is not None:
            raise DuplicateEscalationError(log.item_id, log.rule_id)
        stored = replace(log, id=str(uuid4()))
        self._logs[stored.id] = stored
        return replace(stored)

    async def get(self, log_id: str) -> Optional[EscalationLog]:
        log = self._logs.get(log_id)
        return replace(log) if log else None

    async def resolve(self, log_id: str, resolved_at: datetime, note: Optional[str] = None) -> EscalationLog:
        log = self._require(log_id)
        log.status = EscalationStatus.RESOLVED
        log.resolved_at = resolved_at
        log.resolution_note = note
        return replace(log)

    async def acknowledge(self, log_id: str, acknowledged_at: datetime) -> EscalationLog:
        log = self._require(log_id)
        log.status = EscalationStatus.ACKNOWLEDGED
        log.acknowledged_at = acknowledged_at
        return replace(log)

    async def mark_notified(self, log_id: str, sent_at: datetime) -> None:
        self._require(log_id).mark_notification_sent(sent_at)

    async def list_unresolved_unsent(self) -> List[EscalationLog]:
        return [
            replace(log) for log in self._logs.values()
            if log.is_unresolved and not log.notification_sent
        ]

    async def count_fired_since(self, since: datetime) -> int:
        return sum(1 for log in self._logs.values() if log.fired_at >= since)

    async def list_for_recipient(
        self,
        recipient_id: Optional[str],
        unresolved_only: bool = False
    ) -> List[EscalationLog]:
        logs = [
            replace(log) for log in self._logs.values()
            if (recipient_id is None or log.recipient_id == recipient_id)
            and (not unresolved_only or log.is_unresolved)
        ]
        return sorted(logs, key=lambda log: log.fired_at, reverse=True)


class InMemoryRecipientDirectory(IRecipientDirectory):
    """Recipient directory from static mappings."""

    def __init__(
        self,
        team_leaders: Optional[Dict[str, str]] = None,
        user_teams: Optional[Dict[str, str]] = None,
        admins: Optional[List[str]] = None,
        category_chains: Optional[Dict[str, List[str]]] = None
    ):
        self._team_leaders = team_leaders or {}
        self._user_teams = user_teams or {}
        self._admins = admins or []
        self._category_chains = category_chains or {}

    async def team_leader_of(self, user_id: Optional[str], team_id: Optional[str]) -> Optional[str]:
        if team_id is None and user_id is not None:
            team_id = self._user_teams.get(user_id)
        if team_id is None:
            return None
        return self._team_leaders.get(team_id)

    async def first_admin(self) -> Optional[str]:
        return self._admins[0] if self._admins else None

    async def category_chain(self, category_id: str) -> List[str]:
        return list(self._category_chains.get(category_id, []))


class InMemoryRuleRepository(IEscalationRuleRepository, ISLAPolicyProvider):
    """Fixed rule set and clock policy."""

    def __init__(self, rules: Iterable[EscalationRule] = (), policy: Optional[ClockPolicy] = None):
        self._rules = list(rules)
        self._policy = policy or ClockPolicy()

    def set_rules(self, rules: Iterable[EscalationRule]) -> None:
        self._rules = list(rules)

    async def list_active(self) -> List[EscalationRule]:
        return [rule for rule in self._rules if rule.is_active]

    def get_clock_policy(self) -> ClockPolicy:
        return self._policy
