"""Shared fixtures for the Taskflow SLA test suite."""

import pytest

from taskflow.sla.application import EscalationEngine, ReminderRegistry, SLAPauseService
from taskflow.sla.infrastructure.memory import (
    InMemoryEscalationLogRepository,
    InMemoryRecipientDirectory,
    InMemoryRuleRepository,
    InMemoryTrackedItemRepository,
)
from tests.helpers import ACTIVE_STATUSES, FakeClock, FakeTimerBackend, RecordingDispatcher


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def item_repo() -> InMemoryTrackedItemRepository:
    return InMemoryTrackedItemRepository(ACTIVE_STATUSES)


@pytest.fixture
def log_repo() -> InMemoryEscalationLogRepository:
    return InMemoryEscalationLogRepository()


@pytest.fixture
def rule_repo() -> InMemoryRuleRepository:
    return InMemoryRuleRepository()


@pytest.fixture
def directory() -> InMemoryRecipientDirectory:
    return InMemoryRecipientDirectory(
        team_leaders={"team-1": "user-leader"},
        user_teams={"user-assignee": "team-1"},
        admins=["user-admin"],
        category_chains={"cat-network": ["user-network-lead", "user-cto"]},
    )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def timer_backend() -> FakeTimerBackend:
    return FakeTimerBackend()


@pytest.fixture
def engine(item_repo, rule_repo, log_repo, directory, dispatcher, clock) -> EscalationEngine:
    return EscalationEngine(
        item_repo,
        rule_repo,
        log_repo,
        directory,
        dispatcher,
        clock,
        volume_alert_threshold=10,
        concurrency=4,
        call_timeout_seconds=0.5,
    )


@pytest.fixture
def reminders(timer_backend, clock, rule_repo, dispatcher) -> ReminderRegistry:
    return ReminderRegistry(
        timer_backend,
        clock,
        rule_repo,
        dispatcher.dispatch_reminder,
        active_statuses=ACTIVE_STATUSES,
    )


@pytest.fixture
def pause_service(item_repo, rule_repo, clock, reminders) -> SLAPauseService:
    return SLAPauseService(item_repo, rule_repo, clock, reminders)
