"""Test helpers for the Taskflow SLA tests.

This package contains reusable test utilities and fake implementations
for dependency injection in unit tests.

Helpers:
    FakeClock: Controllable clock for deterministic tests
    FakeTimerBackend: Timers fired manually
    RecordingDispatcher: Notification dispatcher that records deliveries
    GatedEngine: Engine stand-in with blocking passes
    GatedMetrics: Metrics exporter with blocking exports

Usage:
    from tests.helpers import FakeClock
"""

from tests.helpers.fake_clock import DEFAULT_START, FakeClock
from tests.helpers.fakes import (
    ACTIVE_STATUSES,
    FailingItemRepository,
    FakeTimerBackend,
    GatedEngine,
    GatedMetrics,
    RecordingDispatcher,
    make_item,
    overdue_rule,
)

__all__ = [
    "ACTIVE_STATUSES",
    "DEFAULT_START",
    "FakeClock",
    "FailingItemRepository",
    "FakeTimerBackend",
    "GatedEngine",
    "GatedMetrics",
    "RecordingDispatcher",
    "make_item",
    "overdue_rule",
]
