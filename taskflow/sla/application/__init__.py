"""
SLA Application Layer
======================

Application layer for deadline tracking and escalation.

Contains:
- Services: EscalationEngine, SLAPauseService, EscalationService
- Ports: repository, directory, dispatcher, clock and timer interfaces
- ReminderRegistry: one-shot deadline reminders
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from taskflow.sla.application.services import (
    EscalationEngine,
    SLAPauseService,
    EscalationService,
    IClock,
    ITrackedItemRepository,
    IEscalationRuleRepository,
    ISLAPolicyProvider,
    IEscalationLogRepository,
    IRecipientDirectory,
    INotificationDispatcher,
    ITimerBackend,
)
from taskflow.sla.application.reminders import ReminderRegistry

__all__ = [
    # Services
    "EscalationEngine",
    "SLAPauseService",
    "EscalationService",
    "ReminderRegistry",
    # Ports
    "IClock",
    "ITrackedItemRepository",
    "IEscalationRuleRepository",
    "ISLAPolicyProvider",
    "IEscalationLogRepository",
    "IRecipientDirectory",
    "INotificationDispatcher",
    "ITimerBackend",
]
