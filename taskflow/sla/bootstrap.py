"""
SLA Module Wiring
=================

Builds the SLA services from settings and runs their startup and
shutdown sequence. The FastAPI lifespan and the test suite both go
through here.

Startup order:
1. Load the escalation policy and start watching it (invalid -> degraded mode)
2. Start the reminder timer backend
3. Rebuild reminders from the item store (failure -> degraded mode)
4. Start the escalation scheduler
"""

from dataclasses import dataclass, field
from typing import List, Optional

from taskflow.config import Settings
from taskflow.core import ConfigurationException, SchedulerStartupError
from taskflow.shared.infrastructure.logging import get_logger, log_latency
from taskflow.shared.infrastructure.metrics import OTLPMetricsExporter
from taskflow.sla.application import (
    EscalationEngine,
    EscalationService,
    IClock,
    IEscalationLogRepository,
    IEscalationRuleRepository,
    INotificationDispatcher,
    IRecipientDirectory,
    ISLAPolicyProvider,
    ITimerBackend,
    ITrackedItemRepository,
    ReminderRegistry,
    SLAPauseService,
)
from taskflow.sla.domain import ClockPolicy
from taskflow.sla.infrastructure.external import (
    EscalationPolicyManager,
    SystemClock,
    WebhookNotificationDispatcher,
)
from taskflow.sla.infrastructure.scheduler import APSchedulerTimerBackend, EscalationScheduler

logger = get_logger(__name__)


@dataclass
class SLAComponents:
    """Everything the SLA module needs at runtime."""

    clock: IClock
    item_repository: ITrackedItemRepository
    log_repository: IEscalationLogRepository
    rule_repository: IEscalationRuleRepository
    policy_provider: ISLAPolicyProvider
    directory: IRecipientDirectory
    dispatcher: INotificationDispatcher
    timer_backend: ITimerBackend
    engine: EscalationEngine
    reminders: ReminderRegistry
    scheduler: EscalationScheduler
    pause_service: SLAPauseService
    escalation_service: EscalationService
    degraded_reasons: List[str] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded_reasons)


def assemble_components(
    settings: Settings,
    clock: IClock,
    item_repository: ITrackedItemRepository,
    log_repository: IEscalationLogRepository,
    rule_repository: IEscalationRuleRepository,
    policy_provider: ISLAPolicyProvider,
    directory: IRecipientDirectory,
    dispatcher: INotificationDispatcher,
    timer_backend: ITimerBackend,
    metrics: Optional[OTLPMetricsExporter] = None
) -> SLAComponents:
    """Wire services around the given adapters."""
    engine = EscalationEngine(
        item_repository,
        rule_repository,
        log_repository,
        directory,
        dispatcher,
        clock,
        volume_alert_threshold=settings.escalation_volume_alert_threshold,
        concurrency=settings.evaluation_concurrency,
        call_timeout_seconds=settings.external_call_timeout_seconds,
    )
    reminders = ReminderRegistry(
        timer_backend,
        clock,
        policy_provider,
        dispatcher.dispatch_reminder,
        active_statuses=settings.active_statuses,
        item_loader=item_repository.get,
    )
    scheduler = EscalationScheduler(
        engine,
        clock,
        interval_seconds=settings.evaluation_interval_seconds,
        history_size=settings.run_history_size,
        recent_runs=settings.status_recent_runs,
        metrics=metrics,
    )
    return SLAComponents(
        clock=clock,
        item_repository=item_repository,
        log_repository=log_repository,
        rule_repository=rule_repository,
        policy_provider=policy_provider,
        directory=directory,
        dispatcher=dispatcher,
        timer_backend=timer_backend,
        engine=engine,
        reminders=reminders,
        scheduler=scheduler,
        pause_service=SLAPauseService(item_repository, policy_provider, clock, reminders),
        escalation_service=EscalationService(log_repository, clock),
    )


def build_components(settings: Settings) -> SLAComponents:
    """Build production adapters from settings."""
    policy_manager = EscalationPolicyManager(ClockPolicy.from_settings(settings))

    if settings.use_in_memory_store:
        from taskflow.sla.infrastructure.memory import (
            InMemoryEscalationLogRepository,
            InMemoryRecipientDirectory,
            InMemoryTrackedItemRepository,
        )
        logger.warning("Using in-memory item store and escalation log; state is not persisted")
        item_repository = InMemoryTrackedItemRepository(settings.active_statuses)
        log_repository = InMemoryEscalationLogRepository()
        directory = InMemoryRecipientDirectory()
    else:
        from taskflow.sla.infrastructure.repositories import (
            SQLAlchemyEscalationLogRepository,
            SQLAlchemyRecipientDirectory,
            SQLAlchemyTrackedItemRepository,
        )
        item_repository = SQLAlchemyTrackedItemRepository(settings.active_statuses)
        log_repository = SQLAlchemyEscalationLogRepository()
        directory = SQLAlchemyRecipientDirectory()

    dispatcher = WebhookNotificationDispatcher(
        settings.notification_webhook_url,
        timeout_seconds=settings.notification_timeout_seconds,
        max_retries=settings.notification_max_retries,
    )
    metrics = OTLPMetricsExporter(
        host=settings.grafana_host,
        api_key=settings.grafana_api_key,
        instance_id=settings.grafana_instance_id,
    )

    return assemble_components(
        settings,
        clock=SystemClock(),
        item_repository=item_repository,
        log_repository=log_repository,
        rule_repository=policy_manager,
        policy_provider=policy_manager,
        directory=directory,
        dispatcher=dispatcher,
        timer_backend=APSchedulerTimerBackend(),
        metrics=metrics,
    )


async def reload_reminders(components: SLAComponents) -> int:
    """
    Rebuild every reminder from the item store.

    Raises:
        SchedulerStartupError: If the items cannot be loaded
    """
    now = components.clock.now()
    try:
        items = await components.item_repository.list_active(now)
    except Exception as e:
        raise SchedulerStartupError(
            "Reminder reload failed", {"error": str(e), "error_type": type(e).__name__}
        ) from e

    with log_latency(logger, "reminder_reload", items=len(items)):
        return components.reminders.reload_all(items)


async def start_components(components: SLAComponents, settings: Settings) -> None:
    """Run the startup sequence; failures degrade, never abort."""
    if isinstance(components.rule_repository, EscalationPolicyManager):
        try:
            components.rule_repository.load(settings.rules_config_path)
        except ConfigurationException as e:
            components.degraded_reasons.append("policy_unavailable")
            logger.error(
                "Escalation policy invalid, running with no rules until it is fixed",
                extra={"path": str(settings.rules_config_path), "error": e.details.get("error")}
            )
        components.rule_repository.start_watching()

    if isinstance(components.timer_backend, APSchedulerTimerBackend):
        components.timer_backend.start()

    try:
        await reload_reminders(components)
    except SchedulerStartupError as e:
        components.degraded_reasons.append("reminders_unavailable")
        logger.error(
            "Reminder reload failed, continuing in degraded mode",
            extra={"error": e.details.get("error")}
        )

    if settings.scheduler_enabled:
        await components.scheduler.start()
    else:
        logger.info("Escalation scheduler disabled by configuration")


async def stop_components(components: SLAComponents) -> None:
    """Run the shutdown sequence."""
    await components.scheduler.stop()

    if isinstance(components.timer_backend, APSchedulerTimerBackend):
        components.timer_backend.shutdown()

    if isinstance(components.rule_repository, EscalationPolicyManager):
        components.rule_repository.stop_watching()

    if isinstance(components.dispatcher, WebhookNotificationDispatcher):
        await components.dispatcher.close()
