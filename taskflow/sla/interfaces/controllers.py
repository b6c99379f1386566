"""
SLA Controllers (API Routes)
=============================

FastAPI routes for scheduler operations, SLA clocks, reminders and
escalations.

Controllers are thin - they delegate to application services.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from taskflow.config import PauseReason
from taskflow.shared.infrastructure.logging import get_logger
from taskflow.sla.application.dto import (
    AcknowledgeRequest,
    ClockResponse,
    EscalationListResponse,
    EscalationResponse,
    PauseRequest,
    ReminderListResponse,
    ReminderResponse,
    ReminderSyncResponse,
    ResolveRequest,
    RunRecordResponse,
    SchedulerStatusResponse,
    TriggerResponse,
)
from taskflow.sla.bootstrap import SLAComponents

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Escalation"])


# ========== Dependencies ==========

def get_components(request: Request) -> SLAComponents:
    """Get the SLA services wired at startup."""
    components = getattr(request.app.state, "sla", None)
    if components is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SLA services not initialized"
        )
    return components


# ========== Scheduler ==========

@router.get(
    "/scheduler/status",
    response_model=SchedulerStatusResponse,
    summary="Escalation scheduler status",
)
async def scheduler_status(components: SLAComponents = Depends(get_components)):
    """State, last run and rolling figures over the recent passes."""
    return SchedulerStatusResponse(**components.scheduler.status())


@router.post("/scheduler/start", summary="Start the escalation scheduler")
async def start_scheduler(components: SLAComponents = Depends(get_components)):
    started = await components.scheduler.start()
    return {"started": started, "state": components.scheduler.state.value}


@router.post("/scheduler/stop", summary="Stop the escalation scheduler")
async def stop_scheduler(components: SLAComponents = Depends(get_components)):
    """Stops the interval job and waits for an in-flight pass to finish."""
    stopped = await components.scheduler.stop()
    return {"stopped": stopped, "state": components.scheduler.state.value}


@router.post(
    "/scheduler/trigger",
    response_model=TriggerResponse,
    summary="Run an escalation pass now",
)
async def trigger_pass(components: SLAComponents = Depends(get_components)):
    """
    Run a manual pass under the same overlap guard as scheduled passes.

    `triggered` is false when a pass was already in progress.
    """
    record = await components.scheduler.trigger_now()
    if record is None:
        return TriggerResponse(triggered=False)
    return TriggerResponse(triggered=True, run=RunRecordResponse.from_domain(record))


# ========== SLA clock ==========

@router.get(
    "/items/{item_id}/clock",
    response_model=ClockResponse,
    summary="Read an item's SLA clock",
)
async def read_clock(item_id: str, components: SLAComponents = Depends(get_components)):
    reading = await components.pause_service.read(item_id)
    return ClockResponse.from_domain(reading)


@router.post(
    "/items/{item_id}/pause",
    response_model=ClockResponse,
    summary="Pause an item's SLA clock",
    responses={409: {"description": "Already paused or no deadline"}},
)
async def pause_clock(
    item_id: str,
    body: Optional[PauseRequest] = None,
    components: SLAComponents = Depends(get_components)
):
    reason = PauseReason((body or PauseRequest()).reason)
    reading = await components.pause_service.pause(item_id, reason)
    return ClockResponse.from_domain(reading)


@router.post(
    "/items/{item_id}/resume",
    response_model=ClockResponse,
    summary="Resume an item's SLA clock",
    responses={409: {"description": "Not paused"}},
)
async def resume_clock(item_id: str, components: SLAComponents = Depends(get_components)):
    reading = await components.pause_service.resume(item_id)
    return ClockResponse.from_domain(reading)


# ========== Reminders ==========

@router.get(
    "/reminders",
    response_model=ReminderListResponse,
    summary="Pending deadline reminders",
)
async def list_reminders(components: SLAComponents = Depends(get_components)):
    stats = components.reminders.stats()
    return ReminderListResponse(
        reminders=[ReminderResponse.from_domain(e) for e in components.reminders.pending()],
        pending=stats["pending"],
        fired=stats["fired"],
        callback_failures=stats["callback_failures"],
        dropped=stats["dropped"],
    )


@router.post(
    "/items/{item_id}/reminder/sync",
    response_model=ReminderSyncResponse,
    summary="Re-sync an item's reminder",
)
async def sync_reminder(item_id: str, components: SLAComponents = Depends(get_components)):
    """
    Re-derive the reminder after the item changed outside this service.

    Call when an item is closed or its deadline moves; the
    reminder is rescheduled or cancelled to match.
    """
    entry = await components.pause_service.sync_reminder(item_id)
    return ReminderSyncResponse(
        item_id=item_id,
        scheduled=entry is not None,
        reminder=ReminderResponse.from_domain(entry) if entry else None,
    )


# ========== Escalations ==========

@router.get(
    "/escalations",
    response_model=EscalationListResponse,
    summary="Active escalations for a recipient",
)
async def list_escalations(
    recipient_id: str = Query(..., min_length=1, description="Recipient user ID"),
    components: SLAComponents = Depends(get_components)
):
    service = components.escalation_service
    logs = await service.active_for(recipient_id)
    return EscalationListResponse(
        escalations=[EscalationResponse.from_domain(log) for log in logs],
        stats=await service.stats(recipient_id),
    )


@router.post(
    "/escalations/{escalation_id}/acknowledge",
    response_model=EscalationResponse,
    summary="Acknowledge an escalation",
    responses={403: {"description": "Not the recipient"}, 404: {"description": "Not found"}},
)
async def acknowledge_escalation(
    escalation_id: str,
    body: AcknowledgeRequest,
    components: SLAComponents = Depends(get_components)
):
    log = await components.escalation_service.acknowledge(escalation_id, body.user_id)
    return EscalationResponse.from_domain(log)


@router.post(
    "/escalations/{escalation_id}/resolve",
    response_model=EscalationResponse,
    summary="Resolve an escalation",
    responses={403: {"description": "Not the recipient"}, 404: {"description": "Not found"}},
)
async def resolve_escalation(
    escalation_id: str,
    body: ResolveRequest,
    components: SLAComponents = Depends(get_components)
):
    log = await components.escalation_service.resolve(escalation_id, body.user_id, body.notes)
    return EscalationResponse.from_domain(log)
