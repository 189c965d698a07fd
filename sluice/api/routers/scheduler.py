"""
Scheduler router for scheduler control APIs.

Endpoints under /scheduler/* for batch intake, start, pause, resume,
stop, clear and status.

Error mapping:
- InvalidInputError -> 422
- InvalidOperationError -> 409
- Service not initialized -> 503
"""

from fastapi import APIRouter, Depends, HTTPException

from ...scheduler.entities import JobPayload
from ...scheduler.errors import InvalidInputError, InvalidOperationError
from ...scheduler.service import SchedulerService
from ..schemas.scheduler import (
    BatchRequest,
    BatchResponse,
    ControlResponse,
    JobSummary,
    RunStatsResponse,
    SchedulerStatusResponse,
)
from .._scheduler_state import SchedulerNotInitializedError, get_scheduler_service


router = APIRouter()


def get_service() -> SchedulerService:
    """Dependency returning the service, or 503 before initialization."""
    try:
        return get_scheduler_service()
    except SchedulerNotInitializedError as e:
        raise HTTPException(status_code=503, detail=str(e))


@router.post("/batch", response_model=BatchResponse)
async def submit_batch(
    request: BatchRequest,
    service: SchedulerService = Depends(get_service),
):
    """
    Enqueue a batch of payloads in order.

    With start=true, also starts the scheduler if it is not running.
    """
    payloads = [
        JobPayload(text=item.text, attachment_ref=item.attachment_ref, label=item.label)
        for item in request.items
    ]

    try:
        jobs = await service.accept_batch(payloads)
        if request.start and not service.is_running:
            await service.start()
    except InvalidInputError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except InvalidOperationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return BatchResponse(
        success=True,
        message=f"Enqueued {len(jobs)} jobs",
        jobs=[
            JobSummary(
                job_id=job.job_id,
                status=job.status.value,
                label=job.payload.label,
                attempts=job.attempts,
                created_at=job.created_at,
            )
            for job in jobs
        ],
    )


@router.post("/start", response_model=ControlResponse)
async def start_scheduler(service: SchedulerService = Depends(get_service)):
    """
    Start the scheduler loops.

    Idempotent: If scheduler is already running, returns success with message.
    """
    if service.is_running:
        return ControlResponse(success=True, message="Scheduler is already running")

    try:
        await service.start()
    except InvalidOperationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ControlResponse(success=True, message="Scheduler started successfully")


@router.post("/pause", response_model=ControlResponse)
async def pause_scheduler(service: SchedulerService = Depends(get_service)):
    """Pause dispatch and reconciliation. In-flight jobs stay tracked."""
    try:
        await service.pause()
    except InvalidOperationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ControlResponse(success=True, message="Scheduler paused")


@router.post("/resume", response_model=ControlResponse)
async def resume_scheduler(service: SchedulerService = Depends(get_service)):
    """Resume after pause."""
    try:
        await service.resume()
    except InvalidOperationError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return ControlResponse(success=True, message="Scheduler resumed")


@router.post("/stop", response_model=ControlResponse)
async def stop_scheduler(service: SchedulerService = Depends(get_service)):
    """
    Stop the scheduler loops.

    Idempotent: If scheduler is already stopped, returns success.
    Unfinished work stays persisted.
    """
    if not service.is_running:
        return ControlResponse(success=True, message="Scheduler is already stopped")

    await service.stop()
    return ControlResponse(success=True, message="Scheduler stopped successfully")


@router.post("/clear", response_model=ControlResponse)
async def clear_scheduler(service: SchedulerService = Depends(get_service)):
    """Stop if needed and discard the current run and its snapshot."""
    discarded = await service.clear()
    return ControlResponse(
        success=True,
        message=f"Run cleared ({discarded} unfinished jobs discarded)",
    )


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status(service: SchedulerService = Depends(get_service)):
    """
    Get scheduler status.

    Returns queued, in_flight / max_concurrent, completed, failed, phase,
    state and run counters.
    """
    status = service.get_status()
    stats = status.pop("stats")
    return SchedulerStatusResponse(**status, stats=RunStatsResponse(**stats))
