"""
Scheduler API schemas.

Request/response models for the /scheduler/* endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Batch Schemas
# =============================================================================


class PayloadItem(BaseModel):
    """One prompt to submit."""

    text: str = Field(..., description="Prompt text")
    attachment_ref: Optional[str] = Field(
        default=None,
        description="Reference to an attached image (path, URL or data URI)"
    )
    label: Optional[str] = Field(default=None, description="Human label, e.g. scene name")


class BatchRequest(BaseModel):
    """Request to enqueue a batch."""

    items: List[PayloadItem] = Field(..., description="Payloads in submission order")
    start: bool = Field(
        default=False,
        description="Start the scheduler after enqueueing if it is not running"
    )


class JobSummary(BaseModel):
    """A queued job."""

    job_id: str
    status: str
    label: Optional[str] = None
    attempts: int = 0
    created_at: str


class BatchResponse(BaseModel):
    """Response from batch intake."""

    success: bool
    message: str
    jobs: List[JobSummary] = Field(default_factory=list)


# =============================================================================
# Control Schemas
# =============================================================================


class ControlResponse(BaseModel):
    """Response from start/pause/resume/stop/clear."""

    success: bool
    message: str


class RunStatsResponse(BaseModel):
    """Counters for the current run."""

    total_sent: int = 0
    total_errors: int = 0
    started_at: Optional[str] = None
    elapsed_seconds: Optional[float] = None


class SchedulerStatusResponse(BaseModel):
    """Response from scheduler status endpoint."""

    state: str = Field(..., description="IDLE / RUNNING / DRAINING / STOPPED")
    phase: str = Field(..., description="BURST / SEQUENTIAL")
    is_running: bool
    is_paused: bool
    queued: int = Field(default=0, description="Jobs waiting to be submitted")
    in_flight: int = Field(default=0, description="Jobs submitted and not yet resolved")
    max_concurrent: int
    completed: int = 0
    failed: int = 0
    total: int = 0
    remaining: int = 0
    burst_size: int = 0
    burst_sent: int = 0
    stats: RunStatsResponse = Field(default_factory=RunStatsResponse)
