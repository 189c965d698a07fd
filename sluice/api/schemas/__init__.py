"""
API Schemas package.

Pydantic models for request/response validation.
"""

from .scheduler import (
    PayloadItem,
    BatchRequest,
    BatchResponse,
    JobSummary,
    ControlResponse,
    RunStatsResponse,
    SchedulerStatusResponse,
)

__all__ = [
    "PayloadItem",
    "BatchRequest",
    "BatchResponse",
    "JobSummary",
    "ControlResponse",
    "RunStatsResponse",
    "SchedulerStatusResponse",
]
