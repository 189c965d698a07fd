"""
Ports to the remote generation service.

The scheduler depends only on these two capabilities:
- SubmissionPort: hand one payload to the remote service
- ObservationPort: snapshot the remote service's view of recent work

Concrete adapters (see sluice.remote.api_client) translate their native
signals into these types.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from .entities import JobPayload, content_fingerprint


class ExternalStatus(str, Enum):
    """
    Remote status of one piece of work.

    ACTIVE and FINISHED must always be distinguished; FAILED is optional
    for adapters that cannot tell.
    """

    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class SubmissionResult:
    """
    Raw result of one submission call.

    - accepted: the remote service took the job
    - rate_limited: the remote concurrency cap was hit
    - ready: False when local/remote state was not ready to submit
      (nothing reached the service)
    - permanent: the payload can never be submitted
    """

    accepted: bool
    rate_limited: bool = False
    error: Optional[str] = None
    ready: bool = True
    permanent: bool = False

    @classmethod
    def ok(cls) -> "SubmissionResult":
        return cls(accepted=True)

    @classmethod
    def limited(cls, error: str = "Rate limited") -> "SubmissionResult":
        return cls(accepted=False, rate_limited=True, error=error)

    @classmethod
    def not_ready(cls, error: str) -> "SubmissionResult":
        return cls(accepted=False, error=error, ready=False)

    @classmethod
    def failed(cls, error: str, permanent: bool = False) -> "SubmissionResult":
        return cls(accepted=False, error=error, permanent=permanent)


@dataclass(frozen=True)
class ExternalItem:
    """One entry of the remote service's current view."""

    external_id: str
    content_fingerprint: str
    status: ExternalStatus


class SubmissionPort(Protocol):
    """Capability to hand a payload to the remote service."""

    async def submit(self, payload: JobPayload) -> SubmissionResult:
        """
        Submit one payload.

        Must be safe to call again for the same payload after a
        transient failure.
        """
        ...


class ObservationPort(Protocol):
    """Capability to query the remote service's current state."""

    async def observe(self) -> list[ExternalItem]:
        """Return the remote view of recently submitted work."""
        ...


__all__ = [
    "ExternalStatus",
    "SubmissionResult",
    "ExternalItem",
    "SubmissionPort",
    "ObservationPort",
    "content_fingerprint",
]
