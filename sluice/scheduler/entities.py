"""
Scheduler Domain Entities.

- JobPayload: Content handed to the remote service
- Job: Single unit of work tracked end-to-end
- RunStats: Counters for one run
- RunState: Process-wide session state (queue, in-flight set, phase)

Job lifecycle:
    PENDING -> SUBMITTED -> COMPLETED
                         -> PENDING (retry)
                         -> FAILED

A job lives in exactly one of RunState.queue (PENDING),
RunState.in_flight (SUBMITTED), RunState.completed or RunState.failed.
"""

import asyncio
import hashlib
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .errors import InvalidTransitionError


class JobStatus(str, Enum):
    """Job status values."""

    PENDING = "PENDING"
    SUBMITTED = "SUBMITTED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Phase(str, Enum):
    """
    Submission cadence.

    - BURST: Fast, fixed small delay to fill the remote window
    - SEQUENTIAL: Slow, gate-respecting delay
    """

    BURST = "BURST"
    SEQUENTIAL = "SEQUENTIAL"


class SchedulerState(str, Enum):
    """Scheduler loop lifecycle states."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    DRAINING = "DRAINING"
    STOPPED = "STOPPED"


# Legal status edges; anything else raises InvalidTransitionError
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.SUBMITTED},
    JobStatus.SUBMITTED: {JobStatus.COMPLETED, JobStatus.PENDING, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: datetime) -> str:
    """Format a naive UTC datetime as ISO string with Z suffix."""
    return value.isoformat() + "Z"


def parse_iso(value: str) -> datetime:
    """Parse an ISO string produced by to_iso()."""
    return datetime.fromisoformat(value.rstrip("Z"))


def now_iso() -> str:
    """Get current time as ISO format string."""
    return to_iso(utcnow())


def content_fingerprint(text: str, attachment_ref: Optional[str] = None) -> str:
    """
    Fingerprint submitted content for reconciliation.

    Whitespace is collapsed and case folded so the remote service echoing
    a prompt with different spacing still matches.
    """
    normalized = " ".join(text.split()).casefold()
    digest = hashlib.sha256(normalized.encode("utf-8"))
    if attachment_ref:
        digest.update(b"\x00")
        digest.update(attachment_ref.encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class JobPayload:
    """Content to submit: prompt text plus an optional attachment reference."""

    text: str
    attachment_ref: Optional[str] = None
    label: Optional[str] = None

    def fingerprint(self) -> str:
        return content_fingerprint(self.text, self.attachment_ref)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "attachment_ref": self.attachment_ref,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "JobPayload":
        return cls(
            text=data["text"],
            attachment_ref=data.get("attachment_ref"),
            label=data.get("label"),
        )


@dataclass
class Job:
    """
    Single unit of work submitted to the remote service.

    Mutability rules:
    - job_id, payload, fingerprint, created_at: Immutable
    - status: Changed only through transition_to()
    - attempts, submitted_at: Updated by the concurrency gate on admission
    - external_id: Bound once reconciliation observes the job remotely
    """

    job_id: str
    payload: JobPayload
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: Optional[int] = 3
    submitted_at: Optional[str] = None
    fingerprint: str = ""
    external_id: Optional[str] = None
    readiness_failures: int = 0
    rate_limit_failures: int = 0
    last_error: Optional[str] = None
    created_at: str = field(default_factory=now_iso)
    finished_at: Optional[str] = None

    def __post_init__(self):
        if not self.fingerprint:
            self.fingerprint = self.payload.fingerprint()

    @classmethod
    def create(
        cls,
        payload: JobPayload,
        max_attempts: Optional[int] = 3,
    ) -> "Job":
        """Create a new Job with generated ID and PENDING status."""
        return cls(
            job_id=generate_uuid(),
            payload=payload,
            max_attempts=max_attempts,
        )

    def transition_to(self, status: JobStatus) -> None:
        """Move to a new status, rejecting illegal lifecycle edges."""
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(self.job_id, self.status.value, status.value)
        self.status = status

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def attempts_exhausted(self) -> bool:
        """True when max_attempts is bounded and has been reached."""
        return self.max_attempts is not None and self.attempts >= self.max_attempts

    def submitted_age(self, now: datetime) -> float:
        """Seconds since the most recent submission attempt."""
        if self.submitted_at is None:
            return 0.0
        return (now - parse_iso(self.submitted_at)).total_seconds()


@dataclass
class RunStats:
    """Counters for one run."""

    total_sent: int = 0
    total_errors: int = 0
    started_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "total_sent": self.total_sent,
            "total_errors": self.total_errors,
            "started_at": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RunStats":
        return cls(
            total_sent=data.get("total_sent", 0),
            total_errors=data.get("total_errors", 0),
            started_at=data.get("started_at"),
        )


@dataclass
class RunState:
    """
    Process-wide session state for one run.

    Owned explicitly and passed to each component. Writers per field:
    - queue, in_flight, completed, failed: JobQueue and ConcurrencyGate
    - phase, burst_size, burst_sent, scheduler_state: Dispatcher
    - stats: Dispatcher and SubmissionExecutor
    - retired_external_ids: ReconciliationPoller (remote items already
      resolved; kept across runs so old items never match new jobs)
    All writes happen while holding `lock`.

    `lock`, `slot_freed` and `submitting` are runtime-only and never
    persisted.
    """

    queue: list[Job] = field(default_factory=list)
    in_flight: dict[str, Job] = field(default_factory=dict)
    completed: list[Job] = field(default_factory=list)
    failed: list[Job] = field(default_factory=list)
    phase: Phase = Phase.BURST
    burst_size: int = 5
    burst_sent: int = 0
    is_running: bool = False
    is_paused: bool = False
    scheduler_state: SchedulerState = SchedulerState.IDLE
    stats: RunStats = field(default_factory=RunStats)
    retired_external_ids: set[str] = field(default_factory=set)

    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    slot_freed: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)
    submitting: set[str] = field(default_factory=set, repr=False, compare=False)

    def all_jobs(self) -> list[Job]:
        """Every job of the run: queued, in flight, then terminal."""
        return [
            *self.queue,
            *self.in_flight.values(),
            *self.completed,
            *self.failed,
        ]

    def find_job(self, job_id: str) -> Optional[Job]:
        for job in self.all_jobs():
            if job.job_id == job_id:
                return job
        return None

    def has_work(self) -> bool:
        """True while anything is queued or in flight."""
        return bool(self.queue) or bool(self.in_flight)

    @property
    def total_jobs(self) -> int:
        return len(self.queue) + len(self.in_flight) + len(self.completed) + len(self.failed)
