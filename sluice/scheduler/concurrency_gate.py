"""
Concurrency Gate for the submission scheduler.

Pure bookkeeping of in-flight jobs against max_concurrent.

Invariant: len(state.in_flight) never exceeds max_concurrent. The remote
service enforces its own hard cap and rejects or degrades excess work, so
this is the property everything else protects.

Callers hold RunState.lock around admit() and release().
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from .entities import Job, JobStatus, RunState, to_iso, utcnow
from .errors import InvalidOperationError, JobNotFoundError, NoSlotError
from .queue_manager import JobQueue


logger = logging.getLogger(__name__)


class ReleaseOutcome(str, Enum):
    """Where a released job goes."""

    COMPLETED = "COMPLETED"
    RETRY = "RETRY"
    FAILED = "FAILED"


class ConcurrencyGate:
    """Tracks in-flight jobs and routes released jobs."""

    def __init__(
        self,
        state: RunState,
        queue: JobQueue,
        max_concurrent: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize ConcurrencyGate.

        Args:
            state: RunState owning the in-flight set
            queue: JobQueue for RETRY releases
            max_concurrent: Hard cap on in-flight jobs
            clock: Time source for submitted_at
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.state = state
        self.queue = queue
        self.max_concurrent = max_concurrent
        self._clock = clock

    def available_slots(self) -> int:
        """Free slots: max_concurrent - len(in_flight)."""
        return self.max_concurrent - len(self.state.in_flight)

    def admit(self, job: Job) -> Job:
        """
        Move a job from PENDING to SUBMITTED and occupy a slot.

        Increments attempts and stamps submitted_at.

        Raises:
            NoSlotError: If no slot is free
            InvalidTransitionError: If the job is not PENDING
        """
        if self.available_slots() <= 0:
            raise NoSlotError(len(self.state.in_flight), self.max_concurrent)

        if job.job_id in self.state.in_flight:
            raise InvalidOperationError(f"Job {job.job_id} is already in flight")

        job.transition_to(JobStatus.SUBMITTED)
        job.attempts += 1
        job.submitted_at = to_iso(self._clock())
        self.state.in_flight[job.job_id] = job

        logger.debug(
            f"Admitted job {job.job_id} "
            f"({len(self.state.in_flight)}/{self.max_concurrent} in flight)"
        )
        return job

    def release(
        self,
        job_id: str,
        outcome: ReleaseOutcome,
        error: str | None = None,
    ) -> Job:
        """
        Remove a job from the in-flight set and route it.

        - COMPLETED: to state.completed
        - RETRY: back to the head of the queue as PENDING
        - FAILED: to state.failed

        Raises:
            JobNotFoundError: If the job is not in flight
        """
        job = self.state.in_flight.pop(job_id, None)
        if job is None:
            raise JobNotFoundError(job_id)

        if error is not None:
            job.last_error = error

        if outcome == ReleaseOutcome.COMPLETED:
            job.transition_to(JobStatus.COMPLETED)
            job.finished_at = to_iso(self._clock())
            self.state.completed.append(job)
        elif outcome == ReleaseOutcome.RETRY:
            job.transition_to(JobStatus.PENDING)
            self.queue.requeue_front(job)
        else:
            job.transition_to(JobStatus.FAILED)
            job.finished_at = to_iso(self._clock())
            self.state.failed.append(job)

        logger.debug(
            f"Released job {job_id} as {outcome.value} "
            f"({len(self.state.in_flight)}/{self.max_concurrent} in flight)"
        )

        self.state.slot_freed.set()
        return job

    def in_flight_count(self) -> int:
        return len(self.state.in_flight)
