"""
Submission Executor for the submission scheduler.

- Admits the queue head through the ConcurrencyGate
- Persists before calling the SubmissionPort, so a crash mid-call leaves
  the job recorded as SUBMITTED ("maybe submitted") instead of lost
- Classifies the port result into a SubmissionOutcome
- Hands every outcome to the registered callback while still holding the
  RunState lock, so a rejected job never lingers in flight

What SubmissionExecutor MUST NOT do:
- Decide retries or delays (RetryPolicy / Dispatcher)
- Change the phase
- Poll the remote service
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .concurrency_gate import ConcurrencyGate
from .entities import Job, RunState, to_iso, utcnow
from .errors import InvalidOperationError, NoSlotError
from .persistence import PersistenceAdapter
from .ports import SubmissionPort, SubmissionResult
from .queue_manager import JobQueue


logger = logging.getLogger(__name__)


class OutcomeKind(str, Enum):
    """Classified result of one submission attempt."""

    ACCEPTED = "ACCEPTED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Outcome of one submission attempt.

    readiness is True for transient failures where nothing reached the
    remote service (state not ready); those are not charged as attempts.
    """

    job_id: str
    kind: OutcomeKind
    error: Optional[str] = None
    readiness: bool = False

    @property
    def accepted(self) -> bool:
        return self.kind == OutcomeKind.ACCEPTED


def classify_result(job_id: str, result: SubmissionResult) -> SubmissionOutcome:
    """Map a raw SubmissionResult onto an OutcomeKind."""
    if result.accepted:
        return SubmissionOutcome(job_id, OutcomeKind.ACCEPTED)
    if result.rate_limited:
        return SubmissionOutcome(
            job_id, OutcomeKind.RATE_LIMITED, error=result.error or "Rate limited"
        )
    if result.permanent:
        return SubmissionOutcome(
            job_id, OutcomeKind.PERMANENT_FAILURE, error=result.error or "Rejected"
        )
    return SubmissionOutcome(
        job_id,
        OutcomeKind.TRANSIENT_FAILURE,
        error=result.error or "Submission failed",
        readiness=not result.ready,
    )


class SubmissionExecutor:
    """
    Submits queued jobs through the SubmissionPort.

    The port call is the only suspension point between admission and
    classification; the RunState lock is NOT held across it.
    """

    def __init__(
        self,
        state: RunState,
        queue: JobQueue,
        gate: ConcurrencyGate,
        port: SubmissionPort,
        persistence: PersistenceAdapter,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize SubmissionExecutor.

        Args:
            state: Shared RunState
            queue: JobQueue to take the head from
            gate: ConcurrencyGate for admission
            port: SubmissionPort to the remote service
            persistence: Snapshot store
            clock: Time source
        """
        self.state = state
        self.queue = queue
        self.gate = gate
        self.port = port
        self.persistence = persistence
        self._clock = clock

        # Called with (job, outcome) under the RunState lock
        self._on_outcome: Optional[Callable[[Job, SubmissionOutcome], None]] = None

    def set_on_outcome(
        self,
        callback: Callable[[Job, SubmissionOutcome], None],
    ) -> None:
        """
        Set callback for submission outcomes.

        Used by the Dispatcher to apply the retry policy and burst
        bookkeeping atomically with the executor's own updates.
        """
        self._on_outcome = callback

    async def submit(self, job: Optional[Job] = None) -> SubmissionOutcome:
        """
        Submit the queue head (or `job`, which must be the queue head).

        1. Under lock: check slot, dequeue, admit, persist
        2. Call SubmissionPort (no lock held)
        3. Under lock: apply outcome, notify callback, persist

        Raises:
            QueueEmptyError: If nothing is queued
            NoSlotError: If the gate is full (job stays at the head)
            InvalidOperationError: If `job` is not the queue head
        """
        async with self.state.lock:
            job = self._admit_head(job)
            self.state.submitting.add(job.job_id)
            self._save()

        logger.info(
            f"Submitting job {job.job_id} "
            f"(attempt {job.attempts}, label={job.payload.label or '-'})"
        )

        try:
            result = await self.port.submit(job.payload)
            outcome = classify_result(job.job_id, result)
        except asyncio.CancelledError:
            # Stays in flight as maybe-submitted; staleness covers it
            self.state.submitting.discard(job.job_id)
            raise
        except Exception as e:
            logger.warning(f"Submission call for job {job.job_id} raised: {e}")
            outcome = SubmissionOutcome(
                job.job_id,
                OutcomeKind.TRANSIENT_FAILURE,
                error=f"Submission error: {e}",
            )

        async with self.state.lock:
            self.state.submitting.discard(job.job_id)
            self._apply(job, outcome)
            self._save()

        return outcome

    def _admit_head(self, job: Optional[Job]) -> Job:
        head = self.queue.peek()
        if job is not None and head is not job:
            raise InvalidOperationError(f"Job {job.job_id} is not at the head of the queue")

        if self.gate.available_slots() <= 0:
            raise NoSlotError(self.gate.in_flight_count(), self.gate.max_concurrent)

        job = self.queue.dequeue_next()
        return self.gate.admit(job)

    def _apply(self, job: Job, outcome: SubmissionOutcome) -> None:
        if outcome.accepted:
            job.submitted_at = to_iso(self._clock())
            job.readiness_failures = 0
            job.rate_limit_failures = 0
            job.last_error = None
            self.state.stats.total_sent += 1
            logger.info(f"Job {job.job_id} accepted")
        else:
            self.state.stats.total_errors += 1
            job.last_error = outcome.error
            logger.warning(
                f"Job {job.job_id} not accepted: {outcome.kind.value} ({outcome.error})"
            )

        if self._on_outcome is not None:
            self._on_outcome(job, outcome)

    def _save(self) -> None:
        self.persistence.save_snapshot(self.state)
