"""
Job Queue for the submission scheduler.

- Maintains the FIFO queue of PENDING jobs inside RunState
- Order is the contract for submission order
- requeue_front() puts a retried job back at the head

What JobQueue MUST NOT do:
- Submit jobs (SubmissionExecutor's responsibility)
- Track in-flight jobs (ConcurrencyGate's responsibility)
- Decide retries (RetryPolicy's responsibility)
- Persist (callers persist after mutating, before any submission call)

Callers hold RunState.lock around every mutating call.
"""

import logging
from typing import Iterable, Optional

from .entities import Job, JobPayload, JobStatus, RunState
from .errors import InvalidInputError, QueueEmptyError


logger = logging.getLogger(__name__)


class JobQueue:
    """FIFO queue view over RunState.queue."""

    def __init__(self, state: RunState):
        """
        Initialize JobQueue.

        Args:
            state: RunState owning the queue list
        """
        self.state = state

    # =========================================================================
    # Insertion
    # =========================================================================

    def enqueue_batch(
        self,
        payloads: Iterable[JobPayload],
        max_attempts: Optional[int] = 3,
    ) -> list[Job]:
        """
        Append a batch of jobs in order.

        Args:
            payloads: Job payloads in submission order
            max_attempts: Per-job attempt ceiling (None = unbounded)

        Returns:
            The created Jobs

        Raises:
            InvalidInputError: If the batch is empty or a payload has no text
        """
        payloads = list(payloads)
        if not payloads:
            raise InvalidInputError("Batch is empty")

        for index, payload in enumerate(payloads):
            if not payload.text or not payload.text.strip():
                raise InvalidInputError(f"Payload {index} has no text")

        jobs = [Job.create(payload, max_attempts=max_attempts) for payload in payloads]
        self.state.queue.extend(jobs)

        logger.info(
            f"Enqueued {len(jobs)} jobs (queue length={len(self.state.queue)})"
        )
        return jobs

    def requeue_front(self, job: Job) -> None:
        """
        Reinsert a job at the head of the queue.

        The job must already be PENDING; ConcurrencyGate.release() moves it
        back from SUBMITTED before calling this.
        """
        if job.status != JobStatus.PENDING:
            raise InvalidInputError(
                f"Only PENDING jobs can be queued, job {job.job_id} is {job.status.value}"
            )
        self.state.queue.insert(0, job)
        logger.debug(f"Job {job.job_id} requeued at head")

    # =========================================================================
    # Retrieval
    # =========================================================================

    def dequeue_next(self) -> Job:
        """
        Remove and return the head job.

        Raises:
            QueueEmptyError: If no job is pending
        """
        if not self.state.queue:
            raise QueueEmptyError("Queue is empty")
        return self.state.queue.pop(0)

    def peek(self) -> Optional[Job]:
        """Return the head job without removing it."""
        return self.state.queue[0] if self.state.queue else None

    def list_pending(self) -> list[Job]:
        """List queued jobs in submission order."""
        return list(self.state.queue)

    def __len__(self) -> int:
        return len(self.state.queue)
