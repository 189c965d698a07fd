"""
Scheduler-specific exceptions.

Job-scoped failures (rate limits, transient and permanent submission
failures) are outcome values, not exceptions; see executor.SubmissionOutcome.
The exceptions here cover invalid input, gate refusals and illegal
lifecycle operations.
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class InvalidInputError(SchedulerError):
    """
    Raised when a batch is rejected synchronously.

    Examples:
    - Empty batch
    - Payload without any text
    """
    pass


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation is not allowed in the current state.

    Examples:
    - start() with nothing queued
    - accept_batch() while the scheduler is stopping
    """
    pass


class InvalidTransitionError(InvalidOperationError):
    """Raised when a job status change skips or reverses its lifecycle."""

    def __init__(self, job_id: str, from_status: str, to_status: str):
        self.job_id = job_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Illegal transition for job {job_id}: {from_status} -> {to_status}"
        )


class QueueEmptyError(SchedulerError):
    """Raised by dequeue_next() when no job is pending."""
    pass


class NoSlotError(SchedulerError):
    """
    Raised when the concurrency gate has no free slot.

    Expected during normal operation: the caller waits for reconciliation
    to free a slot. Never counted as a job failure.
    """

    def __init__(self, in_flight: int, max_concurrent: int):
        self.in_flight = in_flight
        self.max_concurrent = max_concurrent
        super().__init__(
            f"No free slot: {in_flight}/{max_concurrent} jobs in flight"
        )


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class StaleInFlightError(SchedulerError):
    """
    Reason recorded for an in-flight job assumed lost.

    Never raised out of the reconciliation loop; its message is stored
    as the job's last_error when the staleness timeout expires.
    """

    def __init__(self, job_id: str, age_seconds: float):
        self.job_id = job_id
        self.age_seconds = age_seconds
        super().__init__(
            f"Job {job_id} unconfirmed after {age_seconds:.0f}s, assumed lost"
        )
