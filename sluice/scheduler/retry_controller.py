"""
Retry/Backoff Policy for the submission scheduler.

Decides, for a failed submission, how long to wait and whether the job
is retried or dropped:

| Outcome                          | Phase      | Action                                 |
|----------------------------------|------------|----------------------------------------|
| RATE_LIMITED                     | BURST      | shrink burst, go SEQUENTIAL, requeue   |
|                                  |            | after the sequential delay             |
| RATE_LIMITED                     | SEQUENTIAL | requeue after the rate-limit cooldown  |
| TRANSIENT_FAILURE (readiness)    | either     | requeue after transient delay, free    |
| TRANSIENT_FAILURE (submission)   | either     | requeue after transient delay, charged |
| PERMANENT_FAILURE / exhausted    | either     | drop (FAILED)                          |

Rate limits and readiness failures are free up to a per-job count of
consecutive occurrences; past it they are charged like any other attempt.

What RetryPolicy MUST NOT do:
- Mutate jobs or RunState (the Dispatcher applies decisions)
"""

import logging
from dataclasses import dataclass
from enum import Enum

from .entities import Job, Phase
from .executor import OutcomeKind, SubmissionOutcome


logger = logging.getLogger(__name__)


# Defaults observed on the remote service
DEFAULT_SEQUENTIAL_DELAY_SECONDS = 120.0
DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS = 60.0
DEFAULT_TRANSIENT_DELAY_SECONDS = 3.0
DEFAULT_MAX_READINESS_RETRIES = 10
DEFAULT_MAX_RATE_LIMIT_RETRIES = 10


class RetryAction(str, Enum):
    """What to do with a failed job."""

    REQUEUE_AFTER = "REQUEUE_AFTER"
    DROP_PERMANENTLY = "DROP_PERMANENTLY"
    SHRINK_BURST_AND_REQUEUE = "SHRINK_BURST_AND_REQUEUE"


@dataclass(frozen=True)
class RetryDecision:
    """
    Decision for one failure.

    consume_attempt is False when the attempt must be refunded
    (rate limits, readiness failures).
    """

    action: RetryAction
    delay: float = 0.0
    consume_attempt: bool = True
    reason: str = ""

    @property
    def requeues(self) -> bool:
        return self.action != RetryAction.DROP_PERMANENTLY


class RetryPolicy:
    """
    Maps (job, outcome, phase) to a RetryDecision.

    Readiness failures and rate limits are free, but once a job has hit
    max_readiness_retries (or max_rate_limit_retries) of them in a row,
    further ones are charged so the job cannot be retried forever.
    """

    def __init__(
        self,
        sequential_delay: float = DEFAULT_SEQUENTIAL_DELAY_SECONDS,
        rate_limit_cooldown: float = DEFAULT_RATE_LIMIT_COOLDOWN_SECONDS,
        transient_delay: float = DEFAULT_TRANSIENT_DELAY_SECONDS,
        max_readiness_retries: int = DEFAULT_MAX_READINESS_RETRIES,
        max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES,
    ):
        self.sequential_delay = sequential_delay
        self.rate_limit_cooldown = rate_limit_cooldown
        self.transient_delay = transient_delay
        self.max_readiness_retries = max_readiness_retries
        self.max_rate_limit_retries = max_rate_limit_retries

    def on_failure(
        self,
        job: Job,
        outcome: SubmissionOutcome,
        phase: Phase,
    ) -> RetryDecision:
        """
        Decide what happens to a job after a failed attempt.

        `job.attempts` already includes the failed attempt.
        """
        if outcome.kind == OutcomeKind.ACCEPTED:
            raise ValueError("on_failure() called with an accepted outcome")

        if outcome.kind == OutcomeKind.PERMANENT_FAILURE:
            return RetryDecision(
                RetryAction.DROP_PERMANENTLY,
                delay=self.transient_delay,
                reason=f"Permanent failure: {outcome.error}",
            )

        if outcome.kind == OutcomeKind.RATE_LIMITED:
            charged = job.rate_limit_failures >= self.max_rate_limit_retries
            if charged and job.attempts_exhausted():
                return self._exhausted(job, outcome)

            if phase == Phase.BURST:
                return RetryDecision(
                    RetryAction.SHRINK_BURST_AND_REQUEUE,
                    delay=self.sequential_delay,
                    consume_attempt=charged,
                    reason="Rate limited during burst",
                )
            return RetryDecision(
                RetryAction.REQUEUE_AFTER,
                delay=self.rate_limit_cooldown,
                consume_attempt=charged,
                reason="Rate limited",
            )

        # TRANSIENT_FAILURE
        charged = (
            not outcome.readiness
            or job.readiness_failures >= self.max_readiness_retries
        )

        if charged and job.attempts_exhausted():
            return self._exhausted(job, outcome)

        return RetryDecision(
            RetryAction.REQUEUE_AFTER,
            delay=self.transient_delay,
            consume_attempt=charged,
            reason="Not ready" if outcome.readiness else "Transient failure",
        )

    def _exhausted(self, job: Job, outcome: SubmissionOutcome) -> RetryDecision:
        return RetryDecision(
            RetryAction.DROP_PERMANENTLY,
            delay=self.transient_delay,
            reason=(
                f"Attempts exhausted ({job.attempts}/{job.max_attempts}): "
                f"{outcome.error}"
            ),
        )
