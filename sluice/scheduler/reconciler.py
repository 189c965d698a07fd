"""
Reconciliation Poller for the submission scheduler.

The remote service never pushes completion events; the only signal is a
polled snapshot of what it is currently working on. Each tick:

1. observe() via the ObservationPort (no lock held)
2. Under lock, match every in-flight job to an external item:
   - by bound external_id first
   - otherwise by content fingerprint, oldest submission first,
     each external item matched at most once
   - never against retired ids (resolved in this or an earlier run)
     or items already FINISHED/FAILED before the job was submitted
3. ACTIVE binds external_id, FINISHED releases COMPLETED,
   FAILED is handed to the failure callback (retry policy)
4. Unmatched jobs older than stale_timeout are released FAILED
5. Persist if anything changed

What ReconciliationPoller MUST NOT do:
- Submit jobs
- Touch jobs whose submission call is still in progress
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from .concurrency_gate import ConcurrencyGate, ReleaseOutcome
from .entities import Job, RunState, parse_iso, utcnow
from .errors import StaleInFlightError
from .executor import OutcomeKind, SubmissionOutcome
from .persistence import PersistenceAdapter
from .ports import ExternalItem, ExternalStatus, ObservationPort


logger = logging.getLogger(__name__)


DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_STALE_TIMEOUT_SECONDS = 600.0


@dataclass
class ReconciliationReport:
    """What one tick changed. Lists hold job ids."""

    observed: int = 0
    observe_failed: bool = False
    bound: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    failed_remotely: list[str] = field(default_factory=list)
    stale: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.bound or self.completed or self.failed_remotely or self.stale)


class ReconciliationPoller:
    """Matches in-flight jobs against the remote view and releases them."""

    def __init__(
        self,
        state: RunState,
        gate: ConcurrencyGate,
        port: ObservationPort,
        persistence: PersistenceAdapter,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        stale_timeout: Optional[float] = DEFAULT_STALE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize ReconciliationPoller.

        Args:
            state: Shared RunState
            gate: ConcurrencyGate used to release jobs
            port: ObservationPort to the remote service
            persistence: Snapshot store
            poll_interval: Seconds between ticks
            stale_timeout: Seconds before an unmatched in-flight job is
                assumed lost (None disables)
            clock: Time source
        """
        self.state = state
        self.gate = gate
        self.port = port
        self.persistence = persistence
        self.poll_interval = poll_interval
        self.stale_timeout = stale_timeout
        self._clock = clock

        self._on_external_failure: Optional[Callable[[Job, SubmissionOutcome], None]] = None

        # When each external id was first observed already FINISHED/FAILED
        self._resolved_seen_at: dict[str, datetime] = {}

        # External ids already resolved are never matched again
        state.retired_external_ids.update(
            job.external_id
            for job in (*state.completed, *state.failed)
            if job.external_id
        )

    def set_on_external_failure(
        self,
        callback: Callable[[Job, SubmissionOutcome], None],
    ) -> None:
        """
        Set callback for jobs the remote service reports FAILED.

        Called under the RunState lock; the callback must release the job
        from the gate.
        """
        self._on_external_failure = callback

    # =========================================================================
    # Tick
    # =========================================================================

    async def tick(self) -> ReconciliationReport:
        """Run one reconciliation pass."""
        report = ReconciliationReport()

        try:
            items = await self.port.observe()
        except Exception as e:
            logger.warning(f"Observation failed, treating as empty: {e}")
            items = []
            report.observe_failed = True

        report.observed = len(items)

        async with self.state.lock:
            now = self._clock()
            for item in items:
                if item.status != ExternalStatus.ACTIVE:
                    self._resolved_seen_at.setdefault(item.external_id, now)

            candidates = sorted(
                (
                    job
                    for job in self.state.in_flight.values()
                    if job.job_id not in self.state.submitting
                ),
                key=lambda job: job.submitted_at or "",
            )
            matches = self._match(candidates, items)

            for job in candidates:
                item = matches.get(job.job_id)
                if item is None:
                    self._check_stale(job, now, report)
                else:
                    self._apply_match(job, item, report)

            if report.changed:
                self.persistence.save_snapshot(self.state)

        if report.changed:
            logger.info(
                f"Reconciliation: {len(report.completed)} completed, "
                f"{len(report.failed_remotely)} failed remotely, "
                f"{len(report.stale)} stale, "
                f"{len(self.state.in_flight)} still in flight"
            )
        return report

    def _match(
        self,
        candidates: list[Job],
        items: list[ExternalItem],
    ) -> dict[str, ExternalItem]:
        retired = self.state.retired_external_ids
        live = [item for item in items if item.external_id not in retired]
        by_id = {item.external_id: item for item in live}

        # Ids bound to an in-flight job are reserved for that job
        used = {job.external_id for job in candidates if job.external_id}
        matches: dict[str, ExternalItem] = {}

        for job in candidates:
            if job.external_id and job.external_id in by_id:
                matches[job.job_id] = by_id[job.external_id]

        for job in candidates:
            if job.job_id in matches or job.external_id:
                continue
            for item in live:
                if item.external_id in used:
                    continue
                if item.content_fingerprint != job.fingerprint:
                    continue
                if self._resolved_before(item, job):
                    continue
                matches[job.job_id] = item
                used.add(item.external_id)
                break

        return matches

    def _resolved_before(self, item: ExternalItem, job: Job) -> bool:
        """True if the item was already FINISHED/FAILED before the job was sent."""
        seen_at = self._resolved_seen_at.get(item.external_id)
        if seen_at is None or job.submitted_at is None:
            return False
        return seen_at < parse_iso(job.submitted_at)

    def _apply_match(
        self,
        job: Job,
        item: ExternalItem,
        report: ReconciliationReport,
    ) -> None:
        if job.external_id != item.external_id:
            job.external_id = item.external_id
            report.bound.append(job.job_id)

        if item.status == ExternalStatus.ACTIVE:
            return

        self.state.retired_external_ids.add(item.external_id)

        if item.status == ExternalStatus.FINISHED:
            self.gate.release(job.job_id, ReleaseOutcome.COMPLETED)
            report.completed.append(job.job_id)
            logger.info(f"Job {job.job_id} completed remotely ({item.external_id})")
            return

        # ExternalStatus.FAILED
        job.external_id = None
        report.failed_remotely.append(job.job_id)
        outcome = SubmissionOutcome(
            job.job_id,
            OutcomeKind.TRANSIENT_FAILURE,
            error=f"Remote item {item.external_id} failed",
        )
        logger.warning(f"Job {job.job_id} failed remotely ({item.external_id})")

        self.state.stats.total_errors += 1
        if self._on_external_failure is not None:
            self._on_external_failure(job, outcome)
        else:
            self.gate.release(job.job_id, ReleaseOutcome.FAILED, error=outcome.error)

    def _check_stale(
        self,
        job: Job,
        now: datetime,
        report: ReconciliationReport,
    ) -> None:
        if self.stale_timeout is None:
            return

        age = job.submitted_age(now)
        if age <= self.stale_timeout:
            return

        error = StaleInFlightError(job.job_id, age)
        self.gate.release(job.job_id, ReleaseOutcome.FAILED, error=str(error))
        report.stale.append(job.job_id)
        logger.warning(f"{error}; marked FAILED, not resubmitted")

    # =========================================================================
    # Loop
    # =========================================================================

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick every poll_interval until stop_event is set."""
        logger.info(f"Reconciliation poller started (interval={self.poll_interval}s)")

        while not stop_event.is_set():
            if self.state.is_running and not self.state.is_paused and self.state.in_flight:
                try:
                    await self.tick()
                except Exception as e:
                    logger.error(f"Reconciliation tick failed: {e}", exc_info=True)

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Reconciliation poller stopped")
