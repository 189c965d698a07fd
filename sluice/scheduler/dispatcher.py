"""
Dispatcher (scheduler loop) for the submission scheduler.

- Pulls the queue head and hands it to the SubmissionExecutor
- Paces submissions: fast burst first, then slow sequential
- Applies the RetryPolicy to every rejected submission
- Runs the ReconciliationPoller alongside the dispatch loop
- Drives the SchedulerState machine:

    IDLE -> RUNNING(BURST) -> RUNNING(SEQUENTIAL) -> DRAINING -> STOPPED

What Dispatcher MUST NOT do:
- Call the remote service directly (ports are behind executor / poller)
- Mutate queue or in-flight collections except through JobQueue and
  ConcurrencyGate
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from ..infra.config import SchedulerConfig
from .concurrency_gate import ConcurrencyGate, ReleaseOutcome
from .entities import Job, Phase, RunState, SchedulerState, now_iso, utcnow
from .errors import InvalidOperationError, NoSlotError, QueueEmptyError
from .executor import OutcomeKind, SubmissionExecutor, SubmissionOutcome
from .persistence import PersistenceAdapter
from .ports import ObservationPort, SubmissionPort
from .queue_manager import JobQueue
from .reconciler import ReconciliationPoller
from .retry_controller import RetryAction, RetryDecision, RetryPolicy


logger = logging.getLogger(__name__)


CompletionCallback = Callable[[RunState], Union[Awaitable[None], None]]


@dataclass(frozen=True)
class DispatchResult:
    """One dispatch step: the job, its outcome, and the wait before the next."""

    job: Job
    outcome: SubmissionOutcome
    delay: float


class Dispatcher:
    """
    Runs the dispatch loop for one RunState.

    Key behaviors:
    1. dispatch_one(): admit + submit the queue head
    2. Accepted: count toward the burst, wait burst_delay or sequential_delay
    3. Rejected: RetryPolicy decides requeue / drop / burst shrink
    4. NoSlot: wait for a released slot (bounded by poll_interval)
    5. Queue empty: DRAINING until reconciliation empties the in-flight set
    """

    def __init__(
        self,
        state: RunState,
        queue: JobQueue,
        gate: ConcurrencyGate,
        executor: SubmissionExecutor,
        poller: ReconciliationPoller,
        policy: RetryPolicy,
        persistence: PersistenceAdapter,
        burst_delay: float = 10.0,
        sequential_delay: float = 120.0,
        poll_interval: float = 5.0,
    ):
        """
        Initialize Dispatcher.

        Use Dispatcher.create() for convenient construction.
        """
        self.state = state
        self.queue = queue
        self.gate = gate
        self.executor = executor
        self.poller = poller
        self.policy = policy
        self.persistence = persistence
        self.burst_delay = burst_delay
        self.sequential_delay = sequential_delay
        self.poll_interval = poll_interval

        self._stop_event = asyncio.Event()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._next_delay = 0.0
        self._on_complete: Optional[CompletionCallback] = None

        executor.set_on_outcome(self._handle_outcome)
        poller.set_on_external_failure(self._handle_external_failure)

    @classmethod
    def create(
        cls,
        state: RunState,
        config: SchedulerConfig,
        submission_port: SubmissionPort,
        observation_port: ObservationPort,
        persistence: PersistenceAdapter,
        clock: Callable[[], datetime] = utcnow,
    ) -> "Dispatcher":
        """
        Create a Dispatcher with all per-run components wired together.

        Args:
            state: RunState to drive
            config: Scheduler tunables
            submission_port: Port used to submit payloads
            observation_port: Port used for reconciliation
            persistence: Snapshot store
            clock: Time source

        Returns:
            Configured Dispatcher
        """
        queue = JobQueue(state)
        gate = ConcurrencyGate(state, queue, config.max_concurrent, clock=clock)
        executor = SubmissionExecutor(
            state, queue, gate, submission_port, persistence, clock=clock
        )
        poller = ReconciliationPoller(
            state,
            gate,
            observation_port,
            persistence,
            poll_interval=config.poll_interval,
            stale_timeout=config.stale_timeout,
            clock=clock,
        )
        policy = RetryPolicy(
            sequential_delay=config.sequential_delay,
            rate_limit_cooldown=config.rate_limit_cooldown,
            transient_delay=config.transient_delay,
            max_readiness_retries=config.max_readiness_retries,
            max_rate_limit_retries=config.max_rate_limit_retries,
        )

        return cls(
            state=state,
            queue=queue,
            gate=gate,
            executor=executor,
            poller=poller,
            policy=policy,
            persistence=persistence,
            burst_delay=config.burst_delay,
            sequential_delay=config.sequential_delay,
            poll_interval=config.poll_interval,
        )

    @property
    def scheduler_state(self) -> SchedulerState:
        return self.state.scheduler_state

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def is_active(self) -> bool:
        """True while the dispatch loop task is alive."""
        return self._dispatch_task is not None and not self._dispatch_task.done()

    def set_on_complete(self, callback: CompletionCallback) -> None:
        """
        Set callback for run completion.

        Called once the queue and in-flight set are both empty. May be a
        plain function or a coroutine function.
        """
        self._on_complete = callback

    # =========================================================================
    # Single Dispatch Operation
    # =========================================================================

    async def dispatch_one(self) -> Optional[DispatchResult]:
        """
        Attempt to dispatch a single job.

        Returns:
            DispatchResult if a job was submitted, None if nothing could be
            dispatched (paused, queue empty, or no free slot)
        """
        if self.state.is_paused:
            logger.debug("Paused, skipping dispatch")
            return None

        try:
            outcome = await self.executor.submit()
        except QueueEmptyError:
            logger.debug("Queue is empty")
            return None
        except NoSlotError as e:
            logger.debug(str(e))
            return None

        job = self.state.find_job(outcome.job_id)
        return DispatchResult(job=job, outcome=outcome, delay=self._next_delay)

    def _handle_outcome(self, job: Job, outcome: SubmissionOutcome) -> None:
        """Executor callback; runs under the RunState lock."""
        if not outcome.accepted:
            decision = self._apply_failure(job, outcome)
            self._next_delay = decision.delay
            return

        if self.state.phase == Phase.SEQUENTIAL:
            self._next_delay = self.sequential_delay
            return

        self.state.burst_sent += 1
        if self.state.burst_sent >= self.state.burst_size:
            self._switch_to_sequential(
                f"burst of {self.state.burst_sent} complete"
            )
            self._next_delay = self.sequential_delay
        else:
            self._next_delay = self.burst_delay

    def _handle_external_failure(self, job: Job, outcome: SubmissionOutcome) -> None:
        """Poller callback for remote FAILED items; runs under the RunState lock."""
        self._apply_failure(job, outcome)

    def _apply_failure(self, job: Job, outcome: SubmissionOutcome) -> RetryDecision:
        decision = self.policy.on_failure(job, outcome, self.state.phase)

        if not decision.consume_attempt:
            job.attempts -= 1
        if outcome.readiness:
            job.readiness_failures += 1
        if outcome.kind == OutcomeKind.RATE_LIMITED:
            job.rate_limit_failures += 1

        if decision.action == RetryAction.DROP_PERMANENTLY:
            self.gate.release(job.job_id, ReleaseOutcome.FAILED, error=decision.reason)
            logger.warning(f"Job {job.job_id} dropped: {decision.reason}")
            return decision

        if decision.action == RetryAction.SHRINK_BURST_AND_REQUEUE:
            self.state.burst_size = self.state.burst_sent
            self._switch_to_sequential(
                f"rate limited after {self.state.burst_sent} burst submissions"
            )

        self.gate.release(job.job_id, ReleaseOutcome.RETRY)
        logger.info(
            f"Job {job.job_id} requeued: {decision.reason} "
            f"(retry in {decision.delay:.0f}s, attempts={job.attempts})"
        )
        return decision

    def _switch_to_sequential(self, reason: str) -> None:
        if self.state.phase == Phase.SEQUENTIAL:
            return
        self.state.phase = Phase.SEQUENTIAL
        logger.info(
            f"Switching to SEQUENTIAL phase: {reason} "
            f"(delay {self.sequential_delay:.0f}s)"
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """
        Start the dispatch and reconciliation loops.

        Raises:
            InvalidOperationError: If already running, stopped, or there is
                nothing to run
        """
        if self.is_active:
            raise InvalidOperationError("Scheduler is already running")

        async with self.state.lock:
            if self.state.scheduler_state == SchedulerState.STOPPED:
                raise InvalidOperationError("Run is stopped; submit a new batch to restart")
            if not self.state.has_work():
                raise InvalidOperationError("Nothing to run: queue and in-flight set are empty")

            self.state.is_running = True
            self.state.scheduler_state = (
                SchedulerState.RUNNING if self.state.queue else SchedulerState.DRAINING
            )
            if self.state.stats.started_at is None:
                self.state.stats.started_at = now_iso()
            self.persistence.save_snapshot(self.state)

        self._stop_event.clear()
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        self._poll_task = asyncio.create_task(self.poller.run(self._stop_event))

        logger.info(
            f"Scheduler started: {len(self.state.queue)} queued, "
            f"{len(self.state.in_flight)} in flight, phase={self.state.phase.value}"
        )

    async def stop(self) -> None:
        """
        Stop both loops.

        Wakes every timer immediately and cancels in-progress waits. An
        accepted submission is not retracted; a job whose submission call
        was cancelled stays in flight.
        """
        logger.info("Stopping scheduler...")
        self._stop_event.set()
        self.state.slot_freed.set()

        tasks = [
            task for task in (self._dispatch_task, self._poll_task)
            if task is not None and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        async with self.state.lock:
            if self.state.scheduler_state != SchedulerState.STOPPED:
                self.state.scheduler_state = SchedulerState.STOPPED
                self.state.is_running = False
                if self.state.has_work():
                    self.persistence.save_snapshot(self.state)

        logger.info("Scheduler stopped")

    async def pause(self) -> None:
        """
        Pause dispatch and reconciliation.

        Raises:
            InvalidOperationError: If the scheduler is not running
        """
        async with self.state.lock:
            if not self.state.is_running:
                raise InvalidOperationError("Scheduler is not running")
            if self.state.is_paused:
                return
            self.state.is_paused = True
            self.persistence.save_snapshot(self.state)
        logger.info("Scheduler paused")

    async def resume(self) -> None:
        """
        Resume after pause().

        Raises:
            InvalidOperationError: If the scheduler is not paused
        """
        async with self.state.lock:
            if not self.state.is_paused:
                raise InvalidOperationError("Scheduler is not paused")
            self.state.is_paused = False
            self.persistence.save_snapshot(self.state)
        self.state.slot_freed.set()
        logger.info("Scheduler resumed")

    async def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the dispatch loop to end.

        Returns:
            True if the loop ended (or never ran), False on timeout
        """
        task = self._dispatch_task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return bool(done)

    # =========================================================================
    # Dispatch Loop
    # =========================================================================

    async def _dispatch_loop(self) -> None:
        """Main dispatch loop."""
        logger.info("Dispatch loop started")

        while not self._stop_event.is_set():
            try:
                self.state.slot_freed.clear()
                result = await self.dispatch_one()

                if result is not None:
                    await self._sleep(result.delay)
                    continue

                if await self._update_lifecycle():
                    await self._finish()
                    break

                await self._wait_for_wakeup(self.poll_interval)

            except Exception as e:
                logger.error(f"Error in dispatch loop: {e}", exc_info=True)
                await self._sleep(self.poll_interval)

        logger.info("Dispatch loop ended")

    async def _update_lifecycle(self) -> bool:
        """
        Move between RUNNING and DRAINING.

        Returns:
            True once the queue and in-flight set are both empty
        """
        async with self.state.lock:
            if not self.state.has_work():
                return True

            target = SchedulerState.RUNNING if self.state.queue else SchedulerState.DRAINING
            if self.state.scheduler_state != target:
                self.state.scheduler_state = target
                self.persistence.save_snapshot(self.state)
                if target == SchedulerState.DRAINING:
                    logger.info(
                        f"Queue empty, draining {len(self.state.in_flight)} in-flight jobs"
                    )
            return False

    async def _finish(self) -> None:
        async with self.state.lock:
            self.state.is_running = False
            self.state.scheduler_state = SchedulerState.STOPPED
            self.persistence.clear()

        self._stop_event.set()
        logger.info(
            f"Run complete: {len(self.state.completed)} completed, "
            f"{len(self.state.failed)} failed, "
            f"{self.state.stats.total_sent} sent, "
            f"{self.state.stats.total_errors} errors"
        )

        if self._on_complete is not None:
            try:
                result = self._on_complete(self.state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in completion callback: {e}", exc_info=True)

    async def _sleep(self, seconds: float) -> None:
        """Wait `seconds`, returning early on stop."""
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _wait_for_wakeup(self, timeout: float) -> None:
        """Wait for a released slot, resume, or stop (bounded by timeout)."""
        try:
            await asyncio.wait_for(self.state.slot_freed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
