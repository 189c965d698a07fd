"""
Scheduler Service - Main entry point for the submission scheduler.

This service owns the RunState and orchestrates all scheduler components:
- PersistenceAdapter (snapshot storage)
- RecoveryManager (restore on startup)
- Dispatcher (dispatch + reconciliation loops, built per RunState)
- Completion notification (webhook + in-process callbacks)

Usage:
    service = SchedulerService.create(config, submission_port, observation_port)
    await service.recover()
    await service.accept_batch(payloads)
    await service.start()
    await service.wait_until_stopped()
"""

import inspect
import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from ..infra.config import SchedulerConfig
from ..infra.webhook import notify_run_completed
from .dispatcher import CompletionCallback, Dispatcher
from .entities import Job, JobPayload, RunState, SchedulerState, parse_iso, utcnow
from .errors import InvalidOperationError
from .persistence import PersistenceAdapter
from .ports import ObservationPort, SubmissionPort
from .queue_manager import JobQueue
from .recovery import RecoveryManager


logger = logging.getLogger(__name__)


class SchedulerService:
    """
    Operator surface over one scheduler.

    Provides:
    - Component initialization and wiring
    - Startup with recovery (and optional auto-resume)
    - Batch intake, start / pause / resume / stop / clear
    - Status for the API and CLI
    """

    def __init__(
        self,
        config: SchedulerConfig,
        submission_port: SubmissionPort,
        observation_port: ObservationPort,
        persistence: PersistenceAdapter,
        recovery_manager: RecoveryManager,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.config = config
        self.submission_port = submission_port
        self.observation_port = observation_port
        self.persistence = persistence
        self.recovery_manager = recovery_manager
        self._clock = clock

        self._on_complete: list[CompletionCallback] = []
        self.state: RunState = self._new_state()
        self.dispatcher: Dispatcher = self._build_dispatcher(self.state)

    @classmethod
    def create(
        cls,
        config: SchedulerConfig,
        submission_port: SubmissionPort,
        observation_port: ObservationPort,
        persistence: Optional[PersistenceAdapter] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            config: Scheduler tunables
            submission_port: Port used to submit payloads
            observation_port: Port used for reconciliation
            persistence: Snapshot store (defaults to config.db_path)
            clock: Time source

        Returns:
            Configured SchedulerService
        """
        config.validate()

        if persistence is None:
            persistence = PersistenceAdapter(config.db_path)

        recovery_manager = RecoveryManager(
            persistence=persistence,
            snapshot_max_age=config.snapshot_max_age,
            clock=clock,
        )

        return cls(
            config=config,
            submission_port=submission_port,
            observation_port=observation_port,
            persistence=persistence,
            recovery_manager=recovery_manager,
            clock=clock,
        )

    def set_on_complete(self, callback: CompletionCallback) -> None:
        """
        Register a callback for run completion.

        Called with the finished RunState after the completion webhook.
        """
        self._on_complete.append(callback)

    # =========================================================================
    # Wiring
    # =========================================================================

    def _new_state(self) -> RunState:
        return RunState(
            burst_size=self.config.burst_size,
            retired_external_ids=self.persistence.load_retired_ids(),
        )

    def _build_dispatcher(self, state: RunState) -> Dispatcher:
        dispatcher = Dispatcher.create(
            state=state,
            config=self.config,
            submission_port=self.submission_port,
            observation_port=self.observation_port,
            persistence=self.persistence,
            clock=self._clock,
        )
        dispatcher.set_on_complete(self._handle_run_completed)
        return dispatcher

    def _install(self, state: RunState) -> None:
        self.state = state
        self.dispatcher = self._build_dispatcher(state)

    async def _handle_run_completed(self, state: RunState) -> None:
        await notify_run_completed(self.config.completion_webhook_url, state)

        for callback in self._on_complete:
            try:
                result = callback(state)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Error in completion callback: {e}", exc_info=True)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def recover(self) -> dict:
        """
        Restore a persisted run.

        If the snapshot was running and auto_resume is enabled, the loops
        are restarted immediately.

        Returns:
            Recovery statistics (plus "resumed")
        """
        if self.dispatcher.is_active:
            raise InvalidOperationError("Cannot recover while the scheduler is running")

        state, stats = self.recovery_manager.recover_on_startup()
        stats["resumed"] = False

        if state is None:
            return stats

        self._install(state)

        if stats["was_running"] and self.config.auto_resume:
            logger.info("Auto-resuming restored run")
            await self.dispatcher.start()
            stats["resumed"] = True

        return stats

    async def accept_batch(self, payloads: Iterable[JobPayload]) -> list[Job]:
        """
        Append a batch of payloads to the queue.

        After a STOPPED run, a new run starts from IDLE carrying over the
        stopped run's unfinished jobs.

        Raises:
            InvalidInputError: If the batch is empty or a payload has no text
        """
        if self.state.scheduler_state == SchedulerState.STOPPED:
            state = self._carry_over(self.state)
            jobs = JobQueue(state).enqueue_batch(
                payloads, max_attempts=self.config.max_attempts
            )
            self._install(state)
            async with self.state.lock:
                self.persistence.save_snapshot(self.state)
            return jobs

        async with self.state.lock:
            jobs = self.dispatcher.queue.enqueue_batch(
                payloads, max_attempts=self.config.max_attempts
            )
            self.persistence.save_snapshot(self.state)

        self.state.slot_freed.set()
        return jobs

    def _carry_over(self, previous: RunState) -> RunState:
        state = self._new_state()
        state.retired_external_ids.update(previous.retired_external_ids)
        state.queue.extend(previous.queue)
        state.in_flight.update(previous.in_flight)

        if previous.has_work():
            logger.info(
                f"New run carries over {len(previous.queue)} queued and "
                f"{len(previous.in_flight)} in-flight jobs"
            )
        return state

    async def start(self) -> None:
        """Start dispatching (see Dispatcher.start)."""
        await self.dispatcher.start()

    async def pause(self) -> None:
        await self.dispatcher.pause()

    async def resume(self) -> None:
        await self.dispatcher.resume()

    async def stop(self) -> None:
        """Stop both loops; unfinished work stays persisted."""
        await self.dispatcher.stop()

    async def clear(self) -> int:
        """
        Stop (if needed) and discard the run and its snapshot.

        Returns:
            Number of unfinished jobs discarded
        """
        if self.dispatcher.is_active:
            await self.dispatcher.stop()

        discarded = len(self.state.queue) + len(self.state.in_flight)
        self.persistence.clear()
        self._install(self._new_state())

        logger.info(f"Run cleared ({discarded} unfinished jobs discarded)")
        return discarded

    async def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for the current run's dispatch loop to end.

        Returns:
            True if stopped, False on timeout
        """
        return await self.dispatcher.wait_until_stopped(timeout=timeout)

    @property
    def is_running(self) -> bool:
        return self.dispatcher.is_active

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> dict:
        """
        Get scheduler status.

        Returns:
            Dict with queued, in_flight / max_concurrent, completed, failed,
            phase, state and stats
        """
        state = self.state
        elapsed = None
        if state.stats.started_at:
            elapsed = round(
                (self._clock() - parse_iso(state.stats.started_at)).total_seconds(), 1
            )

        return {
            "state": state.scheduler_state.value,
            "phase": state.phase.value,
            "is_running": state.is_running,
            "is_paused": state.is_paused,
            "queued": len(state.queue),
            "in_flight": len(state.in_flight),
            "max_concurrent": self.config.max_concurrent,
            "completed": len(state.completed),
            "failed": len(state.failed),
            "total": state.total_jobs,
            "remaining": len(state.queue) + len(state.in_flight),
            "burst_size": state.burst_size,
            "burst_sent": state.burst_sent,
            "stats": {
                "total_sent": state.stats.total_sent,
                "total_errors": state.stats.total_errors,
                "started_at": state.stats.started_at,
                "elapsed_seconds": elapsed,
            },
        }
