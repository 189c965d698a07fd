"""
Recovery Manager for the submission scheduler.

- Restores the persisted RunState on startup
- Discards snapshots older than the configured maximum age
- Restarts the state machine from IDLE: in-flight jobs stay in flight with
  their original submitted_at ("maybe submitted"), reconciliation or the
  staleness timeout resolves them, and they are never resubmitted blindly

Recovery is idempotent: running it twice yields the same RunState.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from .entities import RunState, SchedulerState, utcnow
from .persistence import PersistenceAdapter


logger = logging.getLogger(__name__)


class RecoveryManager:
    """Loads and normalizes the persisted snapshot."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        snapshot_max_age: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize RecoveryManager.

        Args:
            persistence: Snapshot store
            snapshot_max_age: Seconds after which a snapshot is discarded
                (None keeps snapshots forever)
            clock: Time source
        """
        self.persistence = persistence
        self.snapshot_max_age = snapshot_max_age
        self._clock = clock

    def recover_on_startup(self) -> tuple[Optional[RunState], dict]:
        """
        Restore the persisted run, if any.

        Returns:
            (state, stats) where state is None when there is nothing to
            resume, and stats describes what was found
        """
        stats = {
            "restored": False,
            "was_running": False,
            "was_paused": False,
            "queued": 0,
            "in_flight": 0,
            "completed": 0,
            "failed": 0,
            "discarded_expired": False,
            "errors": [],
        }

        logger.info("Checking for a saved run...")

        saved_at = self.persistence.snapshot_saved_at()
        if saved_at is None:
            logger.info("No saved run found")
            return None, stats

        age = (self._clock() - saved_at).total_seconds()
        if self.snapshot_max_age is not None and age > self.snapshot_max_age:
            logger.warning(
                f"Saved run is {age:.0f}s old (limit {self.snapshot_max_age:.0f}s), discarding"
            )
            self.persistence.clear()
            stats["discarded_expired"] = True
            return None, stats

        try:
            state = self.persistence.load_snapshot()
        except Exception as e:
            logger.error(f"Error loading saved run: {e}", exc_info=True)
            stats["errors"].append(f"Load: {e}")
            return None, stats

        if state is None:
            return None, stats

        stats.update(
            was_running=state.is_running,
            was_paused=state.is_paused,
            queued=len(state.queue),
            in_flight=len(state.in_flight),
            completed=len(state.completed),
            failed=len(state.failed),
        )

        if not state.has_work():
            logger.info("Saved run has no remaining work, clearing it")
            self.persistence.clear()
            return None, stats

        # Stored flags are left untouched until the run is started again
        state.is_running = False
        state.scheduler_state = SchedulerState.IDLE
        stats["restored"] = True

        logger.info(
            f"Recovery complete: {stats['queued']} queued, "
            f"{stats['in_flight']} in flight (maybe submitted), "
            f"{stats['completed']} completed, {stats['failed']} failed, "
            f"phase={state.phase.value}, saved {age:.0f}s ago"
        )
        return state, stats
