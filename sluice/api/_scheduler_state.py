"""
Scheduler state management for API integration.

Provides singleton access to the SchedulerService instance.
Initialized during FastAPI lifespan.

Usage:
    from ._scheduler_state import get_scheduler_service, init_scheduler_service

    # In lifespan:
    service = init_scheduler_service(config, submission_port, observation_port)

    # In routers:
    service = get_scheduler_service()
"""

from typing import Optional

from ..infra.config import SchedulerConfig
from ..scheduler.persistence import PersistenceAdapter
from ..scheduler.ports import ObservationPort, SubmissionPort
from ..scheduler.service import SchedulerService


# Global scheduler service instance
_scheduler_service: Optional[SchedulerService] = None


class SchedulerNotInitializedError(RuntimeError):
    """Raised when the API is used before the service exists."""
    pass


def init_scheduler_service(
    config: SchedulerConfig,
    submission_port: SubmissionPort,
    observation_port: ObservationPort,
    persistence: Optional[PersistenceAdapter] = None,
) -> SchedulerService:
    """
    Initialize the scheduler service singleton.

    Called during FastAPI lifespan startup. Does NOT start the
    scheduler; recovery and auto-resume are the lifespan's job.
    """
    global _scheduler_service

    if _scheduler_service is not None:
        return _scheduler_service

    _scheduler_service = SchedulerService.create(
        config=config,
        submission_port=submission_port,
        observation_port=observation_port,
        persistence=persistence,
    )

    return _scheduler_service


def set_scheduler_service(service: Optional[SchedulerService]) -> None:
    """Install (or remove) the singleton directly."""
    global _scheduler_service
    _scheduler_service = service


def get_scheduler_service() -> SchedulerService:
    """
    Get the scheduler service singleton.

    Raises:
        SchedulerNotInitializedError: If scheduler service not initialized
    """
    if _scheduler_service is None:
        raise SchedulerNotInitializedError(
            "Scheduler service not initialized. "
            "Set SLUICE_SUBMIT_URL and SLUICE_OBSERVE_URL and restart the server."
        )

    return _scheduler_service


async def shutdown_scheduler_service() -> None:
    """
    Shutdown the scheduler service.

    Called during FastAPI lifespan shutdown. Stops the loops if running;
    unfinished work stays persisted for the next start.
    """
    global _scheduler_service

    if _scheduler_service is not None:
        if _scheduler_service.is_running:
            await _scheduler_service.stop()

        _scheduler_service = None
