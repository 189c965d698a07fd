"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty snapshot database
  - Mocked clock at fixed time
  - Fake submission / observation ports
  - Fast config (zero delays)

Component fixtures are wired the same way Dispatcher.create() wires them.
"""

import pytest

from sluice.infra.config import SchedulerConfig
from sluice.scheduler import (
    ConcurrencyGate,
    Dispatcher,
    JobQueue,
    PersistenceAdapter,
    RunState,
    SubmissionExecutor,
)
from sluice.scheduler.reconciler import ReconciliationPoller


# =============================================================================
# Config / State Fixtures
# =============================================================================


@pytest.fixture
def config(temp_db_path: str) -> SchedulerConfig:
    """Production-like cadence constants, small cap for tests."""
    return SchedulerConfig(
        max_concurrent=3,
        burst_size=5,
        burst_delay=10.0,
        sequential_delay=120.0,
        rate_limit_cooldown=60.0,
        transient_delay=3.0,
        poll_interval=5.0,
        stale_timeout=600.0,
        max_attempts=3,
        max_readiness_retries=10,
        db_path=temp_db_path,
    )


@pytest.fixture
def fast_config(temp_db_path: str) -> SchedulerConfig:
    """Zero delays and a short poll interval for loop tests."""
    return SchedulerConfig(
        max_concurrent=2,
        burst_size=2,
        burst_delay=0.0,
        sequential_delay=0.0,
        rate_limit_cooldown=0.0,
        transient_delay=0.0,
        poll_interval=0.01,
        stale_timeout=600.0,
        max_attempts=3,
        db_path=temp_db_path,
    )


@pytest.fixture
def persistence(temp_db_path: str) -> PersistenceAdapter:
    """Create a fresh PersistenceAdapter with empty database."""
    return PersistenceAdapter(temp_db_path)


@pytest.fixture
def state() -> RunState:
    return RunState(burst_size=5)


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def queue(state: RunState) -> JobQueue:
    return JobQueue(state)


@pytest.fixture
def gate(state: RunState, queue: JobQueue, clock) -> ConcurrencyGate:
    return ConcurrencyGate(state, queue, max_concurrent=3, clock=clock)


@pytest.fixture
def executor(state, queue, gate, submission_port, persistence, clock) -> SubmissionExecutor:
    return SubmissionExecutor(state, queue, gate, submission_port, persistence, clock=clock)


@pytest.fixture
def poller(state, gate, observation_port, persistence, clock) -> ReconciliationPoller:
    return ReconciliationPoller(
        state,
        gate,
        observation_port,
        persistence,
        poll_interval=5.0,
        stale_timeout=600.0,
        clock=clock,
    )


@pytest.fixture
def dispatcher(
    state, config, submission_port, observation_port, persistence, clock
) -> Dispatcher:
    """Fully wired Dispatcher over the shared state."""
    return Dispatcher.create(
        state=state,
        config=config,
        submission_port=submission_port,
        observation_port=observation_port,
        persistence=persistence,
        clock=clock,
    )
