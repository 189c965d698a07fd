"""
Submission Scheduler Core Module.

Bounded-concurrency submission scheduler with polling-based
reconciliation:
- JobQueue / ConcurrencyGate: FIFO queue and in-flight cap
- SubmissionExecutor: one submission through the SubmissionPort
- ReconciliationPoller: completion detection through the ObservationPort
- RetryPolicy: backoff and burst shrinking
- Dispatcher: the scheduler loop
- PersistenceAdapter / RecoveryManager: snapshot and restart
"""

from .entities import (
    JobStatus,
    Phase,
    SchedulerState,
    JobPayload,
    Job,
    RunStats,
    RunState,
    content_fingerprint,
)
from .errors import (
    SchedulerError,
    InvalidInputError,
    InvalidOperationError,
    InvalidTransitionError,
    QueueEmptyError,
    NoSlotError,
    JobNotFoundError,
    StaleInFlightError,
)
from .ports import (
    ExternalStatus,
    ExternalItem,
    SubmissionResult,
    SubmissionPort,
    ObservationPort,
)
from .persistence import PersistenceAdapter
from .queue_manager import JobQueue
from .concurrency_gate import ConcurrencyGate, ReleaseOutcome
from .executor import OutcomeKind, SubmissionOutcome, SubmissionExecutor
from .retry_controller import RetryAction, RetryDecision, RetryPolicy
from .reconciler import ReconciliationPoller, ReconciliationReport
from .dispatcher import Dispatcher, DispatchResult
from .recovery import RecoveryManager
from .service import SchedulerService

__all__ = [
    # Entities
    "JobStatus",
    "Phase",
    "SchedulerState",
    "JobPayload",
    "Job",
    "RunStats",
    "RunState",
    "content_fingerprint",
    # Errors
    "SchedulerError",
    "InvalidInputError",
    "InvalidOperationError",
    "InvalidTransitionError",
    "QueueEmptyError",
    "NoSlotError",
    "JobNotFoundError",
    "StaleInFlightError",
    # Ports
    "ExternalStatus",
    "ExternalItem",
    "SubmissionResult",
    "SubmissionPort",
    "ObservationPort",
    # Persistence
    "PersistenceAdapter",
    # Queue / gate
    "JobQueue",
    "ConcurrencyGate",
    "ReleaseOutcome",
    # Executor
    "OutcomeKind",
    "SubmissionOutcome",
    "SubmissionExecutor",
    # Retry
    "RetryAction",
    "RetryDecision",
    "RetryPolicy",
    # Reconciliation
    "ReconciliationPoller",
    "ReconciliationReport",
    # Dispatcher
    "Dispatcher",
    "DispatchResult",
    # Recovery
    "RecoveryManager",
    # Service
    "SchedulerService",
]
