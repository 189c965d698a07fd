"""
Recovery Manager Tests.

- No snapshot: nothing restored
- Expired snapshot: discarded and cleared
- Finished snapshot: cleared
- Restored state starts from IDLE with in-flight jobs untouched
- Running recovery twice yields the same state
"""

from datetime import timedelta

import pytest

from sluice.scheduler import (
    JobStatus,
    RecoveryManager,
    ReleaseOutcome,
    SchedulerState,
)
from sluice.scheduler.entities import utcnow


def _save_run(persistence, state, queue, gate, make_payloads, in_flight: int = 1):
    queue.enqueue_batch(make_payloads(3))
    for _ in range(in_flight):
        gate.admit(queue.dequeue_next())
    state.is_running = True
    state.scheduler_state = SchedulerState.RUNNING
    persistence.save_snapshot(state)


class TestRecoverOnStartup:
    def test_no_snapshot(self, persistence):
        state, stats = RecoveryManager(persistence).recover_on_startup()

        assert state is None
        assert not stats["restored"]

    def test_restores_running_run(self, persistence, state, queue, gate, make_payloads):
        _save_run(persistence, state, queue, gate, make_payloads)
        original = next(iter(state.in_flight.values()))

        recovered, stats = RecoveryManager(persistence).recover_on_startup()

        assert stats["restored"]
        assert stats["was_running"]
        assert stats["queued"] == 2
        assert stats["in_flight"] == 1
        assert recovered.scheduler_state == SchedulerState.IDLE
        assert recovered.is_running is False

        job = recovered.in_flight[original.job_id]
        assert job.status == JobStatus.SUBMITTED
        assert job.submitted_at == original.submitted_at
        assert job.attempts == 1

    def test_idempotent(self, persistence, state, queue, gate, make_payloads):
        _save_run(persistence, state, queue, gate, make_payloads)
        manager = RecoveryManager(persistence)

        first, first_stats = manager.recover_on_startup()
        second, second_stats = manager.recover_on_startup()

        assert first_stats == second_stats
        assert [job.job_id for job in first.queue] == [job.job_id for job in second.queue]
        assert first.in_flight.keys() == second.in_flight.keys()

    def test_expired_snapshot_discarded(self, persistence, state, queue, gate, make_payloads):
        _save_run(persistence, state, queue, gate, make_payloads)
        later = utcnow() + timedelta(hours=2)

        recovered, stats = RecoveryManager(
            persistence, snapshot_max_age=3600, clock=lambda: later
        ).recover_on_startup()

        assert recovered is None
        assert stats["discarded_expired"]
        assert not persistence.has_snapshot()

    def test_fresh_snapshot_kept_with_max_age(
        self, persistence, state, queue, gate, make_payloads
    ):
        _save_run(persistence, state, queue, gate, make_payloads)

        recovered, _ = RecoveryManager(persistence, snapshot_max_age=3600).recover_on_startup()

        assert recovered is not None

    def test_finished_run_cleared(self, persistence, state, queue, gate, make_payloads):
        queue.enqueue_batch(make_payloads(1))
        job = gate.admit(queue.dequeue_next())
        gate.release(job.job_id, ReleaseOutcome.COMPLETED)
        persistence.save_snapshot(state)

        recovered, stats = RecoveryManager(persistence).recover_on_startup()

        assert recovered is None
        assert stats["completed"] == 1
        assert not persistence.has_snapshot()

    def test_load_error_reported(self, persistence, state, queue, make_payloads, monkeypatch):
        queue.enqueue_batch(make_payloads(1))
        persistence.save_snapshot(state)

        def broken():
            raise ValueError("corrupt row")

        monkeypatch.setattr(persistence, "load_snapshot", broken)

        recovered, stats = RecoveryManager(persistence).recover_on_startup()

        assert recovered is None
        assert stats["errors"] == ["Load: corrupt row"]


@pytest.mark.asyncio
async def test_recovered_run_resubmits_nothing_in_flight(
    persistence, state, queue, gate, config, new_ports, make_payloads, clock
):
    from sluice.scheduler import Dispatcher

    _save_run(persistence, state, queue, gate, make_payloads, in_flight=3)
    recovered, _ = RecoveryManager(persistence, clock=clock).recover_on_startup()
    submission_port, observation_port = new_ports()
    dispatcher = Dispatcher.create(
        recovered, config, submission_port, observation_port, persistence, clock=clock
    )

    assert await dispatcher.dispatch_one() is None
    assert submission_port.submitted == []
