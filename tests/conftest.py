"""
Pytest configuration and shared fixtures.

Fakes for the two scheduler ports and a controllable clock live here so
both scheduler and API tests can use them.
"""

import asyncio
import os
import tempfile
from collections import deque
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Generator, Optional, Union

import pytest

from sluice.scheduler.entities import JobPayload
from sluice.scheduler.ports import ExternalItem, ExternalStatus, SubmissionResult


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch
    - Advances only when explicitly ticked
    - Callable, so it can be passed wherever a clock is expected
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def __call__(self) -> datetime:
        return self._current

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: float = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class FakeSubmissionPort:
    """
    Scriptable SubmissionPort.

    Results queued with queue_results() are returned in order (an
    Exception instance is raised instead); afterwards `default` is used.
    """

    def __init__(self, default: Optional[SubmissionResult] = None):
        self.default = default or SubmissionResult.ok()
        self.submitted: list[JobPayload] = []
        self.before_submit: Optional[Callable[[JobPayload], None]] = None
        self.block: Optional[asyncio.Event] = None
        self._results: deque = deque()

    def queue_results(self, *results: Union[SubmissionResult, Exception]) -> None:
        self._results.extend(results)

    async def submit(self, payload: JobPayload) -> SubmissionResult:
        self.submitted.append(payload)

        if self.before_submit is not None:
            self.before_submit(payload)
        if self.block is not None:
            await self.block.wait()

        result = self._results.popleft() if self._results else self.default
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def submitted_texts(self) -> list[str]:
        return [payload.text for payload in self.submitted]


class FakeObservationPort:
    """
    Scriptable ObservationPort.

    With auto_finish_from set to a FakeSubmissionPort, every payload that
    port has seen is reported FINISHED.
    """

    def __init__(self):
        self.items: list[ExternalItem] = []
        self.fail: Optional[Exception] = None
        self.calls = 0
        self.auto_finish_from: Optional[FakeSubmissionPort] = None

    def report(
        self,
        text: str,
        status: ExternalStatus,
        external_id: Optional[str] = None,
        attachment_ref: Optional[str] = None,
    ) -> ExternalItem:
        """Add or replace the remote item for a prompt."""
        fingerprint = JobPayload(text, attachment_ref).fingerprint()
        external_id = external_id or f"ext-{fingerprint[:8]}"
        self.items = [item for item in self.items if item.external_id != external_id]
        item = ExternalItem(external_id, fingerprint, status)
        self.items.append(item)
        return item

    async def observe(self) -> list[ExternalItem]:
        self.calls += 1
        if self.fail is not None:
            raise self.fail

        if self.auto_finish_from is not None:
            return [
                ExternalItem(f"ext-{index}", payload.fingerprint(), ExternalStatus.FINISHED)
                for index, payload in enumerate(self.auto_finish_from.submitted)
            ]
        return list(self.items)


@pytest.fixture(autouse=True, scope="function")
def reset_auth_module():
    """
    Reset auth module state before each test.

    Tests run with API_AUTH_ENABLED=false by default, unless the test
    explicitly sets it otherwise.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    Path(db_path).unlink(missing_ok=True)
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def clock() -> MockClock:
    return MockClock()


@pytest.fixture
def submission_port() -> FakeSubmissionPort:
    return FakeSubmissionPort()


@pytest.fixture
def observation_port() -> FakeObservationPort:
    return FakeObservationPort()


@pytest.fixture
def make_payloads() -> Callable[[int], list[JobPayload]]:
    """Factory for distinct payloads: 'prompt 1', 'prompt 2', ..."""

    def _make(count: int, prefix: str = "prompt") -> list[JobPayload]:
        return [
            JobPayload(text=f"{prefix} {i}", label=f"scene {i}")
            for i in range(1, count + 1)
        ]

    return _make


@pytest.fixture
def new_ports() -> Callable[..., tuple[FakeSubmissionPort, FakeObservationPort]]:
    """Factory for a fresh pair of fake ports (e.g. after a simulated restart)."""

    def _make(default: Optional[SubmissionResult] = None):
        return FakeSubmissionPort(default), FakeObservationPort()

    return _make
