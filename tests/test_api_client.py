"""
Tests for the HTTP submission and observation ports.

Uses httpx.MockTransport; no network.
"""

import json

import httpx
import pytest

from sluice.infra.config import SchedulerConfig
from sluice.remote.api_client import (
    HttpObservationPort,
    HttpSubmissionPort,
    is_rate_limit_message,
    map_status,
)
from sluice.scheduler import (
    Dispatcher,
    ExternalStatus,
    JobPayload,
    JobStatus,
    PersistenceAdapter,
    RunState,
    content_fingerprint,
)


SUBMIT_URL = "https://gen.example.com/api/submit"
OBSERVE_URL = "https://gen.example.com/api/recent"


def _submission_port(handler, token=None) -> HttpSubmissionPort:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpSubmissionPort(SUBMIT_URL, token=token, client=client)


def _observation_port(handler) -> HttpObservationPort:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpObservationPort(OBSERVE_URL, client=client)


class TestHelpers:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("You can only generate 5 videos at a time", True),
            ("Please try again after your generations are complete", True),
            ("Rate limit exceeded", True),
            ("Prompt violates policy", False),
        ],
    )
    def test_is_rate_limit_message(self, text, expected):
        assert is_rate_limit_message(text) is expected

    @pytest.mark.parametrize(
        "native,expected",
        [
            ("processing", ExternalStatus.ACTIVE),
            ("In Progress", ExternalStatus.ACTIVE),
            ("succeeded", ExternalStatus.FINISHED),
            ("Cancelled", ExternalStatus.FAILED),
            ("mystery", None),
        ],
    )
    def test_map_status(self, native, expected):
        assert map_status(native) == expected


class TestHttpSubmissionPort:
    """Tests for HttpSubmissionPort.submit()."""

    @pytest.mark.asyncio
    async def test_accepted_request_body(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"id": "abc"})

        async with _submission_port(handler, token="secret") as port:
            result = await port.submit(
                JobPayload("a lighthouse", attachment_ref="img/1.png", label="scene 1")
            )

        assert result.accepted
        body = json.loads(requests[0].content)
        assert body == {"prompt": "a lighthouse", "image": "img/1.png", "label": "scene 1"}
        assert requests[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.parametrize(
        "status,text,field",
        [
            (429, "slow down", "rate_limited"),
            (400, "You can only have 5 generations at a time", "rate_limited"),
        ],
    )
    @pytest.mark.asyncio
    async def test_rate_limited(self, status, text, field):
        port = _submission_port(lambda request: httpx.Response(status, text=text))

        result = await port.submit(JobPayload("x"))

        assert not result.accepted
        assert getattr(result, field)

    @pytest.mark.parametrize("key", ["error", "detail"])
    @pytest.mark.asyncio
    async def test_rate_limit_banner_in_success_body(self, key):
        body = {key: "Too many concurrent generations"}
        port = _submission_port(lambda request: httpx.Response(200, json=body))

        result = await port.submit(JobPayload("x"))

        assert not result.accepted
        assert result.rate_limited

    @pytest.mark.asyncio
    async def test_success_body_echoing_rate_limit_wording_is_accepted(self):
        body = {"id": "gen-1", "prompt": "A lighthouse keeper climbs one step at a time"}
        port = _submission_port(lambda request: httpx.Response(201, json=body))

        result = await port.submit(JobPayload(body["prompt"]))

        assert result.accepted

    @pytest.mark.asyncio
    async def test_success_body_with_other_error_is_transient(self):
        body = {"error": {"message": "queue unavailable"}}
        port = _submission_port(lambda request: httpx.Response(200, json=body))

        result = await port.submit(JobPayload("x"))

        assert not result.accepted
        assert not result.rate_limited
        assert not result.permanent
        assert result.error == "HTTP 200: queue unavailable"

    @pytest.mark.asyncio
    async def test_plain_text_success_is_accepted(self):
        port = _submission_port(lambda request: httpx.Response(200, text="ok, one at a time"))

        result = await port.submit(JobPayload("x"))

        assert result.accepted

    @pytest.mark.asyncio
    async def test_error_detail_of_rejected_request(self):
        body = {"detail": "You can only generate 5 videos at a time", "prompt": "x"}
        port = _submission_port(lambda request: httpx.Response(400, json=body))

        result = await port.submit(JobPayload("x"))

        assert result.rate_limited
        assert result.error == "HTTP 400: You can only generate 5 videos at a time"

    @pytest.mark.asyncio
    async def test_not_ready(self):
        port = _submission_port(lambda request: httpx.Response(503, text="warming up"))

        result = await port.submit(JobPayload("x"))

        assert not result.ready
        assert not result.permanent

    @pytest.mark.asyncio
    async def test_permanent(self):
        port = _submission_port(lambda request: httpx.Response(400, text="policy violation"))

        result = await port.submit(JobPayload("x"))

        assert result.permanent
        assert "HTTP 400" in result.error

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        port = _submission_port(lambda request: httpx.Response(502, text="bad gateway"))

        result = await port.submit(JobPayload("x"))

        assert not result.accepted
        assert not result.permanent
        assert not result.rate_limited
        assert result.ready

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await _submission_port(handler).submit(JobPayload("x"))

        assert not result.accepted
        assert not result.permanent
        assert "refused" in result.error

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await _submission_port(handler).submit(JobPayload("x"))

        assert result.error == "Submit request timed out"


class TestHttpObservationPort:
    """Tests for HttpObservationPort.observe()."""

    @pytest.mark.asyncio
    async def test_list_response(self):
        records = [
            {"id": 1, "status": "processing", "prompt": "A  lighthouse"},
            {"id": "2", "status": "completed", "fingerprint": "f" * 64},
            {"id": "3", "status": "weird"},
            {"status": "completed"},
        ]
        port = _observation_port(lambda request: httpx.Response(200, json=records))

        items = await port.observe()

        assert [(item.external_id, item.status) for item in items] == [
            ("1", ExternalStatus.ACTIVE),
            ("2", ExternalStatus.FINISHED),
        ]
        assert items[0].content_fingerprint == content_fingerprint("a lighthouse")
        assert items[1].content_fingerprint == "f" * 64

    @pytest.mark.asyncio
    async def test_items_envelope(self):
        data = {"items": [{"id": "9", "status": "failed", "prompt": "x", "image": "img.png"}]}
        port = _observation_port(lambda request: httpx.Response(200, json=data))

        items = await port.observe()

        assert items[0].status == ExternalStatus.FAILED
        assert items[0].content_fingerprint == content_fingerprint("x", "img.png")

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        port = _observation_port(lambda request: httpx.Response(500))

        with pytest.raises(httpx.HTTPStatusError):
            await port.observe()


class TestSubmissionThroughDispatcher:
    """The HTTP port wired into a real Dispatcher."""

    @pytest.mark.asyncio
    async def test_accepted_echo_is_submitted_once(self, temp_db_path, clock, observation_port):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            prompt = json.loads(request.content)["prompt"]
            return httpx.Response(201, json={"id": f"gen-{len(calls)}", "prompt": prompt})

        state = RunState(burst_size=5)
        dispatcher = Dispatcher.create(
            state=state,
            config=SchedulerConfig(db_path=temp_db_path),
            submission_port=_submission_port(handler),
            observation_port=observation_port,
            persistence=PersistenceAdapter(temp_db_path),
            clock=clock,
        )
        dispatcher.queue.enqueue_batch(
            [JobPayload("A lighthouse keeper climbs one step at a time")]
        )

        for _ in range(6):
            await dispatcher.dispatch_one()

        assert len(calls) == 1
        job = next(iter(state.in_flight.values()))
        assert job.status == JobStatus.SUBMITTED
        assert job.attempts == 1
        assert state.queue == []
