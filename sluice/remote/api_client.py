"""
HTTP adapters for the submission and observation ports.

The remote generation service is reached through two endpoints:
- SLUICE_SUBMIT_URL: POST one prompt (+ optional image reference)
- SLUICE_OBSERVE_URL: GET the list of recent generations

Native signals are translated here and nowhere else:

| Submit response                                  | SubmissionResult |
|--------------------------------------------------|------------------|
| 2xx without an error field                       | accepted         |
| 2xx with an error field                          | transient        |
| 429, or error text mentions the concurrency cap  | rate limited     |
| 409 / 423 / 503                                  | not ready        |
| other 4xx                                        | permanent        |
| 5xx, timeouts, transport errors                  | transient        |

Rate-limit wording is only looked for in error text: the `error` /
`detail` field of a JSON body, or the whole body of a non-2xx response.
"""

import logging
from typing import Any, Optional

import httpx

from .. import __version__
from ..scheduler.entities import JobPayload
from ..scheduler.ports import (
    ExternalItem,
    ExternalStatus,
    SubmissionResult,
    content_fingerprint,
)


logger = logging.getLogger(__name__)


DEFAULT_TIMEOUT_SECONDS = 30.0

# Phrases the service uses when its concurrency cap is hit
RATE_LIMIT_MARKERS = (
    "at a time",
    "try again after your generations are complete",
    "too many concurrent",
    "rate limit",
)

NOT_READY_STATUS_CODES = {409, 423, 503}

# JSON fields that carry an error message in a response body
ERROR_FIELDS = ("error", "detail")

# Native status strings -> ExternalStatus
STATUS_MAP = {
    "queued": ExternalStatus.ACTIVE,
    "pending": ExternalStatus.ACTIVE,
    "submitted": ExternalStatus.ACTIVE,
    "processing": ExternalStatus.ACTIVE,
    "running": ExternalStatus.ACTIVE,
    "in_progress": ExternalStatus.ACTIVE,
    "generating": ExternalStatus.ACTIVE,
    "completed": ExternalStatus.FINISHED,
    "complete": ExternalStatus.FINISHED,
    "succeeded": ExternalStatus.FINISHED,
    "success": ExternalStatus.FINISHED,
    "finished": ExternalStatus.FINISHED,
    "done": ExternalStatus.FINISHED,
    "failed": ExternalStatus.FAILED,
    "error": ExternalStatus.FAILED,
    "rejected": ExternalStatus.FAILED,
    "cancelled": ExternalStatus.FAILED,
    "canceled": ExternalStatus.FAILED,
    "moderated": ExternalStatus.FAILED,
}


def is_rate_limit_message(text: str) -> bool:
    """Check a response body for the service's concurrency-cap wording."""
    lowered = text.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def extract_error(response: httpx.Response) -> Optional[str]:
    """
    Pull the explicit error text out of a JSON response body.

    Only the `error` / `detail` fields count; echoed prompts and other
    content are never treated as an error message.

    Returns:
        The error text, or None if the body carries no error field
    """
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    for key in ERROR_FIELDS:
        value = data.get(key)
        if not value:
            continue
        if isinstance(value, dict):
            value = value.get("message") or value
        return str(value)[:500]
    return None


def map_status(native: str) -> Optional[ExternalStatus]:
    """Translate a native status string, or None if unknown."""
    return STATUS_MAP.get(native.strip().lower().replace(" ", "_").replace("-", "_"))


class _HttpPort:
    """Shared httpx.AsyncClient handling for both ports."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._owns_client = client is None

        headers = {"User-Agent": f"Sluice/{__version__}"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


class HttpSubmissionPort(_HttpPort):
    """SubmissionPort over a JSON POST endpoint."""

    async def submit(self, payload: JobPayload) -> SubmissionResult:
        body: dict[str, Any] = {"prompt": payload.text}
        if payload.attachment_ref:
            body["image"] = payload.attachment_ref
        if payload.label:
            body["label"] = payload.label

        try:
            response = await self._client.post(self.url, json=body, headers=self._headers)
        except httpx.TimeoutException:
            return SubmissionResult.failed("Submit request timed out")
        except httpx.RequestError as e:
            return SubmissionResult.failed(f"Submit request error: {e}")

        return self._classify(response)

    def _classify(self, response: httpx.Response) -> SubmissionResult:
        code = response.status_code

        if 200 <= code < 300:
            error = extract_error(response)
            if error is None:
                return SubmissionResult.ok()
            # Some deployments answer 200 with an error banner
            if is_rate_limit_message(error):
                return SubmissionResult.limited(error)
            return SubmissionResult.failed(f"HTTP {code}: {error}")

        text = extract_error(response) or response.text[:500]
        error = f"HTTP {code}: {text[:200]}"

        if code == 429 or is_rate_limit_message(text):
            return SubmissionResult.limited(error)
        if code in NOT_READY_STATUS_CODES:
            return SubmissionResult.not_ready(error)
        if 400 <= code < 500:
            return SubmissionResult.failed(error, permanent=True)
        return SubmissionResult.failed(error)


class HttpObservationPort(_HttpPort):
    """ObservationPort over a JSON GET endpoint."""

    async def observe(self) -> list[ExternalItem]:
        response = await self._client.get(self.url, headers=self._headers)
        response.raise_for_status()

        data = response.json()
        records = data.get("items", []) if isinstance(data, dict) else data

        items = []
        for record in records:
            item = self._to_item(record)
            if item is not None:
                items.append(item)
        return items

    def _to_item(self, record: dict) -> Optional[ExternalItem]:
        external_id = record.get("id")
        native = record.get("status")
        if external_id is None or not native:
            logger.debug(f"Skipping observation record without id/status: {record}")
            return None

        status = map_status(str(native))
        if status is None:
            logger.debug(f"Unknown remote status '{native}' for {external_id}")
            return None

        fingerprint = record.get("fingerprint")
        if not fingerprint:
            fingerprint = content_fingerprint(record.get("prompt") or "", record.get("image"))

        return ExternalItem(
            external_id=str(external_id),
            content_fingerprint=fingerprint,
            status=status,
        )
