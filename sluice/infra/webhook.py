"""
Webhook notification for run completion.

Sends an HTTP POST when a run finishes (queue and in-flight set empty).
Discord webhook URLs get an embed-formatted payload instead of the plain
JSON one.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from .. import __version__
from ..scheduler.entities import RunState, parse_iso, utcnow

logger = logging.getLogger(__name__)

# Webhook configuration
WEBHOOK_TIMEOUT_SECONDS = 30
WEBHOOK_MAX_RETRIES = 3
WEBHOOK_RETRY_BASE_DELAY = 1.0  # seconds
WEBHOOK_RETRY_MAX_DELAY = 10.0  # seconds

RUN_COMPLETED_EVENT = "run.completed"

# Discord embed colors
DISCORD_COLOR_SUCCESS = 0x57F287  # Green
DISCORD_COLOR_WARNING = 0xFEE75C  # Yellow


def build_completion_payload(
    state: RunState,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Build the run.completed payload from a finished RunState.

    Args:
        state: RunState of the finished run
        now: Completion time (defaults to current UTC time)

    Returns:
        Dictionary payload for webhook POST
    """
    now = now or utcnow()
    elapsed = None
    if state.stats.started_at:
        elapsed = round((now - parse_iso(state.stats.started_at)).total_seconds(), 1)

    return {
        "event": RUN_COMPLETED_EVENT,
        "total": state.total_jobs,
        "completed": len(state.completed),
        "failed": len(state.failed),
        "sent": state.stats.total_sent,
        "errors": state.stats.total_errors,
        "started_at": state.stats.started_at,
        "elapsed_seconds": elapsed,
        "timestamp": now.isoformat() + "Z",
    }


def is_discord_webhook_url(url: str) -> bool:
    """Check if URL is a Discord webhook URL."""
    if not url:
        return False
    discord_patterns = [
        "https://discord.com/api/webhooks/",
        "https://www.discord.com/api/webhooks/",
        "https://discordapp.com/api/webhooks/",
        "https://www.discordapp.com/api/webhooks/",
    ]
    return any(url.startswith(pattern) for pattern in discord_patterns)


def build_discord_embed_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Build Discord-compatible webhook payload with embeds.

    Args:
        payload: run.completed payload from build_completion_payload()

    Returns:
        Discord-compatible payload with embeds
    """
    clean = payload["failed"] == 0
    fields = [
        {"name": "Completed", "value": str(payload["completed"]), "inline": True},
        {"name": "Failed", "value": str(payload["failed"]), "inline": True},
        {"name": "Total", "value": str(payload["total"]), "inline": True},
        {"name": "Sent", "value": str(payload["sent"]), "inline": True},
        {"name": "Errors", "value": str(payload["errors"]), "inline": True},
    ]
    if payload.get("elapsed_seconds") is not None:
        minutes = payload["elapsed_seconds"] / 60
        fields.append({"name": "Elapsed", "value": f"{minutes:.1f} min", "inline": True})

    embed = {
        "title": "✅ Queue complete" if clean else "⚠️ Queue complete with failures",
        "color": DISCORD_COLOR_SUCCESS if clean else DISCORD_COLOR_WARNING,
        "fields": fields,
        "timestamp": payload["timestamp"],
        "footer": {"text": f"Sluice v{__version__}"},
    }
    return {"embeds": [embed]}


async def send_webhook_async(
    url: str,
    payload: dict[str, Any],
    timeout: float = WEBHOOK_TIMEOUT_SECONDS,
    max_retries: int = WEBHOOK_MAX_RETRIES,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send webhook notification asynchronously with retry logic.

    Args:
        url: Webhook URL to POST to
        payload: run.completed payload
        timeout: Request timeout in seconds
        max_retries: Maximum number of attempts
        transport: Optional httpx transport (tests)

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    is_discord = is_discord_webhook_url(url)
    body = build_discord_embed_payload(payload) if is_discord else payload

    headers = {
        "Content-Type": "application/json",
        "User-Agent": f"Sluice/{__version__}",
    }
    if not is_discord:
        headers["X-Webhook-Event"] = payload.get("event", RUN_COMPLETED_EVENT)

    last_error: Optional[str] = None

    for attempt in range(max_retries):
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
                response = await client.post(url, json=body, headers=headers)

                if 200 <= response.status_code < 300:
                    logger.info(
                        f"Completion webhook sent to {url} "
                        f"(attempt {attempt + 1}/{max_retries}, status={response.status_code})"
                    )
                    return True, None

                last_error = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.warning(
                    f"Completion webhook failed "
                    f"(attempt {attempt + 1}/{max_retries}): {last_error}"
                )

        except httpx.TimeoutException:
            last_error = f"Timeout after {timeout}s"
            logger.warning(
                f"Completion webhook timeout (attempt {attempt + 1}/{max_retries})"
            )

        except httpx.RequestError as e:
            last_error = f"Request error: {str(e)}"
            logger.warning(
                f"Completion webhook request error "
                f"(attempt {attempt + 1}/{max_retries}): {e}"
            )

        # Exponential backoff before retry
        if attempt < max_retries - 1:
            delay = min(
                WEBHOOK_RETRY_BASE_DELAY * (2 ** attempt),
                WEBHOOK_RETRY_MAX_DELAY
            )
            logger.debug(f"Retrying webhook in {delay}s...")
            await asyncio.sleep(delay)

    logger.error(
        f"Completion webhook failed after {max_retries} attempts to {url}: {last_error}"
    )
    return False, last_error


async def notify_run_completed(
    url: Optional[str],
    state: RunState,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Send the run.completed webhook if a URL is configured.

    Returns:
        True if the webhook was delivered
    """
    if not url:
        return False

    payload = build_completion_payload(state)
    logger.info(
        f"Sending run.completed webhook: {payload['completed']}/{payload['total']} "
        f"completed, {payload['failed']} failed"
    )
    success, _ = await send_webhook_async(url, payload, transport=transport)
    return success
