"""
Operator API key check.

Settings come from ApiAuthSettings (API_AUTH_ENABLED / API_KEY), read once
at import. /health never depends on this module.
"""

import logging
import secrets
from typing import Optional

from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from ...infra.config import ApiAuthSettings


logger = logging.getLogger(__name__)

settings = ApiAuthSettings.from_env()

# Read by main.py when wiring router dependencies
API_AUTH_ENABLED = settings.enabled

api_key_header = APIKeyHeader(
    name="X-API-Key",
    auto_error=False,
    description="Operator API key (only checked when API_AUTH_ENABLED=true)",
)


def _reject(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "ApiKey"},
    )


async def verify_api_key(
    api_key: Optional[str] = Security(api_key_header),
) -> Optional[str]:
    """
    FastAPI dependency guarding the /scheduler routes.

    Returns:
        The presented key, or None when auth is disabled

    Raises:
        HTTPException: 401 when the key is missing or does not match
    """
    if not settings.enabled:
        return None

    if not api_key:
        raise _reject("Missing API key. Provide X-API-Key header.")

    # No configured key means nothing can match
    if not settings.api_key or not secrets.compare_digest(api_key, settings.api_key):
        logger.warning("[Auth] Rejected request with invalid API key")
        raise _reject("Invalid API key")

    return api_key
