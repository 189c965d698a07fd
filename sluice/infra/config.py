"""
Configuration for sluice.

All settings come from environment variables (a `.env` file is loaded by
the entry points with python-dotenv). Bad values are logged and replaced
by their defaults instead of aborting startup.

Environment Variables:
- SLUICE_MAX_CONCURRENT: Hard cap on in-flight jobs (default: 5)
- SLUICE_BURST_SIZE: Jobs sent in the initial burst (default: 5)
- SLUICE_BURST_DELAY_SECONDS: Delay between burst submissions (default: 10)
- SLUICE_SEQUENTIAL_DELAY_SECONDS: Delay in sequential phase (default: 120)
- SLUICE_RATE_LIMIT_COOLDOWN_SECONDS: Wait after a sequential rate limit (default: 60)
- SLUICE_TRANSIENT_DELAY_SECONDS: Wait after a transient failure (default: 3)
- SLUICE_POLL_INTERVAL_SECONDS: Reconciliation interval (default: 5)
- SLUICE_STALE_TIMEOUT_SECONDS: In-flight age before a job is assumed lost (default: 600)
- SLUICE_MAX_ATTEMPTS: Per-job attempt ceiling, 0 = unbounded (default: 3)
- SLUICE_MAX_READINESS_RETRIES: Free readiness retries per job (default: 10)
- SLUICE_MAX_RATE_LIMIT_RETRIES: Free rate-limit retries per job (default: 10)
- SLUICE_SNAPSHOT_MAX_AGE_SECONDS: Discard older snapshots, 0 = never (default: 0)
- SLUICE_AUTO_RESUME: Restart a restored running snapshot (default: true)
- SLUICE_DB_PATH: Snapshot database (default: data/sluice.db)
- SLUICE_COMPLETION_WEBHOOK_URL: Run completion notification target
- SLUICE_SUBMIT_URL / SLUICE_OBSERVE_URL: HTTP port endpoints
- SLUICE_HTTP_TIMEOUT_SECONDS: Timeout for HTTP port calls (default: 30)
- SLUICE_API_TOKEN: Bearer token for the HTTP ports
- SLUICE_LOG_DIR: Directory for daily log files (default: logs/)
- API_AUTH_ENABLED: Require X-API-Key on the operator API (default: false)
- API_KEY: Key expected in X-API-Key
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


# =============================================================================
# Environment helpers
# =============================================================================

def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    val = os.getenv(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    elif val in ("false", "0", "no", "off"):
        return False
    return default


def _get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"[Config] Invalid integer for {key}: {val}, using default: {default}")
    return default


def _get_env_float(key: str, default: float) -> float:
    """Get float value from environment variable."""
    val = os.getenv(key)
    if val is not None:
        try:
            return float(val)
        except ValueError:
            logger.warning(f"[Config] Invalid number for {key}: {val}, using default: {default}")
    return default


def _get_env_str(key: str) -> Optional[str]:
    """Get non-empty string value from environment variable."""
    val = os.getenv(key, "").strip()
    return val or None


# =============================================================================
# Paths
# =============================================================================

def get_project_root() -> Path:
    """
    Get the project root directory.

    File is at sluice/infra/config.py, so project root is 2 levels up.
    """
    return Path(__file__).parent.parent.parent.resolve()


def get_data_root() -> Path:
    """Get the data/ directory."""
    return get_project_root() / "data"


def get_logs_dir() -> Path:
    """Get the log directory: SLUICE_LOG_DIR, else logs/ under the project root."""
    override = _get_env_str("SLUICE_LOG_DIR")
    if override:
        return Path(override)
    return get_project_root() / "logs"


# =============================================================================
# Scheduler configuration
# =============================================================================

@dataclass(frozen=True)
class SchedulerConfig:
    """Tunables for one scheduler instance. Durations are in seconds."""

    max_concurrent: int = 5
    burst_size: int = 5
    burst_delay: float = 10.0
    sequential_delay: float = 120.0
    rate_limit_cooldown: float = 60.0
    transient_delay: float = 3.0
    poll_interval: float = 5.0
    stale_timeout: Optional[float] = 600.0
    max_attempts: Optional[int] = 3
    max_readiness_retries: int = 10
    max_rate_limit_retries: int = 10
    snapshot_max_age: Optional[float] = None
    auto_resume: bool = True
    db_path: str = "data/sluice.db"
    completion_webhook_url: Optional[str] = None
    submit_url: Optional[str] = None
    observe_url: Optional[str] = None
    http_timeout: float = 30.0
    api_token: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Build a config from SLUICE_* environment variables."""
        max_attempts = _get_env_int("SLUICE_MAX_ATTEMPTS", 3)
        stale_timeout = _get_env_float("SLUICE_STALE_TIMEOUT_SECONDS", 600.0)
        snapshot_max_age = _get_env_float("SLUICE_SNAPSHOT_MAX_AGE_SECONDS", 0.0)

        config = cls(
            max_concurrent=_get_env_int("SLUICE_MAX_CONCURRENT", 5),
            burst_size=_get_env_int("SLUICE_BURST_SIZE", 5),
            burst_delay=_get_env_float("SLUICE_BURST_DELAY_SECONDS", 10.0),
            sequential_delay=_get_env_float("SLUICE_SEQUENTIAL_DELAY_SECONDS", 120.0),
            rate_limit_cooldown=_get_env_float("SLUICE_RATE_LIMIT_COOLDOWN_SECONDS", 60.0),
            transient_delay=_get_env_float("SLUICE_TRANSIENT_DELAY_SECONDS", 3.0),
            poll_interval=_get_env_float("SLUICE_POLL_INTERVAL_SECONDS", 5.0),
            stale_timeout=stale_timeout if stale_timeout > 0 else None,
            max_attempts=max_attempts if max_attempts > 0 else None,
            max_readiness_retries=_get_env_int("SLUICE_MAX_READINESS_RETRIES", 10),
            max_rate_limit_retries=_get_env_int("SLUICE_MAX_RATE_LIMIT_RETRIES", 10),
            snapshot_max_age=snapshot_max_age if snapshot_max_age > 0 else None,
            auto_resume=_get_env_bool("SLUICE_AUTO_RESUME", True),
            db_path=os.getenv("SLUICE_DB_PATH", str(get_data_root() / "sluice.db")),
            completion_webhook_url=_get_env_str("SLUICE_COMPLETION_WEBHOOK_URL"),
            submit_url=_get_env_str("SLUICE_SUBMIT_URL"),
            observe_url=_get_env_str("SLUICE_OBSERVE_URL"),
            http_timeout=_get_env_float("SLUICE_HTTP_TIMEOUT_SECONDS", 30.0),
            api_token=_get_env_str("SLUICE_API_TOKEN"),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """
        Reject settings the scheduler cannot run with.

        Raises:
            ValueError: On the first invalid setting
        """
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.burst_size < 0:
            raise ValueError(f"burst_size must be >= 0, got {self.burst_size}")
        if self.poll_interval <= 0:
            raise ValueError(f"poll_interval must be > 0, got {self.poll_interval}")
        for name in ("max_readiness_retries", "max_rate_limit_retries"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        for name in ("burst_delay", "sequential_delay", "rate_limit_cooldown", "transient_delay"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value}")

        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1 or None, got {self.max_attempts}")


# =============================================================================
# Operator API authentication
# =============================================================================

@dataclass(frozen=True)
class ApiAuthSettings:
    """X-API-Key settings for the operator API."""

    enabled: bool = False
    api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ApiAuthSettings":
        """Build from API_AUTH_ENABLED / API_KEY."""
        settings = cls(
            enabled=_get_env_bool("API_AUTH_ENABLED", False),
            api_key=_get_env_str("API_KEY"),
        )
        if settings.enabled and not settings.api_key:
            logger.warning("[Config] API_AUTH_ENABLED is set without API_KEY; all requests will be rejected")
        return settings
