"""
Tests for the config module.

Environment parsing, defaults, and validation.
"""

import os
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from sluice.infra.config import (
    ApiAuthSettings,
    SchedulerConfig,
    get_data_root,
    get_logs_dir,
    get_project_root,
)


def _clean_env() -> dict:
    return {key: value for key, value in os.environ.items() if not key.startswith("SLUICE_")}


class TestPaths:
    """Tests for project path helpers."""

    def test_project_root_contains_package(self):
        root = get_project_root()
        assert isinstance(root, Path)
        assert (root / "sluice").is_dir()

    def test_data_and_logs_under_root(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            assert get_data_root() == get_project_root() / "data"
            assert get_logs_dir() == get_project_root() / "logs"

    def test_log_dir_override(self, tmp_path):
        with patch.dict(os.environ, {"SLUICE_LOG_DIR": str(tmp_path)}):
            assert get_logs_dir() == tmp_path


class TestFromEnv:
    """Tests for SchedulerConfig.from_env()."""

    def test_defaults(self):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = SchedulerConfig.from_env()

        assert config.max_concurrent == 5
        assert config.burst_size == 5
        assert config.burst_delay == 10.0
        assert config.sequential_delay == 120.0
        assert config.rate_limit_cooldown == 60.0
        assert config.poll_interval == 5.0
        assert config.stale_timeout == 600.0
        assert config.max_attempts == 3
        assert config.max_rate_limit_retries == 10
        assert config.snapshot_max_age is None
        assert config.auto_resume is True
        assert config.submit_url is None
        assert config.db_path == str(get_data_root() / "sluice.db")

    def test_overrides(self):
        env = {
            **_clean_env(),
            "SLUICE_MAX_CONCURRENT": "3",
            "SLUICE_BURST_SIZE": "2",
            "SLUICE_SEQUENTIAL_DELAY_SECONDS": "90.5",
            "SLUICE_MAX_RATE_LIMIT_RETRIES": "4",
            "SLUICE_AUTO_RESUME": "off",
            "SLUICE_SUBMIT_URL": "https://gen.example.com/submit",
            "SLUICE_API_TOKEN": "  token  ",
        }
        with patch.dict(os.environ, env, clear=True):
            config = SchedulerConfig.from_env()

        assert config.max_concurrent == 3
        assert config.burst_size == 2
        assert config.sequential_delay == 90.5
        assert config.max_rate_limit_retries == 4
        assert config.auto_resume is False
        assert config.submit_url == "https://gen.example.com/submit"
        assert config.api_token == "token"

    def test_zero_means_unbounded(self):
        env = {
            **_clean_env(),
            "SLUICE_MAX_ATTEMPTS": "0",
            "SLUICE_STALE_TIMEOUT_SECONDS": "0",
            "SLUICE_SNAPSHOT_MAX_AGE_SECONDS": "0",
        }
        with patch.dict(os.environ, env, clear=True):
            config = SchedulerConfig.from_env()

        assert config.max_attempts is None
        assert config.stale_timeout is None
        assert config.snapshot_max_age is None

    def test_invalid_number_uses_default(self, caplog):
        env = {**_clean_env(), "SLUICE_MAX_CONCURRENT": "lots"}
        with patch.dict(os.environ, env, clear=True):
            config = SchedulerConfig.from_env()

        assert config.max_concurrent == 5
        assert "SLUICE_MAX_CONCURRENT" in caplog.text

    def test_invalid_value_rejected(self):
        env = {**_clean_env(), "SLUICE_MAX_CONCURRENT": "0"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValueError):
                SchedulerConfig.from_env()


class TestValidate:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_concurrent": 0},
            {"burst_size": -1},
            {"poll_interval": 0},
            {"sequential_delay": -1},
            {"max_attempts": 0},
            {"max_readiness_retries": -1},
            {"max_rate_limit_retries": -1},
        ],
    )
    def test_rejects(self, overrides):
        with pytest.raises(ValueError):
            replace(SchedulerConfig(), **overrides).validate()

    def test_defaults_valid(self):
        SchedulerConfig().validate()
        replace(SchedulerConfig(), max_attempts=None, burst_size=0).validate()


class TestApiAuthSettings:
    """Tests for ApiAuthSettings.from_env()."""

    def test_disabled_by_default(self):
        env = {k: v for k, v in os.environ.items() if k not in ("API_AUTH_ENABLED", "API_KEY")}
        with patch.dict(os.environ, env, clear=True):
            settings = ApiAuthSettings.from_env()

        assert settings == ApiAuthSettings(enabled=False, api_key=None)

    def test_enabled_with_key(self):
        with patch.dict(os.environ, {"API_AUTH_ENABLED": "yes", "API_KEY": " k1 "}):
            settings = ApiAuthSettings.from_env()

        assert settings.enabled
        assert settings.api_key == "k1"

    def test_enabled_without_key_warns(self, caplog):
        with patch.dict(os.environ, {"API_AUTH_ENABLED": "true", "API_KEY": ""}):
            settings = ApiAuthSettings.from_env()

        assert settings.enabled
        assert settings.api_key is None
        assert "API_KEY" in caplog.text
