"""
Infrastructure module - configuration, logging, and notifications.
"""

from .config import (
    ApiAuthSettings,
    SchedulerConfig,
    get_project_root,
    get_data_root,
    get_logs_dir,
)

from .logging_config import setup_logging

__all__ = [
    # config
    "ApiAuthSettings",
    "SchedulerConfig",
    "get_project_root",
    "get_data_root",
    "get_logs_dir",
    # logging
    "setup_logging",
]
