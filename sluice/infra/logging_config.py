"""
Logging configuration module.

Daily log rotation with process start time tracking.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import get_logs_dir

# Process start time is captured once and reused for all daily logs
_PROCESS_START_TIME: Optional[str] = None

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class DailyRotatingFileHandler(logging.FileHandler):
    """
    Daily rotating file handler.

    Creates one log file per calendar day with format:
    logs/sluice_YYYYMMDD_<START_HHMMSS>.log

    START_HHMMSS is fixed at process start, only YYYYMMDD changes.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        global _PROCESS_START_TIME

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        if _PROCESS_START_TIME is None:
            _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")

        self._start_hhmmss = _PROCESS_START_TIME
        self._current_date: Optional[str] = None

        initial_path = self._get_current_log_path()
        super().__init__(initial_path, mode="a", encoding=encoding)
        self._current_date = datetime.now().strftime("%Y%m%d")

    def _get_current_log_path(self) -> str:
        """Get log file path for current date."""
        date_str = datetime.now().strftime("%Y%m%d")
        return str(self.log_dir / f"sluice_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a record, rotating to new file if date changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            self.close()
            self.baseFilename = self._get_current_log_path()
            self._current_date = current_date
            self.stream = self._open()

        super().emit(record)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str | Path] = None,
) -> logging.Logger:
    """
    Configure the `sluice` logger and return it.

    Every module logs through logging.getLogger(__name__), so configuring
    the package logger covers scheduler, adapters and API alike. Records
    go to the console and to <log_dir>/sluice_YYYYMMDD_<START_HHMMSS>.log.

    Args:
        log_level: Logging level name; unknown names fall back to INFO
        log_dir: Directory for daily log files (default: get_logs_dir())

    Returns:
        Configured logger instance
    """
    numeric_level = logging.getLevelName(log_level.upper())
    unknown_level = not isinstance(numeric_level, int)
    if unknown_level:
        numeric_level = logging.INFO

    logger = logging.getLogger("sluice")
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)
    file_handler = DailyRotatingFileHandler(
        log_dir=str(log_dir or get_logs_dir()), encoding="utf-8"
    )
    for handler in (logging.StreamHandler(), file_handler):
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if unknown_level:
        logger.warning(f"Unknown log level '{log_level}', using INFO")
    logger.info(
        f"Logging started - level: {logging.getLevelName(numeric_level)}, "
        f"log file: {file_handler.baseFilename}"
    )

    return logger
