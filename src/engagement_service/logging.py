"""
Structured JSON logging for the engagement service.

Every record is one JSON object. Entity identifiers passed through
``extra`` (task, engagement, provider, document, payment) are lifted to
top-level keys so a single engagement can be followed across log lines.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import UTC, datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any

PACKAGE_LOGGER = "engagement_service"

VALID_LOG_LEVELS: frozenset[str] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

ENTITY_KEYS: tuple[str, ...] = (
    "task_id",
    "engagement_id",
    "provider_id",
    "document_id",
    "payment_id",
)

# Attributes present on every LogRecord; anything else came in through extra=.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        for key in ENTITY_KEYS:
            if key in extra:
                log_data[key] = extra.pop(key)
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def log_file_path(log_directory: str, day: datetime | None = None) -> str:
    """Path of the log file for a UTC day: <dir>/engagement-service-YYYY-MM-DD.log."""
    day = day or datetime.now(tz=UTC)
    return os.path.join(log_directory, f"engagement-service-{day:%Y-%m-%d}.log")


class DailyFileHandler(TimedRotatingFileHandler):
    """Midnight-UTC rotation where each day writes to its own dated file."""

    def __init__(self, log_directory: str) -> None:
        self._log_directory = log_directory
        super().__init__(log_file_path(log_directory), when="midnight", utc=True, delay=True)

    def doRollover(self) -> None:  # noqa: N802
        if self.stream:
            self.stream.close()
            self.stream = None  # type: ignore[assignment]
        self.baseFilename = os.path.abspath(log_file_path(self._log_directory))
        self.rolloverAt = self.computeRollover(int(datetime.now(tz=UTC).timestamp()))


def setup_logging(level: str, log_directory: str) -> logging.Logger:
    """
    Configure the package logger to write JSON to stdout and a dated file.

    Module loggers from get_logger(__name__) propagate to it. Calling this
    again (as each app lifespan does) replaces the previous handlers.

    Raises:
        ValueError: If level is not a valid log level
    """
    level_upper = level.upper()
    if level_upper not in VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level: {level}. Must be one of {sorted(VALID_LOG_LEVELS)}")
    numeric_level = getattr(logging, level_upper)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    os.makedirs(log_directory, exist_ok=True)
    formatter = JSONFormatter()
    for handler in (logging.StreamHandler(sys.stdout), DailyFileHandler(log_directory)):
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass __name__ so it nests under the package logger."""
    return logging.getLogger(name)
