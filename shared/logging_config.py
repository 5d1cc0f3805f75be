"""Structured JSON logging configuration."""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from shared.config import get_settings

# Extra fields copied from the log record into the JSON payload when present
CONTEXT_FIELDS = (
    "tenant_id",
    "appointment_id",
    "schedule_id",
    "professional_id",
    "event",
    "attempt",
    "instance_name",
    "request_path",
)

# Third-party loggers that are too chatty at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line: timestamp, level, logger, message, then
    whichever scheduling context fields were passed through extra=.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # UUIDs and datetimes in extra= are serialized with str()
        return json.dumps(entry, default=str)


def configure_logging() -> None:
    """
    Route every logger to stderr through JSONFormatter.

    Level comes from the LOG_LEVEL setting (INFO when unrecognized).
    """
    settings = get_settings()
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    root_logger.info(f"Logging configured: level={logging.getLevelName(level)}, format=JSON")
