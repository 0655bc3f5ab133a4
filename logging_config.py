# link-analytics-service/logging_config.py
"""
Application-wide logging setup.

Call `initialize_logging()` once at process start (the API lifespan and the
worker entry point both do) before anything else logs.

Every record is written to stdout as one JSON object:
{
    "timestamp": "2025-08-01T12:00:00.000Z",
    "level": "INFO",
    "logger": "recorder",
    "message": "Redirect recorded",
    "link_id": "64c9..."
}
"""
import json
import logging
import logging.config
from datetime import datetime, timezone

from config import get_settings


class JsonFormatter(logging.Formatter):
    """JSON formatter that keeps the `extra=` fields of a record."""

    STANDARD_ATTRS = frozenset(
        {
            "args",
            "asctime",
            "created",
            "exc_info",
            "exc_text",
            "filename",
            "funcName",
            "levelname",
            "levelno",
            "lineno",
            "module",
            "msecs",
            "msg",
            "name",
            "pathname",
            "process",
            "processName",
            "relativeCreated",
            "stack_info",
            "thread",
            "threadName",
            "taskName",
            "color_message",
        }
    )

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        log = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self.STANDARD_ATTRS:
                log[key] = value

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        return json.dumps(log, default=str)


def initialize_logging() -> None:
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonFormatter,
                }
            },
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                }
            },
            "root": {
                "level": get_settings().log_level,
                "handlers": ["stdout"],
            },
        }
    )
