"""JSON logging for the service and the job runner.

Log calls pass an event name as the message and structured context through
``extra``; the formatter turns both into one JSON object per line.
"""

import logging
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from examcore.core.config import settings

QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record: dict[str, Any], record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.pop("asctime", None)
        log_record.setdefault("event", log_record.pop("message", None) or record.getMessage())
        log_record.update(
            timestamp=self.formatTime(record, self.datefmt),
            level=record.levelname,
            logger=record.name,
            service=settings.PROJECT_NAME,
            env=settings.ENV,
        )


def setup_logging(level: str | None = None) -> None:
    """Route the root logger to stdout as JSON. Safe to call more than once."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(message)s", datefmt="%Y-%m-%dT%H:%M:%S%z"))

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel((level or settings.LOG_LEVEL).upper())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
