"""
Load Generation Controller - Structured Logging

JSON-formatted structured logging with request correlation. Every module
logs through ``logging.getLogger(__name__)`` and passes structured fields
via ``extra={...}``; this module decides how those records are rendered.

Usage:
    from loadgen.observability.logging import configure_logging

    # Configure at startup
    configure_logging(level="INFO", format="json")

    logger = logging.getLogger(__name__)
    logger.info("Generator started", extra={
        "generator_id": "1f0c...",
        "short_name": "checkout-ramp",
        "mode": "ramp_up",
    })

Output:
    {
        "timestamp": "2026-01-18T10:30:00.123Z",
        "level": "INFO",
        "logger": "loadgen.runtime.controller",
        "request_id": "req-123",
        "message": "Generator started",
        "generator_id": "1f0c...",
        "short_name": "checkout-ramp",
        "mode": "ramp_up"
    }
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

# Context variable for request ID (set by the HTTP middleware)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

DEFAULT_REDACT_FIELDS = ["admin_token", "password", "token"]


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    RESERVED_FIELDS = {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
    }

    def __init__(self, redact_fields: Optional[list] = None):
        """
        Args:
            redact_fields: Field names whose values are masked
        """
        super().__init__()
        self.redact_fields = redact_fields or list(DEFAULT_REDACT_FIELDS)

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.utcfromtimestamp(record.created).isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id

        for key, value in record.__dict__.items():
            if key in self.RESERVED_FIELDS:
                continue
            if key in self.redact_fields and value is not None:
                value = "[REDACTED]"
            log_entry[key] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class RequestIdFilter(logging.Filter):
    """Copies the request ID from the context variable onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = request_id_var.get()
        if request_id:
            record.request_id = request_id
        return True


def configure_logging(
    level: str = "INFO",
    format: str = "json",
    redact_fields: Optional[list] = None,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Log format ("json" or "text")
        redact_fields: Field names to redact
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if format.lower() == "json":
        formatter = JsonFormatter(redact_fields=redact_fields)
    else:
        # Text format for development
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    root_logger.addHandler(handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    # Silence noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically for ``__name__``)."""
    return logging.getLogger(name)


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def clear_request_id() -> None:
    request_id_var.set(None)


class LogTimer:
    """
    Context manager for timing operations and logging duration.

    Usage:
        with LogTimer(logger, "Generator store load", path=str(path)):
            configs = store.load()

        # Logs: {"message": "Generator store load completed", "duration_ms": 3.1, ...}
    """

    def __init__(
        self,
        logger: logging.Logger,
        operation: str,
        level: int = logging.INFO,
        **extra_fields
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.extra_fields = extra_fields
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.time() - self.start_time) * 1000

        log_data = {
            "duration_ms": round(duration_ms, 2),
            **self.extra_fields
        }

        if exc_type is None:
            self.logger.log(
                self.level,
                f"{self.operation} completed",
                extra=log_data
            )
        else:
            log_data["error"] = str(exc_val)
            self.logger.error(
                f"{self.operation} failed",
                extra=log_data,
                exc_info=True
            )
