"""
Load Generation Controller - Observability

Provides metrics and structured logging.
"""

from .logging import (
    JsonFormatter,
    LogTimer,
    configure_logging,
    get_logger,
    get_request_id,
    set_request_id,
)
from .metrics import (
    metrics_registry,
    clear_generator_metrics,
    record_cancellation,
    record_reconcile_latency,
    record_runs_launched,
    record_submission_failure,
    set_generator_load,
    set_registered_generators,
)

__all__ = [
    "JsonFormatter",
    "LogTimer",
    "configure_logging",
    "get_logger",
    "get_request_id",
    "set_request_id",
    "metrics_registry",
    "clear_generator_metrics",
    "record_cancellation",
    "record_reconcile_latency",
    "record_runs_launched",
    "record_submission_failure",
    "set_generator_load",
    "set_registered_generators",
]
