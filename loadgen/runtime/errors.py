"""
Load Generation Runtime - Error Classification

This module defines the error taxonomy for the load generation controller.
Errors are classified by source so that each layer can decide whether to
surface, contain, or log them:

1. Validation errors are surfaced to the caller and never retried
2. Configuration errors fail the caller's operation (invalid configuration)
3. Host errors are contained per candidate / per run and logged

Unknown generators are NOT errors: reconcile and stop on an unregistered
generator are silent no-ops.

Error Categories:
- ValidationError: Malformed names, empty required fields, unknown ids in admin calls
- ConfigurationError: Policy/state mismatch, unreadable generator store
- HostError: Submission, cancellation, or run-stop failures reported by the host
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional


class ErrorCode(Enum):
    """
    Enumeration of all error codes in the load generation runtime.

    Error code format: CATEGORY_SPECIFIC_ERROR
    Categories:
    - VAL: Validation errors
    - GEN: Generator lookup errors (admin surface)
    - CFG: Configuration errors
    - HOST: Host interaction errors
    """

    # ==========================================================================
    # Validation Errors (VAL_*)
    # ==========================================================================

    # Required field empty or missing
    VAL_EMPTY_FIELD = "VAL_EMPTY_FIELD"

    # Short name or id contains reserved characters
    VAL_MALFORMED_NAME = "VAL_MALFORMED_NAME"

    # Another registered generator already uses this short name
    VAL_DUPLICATE_SHORT_NAME = "VAL_DUPLICATE_SHORT_NAME"

    # The same generator id appears twice in a sync list
    VAL_DUPLICATE_GENERATOR_ID = "VAL_DUPLICATE_GENERATOR_ID"

    # Job name regex does not compile
    VAL_INVALID_REGEX = "VAL_INVALID_REGEX"

    # Numeric field out of allowed range
    VAL_FIELD_OUT_OF_RANGE = "VAL_FIELD_OUT_OF_RANGE"

    # ==========================================================================
    # Generator Lookup Errors (GEN_*)
    # ==========================================================================

    # Admin call named an id that is not registered
    GEN_UNKNOWN_ID = "GEN_UNKNOWN_ID"

    # Admin call named a short name that is not registered
    GEN_UNKNOWN_SHORT_NAME = "GEN_UNKNOWN_SHORT_NAME"

    # ==========================================================================
    # Configuration Errors (CFG_*)
    # ==========================================================================

    # Policy observed a runtime state it cannot work with
    CFG_STATE_MISMATCH = "CFG_STATE_MISMATCH"

    # Unknown generator kind in stored or submitted configuration
    CFG_UNKNOWN_KIND = "CFG_UNKNOWN_KIND"

    # Generator store could not be parsed
    CFG_STORE_UNREADABLE = "CFG_STORE_UNREADABLE"

    # Generator store could not be written
    CFG_STORE_WRITE_FAILED = "CFG_STORE_WRITE_FAILED"

    # ==========================================================================
    # Host Errors (HOST_*)
    # ==========================================================================

    # Host rejected or failed a queue submission
    HOST_SUBMIT_FAILED = "HOST_SUBMIT_FAILED"

    # Host failed to cancel a queue item
    HOST_CANCEL_FAILED = "HOST_CANCEL_FAILED"

    # Host failed to stop a running run
    HOST_STOP_FAILED = "HOST_STOP_FAILED"

    # Privileged operation attempted outside the elevated context
    HOST_PERMISSION_DENIED = "HOST_PERMISSION_DENIED"

    # Job is not known to the host
    HOST_UNKNOWN_JOB = "HOST_UNKNOWN_JOB"

    def is_retryable(self) -> bool:
        """Check if error is potentially recoverable with retry."""
        retryable = {
            ErrorCode.HOST_SUBMIT_FAILED,
            ErrorCode.HOST_CANCEL_FAILED,
            ErrorCode.HOST_STOP_FAILED,
            ErrorCode.CFG_STORE_WRITE_FAILED,
        }
        return self in retryable

    @property
    def category(self) -> str:
        """Return error category (VAL, GEN, CFG, HOST)."""
        return self.value.split("_")[0]


@dataclass
class ErrorContext:
    """
    Additional context for error reporting.

    Provides structured information for logging and debugging.
    """

    generator_id: Optional[str] = None
    short_name: Optional[str] = None
    job_name: Optional[str] = None
    path: Optional[Path] = None
    field_name: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        if self.generator_id:
            result["generator_id"] = self.generator_id
        if self.short_name:
            result["short_name"] = self.short_name
        if self.job_name:
            result["job_name"] = self.job_name
        if self.path:
            result["path"] = str(self.path)
        if self.field_name:
            result["field"] = self.field_name
        if self.expected:
            result["expected"] = self.expected
        if self.actual:
            result["actual"] = self.actual
        if self.details:
            result.update(self.details)
        return result


class LoadGeneratorError(Exception):
    """
    Base exception for all load generation errors.

    All errors include:
    - Error code for programmatic handling
    - Human-readable message
    - Structured context for logging
    - Timestamp
    - Recoverable flag
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or ErrorContext()
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.utcnow()

    def __str__(self) -> str:
        parts = [f"[{self.code.value}] {self.message}"]
        if self.context.generator_id:
            parts.append(f"generator={self.context.generator_id}")
        if self.context.short_name:
            parts.append(f"short_name={self.context.short_name}")
        if self.context.job_name:
            parts.append(f"job={self.context.job_name}")
        if self.context.path:
            parts.append(f"path={self.context.path}")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "error_code": self.code.value,
            "error_category": self.code.category,
            "message": self.message,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_dict(self) -> dict[str, Any]:
        """
        Convert to dictionary optimized for structured logging.

        Flattens context into top level for easier log querying.
        """
        result = {
            "error_code": self.code.value,
            "error_message": self.message,
            "recoverable": self.recoverable,
        }
        result.update(self.context.to_dict())
        if self.cause:
            result["cause"] = str(self.cause)
        return result


class ValidationError(LoadGeneratorError):
    """
    User-visible validation failure.

    Raised for malformed short names, empty required fields, duplicate
    short names and unknown ids in admin calls. Never retried.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            context=context,
            cause=cause,
            recoverable=False,
        )


class ConfigurationError(LoadGeneratorError):
    """
    Invalid configuration.

    Raised when a policy observes a runtime state of the wrong shape, or
    when stored configuration cannot be read. Fails the caller's operation;
    reconciliation of other generators is unaffected.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            context=context,
            cause=cause,
            recoverable=code.is_retryable(),
        )


class HostError(LoadGeneratorError):
    """
    Failure reported by the job-execution host.

    Host errors are contained: a failed submission skips one candidate,
    a failed cancellation still removes the run from the generator's state.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            code=code,
            message=message,
            context=context,
            cause=cause,
            recoverable=code.is_retryable(),
        )


# =============================================================================
# Error Builder Functions
# =============================================================================


def validation_error(
    code: ErrorCode,
    message: str,
    generator_id: Optional[str] = None,
    short_name: Optional[str] = None,
    field_name: Optional[str] = None,
    expected: Optional[str] = None,
    actual: Optional[str] = None,
    cause: Optional[Exception] = None,
    **details: Any,
) -> ValidationError:
    """Factory function for creating ValidationError with context."""
    return ValidationError(
        code=code,
        message=message,
        context=ErrorContext(
            generator_id=generator_id,
            short_name=short_name,
            field_name=field_name,
            expected=expected,
            actual=actual,
            details=details,
        ),
        cause=cause,
    )


def configuration_error(
    code: ErrorCode,
    message: str,
    generator_id: Optional[str] = None,
    short_name: Optional[str] = None,
    path: Optional[Path] = None,
    expected: Optional[str] = None,
    actual: Optional[str] = None,
    cause: Optional[Exception] = None,
    **details: Any,
) -> ConfigurationError:
    """Factory function for creating ConfigurationError with context."""
    return ConfigurationError(
        code=code,
        message=message,
        context=ErrorContext(
            generator_id=generator_id,
            short_name=short_name,
            path=path,
            expected=expected,
            actual=actual,
            details=details,
        ),
        cause=cause,
    )


def host_error(
    code: ErrorCode,
    message: str,
    generator_id: Optional[str] = None,
    job_name: Optional[str] = None,
    cause: Optional[Exception] = None,
    **details: Any,
) -> HostError:
    """Factory function for creating HostError with context."""
    return HostError(
        code=code,
        message=message,
        context=ErrorContext(
            generator_id=generator_id,
            job_name=job_name,
            details=details,
        ),
        cause=cause,
    )
