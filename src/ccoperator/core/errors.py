"""
Unified error handling for the operator.

Reconciliation passes scope every failure to a single record; the error
types below let the reconciler decide between a quiet completion, a
fixed-interval requeue and a requeue with error. The CLI maps the same
types onto process exit codes.

Exit Codes:
- 0: Success
- 10: Configuration error
- 11: Provider error (Cruise Control or the object store failed)
- 12: Validation error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class CCOperatorError(Exception):
    """Base exception for operator errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CCOperatorError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class StoreError(CCOperatorError):
    """Raised when the operation store rejects or fails a request."""

    exit_code = ExitCode.PROVIDER_ERROR


class NotFoundError(StoreError):
    """Raised when a requested record does not exist."""


class ConflictError(StoreError):
    """Raised when a write is based on a stale resource version."""


class ExecutorError(CCOperatorError):
    """Raised when Cruise Control cannot be reached or gives no usable answer."""

    exit_code = ExitCode.PROVIDER_ERROR


class DispatchError(ExecutorError):
    """Raised when a selected operation could not be submitted at all."""


class ValidationError(CCOperatorError):
    """Raised for invalid operation records."""

    exit_code = ExitCode.VALIDATION_ERROR


class ClusterReferenceError(ValidationError):
    """Raised when an operation has no usable Kafka cluster reference."""


class UnsupportedOperationError(ValidationError):
    """Raised for operation kinds the operator does not know how to run."""


class TaskResultError(ValidationError):
    """Raised when a Cruise Control task result cannot be merged."""


F = TypeVar("F", bound=Callable[..., int])

EXIT_INTERRUPTED = 130


def format_error_message(error: CCOperatorError) -> str:
    """Render an error and its details on one line."""
    if not error.details:
        return error.message
    rendered = ", ".join(f"{key}={value}" for key, value in error.details.items())
    return f"{error.message} ({rendered})"


def exit_code_for(error: Exception) -> int:
    if isinstance(error, CCOperatorError):
        return int(error.exit_code)
    return int(ExitCode.UNKNOWN_ERROR)


def main_with_error_handling(*, show_traceback: bool = False) -> Callable[[F], F]:
    """Turn exceptions escaping a CLI command into its process exit code.

    Operator errors exit with their own code, SIGINT with 130 and anything
    else with 127. Every failure is logged once as ``command_failed``.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except KeyboardInterrupt:
                logger.info("command_interrupted")
                return EXIT_INTERRUPTED
            except Exception as exc:
                code = exit_code_for(exc)
                message = format_error_message(exc) if isinstance(exc, CCOperatorError) else str(exc)
                logger.error(
                    "command_failed",
                    error=message,
                    error_type=type(exc).__name__,
                    exit_code=code,
                )
                if show_traceback or getattr(exc, "show_traceback", False):
                    traceback.print_exc(file=sys.stderr)
                return code

        return wrapper  # type: ignore[return-value]

    return decorator
