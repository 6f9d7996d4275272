"""Core modules - centralized error definitions."""

from ccoperator.core.errors import (
    CCOperatorError,
    ClusterReferenceError,
    ConfigurationError,
    ConflictError,
    DispatchError,
    ExecutorError,
    ExitCode,
    NotFoundError,
    StoreError,
    TaskResultError,
    UnsupportedOperationError,
    ValidationError,
    exit_code_for,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "CCOperatorError",
    "ConfigurationError",
    "StoreError",
    "NotFoundError",
    "ConflictError",
    "ExecutorError",
    "DispatchError",
    "ValidationError",
    "ClusterReferenceError",
    "UnsupportedOperationError",
    "TaskResultError",
    "main_with_error_handling",
    "exit_code_for",
    "format_error_message",
]
