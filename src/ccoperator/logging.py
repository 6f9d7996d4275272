"""
structlog setup for the operator process.

Reconciliation passes log snake_case events with the record's namespace,
name and Kafka cluster bound as fields, rendered as one JSON object per
line (or human readable output for local runs).
"""

import logging
from typing import Any

import structlog

# Chatty third-party loggers that only matter when debugging transport issues.
NOISY_LOGGERS = ("httpx", "httpcore", "kubernetes.client.rest", "urllib3")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: int | str = logging.INFO, *, json_output: bool = True) -> None:
    """Configure structlog on top of the standard library logging bridge."""
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    resolved = _resolve_level(level)
    logging.basicConfig(level=resolved, format="%(message)s")
    logging.getLogger().setLevel(resolved)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Logger carrying per-pass fields such as namespace, name and cluster."""
    return structlog.get_logger().bind(**kwargs)
