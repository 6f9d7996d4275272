"""Root test configuration."""

import logging

import pytest
import structlog
from ccoperator.config import Settings
from ccoperator.core.errors import ExecutorError
from ccoperator.store.memory import InMemoryOperationStore
from helpers import NAMESPACE, NOW, ScriptedExecutor


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture
def settings():
    return Settings(
        namespace=NAMESPACE,
        conflict_retry_initial_seconds=0,
        conflict_retry_max_seconds=0,
    )


@pytest.fixture
def store():
    return InMemoryOperationStore(clock=lambda: NOW)


@pytest.fixture
def executor():
    return ScriptedExecutor()


@pytest.fixture
def engine_error():
    return ExecutorError("Cruise Control is unreachable", {"cause": "connection refused"})
