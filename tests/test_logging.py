"""Tests for logging setup."""

import logging

from ccoperator.logging import _resolve_level, bind_context, configure_logging


def test_resolve_level_names():
    assert _resolve_level("debug") == logging.DEBUG
    assert _resolve_level(logging.ERROR) == logging.ERROR
    assert _resolve_level("chatty") == logging.INFO


def test_configure_quiets_transport_loggers():
    configure_logging("WARNING", json_output=False)

    assert logging.getLogger().level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_bind_context_keeps_fields():
    log = bind_context(namespace="kafka", name="op")

    assert log._context == {"namespace": "kafka", "name": "op"}
