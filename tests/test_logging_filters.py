"""Tests for redaction and request correlation in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from window_ratelimit.core.config import LogSettings
from window_ratelimit.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    configure_logging,
    set_request_id,
)


@pytest.fixture
def capture():
    logger = logging.getLogger("test_ratelimit_logging")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    yield logger, stream

    logger.handlers.clear()
    clear_request_id()


def test_client_identifiers_are_redacted(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.exceeded",
        extra={
            "client_key": "203.0.113.9",
            "x-forwarded-for": "198.51.100.4",
            "key_hash": "abc123",
        },
    )

    output = stream.getvalue()
    assert "203.0.113.9" not in output
    assert "198.51.100.4" not in output
    assert "[REDACTED]" in output
    assert "abc123" in output


def test_safe_fields_pass_through(capture):
    logger, stream = capture

    logger.info(
        "rate_limit.allowed",
        extra={"limit": 5, "used": 2, "window_s": 60, "key_hash": "f00d"},
    )

    payload = json.loads(stream.getvalue())
    assert payload["message"] == "rate_limit.allowed"
    assert payload["level"] == "info"
    assert payload["limit"] == 5
    assert payload["used"] == 2
    assert "[REDACTED]" not in stream.getvalue()


def test_nested_sensitive_fields_are_redacted(capture):
    logger, stream = capture

    logger.info(
        "request_headers",
        extra={"headers": {"Authorization": "Bearer secret", "user-agent": "pytest"}},
    )

    output = stream.getvalue()
    assert "Bearer secret" not in output
    assert "pytest" in output


def test_request_id_from_context_is_attached(capture):
    logger, stream = capture
    set_request_id("req-42")

    logger.warning("rate_limit.exceeded")

    payload = json.loads(stream.getvalue())
    assert payload["request_id"] == "req-42"


def test_configure_logging_installs_a_single_root_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(LogSettings(level="DEBUG", format="plain"))
        configure_logging(LogSettings(level="DEBUG", format="plain"))

        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        filters = {type(f) for f in root.handlers[0].filters}
        assert filters == {RequestIdFilter, SensitiveDataFilter}
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
