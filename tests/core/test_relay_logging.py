"""Tests for relay logging helpers."""

import structlog

from relay.core.logging import (
    LogContext,
    _elasticsearch_compatible,
    _redact_secrets,
    bind_context,
    clear_context,
)


class TestProcessors:
    def test_ecs_field_names(self):
        event = _elasticsearch_compatible(None, "info", {"timestamp": "t", "level": "info", "event": "x"})
        assert event == {"@timestamp": "t", "log.level": "info", "event": "x"}

    def test_secrets_redacted(self):
        event = _redact_secrets(
            None,
            "info",
            {"api_key": "k", "headers": {"X-Api-Key": "k", "Accept": "json"}},
        )
        assert event["api_key"] == "***REDACTED***"
        assert event["headers"] == {"X-Api-Key": "***REDACTED***", "Accept": "json"}


class TestLogContext:
    def teardown_method(self):
        clear_context()

    def test_scoped_binding(self):
        with LogContext(order_id="42", job_id="abc"):
            assert structlog.contextvars.get_contextvars() == {"order_id": "42", "job_id": "abc"}
        assert structlog.contextvars.get_contextvars() == {}

    def test_outer_context_survives(self):
        bind_context(service_run="r1")
        with LogContext(order_id="42"):
            pass
        assert structlog.contextvars.get_contextvars() == {"service_run": "r1"}
