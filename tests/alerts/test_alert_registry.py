"""Tests for alert channels and the alert registry."""

import json

import httpx
import pytest

from relay.alerts import (
    Alert,
    AlertRegistry,
    AlertSeverity,
    ChannelType,
    LogChannel,
    MemoryChannel,
    WebhookChannel,
)
from relay.core.errors import MaxRetriesExceeded


def make_alert(severity=AlertSeverity.ERROR, **kwargs):
    values = {"title": "Stuck jobs detected", "message": "2 stuck", "source": "scheduler"}
    values.update(kwargs)
    return Alert(severity=severity, **values)


def refuse_connection(request):
    raise httpx.ConnectError("refused", request=request)


class TestAlert:
    def test_severity_ordering(self):
        assert AlertSeverity.INFO < AlertSeverity.WARNING < AlertSeverity.ERROR < AlertSeverity.CRITICAL

    def test_fingerprint_includes_resource(self):
        assert make_alert().fingerprint == "ERROR|scheduler|Stuck jobs detected"
        assert make_alert(resource="relay_retry").fingerprint.endswith("|relay_retry")

    def test_to_dict_serializes_error(self):
        alert = make_alert(order_id="42", error=MaxRetriesExceeded("gave up", attempts=5))
        data = alert.to_dict()
        assert data["order_id"] == "42"
        assert data["error"]["error_type"] == "MaxRetriesExceeded"
        json.dumps(data)


class TestChannels:
    def test_min_severity_filter(self):
        channel = MemoryChannel(min_severity=AlertSeverity.ERROR)
        assert not channel.should_send(make_alert(AlertSeverity.WARNING))
        assert channel.should_send(make_alert(AlertSeverity.CRITICAL))

    def test_source_filter_with_prefix(self):
        channel = MemoryChannel(sources=["rate_*"])
        assert channel.should_send(make_alert(source="rate_limit"))
        assert not channel.should_send(make_alert(source="scheduler"))

    def test_disabled_channel(self):
        channel = MemoryChannel()
        channel.disable()
        assert not channel.should_send(make_alert())

    def test_log_channel_succeeds(self):
        assert LogChannel().send(make_alert()).success

    def test_webhook_posts_json(self):
        received = []

        def handler(request):
            received.append(json.loads(request.content))
            return httpx.Response(200)

        channel = WebhookChannel("ops", "https://hooks.example.com/relay", transport=httpx.MockTransport(handler))
        result = channel.send(make_alert(order_id="42"))
        assert result.success
        assert received[0]["title"] == "Stuck jobs detected"
        assert received[0]["order_id"] == "42"

    @pytest.mark.parametrize(
        "handler",
        [
            lambda request: httpx.Response(500),
            refuse_connection,
        ],
    )
    def test_webhook_failure_reported_not_raised(self, handler):
        channel = WebhookChannel("ops", "https://hooks.example.com", transport=httpx.MockTransport(handler))
        result = channel.send(make_alert())
        assert result.success is False
        assert result.error is not None


class TestAlertRegistry:
    def test_register_and_list(self, store, clock):
        registry = AlertRegistry(store, clock=clock)
        registry.register(MemoryChannel("mem"))
        registry.register(LogChannel())
        assert registry.list_channels() == ["log", "mem"]
        assert registry.list_by_type(ChannelType.MEMORY) == ["mem"]
        registry.unregister("mem")
        assert registry.get("mem") is None

    def test_send_to_matching_channels(self, store, clock):
        registry = AlertRegistry(store, clock=clock)
        low = MemoryChannel("low", min_severity=AlertSeverity.INFO)
        high = MemoryChannel("high", min_severity=AlertSeverity.CRITICAL)
        registry.register(low)
        registry.register(high)
        results = registry.emit(make_alert(AlertSeverity.ERROR))
        assert [r.channel_name for r in results] == ["low"]
        assert len(low.alerts) == 1
        assert high.alerts == []

    def test_throttle_window(self, store, clock):
        registry = AlertRegistry(store, clock=clock)
        channel = MemoryChannel()
        registry.register(channel)

        registry.emit(make_alert(), throttle_seconds=3600)
        registry.emit(make_alert(), throttle_seconds=3600)
        assert len(channel.alerts) == 1
        assert registry.is_throttled(make_alert().fingerprint)

        registry.emit(make_alert(resource="other"), throttle_seconds=3600)
        assert len(channel.alerts) == 2

        clock.advance(3601)
        registry.emit(make_alert(), throttle_seconds=3600)
        assert len(channel.alerts) == 3

    def test_alert_convenience(self, store, clock):
        registry = AlertRegistry(store, clock=clock)
        channel = MemoryChannel()
        registry.register(channel)
        registry.alert(AlertSeverity.WARNING, "Rate limit violations", "5 in 5 minutes", source="rate_limit", resource="acs")
        assert channel.alerts[0].resource == "acs"
