"""Alert channels.

LogChannel writes alerts to the structured log (always registered).
WebhookChannel POSTs the alert JSON to an operator-configured URL.
MemoryChannel keeps alerts in a list, for the CLI and tests.
"""

from __future__ import annotations

from typing import Any

import httpx

from relay.alerts.base import BaseChannel
from relay.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)
from relay.core.errors import RetryableTransportError
from relay.core.logging import get_logger

logger = get_logger(__name__)

_LEVELS = {
    AlertSeverity.INFO: "info",
    AlertSeverity.WARNING: "warning",
    AlertSeverity.ERROR: "error",
    AlertSeverity.CRITICAL: "critical",
}


class LogChannel(BaseChannel):
    """Emit alerts as ``alert.raised`` log events at the matching level."""

    def __init__(self, name: str = "log", *, min_severity: AlertSeverity = AlertSeverity.INFO, **kwargs: Any):
        super().__init__(name, ChannelType.LOG, min_severity=min_severity, **kwargs)

    def send(self, alert: Alert) -> DeliveryResult:
        log = getattr(logger, _LEVELS[alert.severity])
        log("alert.raised", **alert.to_dict())
        return DeliveryResult.ok(self._name)


class WebhookChannel(BaseChannel):
    """
    Generic webhook channel.

    POSTs alert data to a URL.
    """

    def __init__(
        self,
        name: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        min_severity: AlertSeverity = AlertSeverity.ERROR,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        **kwargs: Any,
    ):
        super().__init__(name, ChannelType.WEBHOOK, min_severity=min_severity, **kwargs)
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout
        self._transport = transport

    def send(self, alert: Alert) -> DeliveryResult:
        headers = {"Content-Type": "application/json"}
        headers.update(self._headers)

        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self._url, json=alert.to_dict(), headers=headers)
                response.raise_for_status()
                return DeliveryResult.ok(self._name, response={"status": response.status_code})
        except httpx.HTTPStatusError as e:
            return DeliveryResult.fail(self._name, e)
        except httpx.HTTPError as e:
            return DeliveryResult.fail(self._name, RetryableTransportError(str(e), cause=e))


class MemoryChannel(BaseChannel):
    """Collect alerts in memory."""

    def __init__(self, name: str = "memory", *, min_severity: AlertSeverity = AlertSeverity.INFO, **kwargs: Any):
        super().__init__(name, ChannelType.MEMORY, min_severity=min_severity, **kwargs)
        self.alerts: list[Alert] = []

    def send(self, alert: Alert) -> DeliveryResult:
        self.alerts.append(alert)
        return DeliveryResult.ok(self._name)


__all__ = ["LogChannel", "WebhookChannel", "MemoryChannel"]
