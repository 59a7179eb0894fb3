"""Alert registry: routing to channels with per-fingerprint throttling."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

from relay.alerts.protocol import (
    Alert,
    AlertChannel,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)
from relay.core.logging import get_logger
from relay.core.store import InMemoryAtomicStore, KeyedAtomicStore

logger = get_logger(__name__)

THROTTLE_PREFIX = "relay:alert_throttle:"


class AlertRegistry:
    """
    Registry for alert channels.

    ``emit()`` sends an alert to every matching channel unless an alert with
    the same fingerprint went out within ``throttle_seconds``.  The throttle
    marker is claimed with a compare-and-swap on the shared store, so two
    workers noticing the same condition raise it once.
    """

    def __init__(
        self,
        store: KeyedAtomicStore | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._channels: dict[str, AlertChannel] = {}
        self._store = store if store is not None else InMemoryAtomicStore(clock=clock)
        self._clock = clock

    def register(self, channel: AlertChannel) -> None:
        """Register an alert channel."""
        self._channels[channel.name] = channel

    def unregister(self, name: str) -> None:
        self._channels.pop(name, None)

    def get(self, name: str) -> AlertChannel | None:
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        return sorted(self._channels.keys())

    def list_by_type(self, channel_type: ChannelType) -> list[str]:
        return [name for name, channel in self._channels.items() if channel.channel_type == channel_type]

    def send_to_all(self, alert: Alert) -> list[DeliveryResult]:
        """Send alert to all matching channels, without throttling."""
        results = []
        for channel in self._channels.values():
            if channel.should_send(alert):
                result = channel.send(alert)
                if not result.success:
                    logger.warning(
                        "alert.delivery_failed",
                        channel=channel.name,
                        title=alert.title,
                        error=result.message,
                    )
                results.append(result)
        return results

    def is_throttled(self, fingerprint: str) -> bool:
        return self._store.get(THROTTLE_PREFIX + fingerprint) is not None

    def emit(self, alert: Alert, *, throttle_seconds: int | None = None) -> list[DeliveryResult]:
        """Send ``alert`` unless the same fingerprint was sent recently.

        Returns:
            Delivery results, empty when the alert was throttled
        """
        if throttle_seconds:
            claimed = self._store.compare_and_swap(
                THROTTLE_PREFIX + str(alert.fingerprint),
                None,
                self._clock(),
                ttl_seconds=throttle_seconds,
            )
            if not claimed:
                logger.debug("alert.throttled", fingerprint=alert.fingerprint)
                return []
        return self.send_to_all(alert)

    def alert(
        self,
        severity: AlertSeverity,
        title: str,
        message: str,
        source: str,
        *,
        throttle_seconds: int | None = None,
        **kwargs: Any,
    ) -> list[DeliveryResult]:
        """
        Convenience wrapper building the ``Alert``.

        Usage:
            registry.alert(
                AlertSeverity.WARNING,
                "Rate limit violations",
                "5 violations for acs in 5 minutes",
                source="rate_limit",
                resource="acs",
                throttle_seconds=900,
            )
        """
        return self.emit(
            Alert(severity=severity, title=title, message=message, source=source, **kwargs),
            throttle_seconds=throttle_seconds,
        )


__all__ = ["AlertRegistry", "THROTTLE_PREFIX"]
