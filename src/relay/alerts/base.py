"""Alert channel base class: severity filtering and enable/disable."""

from __future__ import annotations

from abc import ABC, abstractmethod

from relay.alerts.protocol import (
    Alert,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)


class BaseChannel(ABC):
    """
    Base class for alert channel implementations.

    ``sources`` restricts the channel to alerts from the named components
    (``None`` means all); a trailing ``*`` matches by prefix.
    """

    def __init__(
        self,
        name: str,
        channel_type: ChannelType,
        *,
        min_severity: AlertSeverity = AlertSeverity.WARNING,
        sources: list[str] | None = None,
        enabled: bool = True,
    ):
        self._name = name
        self._channel_type = channel_type
        self._min_severity = min_severity
        self._sources = sources
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def channel_type(self) -> ChannelType:
        return self._channel_type

    @property
    def min_severity(self) -> AlertSeverity:
        return self._min_severity

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def should_send(self, alert: Alert) -> bool:
        """Check if alert should be sent."""
        if not self._enabled:
            return False

        if alert.severity < self._min_severity:
            return False

        if self._sources:
            for pattern in self._sources:
                if pattern.endswith("*") and alert.source.startswith(pattern[:-1]):
                    return True
                if pattern == alert.source:
                    return True
            return False

        return True

    @abstractmethod
    def send(self, alert: Alert) -> DeliveryResult:
        """Send alert to the channel."""
        ...
