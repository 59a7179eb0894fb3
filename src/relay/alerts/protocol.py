"""
Alert protocol and data classes.

Alerts are how the relay tells an operator that something needs a human:
a destination that keeps rejecting us for rate limits, an order that ran
out of retries, jobs stuck in progress.  Concrete channels live in
``channels.py``; routing and throttling in ``registry.py``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from relay.core.errors import RelayError


class AlertSeverity(str, Enum):
    """Alert severity levels."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def _order(self) -> list[AlertSeverity]:
        return [
            AlertSeverity.INFO,
            AlertSeverity.WARNING,
            AlertSeverity.ERROR,
            AlertSeverity.CRITICAL,
        ]

    def __lt__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) < self._order().index(other)

    def __le__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) <= self._order().index(other)

    def __ge__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) >= self._order().index(other)

    def __gt__(self, other: AlertSeverity) -> bool:
        return self._order().index(self) > self._order().index(other)


class ChannelType(str, Enum):
    """Alert channel types."""

    LOG = "log"
    WEBHOOK = "webhook"
    MEMORY = "memory"


@dataclass
class Alert:
    """
    An alert to be sent to one or more channels.

    ``source`` names the component raising it (``rate_limit``,
    ``order_processor``, ``scheduler``); ``resource`` the destination or
    job group it concerns.
    """

    severity: AlertSeverity
    title: str
    message: str
    source: str

    resource: str | None = None
    order_id: str | None = None
    error: RelayError | None = None

    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    # For deduplication/throttling
    fingerprint: str | None = None

    def __post_init__(self):
        if self.fingerprint is None:
            parts = [self.severity.value, self.source, self.title]
            if self.resource:
                parts.append(self.resource)
            self.fingerprint = "|".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "source": self.source,
            "created_at": self.created_at.isoformat(),
            "fingerprint": self.fingerprint,
        }
        if self.resource:
            result["resource"] = self.resource
        if self.order_id:
            result["order_id"] = self.order_id
        if self.error:
            result["error"] = self.error.to_dict()
        if self.metadata:
            result["metadata"] = self.metadata
        return result


@dataclass
class DeliveryResult:
    """Result of alert delivery attempt."""

    channel_name: str
    success: bool
    message: str | None = None
    response: dict[str, Any] | None = None
    error: Exception | None = None
    delivered_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def ok(cls, channel_name: str, message: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(channel_name=channel_name, success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, channel_name: str, error: Exception) -> DeliveryResult:
        return cls(channel_name=channel_name, success=False, error=error, message=str(error))


@runtime_checkable
class AlertChannel(Protocol):
    """Protocol for alert channels."""

    @property
    def name(self) -> str: ...

    @property
    def channel_type(self) -> ChannelType: ...

    @property
    def min_severity(self) -> AlertSeverity: ...

    @property
    def enabled(self) -> bool: ...

    def should_send(self, alert: Alert) -> bool: ...

    def send(self, alert: Alert) -> DeliveryResult: ...


__all__ = [
    "AlertSeverity",
    "ChannelType",
    "Alert",
    "DeliveryResult",
    "AlertChannel",
]
