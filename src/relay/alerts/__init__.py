"""
Alerting package.

Provides a unified interface for raising operator alerts from the
limiter, the order processor and the scheduler.
"""

from relay.alerts.base import BaseChannel
from relay.alerts.channels import LogChannel, MemoryChannel, WebhookChannel
from relay.alerts.protocol import (
    Alert,
    AlertChannel,
    AlertSeverity,
    ChannelType,
    DeliveryResult,
)
from relay.alerts.registry import AlertRegistry

__all__ = [
    "AlertSeverity",
    "ChannelType",
    "Alert",
    "DeliveryResult",
    "AlertChannel",
    "BaseChannel",
    "LogChannel",
    "WebhookChannel",
    "MemoryChannel",
    "AlertRegistry",
]
