"""Order processing: the processor and the event-to-job adapter."""

from relay.processing.events import (
    EventDecision,
    EventOutcome,
    OrderEvent,
    OrderEventAdapter,
    send_order_handler,
)
from relay.processing.orders import (
    SEND_ORDER_HOOK,
    OrderProcessor,
    OrderRepository,
    ProcessResult,
)

__all__ = [
    "EventDecision",
    "EventOutcome",
    "OrderEvent",
    "OrderEventAdapter",
    "OrderProcessor",
    "OrderRepository",
    "ProcessResult",
    "SEND_ORDER_HOOK",
    "send_order_handler",
]
