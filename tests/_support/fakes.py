"""
Test doubles shared across the suite.

Usage::

    from tests._support.fakes import FakeClock, InMemoryOrderRepository, make_order
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import httpx

from relay.delivery.payload import SENT_FAILED, SENT_PENDING, SENT_YES, Address, Order, OrderItem

T0 = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch clock. ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = T0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def datetime(self) -> datetime:
        return datetime.fromtimestamp(self.now, UTC)


def make_order(order_id: Any = 42, **overrides: Any) -> Order:
    """Order with one item and a Greek billing address."""
    values: dict[str, Any] = {
        "order_id": order_id,
        "created_at": datetime(2024, 3, 1, 12, 0, tzinfo=UTC),
        "number": f"WC-{order_id}",
        "status": "processing",
        "total": 49.9,
        "subtotal": 40.0,
        "tax_total": 9.6,
        "shipping_total": 3.5,
        "discount_total": 3.2,
        "paid": True,
        "payment_method": "card",
        "items": [OrderItem(name="<b>Olive oil</b> 1L", quantity=2, total=40.0, sku="OIL-1", weight=1.1)],
        "billing": Address(
            first_name="Maria",
            last_name="Papadopoulou",
            address_1="Ermou 10",
            city="Athens",
            postcode="10563",
            phone="6912345678",
            email="maria@example.com",
        ),
    }
    values.update(overrides)
    return Order(**values)


class InMemoryOrderRepository:
    """Order repository recording every state change."""

    def __init__(self, orders: list[Order] | None = None):
        self.orders: dict[str, Order] = {}
        self.calls: list[tuple[Any, ...]] = []
        for order in orders or []:
            self.add(order)

    def add(self, order: Order) -> Order:
        self.orders[str(order.order_id)] = order
        return order

    def get(self, order_id: Any) -> Order | None:
        return self.orders.get(str(order_id))

    def mark_sent(self, order_id: Any, remote_order_id: str | None, remote_shipment_id: str | None) -> None:
        order = self.orders[str(order_id)]
        order.sent = SENT_YES
        order.retry_count = 0
        order.last_error = None
        self.calls.append(("mark_sent", order_id, remote_order_id, remote_shipment_id))

    def mark_failed_attempt(self, order_id: Any, retry_count: int, last_error: str) -> None:
        order = self.orders[str(order_id)]
        order.sent = SENT_PENDING
        order.retry_count = retry_count
        order.last_error = last_error
        self.calls.append(("mark_failed_attempt", order_id, retry_count, last_error))

    def mark_permanently_failed(self, order_id: Any, reason: str) -> None:
        order = self.orders[str(order_id)]
        order.sent = SENT_FAILED
        order.last_error = reason
        self.calls.append(("mark_permanently_failed", order_id, reason))


class ScriptedDestination:
    """httpx handler replaying a list of responses and recording requests.

    Each script entry is ``(status, json_body, headers)``, or an exception
    instance to raise.  The last entry repeats once the script runs out.
    """

    def __init__(self, *script: Any):
        self.script = list(script) or [(200, {"order_id": "R-1"}, {})]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self.script)) - 1
        entry = self.script[index]
        if isinstance(entry, Exception):
            raise entry
        status, body, headers = (tuple(entry) + ({}, {}))[:3]
        if isinstance(body, str):
            return httpx.Response(status, text=body, headers=headers)
        return httpx.Response(status, json=body, headers=headers)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)
