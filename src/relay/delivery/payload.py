"""Order snapshot and outbound payload construction.

The order-management system owns orders; the relay receives a read-only
``Order`` snapshot through ``OrderRepository`` and turns it into the JSON
body the logistics API expects::

    {
      "source": "storefront",
      "order":    {external_order_id, order_number, status, totals..., items},
      "customer": {first_name, last_name, email, phone},
      "shipping": {"address": {...}, "weight": 1.25},
      "idempotency_key": "...",          # added by the processor
      "sync_update": true                # only for updates (sent as PUT)
    }
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

_TAG_PATTERN = re.compile(r"<[^>]+>")

SENT_PENDING = "pending"
SENT_YES = "yes"
SENT_FAILED = "failed"


def strip_tags(value: str | None) -> str:
    return _TAG_PATTERN.sub("", value or "").strip()


@dataclass
class Address:
    first_name: str = ""
    last_name: str = ""
    company: str = ""
    address_1: str = ""
    address_2: str = ""
    city: str = ""
    postcode: str = ""
    country: str = "GR"
    phone: str = ""
    email: str = ""


@dataclass
class OrderItem:
    name: str
    quantity: int = 1
    total: float = 0.0
    sku: str = ""
    weight: float = 0.0
    product_id: int = 0
    variation_id: int = 0
    image_url: str = ""

    @property
    def unit_price(self) -> float:
        quantity = max(1, self.quantity)
        return self.total / quantity


@dataclass
class Order:
    """Read-only order snapshot.

    ``sent`` is one of ``pending`` / ``yes`` / ``failed``; ``created_at``
    must never change for an order since the idempotency key derives from it.
    """

    order_id: str | int
    created_at: datetime | int | float
    number: str = ""
    status: str = ""
    total: float = 0.0
    subtotal: float = 0.0
    tax_total: float = 0.0
    shipping_total: float = 0.0
    discount_total: float = 0.0
    currency: str = "EUR"
    paid: bool = False
    payment_method: str = ""
    items: list[OrderItem] = field(default_factory=list)
    billing: Address = field(default_factory=Address)
    shipping: Address | None = None
    sent: str = SENT_PENDING
    retry_count: int = 0
    last_error: str | None = None
    sync_update: bool = False
    voucher_number: str | None = None
    courier: str | None = None
    weight: float | None = None

    @property
    def is_sent(self) -> bool:
        return self.sent == SENT_YES

    @property
    def is_permanently_failed(self) -> bool:
        return self.sent == SENT_FAILED

    @property
    def phones(self) -> list[str]:
        return [p for p in (self.billing.phone, self.shipping.phone if self.shipping else "") if p]

    def total_weight(self) -> float:
        if self.weight is not None:
            return float(self.weight)
        return round(sum(item.weight * max(1, item.quantity) for item in self.items), 3)


def _shipping_address(order: Order) -> dict[str, Any]:
    billing = order.billing
    # Fall back to billing when no shipping street is set
    shipping = order.shipping if order.shipping and order.shipping.address_1 else billing
    return {
        "first_name": strip_tags(shipping.first_name or billing.first_name),
        "last_name": strip_tags(shipping.last_name or billing.last_name),
        "company": strip_tags(shipping.company),
        "address_1": strip_tags(shipping.address_1),
        "address_2": strip_tags(shipping.address_2),
        "city": strip_tags(shipping.city),
        "postcode": shipping.postcode,
        "country": shipping.country or "GR",
        "phone": shipping.phone or billing.phone,
        "email": billing.email,
    }


def build_order_payload(order: Order, *, source: str = "storefront") -> dict[str, Any]:
    """Build the destination request body for ``order``."""
    items = []
    for item in order.items:
        name = strip_tags(item.name) or f"Product #{item.product_id}"
        items.append(
            {
                "sku": item.sku,
                "name": name,
                "quantity": max(1, item.quantity),
                "price": item.unit_price,
                "total": float(item.total),
                "weight": float(item.weight),
                "product_id": item.product_id,
                "variation_id": item.variation_id,
                "image_url": item.image_url,
            }
        )

    payload: dict[str, Any] = {
        "source": source,
        "order": {
            "external_order_id": str(order.order_id),
            "order_number": order.number or str(order.order_id),
            "status": order.status,
            "total_amount": float(order.total),
            "subtotal": float(order.subtotal),
            "tax_amount": float(order.tax_total),
            "shipping_cost": float(order.shipping_total),
            "discount_amount": float(order.discount_total),
            "currency": order.currency,
            "payment_status": "paid" if order.paid else "pending",
            "payment_method": order.payment_method,
            "items": items,
        },
        "customer": {
            "first_name": strip_tags(order.billing.first_name),
            "last_name": strip_tags(order.billing.last_name),
            "email": order.billing.email,
            "phone": order.billing.phone,
        },
        "shipping": {
            "address": _shipping_address(order),
            "weight": order.total_weight(),
        },
    }
    if order.sync_update:
        payload["sync_update"] = True
    return payload


__all__ = [
    "SENT_PENDING",
    "SENT_YES",
    "SENT_FAILED",
    "Address",
    "OrderItem",
    "Order",
    "build_order_payload",
    "strip_tags",
]
