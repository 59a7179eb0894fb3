"""Delivery: order payloads, courier providers and the HTTP client."""

from relay.delivery.client import DeliveryClient, is_retryable
from relay.delivery.couriers import (
    ACS,
    ELTA,
    GENERIC,
    GENIKI,
    SPEEDEX,
    CourierProvider,
    CourierRegistry,
)
from relay.delivery.payload import Address, Order, OrderItem, build_order_payload

__all__ = [
    "ACS",
    "ELTA",
    "GENERIC",
    "GENIKI",
    "SPEEDEX",
    "Address",
    "CourierProvider",
    "CourierRegistry",
    "DeliveryClient",
    "Order",
    "OrderItem",
    "build_order_payload",
    "is_retryable",
]
