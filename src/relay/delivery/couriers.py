"""
Courier providers.

Each courier (ACS, ELTA, Geniki, Speedex, plus a generic fallback) is a
``CourierProvider``: it recognises its own voucher format, rejects
vouchers that are really a phone number or the order number, and routes
the outbound payload.  The delivery core only depends on the protocol,
never on a specific courier.

Voucher formats::

    acs      10-12 digits (optional "00" prefix)   junk: 0{10,} 1{10,} 1234567890
    elta     9-13 digits                           junk: 0{9,}  1{9,}  123456789
    geniki   8-12 digits                           junk: 0{8,}  1{8,}  12345678
    speedex  10-14 digits
    generic  8-20 of [A-Za-z0-9-]
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from relay.core.logging import get_logger
from relay.delivery.payload import Order, build_order_payload

logger = get_logger(__name__)

DEFAULT_PRIORITY = ("acs", "geniki", "elta", "speedex", "generic")

_NON_DIGITS = re.compile(r"\D")


@runtime_checkable
class CourierProvider(Protocol):
    """Capability interface for a courier."""

    @property
    def id(self) -> str: ...

    @property
    def label(self) -> str: ...

    def looks_like(self, voucher: str) -> bool: ...

    def normalize(self, voucher: str) -> str: ...

    def validate(self, voucher: str, order: Order) -> tuple[bool, str]: ...

    def route(self, payload: dict[str, Any]) -> dict[str, Any]: ...

    def build_request(self, order: Order) -> dict[str, Any]: ...

    def parse_response(self, data: dict[str, Any] | None) -> dict[str, str | None]: ...


@dataclass(frozen=True)
class DigitVoucherProvider:
    """Courier whose vouchers are plain digit strings of a fixed length range."""

    id: str
    label: str
    min_digits: int
    max_digits: int
    junk_pattern: str | None = None
    allow_00_prefix: bool = False

    def _format(self) -> re.Pattern[str]:
        prefix = "(?:00)?" if self.allow_00_prefix else ""
        return re.compile(rf"^{prefix}\d{{{self.min_digits},{self.max_digits}}}$")

    def _is_junk(self, voucher: str) -> bool:
        return bool(self.junk_pattern and re.fullmatch(self.junk_pattern, voucher))

    def looks_like(self, voucher: str) -> bool:
        clean = self.normalize(voucher)
        if not re.fullmatch(rf"\d{{{self.min_digits},{self.max_digits}}}", clean):
            return False
        return not self._is_junk(clean)

    def normalize(self, voucher: str) -> str:
        return _NON_DIGITS.sub("", voucher)

    def validate(self, voucher: str, order: Order) -> tuple[bool, str]:
        if not self._format().match(voucher):
            return False, f"Invalid {self.label} voucher format"
        if self._is_junk(voucher):
            return False, "Sequential or zero pattern detected"
        if any(voucher in phone for phone in order.phones):
            return False, "Looks like phone number"
        if voucher in (str(order.order_id), order.number):
            return False, "Looks like order number"
        return True, f"Valid {self.label} voucher"

    def route(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {**payload, "courier": self.id, "api_endpoint": f"{self.id}_tracking"}

    def build_request(self, order: Order) -> dict[str, Any]:
        payload = build_order_payload(order)
        _attach_voucher(self, order, payload, self.id)
        payload["preferred_courier"] = self.id
        return self.route(payload)

    def parse_response(self, data: dict[str, Any] | None) -> dict[str, str | None]:
        return _remote_ids(data)


@dataclass(frozen=True)
class GenericProvider:
    """Fallback for couriers without a dedicated provider."""

    id: str = "generic"
    label: str = "Generic"

    def looks_like(self, voucher: str) -> bool:
        return bool(re.fullmatch(r"[A-Za-z0-9-]{8,20}", re.sub(r"\s+", "", voucher)))

    def normalize(self, voucher: str) -> str:
        return voucher.strip()

    def validate(self, voucher: str, order: Order) -> tuple[bool, str]:
        if not re.fullmatch(r"[A-Za-z0-9-]{8,20}", voucher):
            return False, "Invalid generic voucher format"
        return True, "Valid generic voucher"

    def route(self, payload: dict[str, Any]) -> dict[str, Any]:
        return {**payload, "courier": self.id, "api_endpoint": "generic_tracking"}

    def build_request(self, order: Order) -> dict[str, Any]:
        payload = build_order_payload(order)
        _attach_voucher(self, order, payload, order.courier or self.id)
        return self.route(payload)

    def parse_response(self, data: dict[str, Any] | None) -> dict[str, str | None]:
        return _remote_ids(data)


def _attach_voucher(provider: CourierProvider, order: Order, payload: dict[str, Any], company: str) -> None:
    """Add the order's voucher to ``payload`` when it passes ``provider.validate``."""
    if not order.voucher_number:
        return
    voucher = provider.normalize(order.voucher_number)
    valid, reason = provider.validate(voucher, order)
    if not valid:
        logger.warning("courier.voucher_rejected", courier=provider.id, order_id=str(order.order_id), reason=reason)
        return
    payload["voucher_number"] = voucher
    payload["courier_company"] = company


def _remote_ids(data: dict[str, Any] | None) -> dict[str, str | None]:
    data = data or {}
    nested = data.get("data") if isinstance(data.get("data"), dict) else {}
    order_id = data.get("order_id") or data.get("id") or nested.get("order_id") or nested.get("id")
    shipment_id = data.get("shipment_id") or nested.get("shipment_id")
    return {
        "order_id": None if order_id is None else str(order_id),
        "shipment_id": None if shipment_id is None else str(shipment_id),
    }


ACS = DigitVoucherProvider("acs", "ACS", 10, 12, r"0{10,}|1{10,}|1234567890", allow_00_prefix=True)
ELTA = DigitVoucherProvider("elta", "ELTA", 9, 13, r"0{9,}|1{9,}|123456789")
GENIKI = DigitVoucherProvider("geniki", "Geniki", 8, 12, r"0{8,}|1{8,}|12345678")
SPEEDEX = DigitVoucherProvider("speedex", "Speedex", 10, 14)
GENERIC = GenericProvider()


class CourierRegistry:
    """Registry of courier providers, resolved in priority order.

    Example:
        >>> registry = CourierRegistry.default()
        >>> registry.resolve_courier("1234567891").id
        'acs'
    """

    def __init__(self, providers: list[CourierProvider] | None = None, priority: tuple[str, ...] = DEFAULT_PRIORITY):
        self._providers: dict[str, CourierProvider] = {}
        self._priority = tuple(priority)
        for provider in providers or []:
            self.register(provider)

    @classmethod
    def default(cls) -> CourierRegistry:
        return cls([ACS, ELTA, GENIKI, SPEEDEX, GENERIC])

    def register(self, provider: CourierProvider) -> None:
        self._providers[provider.id] = provider

    def get(self, courier_id: str | None) -> CourierProvider | None:
        if not courier_id:
            return None
        return self._providers.get(courier_id.lower())

    def has(self, courier_id: str) -> bool:
        return courier_id.lower() in self._providers

    def ids(self) -> list[str]:
        return list(self._providers)

    @property
    def fallback(self) -> CourierProvider:
        return self._providers.get("generic") or GENERIC

    def resolve_courier(self, voucher: str, priority: tuple[str, ...] | None = None) -> CourierProvider | None:
        """First provider in priority order whose format matches ``voucher``."""
        for courier_id in priority or self._priority:
            provider = self._providers.get(courier_id)
            if provider is not None and provider.looks_like(voucher):
                return provider
        return None

    def for_order(self, order: Order) -> CourierProvider:
        """Explicit courier, else the voucher's courier, else the generic provider."""
        provider = self.get(order.courier)
        if provider is None and order.voucher_number:
            provider = self.resolve_courier(order.voucher_number)
        return provider or self.fallback


__all__ = [
    "CourierProvider",
    "DigitVoucherProvider",
    "GenericProvider",
    "CourierRegistry",
    "ACS",
    "ELTA",
    "GENIKI",
    "SPEEDEX",
    "GENERIC",
    "DEFAULT_PRIORITY",
]
