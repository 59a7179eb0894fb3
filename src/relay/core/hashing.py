"""
Deterministic hashing for idempotency, signatures and cache keys.

Manifesto:
    A retry of the same order must look identical to the destination.
    Keys are derived only from facts that never change for an order
    (storefront origin, order id, creation timestamp) and never from the
    processing time or the attempt number.

Examples:
    Same order → same key:

    >>> k1 = compute_idempotency_key("secret", "https://shop.example", 42, 1700000000)
    >>> k2 = compute_idempotency_key("secret", "https://shop.example", 42, 1700000000)
    >>> k1 == k2
    True
    >>> len(k1)
    64

    Different order → different key:

    >>> k1 != compute_idempotency_key("secret", "https://shop.example", 43, 1700000000)
    True

Tags:
    hashing, hmac, idempotency, signature, relay-core
"""

from __future__ import annotations

import hashlib
import hmac
import json
from datetime import UTC, datetime
from typing import Any

DEFAULT_KEY_SECRET = "default_secret"


def _timestamp(value: datetime | int | float | str) -> int:
    """Epoch seconds; naive datetimes are read as UTC."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    return int(value)


def compute_idempotency_key(
    secret: str,
    origin_id: str,
    order_id: Any,
    created_at: datetime | int | float | str,
) -> str:
    """HMAC-SHA256 of ``origin_id|order_id|created_ts`` as 64 hex chars.

    Args:
        secret: Shared API secret (``default_secret`` when unset)
        origin_id: Storefront identifier, e.g. site URL
        order_id: Order identifier
        created_at: Order creation time (datetime, epoch seconds or ISO string)
    """
    key_data = f"{origin_id}|{order_id}|{_timestamp(created_at)}"
    return hmac.new(
        (secret or DEFAULT_KEY_SECRET).encode(),
        key_data.encode(),
        hashlib.sha256,
    ).hexdigest()


def sign_payload(body: bytes | str, secret: str) -> str | None:
    """HMAC-SHA256 signature of the exact request body, or ``None`` without a secret."""
    if not secret:
        return None
    if isinstance(body, str):
        body = body.encode()
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def serialize_payload(payload: dict[str, Any]) -> bytes:
    """Compact, stable JSON bytes. The signature is computed over these bytes."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str).encode()


def compute_cache_key(endpoint: str, payload: dict[str, Any], resource: str) -> str:
    """Response cache key; the idempotency key is excluded."""
    data = {k: v for k, v in payload.items() if k != "idempotency_key"}
    content = json.dumps(
        {"endpoint": endpoint, "data": data, "resource": resource},
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(content.encode()).hexdigest()


__all__ = [
    "compute_idempotency_key",
    "sign_payload",
    "serialize_payload",
    "compute_cache_key",
]
