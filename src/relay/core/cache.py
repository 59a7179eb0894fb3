"""
Response cache for idempotent destination reads.

Only GET-style calls are cached (tracking lookups, status reads); order
submissions are never served from cache.

Architecture:
    ::

        CacheBackend (Protocol)
        ├── InMemoryCache  — single process, bounded LRU with TTL
        └── StoreCache     — on top of a KeyedAtomicStore (shared via Redis)

Examples:
    >>> cache = InMemoryCache(max_size=100, default_ttl_seconds=300)
    >>> cache.set("k", {"status": "in_transit"})
    >>> cache.get("k")
    {'status': 'in_transit'}

Guardrails:
    ❌ DON'T: Cache POST/PUT responses
    ✅ DO: Key on endpoint + payload without the idempotency key + resource

Tags:
    cache, ttl, lru, relay-core
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Protocol

from relay.core.store import KeyedAtomicStore


class CacheBackend(Protocol):
    """Protocol for response cache implementations."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if missing or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value; ``ttl_seconds=None`` uses the backend default."""
        ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...


class InMemoryCache:
    """Bounded in-memory cache with TTL support.

    Uses LRU eviction when ``max_size`` is reached.

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=300)
        cache.set("tracking:ACS:1234567890", {"status": "delivered"})
    """

    def __init__(
        self,
        *,
        max_size: int = 1_000,
        default_ttl_seconds: int | None = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._clock = clock

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() > expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (self._clock() + ttl) if ttl else None
        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
        self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class StoreCache:
    """Cache on a ``KeyedAtomicStore`` so all workers share responses."""

    def __init__(self, store: KeyedAtomicStore, *, prefix: str = "relay:cache:", default_ttl_seconds: int = 300):
        self._store = store
        self._prefix = prefix
        self._default_ttl = default_ttl_seconds

    def get(self, key: str) -> Any | None:
        return self._store.get(self._prefix + key)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        self._store.set(self._prefix + key, value, ttl_seconds=ttl_seconds or self._default_ttl)

    def delete(self, key: str) -> None:
        self._store.delete(self._prefix + key)

    def clear(self) -> None:
        for key in self._store.keys(self._prefix):
            self._store.delete(key)


__all__ = ["CacheBackend", "InMemoryCache", "StoreCache"]
