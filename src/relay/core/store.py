"""
Keyed atomic store for shared limiter and breaker state.

Provides the ``KeyedAtomicStore`` protocol with in-memory and Redis
implementations.  Token buckets, circuit breaker windows, violation
counters and alert throttles all live here, keyed by resource.

Manifesto:
    Rate-limit state that is read, modified and written back without an
    atomic primitive over-admits under concurrency: two workers both see one
    token and both spend it.  Every mutation therefore goes through
    ``compare_and_swap``; callers loop on conflict.  Values expire through
    TTL so an idle resource starts fresh.

Architecture:
    ::

        KeyedAtomicStore (Protocol)
        ├── InMemoryAtomicStore  — single process, threading.Lock
        └── RedisAtomicStore     — shared, WATCH/MULTI/EXEC

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             compare_and_swap(key, expected, new, ttl_seconds=None) → bool
             delete(key)
             keys(prefix) → list[str]

Examples:
    >>> store = InMemoryAtomicStore()
    >>> store.compare_and_swap("relay:rate_limit:dmm", None, {"tokens": 59.0})
    True
    >>> store.compare_and_swap("relay:rate_limit:dmm", None, {"tokens": 58.0})
    False

Guardrails:
    ❌ DON'T: get() then set() for read-modify-write
    ✅ DO: get() then compare_and_swap(), retry on False

    ❌ DON'T: Store without TTL for per-resource counters
    ✅ DO: Let idle state expire

Tags:
    kv-store, compare-and-swap, redis, ttl, concurrency, relay-core
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class KeyedAtomicStore(Protocol):
    """Protocol for shared key/value state with TTL and CAS."""

    def get(self, key: str) -> Any | None:
        """Return the value for ``key`` or ``None`` if missing/expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Unconditionally store ``value``."""
        ...

    def compare_and_swap(
        self,
        key: str,
        expected: Any | None,
        new: Any,
        *,
        ttl_seconds: int | None = None,
    ) -> bool:
        """Store ``new`` only if the current value equals ``expected``.

        ``expected=None`` means "key must be absent".  Returns ``True`` when
        the swap happened.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if missing."""
        ...

    def keys(self, prefix: str) -> list[str]:
        """List live keys starting with ``prefix``."""
        ...


# ------------------------------------------------------------------ #
# In-memory store
# ------------------------------------------------------------------ #


class InMemoryAtomicStore:
    """Process-local store with TTL.

    Values are kept as JSON text so callers never share mutable state with
    the store and CAS compares by value, the same semantics as Redis.

    Args:
        clock: Seconds-since-epoch source, injectable for tests.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time):
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return raw

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        return self._clock() + ttl_seconds if ttl_seconds else None

    def get(self, key: str) -> Any | None:
        with self._lock:
            raw = self._live(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._data[key] = (json.dumps(value, sort_keys=True), self._expiry(ttl_seconds))

    def compare_and_swap(
        self,
        key: str,
        expected: Any | None,
        new: Any,
        *,
        ttl_seconds: int | None = None,
    ) -> bool:
        expected_raw = None if expected is None else json.dumps(expected, sort_keys=True)
        with self._lock:
            if self._live(key) != expected_raw:
                return False
            self._data[key] = (json.dumps(new, sort_keys=True), self._expiry(ttl_seconds))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self, prefix: str) -> list[str]:
        with self._lock:
            return [k for k in list(self._data) if k.startswith(prefix) and self._live(k) is not None]

    def clear(self) -> None:
        """Remove everything (tests only)."""
        with self._lock:
            self._data.clear()


# ------------------------------------------------------------------ #
# Redis store
# ------------------------------------------------------------------ #


class RedisAtomicStore:
    """Redis-backed store shared by all workers.

    Requires the ``redis`` package (``pip install relay-core[redis]``).
    ``compare_and_swap`` uses optimistic locking: WATCH the key, compare,
    then MULTI/SET/EXEC; a concurrent write aborts the transaction and the
    method returns ``False``.

    Args:
        url: Redis connection URL.
        client: Pre-built client (takes precedence over ``url``).
    """

    def __init__(self, url: str = "redis://localhost:6379/0", *, client: Any = None):
        if client is None:
            try:
                import redis
            except ImportError as exc:
                raise ImportError(
                    "Redis store requires the 'redis' package. "
                    "Install with: pip install relay-core[redis]"
                ) from exc
            client = redis.from_url(url, decode_responses=True)
        self._client = client

    def get(self, key: str) -> Any | None:
        raw = self._client.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        serialized = json.dumps(value, sort_keys=True)
        if ttl_seconds:
            self._client.setex(key, int(ttl_seconds), serialized)
        else:
            self._client.set(key, serialized)

    def compare_and_swap(
        self,
        key: str,
        expected: Any | None,
        new: Any,
        *,
        ttl_seconds: int | None = None,
    ) -> bool:
        from redis.exceptions import WatchError

        expected_raw = None if expected is None else json.dumps(expected, sort_keys=True)
        serialized = json.dumps(new, sort_keys=True)
        with self._client.pipeline() as pipe:
            try:
                pipe.watch(key)
                current = pipe.get(key)
                if isinstance(current, bytes):
                    current = current.decode()
                if current is not None and expected_raw is not None:
                    # Compare by value: another writer may have used a different key order.
                    if json.loads(current) != json.loads(expected_raw):
                        pipe.unwatch()
                        return False
                elif current != expected_raw:
                    pipe.unwatch()
                    return False
                pipe.multi()
                if ttl_seconds:
                    pipe.setex(key, int(ttl_seconds), serialized)
                else:
                    pipe.set(key, serialized)
                pipe.execute()
                return True
            except WatchError:
                return False

    def delete(self, key: str) -> None:
        self._client.delete(key)

    def keys(self, prefix: str) -> list[str]:
        found = []
        for key in self._client.scan_iter(match=f"{prefix}*"):
            found.append(key.decode() if isinstance(key, bytes) else key)
        return found


def update_with_retry(
    store: KeyedAtomicStore,
    key: str,
    mutate: Callable[[Any | None], tuple[Any, int | None]],
    *,
    attempts: int = 8,
) -> Any:
    """Run a read-modify-write loop on ``key`` until the CAS succeeds.

    ``mutate`` receives the current value and returns ``(new_value, ttl)``.
    Returns the value that was written.

    Raises:
        StorageError: If every attempt lost the race.
    """
    from relay.core.errors import StorageError

    for _ in range(attempts):
        current = store.get(key)
        new_value, ttl = mutate(current)
        if store.compare_and_swap(key, current, new_value, ttl_seconds=ttl):
            return new_value
    raise StorageError(f"Could not update {key!r} after {attempts} attempts")


__all__ = [
    "KeyedAtomicStore",
    "InMemoryAtomicStore",
    "RedisAtomicStore",
    "update_with_retry",
]
