"""Circuit breaker pattern for fault tolerance.

Stops calling a destination that is failing, so a down courier API is not
hammered by every queued retry.  One breaker instance serves all
resources; per-resource state lives in the shared store.

States:
    CLOSED: Normal operation, requests pass through
    OPEN: Failing fast until ``open_until``, then straight back to CLOSED

Trip rules, evaluated in order after each failure (first match wins):
    1. ≥10 errors for the resource in the trailing 300s → open 600s
    2. HTTP 429 or a "rate limit" message                → open 300s
    3. any 5xx (code, or 500/502/503 in the message)     → open 300s

Opening never shortens a window that is already open.

Example:
    >>> breaker = CircuitBreaker(InMemoryAtomicStore())
    >>> if breaker.check("acs"):
    ...     try:
    ...         result = call_courier()
    ...     except httpx.TransportError as e:
    ...         breaker.record_failure("acs", str(e))
    ...         raise
    ... else:
    ...     raise CircuitOpenError("Service unavailable")
"""

import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from relay.core.errors import CircuitOpenError
from relay.core.logging import get_logger
from relay.core.store import KeyedAtomicStore, update_with_retry

T = TypeVar("T")

logger = get_logger(__name__)

CIRCUIT_PREFIX = "relay:circuit:"
ERRORS_PREFIX = "relay:circuit_errors:"

ERROR_WINDOW = 300
ERROR_THRESHOLD = 10
THRESHOLD_OPEN_SECONDS = 600
RATE_LIMIT_OPEN_SECONDS = 300
SERVER_ERROR_OPEN_SECONDS = 300

_RATE_LIMIT_PATTERN = re.compile(r"429|rate limit", re.IGNORECASE)
_SERVER_ERROR_PATTERN = re.compile(r"\b50[023]\b")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"


@dataclass(frozen=True)
class CircuitSnapshot:
    """Point-in-time view of one resource's breaker."""

    resource: str
    state: CircuitState
    open_until: float | None = None
    reason: str | None = None
    recent_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource": self.resource,
            "state": self.state.value,
            "open_until": self.open_until,
            "reason": self.reason,
            "recent_errors": self.recent_errors,
        }


class CircuitBreaker:
    """Per-resource circuit breaker on a ``KeyedAtomicStore``.

    Args:
        store: Shared key/value store
        clock: Seconds-since-epoch source
    """

    def __init__(self, store: KeyedAtomicStore, *, clock: Callable[[], float] = time.time):
        self._store = store
        self._clock = clock

    def check(self, resource: str) -> bool:
        """True when calls to ``resource`` are allowed.

        An expired open state is cleared here.
        """
        key = CIRCUIT_PREFIX + resource
        state = self._store.get(key)
        if state is None:
            return True
        if float(state["open_until"]) > self._clock():
            return False
        self._store.delete(key)
        logger.info("circuit.closed", resource=resource)
        return True

    def guard(self, resource: str) -> None:
        """Raise ``CircuitOpenError`` if the circuit is open."""
        if not self.check(resource):
            snapshot = self.state(resource)
            raise CircuitOpenError(
                f"Circuit breaker is open for {resource}: {snapshot.reason}",
                open_until=snapshot.open_until,
            ).with_context(resource=resource)

    def open(self, resource: str, reason: str, duration: int) -> float:
        """Open the circuit for ``duration`` seconds. Returns ``open_until``."""
        now = self._clock()
        requested = now + duration

        def mutate(current: Any) -> tuple[dict[str, Any], int]:
            if current is not None and float(current["open_until"]) >= requested:
                return current, math.ceil(float(current["open_until"]) - now)
            return {"open_until": requested, "reason": reason}, duration

        state = update_with_retry(self._store, CIRCUIT_PREFIX + resource, mutate)
        logger.warning(
            "circuit.opened",
            resource=resource,
            reason=state["reason"],
            duration=duration,
            open_until=state["open_until"],
        )
        return float(state["open_until"])

    def record_failure(self, resource: str, error_message: str = "", http_code: int | None = None) -> CircuitState:
        """Record a failed call and trip the breaker if a rule matches."""
        now = self._clock()

        def mutate(current: Any) -> tuple[list[float], int]:
            window = [ts for ts in (current or []) if ts > now - ERROR_WINDOW]
            window.append(now)
            return window, ERROR_WINDOW

        errors = update_with_retry(self._store, ERRORS_PREFIX + resource, mutate)
        message = error_message or ""

        if len(errors) >= ERROR_THRESHOLD:
            self.open(resource, f"Error threshold exceeded: {len(errors)} errors in 5 minutes", THRESHOLD_OPEN_SECONDS)
        elif http_code == 429 or _RATE_LIMIT_PATTERN.search(message):
            self.open(resource, "Rate limit detected", RATE_LIMIT_OPEN_SECONDS)
        elif (http_code is not None and 500 <= http_code < 600) or _SERVER_ERROR_PATTERN.search(message):
            self.open(resource, f"Server error detected: {message[:200]}", SERVER_ERROR_OPEN_SECONDS)
        else:
            logger.debug("circuit.failure_recorded", resource=resource, recent_errors=len(errors))
            return CircuitState.CLOSED
        return CircuitState.OPEN

    def reset(self, resource: str) -> None:
        """Close the circuit and forget recorded errors."""
        self._store.delete(CIRCUIT_PREFIX + resource)
        self._store.delete(ERRORS_PREFIX + resource)
        logger.info("circuit.reset", resource=resource)

    def state(self, resource: str) -> CircuitSnapshot:
        now = self._clock()
        errors = [ts for ts in (self._store.get(ERRORS_PREFIX + resource) or []) if ts > now - ERROR_WINDOW]
        current = self._store.get(CIRCUIT_PREFIX + resource)
        if current is None or float(current["open_until"]) <= now:
            return CircuitSnapshot(resource, CircuitState.CLOSED, recent_errors=len(errors))
        return CircuitSnapshot(
            resource,
            CircuitState.OPEN,
            open_until=float(current["open_until"]),
            reason=current.get("reason"),
            recent_errors=len(errors),
        )

    def seconds_until_close(self, resource: str) -> int:
        """Whole seconds left in the open window, 0 when closed."""
        snapshot = self.state(resource)
        if snapshot.open_until is None:
            return 0
        return max(0, math.ceil(snapshot.open_until - self._clock()))

    def tracked_resources(self) -> list[str]:
        """Resources with breaker state or recent errors."""
        names = {k[len(CIRCUIT_PREFIX):] for k in self._store.keys(CIRCUIT_PREFIX)}
        names.update(k[len(ERRORS_PREFIX):] for k in self._store.keys(ERRORS_PREFIX))
        return sorted(names)

    def call(self, resource: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` through the breaker; exceptions count as failures."""
        self.guard(resource)
        try:
            return func(*args, **kwargs)
        except Exception as e:
            self.record_failure(resource, str(e))
            raise


__all__ = ["CircuitState", "CircuitSnapshot", "CircuitBreaker", "CIRCUIT_PREFIX"]
