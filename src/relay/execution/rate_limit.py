"""Rate Limiting — per-destination token buckets on a shared store.

Manifesto:
The logistics API and each courier enforce their own request budgets.
Exceeding them earns 429s and, if repeated, a temporary ban.  The relay
throttles outgoing calls *before* hitting the limit, and when the server
does push back with ``Retry-After`` it honours the window exactly.

ARCHITECTURE
────────────
::

    TokenBucketLimiter
      ├── bucket state   relay:rate_limit:<resource>
      │                  {"tokens": float, "last_refill": epoch}
      ├── violations     relay:rate_limit_violations:<resource>
      └── alert log      relay:rate_limit_alerts

    All state lives in a KeyedAtomicStore; every read-refill-write is a
    compare-and-swap retried on conflict, so concurrent workers never both
    spend the last token.

ALGORITHM
─────────
- Capacity per resource (requests/minute budget), refill 1 token/second.
- ``elapsed = now - last_refill``; if positive add
  ``min(elapsed, capacity - tokens)`` and move ``last_refill`` to now.
- Enough tokens → subtract, allow.  Otherwise deny with
  ``wait_seconds = ceil(required - tokens)`` plus whatever remains of a
  server-imposed Retry-After window.
- Idle buckets expire after 120s and start full again.

BEST PRACTICES
──────────────
- Call ``check()`` immediately before each outbound request.
- Use ``wait_for()`` only for short waits; the scheduler handles long ones.
- Combine with ``CircuitBreaker`` for full resilience.

Related modules:
    circuit_breaker.py — fail-fast on sustained failures
    retry.py           — backoff on transient failures

Example::

    limiter = TokenBucketLimiter(InMemoryAtomicStore())
    result = limiter.check("acs")
    if not result.allowed:
        raise RateLimitedError(wait_seconds=result.wait_seconds)

Tags:
    relay-core, execution, rate-limit, throttle, token-bucket
"""

import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from relay.alerts import Alert, AlertRegistry, AlertSeverity
from relay.core.errors import ConfigError
from relay.core.logging import get_logger
from relay.core.settings import DEFAULT_RATE_LIMITS
from relay.core.store import KeyedAtomicStore, update_with_retry

logger = get_logger(__name__)

BUCKET_PREFIX = "relay:rate_limit:"
VIOLATION_PREFIX = "relay:rate_limit_violations:"
ALERTED_PREFIX = "relay:rate_limit_alerted:"
ALERT_LOG_KEY = "relay:rate_limit_alerts"

BUCKET_TTL = 120
REFILL_RATE = 1.0
DEFAULT_CAPACITY = 30

VIOLATION_WINDOW = 300
VIOLATION_THRESHOLD = 5
VIOLATIONS_KEPT = 10
VIOLATION_TTL = 3600
ALERT_DEDUP_SECONDS = 900
ALERT_LOG_SIZE = 100


@dataclass(frozen=True)
class BucketCheck:
    """Result of a bucket check. Truthy when the request may proceed."""

    allowed: bool
    wait_seconds: int
    tokens_available: int

    def __bool__(self) -> bool:
        return self.allowed


class TokenBucketLimiter:
    """Per-resource token bucket limiter backed by a ``KeyedAtomicStore``.

    Args:
        store: Shared key/value store
        rate_limits: Capacity per resource; unknown resources get ``default_capacity``
        default_capacity: Capacity for resources without an explicit limit
        alerts: Registry receiving the repeated-violation alert
        clock: Seconds-since-epoch source
        sleep: Sleep function used by ``wait_for``
    """

    def __init__(
        self,
        store: KeyedAtomicStore,
        *,
        rate_limits: Mapping[str, int] | None = None,
        default_capacity: int = DEFAULT_CAPACITY,
        alerts: AlertRegistry | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._limits: dict[str, int] = dict(DEFAULT_RATE_LIMITS)
        if rate_limits:
            self._limits.update({k.lower(): int(v) for k, v in rate_limits.items()})
        self._default_capacity = default_capacity
        self._alerts = alerts
        self._clock = clock
        self._sleep = sleep

    # ── Configuration ────────────────────────────────────────────

    def get_capacity(self, resource: str) -> int:
        return self._limits.get(resource.lower(), self._default_capacity)

    def set_rate_limit(self, resource: str, requests_per_minute: int) -> None:
        """Override a resource's capacity and start it with a full bucket."""
        if requests_per_minute < 1:
            raise ConfigError(f"Rate limit for {resource!r} must be at least 1, got {requests_per_minute}")
        self._limits[resource.lower()] = int(requests_per_minute)
        self.reset_bucket(resource)
        logger.info("rate_limit.updated", resource=resource, capacity=requests_per_minute)

    # ── Core operations ──────────────────────────────────────────

    def _refilled(self, state: dict[str, Any] | None, capacity: int, now: float) -> tuple[float, float]:
        if state is None:
            return float(capacity), now
        tokens = min(float(state["tokens"]), float(capacity))
        last_refill = float(state["last_refill"])
        elapsed = now - last_refill
        if elapsed > 0:
            tokens += min(elapsed * REFILL_RATE, capacity - tokens)
            last_refill = now
        return max(tokens, 0.0), last_refill

    @staticmethod
    def _ttl(last_refill: float, now: float) -> int:
        if last_refill > now:
            return math.ceil(last_refill - now) + 60
        return BUCKET_TTL

    def check(self, resource: str, tokens_required: int = 1) -> BucketCheck:
        """Take ``tokens_required`` tokens if available.

        Returns:
            BucketCheck with ``allowed``, the whole seconds to wait when
            denied, and the tokens left after the call.
        """
        capacity = self.get_capacity(resource)
        outcome: dict[str, Any] = {}

        def mutate(current: Any) -> tuple[dict[str, float], int]:
            now = self._clock()
            tokens, last_refill = self._refilled(current, capacity, now)
            if tokens >= tokens_required:
                tokens -= tokens_required
                outcome.update(allowed=True, wait=0)
            else:
                wait = math.ceil(tokens_required - tokens)
                if last_refill > now:
                    wait += math.ceil(last_refill - now)
                outcome.update(allowed=False, wait=wait)
            outcome["tokens"] = tokens
            return {"tokens": tokens, "last_refill": last_refill}, self._ttl(last_refill, now)

        update_with_retry(self._store, BUCKET_PREFIX + resource, mutate)

        result = BucketCheck(
            allowed=outcome["allowed"],
            wait_seconds=outcome["wait"],
            tokens_available=int(math.floor(outcome["tokens"])),
        )
        if not result.allowed:
            logger.info(
                "rate_limit.denied",
                resource=resource,
                wait_seconds=result.wait_seconds,
                tokens_available=result.tokens_available,
            )
            self._record_violation(resource, tokens_required, result.tokens_available)
        return result

    def wait_for(self, resource: str, tokens_required: int = 1, max_wait: int = 10) -> BucketCheck:
        """Check, and if the wait is short, sleep once and check again.

        Never sleeps longer than ``max_wait``; a longer wait is returned to
        the caller to reschedule.
        """
        result = self.check(resource, tokens_required)
        if result.allowed:
            return result
        if 0 < result.wait_seconds <= max_wait:
            logger.debug("rate_limit.waiting", resource=resource, wait_seconds=result.wait_seconds)
            self._sleep(result.wait_seconds)
            return self.check(resource, tokens_required)
        return result

    def handle_retry_after(self, resource: str, seconds: int) -> None:
        """Empty the bucket until the server-mandated window has elapsed."""
        if seconds <= 0:
            return
        now = self._clock()
        self._store.set(
            BUCKET_PREFIX + resource,
            {"tokens": 0.0, "last_refill": now + seconds},
            ttl_seconds=int(seconds) + 60,
        )
        logger.warning("rate_limit.retry_after", resource=resource, retry_after=seconds)

    # ── Violations & alerts ──────────────────────────────────────

    def _record_violation(self, resource: str, requested: int, available: int) -> None:
        now = self._clock()

        def mutate(current: Any) -> tuple[list[dict[str, Any]], int]:
            entries = list(current or [])
            entries.append({"timestamp": now, "requested": requested, "available": available})
            return entries[-VIOLATIONS_KEPT:], VIOLATION_TTL

        violations = update_with_retry(self._store, VIOLATION_PREFIX + resource, mutate)
        recent = [v for v in violations if v["timestamp"] > now - VIOLATION_WINDOW]
        if len(recent) >= VIOLATION_THRESHOLD:
            self._raise_alert(resource, len(recent))

    def _raise_alert(self, resource: str, count: int) -> None:
        now = self._clock()
        if not self._store.compare_and_swap(ALERTED_PREFIX + resource, None, now, ttl_seconds=ALERT_DEDUP_SECONDS):
            return

        message = f"Resource {resource} has exceeded rate limits {count} times in the last 5 minutes"
        entry = {"resource": resource, "violations": count, "message": message, "timestamp": now}

        def mutate(current: Any) -> tuple[list[dict[str, Any]], None]:
            entries = list(current or [])
            entries.append(entry)
            return entries[-ALERT_LOG_SIZE:], None

        update_with_retry(self._store, ALERT_LOG_KEY, mutate)
        logger.warning("rate_limit.violation", resource=resource, violations=count)

        if self._alerts is not None:
            self._alerts.emit(
                Alert(
                    severity=AlertSeverity.WARNING,
                    title="Rate limit violations",
                    message=message,
                    source="rate_limit",
                    resource=resource,
                    metadata={"violations": count},
                )
            )

    def get_alerts(self, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent rate-limit alerts, newest first."""
        entries = self._store.get(ALERT_LOG_KEY) or []
        return list(reversed(entries))[:limit]

    def clear_alerts(self) -> None:
        self._store.delete(ALERT_LOG_KEY)

    # ── Introspection ────────────────────────────────────────────

    def get_bucket_state(self, resource: str) -> dict[str, Any]:
        """Current bucket state with refill applied, without consuming tokens."""
        capacity = self.get_capacity(resource)
        now = self._clock()
        state = self._store.get(BUCKET_PREFIX + resource)
        tokens, last_refill = self._refilled(state, capacity, now)
        return {
            "resource": resource,
            "capacity": capacity,
            "tokens": int(math.floor(tokens)),
            "last_refill": last_refill,
            "blocked_for": max(0, math.ceil(last_refill - now)),
            "tracked": state is not None,
        }

    def get_statistics(self) -> dict[str, dict[str, Any]]:
        """Bucket state for every configured or currently tracked resource."""
        resources = set(self._limits)
        resources.update(key[len(BUCKET_PREFIX):] for key in self._store.keys(BUCKET_PREFIX))
        return {resource: self.get_bucket_state(resource) for resource in sorted(resources)}

    def reset_bucket(self, resource: str) -> None:
        self._store.delete(BUCKET_PREFIX + resource)
        self._store.delete(VIOLATION_PREFIX + resource)

    def reset_all_buckets(self) -> int:
        """Delete every bucket and violation record. Returns buckets removed."""
        keys = self._store.keys(BUCKET_PREFIX)
        for key in keys:
            self._store.delete(key)
        for key in self._store.keys(VIOLATION_PREFIX):
            self._store.delete(key)
        return len(keys)


__all__ = ["BucketCheck", "TokenBucketLimiter", "BUCKET_PREFIX", "BUCKET_TTL"]
