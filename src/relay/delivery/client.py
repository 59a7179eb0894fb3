"""Delivery client — one signed, rate-limited, breaker-guarded HTTP call.

``deliver()`` is the boundary where every failure is classified.  It never
raises: callers always get a ``DeliveryAttempt`` whose ``retryable`` /
``rate_limited`` / ``duplicate`` flags decide what happens next.

Flow::

    config ─► circuit ─► rate limit ─► method ─► cache(GET) ─► sign ─► HTTP ─► classify
      │          │            │                                               │
      │          │            └─ wait ≤10s locally, else rate_limited        ├─ 2xx  success
      │          └─ open: CircuitOpenError, no network, no token              ├─ 409  duplicate = success
      └─ missing credentials: ConfigError (never retried)                     ├─ 429  Retry-After / 5s + one retry
                                                                              ├─ 408  retryable
                                                                              ├─ 5xx  retryable + breaker
                                                                              ├─ 4xx  non-retryable
                                                                              └─ transport error: retryable + breaker
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from typing import Any

import httpx

from relay.core.cache import CacheBackend, InMemoryCache
from relay.core.errors import (
    CircuitOpenError,
    ConfigError,
    NonRetryableClientError,
    RateLimitedError,
    RelayError,
    RetryableTransportError,
)
from relay.core.hashing import compute_cache_key, serialize_payload, sign_payload
from relay.core.logging import get_logger
from relay.core.settings import RelaySettings
from relay.execution.circuit_breaker import CircuitBreaker
from relay.execution.models import DeliveryAttempt
from relay.execution.rate_limit import TokenBucketLimiter

logger = get_logger(__name__)

AttemptObserver = Callable[[DeliveryAttempt], None]

RETRYABLE_CODES = frozenset({408, 429})
NON_RETRYABLE_CODES = frozenset({400, 401, 403, 404, 409, 422})
RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection_error",
    "connection error",
    "server_error",
    "rate_limited",
    "dns",
    "name resolution",
    "connection reset",
    "connection refused",
    "network unreachable",
)


def is_retryable(attempt: DeliveryAttempt) -> bool:
    """Retry decision by status code, falling back to message patterns."""
    code = attempt.http_code or 0
    if code in RETRYABLE_CODES or code >= 500:
        return True
    if code in NON_RETRYABLE_CODES:
        return False
    message = (attempt.message or "").lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


def _parse_retry_after(value: str | None) -> int:
    if not value:
        return 0
    try:
        return max(0, int(float(value.strip())))
    except ValueError:
        return 0


def _body_json(response: httpx.Response) -> dict[str, Any] | None:
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else {"data": data}


def _error_message(response: httpx.Response, data: dict[str, Any] | None) -> str:
    code = response.status_code
    if data:
        if code >= 500:
            for key in ("error", "message"):
                if data.get(key):
                    return str(data[key])
            if data.get("errors"):
                errors = data["errors"]
                if isinstance(errors, (dict, list)):
                    return "Server Error: " + json.dumps(errors, ensure_ascii=False)
                return str(errors)
        else:
            for key in ("message", "error"):
                if data.get(key):
                    return str(data[key])
    elif code >= 500 and response.text:
        text = re.sub(r"<[^>]+>", "", response.text)
        return f"HTTP Error: {code} - {text[:200]}"
    return f"HTTP Error: {code}"


class DeliveryClient:
    """Sends payloads to the configured destination.

    Args:
        settings: Destination credentials and delivery policy
        limiter: Token-bucket limiter (per resource)
        breaker: Circuit breaker (per resource)
        cache: Response cache for GET reads
        transport: httpx transport (``httpx.MockTransport`` in tests)
        sleep: Sleep function for the 429 fallback wait
        observers: Callbacks receiving every attempt
    """

    def __init__(
        self,
        settings: RelaySettings,
        limiter: TokenBucketLimiter,
        breaker: CircuitBreaker,
        *,
        cache: CacheBackend | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        observers: list[AttemptObserver] | None = None,
    ):
        self._settings = settings
        self._limiter = limiter
        self._breaker = breaker
        self._cache = cache if cache is not None else InMemoryCache(default_ttl_seconds=settings.response_cache_ttl)
        self._transport = transport
        self._sleep = sleep
        self._observers: list[AttemptObserver] = list(observers or [])

    def on_attempt(self, observer: AttemptObserver) -> None:
        self._observers.append(observer)

    # ── Public API ───────────────────────────────────────────────

    def deliver(
        self,
        payload: dict[str, Any],
        resource: str = "dmm",
        use_cache: bool = True,
        method: str | None = None,
    ) -> DeliveryAttempt:
        """Send ``payload`` to the destination. Never raises."""
        started = time.perf_counter()
        try:
            attempt = self._deliver(payload, resource, use_cache, method)
        except Exception as e:
            logger.exception("delivery.unexpected_error", resource=resource)
            attempt = DeliveryAttempt.from_error(
                RetryableTransportError(f"Unexpected delivery error: {e}", cause=e)
            )
        attempt.resource = resource
        attempt.elapsed_ms = (time.perf_counter() - started) * 1000
        self._observe(attempt, payload)
        return attempt

    def track(self, courier: str, voucher: str, use_cache: bool = True) -> DeliveryAttempt:
        """Read a voucher's tracking status (GET, cacheable) under the courier's limits."""
        return self.deliver(
            {"courier": courier, "voucher_number": voucher},
            resource=courier,
            use_cache=use_cache,
            method="GET",
        )

    # ── Steps ────────────────────────────────────────────────────

    def _deliver(
        self,
        payload: dict[str, Any],
        resource: str,
        use_cache: bool,
        method: str | None,
    ) -> DeliveryAttempt:
        settings = self._settings

        # 1. destination config
        if not settings.destination_configured:
            return DeliveryAttempt.from_error(ConfigError("API configuration is incomplete."))

        # 2. circuit breaker
        if not self._breaker.check(resource):
            snapshot = self._breaker.state(resource)
            error = CircuitOpenError(
                "API calls are temporarily disabled due to high error rate.",
                open_until=snapshot.open_until,
                retry_after=self._breaker.seconds_until_close(resource),
            ).with_context(resource=resource, reason=snapshot.reason)
            return DeliveryAttempt.from_error(error, circuit_open=True)

        # 3. rate limit
        bucket = self._limiter.wait_for(resource, max_wait=settings.max_local_wait)
        if not bucket.allowed:
            return self._rate_limited(bucket.wait_seconds)

        # 4. method
        if method is None:
            method = "PUT" if payload.get("sync_update") else "POST"
        method = method.upper()

        # 5. cache (reads only)
        cache_key = None
        if method == "GET" and use_cache:
            cache_key = compute_cache_key(settings.api_endpoint, payload, resource)
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("delivery.cache_hit", resource=resource)
                return DeliveryAttempt.ok(
                    cached.get("http_code"),
                    cached.get("data"),
                    message=cached.get("message", "Request successful"),
                    cached=True,
                    method=method,
                )

        # 6-7. sign and send
        request = self._build_request(method, payload)
        try:
            response = self._send(request)
        except httpx.HTTPError as e:
            return self._transport_failure(resource, method, e)

        # 8. classify
        attempt = self._classify(resource, request, response)
        attempt.method = method
        if attempt.success and cache_key is not None and not attempt.duplicate:
            self._cache.set(
                cache_key,
                {"http_code": attempt.http_code, "data": attempt.data, "message": attempt.message},
                ttl_seconds=settings.response_cache_ttl,
            )
        return attempt

    def _build_request(self, method: str, payload: dict[str, Any]) -> httpx.Request:
        settings = self._settings
        headers = {
            "Content-Type": "application/json",
            "X-Api-Key": settings.api_key,
            "X-Tenant-Id": settings.tenant_id,
            "User-Agent": settings.user_agent,
        }
        if payload.get("idempotency_key"):
            headers["X-Idempotency-Key"] = str(payload["idempotency_key"])

        if method == "GET":
            params = {k: str(v) for k, v in payload.items() if v is not None}
            return httpx.Request(method, settings.api_endpoint, params=params, headers=headers)

        body = serialize_payload(payload)
        signature = sign_payload(body, settings.api_secret)
        if signature:
            headers["X-Payload-Signature"] = signature
        return httpx.Request(method, settings.api_endpoint, content=body, headers=headers)

    def _send(self, request: httpx.Request) -> httpx.Response:
        with httpx.Client(timeout=self._settings.request_timeout, transport=self._transport) as client:
            return client.send(request)

    # ── Classification ───────────────────────────────────────────

    def _rate_limited(self, wait_seconds: int, http_code: int | None = None) -> DeliveryAttempt:
        error = RateLimitedError(
            f"Rate limit exceeded. Please wait {wait_seconds} seconds before retrying.",
            wait_seconds=wait_seconds,
        )
        return DeliveryAttempt.from_error(error, http_code=http_code, rate_limited=True)

    def _transport_failure(self, resource: str, method: str, exc: httpx.HTTPError) -> DeliveryAttempt:
        message = str(exc) or type(exc).__name__
        if isinstance(exc, httpx.TimeoutException):
            message = f"Request timeout: {message}"
        self._breaker.record_failure(resource, message)
        error = RetryableTransportError(message, cause=exc).with_context(resource=resource)
        return DeliveryAttempt.from_error(error, method=method)

    def _classify(self, resource: str, request: httpx.Request, response: httpx.Response) -> DeliveryAttempt:
        code = response.status_code
        data = _body_json(response)

        if code == 429:
            return self._handle_429(resource, request, response)

        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after:
            logger.info("delivery.retry_after_hint", resource=resource, retry_after=retry_after, status=code)

        if 200 <= code < 300:
            message = (data or {}).get("message") or "Order sent successfully."
            return DeliveryAttempt.ok(code, data, message=str(message))

        if code == 409:
            logger.info("delivery.duplicate", resource=resource)
            message = (data or {}).get("message") or "Duplicate request; existing resource returned."
            return DeliveryAttempt.ok(code, data, message=str(message), duplicate=True)

        message = _error_message(response, data)

        if code >= 500:
            self._breaker.record_failure(resource, message, http_code=code)
            logger.error("delivery.server_error", resource=resource, status=code, error=message)
            error: RelayError = RetryableTransportError(message).with_context(resource=resource, http_status=code)
            return DeliveryAttempt.from_error(error, http_code=code, data=data)

        if code == 408:
            error = RetryableTransportError(message).with_context(resource=resource, http_status=code)
            return DeliveryAttempt.from_error(error, http_code=code, data=data)

        error = NonRetryableClientError(message, http_status=code).with_context(resource=resource)
        return DeliveryAttempt.from_error(error, http_code=code, data=data)

    def _handle_429(self, resource: str, request: httpx.Request, response: httpx.Response) -> DeliveryAttempt:
        self._breaker.record_failure(resource, "Rate limit (HTTP 429)", http_code=429)
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after > 0:
            self._limiter.handle_retry_after(resource, retry_after)
            attempt = self._rate_limited(retry_after, http_code=429)
            attempt.message = f"Rate limited. Please retry after {retry_after} seconds."
            return attempt

        fallback = self._settings.rate_limit_fallback_wait
        logger.info("delivery.rate_limited_fallback", resource=resource, wait=fallback)
        self._sleep(fallback)

        bucket = self._limiter.check(resource)
        if not bucket.allowed and bucket.wait_seconds > 0:
            return self._rate_limited(bucket.wait_seconds, http_code=429)

        try:
            retry = self._send(request)
        except httpx.HTTPError as e:
            return self._transport_failure(resource, request.method, e)

        data = _body_json(retry)
        if 200 <= retry.status_code < 300:
            message = (data or {}).get("message") or "Order sent successfully (after retry)."
            return DeliveryAttempt.ok(retry.status_code, data, message=str(message))
        if retry.status_code != 429:
            return self._classify(resource, request, retry)

        attempt = self._rate_limited(fallback, http_code=429)
        attempt.message = (data or {}).get("message") or "HTTP Error: 429 (after retry)"
        attempt.data = data
        return attempt

    # ── Observability ────────────────────────────────────────────

    def _observe(self, attempt: DeliveryAttempt, payload: dict[str, Any]) -> None:
        order = payload.get("order") if isinstance(payload.get("order"), dict) else {}
        logger.info(
            "delivery.attempt",
            resource=attempt.resource,
            method=attempt.method or None,
            status=attempt.http_code,
            success=attempt.success,
            retryable=attempt.retryable,
            rate_limited=attempt.rate_limited,
            circuit_open=attempt.circuit_open,
            cached=attempt.cached,
            elapsed_ms=round(attempt.elapsed_ms, 1),
            external_order_id=order.get("external_order_id"),
            message=attempt.message,
        )
        for observer in self._observers:
            try:
                observer(attempt)
            except Exception:
                logger.exception("delivery.observer_failed")


__all__ = ["DeliveryClient", "is_retryable", "AttemptObserver"]
