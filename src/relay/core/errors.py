"""
Structured error types for the delivery pipeline.

Every failure that can happen between "order created" and "destination
acknowledged" is expressed as a ``RelayError`` subclass.  Errors carry the
metadata the rest of the pipeline needs to decide what to do next:

- **Category:** what kind of failure (config, circuit, rate limit, ...)
- **Retryable:** whether the scheduler may try again
- **Retry-after:** the wait hint, when the destination gave one
- **Context:** resource, order id, HTTP status and free-form metadata
- **Cause:** the chained underlying exception

Manifesto:
    The delivery client classifies, everyone else reacts.  Generic
    exceptions lose the distinction between "the API is down, try later"
    and "this payload will never be accepted".  That distinction is the
    whole point of the retry design, so it lives in the type.

Architecture:
    ::

        ┌───────────────────────────────────────────────────────────────┐
        │                         RelayError                             │
        │      (category, retryable, retry_after, context, cause)        │
        ├───────────────────────────────────────────────────────────────┤
        │                                                                │
        │  ConfigError            CircuitOpenError     RateLimitedError  │
        │  (never retried)        (retried later)      (wait hint)       │
        │                                                                │
        │  RetryableTransportError  NonRetryableClientError              │
        │  (timeout/DNS/5xx)        (400/401/403/404/422)                │
        │                                                                │
        │  DuplicateError           MaxRetriesExceeded                   │
        │  (409, success no-op)     (terminal, manual action)            │
        └───────────────────────────────────────────────────────────────┘

Examples:
    >>> error = RateLimitedError("Too many requests", wait_seconds=30)
    >>> error.retryable
    True
    >>> error.retry_after
    30

    >>> error = NonRetryableClientError("Validation failed", http_status=422)
    >>> error.retryable
    False

Guardrails:
    ❌ DON'T: Raise RelayError out of DeliveryClient.deliver()
    ✅ DO: Attach it to the returned DeliveryAttempt

    ❌ DON'T: Mark validation failures retryable
    ✅ DO: Let the subclass default decide

Tags:
    error-handling, exception-hierarchy, retry-logic, delivery, relay-core
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and alert routing."""

    CONFIG = "CONFIG"              # Missing credentials, invalid settings
    CIRCUIT = "CIRCUIT"            # Destination temporarily disabled
    RATE_LIMIT = "RATE_LIMIT"      # Local bucket empty or remote 429
    TRANSPORT = "TRANSPORT"        # Timeout, DNS, connection reset, 5xx
    CLIENT = "CLIENT"              # 4xx rejected by destination
    DUPLICATE = "DUPLICATE"        # 409, already accepted
    EXHAUSTED = "EXHAUSTED"        # Max retries reached
    STORAGE = "STORAGE"            # Job store / KV store failures
    INTERNAL = "INTERNAL"          # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only non-None fields are serialized by :meth:`to_dict`.
    """

    resource: str | None = None
    order_id: str | None = None
    job_id: str | None = None
    hook: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in ["resource", "order_id", "job_id", "hook", "url", "http_status"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class RelayError(Exception):
    """Base exception for all delivery pipeline errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.

    Args:
        message: Human-readable description (shown to operators)
        category: Override the subclass default category
        retryable: Override the subclass default retry semantics
        retry_after: Seconds to wait before retrying, if known
        context: Structured metadata
        cause: Underlying exception
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RelayError:
        """Attach context fields (unknown keys go to ``metadata``)."""
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize for logs and alert payloads."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        ctx = self.context.to_dict()
        if ctx:
            result["context"] = ctx
        if self.cause is not None:
            result["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return result

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, retryable={self.retryable})"


class ConfigError(RelayError):
    """Destination credentials or settings are missing. Fatal, never retried."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class CircuitOpenError(RelayError):
    """The circuit for a destination is open; the call was not attempted.

    Retryable: the scheduler tries again after the breaker's window.
    """

    default_category = ErrorCategory.CIRCUIT
    default_retryable = True

    def __init__(
        self,
        message: str = "Circuit breaker is open",
        *,
        open_until: float | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.open_until = open_until


class RateLimitedError(RelayError):
    """Rate limit hit, locally or remotely. Carries the wait hint."""

    default_category = ErrorCategory.RATE_LIMIT
    default_retryable = True

    def __init__(self, message: str = "Rate limit exceeded", *, wait_seconds: int = 0, **kwargs: Any):
        kwargs.setdefault("retry_after", wait_seconds or None)
        super().__init__(message, **kwargs)
        self.wait_seconds = wait_seconds


class RetryableTransportError(RelayError):
    """Timeout, DNS failure, connection reset or 5xx."""

    default_category = ErrorCategory.TRANSPORT
    default_retryable = True


class NonRetryableClientError(RelayError):
    """The destination rejected the request (400/401/403/404/422)."""

    default_category = ErrorCategory.CLIENT
    default_retryable = False

    def __init__(self, message: str, *, http_status: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        if http_status is not None:
            self.context.http_status = http_status

    @property
    def http_status(self) -> int | None:
        return self.context.http_status


class DuplicateError(RelayError):
    """409 from the destination. Treated as success by the pipeline."""

    default_category = ErrorCategory.DUPLICATE
    default_retryable = False


class MaxRetriesExceeded(RelayError):
    """Delivery was attempted ``max_retries`` times. Needs an operator."""

    default_category = ErrorCategory.EXHAUSTED
    default_retryable = False

    def __init__(self, message: str, *, attempts: int = 0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = attempts


class StorageError(RelayError):
    """Job store or key/value store failure."""

    default_category = ErrorCategory.STORAGE
    default_retryable = True


# =============================================================================
# Helpers
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Return the retry semantics of any exception.

    Non-relay exceptions are treated as retryable: an unexpected crash in
    the processing path is a generic transient failure.
    """
    if isinstance(error, RelayError):
        return error.retryable
    return True


def get_retry_after(error: BaseException) -> int | None:
    """Return the wait hint of a relay error, if any."""
    if isinstance(error, RelayError):
        return error.retry_after
    return None


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RelayError",
    "ConfigError",
    "CircuitOpenError",
    "RateLimitedError",
    "RetryableTransportError",
    "NonRetryableClientError",
    "DuplicateError",
    "MaxRetriesExceeded",
    "StorageError",
    "is_retryable",
    "get_retry_after",
]
