"""Execution domain models.

Defines the core data structures for the delivery pipeline:
- Job: a unit of queued work (send order 42, retry order 42, ...)
- DeliveryAttempt: the uniform outcome of one outbound call

These models are used by JobStore, RetryScheduler, DeliveryClient and
OrderProcessor.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, IntEnum
from typing import Any

from relay.core.errors import RelayError


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class InvalidTransitionError(ValueError):
    """Raised when an illegal job state transition is attempted."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid JobStatus transition: {current} → {target}")


class JobStatus(str, Enum):
    """Status of a queued job.

    Valid transition graph::

        PENDING     → IN_PROGRESS | CANCELED
        IN_PROGRESS → COMPLETE | FAILED
        COMPLETE    → (terminal)
        FAILED      → (terminal; a retry is a new job)
        CANCELED    → (terminal)
    """

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETE, JobStatus.FAILED, JobStatus.CANCELED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.IN_PROGRESS})

JOB_VALID_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.IN_PROGRESS, JobStatus.CANCELED}),
    JobStatus.IN_PROGRESS: frozenset({JobStatus.COMPLETE, JobStatus.FAILED}),
    JobStatus.COMPLETE: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELED: frozenset(),
}


def validate_job_transition(current: JobStatus, target: JobStatus) -> None:
    """Raise :class:`InvalidTransitionError` if *current → target* is illegal."""
    if target not in JOB_VALID_TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(current.value, target.value)


class JobGroup(str, Enum):
    """Queue groups. Retries live in their own group so fresh work isn't starved."""

    IMMEDIATE = "relay_immediate"
    SCHEDULED = "relay_scheduled"
    RETRY = "relay_retry"


class JobPriority(IntEnum):
    """Lower number runs first."""

    HIGH = 10
    NORMAL = 20
    LOW = 30


@dataclass
class Job:
    """A queued unit of work.

    ``hook`` names the registered handler; ``payload`` is its JSON argument
    (for order delivery ``{"order_id": 42}``).
    """

    hook: str
    payload: dict[str, Any] = field(default_factory=dict)
    group: JobGroup = JobGroup.IMMEDIATE
    priority: int = JobPriority.NORMAL
    retry_count: int = 0
    not_before: datetime = field(default_factory=utcnow)
    queued_at: datetime = field(default_factory=utcnow)
    status: JobStatus = JobStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime | None = None
    finished_at: datetime | None = None
    last_error: str | None = None

    def is_stuck(self, now: datetime, stuck_after_seconds: int) -> bool:
        """In progress for longer than the threshold (the worker likely died)."""
        if self.status != JobStatus.IN_PROGRESS or self.started_at is None:
            return False
        return (now - self.started_at).total_seconds() > stuck_after_seconds

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "hook": self.hook,
            "payload": self.payload,
            "group": self.group.value,
            "priority": int(self.priority),
            "retry_count": self.retry_count,
            "status": self.status.value,
            "not_before": self.not_before.isoformat(),
            "queued_at": self.queued_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "last_error": self.last_error,
        }


@dataclass
class DeliveryAttempt:
    """Outcome of one ``DeliveryClient.deliver()`` call.

    Never raised; the processor branches on ``success`` / ``retryable`` /
    ``rate_limited``.  ``error`` carries the classified exception for
    failures.
    """

    success: bool
    http_code: int | None = None
    message: str = ""
    retryable: bool = False
    rate_limited: bool = False
    wait_seconds: int = 0
    data: dict[str, Any] | None = None
    duplicate: bool = False
    circuit_open: bool = False
    cached: bool = False
    error: RelayError | None = None
    resource: str = ""
    method: str = ""
    elapsed_ms: float = 0.0

    @classmethod
    def ok(cls, http_code: int | None, data: dict[str, Any] | None = None, **kwargs: Any) -> "DeliveryAttempt":
        kwargs.setdefault("message", "Request successful")
        return cls(success=True, http_code=http_code, data=data, **kwargs)

    @classmethod
    def from_error(cls, error: RelayError, *, http_code: int | None = None, **kwargs: Any) -> "DeliveryAttempt":
        """Build a failed attempt carrying the error's retry semantics."""
        return cls(
            success=False,
            http_code=http_code,
            message=error.message,
            retryable=error.retryable,
            wait_seconds=error.retry_after or 0,
            error=error,
            **kwargs,
        )

    @property
    def remote_order_id(self) -> str | None:
        if not self.data:
            return None
        value = self.data.get("order_id") or self.data.get("id")
        return None if value is None else str(value)

    @property
    def remote_shipment_id(self) -> str | None:
        if not self.data:
            return None
        value = self.data.get("shipment_id")
        return None if value is None else str(value)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "http_code": self.http_code,
            "message": self.message,
            "retryable": self.retryable,
            "rate_limited": self.rate_limited,
            "wait_seconds": self.wait_seconds,
            "duplicate": self.duplicate,
            "circuit_open": self.circuit_open,
            "resource": self.resource,
            "elapsed_ms": round(self.elapsed_ms, 1),
        }
        if self.error is not None:
            result["error"] = self.error.to_dict()
        return result


__all__ = [
    "utcnow",
    "InvalidTransitionError",
    "JobStatus",
    "TERMINAL_STATUSES",
    "ACTIVE_STATUSES",
    "validate_job_transition",
    "JobGroup",
    "JobPriority",
    "Job",
    "DeliveryAttempt",
]
