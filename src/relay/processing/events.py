"""Order events → delivery jobs.

The order-management system publishes an ``OrderEvent`` whenever an order
is created or changes status.  ``OrderEventAdapter.handle`` decides whether
the event should produce a delivery job and enqueues it; delivery itself
always happens later, in ``RetryScheduler.tick()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from relay.core.locks import LockManager, order_lock_id
from relay.core.logging import get_logger
from relay.core.settings import RelaySettings
from relay.execution.models import Job, JobGroup, JobPriority
from relay.execution.scheduler import RetryScheduler
from relay.processing.orders import OrderProcessor, OrderRepository

logger = get_logger(__name__)


class EventDecision(str, Enum):
    QUEUED = "queued"
    DISABLED = "disabled"
    IGNORED_STATUS = "ignored_status"
    NOT_FOUND = "not_found"
    ALREADY_SENT = "already_sent"
    LOCKED = "locked"
    ALREADY_QUEUED = "already_queued"


@dataclass
class OrderEvent:
    """A status change published by the order subsystem."""

    order_id: Any
    status: str
    previous_status: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class EventOutcome:
    decision: EventDecision
    job: Job | None = None

    @property
    def queued(self) -> bool:
        return self.decision is EventDecision.QUEUED

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.decision.value,
            "queued": self.queued,
            "job_id": self.job.id if self.job else None,
        }


class OrderEventAdapter:
    """Enqueue a delivery job for qualifying order events.

    An event is queued only when auto-send is on, the new status is a
    trigger status, the order is not already sent, the order lock is free
    and no pending/in-progress job exists for the order.
    """

    def __init__(
        self,
        repository: OrderRepository,
        scheduler: RetryScheduler,
        locks: LockManager,
        settings: RelaySettings,
        *,
        hook: str,
    ):
        self._repository = repository
        self._scheduler = scheduler
        self._locks = locks
        self._settings = settings
        self._hook = hook

    def handle(self, event: OrderEvent) -> EventOutcome:
        log = logger.bind(order_id=str(event.order_id), status=event.status)

        if not self._settings.auto_send:
            log.debug("order_event.auto_send_disabled")
            return EventOutcome(EventDecision.DISABLED)

        if event.status.lower() not in {s.lower() for s in self._settings.trigger_statuses}:
            log.debug("order_event.status_ignored")
            return EventOutcome(EventDecision.IGNORED_STATUS)

        order = self._repository.get(event.order_id)
        if order is None:
            log.warning("order_event.order_not_found")
            return EventOutcome(EventDecision.NOT_FOUND)
        if order.is_sent:
            log.debug("order_event.already_sent")
            return EventOutcome(EventDecision.ALREADY_SENT)

        payload = {"order_id": event.order_id}
        lock_id = order_lock_id(event.order_id)
        if not self._locks.acquire(lock_id, ttl_seconds=self._settings.order_lock_ttl):
            log.info("order_event.locked")
            return EventOutcome(EventDecision.LOCKED)

        # A retry may already be waiting after the previous attempt released the lock
        if self._scheduler.has_active(self._hook, payload):
            self._locks.release(lock_id)
            log.info("order_event.already_queued")
            return EventOutcome(EventDecision.ALREADY_QUEUED)

        try:
            job = self._scheduler.enqueue_now(self._hook, payload, JobGroup.IMMEDIATE, JobPriority.NORMAL)
        except Exception:
            self._locks.release(lock_id)
            raise
        log.info("order_event.queued", job_id=job.id)
        return EventOutcome(EventDecision.QUEUED, job)


def send_order_handler(processor: OrderProcessor):
    """Job handler delivering ``payload["order_id"]`` through ``processor``."""

    def handle(payload: dict[str, Any], job: Job) -> None:
        result = processor.process(payload["order_id"], retry_count=job.retry_count)
        logger.info("job.order_processed", job_id=job.id, retry_count=job.retry_count, **result.to_dict())

    return handle


__all__ = ["EventDecision", "OrderEvent", "EventOutcome", "OrderEventAdapter", "send_order_handler"]
