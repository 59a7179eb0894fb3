"""Order processor — turns one order into one delivery attempt.

Manifesto:
    The processor is the only place where delivery outcomes become order
    state.  It never raises: whatever happens, the order ends up sent,
    requeued on the retry backoff, or permanently failed with an operator
    alert, and the order's advisory lock is released.

Flow::

    process(order_id)
      ├── sent == "yes"               → no-op
      ├── retry_count ≥ max_retries   → mark_permanently_failed + CRITICAL alert
      ├── build payload + idempotency key, route through courier provider
      ├── deliver()
      │     ├── success / 409         → mark_sent
      │     ├── retryable failure     → mark_failed_attempt + schedule_retry
      │     └── non-retryable failure → mark_failed_attempt
      └── release order lock

Tags:
    relay-core, orders, idempotency, retry, processor
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from relay.alerts import AlertRegistry, AlertSeverity
from relay.core.errors import MaxRetriesExceeded
from relay.core.hashing import compute_idempotency_key
from relay.core.locks import LockManager, order_lock_id
from relay.core.logging import LogContext, get_logger
from relay.core.settings import RelaySettings
from relay.delivery.client import DeliveryClient
from relay.delivery.couriers import CourierProvider, CourierRegistry
from relay.delivery.payload import Order
from relay.execution.models import DeliveryAttempt
from relay.execution.scheduler import RetryScheduler

logger = get_logger(__name__)

SEND_ORDER_HOOK = "relay_send_order"
DESTINATION = "dmm"


class OrderRepository(Protocol):
    """Access to orders owned by the order-management system."""

    def get(self, order_id: Any) -> Order | None: ...

    def mark_sent(self, order_id: Any, remote_order_id: str | None, remote_shipment_id: str | None) -> None: ...

    def mark_failed_attempt(self, order_id: Any, retry_count: int, last_error: str) -> None: ...

    def mark_permanently_failed(self, order_id: Any, reason: str) -> None: ...


@dataclass
class ProcessResult:
    """Outcome of ``OrderProcessor.process``."""

    success: bool
    message: str = ""
    rate_limited: bool = False
    wait_seconds: int = 0
    terminal: bool = False
    order_id: str | None = None
    retry_job_id: str | None = None
    attempt: DeliveryAttempt | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "rate_limited": self.rate_limited,
            "wait_seconds": self.wait_seconds,
            "terminal": self.terminal,
            "order_id": self.order_id,
            "retry_job_id": self.retry_job_id,
        }


class OrderProcessor:
    """Delivers orders and records the outcome.

    Args:
        repository: Order access
        client: Delivery client
        scheduler: Scheduler used for retries
        locks: Advisory lock manager holding ``order:<id>``
        couriers: Courier provider registry
        settings: Relay settings (secret, origin id, max retries)
        alerts: Alert registry for exhausted orders
        hook: Hook name retries are queued under
    """

    def __init__(
        self,
        repository: OrderRepository,
        client: DeliveryClient,
        scheduler: RetryScheduler,
        locks: LockManager,
        settings: RelaySettings,
        *,
        couriers: CourierRegistry | None = None,
        alerts: AlertRegistry | None = None,
        hook: str = SEND_ORDER_HOOK,
    ):
        self._repository = repository
        self._client = client
        self._scheduler = scheduler
        self._locks = locks
        self._settings = settings
        self._couriers = couriers or CourierRegistry.default()
        self._alerts = alerts
        self._hook = hook

    @property
    def hook(self) -> str:
        return self._hook

    def process(self, order_or_id: Order | Any, *, retry_count: int | None = None) -> ProcessResult:
        """Deliver one order. Never raises.

        ``retry_count`` is the attempt count carried by the job. It only
        drives the failure path when the order itself cannot be read.
        """
        order_id = order_or_id.order_id if isinstance(order_or_id, Order) else order_or_id
        order: Order | None = order_or_id if isinstance(order_or_id, Order) else None

        with LogContext(order_id=str(order_id)):
            try:
                if order is None:
                    order = self._repository.get(order_id)
                if order is None:
                    logger.warning("order.not_found")
                    self._release(order_id)
                    return ProcessResult(False, "Order not found", terminal=True, order_id=str(order_id))
                return self._process(order)
            except Exception as e:
                logger.exception("order.processing_error", error=str(e))
                known = order.retry_count if order is not None else retry_count
                return self._on_failure(order_id, known, f"Processing error: {e}", retryable=True)

    # ── Steps ────────────────────────────────────────────────────

    def _process(self, order: Order) -> ProcessResult:
        order_id = order.order_id

        if order.is_sent:
            logger.debug("order.already_sent")
            self._release(order_id)
            return ProcessResult(True, "Order already sent", terminal=True, order_id=str(order_id))

        if order.is_permanently_failed:
            logger.debug("order.already_failed")
            self._release(order_id)
            return ProcessResult(False, order.last_error or "Order permanently failed", terminal=True, order_id=str(order_id))

        max_retries = self._settings.max_retries
        if order.retry_count >= max_retries:
            return self._exhausted(order, max_retries)

        provider = self._couriers.for_order(order)
        payload = self._build_payload(order, provider)
        attempt = self._client.deliver(payload, resource=DESTINATION)

        if attempt.success:
            remote = provider.parse_response(attempt.data)
            self._repository.mark_sent(order_id, remote["order_id"], remote["shipment_id"])
            logger.info(
                "order.sent",
                courier=provider.id,
                remote_order_id=remote["order_id"],
                remote_shipment_id=remote["shipment_id"],
                duplicate=attempt.duplicate,
            )
            self._release(order_id)
            return ProcessResult(True, attempt.message, terminal=True, order_id=str(order_id), attempt=attempt)

        result = self._on_failure(
            order_id,
            order.retry_count,
            attempt.message,
            retryable=attempt.retryable,
            wait_seconds=attempt.wait_seconds,
        )
        result.rate_limited = attempt.rate_limited
        result.attempt = attempt
        return result

    def _build_payload(self, order: Order, provider: CourierProvider) -> dict[str, Any]:
        payload = provider.build_request(order)
        payload["idempotency_key"] = compute_idempotency_key(
            self._settings.api_secret,
            self._settings.origin_id,
            order.order_id,
            order.created_at,
        )
        return payload

    def _on_failure(
        self,
        order_id: Any,
        retry_count: int | None,
        message: str,
        *,
        retryable: bool,
        wait_seconds: int = 0,
    ) -> ProcessResult:
        new_count = (retry_count or 0) + 1
        result = ProcessResult(False, message, wait_seconds=wait_seconds, order_id=str(order_id))
        try:
            # Unknown count: leave the stored counter alone
            if retry_count is not None:
                self._repository.mark_failed_attempt(order_id, new_count, message)
            if retryable:
                job = self._scheduler.schedule_retry(
                    self._hook,
                    {"order_id": order_id},
                    new_count,
                    min_delay=wait_seconds,
                )
                if job is None:
                    result.terminal = True
                    logger.error("order.retries_exhausted", retry_count=new_count, error=message)
                else:
                    result.retry_job_id = job.id
                    logger.warning("order.retry_scheduled", retry_count=new_count, error=message, job_id=job.id)
            else:
                result.terminal = True
                logger.error("order.delivery_rejected", retry_count=new_count, error=message)
        except Exception as e:
            logger.exception("order.failure_handling_error", error=str(e))
        finally:
            self._release(order_id)
        return result

    def _exhausted(self, order: Order, max_retries: int) -> ProcessResult:
        reason = f"Maximum retry attempts ({max_retries}) exceeded"
        if order.last_error:
            reason = f"{reason}: {order.last_error}"
        self._repository.mark_permanently_failed(order.order_id, reason)
        logger.error("order.max_retries_reached", retry_count=order.retry_count, max_retries=max_retries)

        if self._alerts is not None:
            error = MaxRetriesExceeded(reason, attempts=order.retry_count).with_context(order_id=str(order.order_id))
            self._alerts.alert(
                AlertSeverity.CRITICAL,
                "Order delivery failed permanently",
                f"Order #{order.number or order.order_id} could not be delivered after {order.retry_count} attempts",
                source="order_processor",
                order_id=str(order.order_id),
                error=error,
                metadata={"last_error": order.last_error},
            )

        self._release(order.order_id)
        return ProcessResult(False, reason, terminal=True, order_id=str(order.order_id))

    def _release(self, order_id: Any) -> None:
        try:
            self._locks.release(order_lock_id(order_id), any_holder=True)
        except Exception as e:
            logger.exception("order.lock_release_failed", error=str(e))


__all__ = ["OrderRepository", "OrderProcessor", "ProcessResult", "SEND_ORDER_HOOK", "DESTINATION"]
