"""
Relay router — order events in, queue and destination state out.

Endpoints:
    POST /events/orders          Order status event → delivery job (202 when queued)
    GET  /jobs/status            Job counts per group/status, stuck jobs, recent failures
    GET  /jobs/health            Job health report (503 when unhealthy)
    GET  /breakers/{resource}    Circuit breaker state for a destination
    GET  /buckets                Token bucket state for every known resource

Manifesto:
    Operators must see why an order has not arrived (queued, rate limited,
    circuit open, failed) without database access.

Tags:
    relay-core, api, fastapi, monitoring
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from relay.container import RelayContainer
from relay.execution.models import JobGroup
from relay.processing.events import OrderEvent


class OrderEventRequest(BaseModel):
    order_id: str | int = Field(..., description="Order identifier in the order subsystem")
    status: str = Field(..., description="New order status")
    previous_status: str | None = None


class OrderEventResponse(BaseModel):
    decision: str
    queued: bool
    job_id: str | None = None


def create_relay_router(container: RelayContainer) -> APIRouter:
    """Build the relay router bound to ``container``."""
    router = APIRouter(tags=["relay"])

    @router.post("/events/orders", response_model=OrderEventResponse)
    def order_event(body: OrderEventRequest):
        """Hand an order status change to the event adapter.

        Returns 202 when a delivery job was queued, 200 otherwise with the
        reason (``ignored_status``, ``already_sent``, ``locked``...).
        """
        outcome = container.adapter.handle(
            OrderEvent(order_id=body.order_id, status=body.status, previous_status=body.previous_status)
        )
        code = status.HTTP_202_ACCEPTED if outcome.queued else status.HTTP_200_OK
        return JSONResponse(status_code=code, content=outcome.to_dict())

    @router.get("/jobs/status")
    def job_status(
        hook: str | None = Query(None, description="Filter by hook name"),
        group: JobGroup | None = Query(None, description="Filter by job group"),
    ) -> dict[str, Any]:
        return container.scheduler.get_status(hook=hook, group=group).to_dict()

    @router.get("/jobs/health")
    def job_health():
        report = container.scheduler.monitor_health(log_stats=False)
        code = status.HTTP_200_OK if report.healthy else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=report.to_dict())

    @router.get("/breakers/{resource}")
    def breaker_state(resource: str = Path(..., description="Destination or courier id")) -> dict[str, Any]:
        return container.breaker.state(resource).to_dict()

    @router.get("/buckets")
    def buckets() -> dict[str, Any]:
        return {
            "buckets": container.limiter.get_statistics(),
            "alerts": container.limiter.get_alerts(limit=20),
        }

    return router


__all__ = ["create_relay_router", "OrderEventRequest", "OrderEventResponse"]
