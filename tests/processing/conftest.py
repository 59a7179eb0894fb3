"""Fixtures wiring a processor against a scripted destination."""

import pytest

from relay.alerts import AlertRegistry, MemoryChannel
from relay.core.locks import LockManager
from relay.delivery import DeliveryClient
from relay.execution.circuit_breaker import CircuitBreaker
from relay.execution.jobs import JobStore
from relay.execution.rate_limit import TokenBucketLimiter
from relay.execution.scheduler import RetryScheduler
from relay.processing import OrderEventAdapter, OrderProcessor, SEND_ORDER_HOOK
from tests._support.fakes import ScriptedDestination


@pytest.fixture
def destination():
    return ScriptedDestination((201, {"order_id": "R-1", "shipment_id": "S-1"}))


@pytest.fixture
def channel():
    return MemoryChannel()


@pytest.fixture
def alerts(store, clock, channel):
    registry = AlertRegistry(store, clock=clock)
    registry.register(channel)
    return registry


@pytest.fixture
def locks(conn, clock):
    return LockManager(conn, instance_id="worker-1", clock=clock)


@pytest.fixture
def scheduler(conn, clock, alerts):
    return RetryScheduler(JobStore(conn), alerts=alerts, clock=clock)


@pytest.fixture
def client(settings, store, clock, destination):
    return DeliveryClient(
        settings,
        TokenBucketLimiter(store, clock=clock, sleep=clock.sleep),
        CircuitBreaker(store, clock=clock),
        transport=destination.transport(),
        sleep=clock.sleep,
    )


@pytest.fixture
def processor(repository, client, scheduler, locks, settings, alerts):
    return OrderProcessor(repository, client, scheduler, locks, settings, alerts=alerts)


@pytest.fixture
def adapter(repository, scheduler, locks, settings):
    return OrderEventAdapter(repository, scheduler, locks, settings, hook=SEND_ORDER_HOOK)
