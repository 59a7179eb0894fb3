"""
Lazy-initialised dependency container.

:class:`RelayContainer` builds every relay component from
:class:`RelaySettings` on first access.  The order subsystem supplies the
:class:`OrderRepository`; everything else is owned here.

Usage::

    from relay.container import RelayContainer

    container = RelayContainer(repository=my_orders)
    container.adapter.handle(OrderEvent(order_id=42, status="processing"))
    container.scheduler.tick()

    # As a context manager for automatic cleanup:
    with RelayContainer(settings, repository=my_orders) as c:
        c.scheduler.check_stuck_jobs()
"""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx

from relay.alerts import AlertRegistry, LogChannel, WebhookChannel
from relay.core.cache import CacheBackend, InMemoryCache, StoreCache
from relay.core.locks import LockManager
from relay.core.logging import get_logger
from relay.core.schema import create_core_tables
from relay.core.settings import RelaySettings, get_settings
from relay.core.store import InMemoryAtomicStore, KeyedAtomicStore, RedisAtomicStore
from relay.delivery.client import DeliveryClient
from relay.delivery.couriers import CourierRegistry
from relay.execution.circuit_breaker import CircuitBreaker
from relay.execution.jobs import JobStore
from relay.execution.rate_limit import TokenBucketLimiter
from relay.execution.retry import ExponentialBackoff
from relay.execution.scheduler import RetryScheduler
from relay.processing.events import OrderEventAdapter, send_order_handler
from relay.processing.orders import SEND_ORDER_HOOK, OrderProcessor, OrderRepository

logger = get_logger(__name__)


def create_store(settings: RelaySettings, clock: Callable[[], float] = time.time) -> KeyedAtomicStore:
    """Shared key/value store for limiter, breaker and alert throttling."""
    if settings.store_backend == "redis":
        return RedisAtomicStore(settings.redis_url)
    return InMemoryAtomicStore(clock=clock)


def create_connection(settings: RelaySettings) -> sqlite3.Connection:
    """Open the job/lock database and make sure the tables exist."""
    path = settings.database_path
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path, check_same_thread=False)
    create_core_tables(conn)
    return conn


class RelayContainer:
    """Lazy-initialised relay components.

    Args:
        settings: Relay settings (defaults to environment)
        repository: Order access supplied by the order subsystem
        conn: Database connection (created from ``database_path`` if omitted)
        store: Shared key/value store (created from ``store_backend`` if omitted)
        transport: httpx transport for the destination client
        clock: Seconds-since-epoch source shared by every component
        sleep: Sleep function used for short local waits
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        repository: OrderRepository | None = None,
        conn: Any | None = None,
        store: KeyedAtomicStore | None = None,
        transport: httpx.BaseTransport | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._repository = repository
        self._conn = conn
        self._owns_conn = conn is None
        self._store = store
        self._transport = transport
        self._clock = clock
        self._sleep = sleep

        self._alerts: AlertRegistry | None = None
        self._locks: LockManager | None = None
        self._limiter: TokenBucketLimiter | None = None
        self._breaker: CircuitBreaker | None = None
        self._cache: CacheBackend | None = None
        self._client: DeliveryClient | None = None
        self._couriers: CourierRegistry | None = None
        self._scheduler: RetryScheduler | None = None
        self._processor: OrderProcessor | None = None
        self._adapter: OrderEventAdapter | None = None

    # ── Properties (lazy) ────────────────────────────────────────

    @property
    def settings(self) -> RelaySettings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def conn(self) -> Any:
        if self._conn is None:
            self._conn = create_connection(self.settings)
        return self._conn

    @property
    def store(self) -> KeyedAtomicStore:
        if self._store is None:
            self._store = create_store(self.settings, self._clock)
        return self._store

    @property
    def repository(self) -> OrderRepository:
        if self._repository is None:
            raise RuntimeError("No OrderRepository configured; pass repository= to RelayContainer")
        return self._repository

    @property
    def alerts(self) -> AlertRegistry:
        if self._alerts is None:
            registry = AlertRegistry(self.store, clock=self._clock)
            registry.register(LogChannel())
            if self.settings.alert_webhook_url:
                registry.register(WebhookChannel("webhook", self.settings.alert_webhook_url))
            self._alerts = registry
        return self._alerts

    @property
    def locks(self) -> LockManager:
        if self._locks is None:
            self._locks = LockManager(self.conn, clock=self._clock)
        return self._locks

    @property
    def limiter(self) -> TokenBucketLimiter:
        if self._limiter is None:
            self._limiter = TokenBucketLimiter(
                self.store,
                rate_limits=self.settings.rate_limits,
                alerts=self.alerts,
                clock=self._clock,
                sleep=self._sleep,
            )
        return self._limiter

    @property
    def breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = CircuitBreaker(self.store, clock=self._clock)
        return self._breaker

    @property
    def cache(self) -> CacheBackend:
        if self._cache is None:
            if self.settings.store_backend == "redis":
                self._cache = StoreCache(self.store, default_ttl_seconds=self.settings.response_cache_ttl)
            else:
                self._cache = InMemoryCache(default_ttl_seconds=self.settings.response_cache_ttl, clock=self._clock)
        return self._cache

    @property
    def client(self) -> DeliveryClient:
        if self._client is None:
            self._client = DeliveryClient(
                self.settings,
                self.limiter,
                self.breaker,
                cache=self.cache,
                transport=self._transport,
                sleep=self._sleep,
            )
        return self._client

    @property
    def couriers(self) -> CourierRegistry:
        if self._couriers is None:
            self._couriers = CourierRegistry.default()
        return self._couriers

    @property
    def scheduler(self) -> RetryScheduler:
        if self._scheduler is None:
            settings = self.settings
            self._scheduler = RetryScheduler(
                JobStore(self.conn),
                backoff=ExponentialBackoff(max_retries=settings.max_retries),
                max_retries=settings.max_retries,
                alerts=self.alerts,
                clock=self._clock,
                tick_batch_size=settings.tick_batch_size,
                retention_days=settings.job_retention_days,
                cleanup_batch_size=settings.cleanup_batch_size,
                stuck_after_seconds=settings.stuck_after_seconds,
            )
            if self._repository is not None:
                self._scheduler.register_handler(SEND_ORDER_HOOK, send_order_handler(self.processor))
        return self._scheduler

    @property
    def processor(self) -> OrderProcessor:
        if self._processor is None:
            scheduler = self.scheduler
            # Building the scheduler registers the send handler, which builds the processor
            if self._processor is None:
                self._processor = OrderProcessor(
                    self.repository,
                    self.client,
                    scheduler,
                    self.locks,
                    self.settings,
                    couriers=self.couriers,
                    alerts=self.alerts,
                )
        return self._processor

    @property
    def adapter(self) -> OrderEventAdapter:
        if self._adapter is None:
            self._adapter = OrderEventAdapter(
                self.repository,
                self.scheduler,
                self.locks,
                self.settings,
                hook=SEND_ORDER_HOOK,
            )
        return self._adapter

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Close the database connection if the container opened it."""
        if self._conn is not None and self._owns_conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> RelayContainer:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = ["RelayContainer", "create_connection", "create_store"]
