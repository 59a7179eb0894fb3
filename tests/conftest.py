"""
Shared pytest fixtures for relay-core tests.

This module provides:
- A deterministic clock shared by store, limiter, breaker and scheduler
- An in-memory sqlite connection with the relay tables
- Destination settings and an in-memory order repository

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(clock, store, settings):
            ...
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from relay.core.schema import create_core_tables
from relay.core.settings import RelaySettings
from relay.core.store import InMemoryAtomicStore
from relay.delivery.payload import Order
from tests._support.fakes import FakeClock, InMemoryOrderRepository, make_order


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:", check_same_thread=False)
    create_core_tables(connection)
    yield connection
    connection.close()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryAtomicStore:
    return InMemoryAtomicStore(clock=clock)


@pytest.fixture
def settings() -> RelaySettings:
    return RelaySettings(
        _env_file=None,
        api_endpoint="https://logistics.example.com/api/orders",
        api_key="key-123",
        tenant_id="tenant-1",
        api_secret="s3cret",
        origin_id="https://shop.example.com",
        database_path=":memory:",
    )


@pytest.fixture
def order() -> Order:
    return make_order()


@pytest.fixture
def repository(order: Order) -> InMemoryOrderRepository:
    return InMemoryOrderRepository([order])
