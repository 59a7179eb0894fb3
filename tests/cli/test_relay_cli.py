"""Tests for the relay CLI — command smoke tests via CliRunner.

``make_container`` is patched to return a container on the test database,
store and fake clock.
"""

from __future__ import annotations

import json

import pytest
import typer
from typer.testing import CliRunner

from relay.cli import app as cli_app
from relay.cli.utils import load_repository
from relay.container import RelayContainer
from relay.processing import OrderEvent
from tests._support.fakes import InMemoryOrderRepository, ScriptedDestination

runner = CliRunner()


@pytest.fixture
def container(settings, conn, store, clock, repository):
    return RelayContainer(
        settings,
        repository=repository,
        conn=conn,
        store=store,
        transport=ScriptedDestination().transport(),
        clock=clock,
        sleep=clock.sleep,
    )


@pytest.fixture(autouse=True)
def patched_container(monkeypatch, container):
    def factory(database=None, repository=None):
        return container

    monkeypatch.setattr(cli_app, "make_container", factory)
    monkeypatch.delenv("RELAY_REPOSITORY", raising=False)
    return container


def invoke(*args):
    return runner.invoke(cli_app.app, list(args))


class TestTick:
    def test_requires_repository(self):
        result = invoke("tick")
        assert result.exit_code == 2

    def test_runs_due_jobs(self, container, repository):
        container.adapter.handle(OrderEvent(42, "processing"))

        result = invoke("tick", "--repository", "tests._support.fakes:InMemoryOrderRepository", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["claimed"] == 1
        assert data["completed"] == 1
        assert repository.get(42).is_sent


class TestQueueCommands:
    def test_status_json(self, container):
        container.adapter.handle(OrderEvent(42, "processing"))
        result = invoke("status", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["total"] == 1

    def test_status_table(self):
        result = invoke("status")
        assert result.exit_code == 0
        assert "Jobs (0 total)" in result.output

    def test_jobs_json(self, container):
        container.adapter.handle(OrderEvent(42, "processing"))
        result = invoke("jobs", "--status", "pending", "--json")
        data = json.loads(result.output)
        assert data["total"] == 1
        assert data["jobs"][0]["hook"] == "relay_send_order"

    def test_health_ok(self):
        assert invoke("health", "--json").exit_code == 0

    def test_health_unhealthy_exits_1(self, container, clock):
        job = container.scheduler.enqueue_now("relay_send_order", {"order_id": 42})
        container.scheduler.store.claim(job.id, container.scheduler.now())
        clock.advance(45 * 60)
        assert invoke("health").exit_code == 1

    def test_cancel(self, container):
        job = container.scheduler.enqueue_now("relay_send_order", {"order_id": 42})
        result = invoke("cancel", job.id)
        assert result.exit_code == 0
        assert f"Canceled {job.id}" in result.output

    def test_cancel_unknown(self):
        assert invoke("cancel", "missing").exit_code == 1

    def test_cleanup(self):
        result = invoke("cleanup", "--days", "1")
        assert result.exit_code == 0
        assert "Deleted 0 job(s)" in result.output

    def test_maintain(self):
        result = invoke("maintain")
        assert result.exit_code == 0
        assert "healthy=True deleted=0" in result.output


class TestDestinationCommands:
    def test_buckets(self):
        result = invoke("buckets", "--json")
        assert result.exit_code == 0
        assert json.loads(result.output)["dmm"]["capacity"] == 60

    def test_breakers_reset(self, container):
        container.breaker.record_failure("dmm", "HTTP Error: 500", http_code=500)

        before = json.loads(invoke("breakers", "dmm", "--json").output)
        assert before[0]["state"] == "open"

        after = json.loads(invoke("breakers", "dmm", "--reset", "--json").output)
        assert after[0]["state"] == "closed"
        assert container.breaker.check("dmm")


class TestLoadRepository:
    def test_class_is_instantiated(self):
        repo = load_repository("tests._support.fakes:InMemoryOrderRepository")
        assert isinstance(repo, InMemoryOrderRepository)

    def test_bad_target(self):
        with pytest.raises(typer.BadParameter):
            load_repository("no_colon_here")
