"""
Tests for the relay FastAPI router.

Uses TestClient against a container wired to an in-memory database,
a fake clock and a scripted destination.
"""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from relay.api import create_relay_router
from relay.container import RelayContainer
from tests._support.fakes import ScriptedDestination


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


@pytest.fixture
def api(container):
    app = FastAPI()
    app.include_router(create_relay_router(container))
    return TestClient(app)


class TestOrderEvents:
    def test_queued_returns_202(self, api):
        resp = api.post("/events/orders", json={"order_id": 42, "status": "processing"})
        assert resp.status_code == 202
        data = resp.json()
        assert data["decision"] == "queued"
        assert data["queued"] is True
        assert data["job_id"]

    def test_duplicate_event_is_locked(self, api):
        api.post("/events/orders", json={"order_id": 42, "status": "processing"})
        resp = api.post("/events/orders", json={"order_id": 42, "status": "completed"})
        assert resp.status_code == 200
        assert resp.json() == {"decision": "locked", "queued": False, "job_id": None}

    def test_ignored_status(self, api):
        resp = api.post("/events/orders", json={"order_id": "42", "status": "on-hold", "previous_status": "pending"})
        assert resp.status_code == 200
        assert resp.json()["decision"] == "ignored_status"

    def test_validation_error(self, api):
        resp = api.post("/events/orders", json={"order_id": 42})
        assert resp.status_code == 422


class TestJobs:
    def test_status_counts(self, api):
        api.post("/events/orders", json={"order_id": 42, "status": "processing"})
        data = api.get("/jobs/status").json()
        assert data["total"] == 1
        assert data["counts"]["pending"] == 1
        assert data["stuck"] == 0

    def test_status_filtered_by_group(self, api):
        api.post("/events/orders", json={"order_id": 42, "status": "processing"})
        assert api.get("/jobs/status", params={"group": "relay_retry"}).json()["total"] == 0
        assert api.get("/jobs/status", params={"group": "relay_immediate"}).json()["total"] == 1

    def test_unknown_group_rejected(self, api):
        assert api.get("/jobs/status", params={"group": "nope"}).status_code == 422

    def test_health_ok(self, api):
        resp = api.get("/jobs/health")
        assert resp.status_code == 200
        assert resp.json()["healthy"] is True

    def test_health_503_with_stuck_job(self, api, container, clock):
        job = container.scheduler.enqueue_now("relay_send_order", {"order_id": 42})
        container.scheduler.store.claim(job.id, container.scheduler.now())
        clock.advance(31 * 60)

        resp = api.get("/jobs/health")
        assert resp.status_code == 503
        assert resp.json()["total_stuck"] == 1


class TestDestinationState:
    def test_breaker_closed(self, api):
        data = api.get("/breakers/dmm").json()
        assert data["resource"] == "dmm"
        assert data["state"] == "closed"

    def test_breaker_open(self, api, container):
        container.breaker.record_failure("dmm", "HTTP Error: 503", http_code=503)
        data = api.get("/breakers/dmm").json()
        assert data["state"] == "open"
        assert data["reason"].startswith("Server error detected")
        assert data["recent_errors"] == 1

    def test_buckets(self, api, container):
        container.limiter.check("acs")
        data = api.get("/buckets").json()
        assert data["buckets"]["dmm"]["capacity"] == 60
        assert data["buckets"]["acs"]["tokens"] == 29
        assert data["alerts"] == []
