"""Tests for OrderProcessor."""

import json
from datetime import timedelta

from relay.alerts import AlertSeverity
from relay.core.hashing import compute_idempotency_key
from relay.core.locks import order_lock_id
from relay.execution.models import JobGroup
from relay.processing import OrderProcessor
from tests._support.fakes import InMemoryOrderRepository, make_order


class BrokenRepository(InMemoryOrderRepository):
    def get(self, order_id):
        raise RuntimeError("database went away")


def sent_body(destination, index=0):
    return json.loads(destination.requests[index].content)


class TestSuccess:
    def test_marks_sent_and_releases_lock(self, processor, repository, locks, scheduler):
        locks.acquire(order_lock_id(42))

        result = processor.process(42)

        assert result.success
        assert result.terminal
        assert result.order_id == "42"
        order = repository.get(42)
        assert order.sent == "yes"
        assert order.retry_count == 0
        assert repository.calls[-1] == ("mark_sent", 42, "R-1", "S-1")
        assert not locks.is_locked(order_lock_id(42))
        assert scheduler.get_status().total == 0

    def test_accepts_order_snapshot(self, processor, order, repository):
        assert processor.process(order).success
        assert repository.get(42).is_sent

    def test_duplicate_is_success_without_retry(self, processor, repository, scheduler, destination):
        destination.script = [(409, {"order_id": "R-1", "message": "Order already exists"})]

        result = processor.process(42)

        assert result.success
        assert result.attempt.duplicate
        assert repository.get(42).is_sent
        assert scheduler.get_status().total == 0

    def test_nested_response_ids_are_recorded(self, processor, repository, destination):
        destination.script = [(201, {"success": True, "data": {"order_id": 9001, "shipment_id": "SHP-7"}})]

        assert processor.process(42).success
        assert repository.calls[-1] == ("mark_sent", 42, "9001", "SHP-7")

    def test_already_sent_is_noop(self, processor, repository, destination):
        repository.get(42).sent = "yes"
        result = processor.process(42)
        assert result.success
        assert result.message == "Order already sent"
        assert destination.calls == 0
        assert repository.calls == []


class TestPayload:
    def test_idempotency_key_and_courier_routing(self, processor, repository, destination, settings):
        repository.add(make_order(voucher_number="1234 567 891"))

        processor.process(42)

        body = sent_body(destination)
        expected = compute_idempotency_key(
            settings.api_secret, settings.origin_id, 42, repository.get(42).created_at
        )
        assert body["idempotency_key"] == expected
        assert destination.requests[0].headers["X-Idempotency-Key"] == expected
        assert body["courier"] == "acs"
        assert body["voucher_number"] == "1234567891"
        assert body["order"]["external_order_id"] == "42"

    def test_key_is_stable_across_retries(self, processor, destination, clock):
        destination.script = [(503, {"error": "busy"}), (201, {"order_id": "R-1"})]

        processor.process(42)
        clock.advance(3600)
        processor.process(42)

        keys = [r.headers["X-Idempotency-Key"] for r in destination.requests]
        assert len(keys) == 2
        assert keys[0] == keys[1]


class TestFailures:
    def test_server_error_schedules_retry(self, processor, repository, scheduler, locks, destination, clock):
        destination.script = [(500, {"error": "Server busy"})]
        locks.acquire(order_lock_id(42))

        result = processor.process(42)

        assert not result.success
        assert not result.terminal
        order = repository.get(42)
        assert order.retry_count == 1
        assert order.last_error == "Server busy"
        assert order.sent == "pending"
        job = scheduler.store.get(result.retry_job_id)
        assert job.group == JobGroup.RETRY
        assert job.payload == {"order_id": 42}
        assert job.retry_count == 1
        assert job.not_before == clock.datetime() + timedelta(seconds=60)
        assert not locks.is_locked(order_lock_id(42))

    def test_client_error_is_not_retried(self, processor, repository, scheduler, destination):
        destination.script = [(422, {"message": "Invalid postcode"})]

        result = processor.process(42)

        assert result.terminal
        assert result.retry_job_id is None
        assert repository.get(42).retry_count == 1
        assert repository.get(42).last_error == "Invalid postcode"
        assert scheduler.get_status().total == 0

    def test_rate_limit_hint_delays_retry(self, processor, scheduler, destination, clock):
        destination.script = [(429, {}, {"Retry-After": "300"})]

        result = processor.process(42)

        assert result.rate_limited
        assert result.wait_seconds == 300
        job = scheduler.store.get(result.retry_job_id)
        assert job.not_before == clock.datetime() + timedelta(seconds=300)

    def test_open_circuit_retry_waits_for_window(self, processor, scheduler, destination, clock):
        destination.script = [(500, {"error": "down"})]
        processor.process(42)
        clock.advance(60)

        result = processor.process(42)

        assert result.attempt.circuit_open
        assert destination.calls == 1
        job = scheduler.store.get(result.retry_job_id)
        assert job.retry_count == 2
        assert job.not_before == clock.datetime() + timedelta(seconds=240)

    def test_unexpected_error_counts_as_retryable(self, client, scheduler, locks, settings, alerts):
        repository = BrokenRepository([make_order(retry_count=4)])
        processor = OrderProcessor(repository, client, scheduler, locks, settings, alerts=alerts)

        result = processor.process(42, retry_count=2)

        assert not result.success
        assert result.message == "Processing error: database went away"
        assert scheduler.store.get(result.retry_job_id).retry_count == 3
        assert repository.orders["42"].retry_count == 4
        assert not any(call[0] == "mark_failed_attempt" for call in repository.calls)

    def test_unreadable_order_stops_at_max_retries(self, client, scheduler, locks, settings, alerts):
        repository = BrokenRepository([make_order(retry_count=4)])
        processor = OrderProcessor(repository, client, scheduler, locks, settings, alerts=alerts)

        counts = []
        result = processor.process(42)
        while result.retry_job_id is not None:
            counts.append(scheduler.store.get(result.retry_job_id).retry_count)
            result = processor.process(42, retry_count=counts[-1])

        assert counts == [1, 2, 3, 4, 5]
        assert result.terminal
        assert repository.orders["42"].retry_count == 4

    def test_missing_order(self, processor, destination):
        result = processor.process(999)
        assert result.terminal
        assert result.message == "Order not found"
        assert destination.calls == 0


class TestExhaustion:
    def test_max_retries_fails_permanently(self, processor, repository, scheduler, channel, destination):
        order = repository.get(42)
        order.retry_count = 5
        order.last_error = "HTTP Error: 500"

        result = processor.process(42)

        assert result.terminal
        assert not result.success
        assert result.message == "Maximum retry attempts (5) exceeded: HTTP Error: 500"
        assert order.sent == "failed"
        assert destination.calls == 0
        assert scheduler.get_status().total == 0

        alert = channel.alerts[0]
        assert alert.severity == AlertSeverity.CRITICAL
        assert alert.title == "Order delivery failed permanently"
        assert alert.order_id == "42"
        assert alert.error.to_dict()["error_type"] == "MaxRetriesExceeded"

    def test_failed_order_is_not_reprocessed(self, processor, repository, scheduler, channel):
        repository.get(42).retry_count = 5
        processor.process(42)
        calls = list(repository.calls)

        result = processor.process(42)

        assert result.terminal
        assert repository.calls == calls
        assert len(channel.alerts) == 1
        assert scheduler.get_status().total == 0

    def test_fifth_failure_is_last_retry(self, processor, repository, scheduler, destination):
        destination.script = [(500, {"error": "down"})]
        repository.get(42).retry_count = 4

        result = processor.process(42)

        assert repository.get(42).retry_count == 5
        job = scheduler.store.get(result.retry_job_id)
        assert job.retry_count == 5
