"""Tests for the per-resource token bucket limiter."""

import random

import pytest

from relay.alerts import AlertRegistry, AlertSeverity, MemoryChannel
from relay.core.errors import ConfigError
from relay.execution.rate_limit import BUCKET_PREFIX, TokenBucketLimiter


@pytest.fixture
def limiter(store, clock):
    return TokenBucketLimiter(store, rate_limits={"acs": 5}, clock=clock, sleep=clock.sleep)


class TestTokenBucketLimiter:
    """Core bucket behaviour."""

    def test_capacity_from_defaults_and_overrides(self, limiter):
        assert limiter.get_capacity("acs") == 5
        assert limiter.get_capacity("dmm") == 60
        assert limiter.get_capacity("unknown") == 30

    def test_new_bucket_starts_full(self, limiter):
        result = limiter.check("acs")
        assert result.allowed
        assert result.tokens_available == 4

    def test_denied_when_empty(self, limiter):
        for _ in range(5):
            assert limiter.check("acs")
        result = limiter.check("acs")
        assert not result
        assert result.wait_seconds == 1
        assert result.tokens_available == 0

    def test_refills_one_token_per_second(self, limiter, clock):
        for _ in range(5):
            limiter.check("acs")
        clock.advance(2)
        assert limiter.check("acs").allowed
        assert limiter.check("acs").allowed
        assert not limiter.check("acs").allowed

    def test_refill_capped_at_capacity(self, limiter, clock):
        """After capacity seconds idle the bucket is full, never more."""
        for _ in range(5):
            limiter.check("acs")
        clock.advance(5)
        assert limiter.get_bucket_state("acs")["tokens"] == 5
        clock.advance(100)
        assert limiter.get_bucket_state("acs")["tokens"] == 5

    def test_tokens_never_negative(self, limiter, clock):
        rng = random.Random(7)
        for _ in range(300):
            result = limiter.check("acs", tokens_required=rng.randint(1, 3))
            assert result.tokens_available >= 0
            assert limiter.get_bucket_state("acs")["tokens"] >= 0
            clock.advance(rng.choice([0, 0, 0.3, 1, 2]))

    def test_multi_token_wait(self, limiter):
        limiter.check("acs", tokens_required=4)
        result = limiter.check("acs", tokens_required=3)
        assert not result.allowed
        assert result.wait_seconds == 2

    def test_resources_are_independent(self, limiter):
        for _ in range(5):
            limiter.check("acs")
        assert limiter.check("elta").allowed

    def test_state_expires_and_bucket_restarts_full(self, limiter, store, clock):
        for _ in range(5):
            limiter.check("acs")
        clock.advance(121)
        assert store.get(BUCKET_PREFIX + "acs") is None
        assert limiter.check("acs").tokens_available == 4


class TestRetryAfter:
    def test_blackout_blocks_until_window_passes(self, limiter, clock):
        limiter.handle_retry_after("acs", 30)
        clock.advance(10)
        result = limiter.check("acs")
        assert not result.allowed
        assert 20 <= result.wait_seconds <= 21

        clock.advance(21)
        assert limiter.check("acs").allowed

    def test_ttl_extends_beyond_window(self, limiter, store, clock):
        limiter.handle_retry_after("acs", 300)
        clock.advance(200)
        assert store.get(BUCKET_PREFIX + "acs") is not None

    def test_zero_is_ignored(self, limiter):
        limiter.handle_retry_after("acs", 0)
        assert limiter.check("acs").allowed


class TestWaitFor:
    def test_short_wait_sleeps_then_allows(self, limiter, clock):
        for _ in range(5):
            limiter.check("acs")
        result = limiter.wait_for("acs", max_wait=10)
        assert result.allowed
        assert clock.sleeps == [1]

    def test_long_wait_not_slept(self, limiter, clock):
        limiter.handle_retry_after("acs", 60)
        result = limiter.wait_for("acs", max_wait=10)
        assert not result.allowed
        assert result.wait_seconds > 10
        assert clock.sleeps == []


class TestViolations:
    def test_alert_after_five_violations_deduplicated(self, store, clock):
        channel = MemoryChannel(min_severity=AlertSeverity.INFO)
        alerts = AlertRegistry(store, clock=clock)
        alerts.register(channel)
        limiter = TokenBucketLimiter(store, rate_limits={"acs": 1}, alerts=alerts, clock=clock)

        limiter.check("acs")
        for _ in range(4):
            limiter.check("acs")
        assert channel.alerts == []

        limiter.check("acs")
        assert len(channel.alerts) == 1
        assert channel.alerts[0].severity == AlertSeverity.WARNING
        assert channel.alerts[0].resource == "acs"

        for _ in range(5):
            limiter.check("acs")
        assert len(channel.alerts) == 1
        assert limiter.get_alerts()[0]["resource"] == "acs"

    def test_old_violations_do_not_count(self, store, clock):
        limiter = TokenBucketLimiter(store, rate_limits={"acs": 1}, clock=clock)
        limiter.check("acs")
        for _ in range(4):
            limiter.check("acs")
        clock.advance(301)
        limiter.handle_retry_after("acs", 1000)
        limiter.check("acs")
        assert limiter.get_alerts() == []

    def test_clear_alerts(self, store, clock):
        limiter = TokenBucketLimiter(store, rate_limits={"acs": 1}, clock=clock)
        for _ in range(6):
            limiter.check("acs")
        assert limiter.get_alerts()
        limiter.clear_alerts()
        assert limiter.get_alerts() == []


class TestAdministration:
    def test_set_rate_limit_resets_bucket(self, limiter):
        for _ in range(5):
            limiter.check("acs")
        limiter.set_rate_limit("acs", 10)
        assert limiter.get_capacity("acs") == 10
        assert limiter.check("acs").tokens_available == 9

    def test_set_rate_limit_rejects_zero(self, limiter):
        with pytest.raises(ConfigError):
            limiter.set_rate_limit("acs", 0)

    def test_statistics_and_reset_all(self, limiter):
        limiter.check("acs")
        limiter.check("custom")
        stats = limiter.get_statistics()
        assert stats["acs"]["tokens"] == 4
        assert stats["custom"]["tracked"] is True
        assert stats["geniki"]["tracked"] is False
        assert limiter.reset_all_buckets() == 2
        assert limiter.get_bucket_state("acs")["tokens"] == 5
