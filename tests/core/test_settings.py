"""Tests for RelaySettings."""

import pytest
from pydantic import ValidationError

from relay.core.settings import DEFAULT_RATE_LIMITS, RelaySettings


class TestRelaySettings:
    def test_defaults(self):
        settings = RelaySettings(_env_file=None)
        assert settings.max_retries == 5
        assert settings.trigger_statuses == ["processing", "completed"]
        assert settings.rate_limits == DEFAULT_RATE_LIMITS
        assert settings.user_agent == "relay-core/0.3"
        assert settings.destination_configured is False

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RELAY_API_ENDPOINT", "https://api.example.com")
        monkeypatch.setenv("RELAY_API_KEY", "k")
        monkeypatch.setenv("RELAY_TENANT_ID", "t")
        monkeypatch.setenv("RELAY_MAX_RETRIES", "3")
        settings = RelaySettings(_env_file=None)
        assert settings.destination_configured is True
        assert settings.max_retries == 3

    def test_rate_limits_merge_with_defaults(self, monkeypatch):
        monkeypatch.setenv("RELAY_RATE_LIMITS", '{"ACS": 45, "dhl": 10}')
        settings = RelaySettings(_env_file=None)
        assert settings.rate_limits["acs"] == 45
        assert settings.rate_limits["dhl"] == 10
        assert settings.rate_limits["elta"] == DEFAULT_RATE_LIMITS["elta"]

    def test_rejects_unknown_store_backend(self):
        with pytest.raises(ValidationError):
            RelaySettings(_env_file=None, store_backend="memcached")
