"""Relay configuration.

All fields can be set through ``RELAY_*`` environment variables or a
``.env`` file, e.g. ``RELAY_API_ENDPOINT=https://api.example.com/orders``.
Dict fields accept JSON (``RELAY_RATE_LIMITS='{"acs": 45}'``).

Fields
──────
api_endpoint / api_key / tenant_id : destination credentials (required to send)
api_secret        : HMAC secret for payload signatures and idempotency keys
origin_id         : stable storefront identifier (site URL) mixed into keys
max_retries       : delivery attempts before an order is failed permanently
request_timeout   : total HTTP timeout in seconds
rate_limits       : per-resource bucket capacity (requests per minute)
store_backend     : ``memory`` or ``redis`` for limiter/breaker state
database_path     : sqlite file holding the job queue and advisory locks
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RATE_LIMITS: dict[str, int] = {
    "dmm": 60,
    "acs": 30,
    "geniki": 20,
    "elta": 20,
    "speedex": 30,
    "generic": 30,
}


class RelaySettings(BaseSettings):
    """Centralized relay configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Destination ──────────────────────────────────────────────
    api_endpoint: str = Field(default="")
    api_key: str = Field(default="")
    tenant_id: str = Field(default="")
    api_secret: str = Field(default="")
    origin_id: str = Field(default="", description="Storefront URL or id used in idempotency keys")
    user_agent: str = Field(default="relay-core/0.3")

    # ── Delivery policy ──────────────────────────────────────────
    max_retries: int = Field(default=5, ge=0)
    request_timeout: float = Field(default=20.0, gt=0)
    rate_limit_fallback_wait: int = Field(default=5, ge=0, description="Sleep before the single 429 retry")
    max_local_wait: int = Field(default=10, ge=0, description="Longest in-process rate-limit wait")
    rate_limits: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    response_cache_ttl: int = Field(default=300)

    # ── Triggering ───────────────────────────────────────────────
    auto_send: bool = Field(default=True)
    trigger_statuses: list[str] = Field(default_factory=lambda: ["processing", "completed"])
    order_lock_ttl: int = Field(default=600)

    # ── Scheduler ────────────────────────────────────────────────
    tick_batch_size: int = Field(default=25, ge=1)
    job_retention_days: int = Field(default=7, ge=1)
    cleanup_batch_size: int = Field(default=1000, ge=1)
    stuck_after_seconds: int = Field(default=30 * 60)

    # ── Storage ──────────────────────────────────────────────────
    store_backend: str = Field(default="memory")
    redis_url: str = Field(default="redis://localhost:6379/0")
    database_path: str = Field(default="data/relay.db")

    # ── Alerts / logging ─────────────────────────────────────────
    alert_webhook_url: str = Field(default="")
    log_level: str = Field(default="INFO")
    log_json: bool | None = Field(default=None)

    @field_validator("store_backend")
    @classmethod
    def _check_backend(cls, value: str) -> str:
        value = value.lower()
        if value not in ("memory", "redis"):
            raise ValueError(f"store_backend must be 'memory' or 'redis', got {value!r}")
        return value

    @field_validator("rate_limits")
    @classmethod
    def _merge_rate_limits(cls, value: dict[str, int]) -> dict[str, int]:
        merged = dict(DEFAULT_RATE_LIMITS)
        merged.update({k.lower(): max(1, int(v)) for k, v in value.items()})
        return merged

    @property
    def destination_configured(self) -> bool:
        return bool(self.api_endpoint and self.api_key and self.tenant_id)


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Load and cache settings from the environment."""
    return RelaySettings()
