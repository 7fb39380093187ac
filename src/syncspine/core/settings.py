"""Settings for the synchronization layer.

``SyncSettings`` holds every tunable of the four components: cache tiers and
sweep interval, token refresh skew and retry delay, reconnect backoff, and
resync timeout. Values come from keyword arguments, ``SYNCSPINE_*``
environment variables, or a ``.env`` file.

Features:
    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** ``SYNCSPINE_RECONNECT_MAX_DELAY_SECONDS=20``
    - **.env file support:** Automatic loading via pydantic-settings
    - **Extra ignore:** Unknown env vars don't cause startup failures

Examples:
    >>> from syncspine.core.settings import SyncSettings
    >>> settings = SyncSettings(reconnect_base_delay_seconds=0.5)
    >>> settings.reconnect_max_delay_seconds
    30.0

Tags:
    settings, configuration, pydantic, environment, syncspine
"""

from __future__ import annotations

import uuid
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from syncspine.core.errors import ConfigError


class SyncSettings(BaseSettings):
    """Configuration for a :class:`~syncspine.client.SyncClient`.

    Fields
    ──────
    origin_id                    : Identifier stamped on locally published updates
    cache_namespace              : Key prefix shared by all cache tiers
    memory_max_size              : LRU bound of the memory tier
    default_ttl_seconds          : TTL for cache writes without an explicit TTL
    cleanup_interval_seconds     : Period of the expired-entry sweep
    persistent_path              : SQLite file for the persistent tier (None → in-memory SQLite)
    fallback_redis_url           : Redis URL for the fallback tier (None → no fallback tier)
    token_scope                  : Scope requested before every (re)connect
    token_refresh_skew_seconds   : Refresh this long before a token expires
    token_retry_delay_seconds    : Fixed delay between failed refresh attempts
    max_refresh_attempts         : Stop retrying a scheduled refresh after this many failures (None → never)
    reconnect_base_delay_seconds : First reconnect delay
    reconnect_max_delay_seconds  : Reconnect delay cap
    reconnect_jitter             : Randomize reconnect delays (still capped)
    max_reconnect_attempts       : Give up after this many consecutive failures (None → never)
    resync_timeout_seconds       : Wait this long for a resync snapshot
    """

    model_config = SettingsConfigDict(
        env_prefix="SYNCSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    # ── Identity ─────────────────────────────────────────────────
    origin_id: str = Field(default_factory=lambda: f"client-{uuid.uuid4().hex[:12]}")

    # ── Cache ────────────────────────────────────────────────────
    cache_namespace: str = "syncspine"
    memory_max_size: int = Field(default=10_000, gt=0)
    default_ttl_seconds: float | None = Field(default=3600.0, gt=0)
    cleanup_interval_seconds: float = Field(default=60.0, gt=0)
    persistent_path: Path | None = None
    fallback_redis_url: str | None = None

    # ── Tokens ───────────────────────────────────────────────────
    token_scope: str = "default"
    token_refresh_skew_seconds: float = Field(default=300.0, ge=0)
    token_retry_delay_seconds: float = Field(default=30.0, gt=0)
    max_refresh_attempts: int | None = Field(default=None, gt=0)

    # ── Connection ───────────────────────────────────────────────
    reconnect_base_delay_seconds: float = Field(default=1.0, gt=0)
    reconnect_max_delay_seconds: float = Field(default=30.0, gt=0)
    reconnect_jitter: bool = True
    max_reconnect_attempts: int | None = Field(default=None, gt=0)
    resync_timeout_seconds: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def _check_backoff_bounds(self) -> SyncSettings:
        if self.reconnect_max_delay_seconds < self.reconnect_base_delay_seconds:
            raise ConfigError(
                "reconnect_max_delay_seconds must be >= reconnect_base_delay_seconds"
            ).with_context(
                component="settings",
                reconnect_base_delay_seconds=self.reconnect_base_delay_seconds,
                reconnect_max_delay_seconds=self.reconnect_max_delay_seconds,
            )
        return self


__all__ = ["SyncSettings"]
