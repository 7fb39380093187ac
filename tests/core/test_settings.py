"""Tests for SyncSettings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from syncspine.core.errors import ConfigError
from syncspine.core.settings import SyncSettings


class TestSyncSettings:
    def test_defaults(self):
        settings = SyncSettings()
        assert settings.memory_max_size == 10_000
        assert settings.default_ttl_seconds == 3600.0
        assert settings.cleanup_interval_seconds == 60.0
        assert settings.token_refresh_skew_seconds == 300.0
        assert settings.token_retry_delay_seconds == 30.0
        assert settings.reconnect_base_delay_seconds == 1.0
        assert settings.reconnect_max_delay_seconds == 30.0
        assert settings.max_reconnect_attempts is None
        assert settings.persistent_path is None
        assert settings.fallback_redis_url is None

    def test_origin_id_generated_per_instance(self):
        a, b = SyncSettings(), SyncSettings()
        assert a.origin_id.startswith("client-")
        assert a.origin_id != b.origin_id

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("SYNCSPINE_RECONNECT_MAX_DELAY_SECONDS", "20")
        monkeypatch.setenv("SYNCSPINE_PERSISTENT_PATH", "/tmp/syncspine/cache.db")
        settings = SyncSettings()
        assert settings.reconnect_max_delay_seconds == 20.0
        assert settings.persistent_path == Path("/tmp/syncspine/cache.db")

    def test_max_delay_below_base_rejected(self):
        with pytest.raises(ConfigError) as exc_info:
            SyncSettings(reconnect_base_delay_seconds=10, reconnect_max_delay_seconds=5)
        assert exc_info.value.context.metadata["reconnect_max_delay_seconds"] == 5

    def test_max_refresh_attempts(self, monkeypatch):
        assert SyncSettings().max_refresh_attempts is None
        monkeypatch.setenv("SYNCSPINE_MAX_REFRESH_ATTEMPTS", "4")
        assert SyncSettings().max_refresh_attempts == 4
        with pytest.raises(ValidationError):
            SyncSettings(max_refresh_attempts=0)

    def test_non_positive_values_rejected(self):
        with pytest.raises(ValidationError):
            SyncSettings(memory_max_size=0)
        with pytest.raises(ValidationError):
            SyncSettings(token_retry_delay_seconds=0)
