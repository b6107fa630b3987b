"""Tests for coordspine.core.settings."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pydantic import ValidationError

from coordspine.core.settings import CoordSettings, clear_settings_cache, get_settings


class TestDefaults:
    def test_defaults(self):
        s = CoordSettings()
        assert s.default_lock_ttl_seconds == 300
        assert s.dlq_max_retries == 3
        assert s.dlq_base_delay == timedelta(minutes=5)
        assert s.dlq_backoff_factor == 3
        assert s.access_token_ttl_seconds == 3600
        assert s.refresh_token_ttl_seconds == 14 * 24 * 3600

    def test_instance_id_unique_per_settings(self):
        assert CoordSettings().instance_id != CoordSettings().instance_id


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("COORD_DLQ_MAX_RETRIES", "5")
        monkeypatch.setenv("COORD_INSTANCE_ID", "node-7")
        s = CoordSettings()
        assert s.dlq_max_retries == 5
        assert s.instance_id == "node-7"

    def test_memory_store_flag(self):
        assert CoordSettings().uses_memory_store is True
        assert CoordSettings(redis_url="redis://h:6379/0").uses_memory_store is False

    def test_rejects_unknown_scheme(self):
        with pytest.raises(ValidationError):
            CoordSettings(redis_url="http://nope")

    def test_jwt_secret_hidden(self, monkeypatch):
        monkeypatch.setenv("COORD_JWT_SECRET", "super-secret-value")
        s = CoordSettings()
        assert "super-secret-value" not in repr(s)
        assert s.jwt_secret.get_secret_value() == "super-secret-value"


class TestCache:
    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_force_reload(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("COORD_LOG_LEVEL", "DEBUG")
        assert get_settings() is first
        reloaded = get_settings(_force_reload=True)
        assert reloaded.log_level == "DEBUG"

    def test_clear(self):
        first = get_settings()
        clear_settings_cache()
        assert get_settings() is not first
