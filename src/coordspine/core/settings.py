"""
Centralized settings for coord-spine.

One validated, cached settings object holds the store URL, this process's
instance identity, lock defaults, retry policy and token validity. All fields
can be set through ``COORD_*`` environment variables or a ``.env`` file.

Examples:
    >>> import os
    >>> os.environ["COORD_REDIS_URL"] = "memory://"
    >>> settings = get_settings(_force_reload=True)
    >>> settings.dlq_max_retries
    3

Tags:
    configuration, settings, pydantic, environment, coord-spine
"""

from __future__ import annotations

from datetime import timedelta
from uuid import uuid4

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CoordSettings(BaseSettings):
    """coord-spine configuration.

    ``instance_id`` identifies this process in lock values and history
    records. It is generated once per settings object and injected into the
    lock manager; nothing reads it from module state.
    """

    model_config = SettingsConfigDict(
        env_prefix="COORD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Coordination store ───────────────────────────────────────
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="redis:// or rediss:// for Redis, memory:// for the in-process store",
    )
    redis_socket_timeout_seconds: float = Field(default=2.0, gt=0)
    instance_id: str = Field(default_factory=lambda: str(uuid4()))

    # ── Locks / scheduling ───────────────────────────────────────
    default_lock_ttl_seconds: int = Field(default=300, gt=0)
    scheduler_tick_seconds: float = Field(default=10.0, gt=0)
    history_retention_days: int = Field(default=30, gt=0)

    # ── Retry / dead-letter ──────────────────────────────────────
    dlq_max_retries: int = Field(default=3, ge=1)
    dlq_base_delay_seconds: int = Field(default=300, gt=0)
    dlq_backoff_factor: int = Field(default=3, ge=1)
    dlq_sweep_interval_seconds: int = Field(default=300, gt=0)

    # ── Tokens ───────────────────────────────────────────────────
    jwt_secret: SecretStr = Field(default=SecretStr("change-me-in-production-0123456789abcdef"))
    jwt_issuer: str | None = Field(default=None)
    access_token_ttl_seconds: int = Field(default=3600, gt=0)
    refresh_token_ttl_seconds: int = Field(default=1_209_600, gt=0)

    # ── Durable records / logging ────────────────────────────────
    database_path: str = Field(default="data/coord_spine.db")
    log_level: str = Field(default="INFO")
    json_logs: bool | None = Field(default=None)

    @field_validator("redis_url")
    @classmethod
    def _check_scheme(cls, value: str) -> str:
        if not value.startswith(("redis://", "rediss://", "unix://", "memory://")):
            raise ValueError(f"Unsupported coordination store URL: {value}")
        return value

    @property
    def uses_memory_store(self) -> bool:
        return self.redis_url.startswith("memory://")

    @property
    def dlq_base_delay(self) -> timedelta:
        return timedelta(seconds=self.dlq_base_delay_seconds)


_settings_cache: dict[str, CoordSettings] = {}


def get_settings(*, _force_reload: bool = False) -> CoordSettings:
    """Return the process-wide settings, loading them on first use."""
    if not _force_reload and "default" in _settings_cache:
        return _settings_cache["default"]
    settings = CoordSettings()
    _settings_cache["default"] = settings
    return settings


def clear_settings_cache() -> None:
    """Clear the settings cache (primarily for testing)."""
    _settings_cache.clear()


__all__ = ["CoordSettings", "clear_settings_cache", "get_settings"]
