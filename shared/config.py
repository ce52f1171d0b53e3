"""Configuration management using Pydantic Settings."""

from __future__ import annotations

import json
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_list(v: object) -> list[str]:
    """Parse a list from either a JSON array string, comma-separated string, or list."""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        v = v.strip()
        if not v:
            return []
        if v.startswith("["):
            return json.loads(v)
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(v)  # type: ignore[arg-type]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    redis_url: str = "redis://redis:6379"

    # Wall-clock zone used for daily/weekly triggers
    notification_timezone: str = "UTC"

    # Key layout
    notification_key_prefix: str = "notifications"
    registry_key: str = "notifications:registry"
    # Pub/sub channel the delivery envelopes are published on
    notification_channel: str = "notifications:mobile"

    # Treat an unset permission flag as granted on first request
    grant_permission_by_default: bool = False

    # Delivery worker
    delivery_interval_seconds: int = 10

    # Warn when no check-in happened this many hours after the last one
    streak_warning_hours: int = 18

    # Stored as str to avoid pydantic-settings JSON parse issues with env vars.
    # Use parse_list() at the point of use.
    enabled_notification_types: str = "daily-checkin,motivational,weekly-report,daily-tip"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
