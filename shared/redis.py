"""Redis connection helper."""

from __future__ import annotations

import redis.asyncio as redis

from shared.config import Settings, get_settings

_redis_client: redis.Redis | None = None


async def get_redis(settings: Settings | None = None) -> redis.Redis:
    """Get or create the process-wide Redis client (string responses)."""
    global _redis_client
    if _redis_client is None:
        settings = settings or get_settings()
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
