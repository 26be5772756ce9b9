"""Redis client used to fan out domain events.

Usage:
    from marketplace_escrow.infrastructure.redis_client import get_redis, close_redis

    redis = get_redis()
    await redis.publish("marketplace.events", message)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from marketplace_escrow.config import get_settings
from marketplace_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize, ping and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    await client.ping()
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis | None:
    """Return the Redis client singleton, or None when Redis is not connected."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
