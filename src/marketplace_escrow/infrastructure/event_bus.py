"""Event bus implementations for committed domain events.

Notification and activity-feed consumers subscribe to the Redis channel;
nothing in the escrow core reads these events back.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from marketplace_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import redis.asyncio as aioredis

logger = get_logger(__name__)


class RedisEventBus:
    """Publishes each event as a JSON message on a Redis pub/sub channel."""

    def __init__(self, redis: aioredis.Redis, channel: str) -> None:
        self._redis = redis
        self._channel = channel

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "event": event_name,
                "emitted_at": datetime.now(UTC).isoformat(),
                "payload": payload,
            },
            default=str,
        )
        receivers = await self._redis.publish(self._channel, message)
        logger.debug(
            "events.published",
            event_name=event_name,
            channel=self._channel,
            receivers=receivers,
        )


class LoggingEventBus:
    """Writes events to the structured log only (no Redis available)."""

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        logger.info("events.emitted", event_name=event_name, payload=payload)


def build_event_bus(redis: aioredis.Redis | None, channel: str) -> RedisEventBus | LoggingEventBus:
    if redis is None:
        return LoggingEventBus()
    return RedisEventBus(redis, channel)
