"""Redis connection store for the realtime channel."""

from __future__ import annotations

import logging

from redis.asyncio import Redis
from redis.exceptions import RedisError

from apps.order_console import config

logger = logging.getLogger(__name__)


class RedisStore:
    """Process-wide Redis client used for pub/sub.

    One text-mode client (``decode_responses=True``); channel payloads are JSON.
    """

    _instance: RedisStore | None = None

    def __init__(self, redis: Redis | None = None) -> None:
        self.redis: Redis = redis or Redis.from_url(config.REDIS_URL, decode_responses=True)

    @classmethod
    def get(cls) -> RedisStore:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def get_master(self) -> Redis:
        return self.redis

    async def ping(self) -> bool:
        return await self.redis.ping()  # type: ignore[no-any-return]

    async def close(self) -> None:
        """Explicitly close the Redis connection pool."""
        try:
            await self.redis.aclose()
        except (RedisError, OSError, ConnectionError) as e:
            logger.warning("Failed to close Redis client during shutdown: %s", e)
        if RedisStore._instance is self:
            RedisStore._instance = None


def get_redis_store() -> RedisStore:
    return RedisStore.get()


__all__ = ["RedisStore", "get_redis_store"]
