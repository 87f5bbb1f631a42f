"""Redis connection used as the allocator's coordination store.

Redis URL is passed explicitly or read from environment.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import os
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
import structlog

from tunnel_ports.errors import InvalidInputError, StoreUnavailableError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def store_errors(operation: str, **context: Any) -> AsyncIterator[None]:
    """Translate Redis failures into ``StoreUnavailableError``.

    Args:
        operation: Name of the allocator operation, used in the error and the log.
        **context: Extra fields for the log entry (port, session_id, ...).
    """
    try:
        yield
    except RedisError as e:
        logger.error("store_call_failed", operation=operation, error=str(e), **context)
        raise StoreUnavailableError(operation, str(e)) from e


class RedisConnection:
    """Owns the Redis client shared by allocators in one process."""

    def __init__(self, redis_url: str | None = None):
        """Initialize Redis connection settings.

        Args:
            redis_url: Redis connection URL. Falls back to REDIS_URL env var.
                      Raises RuntimeError if neither is provided.
        """
        self.redis_url = redis_url or os.getenv("REDIS_URL")
        if not self.redis_url:
            raise RuntimeError(
                "Redis URL not provided. Pass redis_url argument or set REDIS_URL env var."
            )
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        """Connect to Redis and make sure it answers."""
        if self._redis is None:
            try:
                client = redis.from_url(self.redis_url, decode_responses=True)
            except ValueError as e:
                raise InvalidInputError(f"Invalid Redis URL {self.redis_url!r}: {e}") from e
            try:
                async with store_errors("connect", redis_url=self.redis_url):
                    await client.ping()
            except StoreUnavailableError:
                await client.aclose()
                raise
            self._redis = client
            logger.info("redis_connected", redis_url=self.redis_url)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("redis_connection_closed")

    @property
    def redis(self) -> redis.Redis:
        """Get Redis client, ensuring connection."""
        if self._redis is None:
            raise RuntimeError("Redis not connected. Call connect() first.")
        return self._redis

    async def __aenter__(self) -> "RedisConnection":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
