"""
Redis caching client.

Best-effort key/value cache with per-call TTL. Every operation retries
transient Redis errors a bounded number of times and then fails open:
the error is logged and the miss/False value is returned, never raised.
A client constructed without a Redis connection is a disabled cache.
"""
import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
import json
import logging
from typing import Any, Iterable, Optional

from ..monitoring.metrics import track_cache_operation
from ..utils.retry import retry_with_backoff
from .stats import CacheStats

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError, OSError)


async def create_redis(redis_url: str) -> Optional[redis.Redis]:
    """
    Create and ping a Redis client.

    Returns None if Redis URL is not configured or unreachable.
    """
    if not redis_url:
        logger.warning("Redis URL not configured - caching disabled")
        return None

    try:
        client = redis.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
            socket_timeout=5,
            socket_connect_timeout=5,
        )
        await client.ping()
        logger.info("Redis client created and connected")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis: {e}")
        return None


class CacheClient:
    """Redis caching client with helper methods."""

    def __init__(
        self,
        client: Optional[redis.Redis],
        prefix: str = "planhub:",
        max_retries: int = 2,
        base_delay: float = 0.05,
        stats: Optional[CacheStats] = None,
    ):
        self.client = client
        self.prefix = prefix
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.stats = stats or CacheStats(client)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def _call(self, method: str, *args):
        return await retry_with_backoff(
            getattr(self.client, method),
            *args,
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=1.0,
            retry_on=TRANSIENT_ERRORS,
        )

    async def close(self):
        """Close Redis connection."""
        if self.client:
            try:
                await self.client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis: {e}")
            finally:
                self.client = None

    async def get(self, key: str) -> Optional[Any]:
        """
        Get cached value.

        Args:
            key: Cache key (prefix will be added automatically)

        Returns:
            Cached value or None if not found/Redis unavailable
        """
        if not self.client:
            return None

        try:
            value = await self._call("get", self.full_key(key))
        except Exception as e:
            logger.error(f"Cache get error for {key}: {e}")
            track_cache_operation("get", "error")
            return None

        if value is None:
            self.stats.record_miss(key)
            track_cache_operation("get", "miss")
            return None

        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode cached value for {key}: {e}")
            await self.delete(key)
            self.stats.record_miss(key)
            track_cache_operation("get", "miss")
            return None

        self.stats.record_hit(key)
        track_cache_operation("get", "hit")
        return decoded

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int = 300
    ) -> bool:
        """
        Set cached value with TTL.

        Args:
            key: Cache key (prefix will be added automatically)
            value: Value to cache (must be JSON-serializable)
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        if not self.client:
            return False

        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Failed to serialize value for {key}: {e}")
            return False

        try:
            await self._call("setex", self.full_key(key), ttl, serialized)
            track_cache_operation("set", "ok")
            return True
        except Exception as e:
            logger.error(f"Cache set error for {key}: {e}")
            track_cache_operation("set", "error")
            return False

    async def delete(self, key: str) -> bool:
        """
        Delete cached value. Deleting an absent key succeeds.

        Returns:
            True if successful, False otherwise
        """
        return await self.delete_many([key])

    async def delete_many(self, keys: Iterable[str]) -> bool:
        """
        Delete several keys in one round trip.

        Returns:
            True if successful (or nothing to delete), False otherwise
        """
        keys = list(dict.fromkeys(keys))
        if not self.client:
            return False
        if not keys:
            return True

        try:
            await self._call("delete", *[self.full_key(k) for k in keys])
            track_cache_operation("delete", "ok")
            return True
        except Exception as e:
            logger.error(f"Cache delete error for {', '.join(keys)}: {e}")
            track_cache_operation("delete", "error")
            return False
