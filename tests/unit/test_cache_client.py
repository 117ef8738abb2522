"""
Tests for the fail-open Redis cache client.
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock
from fakeredis import aioredis as fake_aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from planhub.cache.redis_client import CacheClient


@pytest_asyncio.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def cache(redis_client):
    return CacheClient(redis_client, prefix="test:", max_retries=0)


@pytest.fixture
def broken_cache():
    client = MagicMock()
    error = RedisConnectionError("connection refused")
    for method in ("get", "setex", "delete"):
        setattr(client, method, AsyncMock(side_effect=error))
    return CacheClient(client, prefix="test:", max_retries=1, base_delay=0)


class TestCacheClient:
    """Test the happy path against fakeredis."""

    @pytest.mark.asyncio
    async def test_set_then_get(self, cache, redis_client):
        assert await cache.set("activity:a1", {"id": "a1", "tags": ["x"]}, ttl=60)

        assert await cache.get("activity:a1") == {"id": "a1", "tags": ["x"]}
        assert await redis_client.exists("test:activity:a1") == 1
        assert 0 < await redis_client.ttl("test:activity:a1") <= 60

    @pytest.mark.asyncio
    async def test_hits_and_misses_counted_by_family(self, cache):
        await cache.set("activity:a1", 1)
        await cache.get("activity:a1")
        await cache.get("activity:a2")
        await cache.get("section-stats:s1")

        summary = cache.stats.get_summary()
        assert summary["hits"] == 1
        assert summary["misses"] == 2
        assert summary["families"]["activity"]["hit_rate"] == 0.5
        assert summary["families"]["section-stats"] == {"hits": 0, "misses": 1, "hit_rate": 0.0}

    @pytest.mark.asyncio
    async def test_delete_many(self, cache, redis_client):
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete_many(["a", "b", "never-set"])
        assert await redis_client.exists("test:a", "test:b") == 0

    @pytest.mark.asyncio
    async def test_unserializable_value_not_cached(self, cache):
        assert await cache.set("bad", object()) is False
        assert await cache.get("bad") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_dropped(self, cache, redis_client):
        await redis_client.set("test:corrupt", "{not json")

        assert await cache.get("corrupt") is None
        assert await redis_client.exists("test:corrupt") == 0


class TestFailOpen:
    """Redis errors are logged and reported as misses, never raised."""

    @pytest.mark.asyncio
    async def test_get_error_is_a_miss(self, broken_cache):
        assert await broken_cache.get("k") is None
        # one attempt plus one retry
        assert broken_cache.client.get.await_count == 2

    @pytest.mark.asyncio
    async def test_write_errors_return_false(self, broken_cache):
        assert await broken_cache.set("k", 1) is False
        assert await broken_cache.delete("k") is False
        assert await broken_cache.delete_many(["a", "b"]) is False

    @pytest.mark.asyncio
    async def test_disabled_cache(self):
        cache = CacheClient(None)

        assert not cache.enabled
        assert await cache.get("k") is None
        assert await cache.set("k", 1) is False
        assert await cache.delete_many(["k"]) is False
