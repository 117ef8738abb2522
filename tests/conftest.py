"""
Pytest configuration and shared fixtures.

Integration fixtures run the real core against an in-memory sqlite
database and a fakeredis client so the cache keyspace can be inspected.
"""

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis

from config import Settings
from planhub.app import build_services
from planhub.database.connection import Database
from planhub.services.audit import MemoryAuditSink
from planhub.services.quota import PlanLookup

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

PREFIX = "planhub:"


@pytest.fixture
def test_settings():
    """Settings for an isolated in-memory core."""
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite://",
        redis_url="",
        timezone="UTC",
        cache_prefix=PREFIX,
        cache_max_retries=0,
    )


@pytest_asyncio.fixture
async def fake_redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def plan_lookup():
    return PlanLookup("free")


@pytest_asyncio.fixture
async def services(test_settings, fake_redis, audit_sink, plan_lookup):
    """Fully wired core on sqlite + fakeredis."""
    container = await build_services(
        test_settings,
        database=Database(test_settings),
        redis_client=fake_redis,
        plan_lookup=plan_lookup,
        audit=audit_sink,
    )
    yield container
    await container.database.close()


@pytest_asyncio.fixture
async def planner(services):
    """A planner owned by owner-1 with its three default sections."""
    return await services.planners.create("owner-1", {"title": "Launch plan"})


@pytest_asyncio.fixture
async def first_section(services, planner):
    sections = await services.sections.list(planner.id, "owner-1")
    return sections[0]


@pytest.fixture
def cache_keys(fake_redis):
    """Coroutine listing every cache key without the prefix."""
    async def _keys():
        keys = await fake_redis.keys(f"{PREFIX}*")
        return {key[len(PREFIX):] for key in keys}
    return _keys
