"""Tests for the analysis caches and tracked background tasks."""

import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from modcore.background import BackgroundTasks
from modcore.config import Settings
from modcore.services.analysis_cache import (
    MemoryAnalysisCache,
    RedisAnalysisCache,
    build_analysis_cache,
    cache_key,
)
from tests.factories import make_analysis


class FakeRedis:
    def __init__(self, fail=False):
        self.data = {}
        self.expiry = {}
        self.fail = fail
        self.closed = False

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("connection refused")
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("connection refused")
        self.data[key] = value
        self.expiry[key] = ex

    async def aclose(self):
        self.closed = True


class TestMemoryAnalysisCache:
    @pytest.mark.asyncio
    async def test_hit_and_miss(self):
        cache = MemoryAnalysisCache(10, 3600)
        result = make_analysis(spam=40)
        await cache.set("c1", "abc", result)
        assert await cache.get("c1", "abc") is result
        assert await cache.get("c1", "other") is None

    @pytest.mark.asyncio
    async def test_least_recently_used_entry_is_evicted(self):
        cache = MemoryAnalysisCache(2, 3600)
        await cache.set("a", "1", make_analysis())
        await cache.set("b", "1", make_analysis())
        await cache.get("a", "1")
        await cache.set("c", "1", make_analysis())
        assert len(cache) == 2
        assert await cache.get("b", "1") is None
        assert await cache.get("a", "1") is not None

    @pytest.mark.asyncio
    async def test_expired_entries_miss(self):
        cache = MemoryAnalysisCache(10, 0)
        await cache.set("c1", "abc", make_analysis())
        assert await cache.get("c1", "abc") is None
        assert len(cache) == 0


class TestRedisAnalysisCache:
    @pytest.mark.asyncio
    async def test_results_are_stored_as_json_with_ttl(self):
        client = FakeRedis()
        cache = RedisAnalysisCache(client, 600)
        result = make_analysis(toxicity=30)
        await cache.set("c1", "abc", result)

        assert client.expiry[cache_key("c1", "abc")] == 600
        assert await cache.get("c1", "abc") == result

    @pytest.mark.asyncio
    async def test_backend_errors_are_misses(self):
        cache = RedisAnalysisCache(FakeRedis(fail=True), 600)
        await cache.set("c1", "abc", make_analysis())
        assert await cache.get("c1", "abc") is None

    @pytest.mark.asyncio
    async def test_corrupt_payload_is_a_miss(self):
        client = FakeRedis()
        client.data[cache_key("c1", "abc")] = '{"not": "an analysis"}'
        assert await RedisAnalysisCache(client, 600).get("c1", "abc") is None

    @pytest.mark.asyncio
    async def test_backend_selection(self):
        memory = build_analysis_cache(Settings(redis_url=""))
        assert isinstance(memory, MemoryAnalysisCache)
        remote = build_analysis_cache(Settings(redis_url="redis://localhost:6379/0"))
        assert isinstance(remote, RedisAnalysisCache)
        await remote.aclose()


class TestBackgroundTasks:
    @pytest.mark.asyncio
    async def test_drain_waits_for_nested_tasks(self):
        background = BackgroundTasks()
        done = []

        async def child():
            await asyncio.sleep(0)
            done.append("child")

        async def parent():
            background.spawn(child(), name="child")
            done.append("parent")

        background.spawn(parent(), name="parent")
        await background.drain()
        assert done == ["parent", "child"]
        assert len(background) == 0

    @pytest.mark.asyncio
    async def test_failures_do_not_escape(self):
        background = BackgroundTasks()

        async def explode():
            raise RuntimeError("side effect failed")

        background.spawn(explode(), name="explode")
        await background.drain()
        assert len(background) == 0
