"""AnalysisResult cache keyed by content id and text digest.

Key format: analysis:{content_id}:{digest}

A hit returns the identical AnalysisResult for the same content version, so
re-analysis is idempotent. The cache is an optimisation only: every backend
error is logged and treated as a miss.
"""

import time
from collections import OrderedDict
from typing import Optional, Protocol

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError
from redis.exceptions import RedisError

from modcore.config import Settings
from modcore.schemas.analysis import AnalysisResult

log = structlog.get_logger()


def cache_key(content_id: str, digest: str) -> str:
    return f"analysis:{content_id}:{digest}"


class AnalysisCache(Protocol):
    async def get(self, content_id: str, digest: str) -> Optional[AnalysisResult]: ...

    async def set(self, content_id: str, digest: str, result: AnalysisResult) -> None: ...

    async def aclose(self) -> None: ...


class RedisAnalysisCache:
    """Stores results as JSON with a TTL in Redis."""

    def __init__(self, client: aioredis.Redis, ttl_seconds: int) -> None:
        self._client = client
        self._ttl = ttl_seconds

    async def get(self, content_id: str, digest: str) -> Optional[AnalysisResult]:
        key = cache_key(content_id, digest)
        try:
            payload = await self._client.get(key)
        except RedisError:
            log.warning("analysis_cache_get_failed", key=key, exc_info=True)
            return None
        if payload is None:
            return None
        try:
            return AnalysisResult.model_validate_json(payload)
        except ValidationError:
            log.warning("analysis_cache_payload_invalid", key=key)
            return None

    async def set(self, content_id: str, digest: str, result: AnalysisResult) -> None:
        key = cache_key(content_id, digest)
        try:
            await self._client.set(key, result.model_dump_json(), ex=self._ttl)
        except RedisError:
            log.warning("analysis_cache_set_failed", key=key, exc_info=True)

    async def aclose(self) -> None:
        await self._client.aclose()


class MemoryAnalysisCache:
    """Bounded in-process LRU with per-entry expiry."""

    def __init__(self, max_entries: int, ttl_seconds: int) -> None:
        self._entries: OrderedDict[str, tuple[float, AnalysisResult]] = OrderedDict()
        self._max_entries = max_entries
        self._ttl = ttl_seconds

    async def get(self, content_id: str, digest: str) -> Optional[AnalysisResult]:
        key = cache_key(content_id, digest)
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, result = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return result

    async def set(self, content_id: str, digest: str, result: AnalysisResult) -> None:
        key = cache_key(content_id, digest)
        self._entries[key] = (time.monotonic() + self._ttl, result)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def aclose(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def build_analysis_cache(app_settings: Settings) -> AnalysisCache:
    """Redis-backed cache when redis_url is configured, in-process otherwise."""
    if app_settings.redis_url:
        client = aioredis.from_url(
            app_settings.redis_url, encoding="utf-8", decode_responses=True
        )
        return RedisAnalysisCache(client, app_settings.analysis_cache_ttl_seconds)
    return MemoryAnalysisCache(
        app_settings.analysis_cache_max_entries, app_settings.analysis_cache_ttl_seconds
    )
