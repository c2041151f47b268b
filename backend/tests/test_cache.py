"""
Tests for the TTL cache: freshness, stale fallback and backends.

Run: pytest backend/tests/test_cache.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.errors import UpstreamUnavailable
from shared.models.domain import CacheEntry
from shared.models.enums import CacheStatus
from shared.utils.cache import MemoryCacheBackend, RedisCacheBackend, TTLCache, cache_key
from shared.utils.redis_manager import RedisManager


class FakeClock:
    """Mutable clock injected into TTLCache."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 12, 14, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache(clock: FakeClock) -> TTLCache:
    return TTLCache(MemoryCacheBackend(), clock=clock)


# ── fetch_with_fallback ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_miss_calls_loader_and_stores(cache: TTLCache) -> None:
    loader = AsyncMock(return_value="fresh-payload")
    payload, status = await cache.fetch_with_fallback("k", 60, loader)
    assert payload == "fresh-payload"
    assert status is CacheStatus.REFRESHED
    assert await cache.get("k") == "fresh-payload"
    loader.assert_awaited_once()


@pytest.mark.asyncio
async def test_fresh_hit_skips_loader(cache: TTLCache, clock: FakeClock) -> None:
    await cache.put("k", "cached")
    clock.advance(30)
    loader = AsyncMock(return_value="new")
    payload, status = await cache.fetch_with_fallback("k", 60, loader)
    assert (payload, status) == ("cached", CacheStatus.FRESH)
    loader.assert_not_awaited()


@pytest.mark.asyncio
async def test_age_equal_to_ttl_is_fresh(cache: TTLCache, clock: FakeClock) -> None:
    await cache.put("k", "cached")
    clock.advance(60)
    loader = AsyncMock(return_value="new")
    _, status = await cache.fetch_with_fallback("k", 60, loader)
    assert status is CacheStatus.FRESH
    loader.assert_not_awaited()


@pytest.mark.asyncio
async def test_expired_entry_refreshed(cache: TTLCache, clock: FakeClock) -> None:
    await cache.put("k", "old")
    clock.advance(61)
    payload, status = await cache.fetch_with_fallback("k", 60, AsyncMock(return_value="new"))
    assert (payload, status) == ("new", CacheStatus.REFRESHED)
    assert await cache.get_if_fresh("k", 60) == "new"


@pytest.mark.asyncio
async def test_stale_fallback_on_loader_failure(cache: TTLCache, clock: FakeClock) -> None:
    await cache.put("k", "old")
    stored_at = clock.now
    clock.advance(3600)
    loader = AsyncMock(side_effect=UpstreamUnavailable("boom", status_code=503))
    payload, status = await cache.fetch_with_fallback("k", 60, loader)
    assert (payload, status) == ("old", CacheStatus.STALE_FALLBACK)
    # Entry is not rewritten, so it is still stale afterwards
    assert await cache.get_if_fresh("k", 60) is None
    entry = await cache._backend.read("k")
    assert entry is not None
    assert entry.stored_at == stored_at


@pytest.mark.asyncio
async def test_failure_without_entry_propagates(cache: TTLCache) -> None:
    loader = AsyncMock(side_effect=UpstreamUnavailable("boom", status_code=500))
    with pytest.raises(UpstreamUnavailable):
        await cache.fetch_with_fallback("missing", 60, loader)
    assert await cache.get("missing") is None


@pytest.mark.asyncio
async def test_get_if_fresh(cache: TTLCache, clock: FakeClock) -> None:
    assert await cache.get_if_fresh("k", 10) is None
    await cache.put("k", "v")
    assert await cache.get_if_fresh("k", 10) == "v"
    clock.advance(11)
    assert await cache.get_if_fresh("k", 10) is None
    assert await cache.get("k") == "v"


# ── Backends ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_memory_backend_last_write_wins() -> None:
    backend = MemoryCacheBackend()
    now = datetime(2024, 12, 14, tzinfo=timezone.utc)
    await backend.write(CacheEntry(key="k", payload="a", stored_at=now))
    await backend.write(CacheEntry(key="k", payload="b", stored_at=now))
    entry = await backend.read("k")
    assert entry is not None and entry.payload == "b"
    assert len(backend) == 1


@pytest.fixture
def redis_manager() -> MagicMock:
    manager = MagicMock()
    manager.get_cache_entry = AsyncMock(return_value=None)
    manager.set_cache_entry = AsyncMock()
    return manager


@pytest.mark.asyncio
async def test_redis_backend_round_trip(redis_manager: MagicMock) -> None:
    backend = RedisCacheBackend(redis_manager)
    entry = CacheEntry(key="k", payload="[]", stored_at=datetime(2024, 12, 14, tzinfo=timezone.utc))
    await backend.write(entry)
    redis_manager.set_cache_entry.assert_awaited_once_with("k", entry.model_dump_json())

    redis_manager.get_cache_entry.return_value = entry.model_dump_json()
    assert await backend.read("k") == entry


@pytest.mark.asyncio
async def test_redis_backend_corrupt_entry_reads_as_missing(redis_manager: MagicMock) -> None:
    redis_manager.get_cache_entry.return_value = "{not json"
    assert await RedisCacheBackend(redis_manager).read("k") is None


@pytest.mark.asyncio
async def test_redis_backend_missing(redis_manager: MagicMock) -> None:
    assert await RedisCacheBackend(redis_manager).read("k") is None


# ── cache_key ───────────────────────────────────────────────────────────

class TestCacheKey:
    when = datetime(2024, 12, 15, 15, 0, tzinfo=timezone.utc)

    def test_prefixed_with_source(self) -> None:
        key = cache_key("thesportsdb", "Arsenal", "Chelsea", self.when)
        source, digest = key.split(":")
        assert source == "thesportsdb"
        assert len(digest) == 64

    def test_case_and_whitespace_insensitive(self) -> None:
        a = cache_key("bbc", "Arsenal", "Chelsea", self.when)
        b = cache_key("bbc", "  ARSENAL ", "chelsea", self.when.replace(hour=20))
        assert a == b

    def test_distinguishes_inputs(self) -> None:
        base = cache_key("bbc", "Arsenal", "Chelsea", self.when)
        assert base != cache_key("skysports", "Arsenal", "Chelsea", self.when)
        assert base != cache_key("bbc", "Chelsea", "Arsenal", self.when)
        assert base != cache_key("bbc", "Arsenal", "Chelsea", self.when, league="Premier League")
        assert base != cache_key("bbc", "Arsenal", "Chelsea", self.when + timedelta(days=1))


class TestRedisManager:

    @pytest.mark.asyncio
    async def test_cache_entries_use_source_namespace(self) -> None:
        manager = RedisManager(Settings(_env_file=None))
        pool = MagicMock()
        pool.set = AsyncMock()
        pool.get = AsyncMock(return_value="payload")
        manager._pool = pool

        await manager.set_cache_entry("bbc:abc", "payload")
        pool.set.assert_awaited_once_with("cache:source:bbc:abc", "payload")
        assert await manager.get_cache_entry("bbc:abc") == "payload"
        pool.get.assert_awaited_once_with("cache:source:bbc:abc")

    def test_client_requires_connect(self) -> None:
        with pytest.raises(RuntimeError):
            RedisManager(Settings(_env_file=None)).client
