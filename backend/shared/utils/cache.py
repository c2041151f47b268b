"""
TTL cache with stale fallback for upstream source payloads.

A fresh entry short-circuits the loader. When the loader fails, any stored
entry is served regardless of age and is not rewritten, so an unreliable
upstream degrades to its last good answer instead of to nothing.
"""
from __future__ import annotations

import asyncio
import hashlib
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Awaitable, Callable, Optional

from shared.models.domain import CacheEntry
from shared.models.enums import CacheStatus
from shared.utils.dates import iso_date_only, utcnow
from shared.utils.logging import get_logger
from shared.utils.metrics import CACHE_LOOKUPS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


def cache_key(
    source_id: str,
    home: str,
    away: str,
    date: datetime | None,
    league: str | None = None,
) -> str:
    """Stable request key: source id plus a sha256 of the normalised inputs."""
    parts = [
        (home or "").strip().lower(),
        (away or "").strip().lower(),
        iso_date_only(date),
        (league or "").strip().lower(),
    ]
    digest = hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()
    return f"{source_id}:{digest}"


# ── Backends ────────────────────────────────────────────────────────────
class CacheBackend(ABC):
    """Storage for one CacheEntry per key. Writes are last-write-wins."""

    @abstractmethod
    async def read(self, key: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def write(self, entry: CacheEntry) -> None:
        ...


class MemoryCacheBackend(CacheBackend):
    """Process-scoped dict storage."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def read(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def write(self, entry: CacheEntry) -> None:
        async with self._lock:
            self._entries[entry.key] = entry

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend):
    """One JSON-encoded CacheEntry per key, stored without a Redis expiry."""

    def __init__(self, redis: RedisManager) -> None:
        self._redis = redis

    async def read(self, key: str) -> Optional[CacheEntry]:
        raw = await self._redis.get_cache_entry(key)
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValueError:
            logger.warning("cache_entry_corrupt", key=key)
            return None

    async def write(self, entry: CacheEntry) -> None:
        await self._redis.set_cache_entry(entry.key, entry.model_dump_json())


# ── Cache ───────────────────────────────────────────────────────────────
class TTLCache:
    """Freshness policy over a CacheBackend."""

    def __init__(
        self,
        backend: CacheBackend | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._backend = backend or MemoryCacheBackend()
        self._clock = clock

    async def get(self, key: str) -> Optional[str]:
        """Payload of any age, or None."""
        entry = await self._backend.read(key)
        return entry.payload if entry else None

    async def get_if_fresh(self, key: str, ttl_s: float) -> Optional[str]:
        entry = await self._backend.read(key)
        if entry is None or not entry.is_fresh(ttl_s, self._clock()):
            return None
        return entry.payload

    async def put(self, key: str, payload: str) -> None:
        await self._backend.write(CacheEntry(key=key, payload=payload, stored_at=self._clock()))

    async def fetch_with_fallback(
        self,
        key: str,
        ttl_s: float,
        loader: Callable[[], Awaitable[str]],
    ) -> tuple[str, CacheStatus]:
        """
        Serve a fresh entry, else refresh through ``loader``.

        On loader failure a stale entry is returned untouched; with nothing
        stored the loader's exception propagates to the caller.
        """
        entry = await self._backend.read(key)
        now = self._clock()
        if entry is not None and entry.is_fresh(ttl_s, now):
            CACHE_LOOKUPS.labels(outcome=CacheStatus.FRESH.value).inc()
            logger.debug("cache_hit", key=key)
            return entry.payload, CacheStatus.FRESH

        try:
            payload = await loader()
        except Exception as exc:
            if entry is None:
                CACHE_LOOKUPS.labels(outcome="miss_failed").inc()
                raise
            CACHE_LOOKUPS.labels(outcome=CacheStatus.STALE_FALLBACK.value).inc()
            logger.warning(
                "cache_stale_fallback",
                key=key,
                age_s=round(entry.age(now).total_seconds(), 1),
                error=str(exc),
            )
            return entry.payload, CacheStatus.STALE_FALLBACK

        await self.put(key, payload)
        CACHE_LOOKUPS.labels(outcome=CacheStatus.REFRESHED.value).inc()
        return payload, CacheStatus.REFRESHED
