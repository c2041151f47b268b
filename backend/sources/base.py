"""
Abstract base class for all fixture and broadcast sources.
Defines the adapter contract and the never-raise boundary around it.
"""
from __future__ import annotations

import abc
import asyncio
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Optional

from pydantic import TypeAdapter

from shared.config import Settings, get_settings
from shared.errors import ErrorKind, SourceTimeout, UpstreamRateLimited, classify
from shared.models.domain import CandidateFixture, RequestedMatch
from shared.models.enums import CacheStatus, SourceId
from shared.utils.cache import TTLCache, cache_key
from shared.utils.http_client import SourceHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import SOURCE_CANDIDATES, SOURCE_LATENCY, SOURCE_RESULTS, atrack_latency

logger = get_logger(__name__)

_CANDIDATES = TypeAdapter(list[CandidateFixture])


def encode_candidates(candidates: list[CandidateFixture]) -> str:
    return _CANDIDATES.dump_json(candidates).decode("utf-8")


def decode_candidates(payload: str) -> list[CandidateFixture]:
    return _CANDIDATES.validate_json(payload)


@dataclass(frozen=True)
class SourceResult:
    """Tagged outcome of one adapter call: ok(candidates) or err(kind, reason)."""
    source_id: SourceId
    candidates: tuple[CandidateFixture, ...] = ()
    error_kind: Optional[ErrorKind] = None
    reason: str = ""
    cache_status: Optional[CacheStatus] = None
    latency_ms: float = 0.0

    @classmethod
    def ok(
        cls,
        source_id: SourceId,
        candidates: list[CandidateFixture],
        cache_status: Optional[CacheStatus] = None,
    ) -> "SourceResult":
        return cls(source_id=source_id, candidates=tuple(candidates), cache_status=cache_status)

    @classmethod
    def err(cls, source_id: SourceId, kind: ErrorKind, reason: str) -> "SourceResult":
        return cls(source_id=source_id, error_kind=kind, reason=reason)

    @property
    def is_ok(self) -> bool:
        return self.error_kind is None


class BaseSource(abc.ABC):
    """
    Abstract base class for upstream sources.

    Subclasses implement ``_fetch`` and may raise anything. The base class
    handles the cache lookup, the per-call timeout, stale fallback and the
    conversion of every failure into an empty candidate list.
    """

    source_id: SourceId
    # Whether _fetch_team is implemented (per-team fixture listings).
    supports_team_fixtures: bool = False

    def __init__(
        self,
        http_client: SourceHTTPClient,
        cache: TTLCache,
        settings: Settings | None = None,
    ) -> None:
        self._http = http_client
        self._cache = cache
        self._settings = settings or get_settings()

    @property
    def name(self) -> str:
        return self.source_id.value

    @property
    def ttl_s(self) -> int:
        return self._settings.ttl_for(self.source_id.value)

    @property
    def timeout_s(self) -> float:
        return self._settings.source_timeout_s

    async def start(self) -> None:
        """Initialize the source HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the source HTTP client."""
        await self._http.close()

    def is_applicable(self, requested: RequestedMatch) -> bool:
        """Whether this source has enough input to run for ``requested``."""
        return True

    def cache_key_for(self, requested: RequestedMatch) -> str:
        return cache_key(
            self.source_id.value,
            requested.home_team,
            requested.away_team,
            requested.date,
            requested.league_hint,
        )

    async def _load(self, requested: RequestedMatch) -> str:
        try:
            candidates = await asyncio.wait_for(self._fetch(requested), timeout=self.timeout_s)
        except asyncio.TimeoutError as exc:
            raise SourceTimeout(f"{self.name}: no answer within {self.timeout_s}s") from exc
        return encode_candidates(candidates)

    async def fetch(self, requested: RequestedMatch) -> SourceResult:
        """Run the adapter behind the cache and return a tagged result. Never raises."""
        if not self.is_applicable(requested):
            return SourceResult.ok(self.source_id, [])

        start = time.perf_counter()
        try:
            payload, status = await self._cache.fetch_with_fallback(
                self.cache_key_for(requested),
                self.ttl_s,
                lambda: self._load(requested),
            )
            candidates = decode_candidates(payload)
        except Exception as exc:
            result = SourceResult.err(self.source_id, classify(exc), str(exc))
        else:
            result = SourceResult.ok(self.source_id, candidates, cache_status=status)
        return replace(result, latency_ms=round((time.perf_counter() - start) * 1000, 2))

    async def fetch_candidates(self, requested: RequestedMatch) -> list[CandidateFixture]:
        """
        Candidate fixtures for ``requested``; empty on any failure.

        This is the only method the orchestrator calls.
        """
        async with atrack_latency(SOURCE_LATENCY, source=self.name):
            result = await self.fetch(requested)

        if not result.is_ok:
            assert result.error_kind is not None
            SOURCE_RESULTS.labels(source=self.name, outcome=result.error_kind.value).inc()
            logger.warning(
                "source_fetch_failed",
                source=self.name,
                error_kind=result.error_kind.value,
                error=result.reason,
                home=requested.home_team,
                away=requested.away_team,
                latency_ms=result.latency_ms,
            )
            return []

        SOURCE_RESULTS.labels(source=self.name, outcome="ok").inc()
        SOURCE_CANDIDATES.labels(source=self.name).inc(len(result.candidates))
        logger.debug(
            "source_fetch_complete",
            source=self.name,
            candidates=len(result.candidates),
            cache_status=result.cache_status.value if result.cache_status else None,
            latency_ms=result.latency_ms,
        )
        return list(result.candidates)

    # ── Team fixtures ───────────────────────────────────────────────────
    def team_cache_key(self, team: str, now: datetime, days_ahead: int) -> str:
        return cache_key(f"{self.source_id.value}:team", team, "", now, f"{days_ahead}d")

    async def _load_team(self, team: str, now: datetime, days_ahead: int) -> str:
        try:
            candidates = await asyncio.wait_for(
                self._fetch_team(team, now, days_ahead),
                timeout=self.timeout_s,
            )
        except asyncio.TimeoutError as exc:
            raise SourceTimeout(f"{self.name}: no team listing within {self.timeout_s}s") from exc
        return encode_candidates(candidates)

    async def fetch_team_fixtures(self, team: str, now: datetime, days_ahead: int) -> list[CandidateFixture]:
        """
        Fixtures involving ``team`` that start within ``days_ahead`` of ``now``.

        Goes through the same cache, timeout and stale fallback as
        ``fetch_candidates``. Failures give an empty list, except a rate
        limit with nothing cached to fall back on: that is re-raised so a
        batch over many teams can stop.
        """
        if not self.supports_team_fixtures:
            return []

        try:
            payload, status = await self._cache.fetch_with_fallback(
                self.team_cache_key(team, now, days_ahead),
                self.ttl_s,
                lambda: self._load_team(team, now, days_ahead),
            )
            candidates = decode_candidates(payload)
        except UpstreamRateLimited:
            SOURCE_RESULTS.labels(source=self.name, outcome=ErrorKind.UPSTREAM_RATE_LIMITED.value).inc()
            raise
        except Exception as exc:
            kind = classify(exc)
            SOURCE_RESULTS.labels(source=self.name, outcome=kind.value).inc()
            logger.warning(
                "source_team_fetch_failed",
                source=self.name,
                team=team,
                error_kind=kind.value,
                error=str(exc),
            )
            return []

        cutoff = now + timedelta(days=days_ahead)
        upcoming = [
            c for c in candidates
            if c.date_time is None or now <= c.date_time <= cutoff
        ]
        SOURCE_RESULTS.labels(source=self.name, outcome="ok").inc()
        SOURCE_CANDIDATES.labels(source=self.name).inc(len(upcoming))
        logger.debug(
            "source_team_fetch_complete",
            source=self.name,
            team=team,
            candidates=len(upcoming),
            cache_status=status.value,
        )
        return upcoming

    async def _fetch_team(self, team: str, now: datetime, days_ahead: int) -> list[CandidateFixture]:
        """Upstream fixtures for one team. Sources setting ``supports_team_fixtures`` override this."""
        raise NotImplementedError(f"{self.name} has no team fixture listing")

    # ── Abstract methods (each source implements these) ─────────────────
    @abc.abstractmethod
    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        """
        Fetch candidates from the upstream.

        May raise any AggregatorError (or anything else); the caller
        converts it into an empty result.
        """
        ...
