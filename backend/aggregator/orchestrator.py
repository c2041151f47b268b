"""
Aggregation orchestrator.

Runs the enabled source adapters one after another in priority order,
scores each adapter's candidates against the requested match, and merges
the accepted ones into a single FixtureRecord. Sequential execution makes
"higher priority wins" hold for every scalar field.

Team listings run the same sources per team through the batch fetcher and
keep one record per fixture key.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional, Sequence

from shared.config import CacheBackendKind, Settings, get_settings
from shared.errors import ConfigurationMissing
from shared.models.domain import CandidateFixture, FixtureRecord, RequestedMatch
from shared.models.enums import AdapterState, SourceId
from shared.utils.batch import BatchFetcher
from shared.utils.cache import MemoryCacheBackend, RedisCacheBackend, TTLCache
from shared.utils.dates import utcnow
from shared.utils.logging import fixture_log_context, get_logger
from shared.utils.metrics import AGGREGATIONS
from shared.utils.redis_manager import RedisManager

from aggregator.merge import (
    MergeEngine,
    candidate_key,
    empty_record,
    fixture_key,
    format_kickoff_local,
    stations_flat,
)
from aggregator.scoring import ScoringWeights, best_candidate
from sources.base import BaseSource
from sources.registry import build_sources, parse_source_ids

logger = get_logger(__name__)


class Aggregator:
    """
    Fixture aggregator over a fixed set of source adapters.

    The only error ``aggregate`` raises is ConfigurationMissing; adapter
    failures surface as ``sources_used[id] == False``.
    """

    def __init__(
        self,
        sources: Sequence[BaseSource],
        settings: Settings | None = None,
        weights: ScoringWeights | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._weights = weights or ScoringWeights.from_settings(self._settings)
        self._sources: dict[SourceId, BaseSource] = {s.source_id: s for s in sources}

    @property
    def sources(self) -> dict[SourceId, BaseSource]:
        return dict(self._sources)

    async def start(self) -> None:
        for source in self._sources.values():
            await source.start()

    async def close(self) -> None:
        for source in self._sources.values():
            await source.close()

    async def __aenter__(self) -> "Aggregator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def resolve_sources(self, enabled_sources: Optional[Iterable[SourceId | str]]) -> list[SourceId]:
        """Enabled and registered source ids in priority order."""
        if enabled_sources is None:
            wanted = parse_source_ids(self._settings.enabled_sources)
        else:
            wanted = parse_source_ids(
                s.value if isinstance(s, SourceId) else str(s) for s in enabled_sources
            )
        ordered = sorted((sid for sid in wanted if sid in self._sources), key=lambda sid: sid.priority)
        if not ordered:
            raise ConfigurationMissing("No enabled source is registered with the aggregator.")
        return ordered

    @staticmethod
    def _enriched(requested: RequestedMatch, record: Optional[FixtureRecord]) -> RequestedMatch:
        """Request as seen by later adapters: kickoff and league filled from results so far."""
        if record is None:
            return requested
        return requested.model_copy(
            update={
                "known_kickoff_utc": requested.known_kickoff_utc or record.kickoff_utc,
                "league_hint": requested.league_hint or record.league,
            }
        )

    async def aggregate(
        self,
        requested: RequestedMatch,
        enabled_sources: Optional[Iterable[SourceId | str]] = None,
    ) -> FixtureRecord:
        order = self.resolve_sources(enabled_sources)
        with fixture_log_context(requested.home_team, requested.away_team, requested.date):
            return await self._aggregate(requested, order)

    async def _aggregate(self, requested: RequestedMatch, order: list[SourceId]) -> FixtureRecord:
        key = fixture_key(requested)
        engine = MergeEngine()
        seeded = empty_record(requested, [sid.value for sid in order])
        engine.seed(key, seeded)
        states: dict[SourceId, AdapterState] = {sid: AdapterState.PENDING for sid in order}

        for source_id in order:
            source = self._sources[source_id]
            current = self._enriched(requested, engine.get(key))
            candidates = await source.fetch_candidates(current)
            same_match = [c for c in candidates if candidate_key(c, requested) == key]
            if len(same_match) < len(candidates):
                logger.info(
                    "candidates_other_date",
                    source=source_id.value,
                    dropped=len(candidates) - len(same_match),
                    fixture_key=key,
                )
            best = best_candidate(same_match, current, self._weights)
            if best is None:
                states[source_id] = AdapterState.FAILED_AND_SKIPPED
                if same_match:
                    logger.info(
                        "candidates_rejected",
                        source=source_id.value,
                        candidates=len(same_match),
                        threshold=self._weights.accept_threshold,
                    )
                continue

            candidate, score = best
            engine.add(key, candidate.model_copy(update={"source_id": source_id.value}), requested)
            states[source_id] = AdapterState.SUCCEEDED
            logger.info(
                "candidate_accepted",
                source=source_id.value,
                score=score,
                summary=candidate.summary,
                channels=len(candidate.channels),
            )

        record = self._finalize(engine.get(key) or seeded, requested)
        AGGREGATIONS.labels(result="found" if record.has_data else "empty").inc()
        logger.info(
            "aggregation_complete",
            home=record.home_team,
            away=record.away_team,
            league=record.league,
            kickoff_utc=record.kickoff_utc.isoformat() if record.kickoff_utc else None,
            kickoff_local=record.kickoff_local,
            stations=len(record.stations_flat),
            sources=[sid for sid, used in record.sources_used.items() if used],
            states={sid.value: state.value for sid, state in states.items()},
        )
        return record

    def _finalize(self, record: FixtureRecord, requested: RequestedMatch) -> FixtureRecord:
        return self._present(
            record.model_copy(
                update={
                    "kickoff_utc": record.kickoff_utc or requested.reference_time,
                    "league": record.league or requested.league_hint,
                }
            )
        )

    def _present(self, record: FixtureRecord) -> FixtureRecord:
        """Fill the derived display fields."""
        return record.model_copy(
            update={
                "stations_flat": stations_flat(record.channels),
                "kickoff_local": format_kickoff_local(record.kickoff_utc, self._settings.timezone),
            }
        )

    async def aggregate_many(
        self,
        requests: Sequence[RequestedMatch],
        enabled_sources: Optional[Iterable[SourceId | str]] = None,
        concurrency: int | None = None,
    ) -> list[FixtureRecord]:
        """Independent aggregations run concurrently; results keep request order."""
        enabled = list(enabled_sources) if enabled_sources is not None else None
        # Fail fast before scheduling anything
        self.resolve_sources(enabled)
        semaphore = asyncio.Semaphore(max(1, concurrency or self._settings.max_concurrent_aggregations))

        async def _one(req: RequestedMatch) -> FixtureRecord:
            async with semaphore:
                return await self.aggregate(req, enabled)

        return list(await asyncio.gather(*(_one(r) for r in requests)))

    # ── Team fixtures ───────────────────────────────────────────────────
    async def fixtures_for_teams(
        self,
        teams: Sequence[str],
        days_ahead: int | None = None,
        enabled_sources: Optional[Iterable[SourceId | str]] = None,
        batch: BatchFetcher | None = None,
        now: Optional[datetime] = None,
    ) -> list[FixtureRecord]:
        """
        Upcoming fixtures for several teams, merged across sources.

        Teams are looked up one at a time through a rate-limited batch
        (at most ``batch_max_items`` teams, ``batch_delay_ms`` apart); a 429
        from any source stops the remaining teams. Every team's candidates
        from every source fold into one record per fixture key, so a match
        between two requested teams appears once with the union of its
        channels. Records come back by kickoff, undated ones last.
        """
        order = self.resolve_sources(enabled_sources)
        window = self._settings.team_days_ahead if days_ahead is None else days_ahead
        start = now or utcnow()
        fetcher = batch or BatchFetcher(
            max_items=self._settings.batch_max_items,
            inter_delay_ms=self._settings.batch_delay_ms,
            name="team_fixtures",
        )

        names = [t.strip() for t in teams if t and t.strip()]
        tasks = [
            lambda team=team: self._team_candidates(team, order, start, window)
            for team in names
        ]
        result = await fetcher.run(tasks)

        engine = MergeEngine()
        for candidates in result.results:
            for candidate in candidates:
                engine.add(fixture_key(candidate), candidate)

        records = sorted(
            (self._present(r) for r in engine.records().values()),
            key=lambda r: (r.kickoff_utc is None, r.kickoff_utc or start),
        )
        logger.info(
            "team_fixtures_complete",
            teams=len(names),
            calls_made=result.state.calls_made,
            rate_limited=result.state.stopped,
            fixtures=len(records),
            channels=sum(len(r.channels) for r in records),
        )
        return records

    async def _team_candidates(
        self,
        team: str,
        order: list[SourceId],
        now: datetime,
        days_ahead: int,
    ) -> list[CandidateFixture]:
        """Candidates for one team from every source in priority order. Rate limits propagate."""
        collected: list[CandidateFixture] = []
        for source_id in order:
            found = await self._sources[source_id].fetch_team_fixtures(team, now, days_ahead)
            collected.extend(c.model_copy(update={"source_id": source_id.value}) for c in found)
        logger.debug("team_candidates_collected", team=team, candidates=len(collected))
        return collected


# ── Wiring ──────────────────────────────────────────────────────────────
def _wanted_ids(enabled: Optional[list[SourceId | str]]) -> Optional[set[SourceId]]:
    if enabled is None:
        return None
    return parse_source_ids(s.value if isinstance(s, SourceId) else str(s) for s in enabled)


@asynccontextmanager
async def open_cache(settings: Settings | None = None) -> AsyncIterator[TTLCache]:
    """TTLCache on the configured backend; Redis connections are closed on exit."""
    settings = settings or get_settings()
    if settings.cache_backend is CacheBackendKind.REDIS:
        redis = RedisManager(settings)
        await redis.connect()
        try:
            yield TTLCache(RedisCacheBackend(redis))
        finally:
            await redis.disconnect()
    else:
        yield TTLCache(MemoryCacheBackend())


async def aggregate_fixture(
    home_team: str,
    away_team: str,
    date_utc: datetime,
    league_hint: str | None = None,
    enabled_sources: Optional[Iterable[SourceId | str]] = None,
    settings: Settings | None = None,
    cache: TTLCache | None = None,
) -> FixtureRecord:
    """One-shot aggregation wiring cache, sources and aggregator from settings."""
    settings = settings or get_settings()
    requested = RequestedMatch(
        home_team=home_team,
        away_team=away_team,
        date=date_utc,
        league_hint=league_hint,
    )
    enabled = list(enabled_sources) if enabled_sources is not None else None
    wanted = _wanted_ids(enabled)

    async def _run(active_cache: TTLCache) -> FixtureRecord:
        sources = build_sources(active_cache, settings, enabled=wanted)
        async with Aggregator(sources, settings) as aggregator:
            return await aggregator.aggregate(requested, enabled)

    if cache is not None:
        return await _run(cache)
    async with open_cache(settings) as default_cache:
        return await _run(default_cache)


async def team_fixtures(
    teams: Sequence[str],
    days_ahead: int | None = None,
    enabled_sources: Optional[Iterable[SourceId | str]] = None,
    settings: Settings | None = None,
    cache: TTLCache | None = None,
) -> list[FixtureRecord]:
    """One-shot team listing wired from settings, like ``aggregate_fixture``."""
    settings = settings or get_settings()
    enabled = list(enabled_sources) if enabled_sources is not None else None
    wanted = _wanted_ids(enabled)

    async def _run(active_cache: TTLCache) -> list[FixtureRecord]:
        sources = build_sources(active_cache, settings, enabled=wanted)
        async with Aggregator(sources, settings) as aggregator:
            return await aggregator.fixtures_for_teams(teams, days_ahead, enabled)

    if cache is not None:
        return await _run(cache)
    async with open_cache(settings) as default_cache:
        return await _run(default_cache)
