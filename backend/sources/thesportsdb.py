"""
TheSportsDB source.
Free v1 JSON API; supplies kickoff, league, venue and some TV listings.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from aggregator.merge import normalize_fixture
from aggregator.teams import teams_match
from shared.errors import AggregatorError, UpstreamUnavailable
from shared.models.domain import CandidateFixture, ChannelEntry, RequestedMatch
from shared.models.enums import SourceId
from shared.utils.dates import iso_date_only
from shared.utils.logging import get_logger

from sources.base import BaseSource

logger = get_logger(__name__)

TSDB_BASE_URL = "https://www.thesportsdb.com/api/v1/json"
UNKNOWN_REGION = "Unknown"


class SportsDatabaseSource(BaseSource):
    """TheSportsDB fixture lookup by home team's upcoming events."""

    source_id = SourceId.THESPORTSDB
    supports_team_fixtures = True

    def api_keys(self) -> list[str]:
        """Configured key first, then the public fallbacks, without repeats."""
        keys = [self._settings.thesportsdb_api_key]
        for key in self._settings.thesportsdb_fallback_keys:
            if key not in keys:
                keys.append(key)
        return keys

    async def _with_api_keys(
        self,
        call: Callable[[str], Awaitable[list[CandidateFixture]]],
    ) -> list[CandidateFixture]:
        """Run ``call`` with each API key until one is not rejected with a 404."""
        last_exc: Optional[UpstreamUnavailable] = None
        for key in self.api_keys():
            try:
                return await call(key)
            except UpstreamUnavailable as exc:
                if exc.status_code != 404:
                    raise
                logger.info("thesportsdb_key_rejected", key=key)
                last_exc = exc
        if last_exc:
            raise last_exc
        return []

    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        return await self._with_api_keys(lambda key: self._fetch_with_key(key, requested))

    async def _fetch_team(self, team: str, now: datetime, days_ahead: int) -> list[CandidateFixture]:
        return await self._with_api_keys(lambda key: self._team_events(key, team))

    async def _fetch_with_key(self, key: str, requested: RequestedMatch) -> list[CandidateFixture]:
        team = await self._search_team(key, requested.home_team)
        if team is None:
            logger.info("thesportsdb_team_not_found", team=requested.home_team)
            return []

        events = await self._upcoming_events(key, str(team.get("idTeam", "")))
        match_date = iso_date_only(requested.date)
        event = self._find_event(events, requested, match_date)
        if event is None:
            logger.info(
                "thesportsdb_fixture_not_found",
                home=requested.home_team,
                away=requested.away_team,
                date=match_date,
            )
            return []

        candidate = normalize_fixture(event, self.name, default_region=UNKNOWN_REGION)
        tv_channels = await self._tv_listings(key, str(event.get("idEvent") or ""))
        if tv_channels:
            candidate = candidate.model_copy(update={"channels": candidate.channels + tuple(tv_channels)})
        return [candidate]

    @staticmethod
    def _find_event(
        events: list[dict[str, Any]],
        requested: RequestedMatch,
        match_date: str,
    ) -> Optional[dict[str, Any]]:
        for event in events:
            if event.get("dateEvent") != match_date:
                continue
            event_home = event.get("strHomeTeam") or ""
            event_away = event.get("strAwayTeam") or ""
            home_ok = teams_match(event_home, requested.home_team) or teams_match(event_away, requested.home_team)
            away_ok = teams_match(event_home, requested.away_team) or teams_match(event_away, requested.away_team)
            if home_ok and away_ok:
                return event
        return None

    async def _team_events(self, key: str, name: str) -> list[CandidateFixture]:
        team = await self._search_team(key, name)
        if team is None:
            logger.info("thesportsdb_team_not_found", team=name)
            return []

        candidates = []
        for event in await self._upcoming_events(key, str(team.get("idTeam", ""))):
            candidate = normalize_fixture(event, self.name, default_region=UNKNOWN_REGION)
            tv_channels = await self._tv_listings(key, str(event.get("idEvent") or ""))
            if tv_channels:
                candidate = candidate.model_copy(update={"channels": candidate.channels + tuple(tv_channels)})
            candidates.append(candidate)
        return candidates

    # ── API helpers ─────────────────────────────────────────────────────
    async def _search_team(self, key: str, name: str) -> Optional[dict[str, Any]]:
        data = await self._http.get_json(f"/{key}/searchteams.php", params={"t": name.strip()})
        teams = (data or {}).get("teams") or []
        return teams[0] if isinstance(teams, list) and teams else None

    async def _upcoming_events(self, key: str, team_id: str) -> list[dict[str, Any]]:
        if not team_id:
            return []
        data = await self._http.get_json(f"/{key}/eventsnext.php", params={"id": team_id})
        events = (data or {}).get("events") or []
        return events if isinstance(events, list) else []

    async def _tv_listings(self, key: str, event_id: str) -> list[ChannelEntry]:
        """TV rows for an event. The endpoint is patchy, so failures only lose channels."""
        if not event_id:
            return []
        try:
            data = await self._http.get_json(f"/{key}/lookuptv.php", params={"id": event_id})
        except AggregatorError as exc:
            logger.info("thesportsdb_tv_lookup_failed", event_id=event_id, error=str(exc))
            return []

        rows = (data or {}).get("tvevent") or []
        channels: list[ChannelEntry] = []
        for row in rows if isinstance(rows, list) else []:
            name = (row.get("strChannel") or "").strip()
            if not name:
                continue
            region = (row.get("strCountry") or "").strip() or UNKNOWN_REGION
            channels.append(ChannelEntry(region=region, channel_name=name, source_id=self.name))
        return channels
