"""
Remote broadcast-listing scraping service client.

The service runs a headless browser elsewhere and answers
POST /scrape/lstv with the matched listing's kickoff and per-region
channels. It is slow and sometimes down, so it sits behind a long TTL.
"""
from __future__ import annotations

from typing import Any

from shared.errors import ConfigurationMissing, ParseMismatch
from shared.models.domain import CandidateFixture, ChannelEntry, RequestedMatch
from shared.models.enums import SourceId
from shared.utils.dates import parse_instant
from shared.utils.logging import get_logger

from sources.base import BaseSource

logger = get_logger(__name__)

SCRAPE_PATH = "/scrape/lstv"
API_KEY_HEADER = "x-api-key"
MIN_MATCH_SCORE = 50


class RemoteBroadcastSource(BaseSource):
    """Client for the remote listing scraper."""

    source_id = SourceId.REMOTE_BROADCAST

    @property
    def timeout_s(self) -> float:
        return self._settings.remote_broadcast_timeout_s

    def build_payload(self, requested: RequestedMatch) -> dict[str, Any]:
        return {
            "home": requested.home_team,
            "away": requested.away_team,
            "dateUtc": requested.reference_time.isoformat().replace("+00:00", "Z"),
            "leagueHint": requested.league_hint,
        }

    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        if not self._settings.remote_broadcast_url:
            raise ConfigurationMissing("remote_broadcast_url is not configured")

        body = await self._http.post_json(
            SCRAPE_PATH,
            self.build_payload(requested),
            headers={API_KEY_HEADER: self._settings.remote_broadcast_key},
        )
        if not isinstance(body, dict):
            raise ParseMismatch(f"{self.name}: expected an object, got {type(body).__name__}")
        return self.parse_response(body, requested)

    def parse_response(self, body: dict[str, Any], requested: RequestedMatch) -> list[CandidateFixture]:
        match_score = body.get("matchScore")
        if isinstance(match_score, (int, float)) and match_score < MIN_MATCH_SCORE:
            logger.info(
                "remote_broadcast_low_match_score",
                score=match_score,
                url=body.get("url"),
            )
            return []

        channels: list[ChannelEntry] = []
        for row in body.get("regionChannels") or []:
            if not isinstance(row, dict):
                continue
            channel = str(row.get("channel") or "").strip()
            if not channel:
                continue
            region = str(row.get("region") or "").strip() or "Unknown"
            channels.append(ChannelEntry(region=region, channel_name=channel, source_id=self.name))

        kickoff = parse_instant(body.get("kickoffUtc"))
        league = (body.get("league") or "").strip() or None
        if not channels and kickoff is None:
            return []

        # The service answers for the teams it was asked about
        return [
            CandidateFixture(
                home_team=requested.home_team,
                away_team=requested.away_team,
                date_time=kickoff,
                league=league,
                channels=tuple(channels),
                summary=f"{requested.home_team} v {requested.away_team}",
                source_id=self.name,
            )
        ]
