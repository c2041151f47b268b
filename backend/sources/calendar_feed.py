"""
Calendar (ICS) feed source.

Fixture calendars list one VEVENT per match with a "Home v Away" summary.
Team lookups read a per-team feed when a URL template is configured, or
filter the shared feed by team name otherwise.
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Sequence

from icalendar import Calendar

from aggregator.teams import slugify, teams_match
from shared.config import Settings
from shared.errors import ConfigurationMissing, ParseMismatch
from shared.models.domain import CalendarEvent, CandidateFixture, RequestedMatch
from shared.models.enums import SourceId
from shared.utils.cache import TTLCache
from shared.utils.dates import parse_instant, utcnow
from shared.utils.http_client import SourceHTTPClient
from shared.utils.logging import get_logger

from sources.base import BaseSource

logger = get_logger(__name__)

_SUMMARY_SPLIT = re.compile(r"\s+(?:v|vs|vs\.)\s+|\s+-\s+", re.IGNORECASE)
ICS_ACCEPT = "text/calendar,text/plain,*/*;q=0.8"


def parse_calendar(text: str) -> list[CalendarEvent]:
    """All VEVENTs with a usable start time; all-day dates start at 00:00 UTC."""
    try:
        calendar = Calendar.from_ical(text)
    except ValueError as exc:
        raise ParseMismatch(f"calendar document could not be parsed: {exc}") from exc

    events: list[CalendarEvent] = []
    for component in calendar.walk("VEVENT"):
        dtstart = component.get("DTSTART")
        start = parse_instant(dtstart.dt) if dtstart is not None else None
        if start is None:
            continue
        events.append(
            CalendarEvent(
                start=start,
                summary=str(component.get("SUMMARY", "")).strip(),
                location=str(component.get("LOCATION", "")).strip(),
                description=str(component.get("DESCRIPTION", "")).strip(),
            )
        )
    return events


def filter_events(
    events: Iterable[CalendarEvent],
    now: datetime,
    days_ahead: int,
    team_filters: Sequence[str] = (),
) -> list[CalendarEvent]:
    """Events starting within ``now .. now + days_ahead`` whose summary mentions any filter, by start."""
    cutoff = now + timedelta(days=days_ahead)
    needles = [f.strip().lower() for f in team_filters if f and f.strip()]
    kept = []
    for event in events:
        if event.start < now or event.start > cutoff:
            continue
        if needles and not any(n in event.summary.lower() for n in needles):
            continue
        kept.append(event)
    return sorted(kept, key=lambda e: e.start)


def split_summary(summary: str) -> tuple[str, str]:
    parts = _SUMMARY_SPLIT.split(summary or "", maxsplit=1)
    if len(parts) != 2:
        return "", ""
    return parts[0].strip(), parts[1].strip()


class CalendarFeedSource(BaseSource):
    """Fixtures from a configured ICS feed."""

    source_id = SourceId.FOOTBALLDATA_ICS
    supports_team_fixtures = True

    def __init__(
        self,
        http_client: SourceHTTPClient,
        cache: TTLCache,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(http_client, cache, settings)
        self._clock = clock

    async def fetch_events(
        self,
        url: str,
        team_filters: Sequence[str] = (),
        now: Optional[datetime] = None,
        days_ahead: Optional[int] = None,
    ) -> list[CalendarEvent]:
        """Download one feed and apply the lookahead window and team filters. Raises on failure."""
        text = await self._http.get_text(url, headers={"Accept": ICS_ACCEPT})
        events = filter_events(
            parse_calendar(text),
            now=now or self._clock(),
            days_ahead=self._settings.calendar_days_ahead if days_ahead is None else days_ahead,
            team_filters=team_filters,
        )
        logger.debug("calendar_feed_loaded", url=url, events=len(events))
        return events

    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        if not self._settings.calendar_url:
            raise ConfigurationMissing("calendar_url is not configured")

        events = await self.fetch_events(
            self._settings.calendar_url,
            self._settings.calendar_team_filters,
        )
        candidates = []
        for event in events:
            candidate = self.to_candidate(event)
            if candidate is None:
                continue
            sides = (candidate.home_team, candidate.away_team)
            if any(teams_match(s, requested.home_team) for s in sides) and any(
                teams_match(s, requested.away_team) for s in sides
            ):
                candidates.append(candidate)
        return candidates

    def to_candidate(self, event: CalendarEvent) -> Optional[CandidateFixture]:
        home, away = split_summary(event.summary)
        if not home or not away:
            return None
        return CandidateFixture(
            home_team=home,
            away_team=away,
            date_time=event.start,
            venue=event.location or None,
            summary=event.summary,
            source_id=self.name,
        )

    # ── Per-team feeds ──────────────────────────────────────────────────
    def team_feed_url(self, team: str) -> Optional[str]:
        template = self._settings.calendar_team_url_template
        slug = slugify(team)
        if not template or not slug:
            return None
        return template.format(slug=slug)

    async def _fetch_team(self, team: str, now: datetime, days_ahead: int) -> list[CandidateFixture]:
        url = self.team_feed_url(team)
        if url is not None:
            events = await self.fetch_events(url, now=now, days_ahead=days_ahead)
        elif self._settings.calendar_url:
            events = await self.fetch_events(
                self._settings.calendar_url,
                team_filters=[team],
                now=now,
                days_ahead=days_ahead,
            )
        else:
            raise ConfigurationMissing("neither calendar_team_url_template nor calendar_url is configured")

        candidates = []
        for event in events:
            candidate = self.to_candidate(event)
            if candidate is not None:
                candidates.append(candidate)
        return candidates
