"""
HTML fixture-listing sources.

Broadcaster and listings sites publish fixture pages with a row per
match. ``GenericHtmlFixtureSource`` fetches a page, walks candidate row
selectors until one yields fixtures, and keeps the rows whose teams match
the request. Site subclasses supply URLs, selectors and channel names.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from bs4 import BeautifulSoup, Tag

from aggregator.merge import normalize_fixture
from aggregator.teams import slugify, teams_match
from shared.errors import UpstreamRateLimited, UpstreamUnavailable
from shared.models.domain import CandidateFixture, RequestedMatch
from shared.models.enums import SourceId
from shared.utils.logging import get_logger

from sources.base import BaseSource

logger = get_logger(__name__)

_VS_PATTERN = re.compile(r"([A-Za-z][A-Za-z\s\-'.&]*?)\s+(?:v|vs|versus)\.?\s+([A-Za-z][A-Za-z\s\-'.&]*)", re.IGNORECASE)
_TIME_TEXT = re.compile(r"\d{1,2}[:.]?\d{0,2}\s*(am|pm)?", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def _clean(text: str) -> str:
    return _WHITESPACE.sub(" ", text or "").strip()


class GenericHtmlFixtureSource(BaseSource):
    """Configurable scraper for one fixtures page layout."""

    base_url: str = ""
    row_selectors: tuple[str, ...] = ('[class*="fixture"]', '[class*="match"]')
    home_selector: str = '[class*="home"]'
    away_selector: str = '[class*="away"]'
    time_selector: str = "time[datetime], [datetime]"
    competition_selector: str = '[class*="competition"], [class*="tournament"]'
    channel_selector: str = '[class*="channel"], [class*="broadcast"]'
    known_channels: tuple[str, ...] = ()
    default_channels: tuple[str, ...] = ()
    default_region: str = "UK"
    listing_paths: tuple[str, ...] = ("/",)
    supports_team_fixtures = True

    def page_paths(self, requested: RequestedMatch) -> list[str]:
        return list(self.listing_paths)

    def team_page_paths(self, team: str) -> list[str]:
        return list(self.listing_paths)

    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        html = await self._fetch_page(self.page_paths(requested))
        rows = self.parse_fixtures(html)
        matched = [row for row in rows if self._row_matches(row, requested)]
        logger.info(
            "html_fixtures_parsed",
            source=self.name,
            rows=len(rows),
            matched=len(matched),
        )
        return [normalize_fixture(row, self.name, default_region=self.default_region) for row in matched]

    async def _fetch_team(self, team: str, now: datetime, days_ahead: int) -> list[CandidateFixture]:
        html = await self._fetch_page(self.team_page_paths(team))
        rows = [
            row for row in self.parse_fixtures(html)
            if teams_match(row.get("home", ""), team) or teams_match(row.get("away", ""), team)
        ]
        logger.info("html_team_fixtures_parsed", source=self.name, team=team, matched=len(rows))
        return [normalize_fixture(row, self.name, default_region=self.default_region) for row in rows]

    async def _fetch_page(self, paths: list[str]) -> str:
        """First page that loads. A 429 ends the attempt immediately."""
        last_exc: Optional[UpstreamUnavailable] = None
        for path in paths:
            try:
                return await self._http.get_text(path)
            except UpstreamRateLimited:
                raise
            except UpstreamUnavailable as exc:
                logger.info("html_fixtures_page_failed", source=self.name, path=path, error=str(exc))
                last_exc = exc
        if last_exc:
            raise last_exc
        raise UpstreamUnavailable(f"{self.name}: no fixture page configured")

    @staticmethod
    def _row_matches(row: dict[str, Any], requested: RequestedMatch) -> bool:
        sides = (row.get("home", ""), row.get("away", ""))
        home_ok = any(teams_match(side, requested.home_team) for side in sides)
        away_ok = any(teams_match(side, requested.away_team) for side in sides)
        return home_ok and away_ok

    # ── Parsing ─────────────────────────────────────────────────────────
    def parse_fixtures(self, html: str) -> list[dict[str, Any]]:
        soup = BeautifulSoup(html, "html.parser")
        for selector in self.row_selectors:
            fixtures: list[dict[str, Any]] = []
            for el in soup.select(selector):
                row = self.parse_row(el)
                if row is not None:
                    fixtures.append(row)
            if fixtures:
                return fixtures
        return []

    def parse_teams(self, el: Tag) -> tuple[str, str]:
        home_el = el.select_one(self.home_selector)
        away_el = el.select_one(self.away_selector)
        home = _clean(home_el.get_text(" ", strip=True)) if home_el else ""
        away = _clean(away_el.get_text(" ", strip=True)) if away_el else ""
        if home and away:
            return home, away

        match = _VS_PATTERN.search(_clean(el.get_text(" ", strip=True)))
        if not match:
            return "", ""
        home = _clean(_TIME_TEXT.sub("", match.group(1)))
        away = _clean(match.group(2))
        for channel in self.known_channels:
            away = _clean(re.sub(re.escape(channel), "", away, flags=re.IGNORECASE))
        return home, away

    def parse_row(self, el: Tag) -> Optional[dict[str, Any]]:
        if el.find("th") is not None:
            return None
        home, away = self.parse_teams(el)
        if not home or not away:
            return None

        time_el = el.select_one(self.time_selector)
        kickoff = time_el.get("datetime") if time_el else None

        comp_el = el.select_one(self.competition_selector)
        competition = _clean(comp_el.get_text(" ", strip=True)) if comp_el else ""

        channels = self.extract_channels(el.get_text(" ", strip=True))
        for node in el.select(self.channel_selector):
            channels.extend(self.extract_channels(node.get_text(" ", strip=True)))
        for img in el.select("img[alt]"):
            channels.extend(self.extract_channels(str(img.get("alt", ""))))
        if not channels:
            channels = list(self.default_channels)

        return {
            "home": home,
            "away": away,
            "kickoffUtc": kickoff,
            "competition": competition or None,
            "channels": list(dict.fromkeys(channels)),
        }

    def extract_channels(self, text: str) -> list[str]:
        """Known channel names mentioned in ``text``, most specific names only."""
        lowered = (text or "").lower()
        found = [c for c in self.known_channels if c.lower() in lowered]
        return [
            c for c in found
            if not any(other != c and c.lower() in other.lower() for other in found)
        ]


# ── Sites ───────────────────────────────────────────────────────────────
class BBCFixturesSource(GenericHtmlFixtureSource):
    """BBC Sport team fixtures page. Carries kickoff and competition, rarely channels."""

    source_id = SourceId.BBC
    base_url = "https://www.bbc.co.uk"
    row_selectors = (
        ".sp-c-fixture",
        '[data-event-type="match"]',
        '[class*="MatchWrapper"]',
        '[class*="EventCard"]',
        '[data-testid*="match"]',
        '[data-testid*="fixture"]',
        '[class*="fixture"]',
    )
    home_selector = '[class*="home-team"], .sp-c-fixture__team--home, .sp-c-fixture__team-name--home'
    away_selector = '[class*="away-team"], .sp-c-fixture__team--away, .sp-c-fixture__team-name--away'
    known_channels = ("BBC One", "BBC Two", "BBC iPlayer", "BBC Scotland", "BBC Wales")

    listing_paths = ("/sport/football/scores-fixtures",)

    def page_paths(self, requested: RequestedMatch) -> list[str]:
        return self.team_page_paths(requested.home_team)

    def team_page_paths(self, team: str) -> list[str]:
        slug = slugify(team)
        paths = [f"/sport/football/teams/{slug}/scores-fixtures"] if slug else []
        return paths + list(self.listing_paths)

    def parse_teams(self, el: Tag) -> tuple[str, str]:
        home, away = super().parse_teams(el)
        if home and away:
            return home, away
        names = el.select('[class*="TeamName"], [class*="teamName"], abbr[title]')
        if len(names) >= 2:
            home = str(names[0].get("title") or names[0].get_text(" ", strip=True))
            away = str(names[1].get("title") or names[1].get_text(" ", strip=True))
            return _clean(home), _clean(away)
        return _clean(str(el.get("data-home-team") or "")), _clean(str(el.get("data-away-team") or ""))


class SkySportsSource(GenericHtmlFixtureSource):
    source_id = SourceId.SKYSPORTS
    base_url = "https://www.skysports.com"
    row_selectors = (".fixres__item", ".fixture", '[class*="fixture"]', ".match-row")
    home_selector = '.fixres__team--home, .team-home, [class*="home"]'
    away_selector = '.fixres__team--away, .team-away, [class*="away"]'
    channel_selector = '[class*="tv"], [class*="channel"], [class*="broadcast"]'
    known_channels = (
        "Sky Sports Main Event",
        "Sky Sports Premier League",
        "Sky Sports Football",
        "Sky Sports Arena",
        "Sky Sports Action",
        "Sky Sports Mix",
        "Sky Sports News",
        "Sky Sports+",
    )

    listing_paths = ("/football/fixtures",)


class TNTSportsSource(GenericHtmlFixtureSource):
    """TNT Sports schedule. Rows listed there are on TNT even without a named channel."""

    source_id = SourceId.TNT
    base_url = "https://www.tntsports.co.uk"
    row_selectors = (
        '[class*="fixture"]',
        '[class*="match"]',
        ".programme-item",
        '[class*="Event"]',
        "tr[class*=\"result\"]",
        ".calres",
        "[data-event-id]",
    )
    home_selector = '.team-home, [class*="home"]'
    away_selector = '.team-away, [class*="away"]'
    known_channels = (
        "TNT Sports 1",
        "TNT Sports 2",
        "TNT Sports 3",
        "TNT Sports 4",
        "TNT Sports Ultimate",
        "TNT Sports",
        "discovery+",
    )
    default_channels = ("TNT Sports",)

    listing_paths = (
        "/football/calendar-results.shtml",
        "/football/blog/2024/calendar-results.shtml",
        "/football/2024-25/calendar-results.shtml",
    )


class LiveFootballOnTVSource(GenericHtmlFixtureSource):
    source_id = SourceId.LIVEFOOTBALLONTV
    base_url = "https://www.live-footballontv.com"
    row_selectors = ("table tr", ".fixture-row", ".match-row", '[class*="fixture"]', '[class*="match"]')
    home_selector = ".home-team, .team-home"
    away_selector = ".away-team, .team-away"
    competition_selector = '[class*="competition"], [class*="league"]'
    channel_selector = '[class*="channel"], [class*="tv"]'
    known_channels = (
        "Sky Sports Main Event",
        "Sky Sports Premier League",
        "Sky Sports Football",
        "Sky Sports",
        "TNT Sports 1",
        "TNT Sports 2",
        "TNT Sports 3",
        "TNT Sports 4",
        "TNT Sports",
        "BBC One",
        "BBC Two",
        "ITV1",
        "ITV4",
        "Channel 4",
        "Amazon Prime Video",
        "Premier Sports 1",
        "Premier Sports 2",
    )
