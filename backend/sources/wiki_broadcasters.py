"""
Wikipedia season-article broadcaster source.

League season pages usually carry a broadcasting table of territory and
rights holder. That yields channels for the competition, not the match,
so the candidate mirrors the requested teams and only adds channels.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Optional
from urllib.parse import quote

from bs4 import BeautifulSoup, Tag

from shared.models.domain import CandidateFixture, ChannelEntry, RequestedMatch
from shared.models.enums import SourceId
from shared.utils.logging import get_logger

from sources.base import BaseSource

logger = get_logger(__name__)

WIKI_BASE_URL = "https://en.wikipedia.org"
UNKNOWN_REGION = "Unknown"

LEAGUE_PATTERNS: dict[str, str] = {
    "premier league": "{season} Premier League",
    "english premier league": "{season} Premier League",
    "epl": "{season} Premier League",
    "championship": "{season} EFL Championship",
    "efl championship": "{season} EFL Championship",
    "league one": "{season} EFL League One",
    "efl league one": "{season} EFL League One",
    "league two": "{season} EFL League Two",
    "efl league two": "{season} EFL League Two",
    "fa cup": "{season} FA Cup",
    "efl cup": "{season} EFL Cup",
    "carabao cup": "{season} EFL Cup",
    "league cup": "{season} EFL Cup",
    "scottish premiership": "{season} Scottish Premiership",
    "spfl premiership": "{season} Scottish Premiership",
    "scottish championship": "{season} Scottish Championship",
    "champions league": "{season} UEFA Champions League",
    "uefa champions league": "{season} UEFA Champions League",
    "europa league": "{season} UEFA Europa League",
    "uefa europa league": "{season} UEFA Europa League",
    "conference league": "{season} UEFA Europa Conference League",
    "uefa conference league": "{season} UEFA Europa Conference League",
    "la liga": "{season} La Liga",
    "bundesliga": "{season} Bundesliga",
    "serie a": "{season} Serie A",
    "ligue 1": "{season} Ligue 1",
}

SECTION_HEADERS = ("broadcasting", "television", "tv broadcasting", "broadcasters", "media coverage")
_REGION_HEADINGS = ("country", "region", "territory", "nation")
_BROADCASTER_HEADINGS = ("broadcaster", "channel", "network", "rights")

_CITATION = re.compile(r"\[.*?\]")
_PARENTHETICAL = re.compile(r"\(.*?\)")
_WHITESPACE = re.compile(r"\s+")
_CHANNEL_SPLIT = re.compile(r"\n|,|;")


def football_season(when: datetime) -> str:
    """Season label such as "2024–25"; a new season starts in August."""
    start = when.year if when.month >= 8 else when.year - 1
    return f"{start}–{str(start + 1)[-2:]}"


def build_wiki_title(league: Optional[str], season: str) -> Optional[str]:
    if not league or not league.strip():
        return None
    normalized = league.lower().strip()
    for key, pattern in LEAGUE_PATTERNS.items():
        if key in normalized or normalized in key:
            return pattern.format(season=season)
    title_case = " ".join(w[:1].upper() + w[1:].lower() for w in league.split())
    return f"{season} {title_case}"


def wiki_path(title: str) -> str:
    return "/wiki/" + quote(title.replace(" ", "_"))


def clean_region(text: str) -> str:
    return _WHITESPACE.sub(" ", _CITATION.sub("", text or "")).strip()


def clean_channel(text: str) -> str:
    value = _PARENTHETICAL.sub("", _CITATION.sub("", text or ""))
    return _WHITESPACE.sub(" ", value).strip()


def _heading_text(heading: Tag) -> str:
    headline = heading.find(class_="mw-headline")
    return (headline or heading).get_text(" ", strip=True).lower()


def _find_broadcast_section(soup: BeautifulSoup) -> Optional[Tag]:
    for heading in soup.find_all(["h2", "h3"]):
        text = _heading_text(heading)
        if any(target in text for target in SECTION_HEADERS):
            # Newer skins wrap headings in <div class="mw-heading">
            parent = heading.parent
            if isinstance(parent, Tag) and "mw-heading" in (parent.get("class") or []):
                return parent
            return heading
    return None


def _is_h2_boundary(node: Tag) -> bool:
    if node.name == "h2":
        return True
    return "mw-heading2" in (node.get("class") or [])


def _section_rows(section: Tag) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for node in section.find_next_siblings():
        if not isinstance(node, Tag) or _is_h2_boundary(node):
            break
        table = node if node.name == "table" else node.find("table")
        if table is None:
            continue
        for tr in table.find_all("tr"):
            cells = tr.find_all("td")
            if len(cells) < 2:
                continue
            region = clean_region(cells[0].get_text(" ", strip=True))
            channel = clean_channel(cells[1].get_text(" ", strip=True))
            if region and channel:
                rows.append((region, channel))
    return rows


def _infobox_rows(soup: BeautifulSoup) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for infobox in soup.select(".infobox"):
        for tr in infobox.find_all("tr"):
            th, td = tr.find("th"), tr.find("td")
            if th is None or td is None:
                continue
            header = th.get_text(" ", strip=True).lower()
            if not any(k in header for k in ("television", "broadcaster", "tv")):
                continue
            for part in re.split(r"[,;]|\band\b", td.get_text(" ", strip=True), flags=re.IGNORECASE):
                channel = clean_channel(part)
                if channel:
                    rows.append((UNKNOWN_REGION, channel))
    return rows


def _column_index(headers: list[str], keywords: tuple[str, ...]) -> int:
    for idx, header in enumerate(headers):
        if any(k in header for k in keywords):
            return idx
    return -1


def _wikitable_rows(soup: BeautifulSoup) -> list[tuple[str, str]]:
    rows: list[tuple[str, str]] = []
    for table in soup.select("table.wikitable, table.sortable"):
        first = table.find("tr")
        if first is None:
            continue
        headers = [th.get_text(" ", strip=True).lower() for th in first.find_all("th")]
        region_idx = _column_index(headers, _REGION_HEADINGS)
        channel_idx = _column_index(headers, _BROADCASTER_HEADINGS)
        if region_idx < 0 or channel_idx < 0:
            continue
        for tr in table.find_all("tr")[1:]:
            cells = tr.find_all(["td", "th"])
            if len(cells) <= max(region_idx, channel_idx):
                continue
            region = clean_region(cells[region_idx].get_text(" ", strip=True))
            raw_channels = cells[channel_idx].get_text("\n", strip=True)
            if not region or not raw_channels:
                continue
            for part in _CHANNEL_SPLIT.split(raw_channels):
                channel = clean_channel(part)
                if channel:
                    rows.append((region, channel))
    return rows


def parse_broadcasters(html: str) -> list[tuple[str, str]]:
    """
    Extract (region, channel) pairs from a season article.

    Looks at the broadcasting section tables, then the infobox, then any
    wikitable with territory and broadcaster columns. Duplicates are dropped.
    """
    soup = BeautifulSoup(html, "html.parser")
    found: list[tuple[str, str]] = []
    section = _find_broadcast_section(soup)
    if section is not None:
        found.extend(_section_rows(section))
    found.extend(_infobox_rows(soup))
    found.extend(_wikitable_rows(soup))

    seen: set[tuple[str, str]] = set()
    unique: list[tuple[str, str]] = []
    for pair in found:
        if pair in seen:
            continue
        seen.add(pair)
        unique.append(pair)
    return unique


class EncyclopediaBroadcasterSource(BaseSource):
    """League broadcasters from the season's Wikipedia article."""

    source_id = SourceId.WIKI

    def is_applicable(self, requested: RequestedMatch) -> bool:
        return bool(requested.league_hint and requested.league_hint.strip())

    async def _fetch(self, requested: RequestedMatch) -> list[CandidateFixture]:
        season = football_season(requested.date)
        title = build_wiki_title(requested.league_hint, season)
        if title is None:
            return []

        html = await self._http.get_text(wiki_path(title))
        pairs = parse_broadcasters(html)
        logger.info("wiki_broadcasters_parsed", title=title, broadcasters=len(pairs))
        if not pairs:
            return []

        channels = tuple(
            ChannelEntry(region=region, channel_name=channel, source_id=self.name)
            for region, channel in pairs
        )
        return [
            CandidateFixture(
                home_team=requested.home_team,
                away_team=requested.away_team,
                date_time=requested.known_kickoff_utc,
                league=requested.league_hint,
                channels=channels,
                summary=f"{requested.home_team} v {requested.away_team}",
                source_id=self.name,
            )
        ]
