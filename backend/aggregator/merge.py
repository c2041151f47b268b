"""
Fixture normalization and merging.

Raw upstream dictionaries become CandidateFixtures here, and accepted
candidates fold into a single FixtureRecord per fixture key. Merging is
pure: it never mutates either argument and returns a new record.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from aggregator.teams import normalize_team_name
from shared.models.domain import (
    CandidateFixture,
    ChannelEntry,
    FixtureRecord,
    RequestedMatch,
)
from shared.utils.dates import iso_date_only, parse_instant
from shared.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_REGION = "UK"
KICKOFF_LOCAL_FORMAT = "%a %d %b %H:%M"

_HOME_KEYS = ("homeTeam", "strHomeTeam", "home")
_AWAY_KEYS = ("awayTeam", "strAwayTeam", "away")
_VENUE_KEYS = ("location", "strVenue", "venue")
_LEAGUE_KEYS = ("competition", "strLeague", "league")
_SUMMARY_KEYS = ("summary", "strEvent")
_REGIONAL_CHANNEL_KEYS = ("tvByRegion", "regionChannels")
_FLAT_CHANNEL_KEYS = ("channels", "tvChannels", "tvStations")


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Optional[Any]:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_raw_datetime(raw: Mapping[str, Any]) -> Optional[datetime]:
    for key in ("kickoffUtc", "start"):
        parsed = parse_instant(raw.get(key))
        if parsed is not None:
            return parsed
    date_event = raw.get("dateEvent")
    if date_event:
        time_part = raw.get("strTime")
        if time_part:
            parsed = parse_instant(f"{date_event}T{time_part}")
            if parsed is not None:
                return parsed
        parsed = parse_instant(date_event)
        if parsed is not None:
            return parsed
    return parse_instant(raw.get("strTimestamp"))


def _parse_raw_channels(raw: Mapping[str, Any], source_id: str, default_region: str) -> tuple[ChannelEntry, ...]:
    channels: list[ChannelEntry] = []
    for key in _REGIONAL_CHANNEL_KEYS:
        for item in raw.get(key) or []:
            if not isinstance(item, Mapping):
                continue
            name = _text(item.get("channel") or item.get("channelName"))
            if not name:
                continue
            region = _text(item.get("region")) or default_region
            channels.append(ChannelEntry(region=region, channel_name=name, source_id=source_id))
    for key in _FLAT_CHANNEL_KEYS:
        for item in raw.get(key) or []:
            name = _text(item)
            if name:
                channels.append(ChannelEntry(region=default_region, channel_name=name, source_id=source_id))
    return tuple(dedupe_channels(channels))


def normalize_fixture(
    raw: Mapping[str, Any],
    source_id: str,
    default_region: str = DEFAULT_REGION,
) -> CandidateFixture:
    """
    Convert one raw upstream fixture dict into a CandidateFixture.

    Accepts the field spellings used across the upstreams (camelCase feed
    fields, TheSportsDB ``str*`` fields, plain ``home``/``away``).
    Unparseable timestamps become None rather than failing.
    """
    home = _text(_first(raw, _HOME_KEYS)) or ""
    away = _text(_first(raw, _AWAY_KEYS)) or ""
    summary = _text(_first(raw, _SUMMARY_KEYS)) or f"{home} v {away}"
    return CandidateFixture(
        home_team=home,
        away_team=away,
        date_time=_parse_raw_datetime(raw),
        league=_text(_first(raw, _LEAGUE_KEYS)),
        venue=_text(_first(raw, _VENUE_KEYS)),
        channels=_parse_raw_channels(raw, source_id, default_region),
        summary=summary,
        source_id=source_id,
    )


def _key(home: str, away: str, when: Optional[datetime]) -> str:
    return "|".join((normalize_team_name(home), normalize_team_name(away), iso_date_only(when)))


def fixture_key(fixture: CandidateFixture | RequestedMatch | FixtureRecord) -> str:
    """``home|away|YYYY-MM-DD`` on normalized names; empty date segment when unknown."""
    if isinstance(fixture, CandidateFixture):
        when = fixture.date_time
    elif isinstance(fixture, RequestedMatch):
        when = fixture.reference_time
    else:
        when = fixture.kickoff_utc
    return _key(fixture.home_team, fixture.away_team, when)


def candidate_key(candidate: CandidateFixture, requested: RequestedMatch) -> str:
    """
    Key of ``candidate`` read as the requested pairing on its own date.

    Team identity is the scorer's call, so the requested names stand in
    for the candidate's (whatever their spelling or orientation). A
    candidate without a date takes the requested date.
    """
    if candidate.date_time is None:
        return fixture_key(requested)
    return _key(requested.home_team, requested.away_team, candidate.date_time)


# ── Channels ────────────────────────────────────────────────────────────
def dedupe_channels(channels: Iterable[ChannelEntry]) -> list[ChannelEntry]:
    """First occurrence of each (region, channel) identity, order kept."""
    seen: set[tuple[str, str]] = set()
    result: list[ChannelEntry] = []
    for entry in channels:
        if entry.identity in seen:
            continue
        seen.add(entry.identity)
        result.append(entry)
    return result


def stations_flat(channels: Iterable[ChannelEntry], extra: Iterable[str] = ()) -> list[str]:
    """Channel names deduplicated case-insensitively, first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    names = [c.channel_name for c in channels] + list(extra)
    for name in names:
        cleaned = (name or "").strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        seen.add(cleaned.lower())
        result.append(cleaned)
    return result


def format_kickoff_local(kickoff: Optional[datetime], tz_name: str) -> Optional[str]:
    """Kickoff rendered in ``tz_name`` like "Sun 15 Dec 15:00"."""
    if kickoff is None:
        return None
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown_timezone", timezone=tz_name)
        return None
    return kickoff.astimezone(zone).strftime(KICKOFF_LOCAL_FORMAT)


# ── Records ─────────────────────────────────────────────────────────────
def empty_record(requested: RequestedMatch, source_ids: Iterable[str] = ()) -> FixtureRecord:
    return FixtureRecord(
        home_team=requested.home_team,
        away_team=requested.away_team,
        sources_used={sid: False for sid in source_ids},
    )


def record_from_candidate(
    candidate: CandidateFixture,
    requested: Optional[RequestedMatch] = None,
) -> FixtureRecord:
    """Seed a record from an accepted candidate, in the requested orientation when there is one."""
    used = {candidate.source_id: True} if candidate.source_id else {}
    named = requested or candidate
    return FixtureRecord(
        home_team=named.home_team,
        away_team=named.away_team,
        kickoff_utc=candidate.date_time,
        league=candidate.league,
        venue=candidate.venue,
        channels=dedupe_channels(candidate.channels),
        sources_used=used,
    )


def merge(existing: FixtureRecord, incoming: FixtureRecord) -> FixtureRecord:
    """
    Fold ``incoming`` into ``existing`` and return a new record.

    Channels are unioned by identity with existing entries first. Null
    scalars are filled from ``incoming`` (first writer wins). A source
    flagged True on either side stays True. Idempotent for repeated
    ``incoming``.
    """
    sources_used = dict(existing.sources_used)
    for source_id, used in incoming.sources_used.items():
        sources_used[source_id] = sources_used.get(source_id, False) or used

    return existing.model_copy(
        update={
            "kickoff_utc": existing.kickoff_utc or incoming.kickoff_utc,
            "league": existing.league or incoming.league,
            "venue": existing.venue or incoming.venue,
            "channels": dedupe_channels([*existing.channels, *incoming.channels]),
            "sources_used": sources_used,
        }
    )


class MergeEngine:
    """Keyed accumulator of FixtureRecords; equal keys are the same match."""

    def __init__(self) -> None:
        self._records: dict[str, FixtureRecord] = {}

    def seed(self, key: str, record: FixtureRecord) -> None:
        self._records.setdefault(key, record)

    def add(
        self,
        key: str,
        candidate: CandidateFixture,
        requested: Optional[RequestedMatch] = None,
    ) -> FixtureRecord:
        incoming = record_from_candidate(candidate, requested)
        current = self._records.get(key)
        merged = incoming if current is None else merge(current, incoming)
        self._records[key] = merged
        return merged

    def get(self, key: str) -> Optional[FixtureRecord]:
        return self._records.get(key)

    def records(self) -> dict[str, FixtureRecord]:
        return dict(self._records)

    def __len__(self) -> int:
        return len(self._records)
