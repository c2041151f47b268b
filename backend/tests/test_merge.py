"""
Unit tests for fixture normalization, fixture keys and the merge engine.

Run: pytest backend/tests/test_merge.py -v
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aggregator.merge import (
    MergeEngine,
    candidate_key,
    dedupe_channels,
    empty_record,
    fixture_key,
    format_kickoff_local,
    merge,
    normalize_fixture,
    record_from_candidate,
    stations_flat,
)
from shared.models.domain import CandidateFixture, ChannelEntry, FixtureRecord, RequestedMatch


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def requested() -> RequestedMatch:
    return RequestedMatch(home_team="Arsenal", away_team="Chelsea", date=_utc(2024, 12, 15))


def _record(**kwargs: object) -> FixtureRecord:
    base: dict[str, object] = {"home_team": "Arsenal", "away_team": "Chelsea"}
    base.update(kwargs)
    return FixtureRecord(**base)


# ── normalize_fixture ───────────────────────────────────────────────────

class TestNormalizeFixture:

    def test_sportsdb_shape(self) -> None:
        raw = {
            "strHomeTeam": "Arsenal",
            "strAwayTeam": "Chelsea",
            "dateEvent": "2024-12-15",
            "strTime": "15:00:00",
            "strVenue": "Emirates Stadium",
            "strLeague": "English Premier League",
            "strEvent": "Arsenal vs Chelsea",
        }
        c = normalize_fixture(raw, "thesportsdb")
        assert c.home_team == "Arsenal"
        assert c.away_team == "Chelsea"
        assert c.date_time == _utc(2024, 12, 15, 15, 0)
        assert c.venue == "Emirates Stadium"
        assert c.league == "English Premier League"
        assert c.summary == "Arsenal vs Chelsea"
        assert c.source_id == "thesportsdb"
        assert c.channels == ()

    def test_kickoff_utc_takes_precedence(self) -> None:
        raw = {
            "home": "Arsenal",
            "away": "Chelsea",
            "kickoffUtc": "2024-12-15T17:30:00Z",
            "dateEvent": "2024-12-15",
            "strTime": "15:00:00",
        }
        assert normalize_fixture(raw, "x").date_time == _utc(2024, 12, 15, 17, 30)

    def test_date_only(self) -> None:
        raw = {"home": "Arsenal", "away": "Chelsea", "dateEvent": "2024-12-15"}
        assert normalize_fixture(raw, "x").date_time == _utc(2024, 12, 15)

    def test_offset_converted_to_utc(self) -> None:
        raw = {"home": "Arsenal", "away": "Chelsea", "start": "2024-06-01T15:00:00+01:00"}
        assert normalize_fixture(raw, "x").date_time == _utc(2024, 6, 1, 14, 0)

    def test_unparseable_date_is_none(self) -> None:
        raw = {"home": "Arsenal", "away": "Chelsea", "kickoffUtc": "next sunday"}
        assert normalize_fixture(raw, "x").date_time is None

    def test_summary_synthesised(self) -> None:
        c = normalize_fixture({"homeTeam": "Leeds", "awayTeam": "Hull"}, "x")
        assert c.summary == "Leeds v Hull"

    def test_channels_regional_and_flat(self) -> None:
        raw = {
            "home": "Arsenal",
            "away": "Chelsea",
            "regionChannels": [
                {"region": "UK", "channel": "Sky Sports"},
                {"region": "uk", "channel": "sky sports "},
                {"region": "USA", "channel": "Peacock"},
            ],
            "channels": ["TNT Sports"],
        }
        c = normalize_fixture(raw, "bbc")
        assert [(ch.region, ch.channel_name) for ch in c.channels] == [
            ("UK", "Sky Sports"),
            ("USA", "Peacock"),
            ("UK", "TNT Sports"),
        ]
        assert all(ch.source_id == "bbc" for ch in c.channels)


# ── fixture_key ─────────────────────────────────────────────────────────

class TestFixtureKey:

    def test_same_day_different_times_equal(self) -> None:
        a = CandidateFixture(home_team="Arsenal FC", away_team="Chelsea", date_time=_utc(2024, 12, 15, 15, 0))
        b = CandidateFixture(home_team="Arsenal", away_team="Chelsea FC", date_time=_utc(2024, 12, 15, 17, 30))
        assert fixture_key(a) == fixture_key(b) == "arsenal|chelsea|2024-12-15"

    def test_different_day_differs(self) -> None:
        a = CandidateFixture(home_team="Arsenal", away_team="Chelsea", date_time=_utc(2024, 12, 15, 15, 0))
        b = CandidateFixture(home_team="Arsenal", away_team="Chelsea", date_time=_utc(2024, 12, 16, 15, 0))
        assert fixture_key(a) != fixture_key(b)

    def test_unknown_date(self) -> None:
        c = CandidateFixture(home_team="Arsenal", away_team="Chelsea")
        assert fixture_key(c) == "arsenal|chelsea|"

    def test_requested_match(self, requested: RequestedMatch) -> None:
        assert fixture_key(requested) == "arsenal|chelsea|2024-12-15"

    def test_candidate_key_uses_requested_pairing(self, requested: RequestedMatch) -> None:
        swapped = CandidateFixture(home_team="Chelsea FC", away_team="Arsenal", date_time=_utc(2024, 12, 15, 20, 0))
        assert candidate_key(swapped, requested) == "arsenal|chelsea|2024-12-15"

    def test_candidate_key_keeps_candidate_date(self, requested: RequestedMatch) -> None:
        later = CandidateFixture(home_team="Arsenal", away_team="Chelsea", date_time=_utc(2025, 1, 20, 20, 0))
        assert candidate_key(later, requested) == "arsenal|chelsea|2025-01-20"
        assert candidate_key(later, requested) != fixture_key(requested)

    def test_candidate_key_undated_takes_requested_date(self, requested: RequestedMatch) -> None:
        undated = CandidateFixture(home_team="Arsenal", away_team="Chelsea")
        assert candidate_key(undated, requested) == fixture_key(requested)


# ── merge ───────────────────────────────────────────────────────────────

class TestMerge:

    def test_channels_union_by_identity(self) -> None:
        x = _record(channels=[ChannelEntry(region="UK", channel_name="Sky Sports", source_id="a")])
        y = _record(
            channels=[
                ChannelEntry(region="uk", channel_name="SKY SPORTS", source_id="b"),
                ChannelEntry(region="UK", channel_name="TNT Sports", source_id="b"),
            ]
        )
        merged = merge(x, y)
        assert [c.channel_name for c in merged.channels] == ["Sky Sports", "TNT Sports"]
        assert merged.channels[0].source_id == "a"

    def test_first_writer_wins_for_scalars(self) -> None:
        x = _record(league="Premier League", venue=None)
        y = _record(league="EPL", venue="Emirates Stadium", kickoff_utc=_utc(2024, 12, 15, 15, 0))
        merged = merge(x, y)
        assert merged.league == "Premier League"
        assert merged.venue == "Emirates Stadium"
        assert merged.kickoff_utc == _utc(2024, 12, 15, 15, 0)

    def test_sources_used_true_is_sticky(self) -> None:
        x = _record(sources_used={"a": True, "b": False})
        y = _record(sources_used={"a": False, "c": True})
        assert merge(x, y).sources_used == {"a": True, "b": False, "c": True}

    def test_idempotent(self) -> None:
        x = _record(
            league="Premier League",
            channels=[ChannelEntry(region="UK", channel_name="Sky Sports")],
            sources_used={"a": True},
        )
        y = _record(
            venue="Emirates Stadium",
            channels=[ChannelEntry(region="UK", channel_name="TNT Sports")],
            sources_used={"b": True},
        )
        once = merge(x, y)
        assert merge(once, y) == once

    def test_pure(self) -> None:
        x = _record(channels=[ChannelEntry(region="UK", channel_name="Sky Sports")])
        y = _record(channels=[ChannelEntry(region="UK", channel_name="TNT Sports")], league="EPL")
        merge(x, y)
        assert len(x.channels) == 1
        assert x.league is None


# ── helpers ─────────────────────────────────────────────────────────────

class TestHelpers:

    def test_dedupe_channels_keeps_first(self) -> None:
        entries = [
            ChannelEntry(region="UK", channel_name="Sky Sports", source_id="a"),
            ChannelEntry(region=" UK ", channel_name="sky sports", source_id="b"),
        ]
        assert dedupe_channels(entries) == [entries[0]]

    def test_stations_flat_case_insensitive(self) -> None:
        channels = [
            ChannelEntry(region="UK", channel_name="Sky Sports"),
            ChannelEntry(region="Ireland", channel_name="sky sports"),
            ChannelEntry(region="USA", channel_name="Peacock"),
        ]
        assert stations_flat(channels, extra=["PEACOCK", "NBC"]) == ["Sky Sports", "Peacock", "NBC"]

    def test_format_kickoff_local(self) -> None:
        assert format_kickoff_local(_utc(2024, 12, 15, 15, 0), "Europe/London") == "Sun 15 Dec 15:00"

    def test_format_kickoff_local_summer_time(self) -> None:
        assert format_kickoff_local(_utc(2024, 8, 17, 11, 30), "Europe/London") == "Sat 17 Aug 12:30"

    def test_format_kickoff_local_unknown_zone(self) -> None:
        assert format_kickoff_local(_utc(2024, 12, 15, 15, 0), "Mars/Olympus") is None

    def test_record_from_candidate_uses_requested_orientation(self, requested: RequestedMatch) -> None:
        c = CandidateFixture(
            home_team="Chelsea",
            away_team="Arsenal",
            date_time=_utc(2024, 12, 15, 15, 5),
            source_id="skysports",
        )
        record = record_from_candidate(c, requested)
        assert (record.home_team, record.away_team) == ("Arsenal", "Chelsea")
        assert record.sources_used == {"skysports": True}


class TestMergeEngine:

    def test_accumulates_under_key(self, requested: RequestedMatch) -> None:
        engine = MergeEngine()
        key = fixture_key(requested)
        engine.seed(key, empty_record(requested, ["a", "b", "c"]))
        engine.add(
            key,
            CandidateFixture(
                home_team="Arsenal",
                away_team="Chelsea",
                channels=(ChannelEntry(region="UK", channel_name="Sky Sports"),),
                source_id="a",
            ),
            requested,
        )
        engine.add(
            key,
            CandidateFixture(
                home_team="Chelsea",
                away_team="Arsenal",
                channels=(ChannelEntry(region="UK", channel_name="TNT Sports"),),
                source_id="b",
            ),
            requested,
        )
        record = engine.get(key)
        assert record is not None
        assert [c.channel_name for c in record.channels] == ["Sky Sports", "TNT Sports"]
        assert record.sources_used == {"a": True, "b": True, "c": False}
        assert list(engine.records()) == [key]

    def test_keyed_by_candidate_without_request(self) -> None:
        engine = MergeEngine()
        fixtures = [
            CandidateFixture(home_team="Arsenal", away_team="Chelsea", date_time=_utc(2024, 12, 15, 15, 0), source_id="a"),
            CandidateFixture(
                home_team="Arsenal FC",
                away_team="Chelsea",
                date_time=_utc(2024, 12, 15, 15, 0),
                channels=(ChannelEntry(region="UK", channel_name="Sky Sports"),),
                source_id="b",
            ),
            CandidateFixture(home_team="Chelsea", away_team="Fulham", date_time=_utc(2024, 12, 18, 20, 0), source_id="a"),
        ]
        for fixture in fixtures:
            engine.add(fixture_key(fixture), fixture)

        assert len(engine) == 2
        record = engine.get("arsenal|chelsea|2024-12-15")
        assert record is not None
        assert (record.home_team, record.away_team) == ("Arsenal", "Chelsea")
        assert record.sources_used == {"a": True, "b": True}
        assert [c.channel_name for c in record.channels] == ["Sky Sports"]
