"""
Unit tests for candidate scoring and best-candidate selection.

Run: pytest backend/tests/test_scoring.py -v
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from aggregator.scoring import (
    DEFAULT_WEIGHTS,
    ScoringWeights,
    best_candidate,
    is_acceptable,
    score_candidate,
    time_component,
)
from shared.config import Settings
from shared.models.domain import CandidateFixture, RequestedMatch


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def requested() -> RequestedMatch:
    return RequestedMatch(home_team="Arsenal", away_team="Chelsea", date=_utc(2024, 12, 15))


@pytest.fixture
def requested_with_kickoff() -> RequestedMatch:
    return RequestedMatch(
        home_team="Arsenal",
        away_team="Chelsea",
        date=_utc(2024, 12, 15),
        known_kickoff_utc=_utc(2024, 12, 15, 15, 0),
        league_hint="Premier League",
    )


def _candidate(home: str, away: str, when: datetime | None = None, league: str | None = None) -> CandidateFixture:
    return CandidateFixture(home_team=home, away_team=away, date_time=when, league=league)


# ── score_candidate ─────────────────────────────────────────────────────

class TestScoreCandidate:

    def test_direct_match_same_day(self, requested: RequestedMatch) -> None:
        # team 100*0.5 + same-day 20
        c = _candidate("Arsenal FC", "Chelsea", _utc(2024, 12, 15, 15, 0))
        assert score_candidate(c, requested) == 70

    def test_swapped_orientation_still_accepted(self, requested: RequestedMatch) -> None:
        # swapped 100*0.9*0.5 = 45 + same-day 20
        c = _candidate("Chelsea", "Arsenal", _utc(2024, 12, 15, 15, 5))
        score = score_candidate(c, requested)
        assert score == 65
        assert is_acceptable(score)

    def test_exact_kickoff_and_league(self, requested_with_kickoff: RequestedMatch) -> None:
        c = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 15, 0), league="Premier League")
        assert score_candidate(c, requested_with_kickoff) == 100

    def test_time_decay_within_three_hours(self, requested_with_kickoff: RequestedMatch) -> None:
        # 1.5h off: 40 * (1 - 1.5/3) = 20; league absent on candidate
        c = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 16, 30))
        assert score_candidate(c, requested_with_kickoff) == 70

    def test_unrelated_teams_rejected(self, requested_with_kickoff: RequestedMatch) -> None:
        c = _candidate("Liverpool", "Everton", _utc(2024, 12, 15, 15, 0))
        score = score_candidate(c, requested_with_kickoff)
        assert score == 40
        assert not is_acceptable(score)

    def test_missing_time_scores_teams_only(self, requested: RequestedMatch) -> None:
        assert score_candidate(_candidate("Arsenal", "Chelsea"), requested) == 50

    def test_score_clamped(self, requested_with_kickoff: RequestedMatch) -> None:
        weights = ScoringWeights(team_weight=1.0)
        c = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 15, 0), league="Premier League")
        assert score_candidate(c, requested_with_kickoff, weights) == 100


class TestTimeComponent:
    ref = _utc(2024, 12, 15, 15, 0)

    def test_within_half_hour(self) -> None:
        assert time_component(_utc(2024, 12, 15, 15, 30), self.ref, DEFAULT_WEIGHTS) == 40

    def test_exactly_three_hours(self) -> None:
        assert time_component(_utc(2024, 12, 15, 18, 0), self.ref, DEFAULT_WEIGHTS) == 0

    def test_same_day_outside_window(self) -> None:
        assert time_component(_utc(2024, 12, 15, 20, 0), self.ref, DEFAULT_WEIGHTS) == 20

    def test_other_day(self) -> None:
        assert time_component(_utc(2024, 12, 17, 15, 0), self.ref, DEFAULT_WEIGHTS) == 0

    def test_none(self) -> None:
        assert time_component(None, self.ref, DEFAULT_WEIGHTS) == 0


# ── best_candidate ──────────────────────────────────────────────────────

class TestBestCandidate:

    def test_picks_highest(self, requested_with_kickoff: RequestedMatch) -> None:
        far = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 17, 0))
        near = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 15, 10))
        best = best_candidate([far, near], requested_with_kickoff)
        assert best is not None
        assert best[0] is near

    def test_tie_keeps_earlier(self, requested: RequestedMatch) -> None:
        first = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 15, 0))
        second = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 12, 0))
        best = best_candidate([first, second], requested)
        assert best is not None
        assert best[0] is first

    def test_none_above_threshold(self, requested: RequestedMatch) -> None:
        assert best_candidate([_candidate("Leeds", "Hull")], requested) is None

    def test_single_candidate_must_meet_threshold(self, requested: RequestedMatch) -> None:
        strict = ScoringWeights(accept_threshold=80)
        c = _candidate("Arsenal", "Chelsea", _utc(2024, 12, 15, 15, 0))
        assert best_candidate([c], requested, strict) is None

    def test_empty(self, requested: RequestedMatch) -> None:
        assert best_candidate([], requested) is None


class TestWeightsFromSettings:

    def test_overrides(self) -> None:
        settings = Settings(_env_file=None, score_accept_threshold=70, score_swap_discount=0.8)
        weights = ScoringWeights.from_settings(settings)
        assert weights.accept_threshold == 70
        assert weights.swap_discount == 0.8
        assert weights.time_points == 40.0

    def test_defaults_match_module_constant(self) -> None:
        assert ScoringWeights.from_settings(Settings(_env_file=None)) == DEFAULT_WEIGHTS
