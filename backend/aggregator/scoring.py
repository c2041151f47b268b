"""
Candidate scoring.

Scores how likely a source's candidate describes the requested match:
team similarity (orientation-tolerant), kickoff proximity and league
agreement combine into an integer 0..100.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from aggregator.teams import round_half_up, similarity
from shared.config import Settings
from shared.models.domain import CandidateFixture, RequestedMatch


@dataclass(frozen=True)
class ScoringWeights:
    team_weight: float = 0.5
    time_points: float = 40.0
    league_weight: float = 0.1
    swap_discount: float = 0.9
    exact_window_h: float = 0.5
    decay_window_h: float = 3.0
    same_day_points: float = 20.0
    accept_threshold: int = 50

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringWeights":
        return cls(
            team_weight=settings.score_team_weight,
            time_points=settings.score_time_points,
            league_weight=settings.score_league_weight,
            swap_discount=settings.score_swap_discount,
            accept_threshold=settings.score_accept_threshold,
        )


DEFAULT_WEIGHTS = ScoringWeights()


def team_component(candidate: CandidateFixture, requested: RequestedMatch, weights: ScoringWeights) -> float:
    """Best of direct and discounted swapped pairing, 0..100."""
    direct = (
        similarity(candidate.home_team, requested.home_team)
        + similarity(candidate.away_team, requested.away_team)
    ) / 2
    swapped = (
        similarity(candidate.home_team, requested.away_team)
        + similarity(candidate.away_team, requested.home_team)
    ) / 2
    discounted = swapped * weights.swap_discount
    return discounted if discounted > direct else direct


def time_component(
    candidate_time: Optional[datetime],
    reference: datetime,
    weights: ScoringWeights,
) -> float:
    if candidate_time is None:
        return 0.0
    diff_h = abs((candidate_time - reference).total_seconds()) / 3600.0
    if diff_h <= weights.exact_window_h:
        return weights.time_points
    if diff_h <= weights.decay_window_h:
        return weights.time_points * (1 - diff_h / weights.decay_window_h)
    if candidate_time.date() == reference.date():
        return weights.same_day_points
    return 0.0


def score_candidate(
    candidate: CandidateFixture,
    requested: RequestedMatch,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> int:
    score = team_component(candidate, requested, weights) * weights.team_weight
    score += time_component(candidate.date_time, requested.reference_time, weights)
    if candidate.league and requested.league_hint:
        score += similarity(candidate.league, requested.league_hint) * weights.league_weight
    return max(0, min(100, round_half_up(score)))


def is_acceptable(score: int, weights: ScoringWeights = DEFAULT_WEIGHTS) -> bool:
    return score >= weights.accept_threshold


def best_candidate(
    candidates: Iterable[CandidateFixture],
    requested: RequestedMatch,
    weights: ScoringWeights = DEFAULT_WEIGHTS,
) -> Optional[tuple[CandidateFixture, int]]:
    """Highest-scoring candidate meeting the threshold; ties keep the earlier one."""
    best: Optional[tuple[CandidateFixture, int]] = None
    for candidate in candidates:
        score = score_candidate(candidate, requested, weights)
        if not is_acceptable(score, weights):
            continue
        if best is None or score > best[1]:
            best = (candidate, score)
    return best
