"""Heuristic scorers for compound candidates and the weighted-random selector."""

from __future__ import annotations

import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TypeVar

from .compound import changed_dimension
from .models import Compound, CompoundStats
from .settings import ScoringConfig

T = TypeVar("T")
RandomFn = Callable[[], float]

NO_HISTORY_READINESS = 0.3
DIVERSITY_BONUS = 0.5
FULL_STALENESS_ATTEMPTS = 3


@dataclass(frozen=True)
class FactorScore:
    """Raw factor value and its weighted contribution."""

    raw: float
    weighted: float


@dataclass(frozen=True)
class CandidateFactors:
    """Per-factor breakdown of a candidate score."""

    consolidation: FactorScore
    staleness: FactorScore
    readiness: FactorScore
    diversity: FactorScore

    @property
    def total(self) -> float:
        """Sum of weighted contributions."""
        return (
            self.consolidation.weighted + self.staleness.weighted + self.readiness.weighted + self.diversity.weighted
        )

    def dominant(self) -> str:
        """Return the name of the factor with the largest weighted contribution."""
        ranked = [
            ("consolidation", self.consolidation.weighted),
            ("staleness", self.staleness.weighted),
            ("readiness", self.readiness.weighted),
            ("diversity", self.diversity.weighted),
        ]
        return max(ranked, key=lambda pair: pair[1])[0]

    @classmethod
    def zero(cls) -> CandidateFactors:
        """Return an all-zero breakdown."""
        nothing = FactorScore(raw=0.0, weighted=0.0)
        return cls(consolidation=nothing, staleness=nothing, readiness=nothing, diversity=nothing)


@dataclass(frozen=True)
class ScoringContext:
    """Inputs needed to score one candidate."""

    current: Compound
    current_stats: CompoundStats | None
    candidate_stats: CompoundStats | None
    related_stats: Sequence[CompoundStats]
    current_session: int
    recent_dimension_changes: Sequence[str]
    config: ScoringConfig
    expansion_npm: float
    mastery_npm: float


def consolidation_score(
    candidate: Compound, current: Compound, current_stats: CompoundStats | None, mastery_npm: float
) -> float:
    """Incentive to stay on the current compound.

    Zero for anything other than the repeat candidate and for a mastered
    current compound. Before expansion it is always 1.0; afterwards it shrinks
    with distance to mastery and is clamped to [0.2, 0.8].
    """
    if candidate != current:
        return 0.0
    if current_stats is not None and current_stats.is_mastered:
        return 0.0
    if current_stats is None or not current_stats.has_expanded:
        return 1.0
    return max(0.2, min(0.8, 1.0 - current_stats.ema_npm / mastery_npm))


def staleness_score(candidate_stats: CompoundStats | None, current_session: int, staleness_sessions: int) -> float:
    """Sessions since last practice, scaled to [0, 1] and attenuated by attempt count."""
    if candidate_stats is None or candidate_stats.last_practiced_session is None:
        return 1.0
    sessions_since = current_session - candidate_stats.last_practiced_session
    raw = min(sessions_since / staleness_sessions, 1.0)
    # 1 attempt -> x0.33, 2 -> x0.67, 3+ -> x1.0
    attempt_factor = min(candidate_stats.attempts / FULL_STALENESS_ATTEMPTS, 1.0)
    return raw * attempt_factor


def readiness_score(
    candidate: Compound,
    candidate_stats: CompoundStats | None,
    related_stats: Sequence[CompoundStats],
    config: ScoringConfig,
    expansion_npm: float,
) -> float:
    """Estimated chance of success on the candidate."""
    if candidate_stats is not None and candidate_stats.attempts > 0:
        return min(candidate_stats.ema_npm / expansion_npm, 1.0)
    if not related_stats:
        return NO_HISTORY_READINESS

    weighted_total = 0.0
    for related in related_stats:
        coefficient = config.transfer_coefficient(changed_dimension(candidate, related.compound))
        weighted_total += related.ema_npm * coefficient
    estimated_npm = weighted_total / len(related_stats)
    return min(estimated_npm / expansion_npm, 1.0)


def diversity_score(candidate: Compound, current: Compound, recent_dimension_changes: Sequence[str]) -> float:
    """Bonus for varying a dimension that was not changed recently."""
    dimension = changed_dimension(current, candidate)
    if dimension is None:
        return 0.0
    if dimension in recent_dimension_changes:
        return 0.0
    return DIVERSITY_BONUS


def score_factors(candidate: Compound, context: ScoringContext) -> CandidateFactors:
    """Compute every factor for a candidate."""
    config = context.config
    consolidation = consolidation_score(candidate, context.current, context.current_stats, context.mastery_npm)
    staleness = staleness_score(context.candidate_stats, context.current_session, config.staleness_sessions)
    readiness = readiness_score(
        candidate, context.candidate_stats, context.related_stats, config, context.expansion_npm
    )
    diversity = diversity_score(candidate, context.current, context.recent_dimension_changes)
    return CandidateFactors(
        consolidation=FactorScore(consolidation, config.consolidation_weight * consolidation),
        staleness=FactorScore(staleness, config.staleness_weight * staleness),
        readiness=FactorScore(readiness, config.readiness_weight * readiness),
        diversity=FactorScore(diversity, config.diversity_weight * diversity),
    )


def score_candidate(candidate: Compound, context: ScoringContext) -> float:
    """Return the linear combination of weighted factors."""
    return score_factors(candidate, context).total


def weighted_random_select(items: Sequence[T], scores: Sequence[float], random_fn: RandomFn = random.random) -> T:
    """Pick one item with probability proportional to its squared score.

    Squaring sharpens the distribution toward high scorers while keeping
    some exploration. All-zero scores fall back to a uniform pick.
    """
    if not items:
        raise ValueError("Cannot select from empty set")
    if len(items) != len(scores):
        raise ValueError("Items and scores must have the same length")
    if len(items) == 1:
        return items[0]

    squared = [score * score for score in scores]
    total = sum(squared)
    if total == 0:
        index = min(int(random_fn() * len(items)), len(items) - 1)
        return items[index]

    threshold = random_fn() * total
    cumulative = 0.0
    for item, weight in zip(items, squared, strict=True):
        cumulative += weight
        if weight > 0 and cumulative >= threshold:
            return item
    return items[-1]
