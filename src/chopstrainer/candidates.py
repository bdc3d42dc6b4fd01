"""Candidate generation and selection for compound recommendations."""

from __future__ import annotations

import logging
import random
import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .compound import changed_dimension, compound_id, dimension_distance
from .dimensions import DimensionRegistry
from .models import Compound, CompoundStats
from .scoring import CandidateFactors, RandomFn, ScoringContext, score_factors, weighted_random_select
from .settings import Settings

logger = logging.getLogger(__name__)

STRUGGLING_BOOST = 0.5
MAX_RECENCY_BOOST = 0.5
RECENCY_SESSIONS = 10
# Fewer practiced compounds than this and neglect is not boosted.
RECENCY_MIN_PRACTICED = 3


class StatisticsStore(Protocol):
    """Per-profile statistics surface consumed by the recommender."""

    def get_compound_stats(self, identifier: str) -> CompoundStats | None: ...

    def list_compound_stats(self) -> list[CompoundStats]: ...

    def related_compounds(self, compound: Compound) -> list[CompoundStats]: ...

    def last_practiced_compound(self) -> Compound | None: ...

    def current_session(self) -> int: ...

    def increment_session(self) -> int: ...

    def is_dimension_unlocked(self, name: str) -> bool: ...

    def unlock_dimension(self, name: str, session: int) -> None: ...

    def recent_dimension_changes(self, lookback: int) -> list[str]: ...

    def save_compound_stats(self, stats: CompoundStats) -> None: ...

    def count_expanded_compounds_in_tier(self, tier: int) -> int: ...


@dataclass(frozen=True)
class CompoundCandidate:
    """Scored recommendation candidate."""

    compound: Compound
    score: float
    factors: CandidateFactors
    recency_boost: float = 0.0
    struggling_boost: float = 0.0
    source_compound_id: str | None = None
    changed_dimension: str | None = None


class _CandidateScorer:
    """Scores candidates against one snapshot of store state."""

    def __init__(self, current: Compound, store: StatisticsStore, settings: Settings) -> None:
        self.current = current
        self.store = store
        self.settings = settings
        self.session = store.current_session()
        self.recent_changes = store.recent_dimension_changes(settings.scoring.diversity_lookback)

    def score(
        self,
        candidate: Compound,
        against: Compound,
        against_stats: CompoundStats | None,
        source_id: str,
        recency: float = 0.0,
        struggling: float = 0.0,
    ) -> CompoundCandidate:
        """Score `candidate` relative to `against` and attach boosts."""
        context = ScoringContext(
            current=against,
            current_stats=against_stats,
            candidate_stats=self.store.get_compound_stats(compound_id(candidate)),
            related_stats=self.store.related_compounds(candidate),
            current_session=self.session,
            recent_dimension_changes=self.recent_changes,
            config=self.settings.scoring,
            expansion_npm=self.settings.progression.expansion_npm,
            mastery_npm=self.settings.progression.mastery_npm,
        )
        factors = score_factors(candidate, context)
        return CompoundCandidate(
            compound=candidate,
            score=factors.total + recency + struggling,
            factors=factors,
            recency_boost=recency,
            struggling_boost=struggling,
            source_compound_id=source_id,
            changed_dimension=changed_dimension(self.current, candidate),
        )


def current_compound(store: StatisticsStore, registry: DimensionRegistry) -> Compound:
    """Return the last practiced compound, or the all-entry-point compound.

    Dimensions missing from the last attempt carry their entry point.
    """
    last = store.last_practiced_compound()
    if last is None:
        return registry.entry_compound()
    result = last
    for name in registry.names():
        dimension = registry.get(name)
        if dimension.value_of(result) is None:
            result = dimension.apply(result, dimension.entry_point())
    return result


def fallback_candidate(compound: Compound) -> CompoundCandidate:
    """Return the single synthetic candidate used when nothing else qualifies."""
    return CompoundCandidate(
        compound=compound,
        score=1.0,
        factors=CandidateFactors.zero(),
        source_compound_id=compound_id(compound),
    )


def recency_boost(sessions_since: int, practiced_count: int) -> float:
    """Boost for neglected compounds, disabled while the skill tree is tiny."""
    if practiced_count < RECENCY_MIN_PRACTICED:
        return 0.0
    return min(sessions_since / RECENCY_SESSIONS, MAX_RECENCY_BOOST)


def _is_mastered(store: StatisticsStore, compound: Compound) -> bool:
    stats = store.get_compound_stats(compound_id(compound))
    return stats is not None and stats.is_mastered


def neighbor_compounds(
    source: Compound,
    source_stats: CompoundStats | None,
    store: StatisticsStore,
    registry: DimensionRegistry,
    settings: Settings,
) -> list[Compound]:
    """Return unmastered one-step variations of `source` the learner may be offered.

    Tier-0 dimensions vary only from an expanded source. Higher tiers vary
    from any source once the dimension is unlocked.
    """
    expanded = source_stats is not None and source_stats.has_expanded
    result: list[Compound] = []
    for name in registry.names():
        if settings.tier_of(name) == 0:
            if not expanded:
                continue
        elif not store.is_dimension_unlocked(name):
            continue
        dimension = registry.get(name)
        value = dimension.value_of(source)
        if value is None:
            continue
        for neighbor in dimension.neighbors(value):
            candidate = dimension.apply(source, neighbor)
            if not _is_mastered(store, candidate):
                result.append(candidate)
    return result


def deduplicate(candidates: Sequence[CompoundCandidate]) -> list[CompoundCandidate]:
    """Keep the highest-scoring candidate per compound identity, first-seen order."""
    by_id: dict[str, CompoundCandidate] = {}
    for candidate in candidates:
        key = compound_id(candidate.compound)
        existing = by_id.get(key)
        if existing is None or candidate.score > existing.score:
            by_id[key] = candidate
    return list(by_id.values())


def generate_candidates(
    current: Compound, store: StatisticsStore, registry: DimensionRegistry, settings: Settings
) -> list[CompoundCandidate]:
    """Generate scored candidates from every practiced compound.

    Each practiced compound contributes a STAY candidate (unless mastered)
    scored against the global current compound, plus neighbor candidates
    scored against itself. Results are deduplicated and restricted to at
    most one dimension away from `current`. Never returns an empty list.
    """
    practiced = [stats for stats in store.list_compound_stats() if stats.attempts > 0]
    if not practiced:
        logger.debug("No practiced compounds; falling back to %s", compound_id(current))
        return [fallback_candidate(current)]

    scorer = _CandidateScorer(current, store, settings)
    current_stats = store.get_compound_stats(compound_id(current))
    generated: list[CompoundCandidate] = []

    for stats in practiced:
        source = stats.compound
        source_id = compound_id(source)
        sessions_since = scorer.session - (stats.last_practiced_session or 0)
        recency = recency_boost(sessions_since, len(practiced))
        struggling = STRUGGLING_BOOST if stats.struggling_streak > 0 else 0.0

        if not stats.is_mastered:
            generated.append(scorer.score(source, current, current_stats, source_id, recency, struggling))
        for candidate in neighbor_compounds(source, stats, store, registry, settings):
            generated.append(scorer.score(candidate, source, stats, source_id, recency))

    deduped = deduplicate(generated)
    filtered = [item for item in deduped if dimension_distance(current, item.compound) <= 1]
    logger.debug(
        "Generated %d candidates (%d unique, %d within one change)", len(generated), len(deduped), len(filtered)
    )
    if not filtered:
        return [fallback_candidate(current)]
    return filtered


def generate_single_origin_candidates(
    current: Compound, store: StatisticsStore, registry: DimensionRegistry, settings: Settings
) -> list[CompoundCandidate]:
    """Generate candidates from the current compound only.

    Deprecated: live recommendations use :func:`generate_candidates`. When
    every option is mastered, one blended candidate is built from the first
    unmastered value of each dimension.
    """
    warnings.warn(
        "generate_single_origin_candidates is deprecated; use generate_candidates",
        DeprecationWarning,
        stacklevel=2,
    )
    scorer = _CandidateScorer(current, store, settings)
    current_id = compound_id(current)
    current_stats = store.get_compound_stats(current_id)

    candidates: list[CompoundCandidate] = []
    if current_stats is None or not current_stats.is_mastered:
        candidates.append(scorer.score(current, current, current_stats, current_id))
    for candidate in neighbor_compounds(current, current_stats, store, registry, settings):
        candidates.append(scorer.score(candidate, current, current_stats, current_id))

    if not candidates:
        blended = blend_unmastered(current, store, registry)
        candidates.append(scorer.score(blended, current, current_stats, current_id))
    return candidates


def blend_unmastered(current: Compound, store: StatisticsStore, registry: DimensionRegistry) -> Compound:
    """Pick, per dimension, the first value whose single-change compound is unmastered.

    Candidates are tried in order: the current value, its neighbors, then
    every value of the dimension. The entry point is used when all are mastered.
    """
    blended = current
    for name in registry.names():
        dimension = registry.get(name)
        value = dimension.value_of(current)
        if value is None:
            continue
        options = [value, *dimension.neighbors(value), *dimension.all_values()]
        chosen = next(
            (option for option in options if not _is_mastered(store, dimension.apply(current, option))),
            dimension.entry_point(),
        )
        blended = dimension.apply(blended, chosen)
    return blended


def select_candidate(
    candidates: Sequence[CompoundCandidate], random_fn: RandomFn = random.random
) -> CompoundCandidate:
    """Pick one candidate by weighted-random sampling on scores."""
    selected = weighted_random_select(list(candidates), [item.score for item in candidates], random_fn)
    logger.debug("Selected %s (score %.3f)", compound_id(selected.compound), selected.score)
    return selected
