from collections import Counter
from dataclasses import replace

import pytest

from chopstrainer.models import Compound, CompoundStats
from chopstrainer.scoring import (
    ScoringContext,
    consolidation_score,
    diversity_score,
    readiness_score,
    score_candidate,
    score_factors,
    staleness_score,
    weighted_random_select,
)
from chopstrainer.settings import ScoringConfig

CURRENT = Compound(scale="pentatonic_minor", position="E", rhythm="8ths", rhythm_pattern="xx", note_pattern="stepwise")


def _stats(compound: Compound = CURRENT, **kwargs: object) -> CompoundStats:
    return replace(CompoundStats.empty(compound), **kwargs)


def _never_called() -> float:
    raise AssertionError("random source consulted")


def test_consolidation_unexpanded_is_one_regardless_of_speed() -> None:
    assert consolidation_score(CURRENT, CURRENT, None, 480) == 1.0
    assert consolidation_score(CURRENT, CURRENT, _stats(attempts=4, ema_npm=9999.0), 480) == 1.0


def test_consolidation_mastered_is_zero() -> None:
    stats = _stats(attempts=5, ema_npm=500.0, has_expanded=True, is_mastered=True)
    assert consolidation_score(CURRENT, CURRENT, stats, 480) == 0.0


def test_consolidation_expanded_is_clamped() -> None:
    def expanded(ema: float) -> CompoundStats:
        return _stats(attempts=2, ema_npm=ema, has_expanded=True)

    assert consolidation_score(CURRENT, CURRENT, expanded(240.0), 480) == pytest.approx(0.5)
    assert consolidation_score(CURRENT, CURRENT, expanded(0.0), 480) == pytest.approx(0.8)
    assert consolidation_score(CURRENT, CURRENT, expanded(470.0), 480) == pytest.approx(0.2)


def test_consolidation_only_for_repeat_candidate() -> None:
    other = replace(CURRENT, scale="blues")
    assert consolidation_score(other, CURRENT, None, 480) == 0.0


def test_staleness_without_history_is_maximal() -> None:
    assert staleness_score(None, 10, 10) == 1.0
    assert staleness_score(_stats(attempts=0), 10, 10) == 1.0


def test_staleness_attenuated_by_attempts() -> None:
    once = _stats(attempts=1, last_practiced_session=0)
    assert staleness_score(once, 10, 10) == pytest.approx(1 / 3)
    thrice = _stats(attempts=3, last_practiced_session=0)
    assert staleness_score(thrice, 10, 10) == pytest.approx(1.0)
    assert staleness_score(thrice, 5, 10) == pytest.approx(0.5)
    assert staleness_score(_stats(attempts=6, last_practiced_session=0), 40, 10) == pytest.approx(1.0)


def test_readiness_from_direct_history() -> None:
    config = ScoringConfig()
    assert readiness_score(CURRENT, _stats(attempts=2, ema_npm=200.0), [], config, 400) == pytest.approx(0.5)
    assert readiness_score(CURRENT, _stats(attempts=2, ema_npm=800.0), [], config, 400) == 1.0


def test_readiness_from_related_history() -> None:
    config = ScoringConfig()
    scale_neighbor = _stats(replace(CURRENT, scale="blues"), attempts=3, ema_npm=400.0)
    rhythm_neighbor = _stats(replace(CURRENT, rhythm="triplets", rhythm_pattern="xxx"), attempts=3, ema_npm=400.0)
    assert readiness_score(CURRENT, None, [scale_neighbor], config, 400) == pytest.approx(0.5)
    assert readiness_score(CURRENT, None, [rhythm_neighbor], config, 400) == pytest.approx(0.6)
    assert readiness_score(CURRENT, None, [scale_neighbor, rhythm_neighbor], config, 400) == pytest.approx(0.55)


def test_readiness_default_coefficient_when_change_unknown() -> None:
    far = _stats(replace(CURRENT, scale="blues", position="A"), attempts=1, ema_npm=400.0)
    assert readiness_score(CURRENT, None, [far], ScoringConfig(), 400) == pytest.approx(0.5)


def test_readiness_without_related_history() -> None:
    assert readiness_score(CURRENT, None, [], ScoringConfig(), 400) == pytest.approx(0.3)
    assert readiness_score(CURRENT, _stats(attempts=0), [], ScoringConfig(), 400) == pytest.approx(0.3)


def test_diversity() -> None:
    scale_change = replace(CURRENT, scale="blues")
    assert diversity_score(CURRENT, CURRENT, []) == 0.0
    assert diversity_score(scale_change, CURRENT, ["scale"]) == 0.0
    assert diversity_score(scale_change, CURRENT, ["rhythm", "position"]) == 0.5
    assert diversity_score(replace(scale_change, position="A"), CURRENT, []) == 0.0


def test_score_is_weighted_sum_of_factors() -> None:
    candidate = replace(CURRENT, position="D")
    context = ScoringContext(
        current=CURRENT,
        current_stats=_stats(attempts=3, ema_npm=420.0, has_expanded=True, last_practiced_session=3),
        candidate_stats=None,
        related_stats=[_stats(attempts=3, ema_npm=420.0)],
        current_session=3,
        recent_dimension_changes=[],
        config=ScoringConfig(),
        expansion_npm=400,
        mastery_npm=480,
    )
    factors = score_factors(candidate, context)
    assert factors.consolidation.raw == 0.0
    assert factors.staleness.weighted == pytest.approx(0.5)
    assert factors.readiness.raw == pytest.approx(420 * 0.5 / 400)
    assert factors.diversity.weighted == pytest.approx(0.1)
    assert score_candidate(candidate, context) == pytest.approx(0.5 + 0.8 * 0.525 + 0.1)
    assert factors.dominant() == "staleness"


def test_select_rejects_empty_and_mismatched() -> None:
    with pytest.raises(ValueError, match="Cannot select from empty set"):
        weighted_random_select([], [])
    with pytest.raises(ValueError):
        weighted_random_select(["a", "b"], [1.0])


def test_select_single_item_skips_randomness() -> None:
    assert weighted_random_select(["only"], [0.0], _never_called) == "only"


def test_select_zero_weight_items_never_chosen() -> None:
    for value in (0.0, 0.25, 0.5, 0.999):
        assert weighted_random_select(["a", "b", "c"], [0, 0, 5], lambda value=value: value) == "c"


def test_select_all_zero_scores_is_uniform() -> None:
    draws = iter((index + 0.5) / 300 for index in range(300))
    counts = Counter(weighted_random_select(["a", "b", "c"], [0, 0, 0], lambda: next(draws)) for _ in range(300))
    assert counts == {"a": 100, "b": 100, "c": 100}


def test_select_uses_squared_scores() -> None:
    items = ["low", "high"]
    scores = [1.0, 2.0]
    # squared weights 1 and 4; the first fifth of the range picks "low"
    assert weighted_random_select(items, scores, lambda: 0.19) == "low"
    assert weighted_random_select(items, scores, lambda: 0.21) == "high"


def test_select_is_deterministic_for_fixed_source() -> None:
    items = ["a", "b", "c", "d"]
    scores = [0.3, 1.2, 0.7, 0.9]
    first = [weighted_random_select(items, scores, lambda value=value: value) for value in (0.1, 0.4, 0.8)]
    second = [weighted_random_select(items, scores, lambda value=value: value) for value in (0.1, 0.4, 0.8)]
    assert first == second
