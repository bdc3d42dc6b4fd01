from dataclasses import replace

import pytest

from chopstrainer.compound import compound_id
from chopstrainer.dimensions import DimensionRegistry
from chopstrainer.models import CompoundStats
from chopstrainer.progress import ProfileStore, ProgressStore
from chopstrainer.progression import (
    apply_attempt,
    bpm_to_npm,
    calculate_ema,
    check_tier_unlocks,
    npm_to_bpm,
    record_practice,
    speed_tier,
    unlock_ready_dimensions,
)
from chopstrainer.settings import DEFAULT_SETTINGS, DimensionTier, SpeedTiers


def test_calculate_ema() -> None:
    assert calculate_ema(0.0, 300.0, 0.3) == 300.0
    assert calculate_ema(400.0, 500.0, 0.3) == pytest.approx(430.0)


def test_tempo_conversions() -> None:
    assert bpm_to_npm(210, 2) == 420
    assert npm_to_bpm(420, 3) == 140


@pytest.mark.parametrize(
    ("npm", "expected"),
    [
        (100, "struggling"),
        (200, "developing"),
        (300, "progressing"),
        (420, "fast"),
        (450, "very_fast"),
        (500, "super_fast"),
        (600, "shredding"),
    ],
)
def test_speed_tier(npm: float, expected: str) -> None:
    assert speed_tier(npm, SpeedTiers()) == expected


def test_first_attempt_seeds_statistics(registry: DimensionRegistry) -> None:
    entry = registry.entry_compound()
    stats = apply_attempt(CompoundStats.empty(entry), 300.0, 150.0, 1, DEFAULT_SETTINGS, practiced_at="t1")
    assert stats.attempts == 1
    assert stats.ema_npm == 300.0
    assert stats.best_npm == 300.0
    assert stats.last_bpm == 150.0
    assert stats.last_practiced == "t1"
    assert stats.last_practiced_session == 1
    assert not stats.has_expanded

    second = apply_attempt(stats, 200.0, 100.0, 2, DEFAULT_SETTINGS)
    assert second.ema_npm == pytest.approx(0.3 * 200 + 0.7 * 300)
    assert second.best_npm == 300.0
    assert second.last_npm == 200.0


def test_slow_attempt_after_expansion(registry: DimensionRegistry) -> None:
    stats = replace(
        CompoundStats.empty(registry.entry_compound()),
        attempts=1,
        ema_npm=420.0,
        best_npm=420.0,
        has_expanded=True,
        mastery_streak=1,
    )
    after = apply_attempt(stats, 150.0, 75.0, 2, DEFAULT_SETTINGS)
    assert after.struggling_streak == 1
    assert after.mastery_streak == 0
    assert after.has_expanded


def test_mastery_needs_consecutive_fast_attempts(registry: DimensionRegistry) -> None:
    stats = CompoundStats.empty(registry.entry_compound())
    for session, npm in enumerate([480.0, 500.0, 300.0, 480.0, 490.0], start=1):
        stats = apply_attempt(stats, npm, npm / 2, session, DEFAULT_SETTINGS)
        assert not stats.is_mastered
    stats = apply_attempt(stats, 520.0, 260.0, 6, DEFAULT_SETTINGS)
    assert stats.is_mastered
    stats = apply_attempt(stats, 100.0, 50.0, 7, DEFAULT_SETTINGS)
    assert stats.is_mastered
    assert stats.has_expanded


def test_struggling_and_mastery_streaks_are_exclusive(registry: DimensionRegistry) -> None:
    stats = CompoundStats.empty(registry.entry_compound())
    for session, npm in enumerate([100.0, 150.0, 500.0, 500.0, 120.0, 490.0], start=1):
        stats = apply_attempt(stats, npm, npm / 2, session, DEFAULT_SETTINGS)
        assert stats.struggling_streak == 0 or stats.mastery_streak == 0


def test_check_tier_unlocks_ascending_and_skips_unlocked() -> None:
    tiers = [
        DimensionTier(name="articulation", tier=2, unlock_requirement=2),
        DimensionTier(name="scale", tier=0),
        DimensionTier(name="note-pattern", tier=1, unlock_requirement=1),
    ]
    counts = {0: 3, 1: 2}
    assert check_tier_unlocks(tiers, lambda name: False, counts.__getitem__) == ["note-pattern", "articulation"]
    assert check_tier_unlocks(tiers, lambda name: name == "note-pattern", counts.__getitem__) == ["articulation"]
    assert check_tier_unlocks(tiers, lambda name: False, {0: 0, 1: 0}.__getitem__) == []


def test_record_practice_applies_every_effect(profile_store: ProfileStore, registry: DimensionRegistry) -> None:
    entry = registry.entry_compound()
    outcome = record_practice(profile_store, registry, DEFAULT_SETTINGS, entry, "G", 210.0, "because")
    assert outcome.session == 1
    assert outcome.entry.npm == 420.0
    assert outcome.entry.reasoning == "because"
    assert outcome.stats.has_expanded
    assert outcome.newly_expanded
    assert not outcome.newly_mastered
    assert outcome.unlocked == ("note-pattern", "articulation")
    assert profile_store.get_compound_stats(compound_id(entry)) == outcome.stats
    assert profile_store.current_session() == 1

    again = record_practice(profile_store, registry, DEFAULT_SETTINGS, entry, "G", 215.0)
    assert again.session == 2
    assert not again.newly_expanded
    assert again.unlocked == ()
    assert again.stats.attempts == 2


def test_record_practice_uses_rhythm_notes_per_beat(profile_store: ProfileStore, registry: DimensionRegistry) -> None:
    triplets = registry.get("rhythm").apply(registry.entry_compound(), "triplets")
    outcome = record_practice(profile_store, registry, DEFAULT_SETTINGS, triplets, "A", 140.0)
    assert outcome.entry.npm == 420.0
    assert outcome.stats.has_expanded


def test_first_expansion_unlocks_next_tier_at_current_session(
    progress: ProgressStore, registry: DimensionRegistry
) -> None:
    tiers = tuple(
        replace(item, unlock_requirement=3) if item.name == "articulation" else item
        for item in DEFAULT_SETTINGS.dimension_tiers
    )
    settings = replace(DEFAULT_SETTINGS, dimension_tiers=tiers)
    profile = progress.create_profile("unlocks")
    store = ProfileStore(progress, profile.id, tiers)
    entry = registry.entry_compound()

    first = record_practice(store, registry, settings, entry, "C", 150.0)
    assert first.unlocked == ()
    assert not store.is_dimension_unlocked("note-pattern")

    second = record_practice(store, registry, settings, entry, "C", 200.0)
    assert second.unlocked == ("note-pattern",)
    assert store.is_dimension_unlocked("note-pattern")
    assert not store.is_dimension_unlocked("articulation")
    unlocks = progress.list_unlocks(profile.id)
    assert [(item.dimension, item.unlocked_at_session) for item in unlocks] == [("note-pattern", 2)]


def test_unlock_ready_dimensions_is_idempotent(profile_store: ProfileStore, registry: DimensionRegistry) -> None:
    record_practice(profile_store, registry, DEFAULT_SETTINGS, registry.entry_compound(), "C", 210.0)
    assert unlock_ready_dimensions(profile_store, DEFAULT_SETTINGS, 5) == []


def test_record_practice_rejects_unknown_values(profile_store: ProfileStore, registry: DimensionRegistry) -> None:
    bogus = replace(registry.entry_compound(), scale="kazoo")
    with pytest.raises(ValueError):
        record_practice(profile_store, registry, DEFAULT_SETTINGS, bogus, "C", 120.0)
    assert profile_store.current_session() == 0
    assert profile_store.last_practiced_compound() is None
