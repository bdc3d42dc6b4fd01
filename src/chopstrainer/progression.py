"""Compound state machine: attempt transitions, tier unlocks and tempo helpers."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol

from .achievements import Achievement
from .candidates import StatisticsStore
from .compound import compound_id
from .dimensions import DimensionRegistry
from .models import Compound, CompoundStats, PracticeEntry
from .settings import DimensionTier, Settings, SpeedTiers
from .streaks import StreakInfo

logger = logging.getLogger(__name__)


def calculate_ema(current: float, value: float, alpha: float) -> float:
    """Return exponential moving average; a zero average is seeded by `value`."""
    if current == 0:
        return value
    return alpha * value + (1 - alpha) * current


def bpm_to_npm(bpm: float, notes_per_beat: int) -> float:
    """Convert tempo to notes per minute."""
    return bpm * notes_per_beat


def npm_to_bpm(npm: float, notes_per_beat: int) -> float:
    """Convert notes per minute back to tempo."""
    return npm / notes_per_beat


def speed_tier(npm: float, tiers: SpeedTiers) -> str:
    """Return the named speed band for a notes-per-minute value."""
    bands = (
        ("struggling", tiers.struggling),
        ("developing", tiers.developing),
        ("progressing", tiers.progressing),
        ("fast", tiers.fast),
        ("very_fast", tiers.very_fast),
        ("super_fast", tiers.super_fast),
    )
    for name, upper in bands:
        if npm < upper:
            return name
    return "shredding"


def _streak(previous: int, hit: bool) -> int:
    """Extend a streak on a hit, reset it otherwise."""
    return previous + 1 if hit else 0


def apply_attempt(
    stats: CompoundStats,
    npm: float,
    bpm: float,
    session: int,
    settings: Settings,
    practiced_at: str | None = None,
) -> CompoundStats:
    """Return statistics after one attempt at `npm` during `session`."""
    progression = settings.progression
    attempts = stats.attempts + 1
    ema = npm if stats.attempts == 0 else calculate_ema(stats.ema_npm, npm, settings.ema_alpha)
    mastery_streak = _streak(stats.mastery_streak, npm >= progression.mastery_npm)
    is_mastered = stats.is_mastered or mastery_streak >= progression.mastery_streak
    return replace(
        stats,
        attempts=attempts,
        best_npm=max(stats.best_npm, npm),
        ema_npm=ema,
        last_npm=npm,
        last_bpm=bpm,
        mastery_streak=mastery_streak,
        struggling_streak=_streak(stats.struggling_streak, npm < settings.struggling_npm),
        has_expanded=stats.has_expanded or npm >= progression.expansion_npm,
        is_mastered=is_mastered,
        last_practiced=practiced_at or _now(),
        last_practiced_session=session,
    )


def check_tier_unlocks(
    tiers: Iterable[DimensionTier],
    is_unlocked: Callable[[str], bool],
    count_expanded: Callable[[int], int],
) -> list[str]:
    """Return names of locked dimensions whose prerequisite tier is now satisfied.

    Tiers are checked in ascending order. Tier-0 dimensions are always
    available and never reported.
    """
    ready: list[str] = []
    for tier in sorted(tiers, key=lambda item: item.tier):
        if tier.tier == 0 or is_unlocked(tier.name):
            continue
        if count_expanded(tier.tier - 1) >= tier.unlock_requirement:
            ready.append(tier.name)
    return ready


class AttemptStore(StatisticsStore, Protocol):
    """Statistics store that can also append to the practice log."""

    def log_practice(
        self, compound: Compound, key: str, bpm: float, npm: float, reasoning: str | None
    ) -> PracticeEntry: ...


@dataclass(frozen=True)
class AttemptOutcome:
    """Every effect of one logged attempt.

    `streak` and `achievements` are filled in by the service once the
    profile-level rewards have been applied.
    """

    entry: PracticeEntry
    stats: CompoundStats
    session: int
    unlocked: tuple[str, ...] = ()
    newly_expanded: bool = False
    newly_mastered: bool = False
    streak: StreakInfo | None = None
    achievements: tuple[Achievement, ...] = ()


def record_practice(
    store: AttemptStore,
    registry: DimensionRegistry,
    settings: Settings,
    compound: Compound,
    key: str,
    bpm: float,
    reasoning: str | None = None,
) -> AttemptOutcome:
    """Apply one attempt: session, log entry, statistics and tier unlocks.

    This is the only place the session counter advances for a live attempt.
    """
    registry.validate_compound(compound)
    npm = bpm_to_npm(bpm, registry.rhythm.notes_per_beat(compound.rhythm))
    session = store.increment_session()
    entry = store.log_practice(compound, key, bpm, npm, reasoning)

    identifier = compound_id(compound)
    previous = store.get_compound_stats(identifier) or CompoundStats.empty(compound)
    stats = apply_attempt(previous, npm, bpm, session, settings, practiced_at=entry.logged_at)
    store.save_compound_stats(stats)
    newly_expanded = stats.has_expanded and not previous.has_expanded
    newly_mastered = stats.is_mastered and not previous.is_mastered
    if newly_expanded:
        logger.info("Compound %s expanded at %.0f npm", identifier, npm)
    if newly_mastered:
        logger.info("Compound %s mastered", identifier)

    unlocked = unlock_ready_dimensions(store, settings, session)
    return AttemptOutcome(
        entry=entry,
        stats=stats,
        session=session,
        unlocked=tuple(unlocked),
        newly_expanded=newly_expanded,
        newly_mastered=newly_mastered,
    )


def unlock_ready_dimensions(store: StatisticsStore, settings: Settings, session: int) -> list[str]:
    """Unlock and return every dimension whose requirement is met."""
    unlocked = check_tier_unlocks(
        settings.dimension_tiers, store.is_dimension_unlocked, store.count_expanded_compounds_in_tier
    )
    for name in unlocked:
        store.unlock_dimension(name, session)
        logger.info("Dimension %s unlocked at session %d", name, session)
    return unlocked


def _now() -> str:
    return datetime.now(UTC).isoformat()
