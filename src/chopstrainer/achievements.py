"""Achievement definitions and progress evaluation.

Each achievement measures progress in ``[0, 1]`` from an
`AchievementSnapshot`; it is earned once progress reaches 1. Earned
achievements are permanent, so evaluation only reports ones not yet earned.
"""

from __future__ import annotations

from collections.abc import Callable, Collection, Iterable
from dataclasses import dataclass, field

CAGED_POSITIONS = frozenset({"C", "A", "G", "E", "D"})


@dataclass(frozen=True)
class AchievementSnapshot:
    """Profile metrics every achievement is evaluated against."""

    practice_count: int = 0
    longest_streak: int = 0
    expanded_count: int = 0
    mastered_count: int = 0
    max_npm: float = 0.0
    mastered_positions: frozenset[str] = field(default_factory=frozenset)
    practiced_positions: frozenset[str] = field(default_factory=frozenset)
    practiced_scales: frozenset[str] = field(default_factory=frozenset)
    practiced_rhythms: frozenset[str] = field(default_factory=frozenset)
    note_pattern_unlocked: bool = False


@dataclass(frozen=True)
class Achievement:
    """Static achievement definition."""

    id: str
    name: str
    description: str
    category: str
    progress: Callable[[AchievementSnapshot], float] = field(compare=False, repr=False)

    def progress_of(self, snapshot: AchievementSnapshot) -> float:
        """Return progress clamped to ``[0, 1]``."""
        return max(0.0, min(1.0, self.progress(snapshot)))

    def is_met(self, snapshot: AchievementSnapshot) -> bool:
        """Return whether the snapshot satisfies this achievement."""
        return self.progress_of(snapshot) >= 1.0


@dataclass(frozen=True)
class AchievementStatus:
    """Achievement with the profile's earned timestamp and progress."""

    achievement: Achievement
    earned_at: str | None
    progress: float

    @property
    def earned(self) -> bool:
        return self.earned_at is not None


def _ratio(count: float, target: float) -> float:
    return count / target


def _caged(positions: frozenset[str]) -> int:
    return len(positions & CAGED_POSITIONS)


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement(
        "first-practice", "First Steps", "Complete your first practice session", "consistency",
        lambda s: _ratio(s.practice_count, 1),
    ),
    Achievement(
        "3-day-streak", "Getting Started", "Achieve a 3-day practice streak", "consistency",
        lambda s: _ratio(s.longest_streak, 3),
    ),
    Achievement(
        "7-day-streak", "Week Warrior", "Achieve a 7-day practice streak", "consistency",
        lambda s: _ratio(s.longest_streak, 7),
    ),
    Achievement(
        "14-day-streak", "Dedicated", "Achieve a 14-day practice streak", "consistency",
        lambda s: _ratio(s.longest_streak, 14),
    ),
    Achievement(
        "30-day-streak", "Monthly Master", "Achieve a 30-day practice streak", "consistency",
        lambda s: _ratio(s.longest_streak, 30),
    ),
    Achievement(
        "first-expansion", "Breaking Through", "Expand your first compound", "mastery",
        lambda s: _ratio(s.expanded_count, 1),
    ),
    Achievement(
        "first-mastery", "Master of One", "Master your first compound", "mastery",
        lambda s: _ratio(s.mastered_count, 1),
    ),
    Achievement(
        "master-5-compounds", "Rising Expert", "Master 5 different compounds", "mastery",
        lambda s: _ratio(s.mastered_count, 5),
    ),
    Achievement(
        "master-10-compounds", "Seasoned Player", "Master 10 different compounds", "mastery",
        lambda s: _ratio(s.mastered_count, 10),
    ),
    Achievement(
        "master-all-positions", "Fretboard Navigator", "Master a compound in every CAGED position", "mastery",
        lambda s: _ratio(_caged(s.mastered_positions), len(CAGED_POSITIONS)),
    ),
    Achievement(
        "try-all-positions", "Explorer", "Practice in all 5 CAGED positions", "exploration",
        lambda s: _ratio(_caged(s.practiced_positions), len(CAGED_POSITIONS)),
    ),
    Achievement(
        "try-all-scales", "Scale Scholar", "Practice at least 4 different scales", "exploration",
        lambda s: _ratio(len(s.practiced_scales), 4),
    ),
    Achievement(
        "try-3-rhythms", "Rhythm Explorer", "Practice with 3 different rhythms", "exploration",
        lambda s: _ratio(len(s.practiced_rhythms), 3),
    ),
    Achievement(
        "unlock-note-pattern", "Pattern Unlocked", "Unlock the note-pattern dimension", "exploration",
        lambda s: 1.0 if s.note_pattern_unlocked else 0.0,
    ),
    Achievement(
        "practice-10-sessions", "Regular", "Complete 10 practice sessions", "exploration",
        lambda s: _ratio(s.practice_count, 10),
    ),
    Achievement(
        "reach-400-npm", "Speed Demon", "Reach 400 NPM in any compound", "speed",
        lambda s: _ratio(s.max_npm, 400),
    ),
    Achievement(
        "reach-480-npm", "Lightning Fingers", "Reach 480 NPM in any compound", "speed",
        lambda s: _ratio(s.max_npm, 480),
    ),
    Achievement(
        "reach-560-npm", "Shredder", "Reach 560 NPM in any compound", "speed",
        lambda s: _ratio(s.max_npm, 560),
    ),
)

_BY_ID = {achievement.id: achievement for achievement in ACHIEVEMENTS}


def get_achievement(achievement_id: str) -> Achievement | None:
    """Return a definition by id, or None for ids no longer defined."""
    return _BY_ID.get(achievement_id)


def check_achievements(snapshot: AchievementSnapshot, earned: Collection[str]) -> list[Achievement]:
    """Return achievements met by `snapshot` that are not in `earned`, in definition order."""
    return [item for item in ACHIEVEMENTS if item.id not in earned and item.is_met(snapshot)]


def achievement_statuses(snapshot: AchievementSnapshot, earned: Iterable[tuple[str, str]]) -> list[AchievementStatus]:
    """Pair every definition with its earned timestamp (if any) and current progress."""
    earned_at = dict(earned)
    return [
        AchievementStatus(
            achievement=item,
            earned_at=earned_at.get(item.id),
            progress=1.0 if item.id in earned_at else item.progress_of(snapshot),
        )
        for item in ACHIEVEMENTS
    ]
