"""Core domain models for compound-based practice progression."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DimensionValue:
    """One legal value on a dimension axis."""

    id: str
    next: tuple[str, ...] = ()
    tier: int | None = None
    description: str = ""
    notes_per_beat: int | None = None


@dataclass(frozen=True)
class Compound:
    """One point in the skill space: a value per tracked dimension."""

    scale: str
    position: str
    rhythm: str
    rhythm_pattern: str
    note_pattern: str | None = None
    articulation: str | None = None

    def __post_init__(self) -> None:
        for name in ("scale", "position", "rhythm", "rhythm_pattern"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"Compound field '{name}' must be a non-empty string.")
        for name in ("note_pattern", "articulation"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, str) or not value):
                raise ValueError(f"Compound field '{name}' must be a non-empty string or None.")
        # '+' and ':' are separators in the canonical compound id.
        for name in ("scale", "position", "rhythm", "rhythm_pattern", "note_pattern", "articulation"):
            value = getattr(self, name)
            if value is not None and "+" in value:
                raise ValueError(f"Compound field '{name}' may not contain '+': {value!r}")
        if ":" in self.rhythm:
            raise ValueError(f"Rhythm may not contain ':': {self.rhythm!r}")
        if self.articulation is not None and self.note_pattern is None:
            raise ValueError("Compound with an articulation must also carry a note pattern.")


@dataclass(frozen=True)
class CompoundStats:
    """Per-compound counters and progression flags."""

    compound: Compound
    attempts: int = 0
    best_npm: float = 0.0
    ema_npm: float = 0.0
    last_npm: float = 0.0
    last_bpm: float = 0.0
    mastery_streak: int = 0
    struggling_streak: int = 0
    has_expanded: bool = False
    is_mastered: bool = False
    last_practiced: str | None = None
    last_practiced_session: int | None = None

    @classmethod
    def empty(cls, compound: Compound) -> CompoundStats:
        """Return the never-practiced row for a compound."""
        return cls(compound=compound)


@dataclass(frozen=True)
class DimensionUnlock:
    """Record of a higher-tier dimension becoming selectable."""

    dimension: str
    unlocked_at: str
    unlocked_at_session: int


@dataclass(frozen=True)
class PracticeEntry:
    """One logged practice attempt."""

    id: int
    logged_at: str
    compound: Compound
    key: str
    bpm: float
    npm: float
    reasoning: str | None


@dataclass(frozen=True)
class Suggestion:
    """A recommended exercise awaiting a logged attempt."""

    compound: Compound
    key: str
    reasoning: str
    generated_at: str
    unlocked: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EarnedAchievement:
    """Record of an achievement awarded to a profile."""

    achievement_id: str
    earned_at: str


@dataclass(frozen=True)
class Proficiency:
    """Dimension value the learner declared as already mastered elsewhere."""

    dimension: str
    value: str
    declared_at: str
