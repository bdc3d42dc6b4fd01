"""Application service for profiles, recommendations and logged practice."""

from __future__ import annotations

import json
import logging
import random
from dataclasses import asdict, dataclass, replace
from datetime import UTC, date, datetime
from pathlib import Path
from typing import cast

from . import __version__
from .achievements import Achievement, AchievementStatus, achievement_statuses, check_achievements, get_achievement
from .candidates import (
    CompoundCandidate,
    current_compound,
    fallback_candidate,
    generate_candidates,
    select_candidate,
)
from .compound import compound_id
from .content_loader import load_dimensions
from .dimensions import Dimension, DimensionRegistry
from .models import Compound, CompoundStats, DimensionUnlock, PracticeEntry, Proficiency, Suggestion
from .progress import SCHEMA_VERSION, Profile, ProfileStore, ProgressStore
from .progression import (
    AttemptOutcome,
    apply_attempt,
    npm_to_bpm,
    record_practice,
    speed_tier,
    unlock_ready_dimensions,
)
from .scoring import RandomFn
from .settings import DEFAULT_SETTINGS, Settings
from .streaks import StreakInfo, update_streak

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = 2

DIMENSION_PHRASES = {
    "scale": "Exploring {new} scale - {old} is stable",
    "position": "Moving to {new}-shape - expanding across the neck",
    "rhythm": "Trying {new} - rhythm progression",
    "note-pattern": "New note pattern: {new} - pattern progression",
    "articulation": "Adding {new} articulation - articulation progression",
}


@dataclass(frozen=True)
class Recommendation:
    """A generated suggestion together with the candidate that produced it."""

    suggestion: Suggestion
    candidate: CompoundCandidate
    candidate_count: int


@dataclass(frozen=True)
class ProfileTransferSummary:
    """Summary emitted by profile export/import operations."""

    profile_id: int
    profile_name: str
    practice_rows: int
    unlock_rows: int
    achievement_rows: int = 0
    proficiency_rows: int = 0


@dataclass(frozen=True)
class ProficiencyReview:
    """Declared proficiency contradicted by a struggling compound."""

    dimension: str
    value: str
    compound_id: str
    streak: int


class PracticeService:
    """Coordinates profile state, recommendations and attempt logging."""

    def __init__(
        self,
        db_path: Path | str,
        settings: Settings | None = None,
        registry: DimensionRegistry | None = None,
        random_fn: RandomFn = random.random,
        key_random_fn: RandomFn | None = None,
    ) -> None:
        """Initialize service with database path, settings and random sources.

        `random_fn` drives candidate selection; `key_random_fn` picks the
        practice key and defaults to `random_fn`.
        """
        self.settings = settings or DEFAULT_SETTINGS
        self.settings.validate()
        self.registry = registry or load_dimensions()
        self.progress = ProgressStore(db_path)
        self.random_fn = random_fn
        self.key_random_fn = key_random_fn or random_fn

    def list_profiles(self) -> list[Profile]:
        """Return all profiles."""
        return self.progress.list_profiles()

    def create_profile(self, name: str) -> Profile:
        """Create profile by name."""
        return self.progress.create_profile(name.strip())

    def ensure_profile(self, name: str) -> Profile:
        """Return the named profile, creating it on first use."""
        existing = self.progress.find_profile(name.strip())
        if existing is not None:
            return existing
        logger.info("Creating profile %s", name.strip())
        return self.create_profile(name)

    def delete_profile(self, profile_id: int) -> bool:
        """Delete one profile by id."""
        return self.progress.delete_profile(profile_id)

    def _store(self, profile_id: int) -> ProfileStore:
        """Return the statistics view for a profile."""
        if self.progress.get_profile(profile_id) is None:
            raise KeyError(profile_id)
        return ProfileStore(self.progress, profile_id, self.settings.dimension_tiers)

    def current_compound(self, profile_id: int) -> Compound:
        """Return the compound the learner is currently on."""
        return current_compound(self._store(profile_id), self.registry)

    def candidates(self, profile_id: int) -> list[CompoundCandidate]:
        """Return scored candidates for the next exercise."""
        store = self._store(profile_id)
        current = current_compound(store, self.registry)
        if store.last_practiced_compound() is None:
            return [fallback_candidate(current)]
        return generate_candidates(current, store, self.registry, self.settings)

    def recommend(self, profile_id: int) -> Recommendation:
        """Pick the next exercise and explain it, without storing it."""
        store = self._store(profile_id)
        unlocked = unlock_ready_dimensions(store, self.settings, store.current_session())
        current = current_compound(store, self.registry)
        candidates = self.candidates(profile_id)
        selected = select_candidate(candidates, self.random_fn)
        keys = self.settings.keys
        key = keys[min(int(self.key_random_fn() * len(keys)), len(keys) - 1)]
        suggestion = Suggestion(
            compound=selected.compound,
            key=key,
            reasoning=self.explain(selected, current, store.get_compound_stats(compound_id(current)), unlocked),
            generated_at=datetime.now(UTC).isoformat(),
            unlocked=tuple(unlocked),
        )
        return Recommendation(suggestion=suggestion, candidate=selected, candidate_count=len(candidates))

    def next_suggestion(self, profile_id: int) -> Suggestion:
        """Generate a suggestion and keep it pending until an attempt is logged."""
        suggestion = self.recommend(profile_id).suggestion
        self.progress.save_pending_suggestion(profile_id, suggestion)
        return suggestion

    def pending_suggestion(self, profile_id: int) -> Suggestion | None:
        """Return the suggestion awaiting an attempt."""
        return self.progress.get_pending_suggestion(profile_id)

    def explain(
        self,
        selected: CompoundCandidate,
        current: Compound,
        current_stats: CompoundStats | None,
        unlocked: list[str] | tuple[str, ...] = (),
    ) -> str:
        """Return a human-readable reason for the selected candidate."""
        if unlocked:
            return f"New dimension unlocked: {' and '.join(unlocked)}! Continuing with your practice."

        if selected.compound == current:
            if current_stats is None or not current_stats.has_expanded:
                return "Building foundation - continue practicing to unlock neighbors"
            return "Consolidating - reinforcing current skills"

        dimension = selected.changed_dimension
        if dimension is None:
            return "Practice suggestion"
        handler = self.registry.get(dimension)
        new = handler.describe(handler.value_of(selected.compound) or "")
        old = handler.describe(handler.value_of(current) or "")
        if selected.struggling_boost > 0:
            return f"Struggling with {new} - slow down and rebuild accuracy"
        if selected.factors.dominant() == "staleness" and selected.factors.staleness.raw > 0:
            return f"Revisiting {new} - not practiced in a while"
        return DIMENSION_PHRASES[dimension].format(new=new, old=old)

    def log_attempt(
        self, profile_id: int, compound: Compound, key: str, bpm: float, reasoning: str | None = None
    ) -> AttemptOutcome:
        """Record one attempt and apply every progression effect.

        After the compound transition the daily streak is extended and newly
        met achievements are awarded. Each newly earned mastery achievement
        grants one streak freeze.
        """
        if bpm <= 0:
            raise ValueError(f"bpm must be > 0, got {bpm}")
        store = self._store(profile_id)
        outcome = record_practice(store, self.registry, self.settings, compound, key, bpm, reasoning)
        streak = update_streak(self.progress.get_streak(profile_id), outcome.entry.logged_at)
        self.progress.save_streak(profile_id, streak)
        earned = self._award_achievements(profile_id)
        self.progress.clear_pending_suggestion(profile_id)
        return replace(outcome, streak=self.progress.get_streak(profile_id), achievements=tuple(earned))

    def _award_achievements(self, profile_id: int) -> list[Achievement]:
        """Record achievements met for the first time and grant their streak freezes."""
        earned_ids = {item.achievement_id for item in self.progress.list_achievements(profile_id)}
        earned = check_achievements(self.progress.achievement_snapshot(profile_id), earned_ids)
        for achievement in earned:
            self.progress.earn_achievement(profile_id, achievement.id)
            logger.info("Profile %d earned achievement %s", profile_id, achievement.id)
        freezes = sum(1 for achievement in earned if achievement.category == "mastery")
        if freezes:
            self.progress.add_streak_freezes(profile_id, freezes)
        return earned

    def log_last_suggestion(self, profile_id: int, bpm: float) -> AttemptOutcome:
        """Record an attempt at the pending suggestion."""
        suggestion = self.progress.get_pending_suggestion(profile_id)
        if suggestion is None:
            raise LookupError("No pending suggestion to log. Generate one first.")
        return self.log_attempt(profile_id, suggestion.compound, suggestion.key, bpm, suggestion.reasoning)

    def history(self, profile_id: int, limit: int | None = 20) -> list[PracticeEntry]:
        """Return recent practice entries, most recent first."""
        self._store(profile_id)
        return self.progress.list_practice(profile_id, limit=limit)

    def compound_stats(self, profile_id: int) -> list[CompoundStats]:
        """Return every compound statistics row."""
        return self._store(profile_id).list_compound_stats()

    def struggling(self, profile_id: int) -> list[CompoundStats]:
        """Return compounds at or over the struggling streak threshold."""
        self._store(profile_id)
        return self.progress.struggling_compounds(profile_id, self.settings.struggling.streak_threshold)

    def unlocks(self, profile_id: int) -> list[DimensionUnlock]:
        """Return unlocked dimensions."""
        self._store(profile_id)
        return self.progress.list_unlocks(profile_id)

    def streak(self, profile_id: int) -> StreakInfo:
        """Return the daily practice streak (all zero before the first attempt)."""
        self._store(profile_id)
        return self.progress.get_streak(profile_id) or StreakInfo()

    def achievements(self, profile_id: int) -> list[AchievementStatus]:
        """Return every achievement with earned state and progress."""
        self._store(profile_id)
        earned = [(item.achievement_id, item.earned_at) for item in self.progress.list_achievements(profile_id)]
        return achievement_statuses(self.progress.achievement_snapshot(profile_id), earned)

    def next_goal(self, stats: CompoundStats) -> tuple[str, float] | None:
        """Return the next milestone of a compound and the tempo (bpm) it needs.

        The milestone is ``"expand"`` until the compound has expanded, then
        ``"master"``; mastered compounds have no goal.
        """
        if stats.is_mastered:
            return None
        progression = self.settings.progression
        if stats.has_expanded:
            milestone, npm = "master", progression.mastery_npm
        else:
            milestone, npm = "expand", progression.expansion_npm
        return milestone, npm_to_bpm(npm, self.registry.rhythm.notes_per_beat(stats.compound.rhythm))

    def proficiencies(self, profile_id: int) -> list[Proficiency]:
        """Return declared proficiencies."""
        self._store(profile_id)
        return self.progress.list_proficiencies(profile_id)

    def declare_proficiency(self, profile_id: int, dimension: str, value: str) -> list[str]:
        """Declare proficiency in a value and every prerequisite of it.

        Returns the values newly declared, the requested one first.
        """
        self._store(profile_id)
        handler = self._dimension(dimension, value)
        declared = {item.value for item in self.progress.list_proficiencies(profile_id, dimension)}
        added = [item for item in (value, *handler.prerequisites(value)) if item not in declared]
        for item in added:
            self.progress.set_proficient(profile_id, dimension, item)
        if added:
            logger.info("Profile %d declared %s proficiency: %s", profile_id, dimension, ", ".join(added))
        return added

    def remove_proficiency(self, profile_id: int, dimension: str, value: str) -> bool:
        """Withdraw one declared proficiency."""
        self._store(profile_id)
        self._dimension(dimension, value)
        return self.progress.remove_proficient(profile_id, dimension, value)

    def _dimension(self, dimension: str, value: str) -> Dimension:
        """Return the dimension after checking that `value` is legal on it."""
        if not self.registry.has(dimension):
            raise ValueError(f"Unknown dimension: {dimension}")
        handler = self.registry.get(dimension)
        if not handler.contains(value):
            raise ValueError(f"Unknown {dimension} value: {value}")
        return handler

    def struggling_proficiencies(self, profile_id: int) -> list[ProficiencyReview]:
        """Return declared proficiencies that appear in currently struggling compounds."""
        declared = {(item.dimension, item.value) for item in self.proficiencies(profile_id)}
        reviews: list[ProficiencyReview] = []
        for stats in self.struggling(profile_id):
            for name in self.registry.names():
                value = self.registry.get(name).value_of(stats.compound)
                if value is not None and (name, value) in declared:
                    reviews.append(ProficiencyReview(name, value, compound_id(stats.compound), stats.struggling_streak))
        return reviews

    def speed_tier(self, npm: float) -> str:
        """Return the speed band name for a notes-per-minute value."""
        return speed_tier(npm, self.settings.speed_tiers)

    def recalculate(self, profile_id: int) -> int:
        """Rebuild compound statistics and the session counter from practice history.

        Existing unlocks are kept; newly satisfied ones are recorded at the
        replayed session. Returns the number of replayed attempts.
        """
        store = self._store(profile_id)
        entries = self.progress.all_practice(profile_id)
        self.progress.clear_compound_stats(profile_id)
        for entry in entries:
            session = store.increment_session()
            previous = store.get_compound_stats(compound_id(entry.compound)) or CompoundStats.empty(entry.compound)
            store.save_compound_stats(
                apply_attempt(previous, entry.npm, entry.bpm, session, self.settings, practiced_at=entry.logged_at)
            )
            unlock_ready_dimensions(store, self.settings, session)
        logger.info("Recalculated statistics for profile %d from %d attempts", profile_id, len(entries))
        return len(entries)

    def export_profile(self, profile_id: int, export_path: Path | str) -> ProfileTransferSummary:
        """Export a profile's practice history, unlocks and rewards to a JSON file."""
        profile = self.progress.get_profile(profile_id)
        if profile is None:
            raise KeyError(profile_id)

        practice_rows = [_entry_to_row(entry) for entry in self.progress.all_practice(profile_id)]
        unlock_rows = [
            {
                "dimension": unlock.dimension,
                "unlocked_at": unlock.unlocked_at,
                "unlocked_at_session": unlock.unlocked_at_session,
            }
            for unlock in self.progress.list_unlocks(profile_id)
        ]
        achievement_rows = [
            {"achievement_id": item.achievement_id, "earned_at": item.earned_at}
            for item in self.progress.list_achievements(profile_id)
        ]
        proficiency_rows = [
            {"dimension": item.dimension, "value": item.value, "declared_at": item.declared_at}
            for item in self.progress.list_proficiencies(profile_id)
        ]
        streak = self.progress.get_streak(profile_id)
        payload = {
            "format_version": EXPORT_FORMAT_VERSION,
            "exported_at": datetime.now(UTC).isoformat(),
            "source": {
                "app_version": __version__,
                "schema_version": SCHEMA_VERSION,
            },
            "profile": {
                "name": profile.name,
            },
            "practice_log": practice_rows,
            "dimension_unlocks": unlock_rows,
            "streak": asdict(streak) if streak is not None else None,
            "achievements": achievement_rows,
            "proficiencies": proficiency_rows,
        }

        path = Path(export_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            practice_rows=len(practice_rows),
            unlock_rows=len(unlock_rows),
            achievement_rows=len(achievement_rows),
            proficiency_rows=len(proficiency_rows),
        )

    def import_profile(self, import_path: Path | str, profile_name: str | None = None) -> ProfileTransferSummary:
        """Import a profile export JSON file as a new profile and rebuild its statistics."""
        path = Path(import_path)
        raw_obj: object = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(raw_obj, dict):
            raise ValueError("Import file root must be a JSON object.")
        raw = cast(dict[str, object], raw_obj)

        version_raw: object = raw.get("format_version", 0)
        format_version = _coerce_int(version_raw)
        if format_version is None:
            raise ValueError("Import file has invalid format_version.")
        if format_version > EXPORT_FORMAT_VERSION:
            raise ValueError(
                f"Import file format version {format_version} is newer than supported {EXPORT_FORMAT_VERSION}."
            )

        target_name = (profile_name or "").strip()
        if not target_name:
            profile_section_obj = raw.get("profile")
            if isinstance(profile_section_obj, dict):
                profile_section = cast(dict[str, object], profile_section_obj)
                profile_name_raw: object = profile_section.get("name")
                if isinstance(profile_name_raw, str):
                    target_name = profile_name_raw.strip()
        if not target_name:
            raise ValueError("Could not determine profile name from import file.")
        if self.progress.find_profile(target_name) is not None:
            raise ValueError(f"Profile '{target_name}' already exists.")

        now = datetime.now(UTC).isoformat()
        practice_rows = _normalize_practice_rows(raw.get("practice_log"), now, self.registry)
        unlock_rows = _normalize_unlock_rows(raw.get("dimension_unlocks"), now, self.registry)
        achievement_rows = _normalize_achievement_rows(raw.get("achievements"), now)
        proficiency_rows = _normalize_proficiency_rows(raw.get("proficiencies"), now, self.registry)
        streak = _normalize_streak(raw.get("streak"))

        profile = self.create_profile(target_name)
        for row in practice_rows:
            self.progress.log_practice(
                profile.id,
                cast(Compound, row["compound"]),
                str(row["key"]),
                cast(float, row["bpm"]),
                cast(float, row["npm"]),
                cast(str | None, row["reasoning"]),
                logged_at=str(row["logged_at"]),
            )
        for row in unlock_rows:
            self.progress.unlock_dimension(
                profile.id,
                str(row["dimension"]),
                cast(int, row["unlocked_at_session"]),
                unlocked_at=str(row["unlocked_at"]),
            )
        for achievement_id, earned_at in achievement_rows:
            self.progress.earn_achievement(profile.id, achievement_id, earned_at)
        for item in proficiency_rows:
            self.progress.set_proficient(profile.id, item.dimension, item.value, item.declared_at)
        if streak is not None:
            self.progress.save_streak(profile.id, streak)
        self.recalculate(profile.id)
        return ProfileTransferSummary(
            profile_id=profile.id,
            profile_name=profile.name,
            practice_rows=len(practice_rows),
            unlock_rows=len(unlock_rows),
            achievement_rows=len(achievement_rows),
            proficiency_rows=len(proficiency_rows),
        )

    def close(self) -> None:
        """Close resources."""
        self.progress.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort cleanup for test/process teardown."""
        try:
            self.close()
        except Exception:
            pass


def _entry_to_row(entry: PracticeEntry) -> dict[str, object]:
    """Serialize one practice entry for export."""
    compound = entry.compound
    return {
        "logged_at": entry.logged_at,
        "scale": compound.scale,
        "position": compound.position,
        "rhythm": compound.rhythm,
        "rhythm_pattern": compound.rhythm_pattern,
        "note_pattern": compound.note_pattern,
        "articulation": compound.articulation,
        "key": entry.key,
        "bpm": entry.bpm,
        "npm": entry.npm,
        "reasoning": entry.reasoning,
    }


def _normalize_practice_rows(raw: object, now: str, registry: DimensionRegistry) -> list[dict[str, object]]:
    """Normalize raw practice rows from import payload, skipping unusable ones."""
    if not isinstance(raw, list):
        return []
    raw_rows = cast(list[object], raw)
    rows: list[dict[str, object]] = []
    for item in raw_rows:
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        compound = _compound_from_row(row, registry)
        if compound is None:
            continue
        bpm = _coerce_float(row.get("bpm"))
        if bpm is None or bpm <= 0:
            continue
        npm = _coerce_float(row.get("npm"))
        if npm is None or npm <= 0:
            npm = bpm * registry.rhythm.notes_per_beat(compound.rhythm)
        key: object = row.get("key")
        if not isinstance(key, str) or not key.strip():
            key = "C"
        reasoning: object = row.get("reasoning")
        logged_at: object = row.get("logged_at")
        if not isinstance(logged_at, str) or not logged_at:
            logged_at = now
        rows.append(
            {
                "compound": compound,
                "key": str(key).strip(),
                "bpm": bpm,
                "npm": npm,
                "reasoning": reasoning if isinstance(reasoning, str) else None,
                "logged_at": logged_at,
            }
        )
    return rows


def _compound_from_row(row: dict[str, object], registry: DimensionRegistry) -> Compound | None:
    """Build a registry-valid compound from an import row, or None."""
    values: dict[str, str] = {}
    for name, field_name in (
        ("scale", "scale"),
        ("position", "position"),
        ("rhythm", "rhythm"),
        ("note-pattern", "note_pattern"),
        ("articulation", "articulation"),
    ):
        value: object = row.get(field_name)
        if isinstance(value, str) and value.strip():
            values[name] = value.strip()
    pattern: object = row.get("rhythm_pattern")
    try:
        return registry.build_compound(values, pattern if isinstance(pattern, str) and pattern else None)
    except ValueError:
        logger.warning("Skipping import row with invalid compound: %s", values)
        return None


def _normalize_unlock_rows(raw: object, now: str, registry: DimensionRegistry) -> list[dict[str, object]]:
    """Normalize raw unlock rows from import payload."""
    if not isinstance(raw, list):
        return []
    raw_rows = cast(list[object], raw)
    rows: list[dict[str, object]] = []
    for item in raw_rows:
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        dimension: object = row.get("dimension")
        if not isinstance(dimension, str) or not registry.has(dimension.strip()):
            continue
        session = _coerce_int(row.get("unlocked_at_session", 0), default=0) or 0
        unlocked_at: object = row.get("unlocked_at")
        if not isinstance(unlocked_at, str) or not unlocked_at:
            unlocked_at = now
        rows.append(
            {
                "dimension": dimension.strip(),
                "unlocked_at": unlocked_at,
                "unlocked_at_session": max(0, session),
            }
        )
    return rows


def _coerce_int(value: object, default: int | None = None) -> int | None:
    """Coerce value to int for import normalization."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _coerce_float(value: object, default: float | None = None) -> float | None:
    """Coerce value to float for import normalization."""
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _normalize_achievement_rows(raw: object, now: str) -> list[tuple[str, str]]:
    """Normalize earned achievements, dropping ids that are no longer defined."""
    if not isinstance(raw, list):
        return []
    rows: list[tuple[str, str]] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        achievement_id: object = row.get("achievement_id")
        if not isinstance(achievement_id, str) or get_achievement(achievement_id) is None:
            continue
        earned_at: object = row.get("earned_at")
        rows.append((achievement_id, earned_at if isinstance(earned_at, str) and earned_at else now))
    return rows


def _normalize_proficiency_rows(raw: object, now: str, registry: DimensionRegistry) -> list[Proficiency]:
    """Normalize declared proficiencies, dropping unknown dimension values."""
    if not isinstance(raw, list):
        return []
    rows: list[Proficiency] = []
    for item in cast(list[object], raw):
        if not isinstance(item, dict):
            continue
        row = cast(dict[str, object], item)
        dimension: object = row.get("dimension")
        value: object = row.get("value")
        if not isinstance(dimension, str) or not isinstance(value, str) or not registry.has(dimension):
            continue
        if not registry.get(dimension).contains(value):
            continue
        declared_at: object = row.get("declared_at")
        rows.append(Proficiency(dimension, value, declared_at if isinstance(declared_at, str) and declared_at else now))
    return rows


def _normalize_streak(raw: object) -> StreakInfo | None:
    """Normalize the exported streak record; anything malformed imports as no streak."""
    if not isinstance(raw, dict):
        return None
    row = cast(dict[str, object], raw)
    counts = [
        _coerce_int(row.get(name), default=0) or 0 for name in ("current_streak", "longest_streak", "streak_freezes")
    ]
    last: object = row.get("last_practice_date")
    if isinstance(last, str):
        try:
            last = date.fromisoformat(last[:10]).isoformat()
        except ValueError:
            last = None
    else:
        last = None
    current, longest, freezes = (max(0, count) for count in counts)
    return StreakInfo(
        current_streak=current,
        longest_streak=max(longest, current),
        last_practice_date=last,
        streak_freezes=freezes,
    )
