"""SQLite persistence for profiles, practice history and compound statistics."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from .compound import DIMENSION_FIELDS, compound_id, differing_dimensions, dimension_distance, parse_compound_id
from .achievements import AchievementSnapshot
from .models import (
    Compound,
    CompoundStats,
    DimensionUnlock,
    EarnedAchievement,
    PracticeEntry,
    Proficiency,
    Suggestion,
)
from .settings import DimensionTier
from .streaks import StreakInfo

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

COMPOUND_COLUMNS = ("scale", "position", "rhythm", "rhythm_pattern", "note_pattern", "articulation")
# Dimension precedence when several change between consecutive attempts.
CHANGE_PRECEDENCE = ("rhythm", "scale", "position", "note-pattern", "articulation")
PROFILE_TABLES = (
    "practice_log",
    "compound_stats",
    "session_counter",
    "dimension_unlocks",
    "pending_suggestions",
    "practice_streaks",
    "achievements",
    "dimension_proficiency",
)


@dataclass(frozen=True)
class Profile:
    """User profile record."""

    id: int
    name: str


class ProgressStore:
    """Database access layer for learner progress."""

    def __init__(self, db_path: Path | str) -> None:
        """Initialize database and schema."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target)
        self._conn.row_factory = sqlite3.Row
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            elif version == 2:
                self._migrate_to_v2()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, _now()),
                )
            logger.debug("Applied schema migration %d", version)

    def _migrate_to_v1(self) -> None:
        """Create profile, practice log and compound progression tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    created_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS practice_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    profile_id INTEGER NOT NULL,
                    logged_at TEXT NOT NULL,
                    scale TEXT NOT NULL,
                    position TEXT NOT NULL,
                    rhythm TEXT NOT NULL,
                    rhythm_pattern TEXT NOT NULL,
                    note_pattern TEXT,
                    articulation TEXT,
                    key TEXT NOT NULL,
                    bpm REAL NOT NULL,
                    npm REAL NOT NULL,
                    reasoning TEXT
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS compound_stats (
                    profile_id INTEGER NOT NULL,
                    compound_id TEXT NOT NULL,
                    scale TEXT NOT NULL,
                    position TEXT NOT NULL,
                    rhythm TEXT NOT NULL,
                    rhythm_pattern TEXT NOT NULL,
                    note_pattern TEXT,
                    articulation TEXT,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    best_npm REAL NOT NULL DEFAULT 0,
                    ema_npm REAL NOT NULL DEFAULT 0,
                    last_npm REAL NOT NULL DEFAULT 0,
                    last_bpm REAL NOT NULL DEFAULT 0,
                    mastery_streak INTEGER NOT NULL DEFAULT 0,
                    struggling_streak INTEGER NOT NULL DEFAULT 0,
                    has_expanded INTEGER NOT NULL DEFAULT 0,
                    is_mastered INTEGER NOT NULL DEFAULT 0,
                    last_practiced TEXT,
                    last_practiced_session INTEGER,
                    PRIMARY KEY (profile_id, compound_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS session_counter (
                    profile_id INTEGER PRIMARY KEY,
                    current_session INTEGER NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS dimension_unlocks (
                    profile_id INTEGER NOT NULL,
                    dimension TEXT NOT NULL,
                    unlocked_at TEXT NOT NULL,
                    unlocked_at_session INTEGER NOT NULL,
                    PRIMARY KEY (profile_id, dimension)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_suggestions (
                    profile_id INTEGER PRIMARY KEY,
                    compound_id TEXT NOT NULL,
                    key TEXT NOT NULL,
                    reasoning TEXT NOT NULL,
                    generated_at TEXT NOT NULL,
                    unlocked TEXT NOT NULL DEFAULT '[]'
                )
                """)

    def _migrate_to_v2(self) -> None:
        """Create daily streak, achievement and declared proficiency tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS practice_streaks (
                    profile_id INTEGER PRIMARY KEY,
                    current_streak INTEGER NOT NULL DEFAULT 0,
                    longest_streak INTEGER NOT NULL DEFAULT 0,
                    last_practice_date TEXT,
                    streak_freezes INTEGER NOT NULL DEFAULT 0
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS achievements (
                    profile_id INTEGER NOT NULL,
                    achievement_id TEXT NOT NULL,
                    earned_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, achievement_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS dimension_proficiency (
                    profile_id INTEGER NOT NULL,
                    dimension TEXT NOT NULL,
                    value TEXT NOT NULL,
                    declared_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, dimension, value)
                )
                """)

    def list_profiles(self) -> list[Profile]:
        """Return profiles ordered by name."""
        rows = self._conn.execute("SELECT id, name FROM profiles ORDER BY name").fetchall()
        return [Profile(id=int(row["id"]), name=str(row["name"])) for row in rows]

    def create_profile(self, name: str) -> Profile:
        """Create a new profile."""
        with self._conn:
            cursor = self._conn.execute(
                "INSERT INTO profiles (name, created_at) VALUES (?, ?)",
                (name, _now()),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not create profile.")
        return Profile(id=int(row_id), name=name)

    def get_profile(self, profile_id: int) -> Profile | None:
        """Get one profile by id."""
        row = self._conn.execute("SELECT id, name FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if row is None:
            return None
        return Profile(id=int(row["id"]), name=str(row["name"]))

    def find_profile(self, name: str) -> Profile | None:
        """Get one profile by name."""
        row = self._conn.execute("SELECT id, name FROM profiles WHERE name = ?", (name,)).fetchone()
        if row is None:
            return None
        return Profile(id=int(row["id"]), name=str(row["name"]))

    def delete_profile(self, profile_id: int) -> bool:
        """Delete profile and all associated progress data."""
        with self._conn:
            for table in PROFILE_TABLES:
                self._conn.execute(f"DELETE FROM {table} WHERE profile_id = ?", (profile_id,))
            cursor = self._conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
        return cursor.rowcount > 0

    def log_practice(
        self,
        profile_id: int,
        compound: Compound,
        key: str,
        bpm: float,
        npm: float,
        reasoning: str | None = None,
        logged_at: str | None = None,
    ) -> PracticeEntry:
        """Append one attempt to the practice log."""
        stamp = logged_at or _now()
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO practice_log (
                    profile_id, logged_at, scale, position, rhythm, rhythm_pattern,
                    note_pattern, articulation, key, bpm, npm, reasoning
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (profile_id, stamp, *_compound_values(compound), key, bpm, npm, reasoning),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not log practice.")
        return PracticeEntry(
            id=int(row_id),
            logged_at=stamp,
            compound=compound,
            key=key,
            bpm=bpm,
            npm=npm,
            reasoning=reasoning,
        )

    def list_practice(self, profile_id: int, limit: int | None = None) -> list[PracticeEntry]:
        """Return practice entries, most recent first."""
        query = "SELECT * FROM practice_log WHERE profile_id = ? ORDER BY id DESC"
        params: tuple[int, ...] = (profile_id,)
        if limit is not None:
            query += " LIMIT ?"
            params = (profile_id, limit)
        rows = self._conn.execute(query, params).fetchall()
        return [_row_to_entry(row) for row in rows]

    def all_practice(self, profile_id: int) -> list[PracticeEntry]:
        """Return every practice entry in logging order."""
        rows = self._conn.execute(
            "SELECT * FROM practice_log WHERE profile_id = ? ORDER BY id ASC",
            (profile_id,),
        ).fetchall()
        return [_row_to_entry(row) for row in rows]

    def last_practice(self, profile_id: int) -> PracticeEntry | None:
        """Return the most recent practice entry."""
        entries = self.list_practice(profile_id, limit=1)
        return entries[0] if entries else None

    def get_compound_stats(self, profile_id: int, identifier: str) -> CompoundStats | None:
        """Return statistics for one compound id if present."""
        row = self._conn.execute(
            "SELECT * FROM compound_stats WHERE profile_id = ? AND compound_id = ?",
            (profile_id, identifier),
        ).fetchone()
        if row is None:
            return None
        return _row_to_stats(row)

    def list_compound_stats(self, profile_id: int) -> list[CompoundStats]:
        """Return all compound statistics ordered by compound id."""
        rows = self._conn.execute(
            "SELECT * FROM compound_stats WHERE profile_id = ? ORDER BY compound_id",
            (profile_id,),
        ).fetchall()
        return [_row_to_stats(row) for row in rows]

    def save_compound_stats(self, profile_id: int, stats: CompoundStats) -> None:
        """Insert or replace statistics for one compound."""
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO compound_stats (
                    profile_id, compound_id, scale, position, rhythm, rhythm_pattern, note_pattern,
                    articulation, attempts, best_npm, ema_npm, last_npm, last_bpm, mastery_streak,
                    struggling_streak, has_expanded, is_mastered, last_practiced, last_practiced_session
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(profile_id, compound_id) DO UPDATE SET
                    attempts = excluded.attempts,
                    best_npm = excluded.best_npm,
                    ema_npm = excluded.ema_npm,
                    last_npm = excluded.last_npm,
                    last_bpm = excluded.last_bpm,
                    mastery_streak = excluded.mastery_streak,
                    struggling_streak = excluded.struggling_streak,
                    has_expanded = excluded.has_expanded,
                    is_mastered = excluded.is_mastered,
                    last_practiced = excluded.last_practiced,
                    last_practiced_session = excluded.last_practiced_session
                """,
                (
                    profile_id,
                    compound_id(stats.compound),
                    *_compound_values(stats.compound),
                    stats.attempts,
                    stats.best_npm,
                    stats.ema_npm,
                    stats.last_npm,
                    stats.last_bpm,
                    stats.mastery_streak,
                    stats.struggling_streak,
                    int(stats.has_expanded),
                    int(stats.is_mastered),
                    stats.last_practiced,
                    stats.last_practiced_session,
                ),
            )

    def clear_compound_stats(self, profile_id: int) -> None:
        """Delete every compound statistics row and reset the session counter."""
        with self._conn:
            self._conn.execute("DELETE FROM compound_stats WHERE profile_id = ?", (profile_id,))
            self._conn.execute("DELETE FROM session_counter WHERE profile_id = ?", (profile_id,))

    def related_compounds(self, profile_id: int, compound: Compound) -> list[CompoundStats]:
        """Return statistics of compounds exactly one dimension away."""
        return [
            stats
            for stats in self.list_compound_stats(profile_id)
            if dimension_distance(compound, stats.compound) == 1
        ]

    def count_expanded_projections(self, profile_id: int, dimensions: Iterable[str]) -> int:
        """Count distinct value combinations of `dimensions` among expanded compounds.

        Only the value column of each dimension is projected, so rhythm
        sub-patterns of one rhythm count once. Rows missing a value on any of
        the dimensions are not counted.
        """
        columns = [DIMENSION_FIELDS[name][0] for name in dimensions]
        if not columns:
            return 0
        selected = ", ".join(columns)
        present = " AND ".join(f"{column} IS NOT NULL" for column in columns)
        row = self._conn.execute(
            f"""
            SELECT COUNT(*) AS count FROM (
                SELECT DISTINCT {selected}
                FROM compound_stats
                WHERE profile_id = ? AND has_expanded = 1 AND {present}
            )
            """,
            (profile_id,),
        ).fetchone()
        return int(row["count"])

    def struggling_compounds(self, profile_id: int, streak_threshold: int) -> list[CompoundStats]:
        """Return compounds at or over the struggling streak threshold, worst first."""
        rows = self._conn.execute(
            """
            SELECT * FROM compound_stats
            WHERE profile_id = ? AND struggling_streak >= ?
            ORDER BY struggling_streak DESC, compound_id ASC
            """,
            (profile_id, streak_threshold),
        ).fetchall()
        return [_row_to_stats(row) for row in rows]

    def recent_dimension_changes(self, profile_id: int, lookback: int) -> list[str]:
        """Return the changed dimension between each of the last `lookback` consecutive attempts."""
        entries = self.list_practice(profile_id, limit=lookback + 1)
        changes: list[str] = []
        for newer, older in zip(entries, entries[1:], strict=False):
            changed = set(differing_dimensions(newer.compound, older.compound))
            first = next((name for name in CHANGE_PRECEDENCE if name in changed), None)
            if first is not None:
                changes.append(first)
        return changes[:lookback]

    def current_session(self, profile_id: int) -> int:
        """Return the session counter (0 before any attempt)."""
        row = self._conn.execute(
            "SELECT current_session FROM session_counter WHERE profile_id = ?",
            (profile_id,),
        ).fetchone()
        return int(row["current_session"]) if row is not None else 0

    def increment_session(self, profile_id: int) -> int:
        """Advance and return the session counter."""
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO session_counter (profile_id, current_session) VALUES (?, 1)
                ON CONFLICT(profile_id) DO UPDATE SET current_session = current_session + 1
                """,
                (profile_id,),
            )
        return self.current_session(profile_id)

    def is_dimension_unlocked(self, profile_id: int, dimension: str) -> bool:
        """Return whether a dimension has been unlocked for the profile."""
        row = self._conn.execute(
            "SELECT 1 FROM dimension_unlocks WHERE profile_id = ? AND dimension = ?",
            (profile_id, dimension),
        ).fetchone()
        return row is not None

    def unlock_dimension(
        self, profile_id: int, dimension: str, session: int, unlocked_at: str | None = None
    ) -> None:
        """Record a dimension unlock; an existing unlock is kept."""
        with self._conn:
            self._conn.execute(
                """
                INSERT OR IGNORE INTO dimension_unlocks (profile_id, dimension, unlocked_at, unlocked_at_session)
                VALUES (?, ?, ?, ?)
                """,
                (profile_id, dimension, unlocked_at or _now(), session),
            )

    def list_unlocks(self, profile_id: int) -> list[DimensionUnlock]:
        """Return unlock records in unlock order."""
        rows = self._conn.execute(
            """
            SELECT dimension, unlocked_at, unlocked_at_session
            FROM dimension_unlocks
            WHERE profile_id = ?
            ORDER BY unlocked_at_session ASC, rowid ASC
            """,
            (profile_id,),
        ).fetchall()
        return [
            DimensionUnlock(
                dimension=str(row["dimension"]),
                unlocked_at=str(row["unlocked_at"]),
                unlocked_at_session=int(row["unlocked_at_session"]),
            )
            for row in rows
        ]

    def save_pending_suggestion(self, profile_id: int, suggestion: Suggestion) -> None:
        """Store the suggestion awaiting a logged attempt, replacing any previous one."""
        with self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO pending_suggestions (
                    profile_id, compound_id, key, reasoning, generated_at, unlocked
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    profile_id,
                    compound_id(suggestion.compound),
                    suggestion.key,
                    suggestion.reasoning,
                    suggestion.generated_at,
                    json.dumps(list(suggestion.unlocked)),
                ),
            )

    def get_pending_suggestion(self, profile_id: int) -> Suggestion | None:
        """Return the pending suggestion if one exists."""
        row = self._conn.execute(
            "SELECT * FROM pending_suggestions WHERE profile_id = ?",
            (profile_id,),
        ).fetchone()
        if row is None:
            return None
        return Suggestion(
            compound=parse_compound_id(str(row["compound_id"])),
            key=str(row["key"]),
            reasoning=str(row["reasoning"]),
            generated_at=str(row["generated_at"]),
            unlocked=tuple(str(item) for item in json.loads(row["unlocked"])),
        )

    def clear_pending_suggestion(self, profile_id: int) -> None:
        """Remove the pending suggestion."""
        with self._conn:
            self._conn.execute("DELETE FROM pending_suggestions WHERE profile_id = ?", (profile_id,))

    def get_streak(self, profile_id: int) -> StreakInfo | None:
        """Return the daily practice streak, or None before the first attempt."""
        row = self._conn.execute("SELECT * FROM practice_streaks WHERE profile_id = ?", (profile_id,)).fetchone()
        if row is None:
            return None
        return StreakInfo(
            current_streak=int(row["current_streak"]),
            longest_streak=int(row["longest_streak"]),
            last_practice_date=str(row["last_practice_date"]) if row["last_practice_date"] is not None else None,
            streak_freezes=int(row["streak_freezes"]),
        )

    def save_streak(self, profile_id: int, info: StreakInfo) -> None:
        """Insert or replace the daily practice streak."""
        with self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO practice_streaks (
                    profile_id, current_streak, longest_streak, last_practice_date, streak_freezes
                )
                VALUES (?, ?, ?, ?, ?)
                """,
                (profile_id, info.current_streak, info.longest_streak, info.last_practice_date, info.streak_freezes),
            )

    def add_streak_freezes(self, profile_id: int, count: int) -> None:
        """Grant streak freezes; profiles without a streak row are unchanged."""
        with self._conn:
            self._conn.execute(
                "UPDATE practice_streaks SET streak_freezes = streak_freezes + ? WHERE profile_id = ?",
                (count, profile_id),
            )

    def earn_achievement(self, profile_id: int, achievement_id: str, earned_at: str | None = None) -> None:
        """Record an achievement; an existing record is kept."""
        with self._conn:
            self._conn.execute(
                "INSERT OR IGNORE INTO achievements (profile_id, achievement_id, earned_at) VALUES (?, ?, ?)",
                (profile_id, achievement_id, earned_at or _now()),
            )

    def list_achievements(self, profile_id: int) -> list[EarnedAchievement]:
        """Return earned achievements in earning order."""
        rows = self._conn.execute(
            "SELECT achievement_id, earned_at FROM achievements WHERE profile_id = ? ORDER BY earned_at, rowid",
            (profile_id,),
        ).fetchall()
        return [
            EarnedAchievement(achievement_id=str(row["achievement_id"]), earned_at=str(row["earned_at"]))
            for row in rows
        ]

    def achievement_snapshot(self, profile_id: int) -> AchievementSnapshot:
        """Collect the metrics achievements are evaluated against."""
        practice = self._conn.execute(
            "SELECT COUNT(*) AS count FROM practice_log WHERE profile_id = ?",
            (profile_id,),
        ).fetchone()
        totals = self._conn.execute(
            """
            SELECT
                COALESCE(MAX(best_npm), 0) AS max_npm,
                COALESCE(SUM(has_expanded), 0) AS expanded,
                COALESCE(SUM(is_mastered), 0) AS mastered
            FROM compound_stats
            WHERE profile_id = ?
            """,
            (profile_id,),
        ).fetchone()
        streak = self.get_streak(profile_id)
        return AchievementSnapshot(
            practice_count=int(practice["count"]),
            longest_streak=streak.longest_streak if streak is not None else 0,
            expanded_count=int(totals["expanded"]),
            mastered_count=int(totals["mastered"]),
            max_npm=float(totals["max_npm"]),
            mastered_positions=self._distinct(
                "SELECT DISTINCT position FROM compound_stats WHERE profile_id = ? AND is_mastered = 1", profile_id
            ),
            practiced_positions=self._distinct(
                "SELECT DISTINCT position FROM practice_log WHERE profile_id = ?", profile_id
            ),
            practiced_scales=self._distinct("SELECT DISTINCT scale FROM practice_log WHERE profile_id = ?", profile_id),
            practiced_rhythms=self._distinct(
                "SELECT DISTINCT rhythm FROM practice_log WHERE profile_id = ?", profile_id
            ),
            note_pattern_unlocked=self.is_dimension_unlocked(profile_id, "note-pattern"),
        )

    def _distinct(self, query: str, profile_id: int) -> frozenset[str]:
        return frozenset(str(row[0]) for row in self._conn.execute(query, (profile_id,)).fetchall())

    def set_proficient(self, profile_id: int, dimension: str, value: str, declared_at: str | None = None) -> None:
        """Declare proficiency in one dimension value."""
        with self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO dimension_proficiency (profile_id, dimension, value, declared_at)
                VALUES (?, ?, ?, ?)
                """,
                (profile_id, dimension, value, declared_at or _now()),
            )

    def remove_proficient(self, profile_id: int, dimension: str, value: str) -> bool:
        """Withdraw a proficiency declaration; returns whether one existed."""
        with self._conn:
            cursor = self._conn.execute(
                "DELETE FROM dimension_proficiency WHERE profile_id = ? AND dimension = ? AND value = ?",
                (profile_id, dimension, value),
            )
        return cursor.rowcount > 0

    def list_proficiencies(self, profile_id: int, dimension: str | None = None) -> list[Proficiency]:
        """Return declared proficiencies ordered by dimension and value."""
        query = "SELECT dimension, value, declared_at FROM dimension_proficiency WHERE profile_id = ?"
        params: tuple[object, ...] = (profile_id,)
        if dimension is not None:
            query += " AND dimension = ?"
            params = (profile_id, dimension)
        rows = self._conn.execute(query + " ORDER BY dimension, value", params).fetchall()
        return [
            Proficiency(dimension=str(row["dimension"]), value=str(row["value"]), declared_at=str(row["declared_at"]))
            for row in rows
        ]

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass


class ProfileStore:
    """Statistics view of a `ProgressStore` bound to one profile."""

    def __init__(self, store: ProgressStore, profile_id: int, tiers: Iterable[DimensionTier]) -> None:
        """Bind store, profile and the dimension tier layout."""
        self.store = store
        self.profile_id = profile_id
        self._tiers = tuple(tiers)

    def get_compound_stats(self, identifier: str) -> CompoundStats | None:
        """Return statistics for a compound id."""
        return self.store.get_compound_stats(self.profile_id, identifier)

    def list_compound_stats(self) -> list[CompoundStats]:
        """Return every statistics row."""
        return self.store.list_compound_stats(self.profile_id)

    def related_compounds(self, compound: Compound) -> list[CompoundStats]:
        """Return statistics one dimension away from `compound`."""
        return self.store.related_compounds(self.profile_id, compound)

    def last_practiced_compound(self) -> Compound | None:
        """Return the compound of the most recent attempt."""
        entry = self.store.last_practice(self.profile_id)
        return entry.compound if entry is not None else None

    def current_session(self) -> int:
        """Return the session counter."""
        return self.store.current_session(self.profile_id)

    def increment_session(self) -> int:
        """Advance the session counter."""
        return self.store.increment_session(self.profile_id)

    def is_dimension_unlocked(self, name: str) -> bool:
        """Return whether a dimension is unlocked."""
        return self.store.is_dimension_unlocked(self.profile_id, name)

    def unlock_dimension(self, name: str, session: int) -> None:
        """Record a dimension unlock."""
        self.store.unlock_dimension(self.profile_id, name, session)

    def recent_dimension_changes(self, lookback: int) -> list[str]:
        """Return recently changed dimension names."""
        return self.store.recent_dimension_changes(self.profile_id, lookback)

    def save_compound_stats(self, stats: CompoundStats) -> None:
        """Persist a statistics row."""
        self.store.save_compound_stats(self.profile_id, stats)

    def log_practice(
        self, compound: Compound, key: str, bpm: float, npm: float, reasoning: str | None
    ) -> PracticeEntry:
        """Append an attempt to the practice log."""
        return self.store.log_practice(self.profile_id, compound, key, bpm, npm, reasoning)

    def count_expanded_compounds_in_tier(self, tier: int) -> int:
        """Count distinct expanded compounds over every dimension of tier <= `tier`.

        Tier 0 counts (scale, position, rhythm) combinations; each higher tier
        adds its dimensions to the combination.
        """
        dimensions = [item.name for item in self._tiers if item.tier <= tier]
        return self.store.count_expanded_projections(self.profile_id, dimensions)


def _compound_values(compound: Compound) -> tuple[str | None, ...]:
    return tuple(getattr(compound, column) for column in COMPOUND_COLUMNS)


def _row_to_compound(row: sqlite3.Row) -> Compound:
    return Compound(
        scale=str(row["scale"]),
        position=str(row["position"]),
        rhythm=str(row["rhythm"]),
        rhythm_pattern=str(row["rhythm_pattern"]),
        note_pattern=str(row["note_pattern"]) if row["note_pattern"] is not None else None,
        articulation=str(row["articulation"]) if row["articulation"] is not None else None,
    )


def _row_to_entry(row: sqlite3.Row) -> PracticeEntry:
    return PracticeEntry(
        id=int(row["id"]),
        logged_at=str(row["logged_at"]),
        compound=_row_to_compound(row),
        key=str(row["key"]),
        bpm=float(row["bpm"]),
        npm=float(row["npm"]),
        reasoning=str(row["reasoning"]) if row["reasoning"] is not None else None,
    )


def _row_to_stats(row: sqlite3.Row) -> CompoundStats:
    session = row["last_practiced_session"]
    return CompoundStats(
        compound=_row_to_compound(row),
        attempts=int(row["attempts"]),
        best_npm=float(row["best_npm"]),
        ema_npm=float(row["ema_npm"]),
        last_npm=float(row["last_npm"]),
        last_bpm=float(row["last_bpm"]),
        mastery_streak=int(row["mastery_streak"]),
        struggling_streak=int(row["struggling_streak"]),
        has_expanded=bool(row["has_expanded"]),
        is_mastered=bool(row["is_mastered"]),
        last_practiced=str(row["last_practiced"]) if row["last_practiced"] is not None else None,
        last_practiced_session=int(session) if session is not None else None,
    )


def _now() -> str:
    return datetime.now(UTC).isoformat()
