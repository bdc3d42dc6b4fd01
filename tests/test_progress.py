import sqlite3
from dataclasses import replace
from pathlib import Path

import pytest

from chopstrainer.achievements import AchievementSnapshot
from chopstrainer.compound import compound_id
from chopstrainer.models import Compound, CompoundStats, Suggestion
from chopstrainer.progress import ProfileStore, ProgressStore
from chopstrainer.settings import DEFAULT_SETTINGS
from chopstrainer.streaks import StreakInfo

ENTRY = Compound(
    scale="pentatonic_minor",
    position="E",
    rhythm="8ths",
    rhythm_pattern="xx",
    note_pattern="stepwise",
    articulation="continuous",
)


def _expanded(compound: Compound, **kwargs: object) -> CompoundStats:
    return replace(CompoundStats.empty(compound), attempts=1, ema_npm=420.0, has_expanded=True, **kwargs)


def test_profiles_crud() -> None:
    store = ProgressStore(":memory:")
    bob = store.create_profile("bob")
    store.create_profile("alice")
    assert [profile.name for profile in store.list_profiles()] == ["alice", "bob"]
    assert store.find_profile("bob") == bob
    assert store.get_profile(bob.id) == bob
    assert store.find_profile("carol") is None
    with pytest.raises(sqlite3.IntegrityError):
        store.create_profile("bob")


def test_delete_profile_removes_related_progress() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("remove-me")
    store.log_practice(profile.id, ENTRY, "C", 100.0, 200.0)
    store.save_compound_stats(profile.id, _expanded(ENTRY))
    store.increment_session(profile.id)
    store.unlock_dimension(profile.id, "note-pattern", 1)
    store.save_pending_suggestion(profile.id, Suggestion(ENTRY, "C", "why", "now"))
    store.save_streak(profile.id, StreakInfo(1, 1, "2024-01-01", 0))
    store.earn_achievement(profile.id, "first-practice")
    store.set_proficient(profile.id, "position", "E")

    assert store.delete_profile(profile.id) is True
    assert store.get_profile(profile.id) is None
    assert store.list_practice(profile.id) == []
    assert store.list_compound_stats(profile.id) == []
    assert store.current_session(profile.id) == 0
    assert store.list_unlocks(profile.id) == []
    assert store.get_pending_suggestion(profile.id) is None
    assert store.get_streak(profile.id) is None
    assert store.list_achievements(profile.id) == []
    assert store.list_proficiencies(profile.id) == []


def test_delete_profile_missing_returns_false() -> None:
    store = ProgressStore(":memory:")
    assert store.delete_profile(9999) is False


def test_migration_sets_user_version_and_schema_history() -> None:
    store = ProgressStore(":memory:")
    version = int(store._conn.execute("PRAGMA user_version").fetchone()[0])  # noqa: SLF001
    assert version == 2
    rows = store._conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()  # noqa: SLF001
    assert [int(row["version"]) for row in rows] == [1, 2]


def test_newer_schema_is_rejected(tmp_path: Path) -> None:
    db_path = tmp_path / "future.db"
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA user_version = 99")
        conn.commit()
    finally:
        conn.close()
    with pytest.raises(RuntimeError, match="newer"):
        ProgressStore(db_path)


def test_path_database_creation(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "progress.db"
    store = ProgressStore(db_path)
    profile = store.create_profile("charlie")
    store.log_practice(profile.id, ENTRY, "E", 120.0, 240.0)
    store.close()
    assert db_path.exists()

    reopened = ProgressStore(db_path)
    assert reopened.find_profile("charlie") == profile
    assert reopened.last_practice(profile.id) is not None
    reopened.close()


def test_practice_log_ordering() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("dana")
    blues = replace(ENTRY, scale="blues")
    first = store.log_practice(profile.id, ENTRY, "C", 100.0, 200.0, reasoning="start", logged_at="2024-01-01T00:00:00")
    second = store.log_practice(profile.id, blues, "D", 110.0, 220.0)

    assert [entry.id for entry in store.list_practice(profile.id)] == [second.id, first.id]
    assert store.list_practice(profile.id, limit=1) == [second]
    assert store.all_practice(profile.id) == [first, second]
    assert store.last_practice(profile.id) == second
    assert first.logged_at == "2024-01-01T00:00:00"
    assert store.all_practice(profile.id)[0].compound == ENTRY


def test_compound_stats_upsert_round_trip() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("erin")
    stats = _expanded(ENTRY, last_practiced="2024-01-01T00:00:00", last_practiced_session=1)
    store.save_compound_stats(profile.id, stats)
    assert store.get_compound_stats(profile.id, compound_id(ENTRY)) == stats

    updated = replace(stats, attempts=2, is_mastered=True, mastery_streak=3)
    store.save_compound_stats(profile.id, updated)
    assert store.list_compound_stats(profile.id) == [updated]
    assert store.get_compound_stats(profile.id, "missing+E+8ths:xx") is None


def test_clear_compound_stats_resets_session() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("finn")
    store.save_compound_stats(profile.id, _expanded(ENTRY))
    store.increment_session(profile.id)
    store.log_practice(profile.id, ENTRY, "C", 100.0, 200.0)
    store.clear_compound_stats(profile.id)
    assert store.list_compound_stats(profile.id) == []
    assert store.current_session(profile.id) == 0
    assert len(store.all_practice(profile.id)) == 1


def test_related_compounds_are_one_step_away() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("gail")
    near = replace(ENTRY, position="D")
    far = replace(ENTRY, position="D", scale="minor")
    for compound in (ENTRY, near, far):
        store.save_compound_stats(profile.id, _expanded(compound))
    related = store.related_compounds(profile.id, ENTRY)
    assert [stats.compound for stats in related] == [near]


def test_count_expanded_projections() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("hana")
    store.save_compound_stats(profile.id, _expanded(ENTRY))
    store.save_compound_stats(profile.id, _expanded(replace(ENTRY, note_pattern="thirds")))
    store.save_compound_stats(
        profile.id, _expanded(Compound(scale="pentatonic_minor", position="E", rhythm="8ths", rhythm_pattern="x-"))
    )
    store.save_compound_stats(profile.id, replace(CompoundStats.empty(replace(ENTRY, scale="blues")), attempts=1))

    assert store.count_expanded_projections(profile.id, ["scale", "position", "rhythm"]) == 1
    assert store.count_expanded_projections(profile.id, ["scale", "position", "rhythm", "note-pattern"]) == 2
    assert store.count_expanded_projections(profile.id, ["scale"]) == 1
    assert store.count_expanded_projections(profile.id, []) == 0

    view = ProfileStore(store, profile.id, DEFAULT_SETTINGS.dimension_tiers)
    assert view.count_expanded_compounds_in_tier(0) == 1
    assert view.count_expanded_compounds_in_tier(1) == 2
    assert view.count_expanded_compounds_in_tier(2) == 2


def test_rhythm_sub_patterns_share_one_projection() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("sub")
    store.save_compound_stats(profile.id, _expanded(ENTRY))
    store.save_compound_stats(profile.id, _expanded(replace(ENTRY, rhythm_pattern="-x")))
    assert store.count_expanded_projections(profile.id, ["scale", "position", "rhythm"]) == 1
    store.save_compound_stats(profile.id, _expanded(replace(ENTRY, position="D")))
    assert store.count_expanded_projections(profile.id, ["scale", "position", "rhythm"]) == 2


def test_struggling_compounds_worst_first() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("ivan")
    store.save_compound_stats(profile.id, replace(CompoundStats.empty(ENTRY), attempts=2, struggling_streak=2))
    blues = replace(ENTRY, scale="blues")
    store.save_compound_stats(profile.id, replace(CompoundStats.empty(blues), attempts=4, struggling_streak=4))
    store.save_compound_stats(profile.id, _expanded(replace(ENTRY, scale="minor")))
    rows = store.struggling_compounds(profile.id, 1)
    assert [stats.compound.scale for stats in rows] == ["blues", "pentatonic_minor"]
    assert [stats.compound.scale for stats in store.struggling_compounds(profile.id, 3)] == ["blues"]


def test_recent_dimension_changes_newest_first() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("jo")
    blues = replace(ENTRY, scale="blues")
    blues_triplets = replace(blues, rhythm="triplets", rhythm_pattern="xxx")
    moved = replace(blues_triplets, scale="minor", position="D")
    for compound in (ENTRY, blues, blues_triplets, blues_triplets, moved):
        store.log_practice(profile.id, compound, "C", 100.0, 200.0)

    assert store.recent_dimension_changes(profile.id, 3) == ["scale", "rhythm"]
    assert store.recent_dimension_changes(profile.id, 10) == ["scale", "rhythm", "scale"]
    assert store.recent_dimension_changes(profile.id, 0) == []


def test_session_counter() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("kai")
    other = store.create_profile("lee")
    assert store.current_session(profile.id) == 0
    assert store.increment_session(profile.id) == 1
    assert store.increment_session(profile.id) == 2
    assert store.current_session(other.id) == 0


def test_unlock_keeps_first_record() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("mia")
    assert not store.is_dimension_unlocked(profile.id, "note-pattern")
    store.unlock_dimension(profile.id, "note-pattern", 2, unlocked_at="2024-01-01T00:00:00")
    store.unlock_dimension(profile.id, "note-pattern", 7)
    store.unlock_dimension(profile.id, "articulation", 5)
    unlocks = store.list_unlocks(profile.id)
    assert [(item.dimension, item.unlocked_at_session) for item in unlocks] == [
        ("note-pattern", 2),
        ("articulation", 5),
    ]
    assert unlocks[0].unlocked_at == "2024-01-01T00:00:00"
    assert store.is_dimension_unlocked(profile.id, "articulation")


def test_pending_suggestion_round_trip() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("nia")
    assert store.get_pending_suggestion(profile.id) is None
    first = Suggestion(ENTRY, "C", "Building foundation", "2024-01-01T00:00:00", unlocked=("note-pattern",))
    store.save_pending_suggestion(profile.id, first)
    assert store.get_pending_suggestion(profile.id) == first

    second = Suggestion(replace(ENTRY, rhythm="16ths", rhythm_pattern="x-x-"), "G", "Trying 16ths", "later")
    store.save_pending_suggestion(profile.id, second)
    assert store.get_pending_suggestion(profile.id) == second
    store.clear_pending_suggestion(profile.id)
    assert store.get_pending_suggestion(profile.id) is None


def test_profile_store_binds_profile(progress: ProgressStore, profile_store: ProfileStore) -> None:
    other = progress.create_profile("other")
    entry = profile_store.log_practice(ENTRY, "A", 150.0, 300.0, "first")
    progress.log_practice(other.id, replace(ENTRY, scale="minor"), "B", 100.0, 200.0)
    assert profile_store.last_practiced_compound() == ENTRY
    assert entry.reasoning == "first"
    profile_store.save_compound_stats(_expanded(ENTRY))
    assert profile_store.get_compound_stats(compound_id(ENTRY)) is not None
    assert progress.list_compound_stats(other.id) == []
    profile_store.unlock_dimension("note-pattern", 1)
    assert profile_store.is_dimension_unlocked("note-pattern")
    assert not progress.is_dimension_unlocked(other.id, "note-pattern")


def test_migrates_version_one_database(tmp_path: Path) -> None:
    db_path = tmp_path / "old.db"
    store = ProgressStore(db_path)
    profile = store.create_profile("old")
    store.log_practice(profile.id, ENTRY, "C", 100.0, 200.0)
    with store._conn:  # noqa: SLF001
        for table in ("practice_streaks", "achievements", "dimension_proficiency"):
            store._conn.execute(f"DROP TABLE {table}")  # noqa: SLF001
        store._conn.execute("DELETE FROM schema_migrations WHERE version = 2")  # noqa: SLF001
        store._conn.execute("PRAGMA user_version = 1")  # noqa: SLF001
    store.close()

    reopened = ProgressStore(db_path)
    assert int(reopened._conn.execute("PRAGMA user_version").fetchone()[0]) == 2  # noqa: SLF001
    assert len(reopened.list_practice(profile.id)) == 1
    assert reopened.get_streak(profile.id) is None
    reopened.close()


def test_streak_round_trip_and_freezes() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("streak")
    store.add_streak_freezes(profile.id, 2)
    assert store.get_streak(profile.id) is None

    store.save_streak(profile.id, StreakInfo(3, 5, "2024-06-01", 0))
    store.add_streak_freezes(profile.id, 2)
    assert store.get_streak(profile.id) == StreakInfo(3, 5, "2024-06-01", 2)
    store.save_streak(profile.id, StreakInfo(4, 5, "2024-06-02", 2))
    assert store.get_streak(profile.id) == StreakInfo(4, 5, "2024-06-02", 2)


def test_achievements_keep_first_earning() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("badges")
    store.earn_achievement(profile.id, "first-practice", "2024-01-01T00:00:00+00:00")
    store.earn_achievement(profile.id, "reach-400-npm", "2024-01-02T00:00:00+00:00")
    store.earn_achievement(profile.id, "first-practice", "2024-02-01T00:00:00+00:00")
    assert [(item.achievement_id, item.earned_at) for item in store.list_achievements(profile.id)] == [
        ("first-practice", "2024-01-01T00:00:00+00:00"),
        ("reach-400-npm", "2024-01-02T00:00:00+00:00"),
    ]


def test_achievement_snapshot_metrics() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("snap")
    assert store.achievement_snapshot(profile.id) == AchievementSnapshot()

    blues = replace(ENTRY, scale="blues", position="D")
    store.log_practice(profile.id, ENTRY, "C", 210.0, 420.0)
    store.log_practice(profile.id, blues, "A", 100.0, 200.0)
    store.save_compound_stats(profile.id, _expanded(ENTRY, best_npm=420.0, is_mastered=True))
    store.save_compound_stats(profile.id, replace(CompoundStats.empty(blues), attempts=1, best_npm=200.0))
    store.save_streak(profile.id, StreakInfo(1, 4, "2024-01-01", 0))
    store.unlock_dimension(profile.id, "note-pattern", 1)

    snapshot = store.achievement_snapshot(profile.id)
    assert snapshot == AchievementSnapshot(
        practice_count=2,
        longest_streak=4,
        expanded_count=1,
        mastered_count=1,
        max_npm=420.0,
        mastered_positions=frozenset({"E"}),
        practiced_positions=frozenset({"E", "D"}),
        practiced_scales=frozenset({"pentatonic_minor", "blues"}),
        practiced_rhythms=frozenset({"8ths"}),
        note_pattern_unlocked=True,
    )


def test_proficiency_crud() -> None:
    store = ProgressStore(":memory:")
    profile = store.create_profile("pro")
    store.set_proficient(profile.id, "position", "D", "2024-01-01")
    store.set_proficient(profile.id, "scale", "blues")
    store.set_proficient(profile.id, "position", "D", "2024-02-01")
    assert [(item.dimension, item.value) for item in store.list_proficiencies(profile.id)] == [
        ("position", "D"),
        ("scale", "blues"),
    ]
    assert store.list_proficiencies(profile.id, "position")[0].declared_at == "2024-02-01"
    assert store.remove_proficient(profile.id, "scale", "blues") is True
    assert store.remove_proficient(profile.id, "scale", "blues") is False
    assert [item.value for item in store.list_proficiencies(profile.id)] == ["D"]
