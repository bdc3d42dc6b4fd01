import pytest

from chopstrainer.achievements import (
    ACHIEVEMENTS,
    AchievementSnapshot,
    achievement_statuses,
    check_achievements,
    get_achievement,
)


def test_definitions_are_unique() -> None:
    ids = [item.id for item in ACHIEVEMENTS]
    assert len(ids) == 18
    assert len(set(ids)) == len(ids)
    assert {item.category for item in ACHIEVEMENTS} == {"consistency", "mastery", "exploration", "speed"}


def test_empty_profile_earns_nothing() -> None:
    assert check_achievements(AchievementSnapshot(), set()) == []


def test_check_reports_only_new_achievements() -> None:
    snapshot = AchievementSnapshot(practice_count=10, longest_streak=7, max_npm=480.0)
    met = [item.id for item in check_achievements(snapshot, {"first-practice", "3-day-streak"})]
    assert met == ["7-day-streak", "practice-10-sessions", "reach-400-npm", "reach-480-npm"]


def test_caged_achievements_ignore_other_positions() -> None:
    snapshot = AchievementSnapshot(
        practiced_positions=frozenset({"C", "A", "G", "E", "D"}),
        mastered_positions=frozenset({"E", "X"}),
    )
    assert get_achievement("try-all-positions").is_met(snapshot)
    master_all = get_achievement("master-all-positions")
    assert not master_all.is_met(snapshot)
    assert master_all.progress_of(snapshot) == pytest.approx(0.2)


def test_progress_is_clamped() -> None:
    speed = get_achievement("reach-400-npm")
    assert speed.progress_of(AchievementSnapshot(max_npm=900.0)) == 1.0
    assert speed.progress_of(AchievementSnapshot(max_npm=100.0)) == 0.25


def test_get_achievement_unknown_id() -> None:
    assert get_achievement("retired-badge") is None


def test_statuses_pair_earned_state_with_progress() -> None:
    snapshot = AchievementSnapshot(practice_count=3, practiced_scales=frozenset({"blues", "minor"}))
    earned = [("first-practice", "2024-01-01")]
    statuses = {item.achievement.id: item for item in achievement_statuses(snapshot, earned)}
    assert statuses["first-practice"].earned
    assert statuses["first-practice"].earned_at == "2024-01-01"
    assert statuses["try-all-scales"].progress == 0.5
    assert not statuses["try-all-scales"].earned
    assert statuses["practice-10-sessions"].progress == pytest.approx(0.3)
