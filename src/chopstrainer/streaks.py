"""Daily practice streaks with streak freezes."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date


@dataclass(frozen=True)
class StreakInfo:
    """Consecutive-day practice record of one profile.

    A freeze covers exactly one missed day and is spent automatically.
    """

    current_streak: int = 0
    longest_streak: int = 0
    last_practice_date: str | None = None
    streak_freezes: int = 0


def calendar_date(stamp: str) -> str:
    """Return the ``YYYY-MM-DD`` part of an ISO timestamp or date."""
    return stamp[:10]


def days_between(earlier: str, later: str) -> int:
    """Return whole calendar days from `earlier` to `later`."""
    return (date.fromisoformat(calendar_date(later)) - date.fromisoformat(calendar_date(earlier))).days


def update_streak(info: StreakInfo | None, practice_date: str) -> StreakInfo:
    """Return the streak after practicing on `practice_date`."""
    today = calendar_date(practice_date)
    if info is None:
        return StreakInfo(current_streak=1, longest_streak=1, last_practice_date=today)
    if info.last_practice_date is None:
        return replace(info, current_streak=1, longest_streak=max(info.longest_streak, 1), last_practice_date=today)

    gap = days_between(info.last_practice_date, today)
    if gap <= 0:
        return info
    if gap == 1 or (gap == 2 and info.streak_freezes > 0):
        current = info.current_streak + 1
        return StreakInfo(
            current_streak=current,
            longest_streak=max(info.longest_streak, current),
            last_practice_date=today,
            streak_freezes=info.streak_freezes - (1 if gap == 2 else 0),
        )
    return replace(info, current_streak=1, last_practice_date=today)
