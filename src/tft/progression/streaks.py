"""Daily streak resolution on elapsed wall-clock hours."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import NamedTuple

SAME_WINDOW = timedelta(hours=24)
NEXT_WINDOW = timedelta(hours=48)


class StreakResolution(NamedTuple):
    new_streak: int
    changed: bool
    broken: bool = False


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on round-trip)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def resolve_streak(
    last_activity: datetime | None,
    current_streak: int,
    now: datetime,
) -> StreakResolution:
    """Resolve the streak for an activity at ``now``.

    - No prior activity: streak starts at 1.
    - Under 24h since last activity: same day, streak unchanged.
    - 24h to under 48h: next day, streak + 1.
    - 48h or more: a day was missed, streak resets to 1.

    Does not touch ``last_activity``; the caller records the later of
    ``now`` and ``last_activity`` in the same write as the resolved streak.
    A ``now`` earlier than ``last_activity`` (late or skewed event) counts as
    the same day.
    """
    if last_activity is None:
        return StreakResolution(1, True)

    elapsed = ensure_utc(now) - ensure_utc(last_activity)

    if elapsed < SAME_WINDOW:
        return StreakResolution(current_streak, False)

    if elapsed < NEXT_WINDOW:
        return StreakResolution(current_streak + 1, True)

    return StreakResolution(1, True, broken=current_streak > 0)
