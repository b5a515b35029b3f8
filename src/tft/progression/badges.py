"""Badge criteria evaluation. Pure functions, no database access."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol, TypeVar


class BadgeCriterion(str, Enum):
    """Typed threshold predicates a badge can carry."""

    POINTS = "points"
    LEVEL = "level"
    STREAK_DAYS = "streak_days"
    UNITS_COMPLETED = "units_completed"
    PERFECT_SCORES = "perfect_scores"
    CAMPS_COMPLETED = "camps_completed"
    AI_SESSIONS = "ai_sessions"


# Criterion -> ProgressStats attribute it is measured against
CRITERION_FIELDS: dict[str, str] = {
    BadgeCriterion.POINTS.value: "points",
    BadgeCriterion.LEVEL.value: "level",
    BadgeCriterion.STREAK_DAYS.value: "streak",
    BadgeCriterion.UNITS_COMPLETED.value: "units_completed",
    BadgeCriterion.PERFECT_SCORES.value: "perfect_scores",
    BadgeCriterion.CAMPS_COMPLETED.value: "camps_completed",
    BadgeCriterion.AI_SESSIONS.value: "ai_sessions",
}


@dataclass(frozen=True)
class ProgressStats:
    """Aggregate account stats that badge criteria are evaluated against."""

    points: int = 0
    level: int = 1
    streak: int = 0
    units_completed: int = 0
    perfect_scores: int = 0
    camps_completed: int = 0
    ai_sessions: int = 0


class BadgeRule(Protocol):
    slug: str
    criterion: str
    threshold: int


B = TypeVar("B", bound=BadgeRule)


def criterion_met(stats: ProgressStats, criterion: str, threshold: int) -> bool:
    """True when the stat tracked by ``criterion`` has reached ``threshold``.

    Unknown criterion types never match.
    """
    field = CRITERION_FIELDS.get(str(getattr(criterion, "value", criterion)))
    if field is None:
        return False
    return getattr(stats, field) >= threshold


def evaluate_newly_earned(
    stats: ProgressStats,
    already_earned: Collection[str],
    catalog: Sequence[B],
) -> list[B]:
    """Return catalog entries not yet earned whose criterion is now satisfied.

    Results keep catalog order. ``already_earned`` holds badge slugs and is
    not modified.
    """
    return [
        badge
        for badge in catalog
        if badge.slug not in already_earned
        and criterion_met(stats, badge.criterion, badge.threshold)
    ]
