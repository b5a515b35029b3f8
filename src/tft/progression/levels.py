"""Level curve and computation.

Reaching level L requires (L - 1)^2 * POINTS_PER_LEVEL_STEP points, so each
level costs strictly more than the one before it:

    level 1 -> 0, level 2 -> 100, level 3 -> 400, level 4 -> 900, ...
"""

from __future__ import annotations

from math import isqrt

POINTS_PER_LEVEL_STEP = 100


def points_required_for(level: int) -> int:
    """Minimum total points needed to reach ``level``."""
    if level < 1:
        msg = f"Level must be >= 1, got {level}"
        raise ValueError(msg)
    return (level - 1) ** 2 * POINTS_PER_LEVEL_STEP


def level_of(points: int) -> int:
    """Level for a point total. Negative totals are a caller bug and are rejected."""
    if points < 0:
        msg = f"Points must be non-negative, got {points}"
        raise ValueError(msg)
    return isqrt(points // POINTS_PER_LEVEL_STEP) + 1


def compute_level(points: int) -> dict:
    """Compute level info from total points, for progress-bar style reporting."""
    level = level_of(points)
    floor = points_required_for(level)
    ceiling = points_required_for(level + 1)

    points_into_level = points - floor
    points_for_level = ceiling - floor

    return {
        "level": level,
        "points_into_level": points_into_level,
        "points_for_level": points_for_level,
        "next_level": level + 1,
        "next_level_points": ceiling,
        "progress_percent": round(points_into_level / points_for_level * 100, 2),
    }


def level_table(count: int = 20) -> list[dict]:
    """First ``count`` levels with their cumulative and incremental requirements."""
    return [
        {
            "level": level,
            "points_required": points_required_for(level),
            "points_for_level": points_required_for(level + 1) - points_required_for(level),
        }
        for level in range(1, count + 1)
    ]
