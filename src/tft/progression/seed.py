"""Default badge catalog, upserted on startup."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from tft.db.dialect import insert_for
from tft.db.models import BadgeDefinition
from tft.progression.badges import BadgeCriterion

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    {
        "slug": "first_step",
        "name": "First Step",
        "description": "Complete your first lesson",
        "tier": "bronze",
        "criterion": BadgeCriterion.UNITS_COMPLETED.value,
        "threshold": 1,
        "sort_order": 1,
    },
    {
        "slug": "week_warrior",
        "name": "Week Warrior",
        "description": "Maintain a 7-day streak",
        "tier": "gold",
        "criterion": BadgeCriterion.STREAK_DAYS.value,
        "threshold": 7,
        "sort_order": 2,
    },
    {
        "slug": "perfect_score",
        "name": "Perfect Score",
        "description": "Get 100% on a lesson",
        "tier": "bronze",
        "criterion": BadgeCriterion.PERFECT_SCORES.value,
        "threshold": 1,
        "sort_order": 3,
    },
    {
        "slug": "points_master",
        "name": "Points Master",
        "description": "Earn 1,000 total points",
        "tier": "gold",
        "criterion": BadgeCriterion.POINTS.value,
        "threshold": 1000,
        "sort_order": 4,
    },
    {
        "slug": "camp_crusher",
        "name": "Camp Crusher",
        "description": "Complete an entire camp",
        "tier": "silver",
        "criterion": BadgeCriterion.CAMPS_COMPLETED.value,
        "threshold": 1,
        "sort_order": 5,
    },
    {
        "slug": "level_10",
        "name": "Level 10",
        "description": "Reach level 10",
        "tier": "platinum",
        "criterion": BadgeCriterion.LEVEL.value,
        "threshold": 10,
        "sort_order": 6,
    },
    {
        "slug": "social_butterfly",
        "name": "Social Butterfly",
        "description": "Complete 10 AI sparring sessions",
        "tier": "silver",
        "criterion": BadgeCriterion.AI_SESSIONS.value,
        "threshold": 10,
        "sort_order": 7,
    },
]


async def seed_badges(db: AsyncSession, badges: list[dict] | None = None) -> int:
    """Upsert badge definitions by slug. Returns number of badges seeded."""
    seeded = 0
    for badge_data in badges if badges is not None else BADGE_SEED_DATA:
        stmt = insert_for(db, BadgeDefinition).values(**badge_data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "tier": stmt.excluded.tier,
                "criterion": stmt.excluded.criterion,
                "threshold": stmt.excluded.threshold,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)
        seeded += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", seeded)
    return seeded
