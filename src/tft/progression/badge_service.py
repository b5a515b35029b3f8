"""Badge award service with duplicate prevention, plus catalog reads."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tft.db.dialect import insert_for
from tft.db.models import Account, BadgeAward, BadgeDefinition
from tft.progression.errors import AccountNotFound

logger = logging.getLogger(__name__)


async def load_catalog(db: AsyncSession) -> list[BadgeDefinition]:
    """All active badge definitions in catalog order."""
    result = await db.execute(
        select(BadgeDefinition)
        .where(BadgeDefinition.is_active.is_(True))
        .order_by(BadgeDefinition.sort_order, BadgeDefinition.id)
    )
    return list(result.scalars())


async def get_badge_by_slug(db: AsyncSession, slug: str) -> BadgeDefinition | None:
    """Fetch a badge definition by slug."""
    result = await db.execute(
        select(BadgeDefinition).where(BadgeDefinition.slug == slug)
    )
    return result.scalar_one_or_none()


async def earned_badge_slugs(db: AsyncSession, account_id: str) -> set[str]:
    """Slugs of every badge the account already holds."""
    result = await db.execute(
        select(BadgeDefinition.slug)
        .join(BadgeAward, BadgeAward.badge_id == BadgeDefinition.id)
        .where(BadgeAward.account_id == account_id)
    )
    return set(result.scalars())


async def award_badge(
    db: AsyncSession,
    account_id: str,
    badge: BadgeDefinition,
    earned_at: datetime,
) -> bool:
    """Insert the award unless it already exists.

    Returns True only if this call created the row. The insert is conditional
    (ON CONFLICT DO NOTHING on account_id, badge_id), so a concurrent award of
    the same badge makes this a no-op instead of an error. The caller commits.
    """
    stmt = (
        insert_for(db, BadgeAward)
        .values(account_id=account_id, badge_id=badge.id, earned_at=earned_at)
        .on_conflict_do_nothing(index_elements=["account_id", "badge_id"])
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def list_account_badges(
    db: AsyncSession,
    account_id: str,
) -> list[tuple[BadgeDefinition, datetime | None]]:
    """Full active catalog with the account's earned instant (None if unearned)."""
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFound(account_id)

    catalog = await load_catalog(db)
    result = await db.execute(
        select(BadgeAward.badge_id, BadgeAward.earned_at).where(BadgeAward.account_id == account_id)
    )
    earned_at = {row.badge_id: row.earned_at for row in result}
    return [(badge, earned_at.get(badge.id)) for badge in catalog]


async def list_catalog(db: AsyncSession) -> list[tuple[BadgeDefinition, int]]:
    """Active catalog with how many accounts earned each badge."""
    catalog = await load_catalog(db)
    result = await db.execute(
        select(BadgeAward.badge_id, func.count(BadgeAward.id).label("cnt"))
        .group_by(BadgeAward.badge_id)
    )
    counts = {row.badge_id: row.cnt for row in result}
    return [(badge, counts.get(badge.id, 0)) for badge in catalog]
