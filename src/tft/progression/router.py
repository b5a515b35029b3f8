"""Progression API endpoints: completions, progress, badges and levels."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tft.database import get_session
from tft.dependencies import get_ledger
from tft.progression.badge_service import list_account_badges, list_catalog
from tft.progression.errors import store_errors
from tft.progression.ledger import ProgressionLedger
from tft.progression.levels import level_table
from tft.progression.schemas import (
    AccountBadgeResponse,
    AccountBadgesResponse,
    AllBadgesResponse,
    AllLevelsResponse,
    BadgeDefinitionResponse,
    CompletionRequest,
    CompletionResponse,
    EarnedBadgeSummary,
    LevelEntry,
    LevelProgress,
    ProgressResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Ledger ──


@router.post("/accounts/{account_id}/completions", response_model=CompletionResponse)
async def apply_completion(
    account_id: str,
    body: CompletionRequest,
    ledger: ProgressionLedger = Depends(get_ledger),
):
    """Apply one completed unit to the account's progression record."""
    result = await ledger.apply_completion(
        account_id,
        body.points,
        body.stat_deltas,
        now=body.occurred_at,
        event_id=body.event_id,
        source=body.source,
    )
    return CompletionResponse(
        account_id=result.account_id,
        new_points=result.new_points,
        new_level=result.new_level,
        leveled_up=result.leveled_up,
        new_streak=result.new_streak,
        streak_changed=result.streak_changed,
        streak_broken=result.streak_broken,
        newly_earned_badges=[
            EarnedBadgeSummary(slug=b.slug, name=b.name, tier=b.tier)
            for b in result.newly_earned_badges
        ],
        duplicate=result.duplicate,
    )


@router.get("/accounts/{account_id}/progress", response_model=ProgressResponse)
async def get_progress(
    account_id: str,
    ledger: ProgressionLedger = Depends(get_ledger),
):
    """Current points, level, streak and counters for an account."""
    snapshot = await ledger.get_snapshot(account_id)
    return ProgressResponse(
        account_id=snapshot.account_id,
        points=snapshot.points,
        level=snapshot.level,
        streak=snapshot.streak,
        longest_streak=snapshot.longest_streak,
        last_activity=snapshot.last_activity,
        units_completed=snapshot.units_completed,
        perfect_scores=snapshot.perfect_scores,
        camps_completed=snapshot.camps_completed,
        ai_sessions=snapshot.ai_sessions,
        level_progress=LevelProgress(**snapshot.level_info()),
    )


# ── Badges ──


@router.get("/accounts/{account_id}/badges", response_model=AccountBadgesResponse)
async def get_account_badges(account_id: str, db: AsyncSession = Depends(get_session)):
    """Full catalog with the account's earned status per badge."""
    with store_errors():
        rows = await list_account_badges(db, account_id)

    items = [
        AccountBadgeResponse(
            slug=badge.slug,
            name=badge.name,
            description=badge.description,
            tier=badge.tier,
            earned=earned_at is not None,
            earned_at=earned_at,
        )
        for badge, earned_at in rows
    ]
    return AccountBadgesResponse(
        badges=items,
        total_available=len(items),
        total_earned=sum(1 for item in items if item.earned),
    )


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """All active badge definitions with how many accounts earned each."""
    with store_errors():
        rows = await list_catalog(db)

    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                slug=badge.slug,
                name=badge.name,
                description=badge.description,
                tier=badge.tier,
                criterion=badge.criterion,
                threshold=badge.threshold,
                total_earned=count,
            )
            for badge, count in rows
        ]
    )


# ── Levels ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels(count: int = Query(20, ge=1, le=100)):
    """Point requirements for the first ``count`` levels."""
    return AllLevelsResponse(levels=[LevelEntry(**entry) for entry in level_table(count)])
