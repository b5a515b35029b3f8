"""Leaderboard API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from tft.dependencies import get_ranking_view
from tft.leaderboard.ranking import RankingView
from tft.leaderboard.schemas import (
    AccountRankResponse,
    LeaderboardEntryResponse,
    LeaderboardResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    offset: int = Query(0),
    limit: int = Query(50),
    max_staleness: float | None = Query(None, description="Seconds of staleness the caller accepts"),
    ranking: RankingView = Depends(get_ranking_view),
):
    """Global ranking by total points; ties go to the earlier account."""
    page = await ranking.get_page(offset, limit, max_staleness=max_staleness)
    return LeaderboardResponse(
        entries=[
            LeaderboardEntryResponse(
                rank=e.rank,
                account_id=e.account_id,
                display_name=e.display_name or f"Fighter-{e.account_id[:8]}",
                total_points=e.total_points,
                level=e.level,
                streak=e.streak,
            )
            for e in page.entries
        ],
        total=page.total,
        offset=page.offset,
        limit=page.limit,
    )


@router.get("/leaderboard/accounts/{account_id}/rank", response_model=AccountRankResponse)
async def get_account_rank(
    account_id: str,
    max_staleness: float | None = Query(None),
    ranking: RankingView = Depends(get_ranking_view),
):
    """Position of one account in the global ranking."""
    position = await ranking.get_rank(account_id, max_staleness=max_staleness)
    return AccountRankResponse(
        account_id=position.account_id,
        rank=position.rank,
        total_points=position.total_points,
        total=position.total,
        percentile=position.percentile,
    )
