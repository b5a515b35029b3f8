"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class LeaderboardEntryResponse(BaseModel):
    rank: int
    account_id: str
    display_name: str
    total_points: int
    level: int
    streak: int


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    total: int
    offset: int
    limit: int


class AccountRankResponse(BaseModel):
    account_id: str
    rank: int
    total_points: int
    total: int
    percentile: float
