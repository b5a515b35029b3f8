"""Pydantic request/response models for progression endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


# --- Completions ---


class CompletionRequest(BaseModel):
    points: int
    stat_deltas: dict[str, int] | None = None
    event_id: str | None = Field(None, max_length=128)
    source: str = Field("unit", max_length=32)
    occurred_at: datetime | None = None


class EarnedBadgeSummary(BaseModel):
    slug: str
    name: str
    tier: str


class CompletionResponse(BaseModel):
    account_id: str
    new_points: int
    new_level: int
    leveled_up: bool
    new_streak: int
    streak_changed: bool
    streak_broken: bool = False
    newly_earned_badges: list[EarnedBadgeSummary] = []
    duplicate: bool = False


# --- Progress ---


class LevelProgress(BaseModel):
    level: int
    points_into_level: int
    points_for_level: int
    next_level: int
    next_level_points: int
    progress_percent: float


class ProgressResponse(BaseModel):
    account_id: str
    points: int
    level: int
    streak: int
    longest_streak: int
    last_activity: datetime | None = None
    units_completed: int
    perfect_scores: int
    camps_completed: int
    ai_sessions: int
    level_progress: LevelProgress


# --- Badges ---


class BadgeDefinitionResponse(BaseModel):
    slug: str
    name: str
    description: str
    tier: str
    criterion: str
    threshold: int
    total_earned: int = 0


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class AccountBadgeResponse(BaseModel):
    slug: str
    name: str
    description: str
    tier: str
    earned: bool
    earned_at: datetime | None = None


class AccountBadgesResponse(BaseModel):
    badges: list[AccountBadgeResponse]
    total_available: int
    total_earned: int


# --- Levels ---


class LevelEntry(BaseModel):
    level: int
    points_required: int
    points_for_level: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]
