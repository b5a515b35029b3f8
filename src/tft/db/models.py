"""ORM models for accounts, progression records, badges and the completion log.

Timestamps are stored with timezone where the dialect supports it; SQLite
returns naive values, which callers treat as UTC.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tft.db.base import Base


def _new_account_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class Account(Base):
    """Maps to the 'accounts' table. Provisioned by the identity layer."""

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_account_id)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    progress: Mapped[AccountProgress] = relationship(back_populates="account", uselist=False)


class AccountProgress(Base):
    """Progression record: one row per account, written only by the ledger.

    ``level`` is a cached projection of ``total_points``; ``version_id`` makes
    every UPDATE conditional on the version that was read.
    """

    __tablename__ = "account_progress"
    __table_args__ = (Index("idx_account_progress_points", "total_points"),)

    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    units_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    perfect_scores: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    camps_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    account: Mapped[Account] = relationship(back_populates="progress")

    __mapper_args__ = {"version_id_col": version_id}  # noqa: RUF012


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Badge catalog entry with one typed threshold criterion."""

    __tablename__ = "badge_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tier: Mapped[str] = mapped_column(String(16), nullable=False, default="bronze")
    criterion: Mapped[str] = mapped_column(String(32), nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class BadgeAward(Base):
    """Badges earned by accounts. UNIQUE(account_id, badge_id) prevents duplicates."""

    __tablename__ = "badge_awards"
    __table_args__ = (
        UniqueConstraint("account_id", "badge_id", name="badge_awards_account_id_badge_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="joined")


# ---------------------------------------------------------------------------
# Completion log
# ---------------------------------------------------------------------------


class CompletionEvent(Base):
    """Append-only log of applied completions; event_id deduplicates resubmissions."""

    __tablename__ = "completion_events"
    __table_args__ = (
        UniqueConstraint("account_id", "event_id", name="completion_events_account_id_event_id_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    event_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
