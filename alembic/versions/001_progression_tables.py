"""Progression tables.

Creates accounts, account_progress, badge_definitions, badge_awards and
completion_events.

Revision ID: 001_progression_tables
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_progression_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id VARCHAR(64) PRIMARY KEY,
            display_name VARCHAR(64),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Progression record (one row per account, versioned) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS account_progress (
            account_id VARCHAR(64) PRIMARY KEY REFERENCES accounts(id) ON DELETE CASCADE,
            total_points BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_activity TIMESTAMPTZ,
            units_completed INTEGER NOT NULL DEFAULT 0,
            perfect_scores INTEGER NOT NULL DEFAULT 0,
            camps_completed INTEGER NOT NULL DEFAULT 0,
            ai_sessions INTEGER NOT NULL DEFAULT 0,
            version_id INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMPTZ,
            CHECK (total_points >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_account_progress_points
        ON account_progress(total_points)
    """)

    # --- Badge catalog ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            tier VARCHAR(16) NOT NULL DEFAULT 'bronze',
            criterion VARCHAR(32) NOT NULL,
            threshold INTEGER NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)

    # --- Badge awards (at most one per account and badge) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_awards (
            id SERIAL PRIMARY KEY,
            account_id VARCHAR(64) NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT badge_awards_account_id_badge_id_key UNIQUE (account_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_badge_awards_account_id
        ON badge_awards(account_id)
    """)

    # --- Completion log ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS completion_events (
            id SERIAL PRIMARY KEY,
            account_id VARCHAR(64) NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            points INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            event_id VARCHAR(128),
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT completion_events_account_id_event_id_key UNIQUE (account_id, event_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_completion_events_account_id
        ON completion_events(account_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS completion_events CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_awards CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS account_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
