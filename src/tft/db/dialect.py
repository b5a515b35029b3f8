"""Dialect-aware INSERT ... ON CONFLICT helpers (PostgreSQL and SQLite)."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, table: Any) -> Any:  # noqa: ANN401
    """Return an INSERT construct supporting on_conflict_* for the session's dialect."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    msg = f"Unsupported dialect for conflict-tolerant insert: {dialect}"
    raise RuntimeError(msg)
