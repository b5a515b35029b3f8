"""
Account provisioning.

The identity layer owns account lifecycle; it calls ``provision_account`` once
per new account so the progression record exists before the first completion.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select

from tft.db.models import Account, AccountProgress

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_account(db: AsyncSession, account_id: str) -> Account | None:
    """Fetch an account by ID."""
    result = await db.execute(select(Account).where(Account.id == account_id))
    return result.scalar_one_or_none()


async def provision_account(
    db: AsyncSession,
    display_name: str | None = None,
    account_id: str | None = None,
    created_at: datetime | None = None,
) -> Account:
    """
    Create an account with an empty progression record.

    Idempotent on ``account_id``: an existing account is returned unchanged.
    The caller commits.
    """
    if account_id is not None:
        existing = await get_account(db, account_id)
        if existing is not None:
            return existing

    account = Account(
        display_name=display_name,
        created_at=created_at or datetime.now(timezone.utc),
    )
    if account_id is not None:
        account.id = account_id
    db.add(account)
    await db.flush()

    db.add(AccountProgress(account_id=account.id))
    await db.flush()
    logger.info("account_provisioned", account_id=account.id, display_name=display_name)
    return account
