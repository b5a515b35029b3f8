"""Shared test fixtures.

Every test gets its own SQLite database file, so the suite needs neither
PostgreSQL nor Redis.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tft.accounts.service import provision_account
from tft.config import get_settings
from tft.database import close_db, get_engine, get_session_factory, init_db
from tft.db import models  # noqa: F401
from tft.db.base import Base
from tft.dependencies import reset_dependencies
from tft.progression.seed import seed_badges


@pytest.fixture
def database_url(tmp_path, monkeypatch) -> Generator[str, None, None]:
    """Point settings at a fresh SQLite file and disable Redis."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'tft_test.db'}"
    monkeypatch.setenv("TFT_DATABASE_URL", url)
    monkeypatch.setenv("TFT_REDIS_ENABLED", "false")
    monkeypatch.setenv("TFT_LOG_FORMAT", "console")
    get_settings.cache_clear()
    yield url
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Initialized engine with the schema created and the badge catalog seeded."""
    await init_db(database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = get_session_factory()
    async with factory() as db:
        await seed_badges(db)
    reset_dependencies()

    yield factory

    reset_dependencies()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for test setup and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_account(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[str]]:
    """Provision an account (with an empty progression record) and return its id."""

    async def _make(
        account_id: str | None = None,
        display_name: str | None = None,
        created_at: datetime | None = None,
    ) -> str:
        async with session_factory() as db:
            account = await provision_account(
                db,
                display_name=display_name,
                account_id=account_id,
                created_at=created_at,
            )
            await db.commit()
            return account.id

    return _make


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client bound to the per-test database."""
    from tft.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
