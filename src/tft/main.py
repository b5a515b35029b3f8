"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from tft.config import get_settings
from tft.database import close_db, get_session_factory, init_db
from tft.dependencies import reset_dependencies
from tft.health.router import router as health_router
from tft.leaderboard.router import router as leaderboard_router
from tft.middleware import setup_middleware
from tft.progression.router import router as progression_router
from tft.progression.seed import seed_badges
from tft.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings)
    reset_dependencies()

    # Seed badge definitions (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_badges(db)
    except SQLAlchemyError:
        logger.warning("Badge seeding failed (tables may not exist yet)", exc_info=True)

    yield

    reset_dependencies()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Thai Fight Talk Progression API",
        description="Points, levels, streaks, badges and rankings for course progress",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(progression_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
