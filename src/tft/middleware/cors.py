"""CORS for the browser front end.

Browsers read progress, badges and the leaderboard, and post
completions. Responses expose the request id and, on transient errors,
``Retry-After``.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tft.config import Settings

logger = structlog.get_logger()

ALLOWED_METHODS = ["GET", "POST", "OPTIONS"]
ALLOWED_HEADERS = ["Content-Type", "X-Request-Id"]
EXPOSED_HEADERS = ["X-Request-Id", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    """Allow the configured origins. No origins configured means no CORS headers at all."""
    if not settings.cors_origins:
        logger.info("cors_disabled")
        return

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        # Browsers reject credentialed responses for a wildcard origin
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=EXPOSED_HEADERS,
        max_age=settings.cors_max_age_seconds,
    )
