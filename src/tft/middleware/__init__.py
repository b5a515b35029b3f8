"""Middleware registration."""

from fastapi import FastAPI

from tft.config import Settings
from tft.middleware.cors import setup_cors
from tft.middleware.error_handler import setup_error_handlers
from tft.middleware.logging import setup_logging
from tft.middleware.request_id import RequestContextMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Register all middleware in the correct order.

    Starlette runs middleware in reverse-add order (last added = outermost).
    CORS is outermost so error responses carry CORS headers too.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    app.add_middleware(RequestContextMiddleware)
    setup_cors(app, settings)
