"""Standalone runner for the completion stream consumer.

Reads completion events from Redis Streams and applies them through the
progression ledger.

Usage: python -m tft.workers.completion_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from tft.config import get_settings
from tft.database import close_db, get_session_factory, init_db
from tft.middleware.logging import setup_logging
from tft.progression.ledger import ProgressionLedger
from tft.progression.worker import consume, ensure_consumer_group
from tft.redis_client import connect

logger = logging.getLogger(__name__)

_running = True


def is_running() -> bool:
    return _running


async def main() -> None:
    """Run the completion stream consumer until SIGINT/SIGTERM."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = connect(settings.redis_url, max_connections=20)
    ledger = ProgressionLedger(
        get_session_factory(),
        redis_client,
        max_retries=settings.ledger_max_retries,
        timeout_seconds=settings.ledger_timeout_seconds,
    )

    await ensure_consumer_group(
        redis_client, settings.completion_stream, settings.completion_consumer_group
    )

    loop = asyncio.get_running_loop()

    def _stop() -> None:
        global _running  # noqa: PLW0603
        _running = False

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop)

    logger.info(
        "Starting completion consumer (stream=%s, consumer=%s)",
        settings.completion_stream,
        settings.completion_consumer_name,
    )

    try:
        await consume(
            redis_client,
            ledger,
            stream=settings.completion_stream,
            group=settings.completion_consumer_group,
            consumer=settings.completion_consumer_name,
            running=is_running,
        )
    finally:
        await redis_client.aclose()
        await close_db()
        logger.info("Completion consumer stopped")


if __name__ == "__main__":
    asyncio.run(main())
