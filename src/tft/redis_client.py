"""Redis clients for progression broadcasts and the completion stream.

The API process holds one shared client, opened only when Redis is enabled;
without it the ledger skips broadcasts. The stream worker opens its own
client through :func:`connect`.
"""

import redis.asyncio as redis

from tft.config import Settings

_client: redis.Redis | None = None


def connect(url: str, *, max_connections: int) -> redis.Redis:
    """Client with string responses (stream payloads are parsed as JSON text)."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
    )


async def init_redis(settings: Settings) -> redis.Redis | None:
    """Open the shared client if Redis is enabled; returns it, or None."""
    global _client  # noqa: PLW0603
    if not settings.redis_enabled:
        _client = None
        return None
    _client = connect(settings.redis_url, max_connections=settings.redis_max_connections)
    return _client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client is not None:
        await _client.aclose()
        _client = None


def get_redis_or_none() -> redis.Redis | None:
    """The shared client, or None when Redis is disabled or not yet initialized."""
    return _client
