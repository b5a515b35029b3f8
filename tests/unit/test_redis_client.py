"""Shared Redis client lifecycle."""

import pytest

from tft.config import Settings
from tft.redis_client import close_redis, connect, get_redis_or_none, init_redis


@pytest.mark.asyncio
async def test_disabled_redis_leaves_no_client() -> None:
    settings = Settings(redis_enabled=False)

    assert await init_redis(settings) is None
    assert get_redis_or_none() is None


@pytest.mark.asyncio
async def test_enabled_redis_opens_shared_client() -> None:
    settings = Settings(redis_enabled=True, redis_url="redis://localhost:6379/5", redis_max_connections=7)

    client = await init_redis(settings)
    try:
        assert client is not None
        assert get_redis_or_none() is client
        assert client.connection_pool.max_connections == 7
    finally:
        await close_redis()

    assert get_redis_or_none() is None


@pytest.mark.asyncio
async def test_connect_decodes_responses() -> None:
    client = connect("redis://localhost:6379/5", max_connections=3)
    try:
        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["decode_responses"] is True
        assert kwargs["encoding"] == "utf-8"
    finally:
        await client.aclose()
