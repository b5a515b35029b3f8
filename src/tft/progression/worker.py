"""Completion stream consumer: applies completion events read from Redis Streams.

Each stream message carries a JSON ``data`` field::

    {"account_id": "...", "points": 150, "stat_deltas": {...},
     "event_id": "...", "source": "unit", "occurred_at": "2026-01-01T09:00:00Z"}

The stream message id doubles as the event id when the producer sends none,
so a redelivered message is never applied twice. Permanent failures are
acknowledged and dropped; transient ones stay pending and are retried.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

import redis.asyncio as aioredis

from tft.progression.errors import InvalidInput, ProgressionError
from tft.progression.ledger import ProgressionLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionMessage:
    account_id: str
    points: int
    event_id: str
    stat_deltas: dict[str, int] = field(default_factory=dict)
    source: str = "unit"
    occurred_at: datetime | None = None


def parse_completion_message(msg_id: str, raw: dict) -> CompletionMessage:
    """Decode one stream entry. Malformed entries raise InvalidInput."""
    data_str = raw.get("data")
    if data_str is None:
        raise InvalidInput(f"Message {msg_id} has no data field")
    try:
        data = json.loads(data_str)
    except json.JSONDecodeError as exc:
        raise InvalidInput(f"Message {msg_id} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidInput(f"Message {msg_id} must be a JSON object")

    account_id = data.get("account_id")
    if not isinstance(account_id, str) or not account_id:
        raise InvalidInput(f"Message {msg_id} has no account_id")

    points = data.get("points")
    if isinstance(points, bool) or not isinstance(points, int):
        raise InvalidInput(f"Message {msg_id} has invalid points: {points!r}")

    stat_deltas = data.get("stat_deltas") or {}
    if not isinstance(stat_deltas, dict):
        raise InvalidInput(f"Message {msg_id} has invalid stat_deltas")

    occurred_at = None
    if data.get("occurred_at"):
        try:
            occurred_at = datetime.fromisoformat(str(data["occurred_at"]).replace("Z", "+00:00"))
        except ValueError as exc:
            raise InvalidInput(f"Message {msg_id} has invalid occurred_at: {exc}") from exc

    return CompletionMessage(
        account_id=account_id,
        points=points,
        event_id=str(data.get("event_id") or msg_id),
        stat_deltas=stat_deltas,
        source=str(data.get("source") or "stream"),
        occurred_at=occurred_at,
    )


async def handle_completion_message(ledger: ProgressionLedger, msg_id: str, raw: dict) -> bool:
    """Apply one stream entry. Returns True when the entry should be acknowledged."""
    try:
        message = parse_completion_message(msg_id, raw)
        result = await ledger.apply_completion(
            message.account_id,
            message.points,
            message.stat_deltas,
            now=message.occurred_at,
            event_id=message.event_id,
            source=message.source,
        )
    except ProgressionError as exc:
        if exc.transient:
            logger.warning("Transient failure on %s, leaving pending: %s", msg_id, exc)
            return False
        logger.warning("Dropping completion %s (%s): %s", msg_id, exc.code, exc)
        return True

    if result.duplicate:
        logger.info("Completion %s already applied", msg_id)
    return True


async def ensure_consumer_group(redis_client: aioredis.Redis, stream: str, group: str) -> None:
    """Create the consumer group (and the stream) if missing."""
    try:
        await redis_client.xgroup_create(stream, group, id="0", mkstream=True)
        logger.info("Created consumer group %s for %s", group, stream)
    except aioredis.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise


async def consume(
    redis_client: aioredis.Redis,
    ledger: ProgressionLedger,
    *,
    stream: str,
    group: str,
    consumer: str,
    running: Callable[[], bool] = lambda: True,
    block_ms: int = 5000,
) -> None:
    """Main consumer loop. Re-reads this consumer's pending entries after a transient failure."""
    read_pending = True

    while running():
        start_id = "0" if read_pending else ">"
        try:
            events = await redis_client.xreadgroup(
                groupname=group,
                consumername=consumer,
                streams={stream: start_id},
                count=100,
                block=block_ms,
            )
        except aioredis.ResponseError as e:
            logger.error("XREADGROUP error: %s", e)
            await asyncio.sleep(1)
            continue

        read_pending = False
        if not events:
            continue

        for _stream_name, messages in events:
            for msg_id, raw_data in messages:
                if await handle_completion_message(ledger, msg_id, raw_data):
                    await redis_client.xack(stream, group, msg_id)
                else:
                    read_pending = True

        if read_pending:
            await asyncio.sleep(1)
