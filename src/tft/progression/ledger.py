"""Progression ledger: the only writer of account progression records.

Applying a completion is a read-modify-write of one ``account_progress`` row:
points, level, streak and stat counters change together or not at all.

Writes for the same account are serialized in-process by a per-account lock,
and across processes by the row's ``version_id`` (every UPDATE is conditional
on the version that was read). A lost race raises ``StaleDataError`` (or a
lock or serialization error from the driver) and the whole operation is
retried from a fresh read, up to ``max_retries`` times.

Badge awards happen after the progression commit, one conditional insert per
badge. If awarding fails the progression write stands; the badges are picked
up by the next completion for the account.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from tft.db.models import AccountProgress, BadgeDefinition, CompletionEvent
from tft.progression.badge_service import award_badge, earned_badge_slugs, load_catalog
from tft.progression.badges import ProgressStats, evaluate_newly_earned
from tft.progression.errors import (
    AccountNotFound,
    Contention,
    InvalidInput,
    ProgressionTimeout,
    is_write_conflict,
    store_errors,
)
from tft.progression.levels import compute_level, level_of
from tft.progression.streaks import ensure_utc, resolve_streak

logger = logging.getLogger(__name__)

# Stat counters a completion may increment
STAT_FIELDS = ("units_completed", "perfect_scores", "camps_completed", "ai_sessions")


@dataclass(frozen=True)
class ProgressionResult:
    """Outcome of one applied (or deduplicated) completion."""

    account_id: str
    new_points: int
    new_level: int
    leveled_up: bool
    new_streak: int
    streak_changed: bool
    streak_broken: bool = False
    newly_earned_badges: list[BadgeDefinition] = field(default_factory=list)
    duplicate: bool = False


@dataclass(frozen=True)
class ProgressSnapshot:
    """Read-only copy of a progression record."""

    account_id: str
    points: int
    level: int
    streak: int
    longest_streak: int
    last_activity: datetime | None
    units_completed: int
    perfect_scores: int
    camps_completed: int
    ai_sessions: int

    @classmethod
    def from_record(cls, progress: AccountProgress) -> ProgressSnapshot:
        return cls(
            account_id=progress.account_id,
            points=progress.total_points,
            level=progress.level,
            streak=progress.current_streak,
            longest_streak=progress.longest_streak,
            last_activity=ensure_utc(progress.last_activity) if progress.last_activity else None,
            units_completed=progress.units_completed,
            perfect_scores=progress.perfect_scores,
            camps_completed=progress.camps_completed,
            ai_sessions=progress.ai_sessions,
        )

    def stats(self) -> ProgressStats:
        return ProgressStats(
            points=self.points,
            level=self.level,
            streak=self.streak,
            units_completed=self.units_completed,
            perfect_scores=self.perfect_scores,
            camps_completed=self.camps_completed,
            ai_sessions=self.ai_sessions,
        )

    def level_info(self) -> dict:
        return compute_level(self.points)


@dataclass(frozen=True)
class _Committed:
    snapshot: ProgressSnapshot
    old_level: int
    streak_changed: bool = False
    streak_broken: bool = False
    duplicate: bool = False


class AccountLocks:
    """Per-account asyncio locks.

    An entry exists only while some task holds or waits on it, so the
    registry does not grow with the number of accounts ever seen.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, account_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = self._locks[account_id] = asyncio.Lock()
        self._waiters[account_id] = self._waiters.get(account_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[account_id] -= 1
            if self._waiters[account_id] == 0:
                del self._waiters[account_id]
                del self._locks[account_id]

    def __len__(self) -> int:
        return len(self._locks)


def validate_points(points: object) -> int:
    if isinstance(points, bool) or not isinstance(points, int):
        raise InvalidInput(f"points_awarded must be an integer, got {points!r}")
    if points < 0:
        raise InvalidInput(f"points_awarded must be non-negative, got {points}")
    return points


def normalize_stat_deltas(stat_deltas: Mapping[str, int] | None) -> dict[str, int]:
    """Validate stat counter increments. Unknown names and negative values are rejected."""
    if not stat_deltas:
        return {}
    if not isinstance(stat_deltas, Mapping):
        raise InvalidInput("stat_deltas must be a mapping of counter name to increment")

    unknown = sorted(set(stat_deltas) - set(STAT_FIELDS))
    if unknown:
        raise InvalidInput(f"Unknown stat counters: {', '.join(unknown)}")

    deltas: dict[str, int] = {}
    for name, value in stat_deltas.items():
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidInput(f"Stat delta for {name} must be a non-negative integer, got {value!r}")
        if value:
            deltas[name] = value
    return deltas


class ProgressionLedger:
    """Applies completion events to progression records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis: object | None = None,
        *,
        max_retries: int = 5,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._redis = redis
        self._locks = AccountLocks()
        self.max_retries = max_retries
        self.timeout_seconds = timeout_seconds

    async def apply_completion(
        self,
        account_id: str,
        points_awarded: int,
        stat_deltas: Mapping[str, int] | None = None,
        now: datetime | None = None,
        *,
        event_id: str | None = None,
        source: str = "unit",
    ) -> ProgressionResult:
        """Apply one completion event to the account's progression record.

        1. Validate input (nothing is written on rejection)
        2. Under the account lock, read the record, add points, recompute
           level and streak, bump stat counters, log the event, commit
        3. Award newly satisfied badges (outside the lock)
        4. Publish level-up / badge / streak events

        A repeated ``event_id`` is a no-op and returns the current state with
        ``duplicate=True``. Raises AccountNotFound, InvalidInput, Contention,
        ProgressionTimeout or StoreUnavailable.
        """
        validate_points(points_awarded)
        deltas = normalize_stat_deltas(stat_deltas)
        now = ensure_utc(now).astimezone(timezone.utc) if now is not None else datetime.now(timezone.utc)

        try:
            committed = await asyncio.wait_for(
                self._commit_with_retries(account_id, points_awarded, deltas, now, event_id, source),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Completion for %s timed out after %.2fs", account_id, self.timeout_seconds
            )
            raise ProgressionTimeout(
                f"Completion for account {account_id} did not finish within {self.timeout_seconds}s"
            ) from None

        snapshot = committed.snapshot
        if committed.duplicate:
            logger.info("Duplicate completion %s for %s ignored", event_id, account_id)
            return ProgressionResult(
                account_id=account_id,
                new_points=snapshot.points,
                new_level=snapshot.level,
                leveled_up=False,
                new_streak=snapshot.streak,
                streak_changed=False,
                duplicate=True,
            )

        badges = await self._award_badges(account_id, snapshot.stats(), now)

        result = ProgressionResult(
            account_id=account_id,
            new_points=snapshot.points,
            new_level=snapshot.level,
            leveled_up=snapshot.level > committed.old_level,
            new_streak=snapshot.streak,
            streak_changed=committed.streak_changed,
            streak_broken=committed.streak_broken,
            newly_earned_badges=badges,
        )
        await self._publish_events(result, committed.old_level)

        logger.info(
            "Applied %d points to %s: total=%d level=%d streak=%d badges=%s",
            points_awarded,
            account_id,
            result.new_points,
            result.new_level,
            result.new_streak,
            [b.slug for b in badges],
        )
        return result

    async def get_snapshot(self, account_id: str) -> ProgressSnapshot:
        """Current progression record for an account."""
        with store_errors():
            async with self._session_factory() as db:
                progress = await self._load_progress(db, account_id)
                return ProgressSnapshot.from_record(progress)

    # ------------------------------------------------------------------
    # Ledger write
    # ------------------------------------------------------------------

    async def _commit_with_retries(
        self,
        account_id: str,
        points: int,
        deltas: dict[str, int],
        now: datetime,
        event_id: str | None,
        source: str,
    ) -> _Committed:
        attempts = 0
        async with self._locks.hold(account_id):
            while True:
                attempts += 1
                with store_errors():
                    try:
                        return await self._commit_once(
                            account_id, points, deltas, now, event_id, source
                        )
                    except (StaleDataError, IntegrityError) as exc:
                        conflict: Exception = exc
                    except DBAPIError as exc:
                        if not is_write_conflict(exc):
                            raise
                        conflict = exc

                if attempts > self.max_retries:
                    logger.warning(
                        "Giving up on %s after %d conflicting attempts", account_id, attempts
                    )
                    raise Contention(account_id, attempts) from conflict
                logger.info(
                    "Write conflict for %s (attempt %d): %s",
                    account_id,
                    attempts,
                    type(conflict).__name__,
                )

    async def _commit_once(
        self,
        account_id: str,
        points: int,
        deltas: dict[str, int],
        now: datetime,
        event_id: str | None,
        source: str,
    ) -> _Committed:
        async with self._session_factory() as db:
            if event_id is not None:
                seen = await db.execute(
                    select(CompletionEvent.id).where(
                        CompletionEvent.account_id == account_id,
                        CompletionEvent.event_id == event_id,
                    )
                )
                if seen.scalar_one_or_none() is not None:
                    progress = await self._load_progress(db, account_id)
                    snapshot = ProgressSnapshot.from_record(progress)
                    return _Committed(snapshot, old_level=snapshot.level, duplicate=True)

            progress = await self._load_progress(db, account_id)
            old_level = progress.level
            streak = resolve_streak(progress.last_activity, progress.current_streak, now)

            progress.total_points += points
            progress.level = level_of(progress.total_points)
            progress.current_streak = streak.new_streak
            progress.longest_streak = max(progress.longest_streak, streak.new_streak)
            if progress.last_activity is None or now > ensure_utc(progress.last_activity):
                progress.last_activity = now
            for name, delta in deltas.items():
                setattr(progress, name, getattr(progress, name) + delta)
            progress.updated_at = now

            db.add(CompletionEvent(
                account_id=account_id,
                points=points,
                source=source,
                event_id=event_id,
                created_at=now,
            ))

            await db.commit()
            return _Committed(
                ProgressSnapshot.from_record(progress),
                old_level=old_level,
                streak_changed=streak.changed,
                streak_broken=streak.broken,
            )

    async def _load_progress(self, db: AsyncSession, account_id: str) -> AccountProgress:
        progress = await db.get(AccountProgress, account_id)
        if progress is None:
            raise AccountNotFound(account_id)
        return progress

    # ------------------------------------------------------------------
    # Badges and broadcasts
    # ------------------------------------------------------------------

    async def _award_badges(
        self,
        account_id: str,
        stats: ProgressStats,
        earned_at: datetime,
    ) -> list[BadgeDefinition]:
        """Award every newly satisfied badge. Each award commits on its own."""
        awarded: list[BadgeDefinition] = []
        try:
            async with self._session_factory() as db:
                catalog = await load_catalog(db)
                earned = await earned_badge_slugs(db, account_id)
                for badge in evaluate_newly_earned(stats, earned, catalog):
                    created = await award_badge(db, account_id, badge, earned_at)
                    await db.commit()
                    if created:
                        awarded.append(badge)
                        logger.info("Awarded badge %s to %s", badge.slug, account_id)
        except (SQLAlchemyError, OSError):
            logger.warning(
                "Badge evaluation failed for %s; retried on next completion",
                account_id,
                exc_info=True,
            )
        return awarded

    async def _publish_events(self, result: ProgressionResult, old_level: int) -> None:
        if self._redis is None:
            return

        if result.leveled_up:
            await self._publish("pubsub:level_up", {
                "account_id": result.account_id,
                "old_level": old_level,
                "new_level": result.new_level,
            })

        for badge in result.newly_earned_badges:
            await self._publish("pubsub:badge_earned", {
                "account_id": result.account_id,
                "badge_slug": badge.slug,
                "badge_name": badge.name,
                "tier": badge.tier,
            })

        if result.streak_changed:
            await self._publish("pubsub:streak_update", {
                "account_id": result.account_id,
                "event": "streak_reset" if result.streak_broken else "streak_extended",
                "current_streak": result.new_streak,
            })

    async def _publish(self, channel: str, payload: dict) -> None:
        try:
            await self._redis.publish(channel, json.dumps(payload))  # type: ignore[union-attr]
        except Exception:
            logger.warning("Failed to publish %s", channel, exc_info=True)
