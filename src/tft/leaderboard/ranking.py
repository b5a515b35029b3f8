"""Ranking view: global leaderboard over progression records.

Accounts are ordered by total points (desc), then account creation time
(asc), then account id, so the order is total. Pages and single-account
ranks use the same ``row_number()`` window in one SQL statement each, which
keeps them consistent with each other and with a single committed state.

Results may be served from a short-lived in-process cache when the caller
tolerates staleness.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tft.db.models import Account, AccountProgress
from tft.progression.errors import AccountNotFound, InvalidInput, store_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingEntry:
    account_id: str
    display_name: str | None
    total_points: int
    level: int
    streak: int
    rank: int


@dataclass(frozen=True)
class RankingPage:
    entries: list[RankingEntry]
    total: int
    offset: int
    limit: int


@dataclass(frozen=True)
class RankPosition:
    account_id: str
    rank: int
    total_points: int
    total: int

    @property
    def percentile(self) -> float:
        if self.total <= 0:
            return 0.0
        return round(100 - (self.rank / self.total * 100), 2)


def _ranked_accounts():
    """Every account with its position under the ranking order."""
    order = (
        AccountProgress.total_points.desc(),
        Account.created_at.asc(),
        Account.id.asc(),
    )
    return (
        select(
            AccountProgress.account_id,
            Account.display_name,
            AccountProgress.total_points,
            AccountProgress.level,
            AccountProgress.current_streak,
            func.row_number().over(order_by=order).label("rank"),
            func.count().over().label("total"),
        )
        .join(Account, Account.id == AccountProgress.account_id)
        .subquery("ranked")
    )


class RankingView:
    """Read-only ranking queries with an optional staleness cache.

    Cached pages and positions are kept only for calls that tolerate
    staleness, expire after that window and are capped at
    ``cache_max_entries``. Separately, the highest-points position shown for
    each account (from a page or a rank lookup) is remembered so a later
    result never shows that account fewer points.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        max_staleness_seconds: float = 0.0,
        page_max: int = 100,
        cache_max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self.max_staleness_seconds = max_staleness_seconds
        self.page_max = page_max
        self.cache_max_entries = cache_max_entries
        self._clock = clock
        self._pages: OrderedDict[tuple[int, int], tuple[float, RankingPage]] = OrderedDict()
        self._ranks: OrderedDict[str, tuple[float, RankPosition]] = OrderedDict()
        self._shown: OrderedDict[str, RankPosition] = OrderedDict()

    async def get_page(
        self,
        offset: int = 0,
        limit: int = 50,
        max_staleness: float | None = None,
    ) -> RankingPage:
        """Entries ranked ``offset + 1`` through ``offset + limit``."""
        if offset < 0:
            raise InvalidInput(f"offset must be >= 0, got {offset}")
        if not 1 <= limit <= self.page_max:
            raise InvalidInput(f"limit must be between 1 and {self.page_max}, got {limit}")
        staleness = self._staleness(max_staleness)

        key = (offset, limit)
        cached = self._cached(self._pages, key, staleness)
        if cached is not None and not any(
            self._below_shown(e.account_id, e.total_points) for e in cached.entries
        ):
            return cached

        page = await self._fetch_page(offset, limit)
        for entry in page.entries:
            self._remember(RankPosition(
                account_id=entry.account_id,
                rank=entry.rank,
                total_points=entry.total_points,
                total=page.total,
            ))
        if staleness > 0:
            self._store(self._pages, key, page, staleness)
        return page

    async def get_rank(self, account_id: str, max_staleness: float | None = None) -> RankPosition:
        """1-based position of one account, with its points and the ranked total."""
        staleness = self._staleness(max_staleness)

        cached = self._cached(self._ranks, account_id, staleness)
        if cached is not None and not self._below_shown(account_id, cached.total_points):
            return cached

        position = await self._fetch_rank(account_id)
        shown = self._shown.get(account_id)
        if shown is not None and position.total_points < shown.total_points:
            # Never show a rank computed from fewer points than already shown
            logger.warning(
                "Rank for %s regressed from %d to %d points; keeping previous position",
                account_id,
                shown.total_points,
                position.total_points,
            )
            position = shown

        self._remember(position)
        if staleness > 0:
            self._store(self._ranks, account_id, position, staleness)
        return position

    def invalidate(self) -> None:
        """Drop cached pages and positions. Shown points are kept."""
        self._pages.clear()
        self._ranks.clear()

    def _staleness(self, max_staleness: float | None) -> float:
        if max_staleness is None:
            return self.max_staleness_seconds
        if max_staleness < 0:
            raise InvalidInput(f"max_staleness must be >= 0, got {max_staleness}")
        return max_staleness

    def _cached(self, cache: OrderedDict, key, staleness: float):
        entry = cache.get(key)
        if entry is None or self._clock() - entry[0] >= staleness:
            return None
        return entry[1]

    def _store(self, cache: OrderedDict, key, value, window: float) -> None:
        """Insert ``value`` and evict entries older than ``window`` or over the cap."""
        now = self._clock()
        cache[key] = (now, value)
        cache.move_to_end(key)

        cutoff = now - window
        while cache:
            stored_at = next(iter(cache.values()))[0]
            if stored_at > cutoff:
                break
            cache.popitem(last=False)

        while len(cache) > self.cache_max_entries:
            cache.popitem(last=False)

    def _below_shown(self, account_id: str, total_points: int) -> bool:
        shown = self._shown.get(account_id)
        return shown is not None and total_points < shown.total_points

    def _remember(self, position: RankPosition) -> None:
        """Record ``position`` as shown unless a higher-points one already was."""
        if self._below_shown(position.account_id, position.total_points):
            return
        self._shown[position.account_id] = position
        self._shown.move_to_end(position.account_id)
        while len(self._shown) > self.cache_max_entries:
            self._shown.popitem(last=False)

    async def _fetch_page(self, offset: int, limit: int) -> RankingPage:
        ranked = _ranked_accounts()
        with store_errors():
            async with self._session_factory() as db:
                result = await db.execute(
                    select(ranked).order_by(ranked.c.rank).offset(offset).limit(limit)
                )
                rows = result.all()
                if rows:
                    total = rows[0].total
                elif offset == 0:
                    total = 0
                else:
                    total = (await db.execute(select(func.count()).select_from(AccountProgress))).scalar_one()

        entries = [
            RankingEntry(
                account_id=row.account_id,
                display_name=row.display_name,
                total_points=row.total_points,
                level=row.level,
                streak=row.current_streak,
                rank=row.rank,
            )
            for row in rows
        ]
        return RankingPage(entries=entries, total=total, offset=offset, limit=limit)

    async def _fetch_rank(self, account_id: str) -> RankPosition:
        ranked = _ranked_accounts()
        with store_errors():
            async with self._session_factory() as db:
                result = await db.execute(select(ranked).where(ranked.c.account_id == account_id))
                row = result.one_or_none()

        if row is None:
            raise AccountNotFound(account_id)
        return RankPosition(
            account_id=row.account_id,
            rank=row.rank,
            total_points=row.total_points,
            total=row.total,
        )
