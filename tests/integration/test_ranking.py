"""Ranking view tests: ordering, tie-breaks, paging, staleness."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from tft.leaderboard.ranking import RankingView, RankPosition
from tft.progression.errors import AccountNotFound, InvalidInput
from tft.progression.ledger import ProgressionLedger

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest_asyncio.fixture
async def abc(session_factory, make_account):
    """A (500, created first), B (500, created second), C (700, created last)."""
    ledger = ProgressionLedger(session_factory)
    a = await make_account("acct-a", "A", created_at=T0 - timedelta(days=3))
    b = await make_account("acct-b", "B", created_at=T0 - timedelta(days=2))
    c = await make_account("acct-c", "C", created_at=T0 - timedelta(days=1))
    await ledger.apply_completion(a, 500, now=T0)
    await ledger.apply_completion(b, 500, now=T0)
    await ledger.apply_completion(c, 700, now=T0)
    return ledger, a, b, c


class TestOrdering:
    @pytest.mark.asyncio
    async def test_points_then_creation_order(self, session_factory, abc):
        _, a, b, c = abc
        view = RankingView(session_factory)

        page = await view.get_page(0, 10)

        assert [e.account_id for e in page.entries] == [c, a, b]
        assert [e.rank for e in page.entries] == [1, 2, 3]
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_get_rank_agrees_with_page(self, session_factory, abc):
        _, a, b, c = abc
        view = RankingView(session_factory)

        assert (await view.get_rank(c)).rank == 1
        assert (await view.get_rank(a)).rank == 2
        assert (await view.get_rank(b)).rank == 3

    @pytest.mark.asyncio
    async def test_rank_position_details(self, session_factory, abc):
        _, a, _, _ = abc
        view = RankingView(session_factory)

        position = await view.get_rank(a)

        assert position.total_points == 500
        assert position.total == 3
        assert position.percentile == pytest.approx(33.33)

    @pytest.mark.asyncio
    async def test_accounts_without_points_are_ranked_last(self, session_factory, make_account, abc):
        newcomer = await make_account("acct-new", created_at=T0 - timedelta(days=10))
        view = RankingView(session_factory)

        position = await view.get_rank(newcomer)

        assert position.rank == 4
        assert position.total_points == 0

    @pytest.mark.asyncio
    async def test_ranking_follows_new_points(self, session_factory, abc):
        ledger, a, b, c = abc
        view = RankingView(session_factory)

        await ledger.apply_completion(b, 300, now=T0)

        page = await view.get_page(0, 3)
        assert [e.account_id for e in page.entries] == [b, c, a]
        assert (await view.get_rank(b)).rank == 1

    @pytest.mark.asyncio
    async def test_entries_carry_level_and_streak(self, session_factory, abc):
        _, _, _, c = abc
        view = RankingView(session_factory)

        top = (await view.get_page(0, 1)).entries[0]

        assert top.account_id == c
        assert top.display_name == "C"
        assert top.total_points == 700
        assert top.level == 3
        assert top.streak == 1


class TestPaging:
    @pytest.mark.asyncio
    async def test_pages_partition_the_order(self, session_factory, abc):
        _, a, b, c = abc
        view = RankingView(session_factory)

        first = await view.get_page(0, 2)
        second = await view.get_page(2, 2)

        assert [e.account_id for e in first.entries] == [c, a]
        assert [e.account_id for e in second.entries] == [b]
        assert [e.rank for e in second.entries] == [3]

    @pytest.mark.asyncio
    async def test_page_past_the_end_is_empty(self, session_factory, abc):
        view = RankingView(session_factory)

        page = await view.get_page(10, 5)

        assert page.entries == []
        assert page.total == 3

    @pytest.mark.asyncio
    async def test_empty_ranking(self, session_factory):
        page = await RankingView(session_factory).get_page(0, 10)
        assert page.entries == []
        assert page.total == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset,limit", [(-1, 10), (0, 0), (0, 101)])
    async def test_bad_paging_rejected(self, session_factory, offset, limit):
        with pytest.raises(InvalidInput):
            await RankingView(session_factory).get_page(offset, limit)

    @pytest.mark.asyncio
    async def test_unknown_account(self, session_factory, abc):
        with pytest.raises(AccountNotFound):
            await RankingView(session_factory).get_rank("ghost")


class TestStaleness:
    @pytest.mark.asyncio
    async def test_fresh_reads_by_default(self, session_factory, abc):
        ledger, a, _, _ = abc
        view = RankingView(session_factory)

        assert (await view.get_rank(a)).rank == 2
        await ledger.apply_completion(a, 1000, now=T0)
        assert (await view.get_rank(a)).rank == 1

    @pytest.mark.asyncio
    async def test_cached_page_served_within_bound(self, session_factory, abc):
        ledger, a, _, c = abc
        clock = FakeClock()
        view = RankingView(session_factory, max_staleness_seconds=30, clock=clock)

        before = await view.get_page(0, 3)
        await ledger.apply_completion(a, 1000, now=T0)

        clock.now += 10
        assert (await view.get_page(0, 3)) is before

        clock.now += 30
        after = await view.get_page(0, 3)
        assert after.entries[0].account_id == a

    @pytest.mark.asyncio
    async def test_per_call_bound_overrides_default(self, session_factory, abc):
        ledger, a, _, _ = abc
        clock = FakeClock()
        view = RankingView(session_factory, max_staleness_seconds=30, clock=clock)

        await view.get_rank(a)
        await ledger.apply_completion(a, 1000, now=T0)

        assert (await view.get_rank(a)).rank == 2
        assert (await view.get_rank(a, max_staleness=0)).rank == 1

    @pytest.mark.asyncio
    async def test_negative_staleness_rejected(self, session_factory, abc):
        _, a, _, _ = abc
        with pytest.raises(InvalidInput):
            await RankingView(session_factory).get_rank(a, max_staleness=-1)

    @pytest.mark.asyncio
    async def test_rank_never_regresses_to_fewer_points(self, session_factory, abc, monkeypatch):
        _, a, _, _ = abc
        view = RankingView(session_factory)
        shown = await view.get_rank(a)

        async def lagging_read(account_id):
            return RankPosition(account_id=account_id, rank=3, total_points=100, total=3)

        monkeypatch.setattr(view, "_fetch_rank", lagging_read)

        assert await view.get_rank(a) == shown

    @pytest.mark.asyncio
    async def test_cached_page_never_shows_fewer_points_than_rank(self, session_factory, abc):
        ledger, a, _, _ = abc
        clock = FakeClock()
        view = RankingView(session_factory, clock=clock)

        await view.get_page(0, 3, max_staleness=60)
        await ledger.apply_completion(a, 100, now=T0)
        shown = await view.get_rank(a)
        assert shown.total_points == 600

        clock.now += 1
        page = await view.get_page(0, 3, max_staleness=60)

        entry = next(e for e in page.entries if e.account_id == a)
        assert entry.total_points == 600

    @pytest.mark.asyncio
    async def test_cached_rank_never_shows_fewer_points_than_page(self, session_factory, abc):
        ledger, a, _, _ = abc
        clock = FakeClock()
        view = RankingView(session_factory, clock=clock)

        await view.get_rank(a, max_staleness=60)
        await ledger.apply_completion(a, 1000, now=T0)
        await view.get_page(0, 3)

        clock.now += 1
        position = await view.get_rank(a, max_staleness=60)

        assert position.total_points == 1500
        assert position.rank == 1


class TestCacheBounds:
    @pytest.mark.asyncio
    async def test_fresh_reads_are_not_cached(self, session_factory, abc):
        _, a, b, c = abc
        view = RankingView(session_factory)

        for account_id in (a, b, c):
            await view.get_rank(account_id)
        await view.get_page(0, 2)
        await view.get_page(2, 2)

        assert len(view._ranks) == 0
        assert len(view._pages) == 0

    @pytest.mark.asyncio
    async def test_expired_entries_are_evicted(self, session_factory, abc):
        _, a, b, _ = abc
        clock = FakeClock()
        view = RankingView(session_factory, max_staleness_seconds=30, clock=clock)

        await view.get_rank(a)
        await view.get_page(0, 1)
        clock.now += 31
        await view.get_rank(b)
        await view.get_page(1, 1)

        assert list(view._ranks) == [b]
        assert list(view._pages) == [(1, 1)]

    @pytest.mark.asyncio
    async def test_entries_are_capped(self, session_factory, make_account):
        accounts = [await make_account(f"acct-{n}") for n in range(5)]
        view = RankingView(session_factory, max_staleness_seconds=30, cache_max_entries=2)

        for account_id in accounts:
            await view.get_rank(account_id)
        for offset in range(4):
            await view.get_page(offset, 1)

        assert list(view._ranks) == accounts[-2:]
        assert list(view._pages) == [(2, 1), (3, 1)]
        assert len(view._shown) == 2


class TestConsistencyUnderWrites:
    @pytest.mark.asyncio
    async def test_pages_stay_well_formed_during_writes(self, session_factory, make_account):
        accounts = [
            await make_account(f"acct-{n}", created_at=T0 - timedelta(hours=n)) for n in range(6)
        ]
        ledger = ProgressionLedger(session_factory, timeout_seconds=60)
        view = RankingView(session_factory)

        async def writes():
            for round_ in range(5):
                await asyncio.gather(*[
                    ledger.apply_completion(account_id, 10 * (n + round_), now=T0)
                    for n, account_id in enumerate(accounts)
                ])

        async def reads():
            pages = []
            for _ in range(10):
                pages.append(await view.get_page(0, 6))
                await asyncio.sleep(0)
            return pages

        _, pages = await asyncio.gather(writes(), reads())

        for page in pages:
            assert [e.rank for e in page.entries] == list(range(1, len(page.entries) + 1))
            assert len({e.account_id for e in page.entries}) == len(page.entries)
            points = [e.total_points for e in page.entries]
            assert points == sorted(points, reverse=True)
