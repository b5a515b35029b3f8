"""Concurrent completions: no lost updates, no duplicate awards."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from tft.db.models import BadgeAward, BadgeDefinition
from tft.progression.ledger import AccountLocks, ProgressionLedger

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class TestSameAccount:
    @pytest.mark.asyncio
    async def test_fifty_concurrent_completions(self, session_factory, make_account):
        account_id = await make_account()
        ledger = ProgressionLedger(session_factory, timeout_seconds=60)

        results = await asyncio.gather(*[
            ledger.apply_completion(account_id, 10, {"units_completed": 1}, now=T0)
            for _ in range(50)
        ])

        snapshot = await ledger.get_snapshot(account_id)
        assert snapshot.points == 500
        assert snapshot.units_completed == 50
        assert snapshot.level == 3
        assert sorted(r.new_points for r in results) == list(range(10, 510, 10))

        earned = [b.slug for r in results for b in r.newly_earned_badges]
        assert earned.count("first_step") == 1

        async with session_factory() as db:
            rows = await db.execute(
                select(BadgeDefinition.slug, func.count(BadgeAward.id))
                .join(BadgeAward, BadgeAward.badge_id == BadgeDefinition.id)
                .where(BadgeAward.account_id == account_id)
                .group_by(BadgeDefinition.slug)
            )
            counts = dict(rows.all())
        assert counts == {"first_step": 1}

    @pytest.mark.asyncio
    async def test_concurrent_threshold_crossing_awards_once(self, session_factory, make_account):
        """Every call crosses 1000 points on its own; only one may award the badge."""
        account_id = await make_account()
        ledger = ProgressionLedger(session_factory, timeout_seconds=60)

        results = await asyncio.gather(*[
            ledger.apply_completion(account_id, 1000, now=T0) for _ in range(10)
        ])

        earned = [b.slug for r in results for b in r.newly_earned_badges]
        assert earned.count("points_master") == 1
        assert (await ledger.get_snapshot(account_id)).points == 10_000

    @pytest.mark.asyncio
    async def test_two_ledgers_share_one_record(self, session_factory, make_account):
        """Two ledgers (no shared lock) still lose no updates via the version check."""
        account_id = await make_account()
        first = ProgressionLedger(session_factory, max_retries=50, timeout_seconds=60)
        second = ProgressionLedger(session_factory, max_retries=50, timeout_seconds=60)

        await asyncio.gather(*[
            (first if i % 2 else second).apply_completion(account_id, 7, now=T0)
            for i in range(20)
        ])

        assert (await first.get_snapshot(account_id)).points == 140


class TestDifferentAccounts:
    @pytest.mark.asyncio
    async def test_accounts_progress_independently(self, session_factory, make_account):
        accounts = [await make_account() for _ in range(8)]
        ledger = ProgressionLedger(session_factory, timeout_seconds=60)

        await asyncio.gather(*[
            ledger.apply_completion(account_id, 25 * (n + 1), now=T0)
            for n, account_id in enumerate(accounts)
            for _ in range(4)
        ])

        for n, account_id in enumerate(accounts):
            assert (await ledger.get_snapshot(account_id)).points == 100 * (n + 1)
        assert len(ledger._locks) == 0


class TestAccountLocks:
    @pytest.mark.asyncio
    async def test_entries_are_released(self):
        locks = AccountLocks()
        async with locks.hold("a"):
            async with locks.hold("b"):
                assert len(locks) == 2
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_same_account_is_serialized(self):
        locks = AccountLocks()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.hold("a"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*[worker() for _ in range(5)])
        assert peak == 1
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_accounts_do_not_block(self):
        locks = AccountLocks()
        entered = asyncio.Event()

        async def other():
            async with locks.hold("b"):
                entered.set()

        async with locks.hold("a"):
            await asyncio.wait_for(other(), timeout=1)
        assert entered.is_set()
