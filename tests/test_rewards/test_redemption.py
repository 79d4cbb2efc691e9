"""
Tests for atomic redemption and the rewards summary.

Covers:
- 100 → redeem 50 → redeem 60 fails with the balance unchanged
- Concurrent redemptions each worth 60% of the balance: exactly one wins,
  within one engine and across two engines sharing only the store
- Per-user locks are released once idle
- Non-positive cost rejected
- Summary: monthly points, CO2, rank
"""

import asyncio
import gc
import uuid

import pytest

from ecobin.db import queries
from ecobin.exceptions import InsufficientPoints
from ecobin.rewards.engine import RewardsEngine


async def _fund(engine, session_factory, store, make_event, user, points: int):
    """Credit `points` through accrual using high-value items (5 points each)."""
    assert points % 5 == 0
    await store(make_event(user_id=user, hv=points // 5))
    await engine.run_accrual(session_factory)


async def _balance(session_factory, user) -> int:
    async with session_factory() as session:
        return (await queries.get_balance(session, user)).total_points


class TestRedeem:
    @pytest.mark.asyncio
    async def test_sequential_redemptions(self, cfg, session_factory, store, make_event):
        user = uuid.uuid4()
        engine = RewardsEngine(cfg)
        await _fund(engine, session_factory, store, make_event, user, 100)

        ok = await engine.redeem(session_factory, user, "Coffee voucher", 50)
        assert ok.status == "success"
        assert ok.balance == 50
        assert ok.ledger_entry_id is not None

        with pytest.raises(InsufficientPoints) as exc_info:
            await engine.redeem(session_factory, user, "Cinema ticket", 60)
        assert exc_info.value.balance == 50
        assert exc_info.value.requested == 60

        assert await _balance(session_factory, user) == 50
        async with session_factory() as session:
            history = await queries.get_ledger_history(session, user)
            total = await queries.sum_ledger_points(session, user)
        assert sorted(e.points_delta for e in history) == [-50, 100]
        assert total == 50

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_exactly_one_wins(
        self, cfg, session_factory, store, make_event
    ):
        user = uuid.uuid4()
        engine = RewardsEngine(cfg)
        await _fund(engine, session_factory, store, make_event, user, 100)

        results = await asyncio.gather(
            engine.redeem(session_factory, user, "Tote bag", 60),
            engine.redeem(session_factory, user, "Tote bag", 60),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientPoints)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert await _balance(session_factory, user) == 40

    @pytest.mark.asyncio
    async def test_concurrent_redemptions_across_engines(
        self, cfg, session_factory, store, make_event
    ):
        # Two engines share no in-process lock, like two API workers
        user = uuid.uuid4()
        first, second = RewardsEngine(cfg), RewardsEngine(cfg)
        await _fund(first, session_factory, store, make_event, user, 100)

        results = await asyncio.gather(
            first.redeem(session_factory, user, "Tote bag", 60),
            second.redeem(session_factory, user, "Tote bag", 60),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientPoints)]
        assert len(successes) == 1
        assert len(failures) == 1
        assert failures[0].balance == 40
        assert await _balance(session_factory, user) == 40
        async with session_factory() as session:
            assert await queries.sum_ledger_points(session, user) == 40
            history = await queries.get_ledger_history(session, user)
        assert sorted(e.points_delta for e in history) == [-60, 100]

    @pytest.mark.asyncio
    async def test_idle_user_locks_are_released(self, cfg, session_factory, store, make_event):
        user = uuid.uuid4()
        engine = RewardsEngine(cfg)
        await _fund(engine, session_factory, store, make_event, user, 50)

        await engine.redeem(session_factory, user, "Sticker pack", 10)
        await engine.redeem(session_factory, user, "Sticker pack", 10)
        gc.collect()

        assert user not in engine._user_locks
        assert len(engine._user_locks) == 0

    @pytest.mark.asyncio
    async def test_unknown_user_has_nothing_to_spend(self, cfg, session_factory):
        with pytest.raises(InsufficientPoints) as exc_info:
            await RewardsEngine(cfg).redeem(session_factory, uuid.uuid4(), "Anything", 1)
        assert exc_info.value.balance == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cost", [0, -10])
    async def test_non_positive_cost_rejected(self, cfg, session_factory, cost):
        with pytest.raises(ValueError):
            await RewardsEngine(cfg).redeem(session_factory, uuid.uuid4(), "Free", cost)

    @pytest.mark.asyncio
    async def test_exact_balance_can_be_spent(self, cfg, session_factory, store, make_event):
        user = uuid.uuid4()
        engine = RewardsEngine(cfg)
        await _fund(engine, session_factory, store, make_event, user, 25)

        result = await engine.redeem(session_factory, user, "Sticker pack", 25)
        assert result.balance == 0


class TestSummary:
    @pytest.mark.asyncio
    async def test_summary_after_earning_and_spending(
        self, cfg, session_factory, store, make_event
    ):
        user = uuid.uuid4()
        engine = RewardsEngine(cfg)
        await _fund(engine, session_factory, store, make_event, user, 250)
        await engine.redeem(session_factory, user, "Water bottle", 100)

        async with session_factory() as session:
            summary = await engine.get_summary(session, user)

        assert summary.total_points == 150
        assert summary.lifetime_earned == 250
        assert summary.lifetime_redeemed == 100
        assert summary.monthly_points == 250
        assert summary.total_events == 1
        assert summary.co2_saved_kg == pytest.approx(25.0)
        assert summary.rank == "Recycler"
        assert summary.next_rank == "Eco Warrior"
        assert summary.next_rank_points == 50

    @pytest.mark.asyncio
    async def test_summary_for_new_user(self, cfg, session_factory):
        async with session_factory() as session:
            summary = await RewardsEngine(cfg).get_summary(session, uuid.uuid4())
        assert summary.total_points == 0
        assert summary.rank == "Seedling"
        assert summary.next_rank_points == 100
