"""
Rewards Engine — points ledger, balances and redemption.

DESIGN:
  1. The ledger is append-only. Accrual entries carry the event_id, which is
     unique, so an event can be credited at most once even across crashes,
     retries and concurrent passes.
  2. Each event is credited in its own transaction: ledger insert plus
     balance increment. A crash mid-pass leaves earlier events credited and
     the rest uncredited; the next pass picks them up.
  3. Redemption is a conditional decrement (total_points >= cost) and a
     negative ledger entry in one transaction, serialized per user in-process.
     The balance can never go negative.

reward_balances always equals the sum of the user's ledger entries.
"""

import asyncio
import uuid
import weakref
from dataclasses import dataclass
from typing import Optional, Sequence

import structlog
from sqlalchemy import and_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.config import Settings, settings
from ecobin.db import queries
from ecobin.db.engine import session_scope
from ecobin.db.models import BinEvent, RewardBalance, RewardLedgerEntry
from ecobin.exceptions import DataIntegrityViolation, InsufficientPoints
from ecobin.observability import POINTS_CREDITED, REDEMPTIONS
from ecobin.rewards.ranks import rank_for
from ecobin.rewards.scoring import score_event
from ecobin.schemas.rewards import RedemptionResult, RewardsSummary
from ecobin.timeutil import utcnow

logger = structlog.get_logger(__name__)

ACCRUAL_REASON = "Recycling deposit"


@dataclass
class AccrualResult:
    credited: int = 0
    points: int = 0
    rejected: int = 0

    def __str__(self) -> str:
        return f"credited={self.credited} points={self.points} rejected={self.rejected}"


class RewardsEngine:
    """Accrues, redeems and reports reward points."""

    def __init__(self, cfg: Optional[Settings] = None):
        self.cfg = cfg or settings
        self.table = self.cfg.scoring_table
        self._accrual_lock = asyncio.Lock()
        # Entries vanish once no redemption holds or waits on the lock
        self._user_locks: weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # ── Accrual ──────────────────────────────────────────────────────────

    async def run_accrual(
        self, session_factory: async_sessionmaker[AsyncSession]
    ) -> AccrualResult:
        """
        Credit every qualifying event that has no ledger entry yet.

        Concurrent passes in this process run one after another; across
        processes the unique event_id keeps crediting exactly-once.
        """
        result = AccrualResult()
        async with self._accrual_lock:
            rejected_ids: set[uuid.UUID] = set()
            while True:
                async with session_scope(session_factory) as session:
                    batch = await queries.get_uncredited_events(
                        session, self.table, self.cfg.rewards_batch_size
                    )
                pending = [e for e in batch if e.id not in rejected_ids]
                for event in pending:
                    try:
                        points = await self.credit_event(session_factory, event)
                    except DataIntegrityViolation as e:
                        logger.warning("reward_credit_rejected", **e.to_dict())
                        rejected_ids.add(event.id)
                        result.rejected += 1
                        continue
                    if points:
                        result.credited += 1
                        result.points += points
                # A short batch is the last one; a batch of only rejected
                # events would otherwise be refetched forever.
                if len(batch) < self.cfg.rewards_batch_size or not pending:
                    break

        logger.info(
            "rewards_accrued",
            credited=result.credited,
            points=result.points,
            rejected=result.rejected,
            scoring_version=self.table.version,
        )
        return result

    async def credit_event(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event: BinEvent,
    ) -> int:
        """
        Credit one event. Returns the points credited (0 if it does not qualify).

        Raises DataIntegrityViolation if the event was already credited
        (entity rewards_ledger) or the user's balance row was created by a
        concurrent writer (entity reward_balances). Either way nothing is
        written and the event stays uncredited.
        """
        points = score_event(event, self.table)
        if event.user_id is None or points <= 0:
            return 0

        async with session_scope(session_factory) as session:
            session.add(
                RewardLedgerEntry(
                    user_id=event.user_id,
                    event_id=event.id,
                    reason=ACCRUAL_REASON,
                    points_delta=points,
                    scoring_version=self.table.version,
                )
            )
            # The unique event_id rejects a second credit here, before
            # the balance is touched.
            try:
                await session.flush()
            except IntegrityError as e:
                raise DataIntegrityViolation(
                    f"Event already credited: {e.orig}",
                    entity="rewards_ledger",
                    entity_id=str(event.id),
                ) from e
            try:
                await self._add_points(session, event.user_id, points)
            except IntegrityError as e:
                raise DataIntegrityViolation(
                    f"Balance row for user created concurrently: {e.orig}",
                    entity="reward_balances",
                    entity_id=str(event.user_id),
                ) from e

        POINTS_CREDITED.inc(points)
        logger.debug(
            "reward_credited",
            user_id=str(event.user_id),
            event_id=str(event.id),
            points=points,
        )
        return points

    async def _add_points(
        self, session: AsyncSession, user_id: uuid.UUID, points: int
    ) -> None:
        result = await session.execute(
            update(RewardBalance)
            .where(RewardBalance.user_id == user_id)
            .values(
                total_points=RewardBalance.total_points + points,
                lifetime_earned=RewardBalance.lifetime_earned + points,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.add(
                RewardBalance(
                    user_id=user_id,
                    total_points=points,
                    lifetime_earned=points,
                    lifetime_redeemed=0,
                )
            )
            await session.flush()

    # ── Redemption ───────────────────────────────────────────────────────

    def _user_lock(self, user_id: uuid.UUID) -> asyncio.Lock:
        lock = self._user_locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[user_id] = lock
        return lock

    async def redeem(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        user_id: uuid.UUID,
        reward_name: str,
        points_cost: int,
    ) -> RedemptionResult:
        """
        Spend points on a reward.

        Raises InsufficientPoints (balance unchanged) when the cost exceeds
        the balance, and ValueError for a non-positive cost.
        """
        if points_cost <= 0:
            raise ValueError("points_cost must be positive")

        log = logger.bind(user_id=str(user_id), reward_name=reward_name, points_cost=points_cost)
        async with self._user_lock(user_id):
            try:
                async with session_scope(session_factory) as session:
                    updated = await session.execute(
                        update(RewardBalance)
                        .where(
                            and_(
                                RewardBalance.user_id == user_id,
                                RewardBalance.total_points >= points_cost,
                            )
                        )
                        .values(
                            total_points=RewardBalance.total_points - points_cost,
                            lifetime_redeemed=RewardBalance.lifetime_redeemed + points_cost,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if updated.rowcount == 0:
                        balance = await queries.get_balance(session, user_id)
                        raise InsufficientPoints(
                            str(user_id),
                            balance.total_points if balance else 0,
                            points_cost,
                        )

                    entry = RewardLedgerEntry(
                        user_id=user_id,
                        reason=f"Redeemed: {reward_name}",
                        points_delta=-points_cost,
                        reward_name=reward_name,
                    )
                    session.add(entry)
                    await session.flush()
                    balance = await queries.get_balance(session, user_id)
            except InsufficientPoints as e:
                REDEMPTIONS.labels(outcome="insufficient_points").inc()
                log.info("redemption_rejected", balance=e.balance)
                raise

        REDEMPTIONS.labels(outcome="success").inc()
        log.info("redemption_completed", balance=balance.total_points)
        return RedemptionResult(
            status="success",
            user_id=user_id,
            reward_name=reward_name,
            points_cost=points_cost,
            balance=balance.total_points,
            ledger_entry_id=entry.id,
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_summary(self, session: AsyncSession, user_id: uuid.UUID) -> RewardsSummary:
        balance = await queries.get_balance(session, user_id)
        total = balance.total_points if balance else 0
        earned = balance.lifetime_earned if balance else 0
        redeemed = balance.lifetime_redeemed if balance else 0

        now = utcnow()
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        monthly = await queries.sum_ledger_points(
            session, user_id, since=month_start, earned_only=True
        )
        events = await queries.count_credited_events(session, user_id)
        rank = rank_for(total, self.cfg.rank_tiers)

        return RewardsSummary(
            user_id=user_id,
            total_points=total,
            monthly_points=monthly,
            total_events=events,
            lifetime_earned=earned,
            lifetime_redeemed=redeemed,
            co2_saved_kg=round(earned * self.cfg.co2_kg_per_point, 2),
            rank=rank.rank,
            next_rank=rank.next_rank,
            next_rank_points=rank.next_rank_points,
        )

    async def get_history(
        self, session: AsyncSession, user_id: uuid.UUID, limit: int = 100
    ) -> Sequence[RewardLedgerEntry]:
        return await queries.get_ledger_history(session, user_id, limit)
