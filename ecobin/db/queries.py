"""
Database query functions for jobs and the read API.

The first section is the Event Store read interface over bin_events
(time range and/or bin filters). The rest reads the derived tables.
Jobs run with direct DB access, so every function takes an explicit session.
"""

import uuid
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ecobin.config import ScoringTable
from ecobin.db.models import (
    Anomaly,
    BinEvent,
    DailyMetric,
    Insight,
    RewardBalance,
    RewardLedgerEntry,
)
from ecobin.timeutil import utcnow


# ── Event Store ──────────────────────────────────────────────────────────


async def get_events(
    session: AsyncSession,
    start: datetime,
    end: datetime,
    bin_id: Optional[uuid.UUID] = None,
) -> Sequence[BinEvent]:
    """Events with start <= timestamp_utc < end, ordered by bin then time."""
    stmt = select(BinEvent).where(
        and_(BinEvent.timestamp_utc >= start, BinEvent.timestamp_utc < end)
    )
    if bin_id is not None:
        stmt = stmt.where(BinEvent.bin_id == bin_id)
    stmt = stmt.order_by(BinEvent.bin_id, BinEvent.timestamp_utc, BinEvent.id)
    result = await session.execute(stmt)
    return result.scalars().all()


async def get_prior_event(
    session: AsyncSession, bin_id: uuid.UUID, before: datetime
) -> Optional[BinEvent]:
    """The last reading for a bin strictly before a timestamp."""
    result = await session.execute(
        select(BinEvent)
        .where(and_(BinEvent.bin_id == bin_id, BinEvent.timestamp_utc < before))
        .order_by(BinEvent.timestamp_utc.desc(), BinEvent.id.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_active_bin_ids(
    session: AsyncSession, start: datetime, end: datetime
) -> list[uuid.UUID]:
    """Distinct bins that reported at least one event in [start, end)."""
    result = await session.execute(
        select(BinEvent.bin_id)
        .where(and_(BinEvent.timestamp_utc >= start, BinEvent.timestamp_utc < end))
        .distinct()
    )
    return sorted(result.scalars().all(), key=str)


# ── Daily metrics ────────────────────────────────────────────────────────


async def get_metrics_for_day(session: AsyncSession, day: date) -> Sequence[DailyMetric]:
    result = await session.execute(
        select(DailyMetric)
        .where(DailyMetric.metric_date == day)
        .order_by(DailyMetric.bin_id)
    )
    return result.scalars().all()


async def get_latest_metrics(
    session: AsyncSession, since: date
) -> dict[uuid.UUID, DailyMetric]:
    """Most recent DailyMetric per bin, considering rows on or after `since`."""
    latest = (
        select(
            DailyMetric.bin_id.label("bin_id"),
            func.max(DailyMetric.metric_date).label("metric_date"),
        )
        .where(DailyMetric.metric_date >= since)
        .group_by(DailyMetric.bin_id)
        .subquery()
    )
    result = await session.execute(
        select(DailyMetric).join(
            latest,
            and_(
                DailyMetric.bin_id == latest.c.bin_id,
                DailyMetric.metric_date == latest.c.metric_date,
            ),
        )
    )
    return {m.bin_id: m for m in result.scalars().all()}


async def get_metric_history(
    session: AsyncSession, since: date
) -> dict[uuid.UUID, list[DailyMetric]]:
    """DailyMetric rows on or after `since`, grouped per bin, oldest first."""
    result = await session.execute(
        select(DailyMetric)
        .where(DailyMetric.metric_date >= since)
        .order_by(DailyMetric.bin_id, DailyMetric.metric_date)
    )
    history: dict[uuid.UUID, list[DailyMetric]] = {}
    for m in result.scalars().all():
        history.setdefault(m.bin_id, []).append(m)
    return history


async def get_bin_metrics(
    session: AsyncSession, bin_id: uuid.UUID, days: int
) -> Sequence[DailyMetric]:
    """DailyMetric rows for one bin over the last N days, newest first."""
    cutoff = utcnow().date() - timedelta(days=days)
    result = await session.execute(
        select(DailyMetric)
        .where(and_(DailyMetric.bin_id == bin_id, DailyMetric.metric_date >= cutoff))
        .order_by(DailyMetric.metric_date.desc())
    )
    return result.scalars().all()


# ── Anomalies ────────────────────────────────────────────────────────────


async def find_recent_anomaly(
    session: AsyncSession,
    bin_id: uuid.UUID,
    anomaly_type: str,
    since: datetime,
) -> Optional[Anomaly]:
    """An anomaly of the same type on the same bin whose window ends after `since`."""
    result = await session.execute(
        select(Anomaly)
        .where(
            and_(
                Anomaly.bin_id == bin_id,
                Anomaly.anomaly_type == anomaly_type,
                Anomaly.window_end >= since,
            )
        )
        .order_by(Anomaly.window_end.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_anomalies_since(
    session: AsyncSession, since: datetime
) -> Sequence[Anomaly]:
    """All anomalies detected at or after `since`, oldest first."""
    result = await session.execute(
        select(Anomaly)
        .where(Anomaly.detected_at >= since)
        .order_by(Anomaly.bin_id, Anomaly.detected_at, Anomaly.id)
    )
    return result.scalars().all()


async def get_bin_anomalies(
    session: AsyncSession, bin_id: uuid.UUID, limit: int = 50
) -> Sequence[Anomaly]:
    result = await session.execute(
        select(Anomaly)
        .where(Anomaly.bin_id == bin_id)
        .order_by(Anomaly.detected_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


# ── Insights ─────────────────────────────────────────────────────────────


async def get_current_insight(
    session: AsyncSession, bin_id: uuid.UUID
) -> Optional[Insight]:
    result = await session.execute(
        select(Insight)
        .where(and_(Insight.bin_id == bin_id, Insight.is_current == True))  # noqa: E712
        .order_by(Insight.generated_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_current_insights(session: AsyncSession) -> dict[uuid.UUID, Insight]:
    result = await session.execute(
        select(Insight).where(Insight.is_current == True)  # noqa: E712
    )
    return {i.bin_id: i for i in result.scalars().all()}


# ── Rewards ──────────────────────────────────────────────────────────────


def score_expression(table: ScoringTable):
    """SQL twin of rewards.scoring.score_event, used to skip zero-point events."""
    return (
        BinEvent.hv_count * table.weight("hv")
        + BinEvent.lv_count * table.weight("lv")
        + BinEvent.org_count * table.weight("org")
    )


async def get_uncredited_events(
    session: AsyncSession, table: ScoringTable, limit: int
) -> Sequence[BinEvent]:
    """
    Qualifying events with no ledger entry yet, oldest first.

    Qualifying = attributed to a user and worth at least one point.
    """
    result = await session.execute(
        select(BinEvent)
        .outerjoin(RewardLedgerEntry, RewardLedgerEntry.event_id == BinEvent.id)
        .where(
            and_(
                RewardLedgerEntry.id.is_(None),
                BinEvent.user_id.is_not(None),
                score_expression(table) > 0,
            )
        )
        .order_by(BinEvent.timestamp_utc, BinEvent.id)
        .limit(limit)
    )
    return result.scalars().all()


async def get_balance(session: AsyncSession, user_id: uuid.UUID) -> Optional[RewardBalance]:
    result = await session.execute(
        select(RewardBalance).where(RewardBalance.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def get_ledger_history(
    session: AsyncSession, user_id: uuid.UUID, limit: int = 100
) -> Sequence[RewardLedgerEntry]:
    result = await session.execute(
        select(RewardLedgerEntry)
        .where(RewardLedgerEntry.user_id == user_id)
        .order_by(RewardLedgerEntry.created_at.desc(), RewardLedgerEntry.id)
        .limit(limit)
    )
    return result.scalars().all()


async def sum_ledger_points(
    session: AsyncSession,
    user_id: uuid.UUID,
    since: Optional[datetime] = None,
    earned_only: bool = False,
) -> int:
    stmt = select(func.coalesce(func.sum(RewardLedgerEntry.points_delta), 0)).where(
        RewardLedgerEntry.user_id == user_id
    )
    if earned_only:
        stmt = stmt.where(RewardLedgerEntry.points_delta > 0)
    if since is not None:
        stmt = stmt.where(RewardLedgerEntry.created_at >= since)
    result = await session.execute(stmt)
    return int(result.scalar_one())


async def count_credited_events(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count())
        .select_from(RewardLedgerEntry)
        .where(
            and_(
                RewardLedgerEntry.user_id == user_id,
                RewardLedgerEntry.event_id.is_not(None),
            )
        )
    )
    return int(result.scalar_one())
