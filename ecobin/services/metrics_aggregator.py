"""
Metrics Aggregator — daily per-bin rollups of bin_events.

Runs once per UTC day for the day that just ended. A run for a day replaces
every daily_bin_metrics row of that day in a single transaction, so re-runs
and backfills are idempotent and readers never see a half-written day.

Bins with no events on a day get no row.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.db import queries
from ecobin.db.engine import session_scope
from ecobin.db.models import BinEvent, DailyMetric
from ecobin.timeutil import day_bounds, previous_utc_day, utcnow

logger = structlog.get_logger(__name__)

COUNT_FIELDS = (
    "plastic_count", "paper_count", "metal_count", "glass_count",
    "organic_count", "hv_count", "lv_count", "org_count",
)


@dataclass(frozen=True)
class AggregationResult:
    metric_date: date
    bins: int
    events: int

    def __str__(self) -> str:
        return f"{self.metric_date.isoformat()}: {self.bins} bins, {self.events} events"


def compute_bin_metric(
    bin_id: uuid.UUID, day: date, events: Sequence[BinEvent]
) -> DailyMetric:
    """
    Roll up one bin's events for one day.

    Averages and minimums ignore readings without a value; when no event
    carries the value the field is None.
    """
    hourly = [0] * 24
    fills: list[float] = []
    batteries: list[float] = []

    totals = dict.fromkeys(COUNT_FIELDS, 0)
    weight = 0.0
    for ev in events:
        for field in COUNT_FIELDS:
            totals[field] += getattr(ev, field) or 0
        weight += ev.weight_kg_delta or 0.0
        hourly[ev.timestamp_utc.hour] += 1
        if ev.fill_level_pct is not None:
            fills.append(ev.fill_level_pct)
        if ev.battery_pct is not None:
            batteries.append(ev.battery_pct)

    peak_deposits = max(hourly)
    # Ties resolve to the earliest hour
    peak_hour = hourly.index(peak_deposits) if peak_deposits else None

    return DailyMetric(
        metric_date=day,
        bin_id=bin_id,
        deposit_count=len(events),
        total_weight_kg=round(weight, 3),
        avg_fill_level_pct=round(sum(fills) / len(fills), 2) if fills else None,
        min_battery_pct=min(batteries) if batteries else None,
        peak_hour=peak_hour,
        peak_hour_deposits=peak_deposits,
        hourly_counts=hourly,
        computed_at=utcnow(),
        **totals,
    )


async def _replace_day(session: AsyncSession, day: date, rows: list[DailyMetric]) -> None:
    await session.execute(delete(DailyMetric).where(DailyMetric.metric_date == day))
    session.add_all(rows)
    await session.flush()


async def aggregate_day(
    session_factory: async_sessionmaker[AsyncSession],
    day: Optional[date] = None,
) -> AggregationResult:
    """Recompute all DailyMetric rows for one UTC day (default: yesterday)."""
    day = day or previous_utc_day()
    start, end = day_bounds(day)
    log = logger.bind(metric_date=day.isoformat())

    async with session_scope(session_factory) as session:
        events = await queries.get_events(session, start, end)

        by_bin: dict[uuid.UUID, list[BinEvent]] = defaultdict(list)
        for ev in events:
            by_bin[ev.bin_id].append(ev)

        rows = [compute_bin_metric(bin_id, day, evs) for bin_id, evs in by_bin.items()]
        await _replace_day(session, day, rows)

    log.info("daily_metrics_aggregated", bins=len(rows), events=len(events))
    return AggregationResult(metric_date=day, bins=len(rows), events=len(events))


async def aggregate_range(
    session_factory: async_sessionmaker[AsyncSession],
    start: date,
    end: date,
) -> list[AggregationResult]:
    """Backfill every day from start to end inclusive, one transaction per day."""
    if end < start:
        raise ValueError("end must not be before start")
    results = []
    day = start
    while day <= end:
        results.append(await aggregate_day(session_factory, day))
        day += timedelta(days=1)
    return results
