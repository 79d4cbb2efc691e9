"""
Tests for the Metrics Aggregator.

Covers:
- Pure per-bin rollup (counts, weight, averages, peak hour)
- Day boundaries in UTC (half-open)
- Zero-activity bins get no row
- Idempotent re-runs and late-arriving events
- Default target day and range backfill
"""

import uuid
from datetime import date, datetime, time, timedelta

import pytest
from sqlalchemy import select

from ecobin.db.models import DailyMetric
from ecobin.services.metrics_aggregator import (
    COUNT_FIELDS,
    aggregate_day,
    aggregate_range,
    compute_bin_metric,
)
from ecobin.timeutil import previous_utc_day

DAY = date(2024, 5, 31)


def _at(hour: int, minute: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


async def _rows(session_factory, day: date = DAY) -> dict[uuid.UUID, DailyMetric]:
    async with session_factory() as session:
        result = await session.execute(
            select(DailyMetric).where(DailyMetric.metric_date == day)
        )
        return {m.bin_id: m for m in result.scalars().all()}


def _snapshot(m: DailyMetric) -> tuple:
    return (
        m.deposit_count, m.plastic_count, m.paper_count, m.metal_count,
        m.glass_count, m.organic_count, m.hv_count, m.lv_count, m.org_count,
        m.total_weight_kg, m.avg_fill_level_pct, m.min_battery_pct,
        m.peak_hour, m.peak_hour_deposits, list(m.hourly_counts),
    )


# ── Pure rollup ───────────────────────────────────────────────────────


class TestComputeBinMetric:
    def test_sums_counts_and_weight(self, make_event):
        bin_id = uuid.uuid4()
        events = [
            make_event(bin_id, _at(9), plastic=2, hv=2, weight_delta=0.4, weight_total=0.4),
            make_event(bin_id, _at(9, 30), paper=1, organic=1, lv=1, org=1,
                       weight_delta=0.6, weight_total=1.0),
            make_event(bin_id, _at(14), glass=3, metal=1, hv=4, weight_delta=1.5, weight_total=2.5),
        ]
        m = compute_bin_metric(bin_id, DAY, events)

        assert m.deposit_count == 3
        assert (m.plastic_count, m.paper_count, m.metal_count) == (2, 1, 1)
        assert (m.glass_count, m.organic_count) == (3, 1)
        assert (m.hv_count, m.lv_count, m.org_count) == (6, 1, 1)
        assert m.total_weight_kg == pytest.approx(2.5)

    def test_peak_hour_and_hourly_counts(self, make_event):
        bin_id = uuid.uuid4()
        events = [make_event(bin_id, _at(h)) for h in (7, 9, 9, 14, 14)]
        m = compute_bin_metric(bin_id, DAY, events)

        assert len(m.hourly_counts) == 24
        assert sum(m.hourly_counts) == 5
        # 9 and 14 tie; the earlier hour wins
        assert m.peak_hour == 9
        assert m.peak_hour_deposits == 2

    def test_averages_ignore_missing_readings(self, make_event):
        bin_id = uuid.uuid4()
        events = [
            make_event(bin_id, _at(1), fill=40.0, battery=90.0),
            make_event(bin_id, _at(2), fill=None, battery=None),
            make_event(bin_id, _at(3), fill=60.0, battery=70.0),
        ]
        m = compute_bin_metric(bin_id, DAY, events)
        assert m.avg_fill_level_pct == pytest.approx(50.0)
        assert m.min_battery_pct == pytest.approx(70.0)

    def test_no_readings_gives_none(self, make_event):
        bin_id = uuid.uuid4()
        m = compute_bin_metric(bin_id, DAY, [make_event(bin_id, _at(5))])
        assert m.avg_fill_level_pct is None
        assert m.min_battery_pct is None

    def test_empty_day_has_zero_counts(self):
        m = compute_bin_metric(uuid.uuid4(), DAY, [])
        assert m.deposit_count == 0
        assert [getattr(m, f) for f in COUNT_FIELDS] == [0] * len(COUNT_FIELDS)
        assert m.total_weight_kg == 0.0
        assert m.peak_hour is None
        assert m.hourly_counts == [0] * 24


# ── Aggregation against the store ─────────────────────────────────────


class TestAggregateDay:
    @pytest.mark.asyncio
    async def test_day_bounds_are_half_open(self, session_factory, store, make_event):
        bin_a = uuid.uuid4()
        await store(
            make_event(bin_a, _at(0, 0)),                         # included
            make_event(bin_a, _at(23, 59)),                       # included
            make_event(bin_a, _at(0, 0, day=DAY + timedelta(days=1))),  # next day
            make_event(bin_a, _at(23, 59, day=DAY - timedelta(days=1))),  # previous day
        )
        result = await aggregate_day(session_factory, DAY)

        assert result.events == 2
        rows = await _rows(session_factory)
        assert rows[bin_a].deposit_count == 2

    @pytest.mark.asyncio
    async def test_zero_activity_bin_has_no_row(self, session_factory, store, make_event):
        bin_a, bin_b, idle = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        await store(
            make_event(bin_a, _at(8)),
            make_event(bin_b, _at(10)),
            make_event(idle, _at(10, day=DAY + timedelta(days=1))),
        )
        result = await aggregate_day(session_factory, DAY)

        rows = await _rows(session_factory)
        assert set(rows) == {bin_a, bin_b}
        assert result.bins == 2

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, session_factory, store, make_event):
        bin_a = uuid.uuid4()
        await store(
            make_event(bin_a, _at(8), hv=1, fill=30.0, battery=88.0, weight_delta=0.2, weight_total=0.2),
            make_event(bin_a, _at(12), lv=3, fill=50.0, battery=85.0, weight_delta=0.3, weight_total=0.5),
        )
        await aggregate_day(session_factory, DAY)
        first = {k: _snapshot(v) for k, v in (await _rows(session_factory)).items()}

        await aggregate_day(session_factory, DAY)
        second = {k: _snapshot(v) for k, v in (await _rows(session_factory)).items()}

        assert first == second
        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_late_event_is_picked_up_on_rerun(self, session_factory, store, make_event):
        bin_a = uuid.uuid4()
        await store(make_event(bin_a, _at(8)))
        await aggregate_day(session_factory, DAY)

        await store(make_event(bin_a, _at(20)))
        await aggregate_day(session_factory, DAY)

        rows = await _rows(session_factory)
        assert rows[bin_a].deposit_count == 2

    @pytest.mark.asyncio
    async def test_default_day_is_previous_utc_day(self, session_factory, store, make_event):
        yesterday = previous_utc_day()
        bin_a = uuid.uuid4()
        await store(make_event(bin_a, _at(12, day=yesterday)))

        result = await aggregate_day(session_factory)
        assert result.metric_date == yesterday
        assert bin_a in await _rows(session_factory, yesterday)

    @pytest.mark.asyncio
    async def test_range_backfill(self, session_factory, store, make_event):
        bin_a = uuid.uuid4()
        days = [DAY - timedelta(days=2), DAY - timedelta(days=1), DAY]
        await store(*(make_event(bin_a, _at(6, day=d)) for d in days))

        results = await aggregate_range(session_factory, days[0], days[-1])
        assert [r.metric_date for r in results] == days
        assert all(r.bins == 1 for r in results)

    @pytest.mark.asyncio
    async def test_range_rejects_inverted_bounds(self, session_factory):
        with pytest.raises(ValueError):
            await aggregate_range(session_factory, DAY, DAY - timedelta(days=1))
