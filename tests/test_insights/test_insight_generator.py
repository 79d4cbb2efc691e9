"""
Tests for the Insight Generator against the store.

Covers:
- One current insight per bin after every run
- Supersession keeps history
- Bins with only anomalies still get insights
- Maintenance recommendations from open high-severity anomalies
"""

import uuid
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import func, select

from ecobin.db import queries
from ecobin.db.models import Anomaly, DailyMetric, Insight
from ecobin.insights.generator import InsightGenerator

NOW = datetime(2024, 6, 1, 12, 0)
DAY = date(2024, 5, 31)


def _metric(bin_id: uuid.UUID, deposits: int) -> DailyMetric:
    return DailyMetric(
        metric_date=DAY,
        bin_id=bin_id,
        deposit_count=deposits,
        hv_count=deposits,
        lv_count=0,
        org_count=0,
        total_weight_kg=deposits * 0.2,
        avg_fill_level_pct=40.0,
        peak_hour=8,
        peak_hour_deposits=1,
        hourly_counts=[0] * 24,
    )


def _open_anomaly(bin_id: uuid.UUID, anomaly_type: str = "battery_drop") -> Anomaly:
    return Anomaly(
        bin_id=bin_id,
        anomaly_type=anomaly_type,
        severity="high",
        description="Battery dropped 25 points",
        observed_value=25.0,
        threshold=20.0,
        window_start=NOW - timedelta(minutes=40),
        window_end=NOW - timedelta(minutes=30),
        window_event_ids=[],
        details={},
        time_bucket=NOW - timedelta(hours=1),
        detected_at=NOW - timedelta(minutes=30),
    )


async def _insights(session_factory, bin_id) -> list[Insight]:
    async with session_factory() as session:
        result = await session.execute(
            select(Insight).where(Insight.bin_id == bin_id).order_by(Insight.generated_at)
        )
        return list(result.scalars().all())


class TestInsightGenerator:
    @pytest.mark.asyncio
    async def test_one_current_insight_per_bin(self, cfg, session_factory, store):
        bins = [uuid.uuid4() for _ in range(3)]
        await store(*(_metric(b, d) for b, d in zip(bins, (2, 10, 40))))

        result = await InsightGenerator(cfg).run(session_factory, now=NOW)

        assert result.written == 3
        async with session_factory() as session:
            current = await queries.get_current_insights(session)
        assert set(current) == set(bins)
        assert all(i.metric_date == DAY for i in current.values())

    @pytest.mark.asyncio
    async def test_rerun_supersedes_previous(self, cfg, session_factory, store):
        bin_id = uuid.uuid4()
        await store(_metric(bin_id, 12))
        generator = InsightGenerator(cfg)

        await generator.run(session_factory, now=NOW)
        await generator.run(session_factory, now=NOW + timedelta(minutes=5))

        rows = await _insights(session_factory, bin_id)
        assert len(rows) == 2
        assert [r.is_current for r in rows] == [False, True]
        assert rows[0].insights == rows[1].insights

        async with session_factory() as session:
            count = await session.scalar(
                select(func.count()).select_from(Insight).where(Insight.is_current == True)  # noqa: E712
            )
        assert count == 1

    @pytest.mark.asyncio
    async def test_open_anomaly_drives_maintenance(self, cfg, session_factory, store):
        bin_id = uuid.uuid4()
        await store(_metric(bin_id, 12), _open_anomaly(bin_id))

        await InsightGenerator(cfg).run(session_factory, now=NOW)

        async with session_factory() as session:
            insight = await queries.get_current_insight(session, bin_id)
        assert "maintenance" in insight.categories
        assert "Service or replace the battery" in insight.recommendations
        assert len(insight.anomaly_ids) == 1

    @pytest.mark.asyncio
    async def test_bin_with_only_anomalies(self, cfg, session_factory, store):
        bin_id = uuid.uuid4()
        await store(_open_anomaly(bin_id, "weight_category_mismatch"))

        await InsightGenerator(cfg).run(session_factory, now=NOW)

        async with session_factory() as session:
            insight = await queries.get_current_insight(session, bin_id)
        assert insight is not None
        assert insight.metric_date is None
        assert insight.recommendations == ["Recalibrate the scale and item sensors"]

    @pytest.mark.asyncio
    async def test_summary_only_counts_anomalies_since_previous_insight(
        self, cfg, session_factory, store
    ):
        bin_id = uuid.uuid4()
        await store(_metric(bin_id, 12), _open_anomaly(bin_id))
        generator = InsightGenerator(cfg)

        await generator.run(session_factory, now=NOW)
        first = (await _insights(session_factory, bin_id))[-1]
        assert any("new anomalies" in s for s in first.insights)

        await generator.run(session_factory, now=NOW + timedelta(minutes=5))
        second = (await _insights(session_factory, bin_id))[-1]
        assert not any("new anomalies" in s for s in second.insights)

    @pytest.mark.asyncio
    async def test_stale_metrics_ignored(self, cfg, session_factory, store):
        bin_id = uuid.uuid4()
        old = _metric(bin_id, 12)
        old.metric_date = DAY - timedelta(days=30)
        await store(old)

        result = await InsightGenerator(cfg).run(session_factory, now=NOW)
        assert result.bins == 0
