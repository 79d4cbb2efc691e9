"""
End-to-end pipeline flow over one store.

Events → daily metrics → anomalies → insights, and events → rewards, each
job run the way the scheduler runs it.
"""

import uuid
from datetime import date, datetime, timedelta

import pytest

from ecobin.anomalies.detector import AnomalyDetector
from ecobin.db import queries
from ecobin.insights.generator import InsightGenerator
from ecobin.rewards.engine import RewardsEngine
from ecobin.services.metrics_aggregator import aggregate_day
from ecobin.services.scheduler import PipelineScheduler, register_pipeline_jobs

NOW = datetime(2024, 6, 1, 12, 0)
YESTERDAY = date(2024, 5, 31)


class TestPipelineFlow:
    @pytest.mark.asyncio
    async def test_events_to_insight_and_points(self, cfg, session_factory, store, make_event):
        bin_id, user = uuid.uuid4(), uuid.uuid4()
        day_start = datetime.combine(YESTERDAY, datetime.min.time())
        await store(
            make_event(bin_id, day_start + timedelta(hours=8), user_id=user, hv=2, lv=1, fill=85.0),
            make_event(bin_id, day_start + timedelta(hours=8, minutes=20), user_id=user, hv=1, fill=90.0),
            make_event(bin_id, NOW - timedelta(minutes=8), battery=80.0),
            make_event(bin_id, NOW - timedelta(minutes=3), battery=55.0),
        )

        aggregated = await aggregate_day(session_factory, YESTERDAY)
        assert aggregated.bins == 1

        detection = await AnomalyDetector(cfg).run(session_factory, now=NOW)
        assert detection.persisted == 1

        await InsightGenerator(cfg).run(session_factory, now=NOW + timedelta(minutes=1))
        async with session_factory() as session:
            insight = await queries.get_current_insight(session, bin_id)
        assert insight.metric_date == YESTERDAY
        assert "Schedule collection before 08:00 UTC" in insight.recommendations
        assert "Service or replace the battery" in insight.recommendations
        assert "maintenance" in insight.categories

        accrual = await RewardsEngine(cfg).run_accrual(session_factory)
        assert accrual.credited == 2
        assert accrual.points == 11 + 5

    @pytest.mark.asyncio
    async def test_registered_jobs_each_succeed(self, cfg, session_factory, store, make_event):
        await store(make_event(user_id=uuid.uuid4(), hv=1))
        scheduler = register_pipeline_jobs(PipelineScheduler(), cfg, session_factory)

        assert sorted(scheduler.job_names) == [
            "anomalies",
            "daily_metrics",
            "insights",
            "rewards_accrual",
        ]
        for name in scheduler.job_names:
            assert await scheduler.run_job(name) == "success"
