"""
Insight Generator: turns recent metrics and anomalies into recommendations.

For each bin with a recent DailyMetric or open anomalies, builds an
InsightBundle and, in one transaction per bin, retires the previous current
insight and inserts the new one. Readers therefore always see exactly one
current insight per bin.
"""

import statistics
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy import and_, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.config import Settings, settings
from ecobin.db import queries
from ecobin.db.engine import session_scope
from ecobin.db.models import Anomaly, DailyMetric, Insight
from ecobin.exceptions import TransientStoreError
from ecobin.insights import templates
from ecobin.insights.forecast import forecast_usage
from ecobin.insights.templates import InsightBundle
from ecobin.timeutil import utcnow

logger = structlog.get_logger(__name__)


@dataclass
class GenerationResult:
    bins: int = 0
    written: int = 0
    failed_bins: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"bins={self.bins} written={self.written} failed={len(self.failed_bins)}"


def peer_medians(metrics: dict[uuid.UUID, DailyMetric]) -> dict[date, float]:
    """Median deposit count across bins, per metric day."""
    by_day: dict[date, list[int]] = defaultdict(list)
    for m in metrics.values():
        by_day[m.metric_date].append(m.deposit_count)
    return {day: float(statistics.median(counts)) for day, counts in by_day.items()}


class InsightGenerator:
    """Builds and stores per-bin insight bundles."""

    def __init__(self, cfg: Optional[Settings] = None):
        self.cfg = cfg or settings

    def build_bundle(
        self,
        metric: Optional[DailyMetric],
        peer_median: Optional[float],
        open_anomalies: Sequence[Anomaly],
        new_anomalies: Sequence[Anomaly],
        history: Sequence[DailyMetric] = (),
    ) -> InsightBundle:
        """
        Deterministic: same inputs, same strings, same order.

        `history` is the bin's DailyMetric rows over the lookback window,
        oldest first; with two or more days it drives the usage forecast.
        """
        cfg = self.cfg
        bundle = InsightBundle()

        if metric is not None:
            bundle.metric_date = metric.metric_date
            forecast = forecast_usage(
                history, cfg.insight_trend_stable_pct, cfg.insight_capacity_buffer_pct
            )
            templates.usage_prediction(bundle, metric, cfg.insight_high_fill_pct, forecast)
            templates.optimization(
                bundle,
                metric,
                peer_median,
                cfg.insight_low_usage_ratio,
                cfg.insight_high_usage_ratio,
            )
            templates.composition(bundle, metric)

        ordered = sorted(open_anomalies, key=lambda a: (a.detected_at, str(a.id)))
        templates.maintenance(bundle, ordered)
        templates.anomaly_summary(
            bundle, sorted(new_anomalies, key=lambda a: (a.detected_at, str(a.id)))
        )
        bundle.anomaly_ids = [str(a.id) for a in ordered]
        return bundle

    async def run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        now: Optional[datetime] = None,
    ) -> GenerationResult:
        now = now or utcnow()
        cfg = self.cfg
        result = GenerationResult()

        async with session_scope(session_factory) as session:
            since_day = now.date() - timedelta(days=cfg.insight_metric_lookback_days)
            history = await queries.get_metric_history(session, since_day)
            open_since = now - timedelta(hours=cfg.insight_open_anomaly_hours)
            anomalies = await queries.get_anomalies_since(session, open_since)
            current = await queries.get_current_insights(session)

        metrics = {bin_id: rows[-1] for bin_id, rows in history.items()}
        medians = peer_medians(metrics)
        anomalies_by_bin: dict[uuid.UUID, list[Anomaly]] = defaultdict(list)
        for a in anomalies:
            anomalies_by_bin[a.bin_id].append(a)

        bin_ids = sorted(set(metrics) | set(anomalies_by_bin), key=str)
        for bin_id in bin_ids:
            result.bins += 1
            metric = metrics.get(bin_id)
            open_anomalies = anomalies_by_bin.get(bin_id, [])
            previous = current.get(bin_id)
            new_anomalies = [
                a for a in open_anomalies
                if previous is None or a.detected_at > previous.generated_at
            ]
            bundle = self.build_bundle(
                metric,
                medians.get(metric.metric_date) if metric is not None else None,
                open_anomalies,
                new_anomalies,
                history.get(bin_id, ()),
            )
            try:
                await self.write_insight(session_factory, bin_id, bundle, now)
                result.written += 1
            except TransientStoreError:
                raise
            except Exception as e:
                logger.error(
                    "insight_bin_failed",
                    bin_id=str(bin_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.failed_bins.append(str(bin_id))

        logger.info(
            "insights_generated",
            bins=result.bins,
            written=result.written,
            failed=len(result.failed_bins),
        )
        return result

    async def write_insight(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bin_id: uuid.UUID,
        bundle: InsightBundle,
        generated_at: datetime,
    ) -> Insight:
        """Retire the bin's current insight and insert the new one atomically."""
        async with session_scope(session_factory) as session:
            await session.execute(
                update(Insight)
                .where(and_(Insight.bin_id == bin_id, Insight.is_current == True))  # noqa: E712
                .values(is_current=False)
            )
            insight = Insight(
                bin_id=bin_id,
                generated_at=generated_at,
                insights=bundle.insights,
                recommendations=bundle.recommendations,
                categories=bundle.categories,
                metric_date=bundle.metric_date,
                anomaly_ids=bundle.anomaly_ids,
                is_current=True,
            )
            session.add(insight)
            await session.flush()
        logger.debug("insight_written", bin_id=str(bin_id), categories=bundle.categories)
        return insight
