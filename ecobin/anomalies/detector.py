"""
Anomaly Detector — evaluates every rule per bin over a sliding window.

Each tick:
1. Finds bins with events in [now - window, now)
2. Loads the window, the reading just before it and the bin's latest DailyMetric
3. Evaluates every rule independently
4. Persists new anomalies, suppressing repeats within the cooldown

Dedupe has two layers. A query skips a (bin, type) that already has an
anomaly ending within the cooldown of the new trigger time; the unique
(bin_id, anomaly_type, time_bucket) constraint backstops concurrent writers.
The bucket comes from the triggering reading's timestamp, so re-running the
same window maps to the same row.

A failure on one bin is logged and the remaining bins are still processed.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.anomalies.rules import AnomalyRule, DetectedAnomaly, RuleContext, default_rules
from ecobin.config import Settings, settings
from ecobin.db import queries
from ecobin.db.engine import session_scope
from ecobin.db.models import Anomaly, DailyMetric
from ecobin.exceptions import DataIntegrityViolation, TransientStoreError
from ecobin.observability import ANOMALIES_CREATED
from ecobin.timeutil import floor_to_bucket, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class DetectionResult:
    bins_scanned: int = 0
    detected: int = 0
    persisted: int = 0
    suppressed: int = 0
    failed_bins: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"bins={self.bins_scanned} detected={self.detected} "
            f"persisted={self.persisted} suppressed={self.suppressed} "
            f"failed={len(self.failed_bins)}"
        )


class AnomalyDetector:
    """Runs the rule set over recent readings and records what fires."""

    def __init__(
        self,
        cfg: Optional[Settings] = None,
        rules: Optional[Sequence[AnomalyRule]] = None,
    ):
        self.cfg = cfg or settings
        self.rules = list(rules) if rules is not None else default_rules(self.cfg)
        self.window = timedelta(minutes=self.cfg.anomaly_window_minutes)
        self.cooldown = timedelta(minutes=self.cfg.anomaly_cooldown_minutes)

    async def run(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        now: Optional[datetime] = None,
    ) -> DetectionResult:
        now = now or utcnow()
        window_start = now - self.window
        result = DetectionResult()

        async with session_scope(session_factory) as session:
            bin_ids = await queries.get_active_bin_ids(session, window_start, now)
            lookback = now.date() - timedelta(days=self.cfg.insight_metric_lookback_days)
            latest_metrics = await queries.get_latest_metrics(session, lookback)

        for bin_id in bin_ids:
            result.bins_scanned += 1
            try:
                detected = await self.detect_bin(
                    session_factory, bin_id, window_start, now, latest_metrics.get(bin_id)
                )
                result.detected += len(detected)
                for anomaly in detected:
                    if await self.persist(session_factory, anomaly):
                        result.persisted += 1
                    else:
                        result.suppressed += 1
            except TransientStoreError:
                raise
            except Exception as e:
                logger.error(
                    "anomaly_bin_failed",
                    bin_id=str(bin_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                result.failed_bins.append(str(bin_id))

        logger.info(
            "anomaly_detection_completed",
            window_start=window_start.isoformat(),
            window_end=now.isoformat(),
            bins_scanned=result.bins_scanned,
            detected=result.detected,
            persisted=result.persisted,
            suppressed=result.suppressed,
            failed=len(result.failed_bins),
        )
        return result

    async def detect_bin(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        bin_id: uuid.UUID,
        window_start: datetime,
        window_end: datetime,
        latest_metric: Optional[DailyMetric] = None,
    ) -> list[DetectedAnomaly]:
        """Evaluate all rules for one bin. Read-only."""
        async with session_scope(session_factory) as session:
            events = await queries.get_events(session, window_start, window_end, bin_id=bin_id)
            prior = await queries.get_prior_event(session, bin_id, window_start)

        ctx = RuleContext(
            bin_id=bin_id,
            window_start=window_start,
            window_end=window_end,
            events=events,
            prior_event=prior,
            latest_metric=latest_metric,
            high_ratio=self.cfg.severity_high_ratio,
            medium_ratio=self.cfg.severity_medium_ratio,
        )
        detected = []
        for rule in self.rules:
            anomaly = rule.evaluate(ctx)
            if anomaly is not None:
                detected.append(anomaly)
        return detected

    async def persist(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        anomaly: DetectedAnomaly,
    ) -> bool:
        """Store one anomaly unless it repeats a recent one. Returns True if stored."""
        bucket = floor_to_bucket(anomaly.trigger_time, self.cfg.anomaly_cooldown_minutes)
        log = logger.bind(bin_id=str(anomaly.bin_id), anomaly_type=str(anomaly.anomaly_type))
        try:
            async with session_scope(session_factory) as session:
                recent = await queries.find_recent_anomaly(
                    session,
                    anomaly.bin_id,
                    anomaly.anomaly_type,
                    since=anomaly.trigger_time - self.cooldown,
                )
                if recent is not None:
                    log.debug("anomaly_suppressed", existing_id=str(recent.id))
                    return False

                session.add(
                    Anomaly(
                        bin_id=anomaly.bin_id,
                        anomaly_type=str(anomaly.anomaly_type),
                        severity=str(anomaly.severity),
                        description=anomaly.description,
                        observed_value=anomaly.observed_value,
                        threshold=anomaly.threshold,
                        trigger_event_id=anomaly.trigger_event_id,
                        window_start=anomaly.window_start,
                        window_end=anomaly.window_end,
                        window_event_ids=anomaly.window_event_ids,
                        details=anomaly.details,
                        time_bucket=bucket,
                    )
                )
                await session.flush()
        except IntegrityError as e:
            violation = DataIntegrityViolation(
                f"Duplicate anomaly rejected: {e.orig}",
                entity="anomaly",
                entity_id=f"{anomaly.bin_id}:{anomaly.anomaly_type}:{bucket.isoformat()}",
            )
            log.warning("anomaly_duplicate_rejected", **violation.to_dict())
            return False

        ANOMALIES_CREATED.labels(
            anomaly_type=str(anomaly.anomaly_type), severity=str(anomaly.severity)
        ).inc()
        log.info(
            "anomaly_detected",
            severity=str(anomaly.severity),
            observed=anomaly.observed_value,
            time_bucket=bucket.isoformat(),
        )
        return True
