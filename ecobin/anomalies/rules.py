"""
Anomaly detection rules.

Each rule inspects one bin's readings for one window and returns at most one
DetectedAnomaly. Rules are pure: they take a RuleContext and never touch the
database, so each can be evaluated and tested on its own.

Rules:
1. FillRateSpikeRule — fill level jumped more than N points between readings
2. BatteryDropRule — battery fell more than N points between readings
3. WeightCategoryMismatchRule — weight changed without items, or items without weight
4. UsageSurgeRule — deposits far above the bin's latest daily rate
5. OffHoursUsageRule — deposits outside the bin's service hours
6. WeightOutlierRule — one deposit far heavier than the bin's typical deposit
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Optional, Sequence

from ecobin.anomalies.severity import Severity, classify_severity
from ecobin.db.models import BinEvent, DailyMetric


class AnomalyType(StrEnum):
    FILL_RATE_SPIKE = "fill_rate_spike"
    BATTERY_DROP = "battery_drop"
    WEIGHT_CATEGORY_MISMATCH = "weight_category_mismatch"
    USAGE_SURGE = "usage_surge"
    OFF_HOURS_USAGE = "off_hours_usage"
    WEIGHT_OUTLIER = "weight_outlier"


@dataclass
class RuleContext:
    """Everything a rule may look at for one bin and one window."""

    bin_id: uuid.UUID
    window_start: datetime
    window_end: datetime
    events: Sequence[BinEvent]  # ordered by timestamp_utc
    prior_event: Optional[BinEvent] = None
    latest_metric: Optional[DailyMetric] = None
    high_ratio: float = 2.0
    medium_ratio: float = 1.5

    @property
    def event_ids(self) -> list[str]:
        return [str(e.id) for e in self.events]

    def severity(self, observed: float, baseline: float) -> Severity:
        return classify_severity(observed, baseline, self.high_ratio, self.medium_ratio)


@dataclass
class DetectedAnomaly:
    bin_id: uuid.UUID
    anomaly_type: AnomalyType
    severity: Severity
    description: str
    observed_value: float
    threshold: float
    trigger_event_id: Optional[uuid.UUID]
    trigger_time: datetime
    window_start: datetime
    window_end: datetime
    window_event_ids: list[str] = field(default_factory=list)
    details: dict = field(default_factory=dict)


class AnomalyRule(ABC):
    anomaly_type: AnomalyType

    @abstractmethod
    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        ...

    def _anomaly(
        self,
        ctx: RuleContext,
        trigger: BinEvent,
        observed: float,
        threshold: float,
        baseline: float,
        description: str,
        details: dict,
    ) -> DetectedAnomaly:
        return DetectedAnomaly(
            bin_id=ctx.bin_id,
            anomaly_type=self.anomaly_type,
            severity=ctx.severity(observed, baseline),
            description=description,
            observed_value=round(observed, 3),
            threshold=threshold,
            trigger_event_id=trigger.id,
            trigger_time=trigger.timestamp_utc,
            window_start=ctx.window_start,
            window_end=ctx.window_end,
            window_event_ids=ctx.event_ids,
            details=details,
        )


def _consecutive_pairs(
    ctx: RuleContext, attr: str
) -> list[tuple[BinEvent, BinEvent]]:
    """Consecutive readings that both carry `attr`, including the prior reading."""
    readings = list(ctx.events)
    if ctx.prior_event is not None:
        readings.insert(0, ctx.prior_event)
    readings = [r for r in readings if getattr(r, attr) is not None]
    return list(zip(readings, readings[1:]))


class FillRateSpikeRule(AnomalyRule):
    """Largest fill-level increase between consecutive readings above threshold."""

    anomaly_type = AnomalyType.FILL_RATE_SPIKE

    def __init__(self, threshold_pct: float = 30.0, baseline_pct: float = 30.0):
        self.threshold_pct = threshold_pct
        self.baseline_pct = baseline_pct

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        best: Optional[tuple[float, BinEvent, BinEvent]] = None
        for prev, cur in _consecutive_pairs(ctx, "fill_level_pct"):
            rise = cur.fill_level_pct - prev.fill_level_pct
            if rise > self.threshold_pct and (best is None or rise > best[0]):
                best = (rise, prev, cur)
        if best is None:
            return None

        rise, prev, cur = best
        return self._anomaly(
            ctx,
            trigger=cur,
            observed=rise,
            threshold=self.threshold_pct,
            baseline=self.baseline_pct,
            description=(
                f"Fill level rose {rise:.0f} points "
                f"({prev.fill_level_pct:.0f}% → {cur.fill_level_pct:.0f}%)"
            ),
            details={
                "from_pct": prev.fill_level_pct,
                "to_pct": cur.fill_level_pct,
                "from_event_id": str(prev.id),
            },
        )


class BatteryDropRule(AnomalyRule):
    """Largest battery decrease between consecutive readings above threshold."""

    anomaly_type = AnomalyType.BATTERY_DROP

    def __init__(self, threshold_pct: float = 20.0, baseline_pct: float = 10.0):
        self.threshold_pct = threshold_pct
        self.baseline_pct = baseline_pct

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        best: Optional[tuple[float, BinEvent, BinEvent]] = None
        for prev, cur in _consecutive_pairs(ctx, "battery_pct"):
            drop = prev.battery_pct - cur.battery_pct
            if drop > self.threshold_pct and (best is None or drop > best[0]):
                best = (drop, prev, cur)
        if best is None:
            return None

        drop, prev, cur = best
        return self._anomaly(
            ctx,
            trigger=cur,
            observed=drop,
            threshold=self.threshold_pct,
            baseline=self.baseline_pct,
            description=(
                f"Battery dropped {drop:.0f} points "
                f"({prev.battery_pct:.0f}% → {cur.battery_pct:.0f}%)"
            ),
            details={
                "from_pct": prev.battery_pct,
                "to_pct": cur.battery_pct,
                "from_event_id": str(prev.id),
            },
        )


class WeightCategoryMismatchRule(AnomalyRule):
    """
    Scale and item counters disagree on a single deposit.

    Either weight was added with no items counted, or items were counted
    with no weight added. The offender with the largest severity ratio wins.
    """

    anomaly_type = AnomalyType.WEIGHT_CATEGORY_MISMATCH

    def __init__(self, weight_baseline_kg: float = 0.5, items_baseline: float = 2.0):
        self.weight_baseline_kg = weight_baseline_kg
        self.items_baseline = items_baseline

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        best: Optional[tuple[float, BinEvent, str, float, float]] = None
        for ev in ctx.events:
            items = ev.category_total
            delta = ev.weight_kg_delta or 0.0
            if delta > 0 and items == 0:
                kind, observed, baseline = "weight_without_items", delta, self.weight_baseline_kg
            elif items > 0 and delta <= 0:
                kind, observed, baseline = "items_without_weight", float(items), self.items_baseline
            else:
                continue
            ratio = observed / baseline
            if best is None or ratio > best[0]:
                best = (ratio, ev, kind, observed, baseline)
        if best is None:
            return None

        _, ev, kind, observed, baseline = best
        if kind == "weight_without_items":
            description = f"{observed:.2f} kg deposited with no items counted"
        else:
            description = f"{observed:.0f} items counted with no weight change"
        return self._anomaly(
            ctx,
            trigger=ev,
            observed=observed,
            threshold=0.0,
            baseline=baseline,
            description=description,
            details={
                "kind": kind,
                "weight_kg_delta": ev.weight_kg_delta,
                "item_count": ev.category_total,
            },
        )


class UsageSurgeRule(AnomalyRule):
    """
    Deposits in the window far exceed the bin's latest daily rate.

    Expected deposits for the window are scaled from the most recent
    DailyMetric. Bins without a metric row have no trend and are skipped.
    """

    anomaly_type = AnomalyType.USAGE_SURGE

    def __init__(self, multiplier: float = 3.0, min_deposits: int = 5):
        self.multiplier = multiplier
        self.min_deposits = min_deposits

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        metric = ctx.latest_metric
        if metric is None or not ctx.events:
            return None

        window = ctx.window_end - ctx.window_start
        expected = metric.deposit_count * (window / timedelta(days=1))
        threshold = max(expected * self.multiplier, float(self.min_deposits))
        observed = len(ctx.events)
        if observed <= threshold:
            return None

        return self._anomaly(
            ctx,
            trigger=ctx.events[-1],
            observed=float(observed),
            threshold=round(threshold, 3),
            baseline=threshold,
            description=(
                f"{observed} deposits in {int(window.total_seconds() // 60)} minutes, "
                f"expected about {expected:.1f}"
            ),
            details={
                "expected": round(expected, 3),
                "reference_date": metric.metric_date.isoformat(),
                "reference_deposits": metric.deposit_count,
            },
        )


class OffHoursUsageRule(AnomalyRule):
    """
    Deposits outside service hours (UTC).

    Service hours run from start_hour:00 to end_hour:59. Severity grows with
    the number of off-hours deposits in the window.
    """

    anomaly_type = AnomalyType.OFF_HOURS_USAGE

    def __init__(self, start_hour: int = 6, end_hour: int = 22, baseline_deposits: float = 2.0):
        self.start_hour = start_hour
        self.end_hour = end_hour
        self.baseline_deposits = baseline_deposits

    def is_off_hours(self, ts: datetime) -> bool:
        return ts.hour < self.start_hour or ts.hour > self.end_hour

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        off = [e for e in ctx.events if self.is_off_hours(e.timestamp_utc)]
        if not off:
            return None

        service_hours = f"{self.start_hour:02d}:00-{self.end_hour:02d}:59"
        return self._anomaly(
            ctx,
            trigger=off[0],
            observed=float(len(off)),
            threshold=0.0,
            baseline=self.baseline_deposits,
            description=f"{len(off)} deposits outside service hours {service_hours} UTC",
            details={
                "hours": sorted({e.timestamp_utc.hour for e in off}),
                "service_hours": service_hours,
                "event_ids": [str(e.id) for e in off],
            },
        )


class WeightOutlierRule(AnomalyRule):
    """
    A single deposit far heavier than the bin's typical deposit.

    The typical deposit weight comes from the latest DailyMetric when it has
    weight on record, otherwise from the other deposits in the window (at
    least min_events - 1 of them). A deposit fires when it exceeds
    multiplier times that reference; the heaviest offender is reported.
    """

    anomaly_type = AnomalyType.WEIGHT_OUTLIER

    def __init__(self, multiplier: float = 3.0, min_events: int = 3):
        self.multiplier = multiplier
        self.min_events = min_events

    def _reference(self, ctx: RuleContext, candidate: BinEvent) -> Optional[tuple[float, str]]:
        metric = ctx.latest_metric
        if metric is not None and metric.deposit_count > 0 and metric.total_weight_kg > 0:
            return metric.total_weight_kg / metric.deposit_count, "daily_metric"

        others = [
            e.weight_kg_delta for e in ctx.events
            if e is not candidate and (e.weight_kg_delta or 0) > 0
        ]
        if len(others) < self.min_events - 1:
            return None
        return sum(others) / len(others), "window"

    def evaluate(self, ctx: RuleContext) -> Optional[DetectedAnomaly]:
        best: Optional[tuple[float, BinEvent, float, str]] = None
        for ev in ctx.events:
            weight = ev.weight_kg_delta or 0.0
            if weight <= 0:
                continue
            ref = self._reference(ctx, ev)
            if ref is None:
                continue
            reference_kg, source = ref
            ratio = weight / reference_kg
            if ratio > self.multiplier and (best is None or ratio > best[0]):
                best = (ratio, ev, reference_kg, source)
        if best is None:
            return None

        ratio, ev, reference_kg, source = best
        threshold = reference_kg * self.multiplier
        return self._anomaly(
            ctx,
            trigger=ev,
            observed=ev.weight_kg_delta,
            threshold=round(threshold, 3),
            baseline=threshold,
            description=(
                f"{ev.weight_kg_delta:.2f} kg deposit is {ratio:.1f}x "
                f"the typical {reference_kg:.2f} kg"
            ),
            details={
                "reference_kg": round(reference_kg, 3),
                "reference_source": source,
                "multiple": round(ratio, 2),
            },
        )


def default_rules(cfg) -> list[AnomalyRule]:
    """Rule set built from settings thresholds."""
    return [
        FillRateSpikeRule(cfg.fill_spike_threshold_pct, cfg.fill_spike_baseline_pct),
        BatteryDropRule(cfg.battery_drop_threshold_pct, cfg.battery_drop_baseline_pct),
        WeightCategoryMismatchRule(cfg.mismatch_weight_baseline_kg, cfg.mismatch_items_baseline),
        UsageSurgeRule(cfg.usage_surge_multiplier, cfg.usage_surge_min_deposits),
        OffHoursUsageRule(
            cfg.off_hours_start_hour, cfg.off_hours_end_hour, cfg.off_hours_baseline_deposits
        ),
        WeightOutlierRule(cfg.weight_outlier_multiplier, cfg.weight_outlier_min_events),
    ]
