"""
Insight templates.

Pure functions from metrics and anomalies to text. No randomness and no
clock reads: identical inputs always render identical strings.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Optional, Sequence

from ecobin.db.models import Anomaly, DailyMetric
from ecobin.insights.forecast import Trend, UsageForecast


class InsightCategory(StrEnum):
    USAGE_PREDICTION = "usage_prediction"
    OPTIMIZATION = "optimization"
    MAINTENANCE = "maintenance"
    COMPOSITION = "composition"


MAINTENANCE_ACTIONS = {
    "battery_drop": "Service or replace the battery",
    "fill_rate_spike": "Schedule an extra collection",
    "weight_category_mismatch": "Recalibrate the scale and item sensors",
    "usage_surge": "Inspect the bin for misuse or overflow",
    "off_hours_usage": "Check site access and lighting outside service hours",
    "weight_outlier": "Inspect the bin for bulky or non-recyclable dumping",
}


@dataclass
class InsightBundle:
    insights: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    metric_date: Optional[date] = None
    anomaly_ids: list[str] = field(default_factory=list)

    def add(
        self,
        category: InsightCategory,
        insight: Optional[str] = None,
        recommendation: Optional[str] = None,
    ) -> None:
        if insight:
            self.insights.append(insight)
        if recommendation:
            self.recommendations.append(recommendation)
        if category not in self.categories:
            self.categories.append(str(category))

    @property
    def is_empty(self) -> bool:
        return not self.insights and not self.recommendations


def _pct(part: float, whole: float) -> float:
    return 100.0 * part / whole if whole else 0.0


def usage_prediction(
    bundle: InsightBundle,
    metric: DailyMetric,
    high_fill_pct: float,
    forecast: Optional[UsageForecast] = None,
) -> None:
    """
    Latest day's usage plus, with a multi-day forecast, the historical peak
    hour, trend and expected load for the next day.
    """
    day = metric.metric_date.isoformat()
    bundle.add(
        InsightCategory.USAGE_PREDICTION,
        insight=(
            f"{metric.deposit_count} deposits totalling {metric.total_weight_kg:.1f} kg "
            f"on {day}"
        ),
    )

    peak_hour = metric.peak_hour
    if forecast is not None and forecast.days > 1 and forecast.peak_hour is not None:
        peak_hour = forecast.peak_hour
        bundle.add(
            InsightCategory.USAGE_PREDICTION,
            insight=(
                f"Peak usage expected around {peak_hour:02d}:00 UTC "
                f"({forecast.peak_hour_share_pct:.0f}% of deposits over the last "
                f"{forecast.days} days)"
            ),
        )
    elif metric.peak_hour is not None:
        bundle.add(
            InsightCategory.USAGE_PREDICTION,
            insight=(
                f"Peak usage expected around {metric.peak_hour:02d}:00 UTC "
                f"({metric.peak_hour_deposits} deposits in that hour on {day})"
            ),
        )

    if forecast is not None and forecast.days > 1:
        usage_forecast(bundle, forecast)

    if metric.avg_fill_level_pct is not None and metric.avg_fill_level_pct >= high_fill_pct:
        when = (
            f"before {peak_hour:02d}:00 UTC"
            if peak_hour is not None
            else "more frequently"
        )
        bundle.add(
            InsightCategory.USAGE_PREDICTION,
            insight=f"Average fill level was {metric.avg_fill_level_pct:.0f}% on {day}",
            recommendation=f"Schedule collection {when}",
        )


def usage_forecast(bundle: InsightBundle, forecast: UsageForecast) -> None:
    if forecast.trend == Trend.STABLE:
        trend = f"Deposits are stable over the last {forecast.days} days"
    else:
        trend = (
            f"Deposits are {forecast.trend} over the last {forecast.days} days "
            f"({forecast.trend_slope:+.1f} per day)"
        )
    bundle.add(
        InsightCategory.USAGE_PREDICTION,
        insight=(
            f"{trend}; about {forecast.expected_deposits} deposits and "
            f"{forecast.expected_weight_kg:.1f} kg expected tomorrow"
        ),
    )
    if forecast.busiest_weekday is not None and forecast.days >= 7:
        bundle.add(
            InsightCategory.USAGE_PREDICTION,
            insight=f"{forecast.busiest_weekday} is the busiest day",
        )
    if forecast.trend == Trend.INCREASING:
        bundle.add(
            InsightCategory.USAGE_PREDICTION,
            recommendation="Usage is rising; review the collection schedule for this bin",
        )


def optimization(
    bundle: InsightBundle,
    metric: DailyMetric,
    peer_median: Optional[float],
    low_ratio: float,
    high_ratio: float,
) -> None:
    """Compare the bin's deposits to the median of all bins on the same day."""
    if not peer_median:
        return
    ratio = metric.deposit_count / peer_median
    if ratio < low_ratio:
        bundle.add(
            InsightCategory.OPTIMIZATION,
            insight=f"Usage is {ratio:.0%} of the network median ({peer_median:g} deposits)",
            recommendation="Consider relocating this bin or promoting it locally",
        )
    elif ratio > high_ratio:
        bundle.add(
            InsightCategory.OPTIMIZATION,
            insight=f"Usage is {ratio:.0%} of the network median ({peer_median:g} deposits)",
            recommendation="Add capacity or increase collection frequency",
        )


def composition(bundle: InsightBundle, metric: DailyMetric) -> None:
    buckets = metric.hv_count + metric.lv_count + metric.org_count
    if buckets == 0:
        return
    hv = _pct(metric.hv_count, buckets)
    lv = _pct(metric.lv_count, buckets)
    org = _pct(metric.org_count, buckets)
    bundle.add(
        InsightCategory.COMPOSITION,
        insight=f"Composition: {hv:.0f}% high-value, {lv:.0f}% low-value, {org:.0f}% organic",
    )
    if hv >= 50:
        bundle.add(
            InsightCategory.COMPOSITION,
            recommendation="High-value share is strong; prioritise this bin for material recovery",
        )
    if org >= 30:
        bundle.add(
            InsightCategory.COMPOSITION,
            recommendation="Organic share is high; consider a dedicated compost stream",
        )


def maintenance(bundle: InsightBundle, open_anomalies: Sequence[Anomaly]) -> None:
    """One action per anomaly type with an open high-severity detection."""
    high_types = sorted({a.anomaly_type for a in open_anomalies if a.severity == "high"})
    for anomaly_type in high_types:
        action = MAINTENANCE_ACTIONS.get(anomaly_type, "Inspect the bin")
        bundle.add(
            InsightCategory.MAINTENANCE,
            insight=f"Open high-severity {anomaly_type.replace('_', ' ')} anomaly",
            recommendation=action,
        )


def anomaly_summary(bundle: InsightBundle, new_anomalies: Sequence[Anomaly]) -> None:
    """Summarize anomalies detected since the previous insight."""
    if not new_anomalies:
        return
    counts = Counter(a.anomaly_type for a in new_anomalies)
    parts = ", ".join(f"{n} {t.replace('_', ' ')}" for t, n in sorted(counts.items()))
    bundle.add(
        InsightCategory.MAINTENANCE,
        insight=f"{len(new_anomalies)} new anomalies since last update: {parts}",
    )
