"""
Usage forecast from a bin's recent DailyMetric history.

Pure: works on the rows it is given, in metric_date order, and never reads
the clock.

    peak hour:    hour with the most deposits summed over the history
    busiest day:  weekday with the most deposits
    trend:        mean daily deposits of the recent half minus the older half
    next day:     recent-half mean deposits, and weight with a capacity buffer
"""

import statistics
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional, Sequence

from ecobin.db.models import DailyMetric

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


class Trend(StrEnum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


@dataclass(frozen=True)
class UsageForecast:
    days: int
    peak_hour: Optional[int]
    peak_hour_share_pct: float
    busiest_weekday: Optional[str]
    trend: Trend
    trend_slope: float  # deposits per day, recent half minus older half
    expected_deposits: int
    expected_weight_kg: float


def _peak_hour(history: Sequence[DailyMetric]) -> tuple[Optional[int], float]:
    hourly = [0] * 24
    for m in history:
        for hour, count in enumerate(m.hourly_counts or []):
            hourly[hour] += count
    total = sum(hourly)
    if total == 0:
        return None, 0.0
    peak = max(hourly)
    # Ties resolve to the earliest hour
    return hourly.index(peak), 100.0 * peak / total


def _busiest_weekday(history: Sequence[DailyMetric]) -> Optional[str]:
    by_weekday = [0] * 7
    for m in history:
        by_weekday[m.metric_date.weekday()] += m.deposit_count
    if not any(by_weekday):
        return None
    return WEEKDAYS[by_weekday.index(max(by_weekday))]


def _trend(counts: Sequence[int], stable_pct: float) -> tuple[Trend, float]:
    if len(counts) < 2:
        return Trend.STABLE, 0.0
    half = len(counts) // 2
    older = statistics.fmean(counts[:half])
    recent = statistics.fmean(counts[half:])
    slope = recent - older
    if abs(slope) <= max(older, 1.0) * stable_pct / 100.0:
        return Trend.STABLE, slope
    return (Trend.INCREASING if slope > 0 else Trend.DECREASING), slope


def forecast_usage(
    history: Sequence[DailyMetric],
    stable_pct: float = 10.0,
    capacity_buffer_pct: float = 20.0,
) -> Optional[UsageForecast]:
    """Forecast the next day from history ordered by metric_date. None if empty."""
    if not history:
        return None

    counts = [m.deposit_count for m in history]
    weights = [m.total_weight_kg for m in history]
    recent = slice(len(history) // 2, None)
    peak_hour, share = _peak_hour(history)
    trend, slope = _trend(counts, stable_pct)

    return UsageForecast(
        days=len(history),
        peak_hour=peak_hour,
        peak_hour_share_pct=round(share, 1),
        busiest_weekday=_busiest_weekday(history),
        trend=trend,
        trend_slope=round(slope, 2),
        expected_deposits=round(statistics.fmean(counts[recent])),
        expected_weight_kg=round(
            statistics.fmean(weights[recent]) * (1 + capacity_buffer_pct / 100.0), 2
        ),
    )
