"""
EcoBin Pipeline SQLAlchemy Models.

bin_events belongs to the ingestion layer and is read-only here.
Every other table is written by exactly one job:

    daily_bin_metrics   ← Metrics Aggregator
    anomalies           ← Anomaly Detector
    bin_insights        ← Insight Generator
    rewards_ledger      ← Rewards Engine
    reward_balances     ← Rewards Engine (materialized Σ points_delta)
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ecobin.db.compat import GUID, JSONType, UTCDateTime
from ecobin.db.engine import Base
from ecobin.timeutil import utcnow


def _genuuid():
    return uuid.uuid4()


# ──────────────────────────────────────────────────────────────────────────────
# 1. Event Store (external)
# ──────────────────────────────────────────────────────────────────────────────


class BinEvent(Base):
    """One deposit transaction reported by a bin. Never mutated by the pipeline."""

    __tablename__ = "bin_events"
    __table_args__ = (
        Index("ix_bin_events_bin_ts", "bin_id", "timestamp_utc"),
        Index("ix_bin_events_ts", "timestamp_utc"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    bin_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    timestamp_utc: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    plastic_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paper_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    glass_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    organic_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    hv_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lv_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    org_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    battery_pct: Mapped[Optional[float]] = mapped_column(Float)
    fill_level_pct: Mapped[Optional[float]] = mapped_column(Float)
    weight_kg_total: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    weight_kg_delta: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    payload_json: Mapped[Optional[dict]] = mapped_column(JSONType())
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    @property
    def category_total(self) -> int:
        return (
            self.plastic_count
            + self.paper_count
            + self.metal_count
            + self.glass_count
            + self.organic_count
        )


# ──────────────────────────────────────────────────────────────────────────────
# 2. Derived tables
# ──────────────────────────────────────────────────────────────────────────────


class DailyMetric(Base):
    """Per-bin, per-UTC-day rollup. Bins without events that day have no row."""

    __tablename__ = "daily_bin_metrics"

    metric_date: Mapped[date] = mapped_column(Date, primary_key=True)
    bin_id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True)

    deposit_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    plastic_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    paper_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    metal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    glass_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    organic_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hv_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lv_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    org_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    total_weight_kg: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_fill_level_pct: Mapped[Optional[float]] = mapped_column(Float)
    min_battery_pct: Mapped[Optional[float]] = mapped_column(Float)
    peak_hour: Mapped[Optional[int]] = mapped_column(Integer)
    peak_hour_deposits: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    hourly_counts: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Anomaly(Base):
    """
    A fired detection rule. Never updated.

    (bin_id, anomaly_type, time_bucket) is the dedupe key: the same condition
    on the same bin within one cooldown bucket is stored once.
    """

    __tablename__ = "anomalies"
    __table_args__ = (
        UniqueConstraint("bin_id", "anomaly_type", "time_bucket", name="uq_anomaly_dedupe"),
        Index("ix_anomalies_bin_detected", "bin_id", "detected_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    bin_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    anomaly_type: Mapped[str] = mapped_column(String(50), nullable=False)
    severity: Mapped[str] = mapped_column(String(10), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    observed_value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    trigger_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    window_start: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_end: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    window_event_ids: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    details: Mapped[dict] = mapped_column(JSONType(), nullable=False, default=dict)
    time_bucket: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Insight(Base):
    """Generated recommendations for a bin. The newest run is flagged current."""

    __tablename__ = "bin_insights"
    __table_args__ = (
        Index("ix_bin_insights_bin_current", "bin_id", "is_current"),
        Index("ix_bin_insights_bin_generated", "bin_id", "generated_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    bin_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    insights: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    recommendations: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    categories: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    metric_date: Mapped[Optional[date]] = mapped_column(Date)
    anomaly_ids: Mapped[list] = mapped_column(JSONType(), nullable=False, default=list)
    is_current: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class RewardLedgerEntry(Base):
    """
    Append-only points ledger.

    event_id is unique: it is the exactly-once marker for accrual.
    Redemptions carry no event_id (NULLs never collide).
    """

    __tablename__ = "rewards_ledger"
    __table_args__ = (
        UniqueConstraint("event_id", name="uq_rewards_ledger_event"),
        Index("ix_rewards_ledger_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=_genuuid)
    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    event_id: Mapped[Optional[uuid.UUID]] = mapped_column(GUID())
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    points_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_name: Mapped[Optional[str]] = mapped_column(String(255))
    scoring_version: Mapped[Optional[str]] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class RewardBalance(Base):
    """Materialized running total per user, kept in step with the ledger."""

    __tablename__ = "reward_balances"
    __table_args__ = (
        CheckConstraint("total_points >= 0", name="ck_reward_balances_non_negative"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_earned: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lifetime_redeemed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)
