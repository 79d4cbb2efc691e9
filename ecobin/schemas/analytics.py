"""
Analytics read schemas.

Derived records are exposed to API consumers as stored.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class DailyMetricOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    metric_date: date
    bin_id: uuid.UUID
    deposit_count: int
    plastic_count: int
    paper_count: int
    metal_count: int
    glass_count: int
    organic_count: int
    hv_count: int
    lv_count: int
    org_count: int
    total_weight_kg: float
    avg_fill_level_pct: Optional[float] = None
    min_battery_pct: Optional[float] = None
    peak_hour: Optional[int] = None
    peak_hour_deposits: int = 0
    hourly_counts: list[int] = Field(default_factory=list)
    computed_at: datetime


class AnomalyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    bin_id: uuid.UUID
    anomaly_type: str
    severity: str  # "low" | "medium" | "high"
    description: str
    observed_value: float
    threshold: float
    trigger_event_id: Optional[uuid.UUID] = None
    window_start: datetime
    window_end: datetime
    window_event_ids: list[str] = Field(default_factory=list)
    details: dict = Field(default_factory=dict)
    detected_at: datetime


class InsightOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    bin_id: uuid.UUID
    generated_at: datetime
    insights: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    metric_date: Optional[date] = None
    anomaly_ids: list[str] = Field(default_factory=list)
    is_current: bool
