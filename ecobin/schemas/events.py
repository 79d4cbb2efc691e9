"""
BinEvent record shape at the ingestion boundary.

The ingestion layer validates events before they reach bin_events; the
pipeline relies on these invariants and never repairs data.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ecobin.timeutil import to_naive_utc


class CategoryCounts(BaseModel):
    plastic: int = Field(default=0, ge=0)
    paper: int = Field(default=0, ge=0)
    metal: int = Field(default=0, ge=0)
    glass: int = Field(default=0, ge=0)
    organic: int = Field(default=0, ge=0)


class BinEventRecord(BaseModel):
    """One deposit transaction as reported by a bin."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    bin_id: uuid.UUID
    user_id: Optional[uuid.UUID] = None
    timestamp_utc: datetime
    categories: CategoryCounts = Field(default_factory=CategoryCounts)
    hv_count: int = Field(default=0, ge=0)
    lv_count: int = Field(default=0, ge=0)
    org_count: int = Field(default=0, ge=0)
    battery_pct: Optional[float] = Field(default=None, ge=0, le=100)
    fill_level_pct: Optional[float] = Field(default=None, ge=0, le=100)
    weight_kg_total: float = Field(default=0.0, ge=0)
    weight_kg_delta: float = 0.0
    payload_json: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _delta_within_total(self) -> "BinEventRecord":
        if self.weight_kg_delta > self.weight_kg_total:
            raise ValueError("weight_kg_delta must not exceed weight_kg_total")
        return self

    def to_row(self) -> dict[str, Any]:
        """Column mapping for bin_events."""
        return {
            "id": self.id,
            "bin_id": self.bin_id,
            "user_id": self.user_id,
            "timestamp_utc": to_naive_utc(self.timestamp_utc),
            "plastic_count": self.categories.plastic,
            "paper_count": self.categories.paper,
            "metal_count": self.categories.metal,
            "glass_count": self.categories.glass,
            "organic_count": self.categories.organic,
            "hv_count": self.hv_count,
            "lv_count": self.lv_count,
            "org_count": self.org_count,
            "battery_pct": self.battery_pct,
            "fill_level_pct": self.fill_level_pct,
            "weight_kg_total": self.weight_kg_total,
            "weight_kg_delta": self.weight_kg_delta,
            "payload_json": self.payload_json,
        }
