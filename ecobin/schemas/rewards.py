"""Rewards request/response schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RedeemRequest(BaseModel):
    reward_name: str = Field(..., min_length=1, max_length=255)
    points_cost: int = Field(..., gt=0)


class RedemptionResult(BaseModel):
    status: str  # "success" | "failed"
    user_id: uuid.UUID
    reward_name: str
    points_cost: int
    balance: int
    ledger_entry_id: Optional[uuid.UUID] = None
    error: Optional[str] = None


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    event_id: Optional[uuid.UUID] = None
    reason: str
    points_delta: int
    reward_name: Optional[str] = None
    scoring_version: Optional[str] = None
    created_at: datetime


class RewardsSummary(BaseModel):
    user_id: uuid.UUID
    total_points: int
    monthly_points: int
    total_events: int
    lifetime_earned: int
    lifetime_redeemed: int
    co2_saved_kg: float
    rank: str
    next_rank: Optional[str] = None
    next_rank_points: int = 0
