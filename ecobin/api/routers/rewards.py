"""
Rewards API Endpoints — balance, history and redemption for the caller.

GET  /api/analytics/rewards/summary
GET  /api/analytics/rewards/history
POST /api/analytics/rewards/redeem
"""

import uuid

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.api.deps import get_db, get_factory, get_rewards_engine, get_user_id
from ecobin.exceptions import InsufficientPoints
from ecobin.rewards.engine import RewardsEngine
from ecobin.schemas.rewards import (
    LedgerEntryOut,
    RedeemRequest,
    RedemptionResult,
    RewardsSummary,
)

router = APIRouter(prefix="/api/analytics/rewards", tags=["rewards"])


@router.get("/summary", response_model=RewardsSummary)
async def rewards_summary(
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_user_id),
    engine: RewardsEngine = Depends(get_rewards_engine),
):
    """Balance, monthly points, rank and CO2 saved."""
    return await engine.get_summary(db, user_id)


@router.get("/history", response_model=list[LedgerEntryOut])
async def rewards_history(
    limit: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    user_id: uuid.UUID = Depends(get_user_id),
    engine: RewardsEngine = Depends(get_rewards_engine),
):
    """Ledger entries, newest first."""
    return await engine.get_history(db, user_id, limit)


@router.post(
    "/redeem",
    response_model=RedemptionResult,
    responses={409: {"model": RedemptionResult, "description": "Insufficient points"}},
)
async def redeem(
    body: RedeemRequest,
    user_id: uuid.UUID = Depends(get_user_id),
    factory: async_sessionmaker[AsyncSession] = Depends(get_factory),
    engine: RewardsEngine = Depends(get_rewards_engine),
):
    """Spend points. The balance is never allowed to go negative."""
    try:
        return await engine.redeem(factory, user_id, body.reward_name, body.points_cost)
    except InsufficientPoints as e:
        result = RedemptionResult(
            status="failed",
            user_id=user_id,
            reward_name=body.reward_name,
            points_cost=body.points_cost,
            balance=e.balance,
            error="insufficient_points",
        )
        return JSONResponse(status_code=409, content=result.model_dump(mode="json"))
