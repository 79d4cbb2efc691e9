"""
Analytics API Endpoints — derived per-bin records.

GET /api/analytics/insights/{bin_id}
GET /api/analytics/anomalies/{bin_id}
GET /api/analytics/metrics/{bin_id}
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ecobin.api.deps import get_db
from ecobin.db import queries
from ecobin.schemas.analytics import AnomalyOut, DailyMetricOut, InsightOut

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/insights/{bin_id}", response_model=InsightOut)
async def current_insight(bin_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    """The bin's current insight bundle."""
    insight = await queries.get_current_insight(db, bin_id)
    if insight is None:
        raise HTTPException(status_code=404, detail="No insights for this bin yet")
    return insight


@router.get("/anomalies/{bin_id}", response_model=list[AnomalyOut])
async def bin_anomalies(
    bin_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Anomalies for a bin, newest first."""
    return await queries.get_bin_anomalies(db, bin_id, limit)


@router.get("/metrics/{bin_id}", response_model=list[DailyMetricOut])
async def bin_metrics(
    bin_id: uuid.UUID,
    days: int = Query(default=30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Daily rollups for a bin over the last N days, newest first."""
    return await queries.get_bin_metrics(db, bin_id, days)
