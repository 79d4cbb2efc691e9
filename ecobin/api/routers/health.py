"""Liveness and readiness checks."""

import asyncio

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.api.deps import get_factory
from ecobin.config import settings

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Liveness check. Does not touch dependencies."""
    return {"status": "ok", "version": settings.app_version, "service": "ecobin-pipeline"}


@router.get("/ready")
async def readiness(factory: async_sessionmaker[AsyncSession] = Depends(get_factory)):
    """Readiness check. 503 when the database cannot be reached."""
    try:
        async with factory() as session:
            await asyncio.wait_for(session.execute(text("SELECT 1")), timeout=5)
    except Exception as e:
        logger.warning("readiness_check_failed", error=str(e))
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": "unavailable"})
    return {"status": "ok", "database": "ok"}
