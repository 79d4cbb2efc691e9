"""
FastAPI dependencies for API routes.

Caller identity comes from the X-User-Id header, set by the gateway that
authenticates the user in front of this service.
"""

import uuid
from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ecobin.config import settings, validate_settings
from ecobin.db.engine import get_session_factory, session_scope
from ecobin.rewards.engine import RewardsEngine

_rewards_engine: Optional[RewardsEngine] = None


def get_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


async def get_db(
    factory: async_sessionmaker[AsyncSession] = Depends(get_factory),
) -> AsyncGenerator[AsyncSession, None]:
    """Provide an async DB session: commit on success, rollback on error."""
    async with session_scope(factory) as session:
        yield session


def set_rewards_engine(engine: RewardsEngine) -> None:
    global _rewards_engine
    _rewards_engine = engine


def get_rewards_engine() -> RewardsEngine:
    """One engine per process so per-user redemption locks are shared."""
    global _rewards_engine
    if _rewards_engine is None:
        _rewards_engine = RewardsEngine(validate_settings(settings))
    return _rewards_engine


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> uuid.UUID:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing user context")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-User-Id header")
