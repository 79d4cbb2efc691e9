"""
Test fixtures for EcoBin pipeline tests.

Provides:
- File-backed SQLite database per test (aiosqlite), all tables created
- Session factory bound to it
- Settings isolated from the environment and .env
- BinEvent factory and a helper to store events
"""

import uuid
from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import ecobin.db.models  # noqa: F401 register all models
from ecobin.config import Settings
from ecobin.db.engine import Base
from ecobin.db.models import BinEvent

NOW = datetime(2024, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """A fresh database per test with all tables."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ecobin.db'}", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def cfg() -> Settings:
    return Settings(_env_file=None)


# ── Event helpers ────────────────────────────────────────────────────────


def _make_event(
    bin_id: Optional[uuid.UUID] = None,
    ts: Optional[datetime] = None,
    user_id: Optional[uuid.UUID] = None,
    hv: int = 0,
    lv: int = 0,
    org: int = 0,
    plastic: int = 0,
    paper: int = 0,
    metal: int = 0,
    glass: int = 0,
    organic: int = 0,
    battery: Optional[float] = None,
    fill: Optional[float] = None,
    weight_total: float = 0.0,
    weight_delta: float = 0.0,
) -> BinEvent:
    return BinEvent(
        id=uuid.uuid4(),
        bin_id=bin_id or uuid.uuid4(),
        user_id=user_id,
        timestamp_utc=ts or NOW,
        plastic_count=plastic,
        paper_count=paper,
        metal_count=metal,
        glass_count=glass,
        organic_count=organic,
        hv_count=hv,
        lv_count=lv,
        org_count=org,
        battery_pct=battery,
        fill_level_pct=fill,
        weight_kg_total=weight_total,
        weight_kg_delta=weight_delta,
        payload_json={},
        created_at=NOW,
    )


@pytest.fixture
def make_event():
    """Build an unsaved BinEvent with every column set."""
    return _make_event


@pytest_asyncio.fixture
async def store(session_factory):
    """Persist ORM objects in one committed transaction."""

    async def _store(*objects):
        async with session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects

    return _store
