"""
Tests for API startup.

Covers:
- Invalid configuration aborts the lifespan before the store is opened
- The shared RewardsEngine is built from validated settings
"""

import json

import pytest
from fastapi import FastAPI

from ecobin import main
from ecobin.api import deps
from ecobin.config import Settings
from ecobin.exceptions import ConfigurationError


@pytest.fixture
def store_calls(monkeypatch) -> list[str]:
    calls: list[str] = []

    async def fake_init_db():
        calls.append("init")

    async def fake_close_db():
        calls.append("close")

    monkeypatch.setattr(main, "init_db", fake_init_db)
    monkeypatch.setattr(main, "close_db", fake_close_db)
    monkeypatch.setattr(deps, "_rewards_engine", None)
    return calls


@pytest.fixture
def scoring_v2(tmp_path) -> str:
    path = tmp_path / "scoring.json"
    path.write_text(json.dumps({"version": "v2", "weights": {"hv": 6, "lv": 2, "org": 1}}))
    return str(path)


class TestLifespan:
    @pytest.mark.asyncio
    async def test_invalid_cron_aborts_startup(self, monkeypatch, store_calls):
        monkeypatch.setattr(main, "settings", Settings(_env_file=None, insights_cron="soon"))

        with pytest.raises(ConfigurationError) as exc_info:
            async with main.lifespan(FastAPI()):
                pass

        assert exc_info.value.config_key == "insights"
        assert store_calls == []
        assert deps._rewards_engine is None

    @pytest.mark.asyncio
    async def test_rewards_engine_uses_scoring_file(self, monkeypatch, store_calls, scoring_v2):
        monkeypatch.setattr(
            main, "settings", Settings(_env_file=None, rewards_scoring_file=scoring_v2)
        )

        async with main.lifespan(FastAPI()):
            engine = deps.get_rewards_engine()
            assert engine.table.version == "v2"
            assert engine.table.weight("hv") == 6

        assert store_calls == ["init", "close"]


class TestRewardsEngineDependency:
    def test_fallback_engine_is_validated(self, monkeypatch, scoring_v2):
        monkeypatch.setattr(deps, "_rewards_engine", None)
        monkeypatch.setattr(
            deps, "settings", Settings(_env_file=None, rewards_scoring_file=scoring_v2)
        )

        engine = deps.get_rewards_engine()
        assert engine.table.version == "v2"
        assert deps.get_rewards_engine() is engine

    def test_fallback_rejects_invalid_settings(self, monkeypatch):
        monkeypatch.setattr(deps, "_rewards_engine", None)
        monkeypatch.setattr(
            deps, "settings", Settings(_env_file=None, battery_drop_baseline_pct=0)
        )

        with pytest.raises(ConfigurationError):
            deps.get_rewards_engine()
