"""Tests for settings defaults and startup validation."""

import json

import pytest

from ecobin.config import RankTier, Settings, load_scoring_table, validate_settings
from ecobin.exceptions import ConfigurationError


class TestDefaults:
    def test_cadences(self, cfg):
        assert cfg.job_crons() == {
            "daily_metrics": "0 0 * * *",
            "insights": "*/5 * * * *",
            "anomalies": "*/10 * * * *",
            "rewards_accrual": "*/15 * * * *",
        }

    def test_scoring_table_v1(self, cfg):
        assert cfg.scoring_table.version == "v1"
        assert cfg.scoring_table.weights == {"hv": 5, "lv": 1, "org": 1}

    def test_async_url_rewrite(self):
        cfg = Settings(_env_file=None, database_url="postgresql://u:p@db/ecobin")
        assert cfg.async_database_url == "postgresql+asyncpg://u:p@db/ecobin"

    def test_defaults_validate(self, cfg):
        assert validate_settings(cfg).scoring_table.version == "v1"


class TestValidation:
    def test_invalid_cron(self):
        cfg = Settings(_env_file=None, anomalies_cron="every ten minutes")
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(cfg)
        assert exc_info.value.config_key == "anomalies"

    def test_non_positive_threshold(self):
        cfg = Settings(_env_file=None, battery_drop_baseline_pct=0)
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)

    def test_non_positive_timeout(self):
        cfg = Settings(_env_file=None, rewards_timeout_seconds=0)
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)

    def test_severity_ratios_ordered(self):
        cfg = Settings(_env_file=None, severity_medium_ratio=3.0, severity_high_ratio=2.0)
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)

    @pytest.mark.parametrize(
        "start, end",
        [(22, 6), (-1, 22), (6, 24)],
    )
    def test_service_hours_bounds(self, start, end):
        cfg = Settings(_env_file=None, off_hours_start_hour=start, off_hours_end_hour=end)
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(cfg)
        assert exc_info.value.config_key == "off_hours_start_hour"

    def test_weight_outlier_multiplier_positive(self):
        cfg = Settings(_env_file=None, weight_outlier_multiplier=0)
        with pytest.raises(ConfigurationError) as exc_info:
            validate_settings(cfg)
        assert exc_info.value.config_key == "weight_outlier_multiplier"

    def test_negative_capacity_buffer(self):
        cfg = Settings(_env_file=None, insight_capacity_buffer_pct=-5)
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)

    def test_rank_tiers_must_ascend(self):
        cfg = Settings(
            _env_file=None,
            rank_tiers=[RankTier(min_points=0, name="A"), RankTier(min_points=0, name="B")],
        )
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)

    def test_rank_tiers_start_at_zero(self):
        cfg = Settings(_env_file=None, rank_tiers=[RankTier(min_points=10, name="A")])
        with pytest.raises(ConfigurationError):
            validate_settings(cfg)


class TestScoringFile:
    def test_loads_versioned_table(self, tmp_path):
        path = tmp_path / "scoring.json"
        path.write_text(json.dumps({"version": "v2", "weights": {"hv": 6, "lv": 2, "org": 1}}))

        cfg = validate_settings(Settings(_env_file=None, rewards_scoring_file=str(path)))
        assert cfg.scoring_table.version == "v2"
        assert cfg.scoring_table.weight("hv") == 6

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_scoring_table(str(tmp_path / "missing.json"))

    def test_negative_weight_rejected(self, tmp_path):
        path = tmp_path / "scoring.json"
        path.write_text(json.dumps({"version": "bad", "weights": {"hv": -1}}))
        with pytest.raises(ConfigurationError):
            validate_settings(Settings(_env_file=None, rewards_scoring_file=str(path)))
