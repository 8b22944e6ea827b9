"""Tests for strategy / simulation configuration and the settings layer."""

import logging

import pytest
from pydantic import ValidationError

from app.config import Settings
from app.logging_config import LOG_FORMAT, configure_logging
from app.strategy_file import load_simulation_config, load_strategy_config
from core.models.config import SimulationConfig, StrategyConfig, parse_tp_ladder


class TestStrategyConfig:
    def test_defaults(self):
        config = StrategyConfig()
        assert config.ema_period == 20
        assert config.atr_period == 10
        assert config.min_score == 70.0
        assert config.min_score_margin == 15.0
        assert config.cooldown_ms == 600_000
        assert config.tp_ladder == []

    def test_atr_multiplier_clamped(self, caplog):
        config = StrategyConfig(atr_multiplier=10.0)
        assert config.atr_multiplier == 5.0
        assert "atr_multiplier=10.0 outside" in caplog.text

    def test_risk_reward_clamped(self):
        assert StrategyConfig(risk_reward_target=0.1).risk_reward_target == 0.5
        assert StrategyConfig(risk_reward_target=50).risk_reward_target == 20.0

    def test_period_clamped(self):
        assert StrategyConfig(rsi_period=1).rsi_period == 2

    def test_ladder_from_string(self):
        config = StrategyConfig(tp_ladder="1.5:0.4, 3.0:0.3,6.0:0.3")
        assert config.tp_ladder == [(1.5, 0.4), (3.0, 0.3), (6.0, 0.3)]

    def test_bad_ladder(self):
        with pytest.raises(ValidationError):
            StrategyConfig(tp_ladder="1.5")

    def test_non_positive_rungs_dropped(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = StrategyConfig(tp_ladder="1.5:0.5,3.0:0,-1:0.2")
        assert config.tp_ladder == [(1.5, 0.5)]
        assert "dropped" in caplog.text

    def test_parse_empty_ladder(self):
        assert parse_tp_ladder("  ") == []

    def test_frozen(self):
        with pytest.raises(ValidationError):
            StrategyConfig().min_score = 10


class TestSimulationConfig:
    def test_defaults(self):
        config = SimulationConfig()
        assert config.max_hold_ms == 60 * 60_000
        assert config.fee_pct == 0.0

    def test_costs_clamped(self):
        config = SimulationConfig(fee_pct=-0.5, slippage_pct=9.0)
        assert config.fee_pct == 0.0
        assert config.slippage_pct == 5.0


class TestSettings:
    def test_to_strategy_config(self):
        settings = Settings(_env_file=None, min_score=80, tp_ladder="2.0:0.5")
        config = settings.to_strategy_config()
        assert config.min_score == 80.0
        assert config.tp_ladder == [(2.0, 0.5)]

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("COOLDOWN_MINUTES", "5")
        settings = Settings(_env_file=None)
        assert settings.to_strategy_config().cooldown_ms == 300_000

    def test_to_simulation_config(self):
        settings = Settings(_env_file=None, max_hold_minutes=30, sim_fee_pct=0.04)
        config = settings.to_simulation_config()
        assert config.max_hold_minutes == 30.0
        assert config.fee_pct == pytest.approx(0.04)

    def test_overflow_policy_validated(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, overflow_policy="block")


class TestStrategyFile:
    def test_missing_file_uses_settings(self, tmp_path):
        settings = Settings(_env_file=None, min_score=75)
        config = load_strategy_config(tmp_path / "strategy.yaml", settings=settings)
        assert config.min_score == 75.0

    def test_yaml_overrides(self, tmp_path, caplog):
        path = tmp_path / "strategy.yaml"
        path.write_text(
            "strategy:\n"
            "  min_score: 90\n"
            "  tp_ladder: '1.5:0.5,3.0:0.5'\n"
            "  not_a_setting: 1\n"
            "simulation:\n"
            "  max_hold_minutes: 120\n"
        )
        settings = Settings(_env_file=None)

        config = load_strategy_config(path, settings=settings)
        assert config.min_score == 90.0
        assert config.tp_ladder == [(1.5, 0.5), (3.0, 0.5)]
        assert "not_a_setting" in caplog.text

        sim = load_simulation_config(path, settings=settings)
        assert sim.max_hold_minutes == 120.0

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "strategy.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError):
            load_strategy_config(path, settings=Settings(_env_file=None))


class TestLogging:
    def test_configure_level(self):
        configure_logging("debug")
        assert logging.getLogger().level == logging.DEBUG
        configure_logging("INFO")
        assert logging.getLogger().level == logging.INFO

    def test_unknown_level_defaults_to_info(self):
        configure_logging("chatty")
        assert logging.getLogger().level == logging.INFO

    def test_format(self):
        assert LOG_FORMAT == "%(asctime)s - %(levelname)s - %(message)s"
