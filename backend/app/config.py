"""Application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from core.models.config import SimulationConfig, StrategyConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Indicator periods
    ema_period: int = 20
    htf_ema_period: int = 50
    vwma_period: int = 20
    vwap_period: int = 20
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    stoch_k_period: int = 14
    stoch_d_period: int = 3
    atr_period: int = 10
    adx_period: int = 14

    # Decision thresholds
    min_adx: float = 20.0
    min_score: float = 70.0
    min_score_margin: float = 15.0
    min_atr_pct: float = 0.2
    max_atr_pct: float = 5.0
    min_ml_probability: float = 0.7
    untrained_ml_discount: float = 0.8
    min_traded_value: float = 50_000.0

    # Risk
    atr_multiplier: float = 1.5
    risk_reward_target: float = 3.0
    tp_ladder: str = ""  # "1.5:0.4,3.0:0.3,6.0:0.3"
    cooldown_minutes: float = 10.0

    # Simulation
    max_hold_minutes: float = 60.0
    sim_max_bars: int = 10_000
    sim_fee_pct: float = 0.0
    sim_slippage_pct: float = 0.0

    # Simulation worker pool
    pool_workers: int = 4
    pool_queue_size: int = 1000
    overflow_policy: Literal["reject", "drop_oldest"] = "reject"

    def to_strategy_config(self, **overrides) -> StrategyConfig:
        """Build the engine config, with optional per-field overrides."""
        fields = {
            name: getattr(self, name)
            for name in (
                "ema_period",
                "htf_ema_period",
                "vwma_period",
                "vwap_period",
                "rsi_period",
                "macd_fast",
                "macd_slow",
                "macd_signal",
                "stoch_k_period",
                "stoch_d_period",
                "atr_period",
                "adx_period",
                "min_adx",
                "min_score",
                "min_score_margin",
                "min_atr_pct",
                "max_atr_pct",
                "min_ml_probability",
                "untrained_ml_discount",
                "min_traded_value",
                "atr_multiplier",
                "risk_reward_target",
                "tp_ladder",
                "cooldown_minutes",
            )
        }
        fields.update(overrides)
        return StrategyConfig(**fields)

    def to_simulation_config(self) -> SimulationConfig:
        return SimulationConfig(
            max_hold_minutes=self.max_hold_minutes,
            max_bars=self.sim_max_bars,
            fee_pct=self.sim_fee_pct,
            slippage_pct=self.sim_slippage_pct,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
