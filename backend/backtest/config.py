"""Backtest-specific configuration.

Independent of app/config.py: capital model and timing knobs are read
from ``BACKTEST_*`` environment variables, strategy knobs are passed in.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from backtest.resample import htf_factor
from core.models.config import StrategyConfig, clamp_setting

# 365 days of 3-minute bars
DEFAULT_BARS_PER_YEAR = 365 * 1440 / 3


class BacktestConfig(BaseModel):
    """Parameters for one backtest run."""

    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    initial_capital: float = Field(default=10_000.0, gt=0)
    position_size_pct: float = 10.0  # percent of current free cash per entry
    use_size_multiplier: bool = True
    fee_pct: float = 0.1  # per side
    slippage_pct: float = 0.05
    spread_pct: float = 0.02  # applied on entry
    warmup_bars: int = 200
    history_bars: int = 300  # primary bars handed to the engine per decision
    htf_factor: int = 20  # primary bars per HTF bar
    max_hold_bars: int | None = None
    risk_free_rate: float = 0.02
    bars_per_year: float = DEFAULT_BARS_PER_YEAR
    strategy: StrategyConfig = StrategyConfig()

    @field_validator("position_size_pct")
    @classmethod
    def _clamp_size(cls, v: float) -> float:
        return clamp_setting("position_size_pct", v, 0.0, 100.0)

    @field_validator("fee_pct", "slippage_pct", "spread_pct")
    @classmethod
    def _clamp_cost(cls, v: float, info) -> float:
        return clamp_setting(info.field_name, v, 0.0, 5.0)

    @field_validator("warmup_bars", "history_bars", "htf_factor")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        return max(v, 1)


class BacktestSettings(BaseSettings):
    """Backtest configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BACKTEST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    initial_capital: float = 10_000.0
    position_size_pct: float = 10.0
    use_size_multiplier: bool = True
    fee_pct: float = 0.1
    slippage_pct: float = 0.05
    spread_pct: float = 0.02
    warmup_bars: int = 200
    history_bars: int = 300
    primary_interval_minutes: int = 3
    htf_interval_minutes: int = 60
    max_hold_bars: int | None = None
    risk_free_rate: float = 0.02
    output_dir: str = "backtest_results"

    def to_backtest_config(
        self, symbol: str, strategy: StrategyConfig | None = None
    ) -> BacktestConfig:
        """Build the per-run config for one symbol."""
        return BacktestConfig(
            symbol=symbol,
            initial_capital=self.initial_capital,
            position_size_pct=self.position_size_pct,
            use_size_multiplier=self.use_size_multiplier,
            fee_pct=self.fee_pct,
            slippage_pct=self.slippage_pct,
            spread_pct=self.spread_pct,
            warmup_bars=self.warmup_bars,
            history_bars=self.history_bars,
            htf_factor=htf_factor(self.primary_interval_minutes, self.htf_interval_minutes),
            max_hold_bars=self.max_hold_bars,
            risk_free_rate=self.risk_free_rate,
            bars_per_year=365 * 1440 / self.primary_interval_minutes,
            strategy=strategy or StrategyConfig(),
        )


_settings: BacktestSettings | None = None


def get_backtest_settings() -> BacktestSettings:
    """Get cached backtest settings instance."""
    global _settings
    if _settings is None:
        _settings = BacktestSettings()
    return _settings
