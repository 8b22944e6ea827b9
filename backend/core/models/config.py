"""Strategy and simulation configuration models.

Out-of-range values are clamped to safe bounds (with a warning) rather than
rejected, so a bad environment variable degrades the strategy instead of
taking the engine down.
"""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict, field_validator

logger = logging.getLogger(__name__)

ATR_MULTIPLIER_BOUNDS = (0.5, 5.0)
RISK_REWARD_BOUNDS = (0.5, 20.0)
MIN_PERIOD = 2
MAX_PERIOD = 500


def clamp_setting(name: str, value: float, lo: float, hi: float) -> float:
    if value < lo or value > hi:
        clamped = min(max(value, lo), hi)
        logger.warning(f"{name}={value} outside [{lo}, {hi}], clamped to {clamped}")
        return clamped
    return value


def parse_tp_ladder(text: str) -> list[tuple[float, float]]:
    """Parse "1.5:0.4,3.0:0.3" into [(1.5, 0.4), (3.0, 0.3)].

    Empty string means no ladder.
    """
    ladder: list[tuple[float, float]] = []
    text = text.strip()
    if not text:
        return ladder
    for part in text.split(","):
        r_str, _, w_str = part.strip().partition(":")
        if not w_str:
            raise ValueError(f"Invalid TP ladder entry '{part}', expected 'r_multiple:weight'")
        ladder.append((float(r_str), float(w_str)))
    return ladder


class StrategyConfig(BaseModel):
    """Signal engine parameters."""

    model_config = ConfigDict(frozen=True)

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
    bollinger_period: int = 20
    bollinger_std: float = 2.0
    momentum_period: int = 10

    # Oscillator thresholds
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    stoch_oversold: float = 20.0
    stoch_overbought: float = 80.0

    # Regime / liquidity
    min_adx: float = 20.0
    liquidity_lookback: int = 50
    min_traded_value: float = 50_000.0  # average price*volume per bar
    bearish_liquidity_multiplier: float = 1.5
    volume_surge_lookback: int = 20
    volume_surge_multiple: float = 2.0

    # Decision thresholds
    min_score: float = 70.0
    min_score_margin: float = 15.0
    min_atr_pct: float = 0.2
    max_atr_pct: float = 5.0
    min_ml_probability: float = 0.7
    untrained_ml_discount: float = 0.8

    # Risk
    atr_multiplier: float = 1.5
    risk_reward_target: float = 3.0
    tp_ladder: list[tuple[float, float]] = []  # (r_multiple, weight)

    # Cooldown between directional decisions per symbol
    cooldown_minutes: float = 10.0

    # Minimum bars before the engine will score (longest warm-up plus slack)
    min_history_bars: int = 60
    min_htf_bars: int = 30

    @field_validator(
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
        "bollinger_period",
        "momentum_period",
        "liquidity_lookback",
        "volume_surge_lookback",
    )
    @classmethod
    def _clamp_period(cls, v: int, info) -> int:
        return int(clamp_setting(info.field_name, v, MIN_PERIOD, MAX_PERIOD))

    @field_validator("atr_multiplier")
    @classmethod
    def _clamp_atr_multiplier(cls, v: float) -> float:
        return clamp_setting("atr_multiplier", v, *ATR_MULTIPLIER_BOUNDS)

    @field_validator("risk_reward_target")
    @classmethod
    def _clamp_risk_reward(cls, v: float) -> float:
        return clamp_setting("risk_reward_target", v, *RISK_REWARD_BOUNDS)

    @field_validator("min_ml_probability", "untrained_ml_discount")
    @classmethod
    def _clamp_unit(cls, v: float, info) -> float:
        return clamp_setting(info.field_name, v, 0.0, 1.0)

    @field_validator("cooldown_minutes", "min_traded_value")
    @classmethod
    def _clamp_non_negative(cls, v: float, info) -> float:
        return clamp_setting(info.field_name, v, 0.0, float("inf"))

    @field_validator("tp_ladder", mode="before")
    @classmethod
    def _parse_ladder(cls, v):
        if isinstance(v, str):
            return parse_tp_ladder(v)
        return v

    @field_validator("tp_ladder")
    @classmethod
    def _drop_bad_rungs(cls, v: list[tuple[float, float]]) -> list[tuple[float, float]]:
        kept = [(r, w) for r, w in v if r > 0 and w > 0]
        if len(kept) != len(v):
            dropped = [rung for rung in v if rung not in kept]
            logger.warning(f"tp_ladder rungs need R > 0 and weight > 0, dropped {dropped}")
        return kept

    @property
    def cooldown_ms(self) -> int:
        return int(self.cooldown_minutes * 60_000)


class SimulationConfig(BaseModel):
    """Trade simulator parameters."""

    model_config = ConfigDict(frozen=True)

    max_hold_minutes: float = 60.0
    max_bars: int = 10_000  # hard bound on candles walked per simulation
    fee_pct: float = 0.0  # per side, percent of notional
    slippage_pct: float = 0.0  # percent of price, always adverse

    @field_validator("max_hold_minutes")
    @classmethod
    def _clamp_hold(cls, v: float) -> float:
        return clamp_setting("max_hold_minutes", v, 1.0, 60.0 * 24 * 30)

    @field_validator("max_bars")
    @classmethod
    def _clamp_bars(cls, v: int) -> int:
        return int(clamp_setting("max_bars", v, 1, 1_000_000))

    @field_validator("fee_pct", "slippage_pct")
    @classmethod
    def _clamp_cost(cls, v: float, info) -> float:
        return clamp_setting(info.field_name, v, 0.0, 5.0)

    @property
    def max_hold_ms(self) -> int:
        return int(self.max_hold_minutes * 60_000)
