"""Market regime and liquidity classification.

Turns indicator readings into a TrendContext: whether the higher timeframe
is trending and in which direction, whether the latest bar traded on a
volume surge, the VWMA slope and the last candle pattern. A context that
fails the liquidity floor is neutral, which short-circuits scoring.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np
from pydantic import BaseModel, ConfigDict

from core.indicators.indicators import (
    BEARISH_ENGULFING,
    BULLISH_ENGULFING,
    IndicatorSnapshot,
)
from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig

logger = logging.getLogger(__name__)


class TrendBias(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


class CandlePattern(str, Enum):
    BULLISH_ENGULFING = "bullish_engulfing"
    BEARISH_ENGULFING = "bearish_engulfing"
    NONE = "none"


class TrendContext(BaseModel):
    """Regime snapshot for the latest bar."""

    model_config = ConfigDict(frozen=True)

    is_trending: bool = False
    trend_bias: TrendBias = TrendBias.NEUTRAL
    has_volume_surge: bool = False
    vwma_falling: bool = False
    last_pattern: CandlePattern = CandlePattern.NONE
    avg_traded_value: float = 0.0
    liquidity_floor: float = 0.0
    has_liquidity: bool = False

    @property
    def is_neutral(self) -> bool:
        return self.trend_bias == TrendBias.NEUTRAL

    @classmethod
    def neutral(cls, **kwargs) -> "TrendContext":
        return cls(**kwargs)


def average_traded_value(series: OhlcvSeries, lookback: int) -> float:
    """Average volume times average close over the last ``lookback`` bars."""
    if len(series) == 0:
        return 0.0
    vols = series.volumes[-lookback:]
    closes = series.closes[-lookback:]
    return float(vols.mean() * closes.mean())


def has_volume_surge(series: OhlcvSeries, lookback: int, multiple: float) -> bool:
    """Latest bar's close*volume exceeds ``multiple`` x the trailing average.

    The trailing average covers the ``lookback`` bars before the latest one.
    """
    if len(series) < lookback + 1:
        return False
    traded = series.closes * series.volumes
    trailing = float(np.mean(traded[-lookback - 1:-1]))
    return float(traded[-1]) > trailing * multiple


class TrendContextAnalyzer:
    """Classify regime, direction and liquidity from indicator readings."""

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def bias(self, snap: IndicatorSnapshot) -> TrendBias:
        """HTF ADX above threshold picks the dominant DI; otherwise neutral."""
        if snap.htf_adx > self.config.min_adx:
            if snap.htf_plus_di > snap.htf_minus_di:
                return TrendBias.BULLISH
            if snap.htf_minus_di > snap.htf_plus_di:
                return TrendBias.BEARISH
        return TrendBias.NEUTRAL

    def analyze(self, symbol: str, primary: OhlcvSeries, snap: IndicatorSnapshot) -> TrendContext:
        """Build the TrendContext for the latest primary bar.

        Args:
            symbol: Instrument (for logging only)
            primary: Primary-timeframe history
            snap: Indicator readings for the same history

        Returns:
            TrendContext; neutral when liquidity is below the floor
        """
        cfg = self.config
        bias = self.bias(snap)

        avg_value = average_traded_value(primary, cfg.liquidity_lookback)
        floor = cfg.min_traded_value
        if bias == TrendBias.BEARISH:
            floor *= cfg.bearish_liquidity_multiplier

        if avg_value < floor:
            logger.warning(
                f"Low liquidity {symbol}: {avg_value:.0f} < {floor:.0f} (trend={bias.value})"
            )
            return TrendContext.neutral(avg_traded_value=avg_value, liquidity_floor=floor)

        if snap.engulfing == BULLISH_ENGULFING:
            pattern = CandlePattern.BULLISH_ENGULFING
        elif snap.engulfing == BEARISH_ENGULFING:
            pattern = CandlePattern.BEARISH_ENGULFING
        else:
            pattern = CandlePattern.NONE

        context = TrendContext(
            is_trending=bias != TrendBias.NEUTRAL,
            trend_bias=bias,
            has_volume_surge=has_volume_surge(
                primary, cfg.volume_surge_lookback, cfg.volume_surge_multiple
            ),
            vwma_falling=snap.vwma < snap.prev_vwma,
            last_pattern=pattern,
            avg_traded_value=avg_value,
            liquidity_floor=floor,
            has_liquidity=True,
        )
        logger.debug(
            "%s trend: adx=%.2f +di=%.2f -di=%.2f bias=%s surge=%s",
            symbol,
            snap.htf_adx,
            snap.htf_plus_di,
            snap.htf_minus_di,
            bias.value,
            context.has_volume_surge,
        )
        return context
