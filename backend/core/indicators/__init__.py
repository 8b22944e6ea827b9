"""Technical indicators (pure math, no I/O)."""

from core.indicators.indicators import (
    BEARISH_ENGULFING,
    BULLISH_ENGULFING,
    BollingerBands,
    DirectionalIndex,
    IndicatorCalculator,
    IndicatorSnapshot,
    InputError,
    MacdResult,
    StochasticResult,
    adx,
    atr,
    bollinger_bandwidth,
    bollinger_bands,
    detect_engulfing,
    ema,
    last_finite,
    macd,
    momentum,
    obv,
    percent_b,
    rsi,
    session_vwap,
    sma,
    stochastic,
    true_range,
    vwap,
    vwma,
)
from core.indicators.kinds import IndicatorKind, IndicatorRef, IndicatorTable

__all__ = [
    "BEARISH_ENGULFING",
    "BULLISH_ENGULFING",
    "BollingerBands",
    "DirectionalIndex",
    "IndicatorCalculator",
    "IndicatorSnapshot",
    "InputError",
    "MacdResult",
    "StochasticResult",
    "adx",
    "atr",
    "bollinger_bandwidth",
    "bollinger_bands",
    "detect_engulfing",
    "ema",
    "last_finite",
    "macd",
    "momentum",
    "obv",
    "percent_b",
    "rsi",
    "session_vwap",
    "sma",
    "stochastic",
    "true_range",
    "vwap",
    "vwma",
    "IndicatorKind",
    "IndicatorRef",
    "IndicatorTable",
]
