"""Typed indicator references for configurable conditions.

An ``IndicatorRef`` names one indicator output (kind + period). A set of
refs is resolved into an ``IndicatorTable`` once per evaluation pass, so
conditions look values up by ref instead of building string keys.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

import numpy as np

from core.indicators import indicators as ind
from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig


class IndicatorKind(str, Enum):
    """Closed set of indicator outputs a condition may reference."""

    PRICE = "price"
    SMA = "sma"
    EMA = "ema"
    RSI = "rsi"
    MACD = "macd"
    MACD_SIGNAL = "macd_signal"
    MACD_HISTOGRAM = "macd_histogram"
    STOCH_K = "stoch_k"
    STOCH_D = "stoch_d"
    ATR = "atr"
    BB_UPPER = "bb_upper"
    BB_MIDDLE = "bb_middle"
    BB_LOWER = "bb_lower"
    OBV = "obv"
    VWMA = "vwma"
    VWAP = "vwap"
    ADX = "adx"
    PLUS_DI = "plus_di"
    MINUS_DI = "minus_di"
    MOMENTUM = "momentum"

    @property
    def takes_period(self) -> bool:
        return self not in _PERIODLESS


_PERIODLESS = frozenset(
    {
        IndicatorKind.PRICE,
        IndicatorKind.MACD,
        IndicatorKind.MACD_SIGNAL,
        IndicatorKind.MACD_HISTOGRAM,
        IndicatorKind.OBV,
    }
)


@dataclass(frozen=True, slots=True)
class IndicatorRef:
    """One indicator output, e.g. IndicatorRef(IndicatorKind.RSI, 14)."""

    kind: IndicatorKind
    period: int | None = None

    def __post_init__(self) -> None:
        if self.kind.takes_period:
            if self.period is None or self.period < 1:
                raise ValueError(f"{self.kind.value} requires a positive period")
        elif self.period is not None:
            raise ValueError(f"{self.kind.value} does not take a period")

    def __str__(self) -> str:
        if self.period is None:
            return self.kind.value.upper()
        return f"{self.kind.value.upper()}({self.period})"


# Families share one computation (e.g. MACD line/signal/histogram)
_FAMILY: dict[IndicatorKind, str] = {
    IndicatorKind.MACD: "macd",
    IndicatorKind.MACD_SIGNAL: "macd",
    IndicatorKind.MACD_HISTOGRAM: "macd",
    IndicatorKind.STOCH_K: "stoch",
    IndicatorKind.STOCH_D: "stoch",
    IndicatorKind.BB_UPPER: "bb",
    IndicatorKind.BB_MIDDLE: "bb",
    IndicatorKind.BB_LOWER: "bb",
    IndicatorKind.ADX: "adx",
    IndicatorKind.PLUS_DI: "adx",
    IndicatorKind.MINUS_DI: "adx",
}


def _compute_family(
    family: str, period: int | None, s: OhlcvSeries, cfg: StrategyConfig
) -> dict[IndicatorKind, np.ndarray]:
    if family == "macd":
        res = ind.macd(s.closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
        return {
            IndicatorKind.MACD: res.macd,
            IndicatorKind.MACD_SIGNAL: res.signal,
            IndicatorKind.MACD_HISTOGRAM: res.histogram,
        }
    if family == "stoch":
        res = ind.stochastic(s.highs, s.lows, s.closes, period, cfg.stoch_d_period)
        return {IndicatorKind.STOCH_K: res.k, IndicatorKind.STOCH_D: res.d}
    if family == "bb":
        res = ind.bollinger_bands(s.closes, period, cfg.bollinger_std)
        return {
            IndicatorKind.BB_UPPER: res.upper,
            IndicatorKind.BB_MIDDLE: res.middle,
            IndicatorKind.BB_LOWER: res.lower,
        }
    if family == "adx":
        res = ind.adx(s.highs, s.lows, s.closes, period)
        return {
            IndicatorKind.ADX: res.adx,
            IndicatorKind.PLUS_DI: res.plus_di,
            IndicatorKind.MINUS_DI: res.minus_di,
        }
    raise KeyError(f"Unknown indicator family: {family}")


_SINGLE: dict[IndicatorKind, Callable[[OhlcvSeries, int | None], np.ndarray]] = {
    IndicatorKind.PRICE: lambda s, p: s.closes,
    IndicatorKind.SMA: lambda s, p: ind.sma(s.closes, p),
    IndicatorKind.EMA: lambda s, p: ind.ema(s.closes, p),
    IndicatorKind.RSI: lambda s, p: ind.rsi(s.closes, p),
    IndicatorKind.ATR: lambda s, p: ind.atr(s.highs, s.lows, s.closes, p),
    IndicatorKind.OBV: lambda s, p: ind.obv(s.closes, s.volumes),
    IndicatorKind.VWMA: lambda s, p: ind.vwma(s.closes, s.volumes, p),
    IndicatorKind.VWAP: lambda s, p: ind.vwap(s.highs, s.lows, s.closes, s.volumes, p),
    IndicatorKind.MOMENTUM: lambda s, p: ind.momentum(s.closes, p),
}


class IndicatorTable:
    """Indicator series resolved once for a fixed set of refs."""

    def __init__(self, series: dict[IndicatorRef, np.ndarray]):
        self._series = series

    @classmethod
    def build(
        cls,
        data: OhlcvSeries,
        refs: Iterable[IndicatorRef],
        config: StrategyConfig | None = None,
    ) -> "IndicatorTable":
        """Compute each distinct ref (and each shared family) exactly once."""
        cfg = config or StrategyConfig()
        resolved: dict[IndicatorRef, np.ndarray] = {}
        families: dict[tuple[str, int | None], dict[IndicatorKind, np.ndarray]] = {}

        for ref in refs:
            if ref in resolved:
                continue
            family = _FAMILY.get(ref.kind)
            if family is None:
                resolved[ref] = _SINGLE[ref.kind](data, ref.period)
                continue
            key = (family, ref.period)
            if key not in families:
                families[key] = _compute_family(family, ref.period, data, cfg)
            resolved[ref] = families[key][ref.kind]

        return cls(resolved)

    def __contains__(self, ref: IndicatorRef) -> bool:
        return ref in self._series

    def __len__(self) -> int:
        return len(self._series)

    def series(self, ref: IndicatorRef) -> np.ndarray:
        return self._series[ref]

    def value(self, ref: IndicatorRef, offset: int = 0) -> float | None:
        """Value ``offset`` bars back from the latest; None if unavailable."""
        arr = self._series.get(ref)
        if arr is None or len(arr) <= offset:
            return None
        v = float(arr[len(arr) - 1 - offset])
        return v if math.isfinite(v) else None
