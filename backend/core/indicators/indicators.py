"""Technical indicators for signal generation.

Every function takes float64 arrays and returns a numpy array aligned to
the TAIL of its input: element ``-1`` always belongs to the last input bar,
and the output length is ``len(input) - warm_up``. Inputs shorter than the
period yield an empty array, never a NaN-padded one.

Multi-array indicators raise InputError when the arrays differ in length.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import NamedTuple, Sequence

import numpy as np

from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig

ArrayLike = Sequence[float] | np.ndarray

_EMPTY = np.empty(0, dtype=np.float64)


class InputError(ValueError):
    """Indicator inputs are structurally invalid (length mismatch)."""


class MacdResult(NamedTuple):
    macd: np.ndarray
    signal: np.ndarray
    histogram: np.ndarray


class StochasticResult(NamedTuple):
    k: np.ndarray
    d: np.ndarray


class BollingerBands(NamedTuple):
    upper: np.ndarray
    middle: np.ndarray
    lower: np.ndarray


class DirectionalIndex(NamedTuple):
    adx: np.ndarray
    plus_di: np.ndarray
    minus_di: np.ndarray


# =============================================================================
# Helpers
# =============================================================================

def _as_array(values: ArrayLike) -> np.ndarray:
    return np.asarray(values, dtype=np.float64)


def _check_lengths(*arrays: np.ndarray) -> int:
    n = len(arrays[0])
    for arr in arrays[1:]:
        if len(arr) != n:
            raise InputError(
                f"Input length mismatch: {[len(a) for a in arrays]}"
            )
    return n


def _rolling_sum(arr: np.ndarray, period: int) -> np.ndarray:
    """Sum of each full window, length len(arr) - period + 1."""
    windows = np.lib.stride_tricks.sliding_window_view(arr, period)
    return windows.sum(axis=1)


def _wilder_smooth(values: np.ndarray, period: int) -> np.ndarray:
    """Wilder RMA seeded with the simple mean of the first ``period`` values."""
    out = np.empty(len(values) - period + 1, dtype=np.float64)
    out[0] = values[:period].mean()
    for i in range(1, len(out)):
        out[i] = (out[i - 1] * (period - 1) + values[period - 1 + i]) / period
    return out


def last_finite(values: np.ndarray, default: float = 0.0, offset: int = 0) -> float:
    """Latest finite value at or before ``len(values) - 1 - offset``.

    NaN or inf on the most recent bar falls back to the nearest valid prior
    value; if none exists the default is returned.
    """
    for i in range(len(values) - 1 - offset, -1, -1):
        v = float(values[i])
        if math.isfinite(v):
            return v
    return default


# =============================================================================
# Moving averages
# =============================================================================

def sma(values: ArrayLike, period: int) -> np.ndarray:
    """
    Calculate Simple Moving Average.

    Args:
        values: Sequence of price values
        period: SMA period

    Returns:
        Array of length len(values) - period + 1
    """
    arr = _as_array(values)
    if len(arr) < period:
        return _EMPTY.copy()
    return _rolling_sum(arr, period) / period


def ema(values: ArrayLike, period: int) -> np.ndarray:
    """
    Calculate Exponential Moving Average.

    Seeded with the SMA of the first ``period`` values, then smoothed with
    multiplier 2 / (period + 1).

    Args:
        values: Sequence of price values
        period: EMA period

    Returns:
        Array of length len(values) - period + 1
    """
    arr = _as_array(values)
    if len(arr) < period:
        return _EMPTY.copy()

    multiplier = 2.0 / (period + 1)
    out = np.empty(len(arr) - period + 1, dtype=np.float64)
    out[0] = arr[:period].mean()
    for i in range(1, len(out)):
        out[i] = arr[period - 1 + i] * multiplier + out[i - 1] * (1 - multiplier)
    return out


def vwma(closes: ArrayLike, volumes: ArrayLike, period: int) -> np.ndarray:
    """
    Calculate Volume Weighted Moving Average.

    sum(close * volume) / sum(volume) over each window; a window with zero
    total volume yields 0.

    Returns:
        Array of length len(closes) - period + 1
    """
    c = _as_array(closes)
    v = _as_array(volumes)
    n = _check_lengths(c, v)
    if n < period:
        return _EMPTY.copy()

    pv = _rolling_sum(c * v, period)
    vol = _rolling_sum(v, period)
    out = np.zeros_like(pv)
    np.divide(pv, vol, out=out, where=vol > 0)
    return out


def vwap(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    volumes: ArrayLike,
    period: int,
) -> np.ndarray:
    """
    Calculate rolling-window VWAP on typical price (h + l + c) / 3.

    The engine compares this against VWMA over the same horizon, so both use
    a sliding window rather than an ever-growing cumulative sum. Zero-volume
    windows yield 0, same as VWMA.

    Returns:
        Array of length len(closes) - period + 1
    """
    h, l, c, v = (_as_array(x) for x in (highs, lows, closes, volumes))
    n = _check_lengths(h, l, c, v)
    if n < period:
        return _EMPTY.copy()

    typical = (h + l + c) / 3.0
    pv = _rolling_sum(typical * v, period)
    vol = _rolling_sum(v, period)
    out = np.zeros_like(pv)
    np.divide(pv, vol, out=out, where=vol > 0)
    return out


def session_vwap(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    volumes: ArrayLike,
) -> np.ndarray:
    """
    Calculate cumulative VWAP from the first bar of the input.

    Note: this never resets; slice the input at a session boundary to get a
    per-session VWAP. Bars before any volume has traded return the close.
    """
    h, l, c, v = (_as_array(x) for x in (highs, lows, closes, volumes))
    _check_lengths(h, l, c, v)
    typical = (h + l + c) / 3.0
    cum_pv = np.cumsum(typical * v)
    cum_vol = np.cumsum(v)
    out = c.copy()
    np.divide(cum_pv, cum_vol, out=out, where=cum_vol > 0)
    return out


# =============================================================================
# Oscillators
# =============================================================================

def rsi(closes: ArrayLike, period: int = 14) -> np.ndarray:
    """
    Calculate Relative Strength Index with Wilder smoothing.

    Returns:
        Array of length len(closes) - period (empty if fewer than period + 1 bars)
    """
    c = _as_array(closes)
    if len(c) < period + 1:
        return _EMPTY.copy()

    deltas = np.diff(c)
    gains = _wilder_smooth(np.where(deltas > 0, deltas, 0.0), period)
    losses = _wilder_smooth(np.where(deltas < 0, -deltas, 0.0), period)

    out = np.full_like(gains, 50.0)
    only_gains = (losses == 0) & (gains > 0)
    out[only_gains] = 100.0
    mixed = losses > 0
    rs = gains[mixed] / losses[mixed]
    out[mixed] = 100.0 - 100.0 / (1.0 + rs)
    return out


def macd(
    closes: ArrayLike,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> MacdResult:
    """
    Calculate MACD line, signal line and histogram.

    All three arrays share the same length: len(closes) - slow - signal + 2.
    """
    c = _as_array(closes)
    if len(c) < slow + signal - 1:
        return MacdResult(_EMPTY.copy(), _EMPTY.copy(), _EMPTY.copy())

    fast_ema = ema(c, fast)
    slow_ema = ema(c, slow)
    line = fast_ema[-len(slow_ema):] - slow_ema
    signal_line = ema(line, signal)
    line = line[-len(signal_line):]
    return MacdResult(line, signal_line, line - signal_line)


def stochastic(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    k_period: int = 14,
    d_period: int = 3,
) -> StochasticResult:
    """
    Calculate Stochastic %K and its SMA %D.

    A flat window (highest == lowest) yields %K = 50.

    Returns:
        StochasticResult with both arrays of length n - k_period - d_period + 2
    """
    h, l, c = (_as_array(x) for x in (highs, lows, closes))
    n = _check_lengths(h, l, c)
    if n < k_period + d_period - 1:
        return StochasticResult(_EMPTY.copy(), _EMPTY.copy())

    hh = np.lib.stride_tricks.sliding_window_view(h, k_period).max(axis=1)
    ll = np.lib.stride_tricks.sliding_window_view(l, k_period).min(axis=1)
    span = hh - ll
    k = np.full_like(span, 50.0)
    np.divide((c[k_period - 1:] - ll) * 100.0, span, out=k, where=span > 0)
    d = sma(k, d_period)
    return StochasticResult(k[-len(d):], d)


def momentum(closes: ArrayLike, period: int = 10) -> np.ndarray:
    """
    Calculate momentum: close[i] - close[i - period].

    Returns:
        Array of length len(closes) - period
    """
    c = _as_array(closes)
    if len(c) <= period:
        return _EMPTY.copy()
    return c[period:] - c[:-period]


# =============================================================================
# Volatility
# =============================================================================

def true_range(highs: ArrayLike, lows: ArrayLike, closes: ArrayLike) -> np.ndarray:
    """
    Calculate True Range.

    TR = max(high - low, abs(high - prev_close), abs(low - prev_close));
    the first bar has no previous close and uses high - low.

    Returns:
        Array of the same length as the input
    """
    h, l, c = (_as_array(x) for x in (highs, lows, closes))
    n = _check_lengths(h, l, c)
    if n == 0:
        return _EMPTY.copy()

    tr = h - l
    if n > 1:
        prev_close = c[:-1]
        tr[1:] = np.maximum.reduce(
            [h[1:] - l[1:], np.abs(h[1:] - prev_close), np.abs(l[1:] - prev_close)]
        )
    return tr


def atr(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> np.ndarray:
    """
    Calculate Average True Range using Wilder's smoothing.

    Returns:
        Array of length len(closes) - period + 1
    """
    tr = true_range(highs, lows, closes)
    if len(tr) < period:
        return _EMPTY.copy()
    return _wilder_smooth(tr, period)


def bollinger_bands(
    closes: ArrayLike,
    period: int = 20,
    std_mult: float = 2.0,
) -> BollingerBands:
    """
    Calculate Bollinger Bands (population standard deviation).

    Returns:
        BollingerBands, each array of length len(closes) - period + 1
    """
    c = _as_array(closes)
    if len(c) < period:
        return BollingerBands(_EMPTY.copy(), _EMPTY.copy(), _EMPTY.copy())

    windows = np.lib.stride_tricks.sliding_window_view(c, period)
    middle = windows.mean(axis=1)
    std = windows.std(axis=1)
    return BollingerBands(middle + std_mult * std, middle, middle - std_mult * std)


def bollinger_bandwidth(bands: BollingerBands) -> np.ndarray:
    """(upper - lower) / middle * 100; zero where middle is zero."""
    out = np.zeros_like(bands.middle)
    np.divide((bands.upper - bands.lower) * 100.0, bands.middle, out=out, where=bands.middle != 0)
    return out


def percent_b(closes: ArrayLike, bands: BollingerBands) -> np.ndarray:
    """Position of close within the bands (0 = lower, 1 = upper, 0.5 if flat)."""
    c = _as_array(closes)[-len(bands.middle):] if len(bands.middle) else _EMPTY
    width = bands.upper - bands.lower
    out = np.full_like(bands.middle, 0.5)
    np.divide(c - bands.lower, width, out=out, where=width > 0)
    return out


# =============================================================================
# Volume / trend strength
# =============================================================================

def obv(closes: ArrayLike, volumes: ArrayLike) -> np.ndarray:
    """
    Calculate On-Balance Volume starting from 0 on the first bar.

    Returns:
        Array of the same length as the input
    """
    c = _as_array(closes)
    v = _as_array(volumes)
    n = _check_lengths(c, v)
    if n == 0:
        return _EMPTY.copy()

    direction = np.sign(np.diff(c))
    out = np.zeros(n, dtype=np.float64)
    out[1:] = np.cumsum(direction * v[1:])
    return out


def adx(
    highs: ArrayLike,
    lows: ArrayLike,
    closes: ArrayLike,
    period: int = 14,
) -> DirectionalIndex:
    """
    Calculate ADX with +DI / -DI using Wilder smoothing.

    Directional movement and true range are smoothed with Wilder's running
    sum (S = S - S/period + x, seeded with the sum of the first period
    values); ADX is the Wilder average of DX.

    Returns:
        DirectionalIndex, each array of length len(closes) - 2 * period + 1
    """
    h, l, c = (_as_array(x) for x in (highs, lows, closes))
    n = _check_lengths(h, l, c)
    if n < 2 * period:
        empty = _EMPTY.copy()
        return DirectionalIndex(empty, empty.copy(), empty.copy())

    up = h[1:] - h[:-1]
    down = l[:-1] - l[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)
    tr = true_range(h, l, c)[1:]

    m = len(tr) - period + 1
    s_tr = np.empty(m)
    s_plus = np.empty(m)
    s_minus = np.empty(m)
    s_tr[0] = tr[:period].sum()
    s_plus[0] = plus_dm[:period].sum()
    s_minus[0] = minus_dm[:period].sum()
    for i in range(1, m):
        j = period - 1 + i
        s_tr[i] = s_tr[i - 1] - s_tr[i - 1] / period + tr[j]
        s_plus[i] = s_plus[i - 1] - s_plus[i - 1] / period + plus_dm[j]
        s_minus[i] = s_minus[i - 1] - s_minus[i - 1] / period + minus_dm[j]

    plus_di = np.zeros(m)
    minus_di = np.zeros(m)
    np.divide(s_plus * 100.0, s_tr, out=plus_di, where=s_tr > 0)
    np.divide(s_minus * 100.0, s_tr, out=minus_di, where=s_tr > 0)

    di_sum = plus_di + minus_di
    dx = np.zeros(m)
    np.divide(np.abs(plus_di - minus_di) * 100.0, di_sum, out=dx, where=di_sum > 0)

    adx_line = _wilder_smooth(dx, period)
    k = len(adx_line)
    return DirectionalIndex(adx_line, plus_di[-k:], minus_di[-k:])


# =============================================================================
# Candle patterns
# =============================================================================

BULLISH_ENGULFING = 1
BEARISH_ENGULFING = -1


def detect_engulfing(opens: ArrayLike, closes: ArrayLike) -> np.ndarray:
    """
    Detect two-candle engulfing patterns.

    Bullish at i: close[i] > open[i], close[i-1] < open[i-1],
    open[i] <= close[i-1] and close[i] >= open[i-1]. Bearish is the mirror.

    Returns:
        int8 array of length len(closes) - 1 with +1 (bullish), -1 (bearish), 0
    """
    o = _as_array(opens)
    c = _as_array(closes)
    n = _check_lengths(o, c)
    if n < 2:
        return np.empty(0, dtype=np.int8)

    po, pc, co, cc = o[:-1], c[:-1], o[1:], c[1:]
    bullish = (cc > co) & (pc < po) & (co <= pc) & (cc >= po)
    bearish = (cc < co) & (pc > po) & (co >= pc) & (cc <= po)
    out = np.zeros(n - 1, dtype=np.int8)
    out[bullish] = BULLISH_ENGULFING
    out[bearish] = BEARISH_ENGULFING
    return out


# =============================================================================
# IndicatorCalculator class
# =============================================================================

@dataclass(slots=True)
class IndicatorSnapshot:
    """Latest indicator readings for one evaluation pass.

    Previous-bar values are kept only where a rule compares against them.
    Any value whose series was too short is reported as ``None`` via
    ``missing``.
    """

    price: float
    ema: float
    htf_ema: float
    vwma: float
    prev_vwma: float
    vwap: float
    rsi: float
    macd: float
    macd_signal: float
    macd_histogram: float
    prev_macd_histogram: float
    stoch_k: float
    stoch_d: float
    obv: float
    prev_obv: float
    atr: float
    momentum: float
    prev_momentum: float
    bb_upper: float
    bb_middle: float
    bb_lower: float
    bb_bandwidth: float
    bb_percent_b: float
    htf_adx: float
    htf_plus_di: float
    htf_minus_di: float
    engulfing: int
    missing: tuple[str, ...] = ()

    @property
    def atr_pct(self) -> float:
        """ATR as a percentage of price."""
        return self.atr / self.price * 100.0 if self.price > 0 else 0.0


class IndicatorCalculator:
    """Calculator for all technical indicators needed by the engine."""

    def __init__(self, config: StrategyConfig | None = None):
        self.config = config or StrategyConfig()

    def snapshot(self, primary: OhlcvSeries, htf: OhlcvSeries) -> IndicatorSnapshot:
        """Compute every indicator once and return the latest readings.

        Args:
            primary: Primary-timeframe history ending at the decision bar
            htf: Higher-timeframe history (complete bars only)

        Returns:
            IndicatorSnapshot; series that are empty are listed in ``missing``
        """
        cfg = self.config
        missing: list[str] = []

        def latest(name: str, series: np.ndarray, default: float = 0.0, offset: int = 0) -> float:
            if len(series) <= offset:
                if offset == 0:
                    missing.append(name)
                return default
            return last_finite(series, default, offset)

        closes = primary.closes
        price = float(closes[-1]) if len(closes) else 0.0

        ema_line = ema(closes, cfg.ema_period)
        htf_ema_line = ema(htf.closes, cfg.htf_ema_period)
        vwma_line = vwma(closes, primary.volumes, cfg.vwma_period)
        vwap_line = vwap(primary.highs, primary.lows, closes, primary.volumes, cfg.vwap_period)
        rsi_line = rsi(closes, cfg.rsi_period)
        macd_res = macd(closes, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
        stoch = stochastic(primary.highs, primary.lows, closes, cfg.stoch_k_period, cfg.stoch_d_period)
        obv_line = obv(closes, primary.volumes)
        atr_line = atr(primary.highs, primary.lows, closes, cfg.atr_period)
        mom = momentum(closes, cfg.momentum_period)
        bands = bollinger_bands(closes, cfg.bollinger_period, cfg.bollinger_std)
        dmi = adx(htf.highs, htf.lows, htf.closes, cfg.adx_period)
        patterns = detect_engulfing(primary.opens, closes)

        # MACD components fall back together so the crossover stays consistent
        macd_offset = 0
        if len(macd_res.macd) and not all(
            math.isfinite(float(x[-1])) for x in macd_res
        ):
            macd_offset = 1

        return IndicatorSnapshot(
            price=price,
            ema=latest("ema", ema_line),
            htf_ema=latest("htf_ema", htf_ema_line),
            vwma=latest("vwma", vwma_line),
            prev_vwma=latest("vwma", vwma_line, latest("vwma", vwma_line), offset=1),
            vwap=latest("vwap", vwap_line),
            rsi=latest("rsi", rsi_line, 50.0),
            macd=latest("macd", macd_res.macd, offset=macd_offset),
            macd_signal=latest("macd", macd_res.signal, offset=macd_offset),
            macd_histogram=latest("macd", macd_res.histogram, offset=macd_offset),
            prev_macd_histogram=latest(
                "macd",
                macd_res.histogram,
                latest("macd", macd_res.histogram, offset=macd_offset),
                offset=macd_offset + 1,
            ),
            stoch_k=latest("stochastic", stoch.k, 50.0),
            stoch_d=latest("stochastic", stoch.d, 50.0),
            obv=latest("obv", obv_line),
            prev_obv=latest("obv", obv_line, latest("obv", obv_line), offset=1),
            atr=latest("atr", atr_line),
            momentum=latest("momentum", mom),
            prev_momentum=latest("momentum", mom, latest("momentum", mom), offset=1),
            bb_upper=latest("bollinger", bands.upper),
            bb_middle=latest("bollinger", bands.middle),
            bb_lower=latest("bollinger", bands.lower),
            bb_bandwidth=latest("bollinger", bollinger_bandwidth(bands)),
            bb_percent_b=latest("bollinger", percent_b(closes, bands), 0.5),
            htf_adx=latest("htf_adx", dmi.adx),
            htf_plus_di=latest("htf_adx", dmi.plus_di),
            htf_minus_di=latest("htf_adx", dmi.minus_di),
            engulfing=int(patterns[-1]) if len(patterns) else 0,
            missing=tuple(dict.fromkeys(missing)),
        )
