"""Tests for trend context and liquidity classification."""

import numpy as np
import pytest

from builders import NEUTRAL_SNAPSHOT, build_series, build_snapshot
from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig
from core.trend import (
    CandlePattern,
    TrendBias,
    TrendContextAnalyzer,
    average_traded_value,
    has_volume_surge,
)


def with_last_volume(series: OhlcvSeries, volume: float) -> OhlcvSeries:
    volumes = series.volumes.copy()
    volumes[-1] = volume
    return OhlcvSeries(
        series.timestamps, series.opens, series.highs, series.lows, series.closes, volumes
    )


class TestBias:
    def setup_method(self):
        self.analyzer = TrendContextAnalyzer(StrategyConfig())

    def test_bullish(self, bullish_snapshot):
        assert self.analyzer.bias(bullish_snapshot) == TrendBias.BULLISH

    def test_bearish(self, bearish_snapshot):
        assert self.analyzer.bias(bearish_snapshot) == TrendBias.BEARISH

    def test_weak_adx_is_neutral(self, neutral_snapshot):
        assert self.analyzer.bias(neutral_snapshot) == TrendBias.NEUTRAL

    def test_equal_di_is_neutral(self):
        snap = build_snapshot(NEUTRAL_SNAPSHOT, htf_adx=40.0, htf_plus_di=25.0, htf_minus_di=25.0)
        assert self.analyzer.bias(snap) == TrendBias.NEUTRAL

    def test_adx_at_threshold_is_neutral(self):
        snap = build_snapshot(NEUTRAL_SNAPSHOT, htf_adx=20.0, htf_plus_di=30.0, htf_minus_di=10.0)
        assert self.analyzer.bias(snap) == TrendBias.NEUTRAL


class TestLiquidity:
    def test_average_traded_value(self):
        series = build_series([100.0] * 60, volume=1000.0)
        assert average_traded_value(series, 50) == pytest.approx(100_000.0)

    def test_liquid_bullish_context(self, bullish_snapshot):
        series = build_series([100.0] * 60, volume=1000.0)
        context = TrendContextAnalyzer().analyze("BTCUSDT", series, bullish_snapshot)

        assert context.has_liquidity
        assert context.trend_bias == TrendBias.BULLISH
        assert context.is_trending
        assert not context.is_neutral
        assert context.last_pattern == CandlePattern.BULLISH_ENGULFING
        assert context.liquidity_floor == pytest.approx(50_000.0)

    def test_bearish_floor_is_stricter(self, bullish_snapshot, bearish_snapshot):
        # 60k traded per bar: above the 50k floor, below the 75k bearish floor
        series = build_series([100.0] * 60, volume=600.0)
        analyzer = TrendContextAnalyzer()

        bullish = analyzer.analyze("BTCUSDT", series, bullish_snapshot)
        assert bullish.has_liquidity

        bearish = analyzer.analyze("BTCUSDT", series, bearish_snapshot)
        assert bearish.is_neutral
        assert not bearish.has_liquidity
        assert bearish.liquidity_floor == pytest.approx(75_000.0)

    def test_illiquid_logs_warning(self, bullish_snapshot, caplog):
        series = build_series([100.0] * 60, volume=1.0)
        context = TrendContextAnalyzer().analyze("DUSTUSDT", series, bullish_snapshot)
        assert context.is_neutral
        assert "Low liquidity DUSTUSDT" in caplog.text


class TestContextFlags:
    def test_vwma_slope(self, bearish_snapshot):
        series = build_series([100.0] * 60, volume=1000.0)
        context = TrendContextAnalyzer().analyze("BTCUSDT", series, bearish_snapshot)
        assert context.vwma_falling
        assert context.last_pattern == CandlePattern.BEARISH_ENGULFING

    def test_volume_surge(self):
        series = build_series([100.0] * 30, volume=1000.0)
        assert not has_volume_surge(series, 20, 2.0)
        assert has_volume_surge(with_last_volume(series, 2500.0), 20, 2.0)
        assert not has_volume_surge(with_last_volume(series, 2000.0), 20, 2.0)

    def test_volume_surge_needs_history(self):
        series = build_series(np.full(10, 100.0), volume=1000.0)
        assert not has_volume_surge(with_last_volume(series, 1e6), 20, 2.0)
