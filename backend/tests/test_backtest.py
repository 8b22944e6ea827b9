"""Tests for the backtest harness, resampling and report export."""

import numpy as np
import orjson
import pytest

from backtest.config import BacktestConfig, BacktestSettings
from backtest.engine import BacktestHarness
from backtest.report import ReportFormatter
from backtest.resample import complete_groups, htf_factor, resample
from builders import build_decision, build_series
from core.models.candle import OhlcvSeries
from core.models.config import StrategyConfig
from core.models.decision import hold

MINUTE = 60_000


def flat_series(n: int, price: float = 100.0) -> OhlcvSeries:
    """Bars with open == high == low == close, so resting levels are never hit."""
    closes = np.full(n, price)
    return OhlcvSeries(
        timestamps=np.arange(n) * MINUTE,
        opens=closes,
        highs=closes,
        lows=closes,
        closes=closes,
        volumes=np.full(n, 1000.0),
    )


def with_bar(series: OhlcvSeries, i: int, o: float, h: float, l: float, c: float) -> OhlcvSeries:
    opens, highs, lows, closes = (
        series.opens.copy(),
        series.highs.copy(),
        series.lows.copy(),
        series.closes.copy(),
    )
    opens[i], highs[i], lows[i], closes[i] = o, h, l, c
    return OhlcvSeries(series.timestamps, opens, highs, lows, closes, series.volumes)


def scripted_engine(script: dict):
    """SignalEngine stand-in that emits decisions keyed by bar timestamp."""

    class ScriptedEngine:
        def __init__(self, config, predictor=None):
            self.config = config

        def generate(self, inp):
            ts = inp.primary.last_timestamp
            if ts in script:
                return script[ts]
            return hold(inp.symbol, ts, inp.primary.last_close, "scripted")

    return ScriptedEngine


def frictionless_config(**kwargs) -> BacktestConfig:
    defaults = dict(
        symbol="BTCUSDT",
        initial_capital=10_000.0,
        position_size_pct=10.0,
        use_size_multiplier=False,
        fee_pct=0.0,
        slippage_pct=0.0,
        spread_pct=0.0,
        warmup_bars=5,
        history_bars=50,
        htf_factor=5,
    )
    defaults.update(kwargs)
    return BacktestConfig(**defaults)


class TestResample:
    def test_complete_groups_only(self):
        series = build_series([1.0, 2.0, 3.0, 4.0, 5.0], volume=10.0)
        htf = resample(series, 2)

        assert len(htf) == 2
        assert list(htf.opens) == [series.opens[0], series.opens[2]]
        assert list(htf.closes) == [2.0, 4.0]
        assert htf.highs[0] == max(series.highs[:2])
        assert htf.lows[1] == min(series.lows[2:4])
        assert list(htf.volumes) == [20.0, 20.0]
        assert list(htf.timestamps) == [0, 2 * MINUTE]

    def test_complete_groups_at_bar(self):
        assert complete_groups(0, 20) == 0
        assert complete_groups(18, 20) == 0
        assert complete_groups(19, 20) == 1
        assert complete_groups(40, 20) == 2

    def test_htf_factor(self):
        assert htf_factor(3, 60) == 20
        with pytest.raises(ValueError):
            htf_factor(60, 3)

    def test_too_short(self):
        assert len(resample(build_series([1.0, 2.0]), 5)) == 0


class TestCapitalLedger:
    def test_take_profit_trade(self, monkeypatch):
        series = with_bar(flat_series(20), 11, 100, 111, 100, 110)
        entry = build_decision("buy", stop_loss=95.0, take_profit=110.0, timestamp=10 * MINUTE)
        monkeypatch.setattr(
            "backtest.engine.SignalEngine", scripted_engine({10 * MINUTE: entry})
        )

        result = BacktestHarness(frictionless_config()).run(series)

        assert result.total_trades == 1
        log = result.trades[0]
        assert log.allocation == pytest.approx(1_000.0)
        assert log.pnl == pytest.approx(100.0)
        assert log.exit_reason == "take_profit"
        assert log.bars_held == 1
        assert log.pnl_pct == pytest.approx(10.0)
        assert result.final_capital == pytest.approx(10_100.0)
        assert result.total_pnl_pct == pytest.approx(1.0)
        assert result.win_rate == pytest.approx(100.0)
        assert result.max_drawdown_pct == 0.0
        assert result.signal_stats.buys == 1
        assert result.signal_stats.total == 15

        # Bar 10 is in the market, bar 11 is flat again
        curve = {p.timestamp: p for p in result.equity_curve}
        assert curve[10 * MINUTE].in_market
        assert curve[10 * MINUTE].equity == pytest.approx(10_000.0)
        assert not curve[11 * MINUTE].in_market
        assert curve[11 * MINUTE].equity == pytest.approx(10_100.0)

    def test_reversal_and_end_of_data(self, monkeypatch):
        series = flat_series(20)
        script = {
            8 * MINUTE: build_decision("buy", stop_loss=95.0, take_profit=110.0, timestamp=8 * MINUTE),
            12 * MINUTE: build_decision("sell", stop_loss=105.0, take_profit=90.0, timestamp=12 * MINUTE),
        }
        monkeypatch.setattr("backtest.engine.SignalEngine", scripted_engine(script))

        result = BacktestHarness(frictionless_config()).run(series)

        assert [t.exit_reason for t in result.trades] == ["reversal", "end_of_data"]
        assert [t.trade.side for t in result.trades] == ["buy", "sell"]
        assert result.final_capital == pytest.approx(10_000.0)
        assert result.equity_curve[-1].equity == pytest.approx(10_000.0)
        assert result.signal_stats.sells == 1

    def test_size_multiplier_scales_allocation(self, monkeypatch):
        series = flat_series(20)
        entry = build_decision("buy", stop_loss=95.0, take_profit=110.0, timestamp=10 * MINUTE, confidence=50.0)
        monkeypatch.setattr("backtest.engine.SignalEngine", scripted_engine({10 * MINUTE: entry}))

        result = BacktestHarness(frictionless_config(use_size_multiplier=True)).run(series)
        assert result.trades[0].allocation == pytest.approx(500.0)

    def test_costs_reduce_pnl(self, monkeypatch):
        series = with_bar(flat_series(20), 11, 100, 111, 100, 110)
        entry = build_decision("buy", stop_loss=95.0, take_profit=110.0, timestamp=10 * MINUTE)
        monkeypatch.setattr("backtest.engine.SignalEngine", scripted_engine({10 * MINUTE: entry}))

        result = BacktestHarness(frictionless_config(fee_pct=0.1)).run(series)
        assert 0 < result.trades[0].pnl < 100.0
        assert result.final_capital < 10_100.0

    def test_no_trades(self):
        config = frictionless_config(strategy=StrategyConfig(min_score=1_000))
        result = BacktestHarness(config).run(build_series(np.linspace(100, 120, 120)))

        assert result.total_trades == 0
        assert result.final_capital == 10_000.0
        assert result.signal_stats.holds == 115
        assert all(p.equity == 10_000.0 for p in result.equity_curve)


class TestDeterminism:
    def make_series(self) -> OhlcvSeries:
        rng = np.random.default_rng(42)
        closes = 100 + np.cumsum(rng.normal(0, 0.4, 400))
        return build_series(closes, volume=5_000.0, spread=0.3, step=3 * MINUTE)

    def test_identical_runs(self):
        series = self.make_series()
        config = BacktestConfig(symbol="BTCUSDT", warmup_bars=100, history_bars=300, htf_factor=5)
        first = ReportFormatter.to_json(BacktestHarness(config).run(series))
        second = ReportFormatter.to_json(BacktestHarness(config).run(series))
        assert first == second

    def test_no_look_ahead(self):
        series = self.make_series()
        cut = 300
        closes = series.closes.copy()
        closes[cut:] = closes[cut:] * 1.5
        altered = build_series(closes, volume=5_000.0, spread=0.3, step=3 * MINUTE)

        config = BacktestConfig(symbol="BTCUSDT", warmup_bars=100, history_bars=300, htf_factor=5)
        base = BacktestHarness(config).run(series)
        other = BacktestHarness(config).run(altered)

        # Points before the first altered bar depend only on identical data
        n = cut - config.warmup_bars
        assert [p.equity for p in base.equity_curve[:n]] == [
            p.equity for p in other.equity_curve[:n]
        ]


class TestReport:
    def test_json_export(self, monkeypatch, tmp_path):
        series = with_bar(flat_series(20), 11, 100, 111, 100, 110)
        entry = build_decision("buy", stop_loss=95.0, take_profit=110.0, timestamp=10 * MINUTE)
        monkeypatch.setattr("backtest.engine.SignalEngine", scripted_engine({10 * MINUTE: entry}))
        result = BacktestHarness(frictionless_config()).run(series)

        data = orjson.loads(ReportFormatter.to_json(result))
        assert data["symbol"] == "BTCUSDT"
        assert data["total_trades"] == 1
        assert data["profit_factor"] is None  # inf serializes as null
        assert data["trades"][0]["exit_reason"] == "take_profit"
        assert data["trades"][0]["pnl"] == 10_000_000
        assert len(data["equity_curve"]) == 15

        path = ReportFormatter.save_json(result, tmp_path)
        assert path.exists()
        assert orjson.loads(path.read_bytes()) == data

    def test_print_console(self, capsys):
        result = BacktestHarness(frictionless_config()).run(flat_series(20))
        ReportFormatter.print_console(result)
        out = capsys.readouterr().out
        assert "BACKTEST RESULTS" in out
        assert "Total trades:     0" in out


class TestConfig:
    def test_invalid_capital(self):
        with pytest.raises(ValueError):
            BacktestConfig(symbol="BTCUSDT", initial_capital=0)

    def test_empty_symbol(self):
        with pytest.raises(ValueError):
            BacktestConfig(symbol="")

    def test_costs_clamped(self):
        config = BacktestConfig(symbol="BTCUSDT", fee_pct=-1.0, position_size_pct=150.0)
        assert config.fee_pct == 0.0
        assert config.position_size_pct == 100.0

    def test_settings_build_config(self, monkeypatch):
        monkeypatch.setenv("BACKTEST_INITIAL_CAPITAL", "5000")
        monkeypatch.setenv("BACKTEST_HTF_INTERVAL_MINUTES", "15")
        settings = BacktestSettings(_env_file=None)
        config = settings.to_backtest_config("ETHUSDT")

        assert config.initial_capital == 5_000.0
        assert config.htf_factor == 5
        assert config.bars_per_year == pytest.approx(365 * 1440 / 3)
