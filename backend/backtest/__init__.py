"""Backtesting system for the signal engine.

Depends only on core/ for business logic; performs no I/O beyond the
optional JSON report export.

Usage:
    harness = BacktestHarness(BacktestConfig(symbol="BTCUSDT"))
    result = harness.run(OhlcvSeries.from_candles(candles))
    ReportFormatter.print_console(result)
"""

from backtest.config import BacktestConfig, BacktestSettings, get_backtest_settings
from backtest.engine import BacktestHarness
from backtest.report import ReportFormatter
from backtest.stats import BacktestResult, StatisticsCalculator, TradeLog

__all__ = [
    "BacktestConfig",
    "BacktestSettings",
    "get_backtest_settings",
    "BacktestHarness",
    "ReportFormatter",
    "BacktestResult",
    "StatisticsCalculator",
    "TradeLog",
]
