"""Statistics calculator for backtest results.

Computes capital-based performance metrics from the closed-trade ledger
and the per-bar equity curve of one run.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from core.models.trade import SimulatedTrade

logger = logging.getLogger(__name__)


@dataclass
class TradeLog:
    """One closed position with its capital effect."""

    trade: SimulatedTrade
    allocation: float  # capital reserved at entry
    pnl: float  # currency, net of fees/slippage/spread
    bars_held: int
    confidence: float
    exit_reason: str

    @property
    def pnl_pct(self) -> float:
        """PnL as a percentage of the allocation."""
        return self.pnl / self.allocation * 100 if self.allocation > 0 else 0.0


@dataclass
class EquityPoint:
    timestamp: int
    equity: float
    in_market: bool


@dataclass
class SignalStats:
    buys: int = 0
    sells: int = 0
    holds: int = 0

    @property
    def total(self) -> int:
        return self.buys + self.sells + self.holds


@dataclass
class BacktestResult:
    """Complete backtest results."""

    # Metadata
    symbol: str
    start_time: int
    end_time: int

    # Capital
    initial_capital: float
    final_capital: float = 0.0
    total_pnl_pct: float = 0.0

    # Trades
    trades: list[TradeLog] = field(default_factory=list)
    total_trades: int = 0
    wins: int = 0
    losses: int = 0
    win_rate: float = 0.0
    avg_trade_pnl_pct: float = 0.0  # of initial capital
    avg_hold_ms: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    profit_factor: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    expectancy: float = 0.0
    payoff_ratio: float = 0.0

    # Equity
    equity_curve: list[EquityPoint] = field(default_factory=list)
    max_drawdown_pct: float = 0.0
    sharpe_ratio: float = 0.0
    time_in_market_pct: float = 0.0

    signal_stats: SignalStats = field(default_factory=SignalStats)


class StatisticsCalculator:
    """Calculate backtest statistics."""

    def __init__(self, risk_free_rate: float = 0.02, bars_per_year: float = 365 * 1440 / 3):
        self.risk_free_rate = risk_free_rate
        self.bars_per_year = bars_per_year

    def calculate(
        self,
        symbol: str,
        initial_capital: float,
        final_capital: float,
        trades: list[TradeLog],
        equity_curve: list[EquityPoint],
        signal_stats: SignalStats,
    ) -> BacktestResult:
        result = BacktestResult(
            symbol=symbol,
            start_time=equity_curve[0].timestamp if equity_curve else 0,
            end_time=equity_curve[-1].timestamp if equity_curve else 0,
            initial_capital=initial_capital,
            final_capital=final_capital,
            trades=trades,
            equity_curve=equity_curve,
            signal_stats=signal_stats,
        )
        self._calc_capital(result)
        self._calc_trades(result)
        self._calc_drawdown(result)
        self._calc_sharpe(result)
        self._calc_time_in_market(result)
        return result

    def _calc_capital(self, result: BacktestResult) -> None:
        result.total_pnl_pct = (
            (result.final_capital - result.initial_capital) / result.initial_capital * 100
        )

    def _calc_trades(self, result: BacktestResult) -> None:
        trades = result.trades
        result.total_trades = len(trades)
        if not trades:
            return

        wins = [t.pnl for t in trades if t.pnl > 0]
        losses = [t.pnl for t in trades if t.pnl <= 0]
        result.wins = len(wins)
        result.losses = len(losses)
        result.win_rate = result.wins / result.total_trades * 100

        result.avg_trade_pnl_pct = float(
            np.mean([t.pnl / result.initial_capital * 100 for t in trades])
        )
        result.avg_hold_ms = float(np.mean([t.trade.duration_ms for t in trades]))

        result.gross_profit = float(sum(wins))
        result.gross_loss = float(sum(losses))
        if result.gross_loss < 0:
            result.profit_factor = result.gross_profit / abs(result.gross_loss)
        else:
            result.profit_factor = math.inf if result.gross_profit > 0 else 0.0

        result.avg_win = result.gross_profit / len(wins) if wins else 0.0
        result.avg_loss = abs(result.gross_loss) / len(losses) if losses else 0.0
        win_p = result.wins / result.total_trades
        result.expectancy = win_p * result.avg_win - (1 - win_p) * result.avg_loss
        if result.avg_loss > 0:
            result.payoff_ratio = result.avg_win / result.avg_loss
        else:
            result.payoff_ratio = math.inf if result.avg_win > 0 else 0.0

    def _calc_drawdown(self, result: BacktestResult) -> None:
        if not result.equity_curve:
            return
        equity = np.array([p.equity for p in result.equity_curve], dtype=np.float64)
        peaks = np.maximum.accumulate(equity)
        drawdowns = np.zeros_like(equity)
        np.divide(peaks - equity, peaks, out=drawdowns, where=peaks > 0)
        result.max_drawdown_pct = float(drawdowns.max() * 100)

    def _calc_sharpe(self, result: BacktestResult) -> None:
        """Annualized Sharpe of per-bar returns, net of the risk-free rate."""
        if len(result.equity_curve) < 3:
            return
        equity = np.array([p.equity for p in result.equity_curve], dtype=np.float64)
        returns = equity[1:] / equity[:-1] - 1
        std = float(np.std(returns, ddof=1))
        if std <= 0 or not math.isfinite(std):
            return
        mean = float(np.mean(returns))
        result.sharpe_ratio = (mean * self.bars_per_year - self.risk_free_rate) / (
            std * math.sqrt(self.bars_per_year)
        )

    def _calc_time_in_market(self, result: BacktestResult) -> None:
        if not result.equity_curve:
            return
        in_market = sum(1 for p in result.equity_curve if p.in_market)
        result.time_in_market_pct = in_market / len(result.equity_curve) * 100
