"""Report formatting for backtest results.

Outputs results to console (formatted tables) and JSON files.
"""

from __future__ import annotations

import dataclasses
import math
from datetime import datetime, timezone
from pathlib import Path

import orjson

from backtest.stats import BacktestResult


def _fmt_ts(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _fmt_ratio(value: float) -> str:
    return "inf" if math.isinf(value) else f"{value:.2f}"


def _default(obj):
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


class ReportFormatter:
    """Format backtest results for display and export."""

    @staticmethod
    def print_console(result: BacktestResult) -> None:
        """Print formatted report to console."""
        print("\n" + "=" * 70)
        print(f"  BACKTEST RESULTS: {result.symbol}")
        print("=" * 70)
        if result.equity_curve:
            print(f"  Period: {_fmt_ts(result.start_time)} to {_fmt_ts(result.end_time)}")
        print(f"  Bars evaluated: {len(result.equity_curve)}")

        print("\n" + "-" * 70)
        print("  CAPITAL")
        print("-" * 70)
        print(f"  Initial capital:  {result.initial_capital:,.2f}")
        print(f"  Final capital:    {result.final_capital:,.2f}")
        print(f"  Total PnL:        {result.total_pnl_pct:+.2f}%")
        print(f"  Max drawdown:     {result.max_drawdown_pct:.2f}%")
        print(f"  Sharpe ratio:     {result.sharpe_ratio:.2f}")
        print(f"  Time in market:   {result.time_in_market_pct:.1f}%")

        print("\n" + "-" * 70)
        print("  TRADES")
        print("-" * 70)
        print(f"  Total trades:     {result.total_trades}")
        print(f"  Wins / losses:    {result.wins} / {result.losses}")
        print(f"  Win rate:         {result.win_rate:.1f}%")
        print(f"  Avg trade PnL:    {result.avg_trade_pnl_pct:+.3f}% of initial")
        print(f"  Avg hold:         {result.avg_hold_ms / 60_000:.1f} min")
        print(f"  Profit factor:    {_fmt_ratio(result.profit_factor)}")
        print(f"  Expectancy:       {result.expectancy:+.2f} per trade")
        print(f"  Payoff ratio:     {_fmt_ratio(result.payoff_ratio)}")

        s = result.signal_stats
        print("\n" + "-" * 70)
        print("  SIGNALS")
        print("-" * 70)
        print(f"  Buys: {s.buys}   Sells: {s.sells}   Holds: {s.holds}")

        if result.trades:
            print("\n" + "-" * 70)
            print("  TRADE LOG")
            print("-" * 70)
            print(
                f"  {'Opened':<17} {'Side':<5} {'Entry':>12} {'Exit':>12} "
                f"{'PnL':>10} {'R':>6} {'Reason':<14}"
            )
            for t in result.trades:
                tr = t.trade
                print(
                    f"  {_fmt_ts(tr.opened_at):<17} {tr.side:<5} {tr.entry_price:>12.4f} "
                    f"{tr.exit_price:>12.4f} {t.pnl:>+10.2f} {tr.r:>+6.2f} {t.exit_reason:<14}"
                )

        print("=" * 70 + "\n")

    @staticmethod
    def to_dict(result: BacktestResult, include_curve: bool = True) -> dict:
        """Plain dict form of a result (trades flattened to persistence records)."""
        data = {
            f.name: getattr(result, f.name)
            for f in dataclasses.fields(result)
            if f.name not in ("trades", "equity_curve", "signal_stats")
        }
        data["signal_stats"] = dataclasses.asdict(result.signal_stats)
        data["trades"] = [
            {
                **t.trade.to_record(),
                "allocation": t.allocation,
                "pnl_amount": t.pnl,
                "bars_held": t.bars_held,
                "confidence": t.confidence,
                "exit_reason": t.exit_reason,
            }
            for t in result.trades
        ]
        if include_curve:
            data["equity_curve"] = [dataclasses.asdict(p) for p in result.equity_curve]
        return data

    @staticmethod
    def to_json(result: BacktestResult, include_curve: bool = True) -> bytes:
        """Serialize a result with orjson (non-finite floats become null)."""
        return orjson.dumps(
            ReportFormatter.to_dict(result, include_curve),
            default=_default,
            option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS,
        )

    @staticmethod
    def save_json(result: BacktestResult, output_dir: str | Path) -> Path:
        """Write the result to ``<output_dir>/<symbol>_<start>.json``."""
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        path = out / f"{result.symbol}_{result.start_time}.json"
        path.write_bytes(ReportFormatter.to_json(result))
        return path
