"""Per-symbol history of completed simulations.

Used as a TradeSink: every finished simulation is appended to a bounded
per-symbol buffer, and aggregate excursion statistics are computed on
request (overall, per direction and over a recent time window).
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from core.cooldown import normalize_symbol
from core.models.trade import SimulatedTrade

logger = logging.getLogger(__name__)

DEFAULT_RECENT_WINDOW_MS = 3 * 60 * 60 * 1000


@dataclass(slots=True)
class DirectionStats:
    count: int = 0
    avg_mfe_pct: float = 0.0
    avg_mae_pct: float = 0.0
    win_rate: float = 0.0


@dataclass(slots=True)
class ExcursionSummary:
    """Aggregates over one symbol's completed simulations.

    Percentages are in percent (0-100), excursions in percent of entry.
    """

    symbol: str
    count: int = 0
    avg_r: float = 0.0
    win_rate: float = 0.0
    avg_mfe_pct: float = 0.0
    avg_mae_pct: float = 0.0
    mfe_mae_ratio: float = 0.0
    avg_duration_ms: float = 0.0
    long: DirectionStats | None = None
    short: DirectionStats | None = None
    recent_count: int = 0
    recent_avg_r: float = 0.0
    recent_win_rate: float = 0.0


def _direction_stats(trades: list[SimulatedTrade]) -> DirectionStats:
    if not trades:
        return DirectionStats()
    return DirectionStats(
        count=len(trades),
        avg_mfe_pct=float(np.mean([t.mfe_pct for t in trades])),
        avg_mae_pct=float(np.mean([t.mae_pct for t in trades])),
        win_rate=sum(1 for t in trades if t.is_win) / len(trades) * 100,
    )


class ExcursionHistory:
    """Bounded in-memory store of completed simulations, keyed by symbol."""

    def __init__(
        self,
        max_entries_per_symbol: int = 100,
        recent_window_ms: int = DEFAULT_RECENT_WINDOW_MS,
    ):
        self.max_entries_per_symbol = max(1, max_entries_per_symbol)
        self.recent_window_ms = recent_window_ms
        self._history: dict[str, deque[SimulatedTrade]] = {}

    def on_trade(self, trade: SimulatedTrade) -> None:
        self.add(trade)

    def add(self, trade: SimulatedTrade) -> None:
        symbol = normalize_symbol(trade.symbol)
        entries = self._history.get(symbol)
        if entries is None:
            entries = deque(maxlen=self.max_entries_per_symbol)
            self._history[symbol] = entries
        if any(e.signal_id == trade.signal_id for e in entries):
            logger.debug("Duplicate simulation %s for %s ignored", trade.signal_id, symbol)
            return
        entries.append(trade)

    def trades(self, symbol: str) -> list[SimulatedTrade]:
        return list(self._history.get(normalize_symbol(symbol), ()))

    def symbols(self) -> list[str]:
        return sorted(self._history)

    def clear(self, symbol: str | None = None) -> None:
        if symbol is None:
            self._history.clear()
        else:
            self._history.pop(normalize_symbol(symbol), None)

    def summary(self, symbol: str, now_ms: int | None = None) -> ExcursionSummary:
        """Aggregate statistics for one symbol.

        Args:
            symbol: Symbol to summarize
            now_ms: End of the recent window; defaults to the latest close time
                in the history so results do not depend on the wall clock

        Returns:
            ExcursionSummary (all zeros when the symbol has no history)
        """
        symbol = normalize_symbol(symbol)
        trades = self.trades(symbol)
        result = ExcursionSummary(symbol=symbol)
        if not trades:
            return result

        n = len(trades)
        result.count = n
        result.avg_r = float(np.mean([t.r for t in trades]))
        result.win_rate = sum(1 for t in trades if t.is_win) / n * 100
        result.avg_mfe_pct = float(np.mean([t.mfe_pct for t in trades]))
        result.avg_mae_pct = float(np.mean([t.mae_pct for t in trades]))
        if result.avg_mae_pct > 0:
            result.mfe_mae_ratio = result.avg_mfe_pct / result.avg_mae_pct
        result.avg_duration_ms = float(np.mean([t.duration_ms for t in trades]))

        result.long = _direction_stats([t for t in trades if t.side == "buy"])
        result.short = _direction_stats([t for t in trades if t.side == "sell"])

        end = now_ms if now_ms is not None else max(t.closed_at for t in trades)
        recent = [t for t in trades if end - t.closed_at <= self.recent_window_ms]
        if recent:
            result.recent_count = len(recent)
            result.recent_avg_r = float(np.mean([t.r for t in recent]))
            result.recent_win_rate = sum(1 for t in recent if t.is_win) / len(recent) * 100
        return result
