"""Single-symbol backtest engine.

Drives the SignalEngine bar by bar over one historical series with one
capital pool and at most one open position.

Processing order for each bar i (after warm-up):
1. Step the open position (if any) through bar i
2. Ask the engine for a decision using bars [i - history + 1, i] and the
   HTF bars that were complete at the close of bar i
3. Close the position at bar i's close if the decision reverses it
4. Open a new position at bar i's close if flat and the decision is directional
5. Record one equity point

Cash and reserved capital are kept as 1e8-scaled integers so repeated
fills cannot drift the ledger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from backtest.config import BacktestConfig
from backtest.resample import complete_groups, resample
from backtest.stats import (
    BacktestResult,
    EquityPoint,
    SignalStats,
    StatisticsCalculator,
    TradeLog,
)
from core.models.candle import Candle, OhlcvSeries
from core.models.decision import DirectionalDecision
from core.models.fixed import from_fixed, price_to_fixed
from core.models.trade import ExitReason
from core.prediction import Predictor
from core.signal_engine import SignalEngine, StrategyInput
from core.simulation import PositionReplay

logger = logging.getLogger(__name__)


@dataclass
class OpenPosition:
    replay: PositionReplay
    allocation: int  # fixed-point
    entry_index: int
    decision: DirectionalDecision


class BacktestHarness:
    """Run one deterministic backtest over a primary-timeframe series."""

    def __init__(self, config: BacktestConfig, predictor: Predictor | None = None):
        self.config = config
        self.predictor = predictor

    def run(self, primary: OhlcvSeries) -> BacktestResult:
        """Replay the whole series and aggregate the results.

        A fresh SignalEngine (and cooldown store) is created per run, so two
        runs over the same inputs produce identical results.

        Args:
            primary: Full primary-timeframe history, oldest first

        Returns:
            BacktestResult with trade log, equity curve and metrics
        """
        cfg = self.config
        engine = SignalEngine(cfg.strategy, predictor=self.predictor)
        htf_all = resample(primary, cfg.htf_factor)

        self._cash = price_to_fixed(cfg.initial_capital)
        self._reserved = 0
        self._position: OpenPosition | None = None
        self._trades: list[TradeLog] = []
        equity_curve: list[EquityPoint] = []
        signals = SignalStats()

        n = len(primary)
        start = min(cfg.warmup_bars, n)
        logger.info(
            f"Backtest {cfg.symbol}: {n} bars, warm-up {start}, "
            f"capital {cfg.initial_capital:.2f}, HTF factor {cfg.htf_factor}"
        )

        for i in range(start, n):
            candle = primary.candle(i)

            # 1. Existing position sees this bar first
            if self._position is not None:
                if self._position.replay.step(candle):
                    self._settle(i)
                elif cfg.max_hold_bars and self._position.replay.bars >= cfg.max_hold_bars:
                    self._position.replay.force_close(
                        candle.close, candle.timestamp, ExitReason.TIMEOUT, candle=candle
                    )
                    self._settle(i)

            # 2. Decision from data up to and including bar i
            groups = complete_groups(i, cfg.htf_factor)
            inp = StrategyInput(
                symbol=cfg.symbol,
                primary=primary.window(max(0, i + 1 - cfg.history_bars), i + 1),
                htf=htf_all.window(0, groups),
            )
            decision = engine.generate(inp)
            if decision.direction == "buy":
                signals.buys += 1
            elif decision.direction == "sell":
                signals.sells += 1
            else:
                signals.holds += 1

            if isinstance(decision, DirectionalDecision):
                # 3. Reversal exit
                pos = self._position
                if pos is not None and pos.replay.side != decision.side:
                    pos.replay.force_close(
                        candle.close, candle.timestamp, ExitReason.REVERSAL, candle=candle
                    )
                    self._settle(i)

                # 4. Entry
                if self._position is None:
                    self._open(decision, candle, i)

            # 5. Equity
            equity_curve.append(
                EquityPoint(
                    timestamp=candle.timestamp,
                    equity=self._equity(candle.close),
                    in_market=self._position is not None,
                )
            )

        if self._position is not None:
            last = primary.candle(n - 1)
            self._position.replay.force_close(
                last.close, last.timestamp, ExitReason.END_OF_DATA, candle=last
            )
            self._settle(n - 1)
            if equity_curve:
                equity_curve[-1] = EquityPoint(
                    timestamp=last.timestamp,
                    equity=from_fixed(self._cash),
                    in_market=True,
                )

        calculator = StatisticsCalculator(cfg.risk_free_rate, cfg.bars_per_year)
        result = calculator.calculate(
            symbol=cfg.symbol,
            initial_capital=cfg.initial_capital,
            final_capital=from_fixed(self._cash),
            trades=self._trades,
            equity_curve=equity_curve,
            signal_stats=signals,
        )
        logger.info(
            f"Backtest {cfg.symbol} done: {result.total_trades} trades, "
            f"PnL {result.total_pnl_pct:+.2f}%, max DD {result.max_drawdown_pct:.2f}%"
        )
        return result

    # ------------------------------------------------------------------
    # Capital ledger
    # ------------------------------------------------------------------

    def _open(self, decision: DirectionalDecision, candle: Candle, index: int) -> None:
        cfg = self.config
        size_pct = cfg.position_size_pct / 100.0
        if cfg.use_size_multiplier:
            size_pct *= decision.position_size_multiplier
        allocation = int(self._cash * size_pct)
        if allocation <= 0:
            logger.debug("Skipping entry at bar %d: zero allocation", index)
            return

        sign = decision.side.sign
        adverse = (cfg.slippage_pct + cfg.spread_pct) / 100.0
        entry = candle.close * (1 + sign * adverse)
        entry = min(max(entry, candle.low), candle.high)

        replay = PositionReplay(
            side=decision.side,
            entry_price=entry,
            stop_loss=decision.stop_loss,
            tp_levels=decision.tp_levels,
            trailing_distance=decision.trailing_stop_distance,
            opened_at=candle.timestamp,
            fee_pct=cfg.fee_pct,
            slippage_pct=cfg.slippage_pct,
        )
        self._cash -= allocation
        self._reserved = allocation
        self._position = OpenPosition(replay, allocation, index, decision)
        logger.debug(
            "Open %s %s @ %.8f alloc=%.2f",
            decision.symbol,
            decision.direction,
            entry,
            from_fixed(allocation),
        )

    def _settle(self, index: int) -> None:
        pos = self._position
        if pos is None or not pos.replay.is_closed:
            return
        trade = pos.replay.to_trade(self.config.symbol, pos.decision.features)
        pnl = price_to_fixed(from_fixed(pos.allocation) * pos.replay.realized_pnl)

        self._cash += pos.allocation + pnl
        self._reserved = 0
        self._position = None
        self._trades.append(
            TradeLog(
                trade=trade,
                allocation=from_fixed(pos.allocation),
                pnl=from_fixed(pnl),
                bars_held=index - pos.entry_index,
                confidence=pos.decision.confidence,
                exit_reason=trade.fills[-1].reason.value if trade.fills else ExitReason.TIMEOUT.value,
            )
        )

    def _equity(self, price: float) -> float:
        equity = self._cash + self._reserved
        if self._position is not None:
            mtm = from_fixed(self._position.allocation) * self._position.replay.unrealized_pnl(price)
            equity += price_to_fixed(mtm)
        return from_fixed(equity)
