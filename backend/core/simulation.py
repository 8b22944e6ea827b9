"""Deterministic trade replay against forward candles.

Without tick data the order of events inside a candle is unknown, so each
candle is walked along one fixed path:

    close >= open:  open -> high -> low -> close
    close <  open:  open -> low -> high -> close

Within a segment the level nearest the path cursor that lies in the
closed interval [cursor, segment end] triggers first. Levels are the
current stop (initial or trailing) and the next unfilled take-profit; on a
tie the stop wins. The trailing stop is re-evaluated at segment ends only.

PositionReplay holds one open position and is shared by the live
TradeSimulator and the backtest engine.
"""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from core.models.candle import Candle, OhlcvSeries
from core.models.config import SimulationConfig
from core.models.decision import Direction, DirectionalDecision, HoldDecision, PartialTPLevel
from core.models.fixed import (
    RATIO_SCALE,
    from_fixed,
    price_to_fixed,
    ratio_to_fixed,
)
from core.models.trade import ExitReason, Fill, Outcome, SimulatedTrade, derive_label

logger = logging.getLogger(__name__)

_EPS = 1e-9


def candle_path(candle: Candle) -> tuple[float, float, float, float]:
    """Assumed intrabar price sequence for one candle."""
    if candle.close >= candle.open:
        return (candle.open, candle.high, candle.low, candle.close)
    return (candle.open, candle.low, candle.high, candle.close)


def _within(level: float, a: float, b: float) -> bool:
    return min(a, b) <= level <= max(a, b)


class PositionReplay:
    """One open position stepped candle by candle.

    PnL is tracked as a fraction of entry notional for a unit position:
    the entry fee is charged on open, each exit pays the fee on its own
    notional, and every exit price is slipped against the position and
    clamped into the candle's range.
    """

    def __init__(
        self,
        side: Direction,
        entry_price: float,
        stop_loss: float,
        tp_levels: Sequence[PartialTPLevel],
        trailing_distance: float | None,
        opened_at: int,
        fee_pct: float = 0.0,
        slippage_pct: float = 0.0,
    ):
        if side == Direction.HOLD:
            raise ValueError("Cannot open a position for a HOLD decision")
        self.side = side
        self.sign = side.sign
        self.entry_price = entry_price
        self.initial_stop = stop_loss
        self.stop = stop_loss
        self.levels = sorted(tp_levels, key=lambda lv: self.sign * lv.price)
        self.trailing_distance = trailing_distance
        self.opened_at = opened_at

        self._fee = fee_pct / 100.0
        self._slip = slippage_pct / 100.0
        self._next_level = 0
        self._stop_reason = ExitReason.STOP_LOSS
        self._pnl = -self._fee

        self.remaining = 1.0
        self.fills: list[Fill] = []
        self.best_price = entry_price
        self.trailing_active = False
        self.bars = 0
        self.last_price = entry_price
        self.last_timestamp = opened_at
        self.closed_at: int | None = None
        self.last_candle: Candle | None = None

        self.mfe_pct = 0.0
        self.mae_pct = 0.0
        self.time_to_mfe_ms = 0
        self.time_to_mae_ms = 0

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def realized_pnl(self) -> float:
        """Fraction of entry notional realized so far (fees included)."""
        return self._pnl

    def unrealized_pnl(self, price: float) -> float:
        """Realized PnL plus the open remainder marked at ``price``."""
        move = self.sign * (price - self.entry_price) / self.entry_price
        return self._pnl + self.remaining * move

    @property
    def initial_risk(self) -> float:
        """Entry-to-stop distance as a fraction of entry."""
        return abs(self.entry_price - self.initial_stop) / self.entry_price

    @property
    def r_multiple(self) -> float:
        risk = self.initial_risk
        return self._pnl / risk if risk > 0 else 0.0

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    def step(self, candle: Candle) -> bool:
        """Replay one candle. Returns True once the position is fully closed.

        Candles at or before the opening time are ignored.
        """
        if self.is_closed:
            return True
        if candle.timestamp <= self.opened_at:
            return False

        ts = candle.timestamp
        self.bars += 1
        path = candle_path(candle)
        open_price = path[0]

        # Gaps through a level fill at the open
        self._observe(open_price, ts)
        if self.sign * (open_price - self.stop) <= 0:
            self._exit(open_price, candle, self.remaining, self._stop_reason)
            return True
        while self._has_next_level() and self.sign * (open_price - self._level().price) >= 0:
            level = self._level()
            self._next_level += 1
            self._exit(open_price, candle, min(level.weight, self.remaining), ExitReason.TAKE_PROFIT)
            if self.is_closed:
                return True

        cursor = open_price
        for target in path[1:]:
            if self._walk(cursor, target, candle):
                return True
            cursor = target
            self._observe(target, ts)
            self._update_trailing(target)

        self.last_price = candle.close
        self.last_timestamp = ts
        self.last_candle = candle
        return False

    def force_close(
        self,
        price: float,
        timestamp: int,
        reason: ExitReason,
        candle: Candle | None = None,
    ) -> None:
        """Close whatever remains at ``price`` (timeout, reversal, end of data)."""
        if self.is_closed:
            return
        self.last_timestamp = timestamp
        self._exit(price, candle, self.remaining, reason, timestamp=timestamp)

    def _walk(self, start: float, end: float, candle: Candle) -> bool:
        cursor = start
        while True:
            hits: list[tuple[float, int]] = []
            if _within(self.stop, cursor, end):
                hits.append((abs(self.stop - cursor), 0))
            if self._has_next_level() and _within(self._level().price, cursor, end):
                hits.append((abs(self._level().price - cursor), 1))
            if not hits:
                return False

            _, kind = min(hits)
            if kind == 0:
                self._observe(self.stop, candle.timestamp)
                self._exit(self.stop, candle, self.remaining, self._stop_reason)
                return True

            level = self._level()
            self._next_level += 1
            self._observe(level.price, candle.timestamp)
            self._exit(level.price, candle, min(level.weight, self.remaining), ExitReason.TAKE_PROFIT)
            if self.is_closed:
                return True
            cursor = level.price

    def _exit(
        self,
        level: float,
        candle: Candle | None,
        weight: float,
        reason: ExitReason,
        timestamp: int | None = None,
    ) -> None:
        price = level * (1 - self.sign * self._slip)
        if candle is not None:
            price = min(max(price, candle.low), candle.high)
        ts = timestamp if timestamp is not None else (candle.timestamp if candle else self.last_timestamp)

        ret = self.sign * (price - self.entry_price) / self.entry_price
        self._pnl += weight * (ret - self._fee * price / self.entry_price)
        self.fills.append(Fill(timestamp=ts, price=price, weight=weight, reason=reason))
        self.remaining -= weight
        if self.remaining <= _EPS:
            self.remaining = 0.0
            self.closed_at = ts
            self.last_price = price
            self.last_timestamp = ts

    def _observe(self, price: float, ts: int) -> None:
        move = self.sign * (price - self.entry_price) / self.entry_price * 100.0
        elapsed = ts - self.opened_at
        if move > self.mfe_pct:
            self.mfe_pct = move
            self.time_to_mfe_ms = elapsed
        if -move > self.mae_pct:
            self.mae_pct = -move
            self.time_to_mae_ms = elapsed

    def _update_trailing(self, price: float) -> None:
        if not self.trailing_distance:
            return
        if self.sign * (price - self.best_price) > 0:
            self.best_price = price
        if not self.trailing_active:
            if self.sign * (self.best_price - self.entry_price) < self.trailing_distance:
                return
            self.trailing_active = True
        trail = self.best_price - self.sign * self.trailing_distance
        if self.sign * (trail - self.stop) > 0:
            self.stop = trail
            self._stop_reason = ExitReason.TRAILING_STOP

    def _has_next_level(self) -> bool:
        return self._next_level < len(self.levels)

    def _level(self) -> PartialTPLevel:
        return self.levels[self._next_level]

    # ------------------------------------------------------------------
    # Result
    # ------------------------------------------------------------------

    def outcome(self) -> Outcome:
        """Outcome tag of a closed position."""
        if not self.fills:
            return Outcome.TIMEOUT
        last = self.fills[-1].reason
        if last == ExitReason.TAKE_PROFIT:
            return Outcome.TP
        if any(f.reason == ExitReason.TAKE_PROFIT for f in self.fills):
            return Outcome.PARTIAL_TP
        if last == ExitReason.STOP_LOSS:
            return Outcome.SL
        if last == ExitReason.TRAILING_STOP:
            return Outcome.TRAILING_SL
        return Outcome.TIMEOUT

    def exit_price(self) -> float:
        total = sum(f.weight for f in self.fills)
        if total <= 0:
            return self.last_price
        return sum(f.price * f.weight for f in self.fills) / total

    def to_trade(self, symbol: str, features: Iterable[float] = ()) -> SimulatedTrade:
        """Freeze the replay into a terminal SimulatedTrade record."""
        if not self.is_closed:
            raise ValueError("Position is still open")
        outcome = self.outcome()
        r_fixed = ratio_to_fixed(self.r_multiple)
        return SimulatedTrade(
            symbol=symbol,
            side=self.side.value,
            entry_price=self.entry_price,
            stop_loss=self.initial_stop,
            trailing_distance=self.trailing_distance,
            tp_levels=list(self.levels),
            opened_at=self.opened_at,
            closed_at=self.closed_at,
            outcome=outcome,
            exit_price=self.exit_price(),
            fills=list(self.fills),
            pnl=price_to_fixed(self._pnl),
            r_multiple=r_fixed,
            label=derive_label(outcome, from_fixed(r_fixed, RATIO_SCALE)),
            max_favorable_excursion=ratio_to_fixed(self.mfe_pct),
            max_adverse_excursion=ratio_to_fixed(self.mae_pct),
            duration_ms=self.closed_at - self.opened_at,
            time_to_mfe_ms=self.time_to_mfe_ms,
            time_to_mae_ms=self.time_to_mae_ms,
            features=list(features),
        )


class TradeSimulator:
    """Replay a single directional decision against the candles after it."""

    def __init__(self, config: SimulationConfig | None = None):
        self.config = config or SimulationConfig()

    def simulate(
        self,
        decision: DirectionalDecision | HoldDecision,
        candles: Sequence[Candle] | OhlcvSeries,
    ) -> SimulatedTrade | None:
        """Run the replay to termination.

        Args:
            decision: The decision to verify; HOLD decisions are skipped
            candles: Forward candles (earlier candles are ignored)

        Returns:
            Terminal SimulatedTrade, or None for a HOLD
        """
        if not isinstance(decision, DirectionalDecision):
            logger.debug("Skipping simulation of HOLD for %s", decision.symbol)
            return None

        cfg = self.config
        side = decision.side
        entry = decision.price * (1 + side.sign * cfg.slippage_pct / 100.0)
        replay = PositionReplay(
            side=side,
            entry_price=entry,
            stop_loss=decision.stop_loss,
            tp_levels=decision.tp_levels,
            trailing_distance=decision.trailing_stop_distance,
            opened_at=decision.timestamp,
            fee_pct=cfg.fee_pct,
            slippage_pct=cfg.slippage_pct,
        )

        if isinstance(candles, OhlcvSeries):
            candles = candles.candles()

        deadline = decision.timestamp + cfg.max_hold_ms
        for candle in candles:
            if candle.timestamp <= decision.timestamp:
                continue
            if candle.timestamp > deadline or replay.bars >= cfg.max_bars:
                break
            if replay.step(candle):
                break

        if not replay.is_closed:
            replay.force_close(
                replay.last_price,
                replay.last_timestamp,
                ExitReason.TIMEOUT,
                candle=replay.last_candle,
            )

        trade = replay.to_trade(decision.symbol, decision.features)
        logger.info(
            f"Simulated {trade.symbol} {trade.side.upper()}: {trade.outcome.value} "
            f"pnl={trade.pnl_ratio * 100:+.3f}% R={trade.r:+.2f} label={trade.label}"
        )
        return trade
