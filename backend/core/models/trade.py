"""Simulated trade outcome models."""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from core.models.decision import PartialTPLevel
from core.models.fixed import (
    PRICE_SCALE,
    RATIO_SCALE,
    from_fixed,
    price_to_fixed,
)


class Outcome(str, Enum):
    """How a simulated trade terminated."""

    TP = "tp"  # every TP level filled
    PARTIAL_TP = "partial_tp"  # some TP fills, remainder closed otherwise
    SL = "sl"  # initial stop hit
    TRAILING_SL = "trailing_sl"  # ratcheted trailing stop hit
    TIMEOUT = "timeout"  # max hold elapsed or path exhausted


class ExitReason(str, Enum):
    """Reason attached to each individual fill."""

    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    TRAILING_STOP = "trailing_stop"
    TIMEOUT = "timeout"
    REVERSAL = "reversal"
    END_OF_DATA = "end_of_data"


def generate_signal_id(symbol: str, side: str, opened_at: int) -> str:
    """Deterministic id so a replayed decision maps to the same record."""
    key = f"{symbol}:{side}:{opened_at}"
    return hashlib.sha256(key.encode()).hexdigest()[:32]


class Fill(BaseModel):
    """A (partial) exit of a position."""

    model_config = ConfigDict(frozen=True)

    timestamp: int
    price: float
    weight: float
    reason: ExitReason


class SimulatedTrade(BaseModel):
    """Terminal record of one replayed decision.

    ``pnl`` is stored as a fraction of entry notional scaled by 1e8,
    ``r_multiple`` scaled by 1e4 and the excursions as percentages scaled
    by 1e4. Use the float properties for arithmetic.
    """

    model_config = ConfigDict(frozen=True)

    signal_id: str = ""
    symbol: str
    side: Literal["buy", "sell"]
    entry_price: float
    stop_loss: float | None = None
    trailing_distance: float | None = None
    tp_levels: list[PartialTPLevel] = Field(default_factory=list)
    opened_at: int
    closed_at: int
    outcome: Outcome
    exit_price: float
    fills: list[Fill] = Field(default_factory=list)
    pnl: int
    r_multiple: int
    label: int = Field(ge=-2, le=2)
    max_favorable_excursion: int = 0
    max_adverse_excursion: int = 0
    duration_ms: int = 0
    time_to_mfe_ms: int = 0
    time_to_mae_ms: int = 0
    features: list[float] = Field(default_factory=list)

    def model_post_init(self, __context) -> None:
        """Generate deterministic ID after model initialization."""
        if not self.signal_id:
            object.__setattr__(
                self,
                "signal_id",
                generate_signal_id(self.symbol, self.side, self.opened_at),
            )

    @property
    def pnl_ratio(self) -> float:
        return from_fixed(self.pnl, PRICE_SCALE)

    @property
    def r(self) -> float:
        return from_fixed(self.r_multiple, RATIO_SCALE)

    @property
    def mfe_pct(self) -> float:
        return from_fixed(self.max_favorable_excursion, RATIO_SCALE)

    @property
    def mae_pct(self) -> float:
        return from_fixed(self.max_adverse_excursion, RATIO_SCALE)

    @property
    def is_win(self) -> bool:
        return self.pnl > 0

    def to_record(self) -> dict:
        """Flat, integer-only form for append-only persistence sinks."""
        return {
            "signal_id": self.signal_id,
            "symbol": self.symbol,
            "side": self.side,
            "entry_price": price_to_fixed(self.entry_price),
            "stop_loss": price_to_fixed(self.stop_loss) if self.stop_loss is not None else None,
            "trailing_distance": (
                price_to_fixed(self.trailing_distance)
                if self.trailing_distance is not None
                else None
            ),
            "tp_levels": [
                {"price": price_to_fixed(lv.price), "weight": lv.weight} for lv in self.tp_levels
            ],
            "opened_at": self.opened_at,
            "closed_at": self.closed_at,
            "outcome": self.outcome.value,
            "exit_price": price_to_fixed(self.exit_price),
            "pnl": self.pnl,
            "r_multiple": self.r_multiple,
            "label": self.label,
            "mfe": self.max_favorable_excursion,
            "mae": self.max_adverse_excursion,
            "duration_ms": self.duration_ms,
            "time_to_mfe_ms": self.time_to_mfe_ms,
            "time_to_mae_ms": self.time_to_mae_ms,
        }


def derive_label(outcome: Outcome, r_multiple: float) -> int:
    """Map (outcome, R) to a training label in {-2..2}.

    Stop exits: -2 at R <= -1.5, else -1. Take-profit exits: +2 at R >= 3,
    +1 at R >= 1.5, else 0. A trailing stop counts as a take-profit exit
    when it locked in R >= 0 and as a stop exit otherwise. Timeouts are 0.
    """
    if outcome == Outcome.TRAILING_SL:
        outcome = Outcome.TP if r_multiple >= 0 else Outcome.SL

    if outcome == Outcome.SL:
        return -2 if r_multiple <= -1.5 else -1
    if outcome in (Outcome.TP, Outcome.PARTIAL_TP):
        if r_multiple >= 3.0:
            return 2
        if r_multiple >= 1.5:
            return 1
        return 0
    return 0
