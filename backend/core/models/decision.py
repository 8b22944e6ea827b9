"""Trade decision models.

A decision is either a HOLD (no risk parameters at all) or a directional
BUY/SELL that always carries a complete set of risk parameters. The two
shapes form a discriminated union on ``direction`` so a hold with a stop
loss cannot be constructed.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

# Tolerance for float accumulation when summing TP weights
_WEIGHT_EPSILON = 1e-9


class Direction(str, Enum):
    """Decision direction."""

    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"

    @property
    def sign(self) -> int:
        """+1 for buy, -1 for sell, 0 for hold."""
        if self is Direction.BUY:
            return 1
        if self is Direction.SELL:
            return -1
        return 0

    def opposite(self) -> "Direction":
        if self is Direction.BUY:
            return Direction.SELL
        if self is Direction.SELL:
            return Direction.BUY
        return Direction.HOLD


class PartialTPLevel(BaseModel):
    """One rung of a take-profit ladder.

    ``weight`` is the fraction of the ORIGINAL position closed at this level.
    """

    model_config = ConfigDict(frozen=True)

    price: float = Field(gt=0)
    weight: float = Field(gt=0, le=1)
    r_multiple: float | None = None


class _DecisionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    symbol: str = Field(min_length=1)
    timestamp: int  # close time (ms) of the bar the decision was made on
    price: float  # reference (last close) price
    confidence: float = Field(default=0.0, ge=0, le=100)
    buy_score: float = 0.0
    sell_score: float = 0.0
    features: list[float] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)

    @property
    def is_directional(self) -> bool:
        return self.direction != Direction.HOLD.value


class HoldDecision(_DecisionBase):
    """No trade. Carries diagnostics only."""

    direction: Literal["hold"] = "hold"


class DirectionalDecision(_DecisionBase):
    """BUY or SELL with its full risk envelope."""

    direction: Literal["buy", "sell"]
    stop_loss: float = Field(gt=0)
    take_profit: float = Field(gt=0)
    tp_levels: list[PartialTPLevel] = Field(min_length=1)
    trailing_stop_distance: float = Field(gt=0)
    position_size_multiplier: float = Field(ge=0, le=1)

    @model_validator(mode="after")
    def _check_risk_envelope(self) -> "DirectionalDecision":
        total = sum(level.weight for level in self.tp_levels)
        if total > 1.0 + _WEIGHT_EPSILON:
            raise ValueError(f"Partial TP weights sum to {total:.6f} (> 1.0)")

        sign = self.side.sign
        if sign * (self.price - self.stop_loss) <= 0:
            raise ValueError(
                f"{self.direction} stop loss {self.stop_loss} is on the wrong side of price {self.price}"
            )
        for level in self.tp_levels:
            if sign * (level.price - self.price) <= 0:
                raise ValueError(
                    f"{self.direction} TP level {level.price} is on the wrong side of price {self.price}"
                )
        return self

    @property
    def side(self) -> Direction:
        return Direction(self.direction)

    @property
    def stop_distance(self) -> float:
        return abs(self.price - self.stop_loss)


TradeDecision = Annotated[
    Union[HoldDecision, DirectionalDecision],
    Field(discriminator="direction"),
]

_decision_adapter: TypeAdapter = TypeAdapter(TradeDecision)


def parse_decision(data: dict) -> HoldDecision | DirectionalDecision:
    """Validate a plain dict (e.g. from a sink) into the right decision type."""
    return _decision_adapter.validate_python(data)


def hold(symbol: str, timestamp: int, price: float, *reasons: str, **extra) -> HoldDecision:
    """Shortcut for building a HOLD with one or more reasons."""
    return HoldDecision(
        symbol=symbol,
        timestamp=timestamp,
        price=price,
        reasons=list(reasons),
        **extra,
    )


def scale_tp_weights(weights: list[float]) -> tuple[list[float], bool]:
    """Scale weights down proportionally if they sum above 1.0.

    Returns:
        Tuple of (weights, was_scaled)
    """
    total = sum(weights)
    if total <= 1.0 + _WEIGHT_EPSILON:
        return list(weights), False
    return [w / total for w in weights], True
