"""Data models shared by the engine, simulator and backtester."""

from core.models.candle import Candle, OhlcvSeries
from core.models.config import SimulationConfig, StrategyConfig
from core.models.decision import (
    Direction,
    DirectionalDecision,
    HoldDecision,
    PartialTPLevel,
    TradeDecision,
)
from core.models.trade import ExitReason, Fill, Outcome, SimulatedTrade, derive_label

__all__ = [
    "Candle",
    "OhlcvSeries",
    "SimulationConfig",
    "StrategyConfig",
    "Direction",
    "DirectionalDecision",
    "HoldDecision",
    "PartialTPLevel",
    "TradeDecision",
    "ExitReason",
    "Fill",
    "Outcome",
    "SimulatedTrade",
    "derive_label",
]
