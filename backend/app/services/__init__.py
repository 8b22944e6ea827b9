"""Live-mode services."""

from app.services.excursion_history import ExcursionHistory, ExcursionSummary
from app.services.simulation_pool import (
    OverflowPolicy,
    PoolStats,
    SimulationJob,
    SimulationPool,
)
from app.services.sinks import InMemoryTradeSink, TradeSink

__all__ = [
    "ExcursionHistory",
    "ExcursionSummary",
    "OverflowPolicy",
    "PoolStats",
    "SimulationJob",
    "SimulationPool",
    "InMemoryTradeSink",
    "TradeSink",
]
