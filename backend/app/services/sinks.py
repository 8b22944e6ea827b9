"""Destinations for completed simulations."""

from __future__ import annotations

from collections import deque
from typing import Awaitable, Protocol, runtime_checkable

from core.models.trade import SimulatedTrade


@runtime_checkable
class TradeSink(Protocol):
    """Receives every completed simulated trade.

    ``on_trade`` may be a plain method or a coroutine function.
    """

    def on_trade(self, trade: SimulatedTrade) -> None | Awaitable[None]:
        ...


class InMemoryTradeSink:
    """Keeps completed trades in memory, newest last."""

    def __init__(self, maxlen: int | None = None):
        self._trades: deque[SimulatedTrade] = deque(maxlen=maxlen)

    def on_trade(self, trade: SimulatedTrade) -> None:
        self._trades.append(trade)

    @property
    def trades(self) -> list[SimulatedTrade]:
        return list(self._trades)

    def records(self) -> list[dict]:
        """Persistence form of every stored trade."""
        return [t.to_record() for t in self._trades]

    def __len__(self) -> int:
        return len(self._trades)

    def clear(self) -> None:
        self._trades.clear()
