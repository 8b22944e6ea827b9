"""Candle (OHLCV bar) data models."""

from __future__ import annotations

from typing import Sequence

import numpy as np
from pydantic import BaseModel, ConfigDict, model_validator


class Candle(BaseModel):
    """A single closed OHLCV bar.

    Timestamps are Unix milliseconds. Prices are plain floats; fixed-point
    conversion happens only at persistence boundaries (see core.models.fixed).
    """

    model_config = ConfigDict(frozen=True)

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    @model_validator(mode="after")
    def _check_range(self) -> "Candle":
        if not (self.low <= min(self.open, self.close) and max(self.open, self.close) <= self.high):
            raise ValueError(
                f"Candle at {self.timestamp} violates low <= open,close <= high "
                f"(o={self.open} h={self.high} l={self.low} c={self.close})"
            )
        if self.volume < 0:
            raise ValueError(f"Candle at {self.timestamp} has negative volume")
        return self

    @property
    def is_bullish(self) -> bool:
        """Close at or above open (drives the intrabar path order)."""
        return self.close >= self.open

    @property
    def typical_price(self) -> float:
        return (self.high + self.low + self.close) / 3.0


class OhlcvSeries:
    """Column-oriented candle history for one symbol.

    Indicator functions operate on numpy arrays, so the engine converts a
    candle list once per evaluation instead of re-extracting each column
    per indicator.
    """

    __slots__ = ("timestamps", "opens", "highs", "lows", "closes", "volumes")

    def __init__(
        self,
        timestamps: Sequence[int] | np.ndarray,
        opens: Sequence[float] | np.ndarray,
        highs: Sequence[float] | np.ndarray,
        lows: Sequence[float] | np.ndarray,
        closes: Sequence[float] | np.ndarray,
        volumes: Sequence[float] | np.ndarray,
    ):
        self.timestamps = np.asarray(timestamps, dtype=np.int64)
        self.opens = np.asarray(opens, dtype=np.float64)
        self.highs = np.asarray(highs, dtype=np.float64)
        self.lows = np.asarray(lows, dtype=np.float64)
        self.closes = np.asarray(closes, dtype=np.float64)
        self.volumes = np.asarray(volumes, dtype=np.float64)

        n = len(self.timestamps)
        for name in ("opens", "highs", "lows", "closes", "volumes"):
            if len(getattr(self, name)) != n:
                raise ValueError(
                    f"OhlcvSeries column '{name}' has length {len(getattr(self, name))}, expected {n}"
                )

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> "OhlcvSeries":
        """Build a series from candle models (timestamps must be increasing)."""
        for prev, cur in zip(candles, candles[1:]):
            if cur.timestamp <= prev.timestamp:
                raise ValueError(
                    f"Candle timestamps must be strictly increasing ({prev.timestamp} -> {cur.timestamp})"
                )
        return cls(
            timestamps=[c.timestamp for c in candles],
            opens=[c.open for c in candles],
            highs=[c.high for c in candles],
            lows=[c.low for c in candles],
            closes=[c.close for c in candles],
            volumes=[c.volume for c in candles],
        )

    def __len__(self) -> int:
        return len(self.timestamps)

    def window(self, start: int, stop: int) -> "OhlcvSeries":
        """Return the bars in [start, stop) as a new series (views, no copy)."""
        return OhlcvSeries(
            self.timestamps[start:stop],
            self.opens[start:stop],
            self.highs[start:stop],
            self.lows[start:stop],
            self.closes[start:stop],
            self.volumes[start:stop],
        )

    def candle(self, index: int) -> Candle:
        """Materialize one bar as a Candle model."""
        return Candle(
            timestamp=int(self.timestamps[index]),
            open=float(self.opens[index]),
            high=float(self.highs[index]),
            low=float(self.lows[index]),
            close=float(self.closes[index]),
            volume=float(self.volumes[index]),
        )

    def candles(self, start: int = 0, stop: int | None = None) -> list[Candle]:
        stop = len(self) if stop is None else stop
        return [self.candle(i) for i in range(start, stop)]

    @property
    def last_close(self) -> float:
        return float(self.closes[-1])

    @property
    def last_timestamp(self) -> int:
        return int(self.timestamps[-1])
