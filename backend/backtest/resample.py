"""Higher-timeframe aggregation for backtests.

Primary bars are grouped into fixed-size blocks counted from the first bar
of the series. Only complete blocks are emitted, so the HTF view at bar
``i`` never contains data from bars after ``i``.
"""

from __future__ import annotations

import numpy as np

from core.models.candle import OhlcvSeries


def htf_factor(primary_minutes: int, htf_minutes: int) -> int:
    """Number of primary bars per HTF bar (e.g. 60m over 3m = 20)."""
    if primary_minutes <= 0 or htf_minutes < primary_minutes:
        raise ValueError(
            f"HTF interval {htf_minutes}m must be >= primary interval {primary_minutes}m"
        )
    return max(1, round(htf_minutes / primary_minutes))


def resample(series: OhlcvSeries, factor: int) -> OhlcvSeries:
    """Aggregate every ``factor`` bars into one; a trailing partial block is dropped.

    Args:
        series: Primary-timeframe bars
        factor: Bars per aggregated bar

    Returns:
        OhlcvSeries with len(series) // factor bars, each stamped with the
        timestamp of its first primary bar
    """
    if factor < 1:
        raise ValueError(f"Resample factor must be >= 1, got {factor}")
    groups = len(series) // factor
    usable = groups * factor
    if groups == 0:
        return OhlcvSeries([], [], [], [], [], [])

    def blocks(arr: np.ndarray) -> np.ndarray:
        return arr[:usable].reshape(groups, factor)

    return OhlcvSeries(
        timestamps=blocks(series.timestamps)[:, 0],
        opens=blocks(series.opens)[:, 0],
        highs=blocks(series.highs).max(axis=1),
        lows=blocks(series.lows).min(axis=1),
        closes=blocks(series.closes)[:, -1],
        volumes=blocks(series.volumes).sum(axis=1),
    )


def complete_groups(bar_index: int, factor: int) -> int:
    """HTF bars fully closed once primary bar ``bar_index`` has closed."""
    return (bar_index + 1) // factor
