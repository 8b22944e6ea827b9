"""Fixed-point helpers for money and ratio values.

Prices and PnL cross component and persistence boundaries as integers
scaled by 1e8; ratios (R-multiple, percentages) are scaled by 1e4.
"""

PRICE_SCALE = 100_000_000  # 1e8
RATIO_SCALE = 10_000  # 1e4


def to_fixed(value: float, scale: int = PRICE_SCALE) -> int:
    """Convert a float to a scaled integer (round half away from zero)."""
    scaled = value * scale
    if scaled >= 0:
        return int(scaled + 0.5)
    return -int(-scaled + 0.5)


def from_fixed(value: int, scale: int = PRICE_SCALE) -> float:
    """Convert a scaled integer back to float."""
    return value / scale


def price_to_fixed(value: float) -> int:
    return to_fixed(value, PRICE_SCALE)


def ratio_to_fixed(value: float) -> int:
    return to_fixed(value, RATIO_SCALE)
