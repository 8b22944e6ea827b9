"""Shared fixtures."""

import pytest

from builders import BEARISH_SNAPSHOT, BULLISH_SNAPSHOT, NEUTRAL_SNAPSHOT, build_snapshot
from core.indicators import IndicatorSnapshot


@pytest.fixture
def bullish_snapshot() -> IndicatorSnapshot:
    return build_snapshot(BULLISH_SNAPSHOT)


@pytest.fixture
def bearish_snapshot() -> IndicatorSnapshot:
    return build_snapshot(BEARISH_SNAPSHOT)


@pytest.fixture
def neutral_snapshot() -> IndicatorSnapshot:
    return build_snapshot(NEUTRAL_SNAPSHOT)
