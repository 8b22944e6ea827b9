"""Prediction collaborator protocol and feature extraction.

The signal engine treats the predictor as an external component: it asks
for a feature vector, per-class probabilities and whether a model has been
trained, and feeds completed simulation outcomes back for retraining.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from core.indicators.indicators import IndicatorSnapshot
from core.trend import TrendBias, TrendContext

logger = logging.getLogger(__name__)

# Training labels, worst to best
LABELS: tuple[int, ...] = (-2, -1, 0, 1, 2)

FEATURE_NAMES: tuple[str, ...] = (
    "ema",
    "htf_ema",
    "rsi",
    "macd",
    "macd_signal",
    "macd_histogram",
    "stoch_k",
    "stoch_d",
    "atr",
    "atr_pct",
    "obv",
    "vwma",
    "vwap",
    "price",
    "htf_adx",
    "htf_plus_di",
    "htf_minus_di",
    "momentum",
    "bb_bandwidth",
    "bb_percent_b",
    "engulfing",
    "price_above_ema",
    "price_above_htf_ema",
    "rsi_oversold",
    "rsi_overbought",
    "macd_bullish",
    "trend_bias",
    "volume_surge",
)
FEATURE_COUNT = len(FEATURE_NAMES)

DEFAULT_RSI_OVERSOLD = 30.0
DEFAULT_RSI_OVERBOUGHT = 70.0

_BIAS_VALUE = {TrendBias.BULLISH: 1.0, TrendBias.BEARISH: -1.0, TrendBias.NEUTRAL: 0.0}


def build_feature_vector(
    snap: IndicatorSnapshot,
    context: TrendContext,
    rsi_oversold: float = DEFAULT_RSI_OVERSOLD,
    rsi_overbought: float = DEFAULT_RSI_OVERBOUGHT,
) -> list[float]:
    """Flatten indicator readings and regime flags into a fixed-length vector.

    Order matches FEATURE_NAMES. The RSI flags use the given thresholds.
    """
    price = snap.price
    return [
        snap.ema,
        snap.htf_ema,
        snap.rsi,
        snap.macd,
        snap.macd_signal,
        snap.macd_histogram,
        snap.stoch_k,
        snap.stoch_d,
        snap.atr,
        snap.atr_pct,
        snap.obv,
        snap.vwma,
        snap.vwap,
        price,
        snap.htf_adx,
        snap.htf_plus_di,
        snap.htf_minus_di,
        snap.momentum,
        snap.bb_bandwidth,
        snap.bb_percent_b,
        float(snap.engulfing),
        1.0 if price > snap.ema else 0.0,
        1.0 if price > snap.htf_ema else 0.0,
        1.0 if snap.rsi < rsi_oversold else 0.0,
        1.0 if snap.rsi > rsi_overbought else 0.0,
        1.0 if snap.macd > snap.macd_signal else 0.0,
        _BIAS_VALUE[context.trend_bias],
        1.0 if context.has_volume_surge else 0.0,
    ]


@runtime_checkable
class Predictor(Protocol):
    """Interface the signal engine expects from a prediction model."""

    def extract_features(self, snap: IndicatorSnapshot, context: TrendContext) -> list[float]:
        """Fixed-length numeric vector for the current bar."""
        ...

    def predict(self, features: list[float], class_label: int) -> float:
        """Probability in [0, 1] that the trade ends with ``class_label``."""
        ...

    def is_model_trained(self) -> bool:
        ...

    def ingest_outcome(
        self,
        symbol: str,
        features: list[float],
        label: int,
        r_multiple: float,
        pnl: float,
    ) -> None:
        """Feedback from a completed simulation."""
        ...


@dataclass(slots=True)
class TrainingSample:
    symbol: str
    features: list[float]
    label: int
    r_multiple: float
    pnl: float


class UntrainedPredictor:
    """Default predictor with no model.

    Reports itself untrained (so the engine applies its confidence
    discount instead of gating) and keeps the most recent outcomes so a
    trainer can pick them up later.
    """

    def __init__(
        self,
        max_samples: int = 10_000,
        rsi_oversold: float = DEFAULT_RSI_OVERSOLD,
        rsi_overbought: float = DEFAULT_RSI_OVERBOUGHT,
    ):
        self._samples: deque[TrainingSample] = deque(maxlen=max_samples)
        self.rsi_oversold = rsi_oversold
        self.rsi_overbought = rsi_overbought

    def extract_features(self, snap: IndicatorSnapshot, context: TrendContext) -> list[float]:
        return build_feature_vector(snap, context, self.rsi_oversold, self.rsi_overbought)

    def predict(self, features: list[float], class_label: int) -> float:
        if class_label not in LABELS:
            raise ValueError(f"Unknown class label: {class_label}")
        return 1.0 / len(LABELS)

    def is_model_trained(self) -> bool:
        return False

    def ingest_outcome(
        self,
        symbol: str,
        features: list[float],
        label: int,
        r_multiple: float,
        pnl: float,
    ) -> None:
        self._samples.append(TrainingSample(symbol, list(features), label, r_multiple, pnl))
        logger.debug("Ingested outcome for %s: label=%d R=%.2f", symbol, label, r_multiple)

    @property
    def samples(self) -> list[TrainingSample]:
        return list(self._samples)
