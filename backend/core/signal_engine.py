"""Scored signal engine.

Fuses indicator readings, the regime context and an external predictor
into one TradeDecision per call:

1. Cooldown / warm-up checks (HOLD if the symbol is cooling down or the
   history is too short)
2. Trend context (HOLD if neutral or illiquid)
3. Risk eligibility: ATR% of price must lie in [min_atr_pct, max_atr_pct]
4. Rule scoring into buy/sell accumulators
5. Predictor gate (trained) or confidence discount (untrained)
6. Direction + risk envelope, then an atomic cooldown claim

``generate`` never raises: every failure becomes a HOLD with a reason.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from core.cooldown import CooldownStore
from core.indicators.indicators import (
    BEARISH_ENGULFING,
    BULLISH_ENGULFING,
    IndicatorCalculator,
    IndicatorSnapshot,
)
from core.models.candle import OhlcvSeries
from core.models.config import ATR_MULTIPLIER_BOUNDS, StrategyConfig
from core.models.decision import (
    Direction,
    DirectionalDecision,
    HoldDecision,
    PartialTPLevel,
    hold,
    scale_tp_weights,
)
from core.prediction import LABELS, Predictor, UntrainedPredictor
from core.trend import TrendBias, TrendContext, TrendContextAnalyzer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rule weights (points added to the buy and/or sell accumulator)
# ---------------------------------------------------------------------------
EMA_ALIGNMENT_POINTS = 20
VWMA_VWAP_POINTS = 15
MACD_POINTS = 15
RSI_POINTS = 10
STOCH_POINTS = 10
OBV_VWMA_POINTS = 10
ATR_POINTS = 10
VWMA_SLOPE_POINTS = 5
ADX_POINTS = 10
MOMENTUM_POINTS = 12
ENGULFING_POINTS = 15

MAX_SCORE_PER_SIDE = (
    EMA_ALIGNMENT_POINTS
    + VWMA_VWAP_POINTS
    + MACD_POINTS
    + RSI_POINTS
    + STOCH_POINTS
    + OBV_VWMA_POINTS
    + ATR_POINTS
    + VWMA_SLOPE_POINTS
    + ADX_POINTS
    + MOMENTUM_POINTS
    + ENGULFING_POINTS
)

INSUFFICIENT_DATA_REASON = "Insufficient OHLCV data for indicator calculation"

# Sell-side take-profit prices never go below this fraction of entry price
MIN_TP_PRICE_FRACTION = 0.01

DecisionCallback = Callable[[HoldDecision | DirectionalDecision], None]


@dataclass(slots=True)
class StrategyInput:
    """Everything one engine call needs for one symbol."""

    symbol: str
    primary: OhlcvSeries
    htf: OhlcvSeries


@dataclass(slots=True)
class ScoreCard:
    buy: float = 0.0
    sell: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def add_buy(self, points: float, reason: str) -> None:
        self.buy += points
        self.reasons.append(reason)

    def add_sell(self, points: float, reason: str) -> None:
        self.sell += points
        self.reasons.append(reason)

    def add_both(self, points: float, reason: str) -> None:
        self.buy += points
        self.sell += points
        self.reasons.append(reason)


def score_rules(snap: IndicatorSnapshot, context: TrendContext, cfg: StrategyConfig) -> ScoreCard:
    """Apply the fixed rule table to one snapshot.

    Args:
        snap: Latest indicator readings
        context: Non-neutral trend context
        cfg: Strategy thresholds

    Returns:
        ScoreCard with raw buy/sell points and one reason per rule that fired
    """
    card = ScoreCard()
    price = snap.price

    # EMA alignment
    if price > snap.ema > snap.htf_ema:
        card.add_buy(EMA_ALIGNMENT_POINTS, "Bullish EMA alignment: price > EMA > HTF EMA")
    elif price < snap.ema < snap.htf_ema:
        card.add_sell(EMA_ALIGNMENT_POINTS, "Bearish EMA alignment: price < EMA < HTF EMA")

    # VWMA vs VWAP
    if snap.vwma > snap.vwap:
        card.add_buy(VWMA_VWAP_POINTS, "Bullish VWMA > VWAP")
    elif snap.vwma < snap.vwap:
        card.add_sell(VWMA_VWAP_POINTS, "Bearish VWMA < VWAP")

    # MACD: full credit when the histogram expands in the crossover direction
    if snap.macd > snap.macd_signal:
        if snap.macd_histogram > 0 and snap.macd_histogram > snap.prev_macd_histogram:
            card.add_buy(MACD_POINTS, "Strong bullish MACD: crossover + expanding histogram")
        else:
            card.add_buy(MACD_POINTS / 2, "Weak bullish MACD: crossover without histogram confirmation")
    elif snap.macd < snap.macd_signal:
        if snap.macd_histogram < 0 and snap.macd_histogram < snap.prev_macd_histogram:
            card.add_sell(MACD_POINTS, "Strong bearish MACD: crossover + expanding histogram")
        else:
            card.add_sell(MACD_POINTS / 2, "Weak bearish MACD: crossover without histogram confirmation")

    # RSI extremes
    if snap.rsi < cfg.rsi_oversold:
        card.add_buy(RSI_POINTS, f"Oversold RSI < {cfg.rsi_oversold:g}")
    elif snap.rsi > cfg.rsi_overbought:
        card.add_sell(RSI_POINTS, f"Overbought RSI > {cfg.rsi_overbought:g}")

    # Stochastic reversal in extreme zones
    if snap.stoch_k < cfg.stoch_oversold and snap.stoch_k > snap.stoch_d:
        card.add_buy(STOCH_POINTS, "Bullish stochastic crossover in oversold zone")
    elif snap.stoch_k > cfg.stoch_overbought and snap.stoch_k < snap.stoch_d:
        card.add_sell(STOCH_POINTS, "Bearish stochastic crossover in overbought zone")

    # OBV confirming price vs VWMA
    if snap.obv > snap.prev_obv and price > snap.vwma:
        card.add_buy(OBV_VWMA_POINTS, "OBV rising with price above VWMA")
    elif snap.obv < snap.prev_obv and price < snap.vwma:
        card.add_sell(OBV_VWMA_POINTS, "OBV falling with price below VWMA")

    # ATR in a sane range (shared confirmation)
    if cfg.min_atr_pct <= snap.atr_pct <= cfg.max_atr_pct:
        card.add_both(ATR_POINTS, f"Sane ATR volatility: {snap.atr_pct:.2f}%")

    # VWMA slope
    if context.vwma_falling:
        card.add_sell(VWMA_SLOPE_POINTS, "Bearish VWMA slope")
    else:
        card.add_buy(VWMA_SLOPE_POINTS, "Bullish VWMA slope")

    # ADX trend strength (shared confirmation)
    if context.is_trending:
        card.add_both(ADX_POINTS, f"Trend confirmed by HTF ADX > {cfg.min_adx:g}")

    # Momentum acceleration
    if snap.momentum > 0 and snap.momentum > snap.prev_momentum:
        card.add_buy(MOMENTUM_POINTS, "Positive and accelerating momentum")
    elif snap.momentum < 0 and snap.momentum < snap.prev_momentum:
        card.add_sell(MOMENTUM_POINTS, "Negative and accelerating momentum")

    # Engulfing pattern, only with a volume surge behind it
    if context.has_volume_surge:
        if snap.engulfing == BULLISH_ENGULFING:
            card.add_buy(ENGULFING_POINTS, "Bullish engulfing confirmed by volume surge")
        elif snap.engulfing == BEARISH_ENGULFING:
            card.add_sell(ENGULFING_POINTS, "Bearish engulfing confirmed by volume surge")

    return card


class SignalEngine:
    """Turn candle history into scored trade decisions.

    One engine instance owns the cooldown state for every symbol it scores;
    ``generate`` is safe to call from several threads at once.
    """

    def __init__(
        self,
        config: StrategyConfig | None = None,
        predictor: Predictor | None = None,
        cooldowns: CooldownStore | None = None,
    ):
        self.config = config or StrategyConfig()
        self.predictor: Predictor = predictor or UntrainedPredictor(
            rsi_oversold=self.config.rsi_oversold,
            rsi_overbought=self.config.rsi_overbought,
        )
        self.cooldowns = cooldowns or CooldownStore(self.config.cooldown_ms)
        self.calculator = IndicatorCalculator(self.config)
        self.analyzer = TrendContextAnalyzer(self.config)
        self._callbacks: list[DecisionCallback] = []

    def on_decision(self, callback: DecisionCallback) -> None:
        """Register callback for directional decisions."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def off_decision(self, callback: DecisionCallback) -> None:
        """Unregister callback for directional decisions."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, inp: StrategyInput) -> HoldDecision | DirectionalDecision:
        """Produce one decision for the latest bar of ``inp.primary``.

        Never raises; internal failures are returned as HOLD decisions with
        an ``Exception: ...`` reason.
        """
        symbol = str(getattr(inp, "symbol", "") or "").strip().upper() or "UNKNOWN"
        try:
            decision = self._generate(symbol, inp)
        except Exception as e:
            logger.error(f"Signal generation failed for {symbol}: {e}", exc_info=True)
            return self._fallback_hold(symbol, inp, f"Exception: {e}")

        if decision.is_directional:
            self._notify(decision)
        return decision

    # ------------------------------------------------------------------
    # Core logic
    # ------------------------------------------------------------------

    def _generate(self, symbol: str, inp: StrategyInput) -> HoldDecision | DirectionalDecision:
        cfg = self.config
        primary, htf = inp.primary, inp.htf

        if len(primary) < cfg.min_history_bars or len(htf) < cfg.min_htf_bars:
            return self._fallback_hold(symbol, inp, INSUFFICIENT_DATA_REASON)

        now = primary.last_timestamp
        price = primary.last_close

        remaining = self.cooldowns.remaining_ms(symbol, now)
        if remaining > 0:
            logger.debug("%s in cooldown (%d ms remaining)", symbol, remaining)
            return hold(symbol, now, price, f"Cooldown active: {remaining / 1000:.0f}s remaining")

        snap = self.calculator.snapshot(primary, htf)
        if snap.missing:
            return hold(
                symbol, now, price,
                INSUFFICIENT_DATA_REASON,
                f"Missing: {', '.join(snap.missing)}",
            )

        context = self.analyzer.analyze(symbol, primary, snap)
        if context.is_neutral:
            reason = (
                "Neutral trend context"
                if context.has_liquidity
                else f"Low liquidity: {context.avg_traded_value:.0f} < {context.liquidity_floor:.0f}"
            )
            return hold(symbol, now, price, reason)

        if not (cfg.min_atr_pct <= snap.atr_pct <= cfg.max_atr_pct):
            return hold(
                symbol, now, price,
                f"ATR {snap.atr_pct:.2f}% outside [{cfg.min_atr_pct:g}%, {cfg.max_atr_pct:g}%]",
            )

        card = score_rules(snap, context, cfg)
        features = self.predictor.extract_features(snap, context)

        discount = 1.0
        if self.predictor.is_model_trained():
            best = max(self.predictor.predict(features, label) for label in LABELS)
            if best <= cfg.min_ml_probability:
                return hold(
                    symbol, now, price,
                    *card.reasons,
                    f"ML probability {best:.2f} not above {cfg.min_ml_probability:.2f}",
                    buy_score=card.buy,
                    sell_score=card.sell,
                    features=features,
                )
            card.reasons.append(f"ML best class probability {best:.2f}")
        else:
            discount = cfg.untrained_ml_discount
            card.reasons.append(f"ML model not trained: confidence x{discount:g}")

        direction = self._decide(card, context)
        if direction == Direction.HOLD:
            card.reasons.append("No clear signal: insufficient score or margin, or trend mismatch")
            return hold(
                symbol, now, price,
                *card.reasons,
                buy_score=card.buy,
                sell_score=card.sell,
                features=features,
            )

        raw = card.buy if direction == Direction.BUY else card.sell
        confidence = min(max(raw / MAX_SCORE_PER_SIDE * 100.0 * discount, 0.0), 100.0)
        decision = self._build_directional(
            symbol, now, price, direction, confidence, snap.atr, card, features
        )

        if not self.cooldowns.try_claim(symbol, now):
            return hold(symbol, now, price, "Cooldown claimed by a concurrent decision")

        logger.info(
            f"{symbol} {direction.value.upper()} @ {price:.8f} | confidence {confidence:.2f}% | "
            f"buy {card.buy:.1f} sell {card.sell:.1f} | ATR {snap.atr:.6f}"
        )
        return decision

    def _decide(self, card: ScoreCard, context: TrendContext) -> Direction:
        cfg = self.config
        if (
            context.trend_bias == TrendBias.BULLISH
            and card.buy >= cfg.min_score
            and card.buy - card.sell >= cfg.min_score_margin
        ):
            return Direction.BUY
        if (
            context.trend_bias == TrendBias.BEARISH
            and card.sell >= cfg.min_score
            and card.sell - card.buy >= cfg.min_score_margin
        ):
            return Direction.SELL
        return Direction.HOLD

    def _build_directional(
        self,
        symbol: str,
        now: int,
        price: float,
        direction: Direction,
        confidence: float,
        atr_value: float,
        card: ScoreCard,
        features: list[float],
    ) -> DirectionalDecision:
        cfg = self.config
        sign = direction.sign
        lo, hi = ATR_MULTIPLIER_BOUNDS
        stop_distance = atr_value * min(max(cfg.atr_multiplier, lo), hi)

        stop_loss = price - sign * stop_distance
        take_profit, rr = self._target(symbol, price, sign, stop_distance, cfg.risk_reward_target)

        if cfg.tp_ladder:
            weights, scaled = scale_tp_weights([w for _, w in cfg.tp_ladder])
            if scaled:
                logger.warning(
                    f"{symbol}: partial TP weights sum above 1.0, scaled to {weights}"
                )
            levels = []
            for (r, _), w in zip(cfg.tp_ladder, weights):
                level_price, level_r = self._target(symbol, price, sign, stop_distance, r)
                levels.append(PartialTPLevel(price=level_price, weight=w, r_multiple=level_r))
        else:
            levels = [PartialTPLevel(price=take_profit, weight=1.0, r_multiple=rr)]

        return DirectionalDecision(
            symbol=symbol,
            timestamp=now,
            price=price,
            direction=direction.value,
            confidence=confidence,
            buy_score=card.buy,
            sell_score=card.sell,
            features=features,
            reasons=card.reasons,
            stop_loss=stop_loss,
            take_profit=take_profit,
            tp_levels=levels,
            trailing_stop_distance=stop_distance * (1 - confidence / 200.0),
            position_size_multiplier=min(confidence / 100.0, 1.0),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _target(
        symbol: str, price: float, sign: int, stop_distance: float, r_multiple: float
    ) -> tuple[float, float]:
        """Take-profit price at ``r_multiple`` R, floored above zero for sells.

        Returns:
            Tuple of (price, effective r_multiple)
        """
        target = price + sign * stop_distance * r_multiple
        floor = price * MIN_TP_PRICE_FRACTION
        if sign < 0 and target < floor:
            capped_r = (price - floor) / stop_distance
            logger.warning(
                f"{symbol}: sell TP at {r_multiple:g}R would be {target:.8f}, "
                f"clamped to {floor:.8f} ({capped_r:.2f}R)"
            )
            return floor, capped_r
        return target, r_multiple

    @staticmethod
    def _fallback_hold(symbol: str, inp: StrategyInput, reason: str) -> HoldDecision:
        primary = getattr(inp, "primary", None)
        if isinstance(primary, OhlcvSeries) and len(primary):
            return hold(symbol, primary.last_timestamp, primary.last_close, reason)
        return hold(symbol, 0, 0.0, reason)

    def _notify(self, decision: DirectionalDecision) -> None:
        for callback in self._callbacks:
            try:
                callback(decision)
            except Exception as e:
                logger.error(f"Decision callback error: {e}", exc_info=True)
