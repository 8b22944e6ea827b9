"""Tests for the scored signal engine."""

import numpy as np
import pytest

from backtest.resample import resample
from builders import (
    BEARISH_SNAPSHOT,
    BULLISH_SNAPSHOT,
    NEUTRAL_SNAPSHOT,
    build_series,
    build_snapshot,
)
from core.cooldown import CooldownStore
from core.models.config import StrategyConfig
from core.models.decision import DirectionalDecision, HoldDecision
from core.prediction import FEATURE_COUNT, UntrainedPredictor
from core.signal_engine import (
    INSUFFICIENT_DATA_REASON,
    MAX_SCORE_PER_SIDE,
    SignalEngine,
    StrategyInput,
    score_rules,
)
from core.trend import TrendBias, TrendContext

BULLISH_CONTEXT = TrendContext(
    is_trending=True,
    trend_bias=TrendBias.BULLISH,
    has_volume_surge=True,
    vwma_falling=False,
    has_liquidity=True,
)
BEARISH_CONTEXT = TrendContext(
    is_trending=True,
    trend_bias=TrendBias.BEARISH,
    has_volume_surge=True,
    vwma_falling=True,
    has_liquidity=True,
)


class StubPredictor(UntrainedPredictor):
    """Trained predictor returning a fixed best-class probability."""

    def __init__(self, best: float):
        super().__init__()
        self.best = best

    def is_model_trained(self) -> bool:
        return True

    def predict(self, features, class_label):
        return self.best if class_label == 2 else (1 - self.best) / 4


def make_input(symbol="BTCUSDT", bars=80, htf_bars=40) -> StrategyInput:
    return StrategyInput(
        symbol=symbol,
        primary=build_series(np.full(bars, 100.0)),
        htf=build_series(np.full(htf_bars, 100.0), step=3_600_000),
    )


def make_engine(snapshot, context, config=None, predictor=None) -> SignalEngine:
    """Engine whose indicator and regime stages return fixed readings."""
    engine = SignalEngine(config or StrategyConfig(), predictor=predictor)
    engine.calculator.snapshot = lambda primary, htf: snapshot
    engine.analyzer.analyze = lambda symbol, primary, snap: context
    return engine


class TestScoreRules:
    def test_max_score(self):
        assert MAX_SCORE_PER_SIDE == 132

    def test_all_buy_rules(self, bullish_snapshot):
        card = score_rules(bullish_snapshot, BULLISH_CONTEXT, StrategyConfig())
        assert card.buy == 112
        assert card.sell == 20  # ATR and ADX confirm both sides

    def test_all_sell_rules(self, bearish_snapshot):
        card = score_rules(bearish_snapshot, BEARISH_CONTEXT, StrategyConfig())
        assert card.sell == 112
        assert card.buy == 20

    def test_weak_macd_half_credit(self):
        snap = build_snapshot(
            NEUTRAL_SNAPSHOT,
            macd=1.0,
            macd_signal=0.5,
            macd_histogram=0.5,
            prev_macd_histogram=0.8,
        )
        context = TrendContext(trend_bias=TrendBias.BULLISH, has_liquidity=True)
        card = score_rules(snap, context, StrategyConfig())
        assert any(r.startswith("Weak bullish MACD") for r in card.reasons)
        # MACD 7.5 + ATR 10 + VWMA slope 5
        assert card.buy == pytest.approx(22.5)

    def test_oscillator_extremes(self):
        snap = build_snapshot(NEUTRAL_SNAPSHOT, rsi=25.0, stoch_k=15.0, stoch_d=10.0)
        context = TrendContext(trend_bias=TrendBias.BULLISH, has_liquidity=True)
        card = score_rules(snap, context, StrategyConfig())
        assert "Oversold RSI < 30" in card.reasons
        assert "Bullish stochastic crossover in oversold zone" in card.reasons

    def test_engulfing_needs_volume_surge(self, bullish_snapshot):
        no_surge = BULLISH_CONTEXT.model_copy(update={"has_volume_surge": False})
        card = score_rules(bullish_snapshot, no_surge, StrategyConfig())
        assert card.buy == 112 - 15


class TestDecisions:
    def test_buy(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT)
        decision = engine.generate(make_input())

        assert isinstance(decision, DirectionalDecision)
        assert decision.direction == "buy"
        expected = 112 / 132 * 100 * 0.8
        assert decision.confidence == pytest.approx(expected)
        assert decision.stop_loss == pytest.approx(98.5)
        assert decision.take_profit == pytest.approx(104.5)
        assert decision.tp_levels[0].price == pytest.approx(104.5)
        assert decision.tp_levels[0].weight == 1.0
        assert decision.trailing_stop_distance == pytest.approx(1.5 * (1 - expected / 200))
        assert decision.position_size_multiplier == pytest.approx(expected / 100)
        assert len(decision.features) == FEATURE_COUNT
        assert "ML model not trained: confidence x0.8" in decision.reasons

    def test_sell(self, bearish_snapshot):
        engine = make_engine(bearish_snapshot, BEARISH_CONTEXT)
        decision = engine.generate(make_input())

        assert decision.direction == "sell"
        assert decision.stop_loss == pytest.approx(101.5)
        assert decision.take_profit == pytest.approx(95.5)

    def test_trend_mismatch_holds(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BEARISH_CONTEXT)
        decision = engine.generate(make_input())
        assert isinstance(decision, HoldDecision)
        assert decision.reasons[-1].startswith("No clear signal")

    def test_hold_has_no_risk_fields(self, neutral_snapshot):
        context = TrendContext(trend_bias=TrendBias.BULLISH, has_liquidity=True)
        decision = make_engine(neutral_snapshot, context).generate(make_input())
        assert decision.direction == "hold"
        assert decision.confidence == 0.0
        for name in ("stop_loss", "take_profit", "tp_levels", "trailing_stop_distance"):
            assert not hasattr(decision, name)

    def test_symbol_normalized(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT)
        decision = engine.generate(make_input(symbol=" btcusdt "))
        assert decision.symbol == "BTCUSDT"

    def test_trained_predictor_gates(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT, predictor=StubPredictor(0.6))
        decision = engine.generate(make_input())
        assert decision.direction == "hold"
        assert decision.reasons[-1] == "ML probability 0.60 not above 0.70"

    def test_trained_predictor_no_discount(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT, predictor=StubPredictor(0.9))
        decision = engine.generate(make_input())
        assert decision.direction == "buy"
        assert decision.confidence == pytest.approx(112 / 132 * 100)

    def test_partial_tp_ladder_scaled(self, bullish_snapshot, caplog):
        config = StrategyConfig(tp_ladder="1.5:0.6,3.0:0.6")
        decision = make_engine(bullish_snapshot, BULLISH_CONTEXT, config).generate(make_input())

        assert [lv.weight for lv in decision.tp_levels] == pytest.approx([0.5, 0.5])
        assert [lv.price for lv in decision.tp_levels] == pytest.approx([102.25, 104.5])
        assert "partial TP weights sum above 1.0" in caplog.text

    def test_callbacks(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT)
        received = []

        def failing(decision):
            raise RuntimeError("callback down")

        engine.on_decision(failing)
        engine.on_decision(received.append)
        decision = engine.generate(make_input())

        assert received == [decision]
        engine.off_decision(received.append)


class TestTakeProfitBounds:
    def test_far_sell_target_clamped_above_zero(self, caplog):
        snap = build_snapshot(BEARISH_SNAPSHOT, atr=4.0)
        config = StrategyConfig(risk_reward_target=20.0)
        decision = make_engine(snap, BEARISH_CONTEXT, config).generate(make_input())

        assert decision.direction == "sell"
        assert decision.stop_loss == pytest.approx(106.0)
        assert decision.take_profit == pytest.approx(1.0)
        assert decision.tp_levels[0].price == pytest.approx(1.0)
        assert decision.tp_levels[0].r_multiple == pytest.approx(99.0 / 6.0)
        assert "sell TP at 20R" in caplog.text

    def test_far_sell_rung_clamped(self):
        snap = build_snapshot(BEARISH_SNAPSHOT, atr=4.0)
        config = StrategyConfig(tp_ladder="1.5:0.5,30:0.5")
        decision = make_engine(snap, BEARISH_CONTEXT, config).generate(make_input())

        assert decision.direction == "sell"
        assert [lv.price for lv in decision.tp_levels] == pytest.approx([91.0, 1.0])

    def test_far_buy_target_untouched(self, bullish_snapshot):
        config = StrategyConfig(risk_reward_target=20.0)
        decision = make_engine(bullish_snapshot, BULLISH_CONTEXT, config).generate(make_input())
        assert decision.take_profit == pytest.approx(130.0)

    def test_zero_weight_rung_dropped(self, bullish_snapshot):
        config = StrategyConfig(tp_ladder="1.5:0.5,3.0:0")
        decision = make_engine(bullish_snapshot, BULLISH_CONTEXT, config).generate(make_input())

        assert decision.direction == "buy"
        assert len(decision.tp_levels) == 1
        assert decision.tp_levels[0].price == pytest.approx(102.25)
        assert decision.tp_levels[0].weight == pytest.approx(0.5)


class TestHoldReasons:
    def test_insufficient_history(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT)
        decision = engine.generate(make_input(bars=10))
        assert decision.direction == "hold"
        assert decision.reasons == [INSUFFICIENT_DATA_REASON]

    def test_real_indicators_insufficient_htf(self):
        engine = SignalEngine()
        decision = engine.generate(make_input(htf_bars=5))
        assert decision.reasons == [INSUFFICIENT_DATA_REASON]

    def test_neutral_context(self, bullish_snapshot):
        context = TrendContext(has_liquidity=True)
        decision = make_engine(bullish_snapshot, context).generate(make_input())
        assert decision.reasons == ["Neutral trend context"]

    def test_low_liquidity(self, bullish_snapshot):
        context = TrendContext.neutral(avg_traded_value=10.0, liquidity_floor=50_000.0)
        decision = make_engine(bullish_snapshot, context).generate(make_input())
        assert decision.reasons == ["Low liquidity: 10 < 50000"]

    def test_atr_out_of_range(self):
        snap = build_snapshot(BULLISH_SNAPSHOT, atr=10.0)
        decision = make_engine(snap, BULLISH_CONTEXT).generate(make_input())
        assert decision.direction == "hold"
        assert decision.reasons[0].startswith("ATR 10.00% outside")

    def test_exception_becomes_hold(self, bullish_snapshot):
        engine = SignalEngine()

        def boom(primary, htf):
            raise RuntimeError("boom")

        engine.calculator.snapshot = boom
        decision = engine.generate(make_input())
        assert isinstance(decision, HoldDecision)
        assert decision.reasons == ["Exception: boom"]
        assert decision.symbol == "BTCUSDT"

    def test_malformed_input_becomes_hold(self):
        decision = SignalEngine().generate(None)
        assert decision.direction == "hold"
        assert decision.symbol == "UNKNOWN"
        assert decision.reasons[0].startswith("Exception:")


class TestCooldown:
    def test_cooldown_blocks_second_signal(self, bullish_snapshot):
        engine = make_engine(bullish_snapshot, BULLISH_CONTEXT)
        first = engine.generate(make_input())
        second = engine.generate(make_input())

        assert first.direction == "buy"
        assert second.direction == "hold"
        assert second.reasons == ["Cooldown active: 600s remaining"]

    def test_cooldown_uses_bar_time(self, bullish_snapshot):
        cooldowns = CooldownStore(10 * 60_000)
        engine = SignalEngine(StrategyConfig(), cooldowns=cooldowns)
        engine.calculator.snapshot = lambda primary, htf: bullish_snapshot
        engine.analyzer.analyze = lambda symbol, primary, snap: BULLISH_CONTEXT

        inp = make_input()
        assert engine.generate(inp).direction == "buy"

        later = StrategyInput(
            symbol="BTCUSDT",
            primary=build_series(np.full(80, 100.0), start=10 * 60_000),
            htf=inp.htf,
        )
        assert engine.generate(later).direction == "buy"

    def test_hold_does_not_start_cooldown(self, neutral_snapshot):
        engine = make_engine(neutral_snapshot, TrendContext(has_liquidity=True))
        engine.generate(make_input())
        assert engine.cooldowns.snapshot() == {}


class TestRealIndicators:
    def test_decision_is_well_formed(self):
        rng = np.random.default_rng(7)
        closes = 100 + np.cumsum(rng.normal(0, 0.5, 300))
        primary = build_series(closes, volume=5_000.0, spread=0.3)
        htf = build_series(closes[::7], volume=100_000.0, spread=1.0, step=3_600_000)
        decision = SignalEngine().generate(StrategyInput("ETHUSDT", primary, htf))

        assert 0.0 <= decision.confidence <= 100.0
        assert decision.symbol == "ETHUSDT"
        assert decision.timestamp == primary.last_timestamp
        if decision.direction == "hold":
            assert decision.confidence == 0.0
        else:
            assert decision.stop_loss > 0

    def test_accelerating_uptrend_buys(self):
        closes = 100.0 * 1.002 ** np.arange(300)
        primary = build_series(closes, volume=5_000.0, spread=0.3)
        htf = resample(primary, 5)
        decision = SignalEngine().generate(StrategyInput("BTCUSDT", primary, htf))

        assert decision.direction == "buy"
        assert decision.buy_score >= 70
        assert decision.buy_score - decision.sell_score >= 15
        assert "Trend confirmed by HTF ADX > 20" in decision.reasons

        price = primary.last_close
        risk = price - decision.stop_loss
        assert 0 < risk < price
        assert decision.take_profit - price == pytest.approx(3.0 * risk)
        assert decision.tp_levels[0].price == pytest.approx(decision.take_profit)
        assert 0 < decision.trailing_stop_distance < risk
        assert decision.position_size_multiplier == pytest.approx(decision.confidence / 100)
