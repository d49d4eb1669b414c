"""Tests for the four-gate hybrid signal evaluator."""

import pytest

from hybrid_backtester.core.diagnostics import RecordingSink
from hybrid_backtester.core.indicators import BandValue
from hybrid_backtester.core.retracement import RetracementCalculator
from hybrid_backtester.core.signals import (
    ACTIONABLE_STRENGTH,
    Direction,
    SignalEvaluator,
    SignalRequirements,
    signal_strength,
)
from hybrid_backtester.core.swing_tracker import SwingKind, SwingPoint
from tests.conftest import make_candle


@pytest.fixture
def retracement():
    """Levels over 110/100: golden zone is [103.82, 105]."""
    calc = RetracementCalculator()
    calc.recompute([
        SwingPoint(1, 110.0, SwingKind.HIGH, 0.0),
        SwingPoint(2, 100.0, SwingKind.LOW, 0.0),
    ])
    return calc


def _evaluator(retracement, sink=None, /, **requirements):
    kwargs = {"diagnostics": sink} if sink is not None else {}
    return SignalEvaluator(
        retracement,
        SignalRequirements(**requirements),
        stop_loss_pct=0.01,
        profit_target=0.02,
        **kwargs,
    )


# Previous close inside the band, current close breaks above it inside the zone.
LONG_PREV = make_candle(index=0, open=103.5, high=104.0, low=103.0, close=103.9)
LONG_CUR = make_candle(index=1, open=104.0, high=104.8, low=103.9, close=104.5, volume=2000.0)
LONG_PREV_BAND = BandValue(upper=104.0, middle=102.0, lower=100.0)
LONG_BAND = BandValue(upper=104.2, middle=102.2, lower=100.2)

# Previous close inside the band, current close breaks below it inside the zone.
SHORT_PREV = make_candle(index=0, open=104.8, high=105.2, low=104.5, close=104.9)
SHORT_CUR = make_candle(index=1, open=104.7, high=104.8, low=104.1, close=104.2, volume=2000.0)
SHORT_PREV_BAND = BandValue(upper=108.0, middle=106.0, lower=104.5)
SHORT_BAND = BandValue(upper=108.0, middle=106.0, lower=104.4)


class TestSignalStrength:

    def test_weights(self):
        assert signal_strength(True, True, True, True) == 100
        assert signal_strength(True, False, False, False) == 30
        assert signal_strength(False, True, True, True) == 70
        assert signal_strength(False, False, False, False) == 0

    def test_actionable_threshold(self):
        assert ACTIONABLE_STRENGTH == 70


class TestLongSignal:

    def test_all_gates_pass(self, retracement):
        sink = RecordingSink()
        signal = _evaluator(retracement, sink).evaluate(LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1000.0)
        assert signal is not None
        assert signal.direction is Direction.LONG
        assert signal.strength == 100
        assert signal.actionable
        assert signal.entry_price == 104.5
        assert signal.stop_price == pytest.approx(104.5 * 0.99)
        assert signal.target_price == pytest.approx(104.5 * 1.02)
        assert sink.count("signal_generated") == 1

    def test_volume_gate_blocks(self, retracement):
        signal = _evaluator(retracement).evaluate(LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1600.0)
        assert signal is None

    def test_volume_gate_disabled(self, retracement):
        signal = _evaluator(retracement, volume=False).evaluate(
            LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1600.0,
        )
        assert signal is not None
        assert signal.strength == 100

    def test_zero_volume_ma_fails_gate(self, retracement):
        assert _evaluator(retracement).evaluate(LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 0.0) is None

    def test_nan_volume_ma_treated_as_zero(self, retracement):
        evaluator = _evaluator(retracement)
        assert evaluator.evaluate(LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, float("nan")) is None

    def test_outside_golden_zone(self, retracement):
        high = make_candle(index=1, open=105.5, high=106.5, low=105.4, close=106.0, volume=2000.0)
        evaluator = _evaluator(retracement)
        assert evaluator.evaluate(high, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1000.0) is None
        relaxed = _evaluator(retracement, retracement=False)
        assert relaxed.evaluate(high, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1000.0) is not None

    def test_no_breakout_when_already_above(self, retracement):
        prev_band = BandValue(upper=103.5, middle=102.0, lower=100.0)
        assert _evaluator(retracement).evaluate(LONG_CUR, LONG_PREV, LONG_BAND, prev_band, 1000.0) is None

    def test_momentum_requires_close_above_previous(self, retracement):
        prev = make_candle(index=0, open=103.5, high=104.7, low=103.0, close=104.6)
        prev_band = BandValue(upper=104.7, middle=102.0, lower=100.0)
        assert _evaluator(retracement).evaluate(LONG_CUR, prev, LONG_BAND, prev_band, 1000.0) is None


class TestShortSignal:

    def test_all_gates_pass(self, retracement):
        signal = _evaluator(retracement).evaluate(SHORT_CUR, SHORT_PREV, SHORT_BAND, SHORT_PREV_BAND, 1000.0)
        assert signal is not None
        assert signal.direction is Direction.SHORT
        assert signal.stop_price == pytest.approx(104.2 * 1.01)
        assert signal.target_price == pytest.approx(104.2 * 0.98)

    def test_long_wins_when_every_gate_is_disabled(self, retracement):
        evaluator = _evaluator(retracement, breakout=False, retracement=False, volume=False, momentum=False)
        signal = evaluator.evaluate(SHORT_CUR, SHORT_PREV, SHORT_BAND, SHORT_PREV_BAND, 0.0)
        assert signal.direction is Direction.LONG
        assert signal.strength == 100


class TestMissingInputs:

    @pytest.mark.parametrize("missing", ["candle", "prev_candle", "band", "prev_band"])
    def test_returns_none(self, retracement, missing):
        args = {
            "candle": LONG_CUR,
            "prev_candle": LONG_PREV,
            "band": LONG_BAND,
            "prev_band": LONG_PREV_BAND,
        }
        args[missing] = None
        assert _evaluator(retracement).evaluate(volume_ma=1000.0, **args) is None

    def test_no_levels_blocks_retracement_gate(self):
        evaluator = _evaluator(RetracementCalculator())
        assert evaluator.evaluate(LONG_CUR, LONG_PREV, LONG_BAND, LONG_PREV_BAND, 1000.0) is None
