"""
Hybrid entry signal evaluation.

Four independent gates, each bypassed when its requirement is disabled:

- breakout: close crosses out of the band since the previous candle
- retracement: close sits inside the golden zone
- volume: volume exceeds ``volume_ma * volume_threshold``
- momentum: close beyond open and beyond the previous close

Every gate must pass for a signal to be emitted. Long is evaluated first
and wins when both directions qualify on the same candle.
"""

import math
from dataclasses import dataclass
from enum import Enum

from hybrid_backtester.core.candles import Candle
from hybrid_backtester.core.diagnostics import DiagnosticSink, null_sink
from hybrid_backtester.core.indicators import BandValue
from hybrid_backtester.core.retracement import RetracementCalculator

BREAKOUT_WEIGHT = 30
RETRACEMENT_WEIGHT = 25
VOLUME_WEIGHT = 25
MOMENTUM_WEIGHT = 20

# Minimum strength for the position manager to act on a signal.
ACTIONABLE_STRENGTH = 70


class Direction(str, Enum):
    """Trade direction."""

    LONG = "long"
    SHORT = "short"


@dataclass(frozen=True)
class Signal:
    """A directional entry proposal produced for one candle."""

    direction: Direction
    strength: int
    breakout: bool
    retracement: bool
    volume: bool
    momentum: bool
    entry_price: float
    stop_price: float
    target_price: float

    @property
    def actionable(self) -> bool:
        return self.strength >= ACTIONABLE_STRENGTH


def signal_strength(breakout: bool, retracement: bool, volume: bool, momentum: bool) -> int:
    strength = 0
    if breakout:
        strength += BREAKOUT_WEIGHT
    if retracement:
        strength += RETRACEMENT_WEIGHT
    if volume:
        strength += VOLUME_WEIGHT
    if momentum:
        strength += MOMENTUM_WEIGHT
    return strength


@dataclass(frozen=True)
class SignalRequirements:
    """Which gates are enforced and how the volume gate is scaled."""

    breakout: bool = True
    retracement: bool = True
    volume: bool = True
    momentum: bool = True
    volume_threshold: float = 1.3


class SignalEvaluator:
    """Combines the four gates into an optional Signal."""

    def __init__(
        self,
        retracement: RetracementCalculator,
        requirements: SignalRequirements,
        stop_loss_pct: float,
        profit_target: float,
        diagnostics: DiagnosticSink = null_sink,
    ) -> None:
        self.retracement = retracement
        self.requirements = requirements
        self.stop_loss_pct = stop_loss_pct
        self.profit_target = profit_target
        self._diagnostics = diagnostics

    def evaluate(
        self,
        candle: Candle | None,
        prev_candle: Candle | None,
        band: BandValue | None,
        prev_band: BandValue | None,
        volume_ma: float,
    ) -> Signal | None:
        if candle is None or prev_candle is None or band is None or prev_band is None:
            return None
        if not math.isfinite(volume_ma):
            volume_ma = 0.0

        req = self.requirements
        close = candle.close

        long_breakout = (prev_candle.close <= prev_band.upper and close > band.upper) if req.breakout else True
        short_breakout = (prev_candle.close >= prev_band.lower and close < band.lower) if req.breakout else True

        long_retracement = self.retracement.in_zone(close, Direction.LONG.value) if req.retracement else True
        short_retracement = self.retracement.in_zone(close, Direction.SHORT.value) if req.retracement else True

        volume_ok = (volume_ma > 0 and candle.volume > volume_ma * req.volume_threshold) if req.volume else True

        long_momentum = (close > candle.open and close > prev_candle.close) if req.momentum else True
        short_momentum = (close < candle.open and close < prev_candle.close) if req.momentum else True

        if long_breakout and long_retracement and volume_ok and long_momentum:
            return self._build(Direction.LONG, close, long_breakout, long_retracement, volume_ok, long_momentum)

        if short_breakout and short_retracement and volume_ok and short_momentum:
            return self._build(Direction.SHORT, close, short_breakout, short_retracement, volume_ok, short_momentum)

        return None

    def _build(
        self,
        direction: Direction,
        close: float,
        breakout: bool,
        retracement: bool,
        volume: bool,
        momentum: bool,
    ) -> Signal:
        if direction is Direction.LONG:
            stop = close * (1 - self.stop_loss_pct)
            target = close * (1 + self.profit_target)
        else:
            stop = close * (1 + self.stop_loss_pct)
            target = close * (1 - self.profit_target)

        strength = signal_strength(breakout, retracement, volume, momentum)
        self._diagnostics("signal_generated", direction=direction.value, strength=strength, price=close)
        return Signal(
            direction=direction,
            strength=strength,
            breakout=breakout,
            retracement=retracement,
            volume=volume,
            momentum=momentum,
            entry_price=close,
            stop_price=stop,
            target_price=target,
        )
