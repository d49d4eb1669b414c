"""
Swing Point Tracker

Maintains the bounded set of confirmed local extrema that anchor the
retracement levels. A candle is a swing high (low) when its high (low) is
strictly more extreme than every other candle within ``lookback`` candles
on either side; a neighbour that merely ties disqualifies it.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from hybrid_backtester.core.candles import Candle
from hybrid_backtester.core.diagnostics import DiagnosticSink, null_sink

# Points older than lookback * RETENTION_FACTOR candles are pruned.
RETENTION_FACTOR = 10


class SwingKind(str, Enum):
    """Swing point type."""

    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class SwingPoint:
    """A confirmed swing high or swing low."""

    index: int
    price: float
    kind: SwingKind
    timestamp: float


def validate_swing_point(point: object) -> str | None:
    """Return the reason a point is invalid, or None when it is valid."""
    if not isinstance(point, SwingPoint):
        return "not a swing point"
    if not isinstance(point.kind, SwingKind):
        return f"unknown kind {point.kind!r}"
    try:
        index = float(point.index)
        price = float(point.price)
        timestamp = float(point.timestamp)
    except (TypeError, ValueError):
        return "non-numeric field"
    if not (math.isfinite(index) and math.isfinite(price) and math.isfinite(timestamp)):
        return "non-finite field"
    if index < 0 or timestamp < 0:
        return "negative index or timestamp"
    if price <= 0:
        return "non-positive price"
    return None


class SwingPointTracker:
    """
    Owns the swing points of one backtest run.

    ``add_point`` is the only way into the working set and rejects invalid
    points, so every stored point has passed validation.
    """

    def __init__(self, lookback: int, diagnostics: DiagnosticSink = null_sink) -> None:
        if lookback < 1:
            raise ValueError("lookback must be at least 1")
        self.lookback = lookback
        self._diagnostics = diagnostics
        self._points: list[SwingPoint] = []

    @property
    def points(self) -> tuple[SwingPoint, ...]:
        return tuple(self._points)

    @property
    def max_age(self) -> int:
        return self.lookback * RETENTION_FACTOR

    def add_point(self, point: SwingPoint) -> bool:
        """Validate and append a point. Invalid points are reported and dropped."""
        reason = validate_swing_point(point)
        if reason is not None:
            self._diagnostics("swing_point_rejected", reason=reason, point=repr(point))
            return False
        self._points.append(point)
        return True

    def initialize(self, candles: Sequence[Candle | None]) -> None:
        """Seed one high and one low near the start of the series."""
        n = len(candles)
        if n < self.lookback * 2:
            self._diagnostics("swing_seed_skipped", candles=n, required=self.lookback * 2)
            return

        high_index = min(self.lookback, n - 1)
        low_index = min(self.lookback * 2, n - 1)

        high_candle = candles[high_index]
        if high_candle is not None:
            self.add_point(SwingPoint(high_index, high_candle.high, SwingKind.HIGH, high_candle.timestamp))
        low_candle = candles[low_index]
        if low_candle is not None:
            self.add_point(SwingPoint(low_index, low_candle.low, SwingKind.LOW, low_candle.timestamp))

    def update(self, candles: Sequence[Candle | None], current_index: int) -> list[SwingPoint]:
        """
        Test the candle ``lookback`` bars back for a swing, then prune by age.

        Returns the points confirmed on this call.
        """
        if current_index < self.lookback * 2:
            return []

        center_index = current_index - self.lookback
        if center_index < 0 or center_index >= len(candles):
            return []
        center = candles[center_index]
        if center is None:
            return []

        is_high = True
        is_low = True
        for i in range(center_index - self.lookback, center_index + self.lookback + 1):
            if i == center_index or i < 0 or i >= len(candles):
                continue
            neighbour = candles[i]
            if neighbour is None:
                continue
            if neighbour.high >= center.high:
                is_high = False
            if neighbour.low <= center.low:
                is_low = False
            if not is_high and not is_low:
                break

        confirmed: list[SwingPoint] = []
        if is_high:
            point = SwingPoint(center_index, center.high, SwingKind.HIGH, center.timestamp)
            if self.add_point(point):
                confirmed.append(point)
        if is_low:
            point = SwingPoint(center_index, center.low, SwingKind.LOW, center.timestamp)
            if self.add_point(point):
                confirmed.append(point)

        self._prune(current_index)
        return confirmed

    def _prune(self, current_index: int) -> None:
        kept = [p for p in self._points if current_index - p.index <= self.max_age]
        if len(kept) != len(self._points):
            self._diagnostics("swing_points_pruned", removed=len(self._points) - len(kept))
        self._points = kept
