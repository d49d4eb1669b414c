"""
Fibonacci retracement levels between the two most recent opposing swings.

``price = high - (high - low) * proportion`` where ``high``/``low`` are the
larger/smaller of the latest swing-high and swing-low prices, regardless of
which kind printed the larger value.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from hybrid_backtester.core.diagnostics import DiagnosticSink, null_sink
from hybrid_backtester.core.swing_tracker import SwingKind, SwingPoint

FIB_PROPORTIONS: tuple[float, ...] = (0.0, 0.236, 0.382, 0.5, 0.618, 0.786, 1.0)

_LEVEL_LABELS = {
    0.0: "0%",
    0.236: "23.6%",
    0.382: "38.2%",
    0.5: "50%",
    0.618: "61.8%",
    0.786: "78.6%",
    1.0: "100%",
}


def level_label(proportion: float) -> str:
    """Human-readable label for a retracement proportion."""
    label = _LEVEL_LABELS.get(proportion)
    if label is not None:
        return label
    return f"{proportion * 100:.1f}%"


@dataclass(frozen=True)
class RetracementLevel:
    """A price at a fixed proportion of the current swing range."""

    proportion: float
    price: float
    label: str


class RetracementCalculator:
    """Holds the current level set and answers golden-zone queries."""

    def __init__(
        self,
        golden_zone_min: float = 0.5,
        golden_zone_max: float = 0.618,
        proportions: Sequence[float] = FIB_PROPORTIONS,
        diagnostics: DiagnosticSink = null_sink,
    ) -> None:
        if not proportions:
            raise ValueError("at least one retracement proportion is required")
        self.golden_zone_min = golden_zone_min
        self.golden_zone_max = golden_zone_max
        self.proportions = tuple(proportions)
        self._diagnostics = diagnostics
        self._levels: tuple[RetracementLevel, ...] = ()
        self._anchor: tuple[float, float] | None = None

    @property
    def levels(self) -> tuple[RetracementLevel, ...]:
        return self._levels

    @property
    def anchor(self) -> tuple[float, float] | None:
        """``(high, low)`` the current levels were derived from."""
        return self._anchor

    def recompute(self, points: Iterable[SwingPoint]) -> bool:
        """
        Rebuild levels from the most recent high-type and low-type points.

        Keeps the previous levels when a kind is missing or the range is
        zero. Returns True when the level set changed.
        """
        last_high: SwingPoint | None = None
        last_low: SwingPoint | None = None
        for point in points:
            if point.kind is SwingKind.HIGH:
                last_high = point
            elif point.kind is SwingKind.LOW:
                last_low = point

        if last_high is None or last_low is None:
            return False

        high = max(last_high.price, last_low.price)
        low = min(last_high.price, last_low.price)
        price_range = high - low
        if price_range <= 0:
            self._diagnostics("retracement_range_degenerate", high=high, low=low)
            return False

        if self._anchor == (high, low):
            return False

        self._anchor = (high, low)
        self._levels = tuple(
            RetracementLevel(proportion=p, price=high - price_range * p, label=level_label(p))
            for p in self.proportions
        )
        return True

    def level_for(self, proportion: float) -> RetracementLevel | None:
        """The level matching ``proportion``, or the nearest one when none matches exactly."""
        if not self._levels:
            return None
        return min(self._levels, key=lambda level: abs(level.proportion - proportion))

    def golden_zone(self) -> tuple[float, float] | None:
        """``(lower_price, upper_price)`` of the golden zone, if levels exist."""
        zone_a = self.level_for(self.golden_zone_min)
        zone_b = self.level_for(self.golden_zone_max)
        if zone_a is None or zone_b is None:
            return None
        return min(zone_a.price, zone_b.price), max(zone_a.price, zone_b.price)

    def in_zone(self, price: float, direction: str) -> bool:
        # Long and short share one interval.
        # TODO: decide whether shorts should use the mirrored (low-anchored) zone.
        zone = self.golden_zone()
        if zone is None:
            return False
        lower, upper = zone
        return lower <= price <= upper
