"""Core strategy components — candles, indicators, swing points, retracements, signals, positions."""

from hybrid_backtester.core.candles import (
    Candle,
    CandleParseResult,
    candles_from_frame,
    ingest_candles,
    load_candles_csv,
    parse_candle,
)
from hybrid_backtester.core.diagnostics import DiagnosticSink, RecordingSink, null_sink
from hybrid_backtester.core.indicators import BandValue, calculate_bollinger_bands, calculate_volume_ma
from hybrid_backtester.core.position import ExitReason, PositionManager, Trade
from hybrid_backtester.core.retracement import (
    FIB_PROPORTIONS,
    RetracementCalculator,
    RetracementLevel,
)
from hybrid_backtester.core.signals import (
    ACTIONABLE_STRENGTH,
    Direction,
    Signal,
    SignalEvaluator,
    SignalRequirements,
)
from hybrid_backtester.core.swing_tracker import (
    SwingKind,
    SwingPoint,
    SwingPointTracker,
    validate_swing_point,
)
from hybrid_backtester.core.synthetic import generate_sample_candles, generate_seconds_candles

__all__ = [
    "Candle",
    "CandleParseResult",
    "parse_candle",
    "ingest_candles",
    "candles_from_frame",
    "load_candles_csv",
    "DiagnosticSink",
    "RecordingSink",
    "null_sink",
    "BandValue",
    "calculate_bollinger_bands",
    "calculate_volume_ma",
    "SwingKind",
    "SwingPoint",
    "SwingPointTracker",
    "validate_swing_point",
    "FIB_PROPORTIONS",
    "RetracementCalculator",
    "RetracementLevel",
    "ACTIONABLE_STRENGTH",
    "Direction",
    "Signal",
    "SignalEvaluator",
    "SignalRequirements",
    "ExitReason",
    "PositionManager",
    "Trade",
    "generate_sample_candles",
    "generate_seconds_candles",
]
