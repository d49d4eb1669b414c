"""
Candle model and the ingestion boundary.

Candles are validated exactly once, when a raw sequence is ingested.
Invalid entries are replaced by ``None`` so the result stays index-aligned
with any parallel indicator series.
"""

import math
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from hybrid_backtester.core.diagnostics import DiagnosticSink, null_sink

# Unix timestamps above this are treated as seconds/milliseconds, not row numbers.
_MIN_UNIX_TIMESTAMP = 1_000_000_000
_SECONDS_CUTOFF = 10_000_000_000

CANDLE_FIELDS = ("timestamp", "open", "high", "low", "close", "volume")


@dataclass(frozen=True)
class Candle:
    """One OHLCV bar. ``timestamp`` is epoch milliseconds."""

    timestamp: float
    open: float
    high: float
    low: float
    close: float
    volume: float

    def to_dict(self) -> dict[str, float]:
        return {name: getattr(self, name) for name in CANDLE_FIELDS}


@dataclass(frozen=True)
class CandleParseResult:
    """Outcome of validating a single raw candle."""

    candle: Candle | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.candle is not None


def parse_candle(raw: Candle | Mapping[str, Any]) -> CandleParseResult:
    """Validate a raw candle (a Candle or a mapping with OHLCV keys)."""
    try:
        if isinstance(raw, Candle):
            values = raw.to_dict()
        else:
            values = {name: raw[name] for name in CANDLE_FIELDS}
        numbers = {name: float(values[name]) for name in CANDLE_FIELDS}
    except (KeyError, TypeError, ValueError) as e:
        return CandleParseResult(error=f"unreadable candle: {e}")

    for name, value in numbers.items():
        if not math.isfinite(value):
            return CandleParseResult(error=f"non-finite {name}")
    if numbers["timestamp"] < 0:
        return CandleParseResult(error="negative timestamp")
    for name in ("open", "high", "low", "close"):
        if numbers[name] <= 0:
            return CandleParseResult(error=f"non-positive {name}")
    if numbers["volume"] < 0:
        return CandleParseResult(error="negative volume")
    if numbers["high"] < numbers["low"]:
        return CandleParseResult(error="high below low")

    return CandleParseResult(candle=Candle(**numbers))


def ingest_candles(
    raw_candles: Iterable[Candle | Mapping[str, Any]] | pd.DataFrame,
    diagnostics: DiagnosticSink = null_sink,
) -> list[Candle | None]:
    """Validate a raw candle sequence once, keeping index alignment."""
    if isinstance(raw_candles, pd.DataFrame):
        raw_candles = frame_to_records(raw_candles)

    series: list[Candle | None] = []
    for index, raw in enumerate(raw_candles):
        result = parse_candle(raw)
        if not result.ok:
            diagnostics("candle_rejected", index=index, reason=result.error)
        series.append(result.candle)
    return series


def frame_to_records(df: pd.DataFrame) -> list[dict[str, Any]]:
    """Convert an OHLCV DataFrame to raw candle mappings."""
    missing = {"open", "high", "low", "close"} - set(df.columns)
    if missing:
        raise ValueError(f"Missing columns: {sorted(missing)}")

    frame = df.copy()
    if "timestamp" in frame.columns:
        frame["timestamp"] = _timestamps_to_ms(frame["timestamp"])
    else:
        frame["timestamp"] = np.arange(len(frame), dtype=float) * 60_000.0
    if "volume" not in frame.columns:
        frame["volume"] = 0.0

    return frame[list(CANDLE_FIELDS)].to_dict(orient="records")


def candles_from_frame(df: pd.DataFrame) -> list[Candle]:
    """Build valid candles from a DataFrame, dropping rows that fail validation."""
    return [c for c in ingest_candles(df) if c is not None]


# =============================================================================
# CSV loading
# =============================================================================


def detect_columns(headers: Iterable[str]) -> dict[str, str]:
    """Map OHLCV roles to CSV headers using loose name matching."""
    mapping: dict[str, str] = {}
    for header in headers:
        normalized = re.sub(r"[^a-z]", "", header.lower())
        if "timestamp" not in mapping and ("time" in normalized or "date" in normalized):
            mapping["timestamp"] = header
        if "open" not in mapping and "open" in normalized:
            mapping["open"] = header
        if "high" not in mapping and "high" in normalized:
            mapping["high"] = header
        if "low" not in mapping and "low" in normalized:
            mapping["low"] = header
        if "close" not in mapping and ("close" in normalized or "price" in normalized):
            mapping["close"] = header
        if "volume" not in mapping and "vol" in normalized:
            mapping["volume"] = header
    return mapping


def load_candles_csv(path: str | Path, diagnostics: DiagnosticSink = null_sink) -> list[Candle]:
    """
    Load candles from a CSV file.

    Requires a timestamp/date column and a close/price column. Missing
    open/high/low columns fall back to the close; high and low are widened
    to cover open and close. Unparseable rows are reported and skipped.
    Output is sorted by timestamp.
    """
    df = pd.read_csv(path)
    df.columns = [str(c).strip().lower() for c in df.columns]
    if df.empty:
        raise ValueError(f"CSV file {path} contains no rows")

    mapping = detect_columns(df.columns)
    if "timestamp" not in mapping or "close" not in mapping:
        raise ValueError("CSV must contain timestamp/date and close price columns")

    close = pd.to_numeric(df[mapping["close"]], errors="coerce")
    frame = pd.DataFrame({"close": close})
    for role in ("open", "high", "low"):
        column = mapping.get(role)
        values = pd.to_numeric(df[column], errors="coerce") if column else close
        frame[role] = values.fillna(close)
    frame["high"] = frame[["high", "open", "close"]].max(axis=1)
    frame["low"] = frame[["low", "open", "close"]].min(axis=1)
    if "volume" in mapping:
        frame["volume"] = pd.to_numeric(df[mapping["volume"]], errors="coerce").fillna(0.0)
    else:
        frame["volume"] = 0.0
    frame["timestamp"] = _timestamps_to_ms(df[mapping["timestamp"]])

    candles = [c for c in ingest_candles(frame, diagnostics=diagnostics) if c is not None]
    candles.sort(key=lambda c: c.timestamp)
    return candles


def _timestamps_to_ms(values: pd.Series) -> pd.Series:
    """Normalize a timestamp column (datetimes, Unix s/ms, date strings) to epoch ms."""
    if pd.api.types.is_datetime64_any_dtype(values):
        return _datetimes_to_ms(values)

    numeric = pd.to_numeric(values, errors="coerce")
    if numeric.notna().all():
        numeric = numeric.astype(float)
        is_seconds = (numeric > _MIN_UNIX_TIMESTAMP) & (numeric < _SECONDS_CUTOFF)
        return numeric.where(~is_seconds, numeric * 1000.0)

    parsed = pd.to_datetime(values, errors="coerce", utc=True)
    return _datetimes_to_ms(parsed)


def _datetimes_to_ms(values: pd.Series) -> pd.Series:
    if values.dt.tz is None:
        values = values.dt.tz_localize("UTC")
    ms = (values - pd.Timestamp(0, tz="UTC")) / pd.Timedelta(milliseconds=1)
    return ms.astype(float)
