"""
Band and volume indicators.

Both functions are pure: output depends only on the candle series and
the parameters, and is index-aligned with the input.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
import pandas as pd

from hybrid_backtester.core.candles import Candle


@dataclass(frozen=True)
class BandValue:
    """Upper/middle/lower Bollinger band values for one candle."""

    upper: float
    middle: float
    lower: float


def calculate_bollinger_bands(
    candles: Sequence[Candle | None],
    period: int,
    std_dev: float,
    offset: float = 0.0,
) -> list[BandValue | None]:
    """
    Bollinger bands over closes (population standard deviation).

    ``offset`` widens both bands by an absolute price amount. Entries are
    ``None`` during the warm-up window and wherever the window contains a
    missing candle.
    """
    if period < 1:
        raise ValueError("period must be at least 1")

    closes = pd.Series(
        [c.close if c is not None else np.nan for c in candles],
        dtype=float,
    )
    rolling = closes.rolling(window=period, min_periods=period)
    sma = rolling.mean().to_numpy()
    std = rolling.std(ddof=0).to_numpy()

    bands: list[BandValue | None] = []
    for middle, deviation in zip(sma, std):
        if math.isnan(middle) or math.isnan(deviation):
            bands.append(None)
            continue
        width = deviation * std_dev + offset
        bands.append(BandValue(
            upper=float(middle + width),
            middle=float(middle),
            lower=float(middle - width),
        ))
    return bands


def calculate_volume_ma(candles: Sequence[Candle | None], period: int = 20) -> list[float]:
    """
    Simple moving average of volume.

    The first ``period - 1`` entries carry the candle's own volume. Missing
    candles count as zero volume.
    """
    if period < 1:
        raise ValueError("period must be at least 1")

    volumes = pd.Series([c.volume if c is not None else 0.0 for c in candles], dtype=float)
    averages = volumes.rolling(window=period, min_periods=period).mean()
    return averages.fillna(volumes).tolist()
