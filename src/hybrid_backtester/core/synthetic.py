"""Seeded synthetic OHLCV data for demos, smoke runs and tests."""

import numpy as np

from hybrid_backtester.core.candles import Candle

HOUR_MS = 60 * 60 * 1000
SECOND_MS = 1000


def generate_sample_candles(
    n: int = 720,
    start_price: float = 100.0,
    interval_ms: int = HOUR_MS,
    start_time_ms: int = 1_735_689_600_000,
    volatility: float = 0.006,
    seed: int = 42,
) -> list[Candle]:
    """
    Generate a random walk with a slow cyclical drift.

    Volume rises with the size of the move so volume-confirmed breakouts
    actually occur in the generated series.
    """
    rng = np.random.RandomState(seed)
    candles: list[Candle] = []
    price = start_price

    for i in range(n):
        drift = np.sin(i / 200.0) * volatility * 0.15
        change = drift + rng.normal(0.0, volatility)
        open_price = price
        close = max(open_price * (1.0 + change), 1e-6)
        spread = abs(change) + volatility * 0.3
        high = max(open_price, close) * (1.0 + rng.uniform(0.0, spread * 0.7))
        low = min(open_price, close) * (1.0 - rng.uniform(0.0, spread * 0.7))
        volume = 800.0 + abs(change) * 30_000.0 + rng.uniform(0.0, 400.0)

        candles.append(Candle(
            timestamp=float(start_time_ms + i * interval_ms),
            open=float(open_price),
            high=float(high),
            low=float(max(low, 1e-6)),
            close=float(close),
            volume=float(volume),
        ))
        price = close

    return candles


def generate_seconds_candles(n: int = 3600, seed: int = 42) -> list[Candle]:
    """Per-second candles with proportionally lower volatility."""
    return generate_sample_candles(n=n, interval_ms=SECOND_MS, volatility=0.0005, seed=seed)
