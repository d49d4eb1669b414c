"""Shared test fixtures and helpers for hybrid backtester tests."""

import numpy as np
import pandas as pd
import pytest

from hybrid_backtester.core.candles import Candle
from hybrid_backtester.engine.models import FeatureFlags, ParameterGrid, StrategyConfig
from hybrid_backtester.logging import setup_logging

MINUTE_MS = 60_000
START_MS = 1_735_689_600_000


def make_candle(
    index: int = 0,
    open: float = 100.0,
    high: float = 101.0,
    low: float = 99.0,
    close: float = 100.5,
    volume: float = 1000.0,
    interval_ms: int = MINUTE_MS,
) -> Candle:
    return Candle(
        timestamp=float(START_MS + index * interval_ms),
        open=open,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )


def make_candles(
    n: int = 300,
    start_price: float = 100.0,
    volatility: float = 0.004,
    seed: int = 42,
    interval_ms: int = MINUTE_MS,
) -> list[Candle]:
    """Generate synthetic minute candles with realistic price movement."""
    rng = np.random.RandomState(seed)
    candles = []
    price = start_price
    for i in range(n):
        change = rng.normal(0, volatility)
        open_price = price
        close = price * (1 + change)
        high = max(open_price, close) * (1 + abs(rng.normal(0, volatility / 2)))
        low = min(open_price, close) * (1 - abs(rng.normal(0, volatility / 2)))
        volume = 500.0 + abs(change) * 50_000.0 + float(rng.uniform(0, 300))
        candles.append(Candle(
            timestamp=float(START_MS + i * interval_ms),
            open=open_price,
            high=high,
            low=low,
            close=close,
            volume=volume,
        ))
        price = close
    return candles


def candles_frame(candles: list[Candle]) -> pd.DataFrame:
    return pd.DataFrame([c.to_dict() for c in candles])


def make_rising_candles(
    n: int = 60,
    start_price: float = 100.0,
    step: float = 1.0,
    interval_ms: int = MINUTE_MS,
) -> list[Candle]:
    """Strictly increasing closes with a constant step and small wicks."""
    candles = []
    for i in range(n):
        close = start_price + i * step
        open_price = close - step / 2
        candles.append(Candle(
            timestamp=float(START_MS + i * interval_ms),
            open=open_price,
            high=close + step / 10,
            low=open_price - step / 10,
            close=close,
            volume=1000.0,
        ))
    return candles


def make_small_grid(**overrides) -> ParameterGrid:
    """A grid with a handful of combinations for fast optimizer tests."""
    ranges = dict(
        bb_periods=(15, 20),
        bb_std_devs=(1.5, 2.0),
        bb_offsets=(0,),
        swing_lookbacks=(3,),
        golden_zone_mins=(0.5,),
        golden_zone_maxs=(0.618,),
        profit_targets=(0.01,),
        stop_loss_pcts=(0.005,),
        max_holdings=(8,),
        leverages=(5,),
        volume_thresholds=(1.2,),
        feature_sets=(
            FeatureFlags(),
            FeatureFlags(retracement=False, volume=False),
            FeatureFlags(breakout=True, retracement=False, volume=False, momentum=False),
        ),
    )
    ranges.update(overrides)
    return ParameterGrid(**ranges)


@pytest.fixture(autouse=True, scope="session")
def quiet_logging():
    setup_logging(log_level="WARNING", log_to_file=False)


@pytest.fixture
def candles_300():
    return make_candles(n=300)


@pytest.fixture
def rising_candles():
    return make_rising_candles(n=60)


@pytest.fixture
def open_gates_config():
    """Every entry gate disabled, so each candle with bands produces a long signal."""
    return StrategyConfig(
        bb_period=20,
        bb_std_dev=0.5,
        swing_lookback=3,
        require_breakout=False,
        require_retracement=False,
        require_volume=False,
        require_momentum=False,
        profit_target=0.5,
        stop_loss_pct=0.05,
        max_holding=39,
        leverage=2,
        initial_capital=10000.0,
    )
