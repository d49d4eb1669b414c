"""
Hybrid Backtester — Bollinger band / Fibonacci retracement scalping backtests.

Simulates the hybrid strategy on historical OHLCV candles and grid-searches
its parameter space for the best-scoring configuration.
"""

__version__ = "1.0.0"
