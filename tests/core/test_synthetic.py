"""Tests for synthetic candle generation."""

from hybrid_backtester.core.candles import parse_candle
from hybrid_backtester.core.synthetic import HOUR_MS, generate_sample_candles, generate_seconds_candles


class TestSyntheticCandles:

    def test_valid_and_spaced(self):
        candles = generate_sample_candles(n=200)
        assert len(candles) == 200
        assert all(parse_candle(c).ok for c in candles)
        assert all(b.timestamp - a.timestamp == HOUR_MS for a, b in zip(candles, candles[1:]))

    def test_seeded(self):
        assert generate_sample_candles(n=50, seed=3) == generate_sample_candles(n=50, seed=3)
        assert generate_sample_candles(n=50, seed=3) != generate_sample_candles(n=50, seed=4)

    def test_continuous_opens(self):
        candles = generate_sample_candles(n=50)
        assert all(b.open == a.close for a, b in zip(candles, candles[1:]))

    def test_seconds(self):
        candles = generate_seconds_candles(n=30)
        assert candles[1].timestamp - candles[0].timestamp == 1000
