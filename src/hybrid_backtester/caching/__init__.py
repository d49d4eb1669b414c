"""Indicator caching shared across optimization combinations."""

from hybrid_backtester.caching.indicator_cache import IndicatorCache

__all__ = ["IndicatorCache"]
