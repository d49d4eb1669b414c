"""
IndicatorCache — Share band calculations across optimization combinations.

Every combination of a sweep runs on the same candle series, and many
combinations share the band parameters (period, width, offset). Bands are
computed once per distinct parameter triple and reused.
"""

import hashlib
import json
from collections.abc import Callable, Sequence
from typing import Any

from hybrid_backtester.core.candles import Candle
from hybrid_backtester.core.indicators import BandValue, calculate_bollinger_bands
from hybrid_backtester.logging import get_logger

logger = get_logger(__name__)


class IndicatorCache:
    """
    In-memory cache for indicator series.

    Keys combine the indicator name, a hash of the input series and the
    parameters. Workers of a process pool each get their own copy.
    """

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._cache: dict[str, Any] = {}
        self._max_size = max_size
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        if value is not None:
            self._hits += 1
        else:
            self._misses += 1
        return value

    def put(self, key: str, value: Any) -> None:
        """Cache a value. Evicts the oldest tenth when at capacity."""
        if key not in self._cache and len(self._cache) >= self._max_size:
            remove_count = max(1, self._max_size // 10)
            for k in list(self._cache.keys())[:remove_count]:
                del self._cache[k]
            logger.debug("Cache eviction", evicted=remove_count)

        self._cache[key] = value

    def get_or_compute(self, key: str, compute_fn: Callable[[], Any]) -> Any:
        value = self.get(key)
        if value is not None:
            return value
        value = compute_fn()
        self.put(key, value)
        return value

    def bollinger_bands(
        self,
        candles: Sequence[Candle | None],
        period: int,
        std_dev: float,
        offset: float = 0.0,
        data_hash: str | None = None,
    ) -> list[BandValue | None]:
        """Bands for ``candles``; pass ``data_hash`` to skip rehashing the series."""
        if data_hash is None:
            data_hash = self.hash_candles(candles)
        key = self.make_key("bollinger", data_hash, period=period, std_dev=std_dev, offset=offset)
        return self.get_or_compute(
            key, lambda: calculate_bollinger_bands(candles, period, std_dev, offset),
        )

    def clear(self) -> None:
        self._cache.clear()
        self._hits = 0
        self._misses = 0

    @property
    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._cache),
            "max_size": self._max_size,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total, 4) if total > 0 else 0.0,
        }

    @staticmethod
    def make_key(indicator: str, data_hash: str, **params: Any) -> str:
        param_str = json.dumps(params, sort_keys=True)
        return f"{indicator}:{data_hash}:{param_str}"

    @staticmethod
    def hash_data(data: Sequence[float | None]) -> str:
        """Short hash of numeric data for cache keys."""
        serialized = ",".join(str(x) for x in data)
        return hashlib.sha256(serialized.encode()).hexdigest()[:16]

    @classmethod
    def hash_candles(cls, candles: Sequence[Candle | None]) -> str:
        return cls.hash_data([c.close if c is not None else None for c in candles])
