"""
HybridBacktestSystem — End-to-end hybrid backtesting pipeline.

Orchestrates:
1. Single backtests (HybridBacktestSimulator)
2. Parameter optimization (HybridOptimizer)
3. Stress testing on volatile sub-periods
4. Report generation + preset export (HybridBacktestReporter)
"""

import time
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd

from hybrid_backtester.caching.indicator_cache import IndicatorCache
from hybrid_backtester.config import BacktesterSettings
from hybrid_backtester.core.candles import Candle, ingest_candles
from hybrid_backtester.engine.models import (
    BacktestResult,
    OptimizationFilters,
    ParameterGrid,
    StrategyConfig,
)
from hybrid_backtester.engine.optimizer import HybridOptimizer, ProgressCallback
from hybrid_backtester.engine.reporter import HybridBacktestReporter
from hybrid_backtester.engine.simulator import HybridBacktestSimulator
from hybrid_backtester.logging import get_logger

logger = get_logger(__name__)

MIN_STRESS_CANDLES = 20

CandleInput = Iterable[Candle | Mapping[str, Any]] | pd.DataFrame


class HybridBacktestSystem:
    """End-to-end hybrid backtesting system."""

    def __init__(
        self,
        settings: BacktesterSettings | None = None,
        max_workers: int | None = None,
        indicator_cache: IndicatorCache | None = None,
    ) -> None:
        self.settings = settings or BacktesterSettings()
        self.max_workers = max_workers if max_workers is not None else self.settings.max_workers
        self.indicator_cache = (
            indicator_cache if indicator_cache is not None
            else IndicatorCache(max_size=self.settings.indicator_cache_size)
        )
        self.reporter = HybridBacktestReporter()

    def run_single_backtest(self, config: StrategyConfig, candles: CandleInput) -> BacktestResult:
        """Run a single backtest with given config."""
        logger.info(
            "Running single backtest",
            bb_period=config.bb_period,
            swing_lookback=config.swing_lookback,
            leverage=config.leverage,
        )
        result = HybridBacktestSimulator(config).run(candles)
        logger.info(
            "Backtest complete",
            trades=result.total_trades,
            total_return=round(result.total_return, 4),
            win_rate=round(result.win_rate, 4),
            skipped_candles=result.skipped_candles,
        )
        return result

    def run_optimization(
        self,
        candles: CandleInput,
        base_config: StrategyConfig | None = None,
        grid: ParameterGrid | None = None,
        filters: OptimizationFilters | None = None,
        on_progress: ProgressCallback | None = None,
        stress_periods: int = 3,
        top_n: int = 5,
    ) -> dict[str, Any]:
        """Optimize -> stress test the best combination -> report."""
        start_time = time.perf_counter()
        base_config = base_config or StrategyConfig()

        optimizer = HybridOptimizer(
            candles,
            base_config=base_config,
            grid=grid,
            on_progress=on_progress,
            indicator_cache=self.indicator_cache,
            settings=self.settings,
            max_workers=self.max_workers,
        )
        results = optimizer.optimize(filters)

        report = self.reporter.generate_optimization_report(results, optimizer.stats, top_n=top_n)
        output: dict[str, Any] = {
            "optimization": report,
            "stress_test": {"periods_tested": 0, "results": []},
            "preset_yaml": "",
        }

        if results:
            best = results[0]
            best_config = best.params.apply(base_config)
            stress_results = self.run_stress_tests(best_config, optimizer.series, num_periods=stress_periods)
            output["stress_test"] = {
                "periods_tested": len(stress_results),
                "results": [r.to_dict() for r in stress_results],
            }
            output["preset_yaml"] = self.reporter.export_preset_yaml(best, base_config)

        output["total_duration"] = round(time.perf_counter() - start_time, 2)
        logger.info(
            "Optimization pipeline complete",
            passed=len(results),
            duration_s=output["total_duration"],
        )
        return output

    def run_stress_tests(
        self,
        config: StrategyConfig,
        candles: CandleInput,
        num_periods: int = 3,
        period_length: int | None = None,
    ) -> list[BacktestResult]:
        """Replay ``config`` on the most volatile non-overlapping sub-periods."""
        series = [c for c in ingest_candles(candles) if c is not None]
        if len(series) < MIN_STRESS_CANDLES:
            return []

        if period_length is None:
            period_length = max(MIN_STRESS_CANDLES, len(series) // 4)

        closes = np.array([c.close for c in series], dtype=float)
        highs = np.array([c.high for c in series], dtype=float)
        lows = np.array([c.low for c in series], dtype=float)

        volatilities = []
        for i in range(len(series) - period_length + 1):
            period_range = highs[i:i + period_length].max() - lows[i:i + period_length].min()
            avg_price = closes[i:i + period_length].mean()
            volatilities.append((i, period_range / avg_price if avg_price > 0 else 0.0))

        if not volatilities:
            return []

        volatilities.sort(key=lambda x: x[1], reverse=True)

        selected_starts: list[int] = []
        for start_idx, _vol in volatilities:
            if all(abs(start_idx - existing) >= period_length for existing in selected_starts):
                selected_starts.append(start_idx)
            if len(selected_starts) >= num_periods:
                break

        results = []
        for start_idx in selected_starts:
            period_candles = series[start_idx:start_idx + period_length]
            results.append(HybridBacktestSimulator(config).run(period_candles))

        logger.info("Stress tests complete", periods=len(results), period_length=period_length)

        return results
