"""
HybridOptimizer — Exhaustive grid search over hybrid strategy parameters.

Enumerates the Cartesian product of the ParameterGrid in a fixed order,
prunes invalid combinations before simulating them, filters the
simulated results and ranks the survivors by composite score.

Sequential by default, yielding to the event loop every ``yield_every``
combinations. ``max_workers > 1`` runs combinations in a
ProcessPoolExecutor.
"""

import asyncio
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ProcessPoolExecutor
from typing import Any

import pandas as pd

from hybrid_backtester.caching.indicator_cache import IndicatorCache
from hybrid_backtester.config import BacktesterSettings
from hybrid_backtester.core.candles import Candle, ingest_candles
from hybrid_backtester.core.diagnostics import DiagnosticSink
from hybrid_backtester.core.indicators import BandValue
from hybrid_backtester.engine.models import (
    OptimizationFilters,
    OptimizationProgress,
    OptimizationResult,
    OptimizationStats,
    ParameterGrid,
    ParameterSet,
    StrategyConfig,
)
from hybrid_backtester.engine.scoring import (
    average_signal_strength,
    average_trade_minutes,
    calculate_score,
    signal_quality,
)
from hybrid_backtester.engine.simulator import HybridBacktestSimulator, detect_seconds_timeframe
from hybrid_backtester.logging import diagnostic_sink, get_logger, log_context, setup_logging

logger = get_logger(__name__)

ProgressCallback = Callable[[OptimizationProgress], None]


# =============================================================================
# Combination evaluation
# =============================================================================


def evaluate_combination(
    series: Sequence[Candle | None],
    bands: Sequence[BandValue | None],
    base_config: StrategyConfig,
    params: ParameterSet,
    filters: OptimizationFilters,
    combination_index: int,
    holding_unit: str = "m",
    diagnostics: DiagnosticSink | None = None,
) -> OptimizationResult | None:
    """Backtest one combination. Returns None when it fails the filters."""
    config = params.apply(base_config)
    result = HybridBacktestSimulator(config, diagnostics=diagnostics).run_series(series, bands)

    if not filters.passes(result):
        return None

    return OptimizationResult(
        params=params,
        combination_index=combination_index,
        score=calculate_score(result, config),
        total_return=result.total_return,
        total_pnl=result.total_pnl,
        win_rate=result.win_rate,
        total_trades=result.total_trades,
        max_drawdown=result.max_drawdown,
        sharpe_ratio=result.sharpe_ratio,
        signal_quality=signal_quality(config),
        average_signal_strength=average_signal_strength(result.trades),
        average_trade_minutes=average_trade_minutes(result.trades),
        trading_period_days=result.trading_period_days,
        average_trades_per_day=result.average_trades_per_day,
        holding_unit=holding_unit,
    )


# Per-process state of pool workers, set by _init_worker.
_worker_series: list[Candle | None] = []
_worker_cache: IndicatorCache | None = None
_worker_hash: str = ""


def _init_worker(series: list[Candle | None], cache_size: int, log_level: str) -> None:
    global _worker_series, _worker_cache, _worker_hash
    setup_logging(log_level=log_level, log_to_file=False)
    _worker_series = series
    _worker_cache = IndicatorCache(max_size=cache_size)
    _worker_hash = IndicatorCache.hash_candles(series)


def _evaluate_in_worker(
    base_config: StrategyConfig,
    params: ParameterSet,
    filters: OptimizationFilters,
    combination_index: int,
    holding_unit: str,
) -> OptimizationResult | None:
    """Picklable entry point for ProcessPoolExecutor."""
    cache = _worker_cache if _worker_cache is not None else IndicatorCache()
    bands = cache.bollinger_bands(
        _worker_series, params.bb_period, params.bb_std_dev, params.bb_offset, data_hash=_worker_hash,
    )
    return evaluate_combination(
        _worker_series, bands, base_config, params, filters, combination_index, holding_unit,
    )


# =============================================================================
# Optimizer
# =============================================================================


class HybridOptimizer:
    """
    Grid optimizer for the hybrid strategy.

    Usage:
        optimizer = HybridOptimizer(candles, StrategyConfig())
        results = await optimizer.optimize_all(OptimizationFilters(min_trades=10))
        print(optimizer.stats.to_dict())
    """

    def __init__(
        self,
        candles: Iterable[Candle | Mapping[str, Any]] | pd.DataFrame,
        base_config: StrategyConfig | None = None,
        grid: ParameterGrid | None = None,
        on_progress: ProgressCallback | None = None,
        indicator_cache: IndicatorCache | None = None,
        settings: BacktesterSettings | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.settings = settings or BacktesterSettings()
        self.base_config = base_config or StrategyConfig()
        self.grid = grid or ParameterGrid()
        self.on_progress = on_progress
        self.indicator_cache = (
            indicator_cache if indicator_cache is not None
            else IndicatorCache(max_size=self.settings.indicator_cache_size)
        )
        self.max_workers = max_workers if max_workers is not None else self.settings.max_workers
        self.yield_every = max(1, self.settings.yield_every)
        self.progress_log_every = max(1, self.settings.progress_log_every)

        self._diagnostics = diagnostic_sink("hybrid_backtester.engine.simulator")
        self.series = ingest_candles(candles, diagnostics=self._diagnostics)
        self.data_hash = IndicatorCache.hash_candles(self.series)
        self.holding_unit = "s" if detect_seconds_timeframe(self.series) else "m"

        self.stats = OptimizationStats()
        self._results: list[OptimizationResult] = []
        self._best: OptimizationResult | None = None
        self._start_time = 0.0

    # =========================================================================
    # Public API
    # =========================================================================

    def optimize(self, filters: OptimizationFilters | None = None) -> list[OptimizationResult]:
        """Run the sweep synchronously (wraps the async sweep)."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                future = pool.submit(asyncio.run, self.optimize_all(filters))
                return future.result()
        else:
            return asyncio.run(self.optimize_all(filters))

    async def optimize_all(
        self,
        filters: OptimizationFilters | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[OptimizationResult]:
        """Run the full sweep and return passing results, best first."""
        self.grid.validate()
        self.base_config.validate()
        filters = filters or OptimizationFilters()

        total = self.grid.surviving_size
        self.stats = OptimizationStats(
            raw_combinations=self.grid.raw_size,
            pruned=self.grid.raw_size - total,
        )
        self._results = []
        self._best = None
        self._start_time = time.perf_counter()
        workers = self.max_workers if self.max_workers and self.max_workers > 1 else 1

        with log_context(optimization_id=uuid.uuid4().hex[:12]):
            logger.info(
                "Starting hybrid optimization",
                combinations=total,
                raw_combinations=self.stats.raw_combinations,
                pruned=self.stats.pruned,
                filters=filters.active,
                max_workers=workers,
                candles=len(self.series),
            )

            if workers > 1:
                await self._run_parallel(filters, total, workers, cancel_event)
            else:
                await self._run_sequential(filters, total, cancel_event)

            self._results.sort(key=OptimizationResult.sort_key)
            self.stats.duration_seconds = time.perf_counter() - self._start_time

            self._publish(OptimizationProgress(
                current=self.stats.simulated,
                total=total,
                description="Optimization cancelled" if self.stats.cancelled else "Optimization complete",
                is_running=False,
                best_result=self._results[0] if self._results else None,
                estimated_seconds_remaining=0.0,
                passed=self.stats.passed,
                filtered=self.stats.filtered,
                failed=self.stats.failed,
            ))

            best = self._results[0] if self._results else None
            logger.info(
                "Optimization complete",
                **self.stats.to_dict(),
                best_score=round(best.score, 4) if best else None,
                best=best.description if best else None,
                cache=self.indicator_cache.stats,
            )

        return list(self._results)

    @property
    def results(self) -> list[OptimizationResult]:
        return list(self._results)

    # =========================================================================
    # Execution
    # =========================================================================

    async def _run_sequential(
        self,
        filters: OptimizationFilters,
        total: int,
        cancel_event: asyncio.Event | None,
    ) -> None:
        for index, params in enumerate(self.grid.iter_combinations()):
            if cancel_event is not None and cancel_event.is_set():
                self._cancel(index, total)
                return

            current = index + 1
            description = params.describe(self.holding_unit)
            self._publish_running(current, total, description)

            try:
                bands = self.indicator_cache.bollinger_bands(
                    self.series, params.bb_period, params.bb_std_dev, params.bb_offset,
                    data_hash=self.data_hash,
                )
                outcome = evaluate_combination(
                    self.series, bands, self.base_config, params, filters, index,
                    self.holding_unit, self._diagnostics,
                )
            except Exception as e:
                self._record_failure(description, e)
            else:
                self._record(outcome)

            self._log_progress(current, total)
            if current % self.yield_every == 0:
                await asyncio.sleep(0)

    async def _run_parallel(
        self,
        filters: OptimizationFilters,
        total: int,
        workers: int,
        cancel_event: asyncio.Event | None,
    ) -> None:
        """Submit combinations in batches of ``yield_every`` and merge in order."""
        loop = asyncio.get_running_loop()
        combos = enumerate(self.grid.iter_combinations())
        batch_size = max(self.yield_every, workers)

        with ProcessPoolExecutor(
            max_workers=workers,
            initializer=_init_worker,
            initargs=(self.series, self.settings.indicator_cache_size, self.settings.log_level),
        ) as executor:
            while True:
                batch = [item for _, item in zip(range(batch_size), combos)]
                if not batch:
                    return
                if cancel_event is not None and cancel_event.is_set():
                    self._cancel(batch[0][0], total)
                    return

                futures = [
                    loop.run_in_executor(
                        executor, _evaluate_in_worker,
                        self.base_config, params, filters, index, self.holding_unit,
                    )
                    for index, params in batch
                ]
                outcomes = await asyncio.gather(*futures, return_exceptions=True)

                for (index, params), outcome in zip(batch, outcomes):
                    current = index + 1
                    description = params.describe(self.holding_unit)
                    self._publish_running(current, total, description)
                    if isinstance(outcome, Exception):
                        self._record_failure(description, outcome)
                    else:
                        self._record(outcome)
                    self._log_progress(current, total)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _record(self, outcome: OptimizationResult | None) -> None:
        self.stats.simulated += 1
        if outcome is None:
            self.stats.filtered += 1
            return
        self.stats.passed += 1
        self._results.append(outcome)
        if self._best is None or outcome.sort_key() < self._best.sort_key():
            self._best = outcome

    def _record_failure(self, description: str, error: BaseException) -> None:
        self.stats.simulated += 1
        self.stats.failed += 1
        logger.warning("Combination failed", combination=description, error=str(error))

    def _cancel(self, completed: int, total: int) -> None:
        self.stats.cancelled = True
        logger.info("Optimization cancelled", completed=completed, total=total)

    def _eta(self, total: int) -> float:
        """Seconds left, extrapolated from the combinations that have finished."""
        completed = self.stats.simulated
        if completed <= 0:
            return 0.0
        elapsed = time.perf_counter() - self._start_time
        return elapsed / completed * max(total - completed, 0)

    def _publish_running(self, current: int, total: int, description: str) -> None:
        if self.on_progress is None:
            return
        self._publish(OptimizationProgress(
            current=current,
            total=total,
            description=description,
            is_running=True,
            best_result=self._best,
            estimated_seconds_remaining=self._eta(total),
            passed=self.stats.passed,
            filtered=self.stats.filtered,
            failed=self.stats.failed,
        ))

    def _publish(self, progress: OptimizationProgress) -> None:
        if self.on_progress is not None:
            self.on_progress(progress)

    def _log_progress(self, current: int, total: int) -> None:
        if current % self.progress_log_every != 0:
            return
        best = self._best
        logger.info(
            "Optimization progress",
            current=current,
            total=total,
            percent=round(current / total * 100, 1) if total else 100.0,
            passed=self.stats.passed,
            filtered=self.stats.filtered,
            failed=self.stats.failed,
            eta_seconds=round(self._eta(total), 1),
            best_return=round(best.total_return, 4) if best else None,
            best_win_rate=round(best.win_rate, 4) if best else None,
        )
