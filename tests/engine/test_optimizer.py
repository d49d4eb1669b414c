"""Tests for HybridOptimizer."""

import asyncio
import time

import pytest

from hybrid_backtester.caching.indicator_cache import IndicatorCache
from hybrid_backtester.config import BacktesterSettings
from hybrid_backtester.engine import optimizer as optimizer_module
from hybrid_backtester.engine.models import (
    FeatureFlags,
    OptimizationFilters,
    OptimizationResult,
    StrategyConfig,
)
from hybrid_backtester.engine.optimizer import HybridOptimizer, evaluate_combination
from tests.conftest import make_candles, make_small_grid

BASE = StrategyConfig(initial_capital=1000.0)


@pytest.fixture
def candles():
    return make_candles(n=400, volatility=0.006, seed=11)


class TestEvaluateCombination:

    def test_returns_result(self, candles):
        params = next(make_small_grid().iter_combinations())
        bands = IndicatorCache().bollinger_bands(candles, params.bb_period, params.bb_std_dev, params.bb_offset)
        outcome = evaluate_combination(candles, bands, BASE, params, OptimizationFilters(), 0)
        assert isinstance(outcome, OptimizationResult)
        assert outcome.params == params
        assert outcome.combination_index == 0
        assert outcome.signal_quality == 100.0
        assert outcome.holding_unit == "m"

    def test_filtered(self, candles):
        params = next(make_small_grid().iter_combinations())
        bands = IndicatorCache().bollinger_bands(candles, params.bb_period, params.bb_std_dev)
        filters = OptimizationFilters(min_trades=10_000)
        assert evaluate_combination(candles, bands, BASE, params, filters, 0) is None


class TestHybridOptimizer:

    @pytest.mark.asyncio
    async def test_counts(self, candles):
        grid = make_small_grid(
            bb_periods=tuple(range(10, 20)),
            golden_zone_mins=(0.5, 0.7),
            feature_sets=(FeatureFlags(),),
        )
        opt = HybridOptimizer(candles, BASE, grid)
        results = await opt.optimize_all()

        assert opt.stats.raw_combinations == 40
        assert opt.stats.simulated == 20
        assert opt.stats.pruned == 20
        assert opt.stats.passed == len(results) == 20
        assert opt.stats.filtered == 0
        assert opt.stats.failed == 0
        assert opt.stats.cancelled is False

    @pytest.mark.asyncio
    async def test_sorted_and_deterministic(self, candles):
        first = await HybridOptimizer(candles, BASE, make_small_grid()).optimize_all()
        second = await HybridOptimizer(candles, BASE, make_small_grid()).optimize_all()

        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]
        keys = [r.sort_key() for r in first]
        assert keys == sorted(keys)

    @pytest.mark.asyncio
    async def test_every_result_passes_filters(self, candles):
        filters = OptimizationFilters(min_trades=2, max_drawdown=0.9)
        opt = HybridOptimizer(candles, BASE, make_small_grid())
        results = await opt.optimize_all(filters)

        for r in results:
            assert r.total_trades >= 2
            assert r.max_drawdown <= 0.9
        assert opt.stats.passed + opt.stats.filtered + opt.stats.failed == opt.stats.simulated

    @pytest.mark.asyncio
    async def test_no_result_violates_pruning(self, candles):
        grid = make_small_grid(
            golden_zone_mins=(0.5, 0.65),
            golden_zone_maxs=(0.618, 0.7),
            profit_targets=(0.004, 0.01),
            stop_loss_pcts=(0.005,),
        )
        results = await HybridOptimizer(candles, BASE, grid).optimize_all()
        assert results
        for r in results:
            assert r.params.golden_zone_min < r.params.golden_zone_max
            assert r.params.profit_target / r.params.stop_loss_pct >= 1.2

    @pytest.mark.asyncio
    async def test_progress_snapshots(self, candles):
        snapshots = []
        opt = HybridOptimizer(candles, BASE, make_small_grid(), on_progress=snapshots.append)
        await opt.optimize_all()

        total = opt.grid.surviving_size
        assert len(snapshots) == opt.stats.simulated + 1
        assert [s.current for s in snapshots[:-1]] == list(range(1, total + 1))
        assert all(s.is_running for s in snapshots[:-1])
        assert all(s.total == total for s in snapshots)

        final = snapshots[-1]
        assert final.is_running is False
        assert final.current == total
        assert final.estimated_seconds_remaining == 0.0
        if opt.results:
            assert final.best_result is opt.results[0]

    @pytest.mark.asyncio
    async def test_eta_counts_finished_combinations(self, candles):
        snapshots = []
        opt = HybridOptimizer(candles, BASE, make_small_grid(), on_progress=snapshots.append)
        await opt.optimize_all()
        # Nothing has finished when the first combination is announced.
        assert snapshots[0].estimated_seconds_remaining == 0.0
        assert snapshots[1].estimated_seconds_remaining > 0.0

    def test_eta_extrapolates_from_completed(self, candles):
        opt = HybridOptimizer(candles, BASE, make_small_grid())
        opt._start_time = time.perf_counter() - 10.0
        opt.stats.simulated = 2
        assert opt._eta(12) == pytest.approx(50.0, rel=0.01)
        opt.stats.simulated = 12
        assert opt._eta(12) == 0.0

    @pytest.mark.asyncio
    async def test_cancel(self, candles):
        cancel = asyncio.Event()
        snapshots = []

        def on_progress(progress):
            snapshots.append(progress)
            if progress.current == 5:
                cancel.set()

        grid = make_small_grid(bb_periods=(12, 15, 18, 20))
        opt = HybridOptimizer(candles, BASE, grid, on_progress=on_progress)
        results = await opt.optimize_all(cancel_event=cancel)

        assert opt.stats.cancelled is True
        assert opt.stats.simulated == 5
        assert len(results) <= 5
        assert snapshots[-1].is_running is False
        assert snapshots[-1].description == "Optimization cancelled"

    @pytest.mark.asyncio
    async def test_yields_to_event_loop(self, candles):
        ticks = 0
        stop = asyncio.Event()

        async def ticker():
            nonlocal ticks
            while not stop.is_set():
                ticks += 1
                await asyncio.sleep(0)

        task = asyncio.create_task(ticker())
        opt = HybridOptimizer(candles, BASE, make_small_grid(), settings=BacktesterSettings(yield_every=1))
        await opt.optimize_all()
        stop.set()
        await task

        assert ticks >= 5

    @pytest.mark.asyncio
    async def test_failures_counted(self, candles, monkeypatch):
        real = optimizer_module.evaluate_combination

        def flaky(series, bands, base_config, params, *args, **kwargs):
            if params.bb_period == 15:
                raise RuntimeError("boom")
            return real(series, bands, base_config, params, *args, **kwargs)

        monkeypatch.setattr(optimizer_module, "evaluate_combination", flaky)
        opt = HybridOptimizer(candles, BASE, make_small_grid())
        results = await opt.optimize_all()

        assert opt.stats.failed == 6
        assert opt.stats.simulated == 12
        assert all(r.params.bb_period == 20 for r in results)

    @pytest.mark.asyncio
    async def test_band_cache_shared(self, candles):
        cache = IndicatorCache()
        opt = HybridOptimizer(candles, BASE, make_small_grid(), indicator_cache=cache)
        await opt.optimize_all()
        # 2 periods x 2 widths
        assert len(cache) == 4
        assert cache.stats["hits"] == 8

    @pytest.mark.asyncio
    async def test_invalid_grid(self, candles):
        opt = HybridOptimizer(candles, BASE, make_small_grid(bb_periods=()))
        with pytest.raises(ValueError):
            await opt.optimize_all()

    @pytest.mark.asyncio
    async def test_out_of_range_zone_rejected_before_simulation(self, candles):
        opt = HybridOptimizer(candles, BASE, make_small_grid(golden_zone_maxs=(0.618, 1.5)))
        with pytest.raises(ValueError, match="golden_zone_maxs"):
            await opt.optimize_all()
        assert opt.stats.simulated == 0
        assert opt.stats.failed == 0

    def test_sync_wrapper(self, candles):
        opt = HybridOptimizer(candles, BASE, make_small_grid())
        results = opt.optimize(OptimizationFilters())
        assert opt.stats.simulated == 12
        assert len(results) == opt.stats.passed

    def test_seconds_holding_unit(self):
        candles = make_candles(n=200, interval_ms=1000)
        opt = HybridOptimizer(candles, BASE, make_small_grid())
        assert opt.holding_unit == "s"
        results = opt.optimize()
        if results:
            assert "s)" in results[0].description


class TestParallelOptimizer:

    def test_parallel_matches_sequential(self, candles):
        sequential = HybridOptimizer(candles, BASE, make_small_grid()).optimize()
        parallel_opt = HybridOptimizer(candles, BASE, make_small_grid(), max_workers=2)
        parallel = parallel_opt.optimize()

        assert [r.to_dict() for r in parallel] == [r.to_dict() for r in sequential]
        assert parallel_opt.stats.simulated == 12
