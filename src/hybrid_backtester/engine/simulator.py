"""
HybridBacktestSimulator — Backtest Runner for the hybrid band/retracement strategy.

Composes the core components:
- SwingPointTracker: swing highs/lows anchoring the retracement levels
- RetracementCalculator: level set and golden zone
- SignalEvaluator: four-gate entry scoring
- PositionManager: single-position state machine and capital

Per candle (from ``swing_lookback + 1``): swing update, level recompute,
timeout check, signal evaluation and entry, exit battery. Any trade still
open at the end is force-closed on the last present candle.
"""

import math
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import pandas as pd

from hybrid_backtester.core.candles import Candle, ingest_candles
from hybrid_backtester.core.diagnostics import DiagnosticSink
from hybrid_backtester.core.indicators import BandValue, calculate_bollinger_bands, calculate_volume_ma
from hybrid_backtester.core.position import PositionManager, Trade
from hybrid_backtester.core.retracement import RetracementCalculator
from hybrid_backtester.core.signals import Direction, SignalEvaluator
from hybrid_backtester.core.swing_tracker import SwingPointTracker
from hybrid_backtester.engine.models import BacktestResult, StrategyConfig
from hybrid_backtester.logging import diagnostic_sink, get_logger

logger = get_logger(__name__)

VOLUME_MA_PERIOD = 20

SECONDS_TIMEFRAME_MS = 60_000
TIMEFRAME_SAMPLE_SIZE = 20
MS_PER_DAY = 1000 * 60 * 60 * 24

SECONDS_ANNUALIZATION = 252 * 24 * 60 * 60
MINUTES_ANNUALIZATION = 252 * 24 * 60


def detect_seconds_timeframe(candles: Sequence[Candle | None]) -> bool:
    """True when the average spacing of the first intervals is under a minute."""
    present = [c for c in candles if c is not None]
    deltas = [
        b.timestamp - a.timestamp
        for a, b in zip(present, present[1:])
    ][:TIMEFRAME_SAMPLE_SIZE]
    if not deltas:
        return False
    return sum(deltas) / len(deltas) < SECONDS_TIMEFRAME_MS


class HybridBacktestSimulator:
    """
    Runs a hybrid backtest on OHLCV candle data.

    Usage:
        config = StrategyConfig(bb_period=20, swing_lookback=5)
        simulator = HybridBacktestSimulator(config)
        result = simulator.run(candles)
    """

    def __init__(self, config: StrategyConfig, diagnostics: DiagnosticSink | None = None) -> None:
        config.validate()
        self.config = config
        self._diagnostics = diagnostics or diagnostic_sink(__name__)

    def run(
        self,
        candles: Iterable[Candle | Mapping[str, Any]] | pd.DataFrame,
        bands: Sequence[BandValue | None] | None = None,
    ) -> BacktestResult:
        """Run the backtest. Malformed candles are skipped, never raised."""
        series = ingest_candles(candles, diagnostics=self._diagnostics)
        return self.run_series(series, bands)

    def run_series(
        self,
        series: Sequence[Candle | None],
        bands: Sequence[BandValue | None] | None = None,
    ) -> BacktestResult:
        """Run on an already-ingested, index-aligned series."""
        start_time = time.perf_counter()
        config = self.config
        diagnostics = self._diagnostics

        if bands is None:
            bands = calculate_bollinger_bands(series, config.bb_period, config.bb_std_dev, config.bb_offset)
        volume_ma = calculate_volume_ma(series, VOLUME_MA_PERIOD)
        is_seconds = detect_seconds_timeframe(series)

        tracker = SwingPointTracker(config.swing_lookback, diagnostics=diagnostics)
        tracker.initialize(series)
        retracement = RetracementCalculator(
            golden_zone_min=config.golden_zone_min,
            golden_zone_max=config.golden_zone_max,
            diagnostics=diagnostics,
        )
        retracement.recompute(tracker.points)
        evaluator = SignalEvaluator(
            retracement=retracement,
            requirements=config.signal_requirements(),
            stop_loss_pct=config.stop_loss_pct,
            profit_target=config.profit_target,
            diagnostics=diagnostics,
        )
        positions = PositionManager(
            initial_capital=config.initial_capital,
            leverage=config.leverage,
            profit_target=config.profit_target,
            max_holding=config.max_holding,
            enable_long=config.enable_long,
            enable_short=config.enable_short,
            diagnostics=diagnostics,
        )

        skipped = sum(1 for c in series if c is None)
        for i in range(config.swing_lookback + 1, len(series)):
            candle = series[i]
            try:
                tracker.update(series, i)
                retracement.recompute(tracker.points)
                if candle is None:
                    continue

                if positions.check_timeout(candle, i):
                    continue

                band = _at(bands, i)
                if positions.is_flat:
                    signal = evaluator.evaluate(
                        candle, series[i - 1], band, _at(bands, i - 1), _at(volume_ma, i) or 0.0,
                    )
                    positions.try_enter(signal, candle, i)

                positions.check_exits(candle, band, i)
            except Exception as e:
                diagnostics("candle_step_failed", index=i, error=str(e))
                skipped += 1

        last_index = _last_present(series)
        if not positions.is_flat and last_index is not None:
            positions.force_close(series[last_index], last_index)

        result = self._build_result(positions.trades, is_seconds)
        result.candles_processed = len(series)
        result.skipped_candles = skipped
        result.duration_seconds = time.perf_counter() - start_time

        logger.debug(
            "Hybrid backtest complete",
            candles=len(series),
            trades=result.total_trades,
            total_pnl=round(result.total_pnl, 2),
            seconds_timeframe=is_seconds,
        )
        return result

    # =========================================================================
    # Metrics
    # =========================================================================

    def _build_result(self, trades: list[Trade], is_seconds: bool) -> BacktestResult:
        initial = self.config.initial_capital
        total = len(trades)
        winning = sum(1 for t in trades if (t.pnl or 0.0) > 0)
        total_pnl = sum(t.pnl or 0.0 for t in trades)

        result = BacktestResult(
            initial_capital=initial,
            total_trades=total,
            winning_trades=winning,
            losing_trades=total - winning,
            long_trades=sum(1 for t in trades if t.direction is Direction.LONG),
            short_trades=sum(1 for t in trades if t.direction is Direction.SHORT),
            win_rate=winning / total if total > 0 else 0.0,
            total_pnl=total_pnl,
            final_capital=initial + total_pnl,
            max_drawdown=self._calculate_max_drawdown(trades, initial),
            sharpe_ratio=self._calculate_sharpe(
                [(t.pnl or 0.0) / initial for t in trades],
                SECONDS_ANNUALIZATION if is_seconds else MINUTES_ANNUALIZATION,
            ),
            is_seconds_timeframe=is_seconds,
            trades=list(trades),
        )

        closed = [t for t in trades if t.exit_time is not None]
        if closed:
            result.first_trade_time = min(t.entry_time for t in closed)
            result.last_trade_time = max(t.exit_time for t in closed)
            days = (result.last_trade_time - result.first_trade_time) / MS_PER_DAY
            result.trading_period_days = days
            result.average_trades_per_day = total / days if days > 0 else 0.0

        return result

    @staticmethod
    def _calculate_max_drawdown(trades: list[Trade], initial_capital: float) -> float:
        """Peak-to-trough decline of cumulative capital, clamped into [0, 1]."""
        peak = initial_capital
        capital = initial_capital
        max_dd = 0.0
        for trade in trades:
            capital += trade.pnl or 0.0
            if capital > peak:
                peak = capital
            if peak > 0:
                max_dd = max(max_dd, (peak - capital) / peak)
        return min(1.0, max(0.0, max_dd))

    @staticmethod
    def _calculate_sharpe(returns: list[float], periods_per_year: int) -> float:
        """Mean over population std of per-trade returns; 0 without variance."""
        if not returns:
            return 0.0
        mean_ret = sum(returns) / len(returns)
        variance = sum((r - mean_ret) ** 2 for r in returns) / len(returns)
        if variance <= 0:
            return 0.0
        sharpe = (mean_ret / math.sqrt(variance)) * math.sqrt(periods_per_year)
        return sharpe if math.isfinite(sharpe) else 0.0


def _at(values: Sequence[Any], index: int) -> Any:
    if 0 <= index < len(values):
        return values[index]
    return None


def _last_present(series: Sequence[Candle | None]) -> int | None:
    for i in range(len(series) - 1, -1, -1):
        if series[i] is not None:
            return i
    return None
