"""Tests for HybridBacktestSimulator."""

import math
from dataclasses import replace

import pytest

from hybrid_backtester.core.diagnostics import RecordingSink
from hybrid_backtester.core.indicators import calculate_bollinger_bands
from hybrid_backtester.core.position import ExitReason, Trade
from hybrid_backtester.core.signals import Direction
from hybrid_backtester.core.synthetic import generate_sample_candles, generate_seconds_candles
from hybrid_backtester.engine.models import BacktestResult, StrategyConfig
from hybrid_backtester.engine.simulator import HybridBacktestSimulator, detect_seconds_timeframe
from tests.conftest import MINUTE_MS, make_candle, make_candles, make_rising_candles


def _breakdown_candles():
    """Thirty candles oscillating 100/101, then a close far below the lower band."""
    candles = []
    for i in range(30):
        close = 100.0 if i % 2 == 0 else 101.0
        candles.append(make_candle(index=i, open=close, high=close + 0.2, low=close - 0.2, close=close))
    candles.append(make_candle(index=30, open=95.5, high=95.6, low=94.8, close=95.0))
    return candles


BREAKOUT_ONLY = StrategyConfig(
    bb_period=20,
    bb_std_dev=2.0,
    swing_lookback=3,
    require_breakout=True,
    require_retracement=False,
    require_volume=False,
    require_momentum=False,
    profit_target=0.5,
    stop_loss_pct=0.05,
    max_holding=10,
    leverage=2,
)


class TestSimulatorBasic:

    def test_basic_run(self, candles_300):
        result = HybridBacktestSimulator(StrategyConfig(swing_lookback=3)).run(candles_300)
        assert isinstance(result, BacktestResult)
        assert result.candles_processed == 300
        assert result.skipped_candles == 0
        assert result.duration_seconds >= 0
        assert result.total_trades == len(result.trades)

    def test_empty_input(self):
        result = HybridBacktestSimulator(StrategyConfig()).run([])
        assert result.total_trades == 0
        assert result.final_capital == result.initial_capital
        assert result.trading_period_days is None

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            HybridBacktestSimulator(StrategyConfig(bb_std_dev=0))

    def test_deterministic(self, candles_300):
        config = StrategyConfig(swing_lookback=3, require_volume=False, require_retracement=False)
        first = HybridBacktestSimulator(config).run(candles_300)
        second = HybridBacktestSimulator(config).run(candles_300)
        assert first.to_dict(include_trades=True) | {"duration_seconds": 0} == (
            second.to_dict(include_trades=True) | {"duration_seconds": 0}
        )


class TestSingleTradeScenario:

    def test_long_entry_held_to_timeout(self, rising_candles, open_gates_config):
        result = HybridBacktestSimulator(open_gates_config).run(rising_candles)

        assert result.total_trades == 1
        trade = result.trades[0]
        assert trade.direction is Direction.LONG
        assert trade.entry_index == 20
        assert trade.entry_price == 120.0
        assert trade.exit_index == 59
        assert trade.exit_reason is ExitReason.TIMEOUT
        assert trade.exit_price == 159.0
        assert trade.pnl == pytest.approx((159.0 - 120.0) / 120.0 * 2 * 10000)
        assert trade.signal_strength == 100

        assert result.winning_trades == 1
        assert result.win_rate == 1.0
        assert result.long_trades == 1
        assert result.final_capital == pytest.approx(10000 + trade.pnl)
        assert result.total_return == pytest.approx(trade.pnl / 10000)
        assert result.max_drawdown == 0.0
        assert result.sharpe_ratio == 0.0

        days = 39 * MINUTE_MS / 86_400_000
        assert result.trading_period_days == pytest.approx(days)
        assert result.average_trades_per_day == pytest.approx(1 / days)
        assert result.is_seconds_timeframe is False

    def test_open_trade_force_closed_at_end(self, rising_candles, open_gates_config):
        config = replace(open_gates_config, max_holding=1000)
        result = HybridBacktestSimulator(config).run(rising_candles)
        assert result.total_trades == 1
        trade = result.trades[0]
        assert trade.exit_reason is ExitReason.STRATEGY_EXIT
        assert trade.exit_index == 59
        assert not trade.is_open

    def test_force_close_uses_last_present_candle(self, rising_candles, open_gates_config):
        config = replace(open_gates_config, max_holding=1000)
        raw = [c.to_dict() for c in rising_candles]
        raw[-1]["close"] = -1.0
        result = HybridBacktestSimulator(config).run(raw)
        assert result.trades[0].exit_index == 58
        assert result.skipped_candles == 1

    def test_timeout_wins_over_stop_on_same_candle(self, rising_candles, open_gates_config):
        config = replace(open_gates_config, max_holding=5)
        candles = list(rising_candles)
        # Entry at 20 (close 120, stop 114); candle 25 times out and wicks through the stop.
        candles[25] = replace(candles[25], low=100.0)
        result = HybridBacktestSimulator(config).run(candles)

        first = result.trades[0]
        assert first.entry_index == 20
        assert first.stop_price == pytest.approx(114.0)
        assert first.exit_index == 25
        assert first.exit_reason is ExitReason.TIMEOUT
        assert first.exit_price == candles[25].close
        assert all(t.entry_index != 25 for t in result.trades)
        assert result.trades[1].entry_index == 26

    def test_disabled_long_with_all_gates_open_never_trades(self, rising_candles, open_gates_config):
        config = replace(open_gates_config, enable_long=False)
        result = HybridBacktestSimulator(config).run(rising_candles)
        assert result.total_trades == 0
        assert result.final_capital == 10000.0

    def test_short_breakdown(self):
        result = HybridBacktestSimulator(BREAKOUT_ONLY).run(_breakdown_candles())
        assert result.total_trades == 1
        trade = result.trades[0]
        assert trade.direction is Direction.SHORT
        assert trade.entry_index == 30
        assert trade.entry_price == 95.0
        assert result.short_trades == 1

    def test_short_disabled(self):
        config = replace(BREAKOUT_ONLY, enable_short=False)
        assert HybridBacktestSimulator(config).run(_breakdown_candles()).total_trades == 0


class TestMalformedInput:

    def test_bad_candle_skipped_not_raised(self):
        raw = [c.to_dict() for c in make_candles(n=500)]
        raw[250]["close"] = -10.0
        raw[251] = {"open": 1.0}

        sink = RecordingSink()
        config = StrategyConfig(swing_lookback=3, require_volume=False, require_retracement=False)
        result = HybridBacktestSimulator(config, diagnostics=sink).run(raw)

        assert result.skipped_candles >= 2
        assert sink.count("candle_rejected") == 2
        assert math.isfinite(result.sharpe_ratio)
        assert 0.0 <= result.max_drawdown <= 1.0
        assert 0.0 <= result.win_rate <= 1.0
        assert result.candles_processed == 500

    def test_all_candles_invalid(self):
        raw = [{"timestamp": i, "open": -1, "high": 1, "low": 1, "close": 1, "volume": 1} for i in range(50)]
        result = HybridBacktestSimulator(StrategyConfig()).run(raw)
        assert result.total_trades == 0
        assert result.skipped_candles == 50

    def test_precomputed_bands(self, candles_300):
        config = StrategyConfig(swing_lookback=3, require_volume=False)
        bands = calculate_bollinger_bands(candles_300, config.bb_period, config.bb_std_dev)
        with_bands = HybridBacktestSimulator(config).run(candles_300, bands=bands)
        without = HybridBacktestSimulator(config).run(candles_300)
        assert with_bands.total_pnl == without.total_pnl
        assert with_bands.total_trades == without.total_trades


class TestInvariants:

    @pytest.mark.parametrize("seed", [1, 7, 42])
    def test_trade_ledger_invariants(self, seed):
        candles = generate_sample_candles(n=600, seed=seed, volatility=0.01)
        config = StrategyConfig(
            swing_lookback=3,
            require_retracement=False,
            require_volume=False,
            max_holding=6,
        )
        result = HybridBacktestSimulator(config).run(candles)

        for prev, nxt in zip(result.trades, result.trades[1:]):
            assert nxt.entry_index > prev.exit_index
        for trade in result.trades:
            assert not trade.is_open
            assert trade.exit_index - trade.entry_index <= config.max_holding
            if trade.exit_reason is ExitReason.STOP_LOSS:
                assert trade.exit_price == trade.stop_price

        assert result.final_capital == pytest.approx(
            result.initial_capital + sum(t.pnl for t in result.trades)
        )
        assert result.winning_trades + result.losing_trades == result.total_trades
        assert result.long_trades + result.short_trades == result.total_trades
        assert 0.0 <= result.max_drawdown <= 1.0


class TestMetrics:

    def test_max_drawdown_clamped(self):
        trades = [_closed_trade(-5000.0), _closed_trade(-8000.0)]
        assert HybridBacktestSimulator._calculate_max_drawdown(trades, 10000.0) == 1.0

    def test_max_drawdown_from_peak(self):
        trades = [_closed_trade(1000.0), _closed_trade(-2200.0), _closed_trade(500.0)]
        dd = HybridBacktestSimulator._calculate_max_drawdown(trades, 10000.0)
        assert dd == pytest.approx(0.2)

    def test_sharpe_zero_without_variance(self):
        assert HybridBacktestSimulator._calculate_sharpe([], 100) == 0.0
        assert HybridBacktestSimulator._calculate_sharpe([0.01, 0.01], 100) == 0.0

    def test_sharpe_population_std(self):
        sharpe = HybridBacktestSimulator._calculate_sharpe([0.02, 0.0], 4)
        # mean 0.01, population std 0.01
        assert sharpe == pytest.approx(2.0)


class TestTimeframeDetection:

    def test_seconds(self):
        assert detect_seconds_timeframe(generate_seconds_candles(n=50)) is True

    def test_minutes(self):
        assert detect_seconds_timeframe(make_candles(n=50)) is False

    def test_hours(self):
        assert detect_seconds_timeframe(generate_sample_candles(n=50)) is False

    def test_too_short(self):
        assert detect_seconds_timeframe([make_candle()]) is False

    def test_seconds_result_flag(self):
        candles = make_rising_candles(n=60, interval_ms=1000)
        result = HybridBacktestSimulator(StrategyConfig.for_timeframe(True)).run(candles)
        assert result.is_seconds_timeframe is True
        assert result.holding_unit == "s"


def _closed_trade(pnl):
    return Trade(
        id="t",
        direction=Direction.LONG,
        entry_index=0,
        entry_time=0.0,
        entry_price=100.0,
        stop_price=99.0,
        target_price=101.0,
        leverage=1.0,
        capital_at_entry=10000.0,
        is_open=False,
        exit_index=1,
        exit_time=60_000.0,
        exit_price=100.0,
        pnl=pnl,
        exit_reason=ExitReason.TIMEOUT,
    )
