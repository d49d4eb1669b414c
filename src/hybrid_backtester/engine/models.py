"""
Hybrid backtesting data models — configs, results, parameter grid.

Defines all data structures shared by the engine:
- Strategy configuration (with timeframe-aware defaults)
- Backtest results with trade-frequency metrics
- Optimization filters, parameter sets and the search grid
- Optimization results, progress snapshots and run statistics
"""

import itertools
import math
from collections.abc import Iterator
from dataclasses import dataclass, field, replace
from typing import Any

from hybrid_backtester.core.position import Trade
from hybrid_backtester.core.signals import SignalRequirements


# =============================================================================
# Strategy Configuration
# =============================================================================


@dataclass(frozen=True)
class StrategyConfig:
    """Configuration for a single hybrid backtest run."""

    # Bollinger bands
    bb_period: int = 20
    bb_std_dev: float = 2.0
    bb_offset: float = 0.0

    # Swing points / retracement
    swing_lookback: int = 5
    golden_zone_min: float = 0.5
    golden_zone_max: float = 0.618

    # Entry gates
    require_breakout: bool = True
    require_retracement: bool = True
    require_volume: bool = True
    require_momentum: bool = True
    volume_threshold: float = 1.3

    # Risk
    profit_target: float = 0.012
    stop_loss_pct: float = 0.008
    max_holding: int = 8  # candles

    # Trading
    leverage: float = 10.0
    initial_capital: float = 10000.0
    enable_long: bool = True
    enable_short: bool = True

    @classmethod
    def for_timeframe(cls, seconds: bool, **overrides: Any) -> "StrategyConfig":
        """Defaults tuned for per-second or per-minute data."""
        if seconds:
            defaults: dict[str, Any] = {
                "swing_lookback": 3,
                "profit_target": 0.006,
                "stop_loss_pct": 0.004,
                "max_holding": 30,
            }
        else:
            defaults = {}
        defaults.update(overrides)
        return cls(**defaults)

    def signal_requirements(self) -> SignalRequirements:
        return SignalRequirements(
            breakout=self.require_breakout,
            retracement=self.require_retracement,
            volume=self.require_volume,
            momentum=self.require_momentum,
            volume_threshold=self.volume_threshold,
        )

    def validate(self) -> None:
        """Raise ValueError describing the first invalid field."""
        if self.bb_period < 1:
            raise ValueError("bb_period must be at least 1")
        if self.bb_std_dev <= 0:
            raise ValueError("bb_std_dev must be positive")
        if self.bb_offset < 0:
            raise ValueError("bb_offset must not be negative")
        if self.swing_lookback < 1:
            raise ValueError("swing_lookback must be at least 1")
        if not 0 <= self.golden_zone_min < self.golden_zone_max <= 1:
            raise ValueError("golden zone must satisfy 0 <= min < max <= 1")
        if self.profit_target <= 0:
            raise ValueError("profit_target must be positive")
        if not 0 < self.stop_loss_pct < 1:
            raise ValueError("stop_loss_pct must be in (0, 1)")
        if self.max_holding < 1:
            raise ValueError("max_holding must be at least 1 candle")
        if self.volume_threshold <= 0:
            raise ValueError("volume_threshold must be positive")
        if self.leverage <= 0:
            raise ValueError("leverage must be positive")
        if self.initial_capital <= 0:
            raise ValueError("initial_capital must be positive")

    def to_dict(self) -> dict[str, Any]:
        return {
            "bb_period": self.bb_period,
            "bb_std_dev": self.bb_std_dev,
            "bb_offset": self.bb_offset,
            "swing_lookback": self.swing_lookback,
            "golden_zone_min": self.golden_zone_min,
            "golden_zone_max": self.golden_zone_max,
            "require_breakout": self.require_breakout,
            "require_retracement": self.require_retracement,
            "require_volume": self.require_volume,
            "require_momentum": self.require_momentum,
            "volume_threshold": self.volume_threshold,
            "profit_target": self.profit_target,
            "stop_loss_pct": self.stop_loss_pct,
            "max_holding": self.max_holding,
            "leverage": self.leverage,
            "initial_capital": self.initial_capital,
            "enable_long": self.enable_long,
            "enable_short": self.enable_short,
        }


# =============================================================================
# Backtest Result
# =============================================================================


@dataclass
class BacktestResult:
    """Aggregate metrics of one backtest run, computed from its closed trades."""

    initial_capital: float = 10000.0

    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    long_trades: int = 0
    short_trades: int = 0
    win_rate: float = 0.0
    total_pnl: float = 0.0
    final_capital: float = 0.0

    # Risk-adjusted metrics
    max_drawdown: float = 0.0
    sharpe_ratio: float = 0.0

    # Trade frequency
    first_trade_time: float | None = None
    last_trade_time: float | None = None
    trading_period_days: float | None = None
    average_trades_per_day: float | None = None

    # Simulation metadata
    is_seconds_timeframe: bool = False
    candles_processed: int = 0
    skipped_candles: int = 0
    duration_seconds: float = 0.0

    trades: list[Trade] = field(default_factory=list)

    @property
    def total_return(self) -> float:
        """``total_pnl / initial_capital`` (0 when capital is not positive)."""
        if self.initial_capital <= 0:
            return 0.0
        return self.total_pnl / self.initial_capital

    @property
    def holding_unit(self) -> str:
        return "s" if self.is_seconds_timeframe else "m"

    def to_dict(self, include_trades: bool = False) -> dict[str, Any]:
        """Convert to dictionary (trades only on request)."""
        data: dict[str, Any] = {
            "initial_capital": round(self.initial_capital, 2),
            "final_capital": round(self.final_capital, 2),
            "total_return": round(self.total_return, 6),
            "total_pnl": round(self.total_pnl, 2),
            "total_trades": self.total_trades,
            "winning_trades": self.winning_trades,
            "losing_trades": self.losing_trades,
            "long_trades": self.long_trades,
            "short_trades": self.short_trades,
            "win_rate": round(self.win_rate, 4),
            "max_drawdown": round(self.max_drawdown, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "first_trade_time": self.first_trade_time,
            "last_trade_time": self.last_trade_time,
            "trading_period_days": _round_optional(self.trading_period_days, 4),
            "average_trades_per_day": _round_optional(self.average_trades_per_day, 4),
            "is_seconds_timeframe": self.is_seconds_timeframe,
            "candles_processed": self.candles_processed,
            "skipped_candles": self.skipped_candles,
            "duration_seconds": round(self.duration_seconds, 4),
        }
        if include_trades:
            data["trades"] = [t.to_dict() for t in self.trades]
        return data


def _round_optional(value: float | None, digits: int) -> float | None:
    return None if value is None else round(value, digits)


# =============================================================================
# Optimization Filters
# =============================================================================


@dataclass(frozen=True)
class OptimizationFilters:
    """Post-hoc acceptance filters. ``None`` means no constraint."""

    min_trading_period_days: float | None = None
    min_trades: int | None = None
    min_win_rate: float | None = None
    max_drawdown: float | None = None
    min_return: float | None = None

    def passes(self, result: BacktestResult) -> bool:
        if self.min_trading_period_days is not None:
            period = result.trading_period_days
            if period is None or period < self.min_trading_period_days:
                return False
        if self.min_trades is not None and result.total_trades < self.min_trades:
            return False
        if self.min_win_rate is not None and result.win_rate < self.min_win_rate:
            return False
        if self.max_drawdown is not None and result.max_drawdown > self.max_drawdown:
            return False
        if self.min_return is not None and result.total_return < self.min_return:
            return False
        return True

    @property
    def active(self) -> dict[str, float]:
        return {
            name: value
            for name, value in (
                ("min_trading_period_days", self.min_trading_period_days),
                ("min_trades", self.min_trades),
                ("min_win_rate", self.min_win_rate),
                ("max_drawdown", self.max_drawdown),
                ("min_return", self.min_return),
            )
            if value is not None
        }


# =============================================================================
# Parameter Grid
# =============================================================================


@dataclass(frozen=True)
class FeatureFlags:
    """Which entry gates a combination requires."""

    breakout: bool = True
    retracement: bool = True
    volume: bool = True
    momentum: bool = True

    @property
    def label(self) -> str:
        names = [
            name
            for name, enabled in (
                ("BB", self.breakout),
                ("Fib", self.retracement),
                ("Vol", self.volume),
                ("Mom", self.momentum),
            )
            if enabled
        ]
        return "+".join(names) or "none"


DEFAULT_FEATURE_SETS: tuple[FeatureFlags, ...] = (
    FeatureFlags(),
    FeatureFlags(momentum=False),
    FeatureFlags(volume=False),
    FeatureFlags(retracement=False),
    FeatureFlags(breakout=False),
)


@dataclass(frozen=True)
class ParameterSet:
    """One point in the search grid."""

    bb_period: int
    bb_std_dev: float
    bb_offset: float
    swing_lookback: int
    golden_zone_min: float
    golden_zone_max: float
    profit_target: float
    stop_loss_pct: float
    max_holding: int
    leverage: float
    volume_threshold: float
    features: FeatureFlags = FeatureFlags()

    def apply(self, base: StrategyConfig) -> StrategyConfig:
        """Overlay this parameter set on a base configuration."""
        return replace(
            base,
            bb_period=self.bb_period,
            bb_std_dev=self.bb_std_dev,
            bb_offset=self.bb_offset,
            swing_lookback=self.swing_lookback,
            golden_zone_min=self.golden_zone_min,
            golden_zone_max=self.golden_zone_max,
            profit_target=self.profit_target,
            stop_loss_pct=self.stop_loss_pct,
            max_holding=self.max_holding,
            leverage=self.leverage,
            volume_threshold=self.volume_threshold,
            require_breakout=self.features.breakout,
            require_retracement=self.features.retracement,
            require_volume=self.features.volume,
            require_momentum=self.features.momentum,
        )

    def describe(self, holding_unit: str = "m") -> str:
        return (
            f"BB({self.bb_period},{self.bb_std_dev},{self.bb_offset}) "
            f"Fib({self.swing_lookback},{self.golden_zone_min}-{self.golden_zone_max}) "
            f"P/L({self.profit_target * 100:.1f}%/{self.stop_loss_pct * 100:.1f}%) "
            f"Hold({self.max_holding}{holding_unit}) "
            f"Lev({self.leverage}x)"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "bb_period": self.bb_period,
            "bb_std_dev": self.bb_std_dev,
            "bb_offset": self.bb_offset,
            "swing_lookback": self.swing_lookback,
            "golden_zone_min": self.golden_zone_min,
            "golden_zone_max": self.golden_zone_max,
            "profit_target": self.profit_target,
            "stop_loss_pct": self.stop_loss_pct,
            "max_holding": self.max_holding,
            "leverage": self.leverage,
            "volume_threshold": self.volume_threshold,
            "require_breakout": self.features.breakout,
            "require_retracement": self.features.retracement,
            "require_volume": self.features.volume,
            "require_momentum": self.features.momentum,
        }


@dataclass(frozen=True)
class ParameterGrid:
    """
    Discrete parameter ranges searched by the optimizer.

    Enumeration order is fixed (the order of the fields below, each range in
    its listed order) so sweeps are reproducible.
    """

    bb_periods: tuple[int, ...] = (12, 15, 18, 20, 22, 25)
    bb_std_devs: tuple[float, ...] = (1.8, 2.0, 2.2, 2.5)
    bb_offsets: tuple[float, ...] = (0, 2, 5, 8)
    swing_lookbacks: tuple[int, ...] = (3, 4, 5, 6, 7)
    golden_zone_mins: tuple[float, ...] = (0.45, 0.5, 0.55)
    golden_zone_maxs: tuple[float, ...] = (0.618, 0.65, 0.7)
    profit_targets: tuple[float, ...] = (0.008, 0.01, 0.012, 0.015, 0.018)
    stop_loss_pcts: tuple[float, ...] = (0.005, 0.006, 0.008, 0.01, 0.012)
    max_holdings: tuple[int, ...] = (5, 6, 8, 10, 12)
    leverages: tuple[float, ...] = (5, 8, 10, 15, 20)
    volume_thresholds: tuple[float, ...] = (1.2, 1.3, 1.5, 1.8)
    feature_sets: tuple[FeatureFlags, ...] = DEFAULT_FEATURE_SETS
    min_reward_risk: float = 1.2

    def _ranges(self) -> dict[str, tuple]:
        return {
            "bb_periods": self.bb_periods,
            "bb_std_devs": self.bb_std_devs,
            "bb_offsets": self.bb_offsets,
            "swing_lookbacks": self.swing_lookbacks,
            "golden_zone_mins": self.golden_zone_mins,
            "golden_zone_maxs": self.golden_zone_maxs,
            "profit_targets": self.profit_targets,
            "stop_loss_pcts": self.stop_loss_pcts,
            "max_holdings": self.max_holdings,
            "leverages": self.leverages,
            "volume_thresholds": self.volume_thresholds,
            "feature_sets": self.feature_sets,
        }

    def validate(self) -> None:
        """Raise ValueError for empty or out-of-domain ranges."""
        for name, values in self._ranges().items():
            if not values:
                raise ValueError(f"{name} must not be empty")

        numeric = self._ranges()
        del numeric["feature_sets"]
        for name, values in numeric.items():
            for value in values:
                if not math.isfinite(value):
                    raise ValueError(f"{name} contains a non-finite value: {value}")
                if name in ("bb_offsets", "golden_zone_mins"):
                    if value < 0:
                        raise ValueError(f"{name} must not be negative: {value}")
                elif value <= 0:
                    raise ValueError(f"{name} must be positive: {value}")

        for name in ("golden_zone_mins", "golden_zone_maxs"):
            for value in numeric[name]:
                if value > 1:
                    raise ValueError(f"{name} must lie in [0, 1]: {value}")
        for value in self.stop_loss_pcts:
            if value >= 1:
                raise ValueError(f"stop_loss_pcts must be below 1: {value}")
        for name in ("bb_periods", "swing_lookbacks", "max_holdings"):
            for value in numeric[name]:
                if value < 1:
                    raise ValueError(f"{name} must be at least 1: {value}")

        if self.min_reward_risk <= 0:
            raise ValueError("min_reward_risk must be positive")

    def is_valid_zone(self, zone_min: float, zone_max: float) -> bool:
        return zone_min < zone_max

    def is_valid_risk(self, profit_target: float, stop_loss_pct: float) -> bool:
        return profit_target / stop_loss_pct >= self.min_reward_risk

    @property
    def raw_size(self) -> int:
        size = 1
        for values in self._ranges().values():
            size *= len(values)
        return size

    @property
    def surviving_size(self) -> int:
        """Number of combinations left after pruning."""
        zone_pairs = sum(
            1 for lo, hi in itertools.product(self.golden_zone_mins, self.golden_zone_maxs)
            if self.is_valid_zone(lo, hi)
        )
        risk_pairs = sum(
            1 for pt, sl in itertools.product(self.profit_targets, self.stop_loss_pcts)
            if self.is_valid_risk(pt, sl)
        )
        return (
            len(self.bb_periods) * len(self.bb_std_devs) * len(self.bb_offsets)
            * len(self.swing_lookbacks) * zone_pairs * risk_pairs
            * len(self.max_holdings) * len(self.leverages)
            * len(self.volume_thresholds) * len(self.feature_sets)
        )

    def iter_combinations(self) -> Iterator[ParameterSet]:
        """Yield surviving combinations in enumeration order."""
        for (
            period, std_dev, offset, lookback, zone_min, zone_max,
            profit_target, stop_loss, holding, leverage, volume_threshold, features,
        ) in itertools.product(*self._ranges().values()):
            if not self.is_valid_zone(zone_min, zone_max):
                continue
            if not self.is_valid_risk(profit_target, stop_loss):
                continue
            yield ParameterSet(
                bb_period=period,
                bb_std_dev=std_dev,
                bb_offset=offset,
                swing_lookback=lookback,
                golden_zone_min=zone_min,
                golden_zone_max=zone_max,
                profit_target=profit_target,
                stop_loss_pct=stop_loss,
                max_holding=holding,
                leverage=leverage,
                volume_threshold=volume_threshold,
                features=features,
            )


# =============================================================================
# Optimization Results
# =============================================================================


@dataclass
class OptimizationResult:
    """A combination that passed the filters, with its metrics and score."""

    params: ParameterSet
    combination_index: int
    score: float
    total_return: float
    total_pnl: float
    win_rate: float
    total_trades: int
    max_drawdown: float
    sharpe_ratio: float
    signal_quality: float
    average_signal_strength: float = 0.0
    average_trade_minutes: float = 0.0
    trading_period_days: float | None = None
    average_trades_per_day: float | None = None
    holding_unit: str = "m"

    @property
    def description(self) -> str:
        return self.params.describe(self.holding_unit)

    def sort_key(self) -> tuple[float, int]:
        return (-self.score, self.combination_index)

    def to_dict(self) -> dict[str, Any]:
        return {
            "combination_index": self.combination_index,
            "description": self.description,
            "score": round(self.score, 4),
            **self.params.to_dict(),
            "total_return": round(self.total_return, 6),
            "total_pnl": round(self.total_pnl, 2),
            "win_rate": round(self.win_rate, 4),
            "total_trades": self.total_trades,
            "max_drawdown": round(self.max_drawdown, 4),
            "sharpe_ratio": round(self.sharpe_ratio, 4),
            "signal_quality": self.signal_quality,
            "average_signal_strength": round(self.average_signal_strength, 2),
            "average_trade_minutes": round(self.average_trade_minutes, 4),
            "trading_period_days": _round_optional(self.trading_period_days, 4),
            "average_trades_per_day": _round_optional(self.average_trades_per_day, 4),
        }


@dataclass(frozen=True)
class OptimizationProgress:
    """Snapshot published before every combination and once at the end."""

    current: int
    total: int
    description: str
    is_running: bool
    best_result: OptimizationResult | None = None
    estimated_seconds_remaining: float = 0.0
    passed: int = 0
    filtered: int = 0
    failed: int = 0

    @property
    def percent(self) -> float:
        if self.total <= 0:
            return 100.0
        return self.current / self.total * 100

    @property
    def eta_label(self) -> str:
        return format_duration(self.estimated_seconds_remaining)


def format_duration(seconds: float) -> str:
    """``1h 5m`` / ``3m 20s`` / ``12s``."""
    total = int(max(0.0, seconds))
    minutes, secs = divmod(total, 60)
    hours, minutes = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass
class OptimizationStats:
    """Counters of one optimization run."""

    raw_combinations: int = 0
    pruned: int = 0
    simulated: int = 0
    passed: int = 0
    filtered: int = 0
    failed: int = 0
    cancelled: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw_combinations": self.raw_combinations,
            "pruned": self.pruned,
            "simulated": self.simulated,
            "passed": self.passed,
            "filtered": self.filtered,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "duration_seconds": round(self.duration_seconds, 2),
        }
