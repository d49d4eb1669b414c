"""Hybrid backtesting engine — simulator, optimizer, reporter, system."""

from hybrid_backtester.engine.models import (
    DEFAULT_FEATURE_SETS,
    BacktestResult,
    FeatureFlags,
    OptimizationFilters,
    OptimizationProgress,
    OptimizationResult,
    OptimizationStats,
    ParameterGrid,
    ParameterSet,
    StrategyConfig,
)
from hybrid_backtester.engine.simulator import HybridBacktestSimulator, detect_seconds_timeframe
from hybrid_backtester.engine.scoring import calculate_score, signal_quality
from hybrid_backtester.engine.optimizer import HybridOptimizer, evaluate_combination
from hybrid_backtester.engine.reporter import HybridBacktestReporter, param_impact
from hybrid_backtester.engine.system import HybridBacktestSystem

__all__ = [
    "DEFAULT_FEATURE_SETS",
    "BacktestResult",
    "FeatureFlags",
    "OptimizationFilters",
    "OptimizationProgress",
    "OptimizationResult",
    "OptimizationStats",
    "ParameterGrid",
    "ParameterSet",
    "StrategyConfig",
    "HybridBacktestSimulator",
    "detect_seconds_timeframe",
    "calculate_score",
    "signal_quality",
    "HybridOptimizer",
    "evaluate_combination",
    "HybridBacktestReporter",
    "param_impact",
    "HybridBacktestSystem",
]
