"""
HybridBacktestReporter — Report generation and preset export.

Generates:
- Summary reports from backtest results
- Optimization reports with parameter impact analysis
- JSON/YAML preset export of the best configuration
"""

import json
from collections.abc import Sequence
from typing import Any

import numpy as np
import yaml

from hybrid_backtester.engine.models import (
    BacktestResult,
    OptimizationResult,
    OptimizationStats,
    StrategyConfig,
)
from hybrid_backtester.logging import get_logger

logger = get_logger(__name__)

IMPACT_PARAMS = (
    "bb_period",
    "bb_std_dev",
    "bb_offset",
    "swing_lookback",
    "golden_zone_min",
    "golden_zone_max",
    "profit_target",
    "stop_loss_pct",
    "max_holding",
    "leverage",
    "volume_threshold",
)


def param_impact(results: Sequence[OptimizationResult]) -> dict[str, float]:
    """Absolute correlation between each parameter and the score."""
    if len(results) < 2:
        return {}

    scores = np.array([r.score for r in results], dtype=float)
    impact: dict[str, float] = {}
    for param in IMPACT_PARAMS:
        values = np.array([float(getattr(r.params, param)) for r in results], dtype=float)
        if values.std() > 0 and scores.std() > 0:
            corr = np.corrcoef(values, scores)[0, 1]
            impact[param] = round(abs(float(corr)), 4)
        else:
            impact[param] = 0.0
    return impact


class HybridBacktestReporter:
    """Generates reports and exports presets from backtest/optimization results."""

    def generate_summary(
        self,
        results: list[BacktestResult],
        top_n: int = 5,
    ) -> dict[str, Any]:
        """Summary report across several backtest results."""
        if not results:
            return {"results": [], "count": 0}

        by_return = sorted(results, key=lambda r: r.total_return, reverse=True)
        by_sharpe = sorted(results, key=lambda r: r.sharpe_ratio, reverse=True)
        by_drawdown = sorted(results, key=lambda r: r.max_drawdown)

        logger.info("Summary report generated", count=len(results))

        return {
            "count": len(results),
            "top_by_return": [r.to_dict() for r in by_return[:top_n]],
            "top_by_sharpe": [r.to_dict() for r in by_sharpe[:top_n]],
            "lowest_drawdown": [r.to_dict() for r in by_drawdown[:top_n]],
            "avg_return": sum(r.total_return for r in results) / len(results),
            "avg_sharpe": sum(r.sharpe_ratio for r in results) / len(results),
            "avg_drawdown": sum(r.max_drawdown for r in results) / len(results),
        }

    def generate_optimization_report(
        self,
        results: list[OptimizationResult],
        stats: OptimizationStats | None = None,
        top_n: int = 5,
    ) -> dict[str, Any]:
        """Optimization report with parameter impact analysis."""
        report: dict[str, Any] = {
            "passed": len(results),
            "stats": stats.to_dict() if stats else None,
        }

        if results:
            best = results[0]
            report["best"] = best.to_dict()
            report["best_description"] = best.description

        report["top"] = [r.to_dict() for r in results[:top_n]]
        report["param_impact"] = param_impact(results)

        logger.info("Optimization report generated", passed=len(results))

        return report

    def export_preset_json(self, result: OptimizationResult, base_config: StrategyConfig | None = None) -> str:
        """Export the configuration of a result as a JSON preset."""
        preset = self._build_preset_dict(result, base_config or StrategyConfig())
        return json.dumps(preset, indent=2)

    def export_preset_yaml(self, result: OptimizationResult, base_config: StrategyConfig | None = None) -> str:
        """Export the configuration of a result as a YAML preset."""
        preset = self._build_preset_dict(result, base_config or StrategyConfig())
        return yaml.safe_dump(preset, default_flow_style=False, sort_keys=False)

    def _build_preset_dict(self, result: OptimizationResult, base_config: StrategyConfig) -> dict[str, Any]:
        config = result.params.apply(base_config)
        preset: dict[str, Any] = {
            "strategy": "bollinger_fibonacci_hybrid",
            "bollinger": {
                "period": config.bb_period,
                "std_dev": config.bb_std_dev,
                "offset": config.bb_offset,
            },
            "fibonacci": {
                "swing_lookback": config.swing_lookback,
                "golden_zone_min": config.golden_zone_min,
                "golden_zone_max": config.golden_zone_max,
            },
            "entry": {
                "require_breakout": config.require_breakout,
                "require_retracement": config.require_retracement,
                "require_volume": config.require_volume,
                "require_momentum": config.require_momentum,
                "volume_threshold": config.volume_threshold,
            },
            "risk": {
                "profit_target": config.profit_target,
                "stop_loss_pct": config.stop_loss_pct,
                "max_holding": config.max_holding,
                "holding_unit": result.holding_unit,
                "leverage": config.leverage,
            },
            "trading": {
                "initial_capital": config.initial_capital,
                "enable_long": config.enable_long,
                "enable_short": config.enable_short,
            },
        }

        preset["_backtest_metrics"] = {
            "score": round(result.score, 4),
            "total_return": round(result.total_return, 6),
            "win_rate": round(result.win_rate, 4),
            "total_trades": result.total_trades,
            "max_drawdown": round(result.max_drawdown, 4),
            "sharpe_ratio": round(result.sharpe_ratio, 4),
            "signal_quality": result.signal_quality,
        }

        return preset
