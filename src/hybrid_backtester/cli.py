"""
Command line interface.

Usage:
    hybrid-backtester backtest --csv data/btc_1m.csv --period 20 --leverage 5
    hybrid-backtester optimize --sample-days 30 --quick --min-trades 10 --format yaml
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any

import yaml

from hybrid_backtester import __version__
from hybrid_backtester.config import BacktesterSettings
from hybrid_backtester.core.candles import Candle, load_candles_csv
from hybrid_backtester.core.synthetic import generate_sample_candles, generate_seconds_candles
from hybrid_backtester.engine.models import (
    FeatureFlags,
    OptimizationFilters,
    OptimizationProgress,
    ParameterGrid,
    StrategyConfig,
)
from hybrid_backtester.engine.simulator import detect_seconds_timeframe
from hybrid_backtester.engine.system import HybridBacktestSystem
from hybrid_backtester.logging import diagnostic_sink, get_logger, setup_logging

logger = get_logger(__name__)

# Small sweep for demos and smoke runs.
QUICK_GRID = ParameterGrid(
    bb_periods=(15, 20),
    bb_std_devs=(2.0,),
    bb_offsets=(0,),
    swing_lookbacks=(3, 5),
    golden_zone_mins=(0.5,),
    golden_zone_maxs=(0.618,),
    profit_targets=(0.01, 0.015),
    stop_loss_pcts=(0.006, 0.008),
    max_holdings=(8,),
    leverages=(5, 10),
    volume_thresholds=(1.3,),
    feature_sets=(FeatureFlags(), FeatureFlags(momentum=False), FeatureFlags(volume=False)),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hybrid-backtester",
        description="Bollinger/Fibonacci hybrid strategy backtester and grid optimizer",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    data = common.add_argument_group("data")
    data.add_argument("--csv", type=Path, help="OHLCV CSV file")
    data.add_argument("--sample-days", type=int, default=30, help="days of synthetic hourly candles when no CSV")
    data.add_argument("--sample-seconds", type=int, help="use N synthetic one-second candles instead")
    data.add_argument("--seed", type=int, default=42)
    out = common.add_argument_group("output")
    out.add_argument("--format", choices=("json", "yaml"), default="json")
    out.add_argument("--output", type=Path, help="write the report to a file instead of stdout")
    out.add_argument("--log-level", default=None, help="override HYBRID_BT_LOG_LEVEL")
    out.add_argument("--json-logs", action="store_true")

    backtest = sub.add_parser("backtest", parents=[common], help="run a single backtest")
    _add_strategy_args(backtest)
    backtest.add_argument("--include-trades", action="store_true")

    optimize = sub.add_parser("optimize", parents=[common], help="grid-search the parameter space")
    optimize.add_argument("--capital", type=float, default=10000.0)
    optimize.add_argument("--quick", action="store_true", help="search a small demo grid")
    optimize.add_argument("--workers", type=int, default=None, help="process pool size (default: sequential)")
    optimize.add_argument("--stress-periods", type=int, default=3)
    optimize.add_argument("--top", type=int, default=5)
    filters = optimize.add_argument_group("filters")
    filters.add_argument("--min-days", type=float, help="minimum trading period in days")
    filters.add_argument("--min-trades", type=int)
    filters.add_argument("--min-win-rate", type=float, help="fraction, e.g. 0.55")
    filters.add_argument("--max-drawdown", type=float, help="fraction, e.g. 0.2")
    filters.add_argument("--min-return", type=float, help="fraction, e.g. 0.05")

    return parser


def _add_strategy_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group("strategy")
    group.add_argument("--period", type=int)
    group.add_argument("--std-dev", type=float)
    group.add_argument("--offset", type=float)
    group.add_argument("--lookback", type=int)
    group.add_argument("--zone-min", type=float)
    group.add_argument("--zone-max", type=float)
    group.add_argument("--profit-target", type=float)
    group.add_argument("--stop-loss", type=float)
    group.add_argument("--max-holding", type=int, help="candles")
    group.add_argument("--leverage", type=float)
    group.add_argument("--capital", type=float)
    group.add_argument("--volume-threshold", type=float)
    group.add_argument("--no-breakout", action="store_true")
    group.add_argument("--no-retracement", action="store_true")
    group.add_argument("--no-volume", action="store_true")
    group.add_argument("--no-momentum", action="store_true")
    group.add_argument("--no-long", action="store_true")
    group.add_argument("--no-short", action="store_true")


_STRATEGY_FLAGS = {
    "period": "bb_period",
    "std_dev": "bb_std_dev",
    "offset": "bb_offset",
    "lookback": "swing_lookback",
    "zone_min": "golden_zone_min",
    "zone_max": "golden_zone_max",
    "profit_target": "profit_target",
    "stop_loss": "stop_loss_pct",
    "max_holding": "max_holding",
    "leverage": "leverage",
    "capital": "initial_capital",
    "volume_threshold": "volume_threshold",
}


def config_from_args(args: argparse.Namespace, seconds: bool) -> StrategyConfig:
    overrides: dict[str, Any] = {
        field: getattr(args, flag)
        for flag, field in _STRATEGY_FLAGS.items()
        if getattr(args, flag, None) is not None
    }
    for flag, field in (
        ("no_breakout", "require_breakout"),
        ("no_retracement", "require_retracement"),
        ("no_volume", "require_volume"),
        ("no_momentum", "require_momentum"),
        ("no_long", "enable_long"),
        ("no_short", "enable_short"),
    ):
        if getattr(args, flag, False):
            overrides[field] = False
    config = StrategyConfig.for_timeframe(seconds, **overrides)
    try:
        config.validate()
    except ValueError as e:
        raise SystemExit(f"Invalid strategy configuration: {e}") from e
    return config


def filters_from_args(args: argparse.Namespace) -> OptimizationFilters:
    return OptimizationFilters(
        min_trading_period_days=args.min_days,
        min_trades=args.min_trades,
        min_win_rate=args.min_win_rate,
        max_drawdown=args.max_drawdown,
        min_return=args.min_return,
    )


def load_candles(args: argparse.Namespace) -> list[Candle]:
    if args.csv is not None:
        try:
            candles = load_candles_csv(args.csv, diagnostics=diagnostic_sink(__name__))
        except (OSError, ValueError) as e:
            raise SystemExit(f"Cannot read {args.csv}: {e}") from e
        if not candles:
            raise SystemExit(f"No valid candles in {args.csv}")
        logger.info("Candles loaded", source=str(args.csv), count=len(candles))
        return candles

    if args.sample_seconds:
        return generate_seconds_candles(n=args.sample_seconds, seed=args.seed)
    return generate_sample_candles(n=max(1, args.sample_days) * 24, seed=args.seed)


def render(data: dict[str, Any], fmt: str) -> str:
    if fmt == "yaml":
        return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)
    return json.dumps(data, indent=2, default=str)


def _log_progress(progress: OptimizationProgress) -> None:
    if not progress.is_running:
        logger.info(
            "Sweep finished",
            current=progress.current,
            total=progress.total,
            percent=round(progress.percent, 1),
            passed=progress.passed,
            filtered=progress.filtered,
            failed=progress.failed,
        )


def run_backtest(args: argparse.Namespace, system: HybridBacktestSystem) -> dict[str, Any]:
    candles = load_candles(args)
    config = config_from_args(args, detect_seconds_timeframe(candles))
    result = system.run_single_backtest(config, candles)
    return {
        "config": config.to_dict(),
        "result": result.to_dict(include_trades=args.include_trades),
    }


def run_optimize(args: argparse.Namespace, system: HybridBacktestSystem) -> dict[str, Any]:
    candles = load_candles(args)
    base = StrategyConfig.for_timeframe(detect_seconds_timeframe(candles), initial_capital=args.capital)
    output = system.run_optimization(
        candles,
        base_config=base,
        grid=QUICK_GRID if args.quick else None,
        filters=filters_from_args(args),
        on_progress=_log_progress,
        stress_periods=args.stress_periods,
        top_n=args.top,
    )
    return output


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = BacktesterSettings()
    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        log_to_file=settings.log_to_file,
        json_logs=args.json_logs or settings.json_logs,
    )

    workers = getattr(args, "workers", None)
    system = HybridBacktestSystem(settings=settings, max_workers=workers)

    if args.command == "backtest":
        data = run_backtest(args, system)
    else:
        data = run_optimize(args, system)

    text = render(data, args.format)
    if args.output is not None:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text, encoding="utf-8")
        logger.info("Report written", path=str(args.output))
    else:
        sys.stdout.write(text)
        if not text.endswith("\n"):
            sys.stdout.write("\n")
    return 0
