"""
Composite score for ranking optimization results.

Each component is normalized into [0, 100] and blended with fixed weights
that sum to 1.0.
"""

from collections.abc import Sequence

from hybrid_backtester.core.position import Trade
from hybrid_backtester.engine.models import BacktestResult, StrategyConfig

RETURN_WEIGHT = 0.25
WIN_RATE_WEIGHT = 0.20
SHARPE_WEIGHT = 0.15
DRAWDOWN_WEIGHT = 0.15
TRADES_WEIGHT = 0.10
SIGNAL_QUALITY_WEIGHT = 0.10
SPEED_WEIGHT = 0.05

# Quality points per enforced gate.
BREAKOUT_QUALITY = 25
RETRACEMENT_QUALITY = 30
VOLUME_QUALITY = 25
MOMENTUM_QUALITY = 20

NEUTRAL_SPEED_SCORE = 50.0
MS_PER_MINUTE = 60_000


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def signal_quality(config: StrategyConfig) -> float:
    """Static quality of a configuration from the gates it enforces."""
    quality = 0
    if config.require_breakout:
        quality += BREAKOUT_QUALITY
    if config.require_retracement:
        quality += RETRACEMENT_QUALITY
    if config.require_volume:
        quality += VOLUME_QUALITY
    if config.require_momentum:
        quality += MOMENTUM_QUALITY
    return float(quality)


def average_trade_minutes(trades: Sequence[Trade]) -> float:
    closed = [t for t in trades if t.exit_time is not None]
    if not closed:
        return 0.0
    return sum(t.duration_ms for t in closed) / MS_PER_MINUTE / len(closed)


def average_signal_strength(trades: Sequence[Trade]) -> float:
    if not trades:
        return 0.0
    return sum(t.signal_strength for t in trades) / len(trades)


def component_scores(result: BacktestResult, config: StrategyConfig) -> dict[str, float]:
    """Normalized component scores keyed by name."""
    avg_minutes = average_trade_minutes(result.trades)
    return {
        "return": _clamp((result.total_return + 1) * 50),
        "win_rate": _clamp(result.win_rate * 100),
        "sharpe": _clamp((result.sharpe_ratio + 2) * 25),
        "drawdown": _clamp(100 - result.max_drawdown * 100),
        "trades": _clamp(float(result.total_trades)),
        "signal_quality": signal_quality(config),
        "speed": _clamp(100 - avg_minutes * 5) if avg_minutes > 0 else NEUTRAL_SPEED_SCORE,
    }


def calculate_score(result: BacktestResult, config: StrategyConfig) -> float:
    components = component_scores(result, config)
    return (
        components["return"] * RETURN_WEIGHT
        + components["win_rate"] * WIN_RATE_WEIGHT
        + components["sharpe"] * SHARPE_WEIGHT
        + components["drawdown"] * DRAWDOWN_WEIGHT
        + components["trades"] * TRADES_WEIGHT
        + components["signal_quality"] * SIGNAL_QUALITY_WEIGHT
        + components["speed"] * SPEED_WEIGHT
    )
