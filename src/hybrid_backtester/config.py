"""
Runtime configuration using pydantic-settings.
"""

from pathlib import Path

from pydantic_settings import BaseSettings


class BacktesterSettings(BaseSettings):
    """Backtester runtime configuration (env prefix ``HYBRID_BT_``)."""

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_to_file: bool = False
    log_dir: Path = Path("logs")

    # Optimizer
    yield_every: int = 100
    progress_log_every: int = 2000
    max_workers: int | None = None

    # Caching
    indicator_cache_size: int = 1000

    model_config = {"env_prefix": "HYBRID_BT_", "env_file": ".env", "extra": "ignore"}
