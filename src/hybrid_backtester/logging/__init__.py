"""Structured logging for the hybrid backtester."""

from hybrid_backtester.logging.logger import (
    DiagnosticLogger,
    diagnostic_sink,
    get_logger,
    log_context,
    setup_logging,
)

__all__ = ["get_logger", "setup_logging", "log_context", "diagnostic_sink", "DiagnosticLogger"]
