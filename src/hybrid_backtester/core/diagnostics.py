"""
Diagnostic event sink for the simulation core.

Core components never log directly. They report recoverable anomalies
(dropped candles, rejected swing points, skipped signals) to an optional
sink; the engine wires that sink to structlog.
"""

from typing import Any, Protocol


class DiagnosticSink(Protocol):
    """Receives a named diagnostic event with structured fields."""

    def __call__(self, event: str, **fields: Any) -> None: ...


def null_sink(event: str, **fields: Any) -> None:
    """Discard diagnostics."""


class RecordingSink:
    """Sink that keeps every event in memory (debugging and tests)."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def __call__(self, event: str, **fields: Any) -> None:
        self.events.append((event, fields))

    def count(self, event: str) -> int:
        return sum(1 for name, _ in self.events if name == event)
