"""
Position Manager — single-position state machine (Flat -> Open -> Flat).

Exit battery per candle, first match wins:
    timeout (checked before signals), stop-loss, target, band reversal.

Capital compounds: realized PnL is added to capital on every exit and the
next trade is sized from the updated capital.
"""

from dataclasses import dataclass, replace
from enum import Enum

from hybrid_backtester.core.candles import Candle
from hybrid_backtester.core.diagnostics import DiagnosticSink, null_sink
from hybrid_backtester.core.indicators import BandValue
from hybrid_backtester.core.signals import Direction, Signal


class ExitReason(str, Enum):
    """Why a trade was closed."""

    STOP_LOSS = "stop-loss"
    TARGET = "target"
    STRATEGY_EXIT = "strategy-exit"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class Trade:
    """One trade. Closing produces a new, closed instance."""

    id: str
    direction: Direction
    entry_index: int
    entry_time: float
    entry_price: float
    stop_price: float
    target_price: float
    leverage: float
    capital_at_entry: float
    signal_strength: int = 0
    is_open: bool = True
    exit_index: int | None = None
    exit_time: float | None = None
    exit_price: float | None = None
    pnl: float | None = None
    exit_reason: ExitReason | None = None

    @property
    def duration_ms(self) -> float:
        if self.exit_time is None:
            return 0.0
        return self.exit_time - self.entry_time

    def closed(self, index: int, time: float, price: float, pnl: float, reason: ExitReason) -> "Trade":
        if not self.is_open:
            raise ValueError(f"Trade {self.id} is already closed")
        return replace(
            self,
            is_open=False,
            exit_index=index,
            exit_time=time,
            exit_price=price,
            pnl=pnl,
            exit_reason=reason,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "entry_index": self.entry_index,
            "entry_time": self.entry_time,
            "entry_price": self.entry_price,
            "stop_price": self.stop_price,
            "target_price": self.target_price,
            "leverage": self.leverage,
            "capital_at_entry": self.capital_at_entry,
            "signal_strength": self.signal_strength,
            "is_open": self.is_open,
            "exit_index": self.exit_index,
            "exit_time": self.exit_time,
            "exit_price": self.exit_price,
            "pnl": self.pnl,
            "exit_reason": self.exit_reason.value if self.exit_reason else None,
        }


def trade_pnl(direction: Direction, entry_price: float, exit_price: float, leverage: float, capital: float) -> float:
    move = (exit_price - entry_price) / entry_price
    if direction is Direction.SHORT:
        move = -move
    return move * leverage * capital


class PositionManager:
    """Owns at most one open trade and the closed-trade ledger of a run."""

    def __init__(
        self,
        initial_capital: float,
        leverage: float,
        profit_target: float,
        max_holding: int,
        enable_long: bool = True,
        enable_short: bool = True,
        diagnostics: DiagnosticSink = null_sink,
    ) -> None:
        self.initial_capital = initial_capital
        self.leverage = leverage
        self.profit_target = profit_target
        self.max_holding = max_holding
        self.enable_long = enable_long
        self.enable_short = enable_short
        self._diagnostics = diagnostics

        self.capital = initial_capital
        self.open_trade: Trade | None = None
        self.trades: list[Trade] = []

    @property
    def is_flat(self) -> bool:
        return self.open_trade is None

    def direction_enabled(self, direction: Direction) -> bool:
        if direction is Direction.LONG:
            return self.enable_long
        return self.enable_short

    def target_price(self, trade: Trade) -> float:
        """Take-profit level recomputed from the configured target, not the signal's."""
        if trade.direction is Direction.LONG:
            return trade.entry_price * (1 + self.profit_target)
        return trade.entry_price * (1 - self.profit_target)

    # =========================================================================
    # Transitions
    # =========================================================================

    def try_enter(self, signal: Signal | None, candle: Candle, index: int) -> bool:
        """Open a trade from an actionable signal. Returns True on entry."""
        if signal is None or not self.is_flat:
            return False
        if not signal.actionable or not self.direction_enabled(signal.direction):
            return False
        if self.capital <= 0:
            self._diagnostics("entry_skipped_no_capital", index=index, capital=self.capital)
            return False

        self.open_trade = Trade(
            id=f"hybrid_{index}",
            direction=signal.direction,
            entry_index=index,
            entry_time=candle.timestamp,
            entry_price=signal.entry_price,
            stop_price=signal.stop_price,
            target_price=signal.target_price,
            leverage=self.leverage,
            capital_at_entry=self.capital,
            signal_strength=signal.strength,
        )
        self._diagnostics(
            "position_opened",
            index=index,
            direction=signal.direction.value,
            price=signal.entry_price,
            stop=signal.stop_price,
            strength=signal.strength,
        )
        return True

    def check_timeout(self, candle: Candle, index: int) -> bool:
        """Close the open trade when it has been held ``max_holding`` candles."""
        trade = self.open_trade
        if trade is None:
            return False
        if index - trade.entry_index >= self.max_holding:
            self.exit(candle, index, ExitReason.TIMEOUT)
            return True
        return False

    def check_exits(self, candle: Candle, band: BandValue | None, index: int) -> ExitReason | None:
        """Run stop-loss, target and band-reversal checks in that order."""
        trade = self.open_trade
        if trade is None:
            return None

        reason: ExitReason | None = None
        if self._stop_hit(trade, candle):
            reason = ExitReason.STOP_LOSS
        elif self._target_hit(trade, candle):
            reason = ExitReason.TARGET
        elif band is not None and self._reversed(trade, candle, band):
            reason = ExitReason.STRATEGY_EXIT

        if reason is not None:
            self.exit(candle, index, reason)
        return reason

    def exit(self, candle: Candle, index: int, reason: ExitReason) -> Trade | None:
        trade = self.open_trade
        if trade is None:
            return None

        if reason is ExitReason.STOP_LOSS:
            exit_price = trade.stop_price
        elif reason is ExitReason.TARGET:
            exit_price = self.target_price(trade)
        else:
            exit_price = candle.close

        pnl = trade_pnl(trade.direction, trade.entry_price, exit_price, trade.leverage, trade.capital_at_entry)
        closed = trade.closed(index, candle.timestamp, exit_price, pnl, reason)

        self.capital += pnl
        self.trades.append(closed)
        self.open_trade = None
        self._diagnostics(
            "position_closed",
            index=index,
            direction=closed.direction.value,
            price=exit_price,
            reason=reason.value,
            pnl=pnl,
        )
        return closed

    def force_close(self, candle: Candle, index: int) -> Trade | None:
        """Close whatever is open at the end of the data."""
        return self.exit(candle, index, ExitReason.STRATEGY_EXIT)

    # =========================================================================
    # Exit conditions
    # =========================================================================

    @staticmethod
    def _stop_hit(trade: Trade, candle: Candle) -> bool:
        if trade.direction is Direction.LONG:
            return candle.low <= trade.stop_price
        return candle.high >= trade.stop_price

    def _target_hit(self, trade: Trade, candle: Candle) -> bool:
        target = self.target_price(trade)
        if trade.direction is Direction.LONG:
            return candle.high >= target
        return candle.low <= target

    @staticmethod
    def _reversed(trade: Trade, candle: Candle, band: BandValue) -> bool:
        if trade.direction is Direction.LONG:
            return candle.close <= band.upper
        return candle.close >= band.lower
