from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal, Optional

from .exchange_models import Direction

SymbolLedgerState = Literal["NONE", "OPENING", "OPEN", "CLOSED"]
LedgerEvent = Literal["RESERVE", "RELEASE", "CONFIRM_OPEN", "CONFIRM_CLOSED"]
CloseReason = Literal["TAKE_PROFIT", "STOP_LOSS", "UNKNOWN"]
ExitPriceSource = Literal["CLOSED_PNL", "TRADE", "ENTRY_FALLBACK"]


@dataclass(frozen=True)
class OpenPosition:
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    take_profit_price: float
    stop_loss_price: float
    entry_order_id: str
    take_profit_order_id: Optional[str]
    stop_loss_order_id: Optional[str]
    opened_at: datetime
    leverage: int = 1
    dry_run: bool = False

    @property
    def protection_complete(self) -> bool:
        return self.take_profit_order_id is not None and self.stop_loss_order_id is not None


@dataclass(frozen=True)
class ClosedPosition:
    symbol: str
    direction: Direction
    entry_price: float
    quantity: float
    take_profit_price: float
    stop_loss_price: float
    entry_order_id: str
    take_profit_order_id: Optional[str]
    stop_loss_order_id: Optional[str]
    opened_at: datetime
    leverage: int
    dry_run: bool
    exit_price: float
    realized_pnl: float
    realized_pnl_percent: float
    duration_seconds: int
    closed_at: datetime
    close_reason: CloseReason
    exit_price_source: ExitPriceSource
    exchange_realized_pnl: Optional[float] = None

    @property
    def is_win(self) -> bool:
        return self.realized_pnl >= 0


@dataclass(frozen=True)
class PositionMark:
    mark_price: float
    unrealized_pnl: float
    checked_at: datetime


@dataclass(frozen=True)
class LedgerTransitionResult:
    symbol: str
    event: LedgerEvent
    previous_state: SymbolLedgerState
    current_state: SymbolLedgerState
    accepted: bool
    reason_code: str
