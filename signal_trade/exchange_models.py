from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Generic, Literal, Optional, Protocol, Sequence, TypeVar

PositionMode = Literal["ONE_WAY", "HEDGE"]
Direction = Literal["LONG", "SHORT"]
OrderSide = Literal["Buy", "Sell"]
ProtectiveKind = Literal["TAKE_PROFIT", "STOP_LOSS"]

VALID_DIRECTIONS: frozenset[str] = frozenset({"LONG", "SHORT"})

LEVERAGE_SET = "LEVERAGE_SET"
LEVERAGE_ALREADY_SET = "LEVERAGE_ALREADY_SET"

T = TypeVar("T")


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    ok: bool
    reason_code: str
    value: Optional[T] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None

    @property
    def failure_reason(self) -> str:
        if self.ok:
            return "-"
        if self.error_message:
            return self.error_message
        return self.reason_code


@dataclass(frozen=True)
class InstrumentConstraints:
    symbol: str
    tick_size: float
    min_qty: float
    max_qty: float
    price_precision: int
    tradable: bool = True


@dataclass(frozen=True)
class OrderAck:
    order_id: str
    symbol: str
    side: OrderSide
    quantity: float
    trigger_price: Optional[float] = None


@dataclass(frozen=True)
class LivePosition:
    symbol: str
    side: str
    size: float
    avg_price: float
    mark_price: float
    unrealized_pnl: float


@dataclass(frozen=True)
class ExchangeTrade:
    symbol: str
    side: str
    exec_price: float
    timestamp: datetime


@dataclass(frozen=True)
class ClosedPnlRecord:
    symbol: str
    side: str
    avg_exit_price: float
    closed_pnl: float
    created_at: datetime


class ExchangeGateway(Protocol):
    def get_balance(self) -> GatewayResult[float]: ...

    def get_instrument_constraints(self, symbol: str) -> GatewayResult[InstrumentConstraints]: ...

    def get_current_price(self, symbol: str) -> GatewayResult[float]: ...

    def set_leverage(self, symbol: str, leverage: int) -> GatewayResult[int]: ...

    def submit_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        *,
        direction: Direction,
    ) -> GatewayResult[OrderAck]: ...

    def submit_protective_order(
        self,
        symbol: str,
        side: OrderSide,
        kind: ProtectiveKind,
        trigger_price: float,
        quantity: float,
        *,
        direction: Direction,
    ) -> GatewayResult[OrderAck]: ...

    def get_live_positions(self, symbol: Optional[str] = None) -> GatewayResult[Sequence[LivePosition]]: ...

    def get_recent_trades(self, symbol: str, limit: int) -> GatewayResult[Sequence[ExchangeTrade]]: ...

    def get_closed_pnl(self, symbol: str, limit: int) -> GatewayResult[Sequence[ClosedPnlRecord]]: ...


def format_decimal_text(value: float) -> str:
    """Render a number as a plain decimal string without exponent or trailing zeros."""
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return str(value)
    text = format(number.normalize(), "f")
    return "0" if text in ("-0", "") else text


def entry_side(direction: Direction) -> OrderSide:
    return "Buy" if direction == "LONG" else "Sell"


def closing_side(direction: Direction) -> OrderSide:
    return "Sell" if direction == "LONG" else "Buy"
