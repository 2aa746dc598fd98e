from __future__ import annotations

from datetime import datetime
from types import MappingProxyType
from typing import Optional

from .config import TradingSettings
from .event_logging import StructuredLogEvent, log_structured_event
from .exchange_models import VALID_DIRECTIONS, ExchangeGateway, InstrumentConstraints
from .position_ledger import PositionLedger
from .signal_models import Signal
from .trading_hours import get_trading_hours_info
from .trading_hours_models import TradingHoursWindow
from .validation_models import SignalValidationResult, ValidationReasonCode


def trading_window_from_settings(settings: TradingSettings) -> TradingHoursWindow:
    return TradingHoursWindow(
        start_hour=settings.trading_start_hour,
        end_hour=settings.trading_end_hour,
        enabled=settings.trading_hours_enabled,
    )


def _rejected(
    reason_code: ValidationReasonCode,
    reason: str,
    *,
    info: Optional[dict[str, str]] = None,
    balance: Optional[float] = None,
) -> SignalValidationResult:
    return SignalValidationResult(
        valid=False,
        reason_code=reason_code,
        reason=reason,
        info=MappingProxyType(dict(info or {})),
        balance=balance,
    )


def validate_signal(
    signal: Signal,
    *,
    settings: TradingSettings,
    ledger: PositionLedger,
    daily_trades: int,
    gateway: ExchangeGateway,
    now: datetime,
) -> SignalValidationResult:
    """Run the pre-trade checks in a fixed order and stop at the first failure.

    Local checks run first so that a rejected signal never costs an exchange
    round-trip. On success the fetched balance and instrument constraints are
    handed back so the caller does not fetch them twice.
    """
    symbol = (signal.symbol or "").strip().upper()
    if symbol not in settings.allowed_symbols:
        return _rejected(
            "SYMBOL_NOT_ALLOWED",
            f"symbol {symbol or '-'} is not in allowed list",
            info={"allowed_symbols": ",".join(settings.allowed_symbols)},
        )

    direction = (signal.direction or "").strip().upper()
    if direction not in VALID_DIRECTIONS:
        return _rejected("INVALID_DIRECTION", f"direction {direction or '-'} is not LONG or SHORT")

    hours = get_trading_hours_info(now, trading_window_from_settings(settings))
    if not hours.active:
        return _rejected(
            "OUTSIDE_TRADING_HOURS",
            f"outside trading hours {hours.trading_hours} UTC",
            info={
                "current_time": hours.current_time,
                "trading_hours": hours.trading_hours,
                "next_trading": hours.next_trading_in or "-",
            },
        )

    if ledger.has_open_position(symbol):
        return _rejected("POSITION_ALREADY_OPEN", f"position already open for {symbol}")

    open_count = ledger.open_count()
    if open_count >= settings.max_open_positions:
        return _rejected(
            "MAX_OPEN_POSITIONS_REACHED",
            f"open positions {open_count} >= max {settings.max_open_positions}",
        )

    if int(daily_trades) >= settings.max_daily_trades:
        return _rejected(
            "MAX_DAILY_TRADES_REACHED",
            f"daily trades {daily_trades} >= max {settings.max_daily_trades}",
        )

    balance_result = gateway.get_balance()
    if not balance_result.ok or balance_result.value is None:
        return _rejected("BALANCE_UNAVAILABLE", balance_result.failure_reason)
    balance = float(balance_result.value)
    if balance <= 0.0:
        return _rejected("INSUFFICIENT_BALANCE", f"balance {balance} is not positive", balance=balance)

    constraints_result = gateway.get_instrument_constraints(symbol)
    if not constraints_result.ok or constraints_result.value is None:
        return _rejected("INSTRUMENT_UNAVAILABLE", constraints_result.failure_reason, balance=balance)
    constraints: InstrumentConstraints = constraints_result.value
    if not constraints.tradable:
        return _rejected("INSTRUMENT_NOT_TRADABLE", f"{symbol} is not trading", balance=balance)

    return SignalValidationResult(
        valid=True,
        reason_code="SIGNAL_VALID",
        balance=balance,
        constraints=constraints,
    )


def validate_signal_with_logging(
    signal: Signal,
    *,
    settings: TradingSettings,
    ledger: PositionLedger,
    daily_trades: int,
    gateway: ExchangeGateway,
    now: datetime,
    loop_label: str = "loop",
) -> SignalValidationResult:
    result = validate_signal(
        signal,
        settings=settings,
        ledger=ledger,
        daily_trades=daily_trades,
        gateway=gateway,
        now=now,
    )
    log_structured_event(
        StructuredLogEvent(
            component="signal_validator",
            event="validate_signal",
            input_data=f"symbol={signal.symbol} direction={signal.direction} daily_trades={daily_trades}",
            decision="allow_list_direction_hours_ledger_limits_balance_instrument",
            result="valid" if result.valid else "rejected",
            state_before="signal_parsed",
            state_after="signal_valid" if result.valid else "signal_rejected",
            failure_reason=result.reason if not result.valid else "-",
            level="INFO" if result.valid else "WARN",
        ),
        loop_label=loop_label,
        reason_code=result.reason_code,
        balance=result.balance if result.balance is not None else "-",
        **dict(result.info),
    )
    return result
