from __future__ import annotations

import math
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from .event_logging import StructuredLogEvent, log_structured_event
from .exchange_models import VALID_DIRECTIONS, InstrumentConstraints
from .risk_models import (
    POSITION_SIZED,
    PositionParameters,
    PositionSizingResult,
    RiskSettings,
    SizingClamp,
)


def _is_positive_finite(value: Any) -> bool:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number > 0.0


def _to_decimal(value: Any) -> Optional[Decimal]:
    try:
        converted = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not converted.is_finite():
        return None
    return converted


def round_price(price: float, price_precision: int) -> float:
    """Round half-up to ``price_precision`` decimal places; already-rounded input is returned unchanged."""
    price_decimal = _to_decimal(price)
    if price_decimal is None:
        return float(price)
    quantum = Decimal(1).scaleb(-max(0, int(price_precision)))
    return float(price_decimal.quantize(quantum, rounding=ROUND_HALF_UP))


def floor_quantity(quantity: float, step: float) -> float:
    qty_decimal = _to_decimal(quantity)
    step_decimal = _to_decimal(step)
    if qty_decimal is None or step_decimal is None or step_decimal <= 0:
        return float(quantity)
    units = (qty_decimal / step_decimal).quantize(Decimal("1"), rounding=ROUND_DOWN)
    return float(units * step_decimal)


def has_sufficient_balance(balance: float, required_margin: float) -> bool:
    return (
        _is_positive_finite(balance)
        and _is_positive_finite(required_margin)
        and float(balance) >= float(required_margin)
    )


def _failed(reason_code: str, failure_reason: str, clamps: tuple[SizingClamp, ...] = ()) -> PositionSizingResult:
    return PositionSizingResult(
        ok=False,
        parameters=None,
        reason_code=reason_code,
        failure_reason=failure_reason,
        clamps=clamps,
    )


def _validate_inputs(
    balance: float,
    entry_price: float,
    direction: str,
    constraints: InstrumentConstraints,
    risk: RiskSettings,
) -> Optional[str]:
    if not _is_positive_finite(balance):
        return f"balance must be positive finite number: {balance}"
    if not _is_positive_finite(entry_price):
        return f"entry price must be positive finite number: {entry_price}"
    if direction not in VALID_DIRECTIONS:
        return f"direction must be LONG or SHORT: {direction}"
    if not _is_positive_finite(risk.risk_percent):
        return "risk_percent must be positive"
    if not _is_positive_finite(risk.stop_loss_percent) or not _is_positive_finite(risk.take_profit_percent):
        return "stop_loss_percent and take_profit_percent must be positive"
    if int(risk.leverage) < 1:
        return "leverage must be >= 1"
    if not _is_positive_finite(constraints.tick_size):
        return "tick_size must be positive"
    if float(constraints.min_qty) < 0 or float(constraints.max_qty) < float(constraints.min_qty):
        return "quantity bounds are invalid"
    if int(constraints.price_precision) < 0:
        return "price_precision must be >= 0"
    return None


def compute_position_parameters(
    balance: float,
    entry_price: float,
    direction: str,
    constraints: InstrumentConstraints,
    *,
    risk: RiskSettings,
) -> PositionSizingResult:
    invalid = _validate_inputs(balance, entry_price, direction, constraints, risk)
    if invalid is not None:
        return _failed("INVALID_INPUT", invalid)

    balance = float(balance)
    entry = float(entry_price)
    leverage = int(risk.leverage)
    clamps: list[SizingClamp] = []
    is_long = direction == "LONG"

    risk_amount = balance * float(risk.risk_percent) / 100.0
    stop_offset = float(risk.stop_loss_percent) / 100.0
    stop_loss_price = entry * (1.0 - stop_offset) if is_long else entry * (1.0 + stop_offset)
    stop_distance = abs(entry - stop_loss_price)
    if not math.isfinite(stop_distance) or stop_distance <= 0.0 or stop_loss_price <= 0.0:
        return _failed("DEGENERATE_STOP", f"stop distance is not positive: stop_loss_price={stop_loss_price}")

    position_size_notional = (risk_amount / stop_distance) * entry
    if position_size_notional / leverage > balance:
        position_size_notional = balance * leverage
        clamps.append("MARGIN_CAPPED")

    quantity = position_size_notional / entry
    target_offset = float(risk.take_profit_percent) / 100.0
    take_profit_price = entry * (1.0 + target_offset) if is_long else entry * (1.0 - target_offset)

    quantity = floor_quantity(quantity, constraints.tick_size)
    precision = int(constraints.price_precision)
    rounded_entry = round_price(entry, precision)
    rounded_stop = round_price(stop_loss_price, precision)
    rounded_target = round_price(take_profit_price, precision)

    if quantity < float(constraints.min_qty):
        quantity = float(constraints.min_qty)
        position_size_notional = quantity * entry
        clamps.append("MIN_QTY_APPLIED")
    if quantity > float(constraints.max_qty):
        quantity = floor_quantity(float(constraints.max_qty), constraints.tick_size)
        position_size_notional = quantity * entry
        clamps.append("MAX_QTY_APPLIED")

    if quantity <= 0.0:
        return _failed(
            "INSUFFICIENT_BALANCE",
            f"quantity rounds to zero at step {constraints.tick_size}",
            tuple(clamps),
        )

    required_margin = quantity * entry / leverage
    if required_margin > balance:
        return _failed(
            "INSUFFICIENT_BALANCE",
            f"required_margin={required_margin} > balance={balance}",
            tuple(clamps),
        )

    return PositionSizingResult(
        ok=True,
        parameters=PositionParameters(
            entry_price=rounded_entry,
            quantity=quantity,
            position_size_notional=position_size_notional,
            leverage=leverage,
            required_margin=required_margin,
            stop_loss_price=rounded_stop,
            take_profit_price=rounded_target,
            risk_amount=risk_amount,
            direction="LONG" if is_long else "SHORT",
        ),
        reason_code=POSITION_SIZED,
        failure_reason="-",
        clamps=tuple(clamps),
    )


def compute_position_parameters_with_logging(
    balance: float,
    entry_price: float,
    direction: str,
    constraints: InstrumentConstraints,
    *,
    risk: RiskSettings,
    loop_label: str = "loop",
) -> PositionSizingResult:
    result = compute_position_parameters(balance, entry_price, direction, constraints, risk=risk)
    params = result.parameters
    log_structured_event(
        StructuredLogEvent(
            component="risk_calculator",
            event="compute_position_parameters",
            input_data=(
                f"symbol={constraints.symbol} balance={balance} entry_price={entry_price} "
                f"direction={direction} risk_pct={risk.risk_percent} leverage={risk.leverage}"
            ),
            decision="fixed_fractional_risk_with_percent_stop",
            result="sized" if result.ok else "rejected",
            state_before="unsized",
            state_after="sized" if result.ok else "rejected",
            failure_reason=result.failure_reason if not result.ok else "-",
            level="INFO" if result.ok else "WARN",
        ),
        loop_label=loop_label,
        reason_code=result.reason_code,
        clamps=",".join(result.clamps) or "-",
        quantity=params.quantity if params is not None else "-",
        required_margin=params.required_margin if params is not None else "-",
        stop_loss_price=params.stop_loss_price if params is not None else "-",
        take_profit_price=params.take_profit_price if params is not None else "-",
    )
    return result
