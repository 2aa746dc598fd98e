from __future__ import annotations

from datetime import datetime
from typing import Optional

from .config import TradingSettings
from .event_logging import LogLevel, StructuredLogEvent, log_structured_event
from .exchange_models import (
    ExchangeGateway,
    InstrumentConstraints,
    ProtectiveKind,
    closing_side,
    entry_side,
)
from .ledger_models import OpenPosition
from .order_sequencer_models import (
    DRY_RUN_OPENED,
    ENTRY_FAILED,
    PARTIAL_PROTECTION_FAILURE,
    POSITION_OPENED,
    SETUP_FAILED,
    OrderLegName,
    OrderLegResult,
    OrderSequenceResult,
)
from .risk_calculator import compute_position_parameters, has_sufficient_balance
from .risk_models import PositionParameters, RiskSettings
from .signal_models import Signal


def risk_settings_from(settings: TradingSettings) -> RiskSettings:
    return RiskSettings(
        risk_percent=settings.risk_percent,
        leverage=settings.leverage,
        stop_loss_percent=settings.stop_loss_percent,
        take_profit_percent=settings.take_profit_percent,
    )


def _build_position(
    symbol: str,
    params: PositionParameters,
    *,
    entry_order_id: str,
    take_profit_order_id: Optional[str],
    stop_loss_order_id: Optional[str],
    now: datetime,
    dry_run: bool,
) -> OpenPosition:
    return OpenPosition(
        symbol=symbol,
        direction=params.direction,
        entry_price=params.entry_price,
        quantity=params.quantity,
        take_profit_price=params.take_profit_price,
        stop_loss_price=params.stop_loss_price,
        entry_order_id=entry_order_id,
        take_profit_order_id=take_profit_order_id,
        stop_loss_order_id=stop_loss_order_id,
        opened_at=now,
        leverage=params.leverage,
        dry_run=dry_run,
    )


def _submit_protective_leg(
    gateway: ExchangeGateway,
    symbol: str,
    params: PositionParameters,
    kind: ProtectiveKind,
) -> OrderLegResult:
    trigger_price = params.take_profit_price if kind == "TAKE_PROFIT" else params.stop_loss_price
    result = gateway.submit_protective_order(
        symbol,
        closing_side(params.direction),
        kind,
        trigger_price,
        params.quantity,
        direction=params.direction,
    )
    return OrderLegResult(
        leg=kind,
        ok=result.ok,
        reason_code=result.reason_code,
        order_id=result.value.order_id if result.ok and result.value is not None else None,
        failure_reason=result.failure_reason,
    )


def open_position(
    signal: Signal,
    *,
    balance: float,
    entry_price: float,
    constraints: InstrumentConstraints,
    settings: TradingSettings,
    gateway: ExchangeGateway,
    now: datetime,
) -> OrderSequenceResult:
    """Size the position then submit leverage, entry, take-profit and stop-loss in order.

    Nothing is rolled back. Once the entry leg fills, a failed protective leg
    yields ``PARTIAL_PROTECTION_FAILURE`` together with the open position so
    the caller still records it.
    """
    symbol = signal.symbol.strip().upper()
    sizing = compute_position_parameters(
        balance,
        entry_price,
        signal.direction.strip().upper(),
        constraints,
        risk=risk_settings_from(settings),
    )
    if not sizing.ok or sizing.parameters is None:
        return OrderSequenceResult(
            success=False,
            reason_code=sizing.reason_code,
            failure_reason=sizing.failure_reason,
        )
    params = sizing.parameters

    if not has_sufficient_balance(balance, params.required_margin):
        return OrderSequenceResult(
            success=False,
            reason_code="INSUFFICIENT_BALANCE",
            failure_reason=f"required_margin={params.required_margin} > balance={balance}",
            parameters=params,
        )

    if settings.dry_run:
        entry_order_id = f"DRY_RUN_{int(now.timestamp() * 1000)}"
        return OrderSequenceResult(
            success=True,
            reason_code=DRY_RUN_OPENED,
            parameters=params,
            position=_build_position(
                symbol,
                params,
                entry_order_id=entry_order_id,
                take_profit_order_id="DRY_RUN_TP",
                stop_loss_order_id="DRY_RUN_SL",
                now=now,
                dry_run=True,
            ),
            entry_order_id=entry_order_id,
        )

    legs: list[OrderLegResult] = []

    leverage = gateway.set_leverage(symbol, params.leverage)
    legs.append(
        OrderLegResult(
            leg="LEVERAGE",
            ok=leverage.ok,
            reason_code=leverage.reason_code,
            failure_reason=leverage.failure_reason,
        )
    )
    if not leverage.ok:
        return OrderSequenceResult(
            success=False,
            reason_code=SETUP_FAILED,
            failure_reason=leverage.failure_reason,
            parameters=params,
            failed_leg="LEVERAGE",
            legs=tuple(legs),
        )

    entry = gateway.submit_market_order(
        symbol,
        entry_side(params.direction),
        params.quantity,
        direction=params.direction,
    )
    entry_order_id = entry.value.order_id if entry.ok and entry.value is not None else None
    legs.append(
        OrderLegResult(
            leg="ENTRY",
            ok=entry_order_id is not None,
            reason_code=entry.reason_code,
            order_id=entry_order_id,
            failure_reason=entry.failure_reason,
        )
    )
    if entry_order_id is None:
        return OrderSequenceResult(
            success=False,
            reason_code=ENTRY_FAILED,
            failure_reason=entry.failure_reason,
            parameters=params,
            failed_leg="ENTRY",
            legs=tuple(legs),
        )

    # Stop-loss is attempted even when the take-profit leg fails.
    take_profit = _submit_protective_leg(gateway, symbol, params, "TAKE_PROFIT")
    stop_loss = _submit_protective_leg(gateway, symbol, params, "STOP_LOSS")
    legs.extend((take_profit, stop_loss))

    position = _build_position(
        symbol,
        params,
        entry_order_id=entry_order_id,
        take_profit_order_id=take_profit.order_id,
        stop_loss_order_id=stop_loss.order_id,
        now=now,
        dry_run=False,
    )
    if not (take_profit.ok and stop_loss.ok):
        failed: OrderLegName = "TAKE_PROFIT" if not take_profit.ok else "STOP_LOSS"
        failure_reason = "; ".join(
            f"{leg.leg}={leg.failure_reason}" for leg in (take_profit, stop_loss) if not leg.ok
        )
        return OrderSequenceResult(
            success=False,
            reason_code=PARTIAL_PROTECTION_FAILURE,
            failure_reason=failure_reason,
            parameters=params,
            position=position,
            entry_order_id=entry_order_id,
            failed_leg=failed,
            legs=tuple(legs),
        )

    return OrderSequenceResult(
        success=True,
        reason_code=POSITION_OPENED,
        parameters=params,
        position=position,
        entry_order_id=entry_order_id,
        legs=tuple(legs),
    )


def open_position_with_logging(
    signal: Signal,
    *,
    balance: float,
    entry_price: float,
    constraints: InstrumentConstraints,
    settings: TradingSettings,
    gateway: ExchangeGateway,
    now: datetime,
    loop_label: str = "loop",
) -> OrderSequenceResult:
    result = open_position(
        signal,
        balance=balance,
        entry_price=entry_price,
        constraints=constraints,
        settings=settings,
        gateway=gateway,
        now=now,
    )
    params = result.parameters
    level: LogLevel
    if result.reason_code == PARTIAL_PROTECTION_FAILURE:
        level = "CRITICAL"
    elif result.success:
        level = "INFO"
    else:
        level = "ERROR"
    log_structured_event(
        StructuredLogEvent(
            component="order_sequencer",
            event="open_position",
            input_data=(
                f"symbol={signal.symbol} direction={signal.direction} "
                f"balance={balance} entry_price={entry_price} dry_run={settings.dry_run}"
            ),
            decision="leverage_entry_take_profit_stop_loss",
            result=result.reason_code,
            state_before="OPENING",
            state_after="OPEN" if result.opened else "ABORTED",
            failure_reason=result.failure_reason if not result.success else "-",
            level=level,
        ),
        loop_label=loop_label,
        entry_order_id=result.entry_order_id or "-",
        failed_leg=result.failed_leg or "-",
        legs=",".join(f"{leg.leg}:{'ok' if leg.ok else leg.reason_code}" for leg in result.legs) or "-",
        quantity=params.quantity if params is not None else "-",
        take_profit_price=params.take_profit_price if params is not None else "-",
        stop_loss_price=params.stop_loss_price if params is not None else "-",
    )
    return result
