from __future__ import annotations

from dataclasses import fields
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from .event_logging import LogLevel, StructuredLogEvent, log_structured_event
from .exchange_models import ExchangeGateway, LivePosition, closing_side
from .ledger_models import ClosedPosition, CloseReason, OpenPosition, PositionMark
from .position_ledger import PositionLedger
from .reconciliation_models import (
    NO_TRACKED_POSITIONS,
    RECONCILED,
    RECONCILIATION_ERROR,
    ExitPriceResolution,
    ReconciliationTickResult,
)
from .scheduler import PeriodicTask

TRADE_LOOKUP_LIMIT_DEFAULT = 20


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_realized_pnl(position: OpenPosition, exit_price: float) -> tuple[float, float]:
    """Return ``(pnl_in_quote, pnl_percent)``; both are negated for SHORT positions."""
    move = float(exit_price) - float(position.entry_price)
    pnl = move * float(position.quantity)
    pnl_percent = move / float(position.entry_price) * 100.0 if position.entry_price else 0.0
    if position.direction == "SHORT":
        return -pnl, -pnl_percent
    return pnl, pnl_percent


def classify_close_reason(position: OpenPosition, exit_price: float) -> CloseReason:
    if position.direction == "LONG":
        if exit_price >= position.take_profit_price:
            return "TAKE_PROFIT"
        if exit_price <= position.stop_loss_price:
            return "STOP_LOSS"
        return "UNKNOWN"
    if exit_price <= position.take_profit_price:
        return "TAKE_PROFIT"
    if exit_price >= position.stop_loss_price:
        return "STOP_LOSS"
    return "UNKNOWN"


def resolve_exit_price(
    position: OpenPosition,
    gateway: ExchangeGateway,
    *,
    trade_lookup_limit: int = TRADE_LOOKUP_LIMIT_DEFAULT,
) -> ExitPriceResolution:
    if position.dry_run:
        # No fills on the exchange belong to a synthetic position.
        return ExitPriceResolution(price=position.entry_price, source="ENTRY_FALLBACK")

    closed_pnl = gateway.get_closed_pnl(position.symbol, trade_lookup_limit)
    if closed_pnl.ok and closed_pnl.value:
        records = [record for record in closed_pnl.value if record.created_at >= position.opened_at]
        if records:
            latest = max(records, key=lambda record: record.created_at)
            return ExitPriceResolution(
                price=latest.avg_exit_price,
                source="CLOSED_PNL",
                exchange_pnl=latest.closed_pnl,
            )

    trades = gateway.get_recent_trades(position.symbol, trade_lookup_limit)
    if trades.ok and trades.value:
        exit_side = closing_side(position.direction)
        candidates = [
            trade
            for trade in trades.value
            if trade.side == exit_side and trade.timestamp >= position.opened_at
        ]
        if candidates:
            latest_trade = max(candidates, key=lambda trade: trade.timestamp)
            return ExitPriceResolution(price=latest_trade.exec_price, source="TRADE")

    return ExitPriceResolution(price=position.entry_price, source="ENTRY_FALLBACK")


def build_closed_position(
    position: OpenPosition,
    resolution: ExitPriceResolution,
    *,
    closed_at: datetime,
) -> ClosedPosition:
    pnl, pnl_percent = compute_realized_pnl(position, resolution.price)
    carried = {item.name: getattr(position, item.name) for item in fields(position)}
    return ClosedPosition(
        **carried,
        exit_price=resolution.price,
        realized_pnl=pnl,
        realized_pnl_percent=pnl_percent,
        duration_seconds=max(0, int((closed_at - position.opened_at).total_seconds())),
        closed_at=closed_at,
        close_reason=classify_close_reason(position, resolution.price),
        exit_price_source=resolution.source,
        exchange_realized_pnl=resolution.exchange_pnl,
    )


def _live_size_by_symbol(live: Sequence[LivePosition]) -> dict[str, LivePosition]:
    by_symbol: dict[str, LivePosition] = {}
    for item in live:
        if abs(item.size) > 0:
            by_symbol[item.symbol.strip().upper()] = item
    return by_symbol


def reconcile_open_positions(
    ledger: PositionLedger,
    gateway: ExchangeGateway,
    *,
    now: datetime,
    trade_lookup_limit: int = TRADE_LOOKUP_LIMIT_DEFAULT,
) -> ReconciliationTickResult:
    tracked = list(ledger.open_positions())
    if not tracked:
        return ReconciliationTickResult(ok=True, reason_code=NO_TRACKED_POSITIONS)

    live = gateway.get_live_positions()
    if not live.ok:
        return ReconciliationTickResult(
            ok=False,
            reason_code=RECONCILIATION_ERROR,
            checked=len(tracked),
            still_open=len(tracked),
            errors=(live.failure_reason,),
        )

    live_by_symbol = _live_size_by_symbol(live.value or ())
    closed: list[ClosedPosition] = []
    errors: list[str] = []
    still_open = 0
    for position in tracked:
        live_position = live_by_symbol.get(position.symbol)
        if live_position is not None:
            ledger.update_mark(
                position.symbol,
                PositionMark(
                    mark_price=live_position.mark_price,
                    unrealized_pnl=live_position.unrealized_pnl,
                    checked_at=now,
                ),
            )
            still_open += 1
            continue

        resolution = resolve_exit_price(position, gateway, trade_lookup_limit=trade_lookup_limit)
        closed_position = build_closed_position(position, resolution, closed_at=now)
        transition = ledger.close(position.symbol, closed_position)
        if transition.accepted:
            closed.append(closed_position)
        else:
            errors.append(f"{position.symbol}:{transition.reason_code}")

    return ReconciliationTickResult(
        ok=True,
        reason_code=RECONCILED,
        checked=len(tracked),
        closed=tuple(closed),
        still_open=still_open,
        errors=tuple(errors),
    )


def reconcile_open_positions_with_logging(
    ledger: PositionLedger,
    gateway: ExchangeGateway,
    *,
    now: datetime,
    trade_lookup_limit: int = TRADE_LOOKUP_LIMIT_DEFAULT,
    loop_label: str = "reconciliation",
) -> ReconciliationTickResult:
    result = reconcile_open_positions(ledger, gateway, now=now, trade_lookup_limit=trade_lookup_limit)
    level: LogLevel
    if result.reason_code == NO_TRACKED_POSITIONS:
        level = "DEBUG"
    elif result.ok:
        level = "INFO"
    else:
        level = "ERROR"
    log_structured_event(
        StructuredLogEvent(
            component="reconciliation",
            event="reconcile_open_positions",
            input_data=f"checked={result.checked}",
            decision="compare_ledger_with_live_positions",
            result=result.reason_code,
            state_before=f"open={result.checked}",
            state_after=f"open={result.still_open}",
            failure_reason=";".join(result.errors) if result.errors else "-",
            level=level,
        ),
        loop_label=loop_label,
        closed_count=len(result.closed),
    )
    for closed in result.closed:
        log_structured_event(
            StructuredLogEvent(
                component="reconciliation",
                event="position_closed",
                input_data=f"symbol={closed.symbol} direction={closed.direction}",
                decision=f"exit_source={closed.exit_price_source}",
                result=closed.close_reason,
                state_before="OPEN",
                state_after="CLOSED",
            ),
            loop_label=loop_label,
            entry_price=closed.entry_price,
            exit_price=closed.exit_price,
            realized_pnl=closed.realized_pnl,
            realized_pnl_percent=closed.realized_pnl_percent,
            exchange_realized_pnl="-" if closed.exchange_realized_pnl is None else closed.exchange_realized_pnl,
            duration_seconds=closed.duration_seconds,
        )
    return result


class ReconciliationLoop:
    def __init__(
        self,
        ledger: PositionLedger,
        gateway: ExchangeGateway,
        *,
        interval_seconds: float,
        on_closed: Optional[Callable[[Sequence[ClosedPosition]], object]] = None,
        now_provider: Callable[[], datetime] = _utc_now,
        trade_lookup_limit: int = TRADE_LOOKUP_LIMIT_DEFAULT,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._on_closed = on_closed
        self._now_provider = now_provider
        self._trade_lookup_limit = trade_lookup_limit
        self._task = PeriodicTask("reconciliation", self.run_once, interval_seconds=interval_seconds)

    @property
    def is_running(self) -> bool:
        return self._task.is_running

    def start(self) -> bool:
        return self._task.start()

    def stop(self, timeout: float = 5.0) -> bool:
        return self._task.stop(timeout)

    def run_once(self) -> ReconciliationTickResult:
        result = reconcile_open_positions_with_logging(
            self._ledger,
            self._gateway,
            now=self._now_provider(),
            trade_lookup_limit=self._trade_lookup_limit,
        )
        if result.closed and self._on_closed is not None:
            self._on_closed(result.closed)
        return result
