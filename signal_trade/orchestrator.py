from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional, Sequence

from .config import TradingSettings
from .event_logging import LogLevel, StructuredLogEvent, log_structured_event
from .exchange_models import ExchangeGateway, InstrumentConstraints
from .ledger_models import ClosedPosition
from .notifications import (
    format_daily_report,
    format_partial_protection_alert,
    format_position_closed,
    format_position_opened,
    format_signal_error,
    format_signal_ignored,
)
from .order_sequencer import open_position_with_logging
from .order_sequencer_models import PARTIAL_PROTECTION_FAILURE
from .orchestrator_models import (
    BALANCE_UNAVAILABLE,
    NOT_A_SIGNAL,
    PRICE_UNAVAILABLE,
    UNEXPECTED_ERROR,
    SignalHandleResult,
)
from .position_ledger import PositionLedger
from .signal_models import ParsedSignal, Signal
from .signal_parser import parse_signal_with_logging
from .signal_validator import validate_signal_with_logging
from .statistics import StatisticsAggregator
from .statistics_models import DailyReport

Notifier = Callable[[str], object]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SignalOrchestrator:
    """Takes a signal from raw text to a recorded position and keeps the books.

    All collaborators are passed in. Notification delivery is best effort:
    a failing notifier is logged and never changes the outcome of a signal.
    """

    def __init__(
        self,
        settings: TradingSettings,
        gateway: ExchangeGateway,
        ledger: PositionLedger,
        statistics: StatisticsAggregator,
        *,
        notify: Optional[Notifier] = None,
        now_provider: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.ledger = ledger
        self.statistics = statistics
        self._notify_callable = notify
        self._now_provider = now_provider
        self._last_report_date: Optional[date] = None

    def _log(
        self,
        event: str,
        *,
        input_data: str,
        decision: str,
        result: str,
        failure_reason: str = "-",
        level: LogLevel = "INFO",
        **context: object,
    ) -> None:
        log_structured_event(
            StructuredLogEvent(
                component="orchestrator",
                event=event,
                input_data=input_data,
                decision=decision,
                result=result,
                failure_reason=failure_reason,
                level=level,
            ),
            **context,
        )

    def notify(self, text: str) -> bool:
        headline = text.splitlines()[0] if text else "-"
        if self._notify_callable is None:
            return False
        if self.settings.dry_run:
            # Dry-run keeps the signal channel clean.
            self._log(
                "notification_suppressed",
                input_data=f"headline={headline}",
                decision="dry_run_enabled",
                result="skipped",
                level="DEBUG",
            )
            return False
        try:
            outcome = self._notify_callable(text)
        except Exception as exc:
            self._log(
                "notification_failed",
                input_data=f"headline={headline}",
                decision="log_and_continue",
                result="exception",
                failure_reason=repr(exc),
                level="ERROR",
            )
            return False
        if getattr(outcome, "ok", True) is False:
            self._log(
                "notification_failed",
                input_data=f"headline={headline}",
                decision="log_and_continue",
                result=str(getattr(outcome, "reason_code", "failed")),
                failure_reason=str(getattr(outcome, "failure_reason", "-")),
                level="WARN",
            )
            return False
        return True

    def handle_message(self, raw_text: str) -> SignalHandleResult:
        parsed = parse_signal_with_logging(raw_text, now=self._now_provider(), loop_label="signal")
        if isinstance(parsed, ParsedSignal):
            return self.handle_signal(parsed.signal)
        return SignalHandleResult(accepted=False, reason_code=NOT_A_SIGNAL, failure_reason=parsed.reason_code)

    def handle_signal(self, signal: Signal) -> SignalHandleResult:
        now = self._now_provider()
        symbol = signal.symbol.strip().upper()
        direction = signal.direction.strip().upper()
        self.statistics.roll_over_if_new_day(now)
        self.statistics.record_signal_received()

        validation = validate_signal_with_logging(
            signal,
            settings=self.settings,
            ledger=self.ledger,
            daily_trades=self.statistics.daily_trades,
            gateway=self.gateway,
            now=now,
            loop_label="signal",
        )
        if not validation.valid:
            if validation.reason_code == "OUTSIDE_TRADING_HOURS":
                self.statistics.record_signal_ignored()
            self.notify(format_signal_ignored(symbol, direction, validation.reason, validation.info))
            return SignalHandleResult(
                accepted=False,
                reason_code=validation.reason_code,
                failure_reason=validation.reason,
                symbol=symbol,
                direction=direction,
            )

        reservation = self.ledger.reserve(symbol, self.settings.max_open_positions)
        if not reservation.accepted:
            self.notify(format_signal_ignored(symbol, direction, reservation.reason_code))
            return SignalHandleResult(
                accepted=False,
                reason_code=reservation.reason_code,
                failure_reason=f"reservation rejected in state {reservation.previous_state}",
                symbol=symbol,
                direction=direction,
            )

        try:
            return self._open_reserved(signal, symbol, direction, now, validation.constraints)
        except Exception as exc:
            # A reservation must never outlive a failed attempt.
            if self.ledger.symbol_state(symbol) == "OPENING":
                self.ledger.release(symbol)
            self._log(
                "handle_signal_failed",
                input_data=f"symbol={symbol} direction={direction}",
                decision="release_reservation",
                result=UNEXPECTED_ERROR,
                failure_reason=repr(exc),
                level="ERROR",
            )
            self.notify(format_signal_error(symbol, direction, UNEXPECTED_ERROR, repr(exc)))
            return SignalHandleResult(
                accepted=False,
                reason_code=UNEXPECTED_ERROR,
                failure_reason=repr(exc),
                symbol=symbol,
                direction=direction,
            )

    def _open_reserved(
        self,
        signal: Signal,
        symbol: str,
        direction: str,
        now: datetime,
        constraints: Optional[InstrumentConstraints],
    ) -> SignalHandleResult:
        if constraints is None:
            raise ValueError("validated signal is missing instrument constraints")
        # Sizing uses the balance at submission time, not the one seen by the validator.
        fresh_balance = self.gateway.get_balance()
        if not fresh_balance.ok or fresh_balance.value is None:
            return self._abort_reserved(symbol, direction, BALANCE_UNAVAILABLE, fresh_balance.failure_reason)
        balance = float(fresh_balance.value)
        price = self.gateway.get_current_price(symbol)
        if not price.ok or price.value is None:
            return self._abort_reserved(symbol, direction, PRICE_UNAVAILABLE, price.failure_reason)

        sequence = open_position_with_logging(
            signal,
            balance=balance,
            entry_price=float(price.value),
            constraints=constraints,
            settings=self.settings,
            gateway=self.gateway,
            now=now,
            loop_label="signal",
        )
        if sequence.position is None:
            self.ledger.release(symbol)
            self.notify(format_signal_error(symbol, direction, sequence.reason_code, sequence.failure_reason))
            return SignalHandleResult(
                accepted=False,
                reason_code=sequence.reason_code,
                failure_reason=sequence.failure_reason,
                symbol=symbol,
                direction=direction,
            )

        self.ledger.confirm_open(sequence.position)
        self.statistics.record_position_opened()
        if sequence.parameters is not None:
            self.notify(
                format_position_opened(
                    symbol,
                    sequence.parameters,
                    balance=balance,
                    signal_time=signal.timestamp,
                    dry_run=sequence.position.dry_run,
                )
            )
        if sequence.reason_code == PARTIAL_PROTECTION_FAILURE:
            missing = [
                leg
                for leg, order_id in (
                    ("TAKE_PROFIT", sequence.position.take_profit_order_id),
                    ("STOP_LOSS", sequence.position.stop_loss_order_id),
                )
                if order_id is None
            ]
            self.notify(
                format_partial_protection_alert(
                    symbol,
                    direction,
                    entry_order_id=sequence.entry_order_id or "-",
                    missing_legs=missing,
                    failure_reason=sequence.failure_reason,
                )
            )
        return SignalHandleResult(
            accepted=True,
            reason_code=sequence.reason_code,
            failure_reason=sequence.failure_reason,
            symbol=symbol,
            direction=direction,
            position=sequence.position,
        )

    def _abort_reserved(self, symbol: str, direction: str, reason_code: str, failure_reason: str) -> SignalHandleResult:
        self.ledger.release(symbol)
        self._log(
            "open_aborted",
            input_data=f"symbol={symbol} direction={direction}",
            decision="release_reservation",
            result=reason_code,
            failure_reason=failure_reason,
            level="WARN",
        )
        self.notify(format_signal_error(symbol, direction, reason_code, failure_reason))
        return SignalHandleResult(
            accepted=False,
            reason_code=reason_code,
            failure_reason=failure_reason,
            symbol=symbol,
            direction=direction,
        )

    def handle_closed_positions(self, closed: Sequence[ClosedPosition]) -> int:
        self.statistics.roll_over_if_new_day(self._now_provider())
        for position in closed:
            self.statistics.record_position_closed(position)
            self.notify(format_position_closed(position))
        return len(closed)

    def send_daily_report(self) -> Optional[DailyReport]:
        now = self._now_provider()
        self.statistics.roll_over_if_new_day(now)
        balance = self.gateway.get_balance()
        if not balance.ok or balance.value is None:
            self._log(
                "daily_report_failed",
                input_data=f"date={now.date().isoformat()}",
                decision="fetch_current_balance",
                result="balance_unavailable",
                failure_reason=balance.failure_reason,
                level="ERROR",
            )
            return None
        report = self.statistics.build_daily_report(
            balance.value,
            now,
            start_hour=self.settings.trading_start_hour,
            end_hour=self.settings.trading_end_hour,
        )
        self.notify(format_daily_report(report))
        self._log(
            "daily_report_sent",
            input_data=f"date={report.date}",
            decision="build_from_statistics_snapshot",
            result="sent",
            total_trades=report.total_trades,
            total_pnl=report.total_pnl,
            roi=report.roi,
        )
        return report

    def maybe_send_daily_report(self) -> Optional[DailyReport]:
        now = self._now_provider().astimezone(timezone.utc)
        today = now.date()
        if now.hour < self.settings.daily_report_hour_utc or self._last_report_date == today:
            return None
        self._last_report_date = today
        return self.send_daily_report()
