from __future__ import annotations

import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

import config
from runtime_paths import get_signal_inbox_path
from signal_trade import (
    BybitGateway,
    Credentials,
    PositionLedger,
    ReconciliationLoop,
    SignalOrchestrator,
    StatisticsAggregator,
    StructuredLogEvent,
    TelegramNotifier,
    TradingSettings,
    format_bot_started,
    format_bot_stopped,
    load_credentials,
    load_trading_settings,
    log_structured_event,
    poll_telegram_updates_with_logging,
)
from signal_trade.event_logging import LogLevel

EXIT_OK = 0
EXIT_STARTUP_FAILED = 1
EXIT_MISSING_CREDENTIALS = 2

TELEGRAM_BACKLOG_MAX_BATCHES = 5


def _log_app_event(
    event: str,
    result: str,
    *,
    input_data: str = "-",
    decision: str = "-",
    state_before: str = "-",
    state_after: str = "-",
    failure_reason: str = "-",
    level: LogLevel = "INFO",
    **context: object,
) -> None:
    log_structured_event(
        StructuredLogEvent(
            component="main",
            event=event,
            input_data=input_data,
            decision=decision,
            result=result,
            state_before=state_before,
            state_after=state_after,
            failure_reason=failure_reason,
            level=level,
        ),
        **context,
    )


class SignalInbox:
    """Tails a JSON-lines file written by ``inject_signal.py``."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._offset = 0

    def skip_existing(self) -> None:
        try:
            self._offset = self.path.stat().st_size if self.path.exists() else 0
        except OSError:
            self._offset = 0

    def drain(self) -> list[str]:
        if not self.path.exists():
            return []
        messages: list[str] = []
        try:
            with self.path.open("r", encoding="utf-8") as handle:
                handle.seek(self._offset)
                while True:
                    line = handle.readline()
                    if not line:
                        break
                    self._offset = handle.tell()
                    payload = line.strip()
                    if not payload:
                        continue
                    try:
                        event = json.loads(payload)
                    except json.JSONDecodeError:
                        _log_app_event("inbox_line_skipped", "invalid_json", input_data=payload, level="WARN")
                        continue
                    if not isinstance(event, dict) or "message_text" not in event:
                        _log_app_event("inbox_line_skipped", "missing_message_text", input_data=payload, level="WARN")
                        continue
                    messages.append(str(event["message_text"]))
        except OSError as exc:
            _log_app_event(
                "inbox_read_failed",
                "io_error",
                input_data=f"path={self.path}",
                failure_reason=repr(exc),
                level="ERROR",
            )
        return messages


class SignalTradeApp:
    def __init__(
        self,
        settings: TradingSettings,
        credentials: Credentials,
        *,
        gateway: Optional[BybitGateway] = None,
        inbox: Optional[SignalInbox] = None,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.gateway = gateway or BybitGateway(
            credentials.bybit_api_key,
            credentials.bybit_api_secret,
            testnet=settings.testnet,
            position_mode=settings.position_mode,
        )
        self.ledger = PositionLedger()
        self.statistics = StatisticsAggregator()
        self.orchestrator = SignalOrchestrator(
            settings,
            self.gateway,
            self.ledger,
            self.statistics,
            notify=TelegramNotifier(credentials.telegram_bot_token, credentials.telegram_channel_id),
        )
        self.reconciliation = ReconciliationLoop(
            self.ledger,
            self.gateway,
            interval_seconds=settings.reconciliation_interval_seconds,
            on_closed=self.orchestrator.handle_closed_positions,
        )
        self.inbox = inbox or SignalInbox(get_signal_inbox_path(config.SIGNAL_INBOX_FILENAME))
        self._stop_event = threading.Event()
        self._next_update_id = 0
        self._last_report_check = 0.0

    def start(self) -> bool:
        connection = self.gateway.check_connection()
        if not connection.ok or connection.value is None:
            _log_app_event(
                "startup_failed",
                connection.reason_code,
                decision="check_exchange_connection",
                state_before="starting",
                state_after="stopped",
                failure_reason=connection.failure_reason,
                level="CRITICAL",
            )
            return False

        balance = float(connection.value)
        self.statistics.set_start_balance(balance)
        self.inbox.skip_existing()
        self._discard_telegram_backlog()
        self.reconciliation.start()
        trading_hours = (
            f"{self.settings.trading_start_hour}:00-{self.settings.trading_end_hour}:00"
            if self.settings.trading_hours_enabled
            else None
        )
        self.orchestrator.notify(
            format_bot_started(
                balance,
                dry_run=self.settings.dry_run,
                trading_hours=trading_hours,
                allowed_symbols=self.settings.allowed_symbols,
            )
        )
        _log_app_event(
            "started",
            "ready",
            state_before="starting",
            state_after="running",
            version=config.VERSION,
            start_balance=balance,
            dry_run=self.settings.dry_run,
            allowed_symbols=",".join(self.settings.allowed_symbols),
            risk_percent=self.settings.risk_percent,
            leverage=self.settings.leverage,
            trading_hours=trading_hours or "always",
        )
        return True

    def _discard_telegram_backlog(self) -> None:
        discarded = 0
        for _ in range(TELEGRAM_BACKLOG_MAX_BATCHES):
            result = poll_telegram_updates_with_logging(
                bot_token=self.credentials.telegram_bot_token,
                allowed_chat_ids=(self.credentials.telegram_channel_id,),
                last_update_id=self._next_update_id,
                poll_timeout_seconds=0,
                loop_label="startup-backlog",
            )
            if not result.ok or result.next_update_id == self._next_update_id:
                break
            discarded += len(result.events)
            self._next_update_id = result.next_update_id
        _log_app_event(
            "telegram_backlog_skipped",
            f"discarded={discarded}",
            decision="start_from_latest_update",
            next_update_id=self._next_update_id,
        )

    def signal_loop_tick(self) -> int:
        messages: list[str] = []
        poll = poll_telegram_updates_with_logging(
            bot_token=self.credentials.telegram_bot_token,
            allowed_chat_ids=(self.credentials.telegram_channel_id,),
            last_update_id=self._next_update_id,
            loop_label="signal-loop",
        )
        self._next_update_id = poll.next_update_id
        messages.extend(event.message_text for event in poll.events)
        messages.extend(self.inbox.drain())

        for message in messages:
            self.orchestrator.handle_message(message)

        now = time.monotonic()
        if now - self._last_report_check >= config.DAILY_REPORT_CHECK_INTERVAL_SEC:
            self._last_report_check = now
            self.orchestrator.maybe_send_daily_report()
        return len(messages)

    def run(self) -> None:
        _log_app_event("signal_loop_entered", "running")
        while not self._stop_event.is_set():
            try:
                self.signal_loop_tick()
            except Exception as exc:
                _log_app_event("signal_loop_tick_failed", "exception", failure_reason=repr(exc), level="ERROR")
            self._stop_event.wait(config.SIGNAL_LOOP_INTERVAL_SEC)
        _log_app_event("signal_loop_exited", "stopped")

    def request_stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        self.reconciliation.stop()
        self.orchestrator.notify(format_bot_stopped(self.ledger.open_count(), self.statistics.daily_trades))
        _log_app_event(
            "stopped",
            "shutdown_complete",
            state_before="running",
            state_after="stopped",
            open_positions=self.ledger.open_count(),
            daily_trades=self.statistics.daily_trades,
        )


def main() -> int:
    credentials = load_credentials()
    missing = credentials.missing_credentials()
    if missing:
        _log_app_event(
            "startup_failed",
            "missing_credentials",
            decision="require_all_credentials",
            failure_reason=",".join(missing),
            level="CRITICAL",
        )
        print(f"Missing required environment variables: {', '.join(missing)}", file=sys.stderr)
        return EXIT_MISSING_CREDENTIALS

    settings = load_trading_settings()
    app = SignalTradeApp(settings, credentials)
    if not app.start():
        print("Exchange connection failed; see log for details.", file=sys.stderr)
        return EXIT_STARTUP_FAILED

    def _handle_stop(signum: int, _frame: object) -> None:
        _log_app_event("stop_requested", signal.Signals(signum).name)
        app.request_stop()

    signal.signal(signal.SIGINT, _handle_stop)
    signal.signal(signal.SIGTERM, _handle_stop)
    try:
        app.run()
    finally:
        app.shutdown()
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
