from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from unittest.mock import patch

from signal_trade import (
    GatewayResult,
    InstrumentConstraints,
    OrderAck,
    PositionLedger,
    Signal,
    SignalOrchestrator,
    StatisticsAggregator,
    TelegramSendResult,
    TradingSettings,
    reconcile_open_positions,
)

NOON = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

SIGNAL_TEXT = (
    "🚨 SIGNAL DETECTED\n<b>Symbol:</b> ADAUSDT\n<b>Direction:</b> 📈 LONG\n"
    '{"symbol": "ADAUSDT", "direction": "LONG", "signalType": "BREAKOUT"}'
)


class _FakeGateway:
    def __init__(self) -> None:
        self.balance: GatewayResult[float] = GatewayResult(ok=True, reason_code="OK", value=1000.0)
        self.price: Any = GatewayResult(ok=True, reason_code="OK", value=100.0)
        self.entry_ok = True
        self.stop_loss_ok = True
        self.calls: list[str] = []
        self.balance_sequence: list[GatewayResult[float]] = []
        self.submitted: list[tuple[str, float]] = []

    def get_balance(self) -> GatewayResult[float]:
        self.calls.append("get_balance")
        if self.balance_sequence:
            return self.balance_sequence.pop(0)
        return self.balance

    def get_instrument_constraints(self, symbol: str) -> GatewayResult[InstrumentConstraints]:
        self.calls.append("get_instrument_constraints")
        return GatewayResult(
            ok=True,
            reason_code="OK",
            value=InstrumentConstraints(symbol=symbol, tick_size=0.01, min_qty=0.01, max_qty=10000.0, price_precision=2),
        )

    def get_current_price(self, symbol: str) -> GatewayResult[float]:
        self.calls.append("get_current_price")
        if isinstance(self.price, Exception):
            raise self.price
        return self.price

    def set_leverage(self, symbol: str, leverage: int) -> GatewayResult[int]:
        self.calls.append("set_leverage")
        return GatewayResult(ok=True, reason_code="LEVERAGE_SET", value=leverage)

    def submit_market_order(self, symbol, side, quantity, *, direction) -> GatewayResult[OrderAck]:
        self.calls.append("submit_market_order")
        if not self.entry_ok:
            return GatewayResult(ok=False, reason_code="EXCHANGE_ERROR", error_message="insufficient margin")
        self.submitted.append((symbol, quantity))
        return GatewayResult(ok=True, reason_code="ORDER_ACCEPTED", value=OrderAck("entry-1", symbol, side, quantity))

    def submit_protective_order(self, symbol, side, kind, trigger_price, quantity, *, direction) -> GatewayResult[OrderAck]:
        self.calls.append(f"submit_protective_order:{kind}")
        if kind == "STOP_LOSS" and not self.stop_loss_ok:
            return GatewayResult(ok=False, reason_code="EXCHANGE_ERROR", error_message="trigger price invalid")
        order_id = "tp-1" if kind == "TAKE_PROFIT" else "sl-1"
        return GatewayResult(ok=True, reason_code="ORDER_ACCEPTED", value=OrderAck(order_id, symbol, side, quantity, trigger_price))

    def get_live_positions(self, symbol: Optional[str] = None) -> GatewayResult[tuple]:
        self.calls.append("get_live_positions")
        return GatewayResult(ok=True, reason_code="OK", value=())

    def get_closed_pnl(self, symbol: str, limit: int) -> GatewayResult[tuple]:
        self.calls.append("get_closed_pnl")
        return GatewayResult(ok=True, reason_code="OK", value=())

    def get_recent_trades(self, symbol: str, limit: int) -> GatewayResult[tuple]:
        self.calls.append("get_recent_trades")
        return GatewayResult(ok=True, reason_code="OK", value=())


class _RecordingNotifier:
    def __init__(self, *, fail_with: Optional[Exception] = None, result_ok: bool = True) -> None:
        self.messages: list[str] = []
        self._fail_with = fail_with
        self._result_ok = result_ok

    def __call__(self, text: str) -> TelegramSendResult:
        self.messages.append(text)
        if self._fail_with is not None:
            raise self._fail_with
        return TelegramSendResult(ok=self._result_ok, reason_code="OK" if self._result_ok else "TELEGRAM_API_ERROR")

    def headlines(self) -> list[str]:
        return [message.splitlines()[0] for message in self.messages]


class SignalOrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("signal_trade.event_logging.write_trade_log_line")
        self.log_mock = patcher.start()
        self.addCleanup(patcher.stop)
        self.gateway = _FakeGateway()
        self.ledger = PositionLedger()
        self.statistics = StatisticsAggregator(start_balance=1000.0, now=NOON)
        self.notifier = _RecordingNotifier()
        self.now = NOON

    def _orchestrator(self, settings: Optional[TradingSettings] = None, notifier: Any = None) -> SignalOrchestrator:
        return SignalOrchestrator(
            settings or TradingSettings(),
            self.gateway,  # type: ignore[arg-type]
            self.ledger,
            self.statistics,
            notify=notifier if notifier is not None else self.notifier,
            now_provider=lambda: self.now,
        )

    def test_message_opens_and_records_position(self) -> None:
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertTrue(result.accepted)
        self.assertEqual(result.reason_code, "POSITION_OPENED")
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "OPEN")
        position = self.ledger.get_open_position("ADAUSDT")
        assert position is not None
        self.assertEqual(position.entry_order_id, "entry-1")
        self.assertEqual(self.statistics.daily_trades, 1)
        self.assertEqual(self.statistics.snapshot().total_signals, 1)
        self.assertEqual(self.notifier.headlines(), ["✅ <b>POSITION OPENED</b>"])

    def test_non_signal_text_is_ignored_without_side_effects(self) -> None:
        result = self._orchestrator().handle_message("good morning channel")
        self.assertFalse(result.accepted)
        self.assertEqual(result.reason_code, "NOT_A_SIGNAL")
        self.assertEqual(self.gateway.calls, [])
        self.assertEqual(self.statistics.snapshot().total_signals, 0)

    def test_second_signal_for_same_symbol_is_ignored(self) -> None:
        orchestrator = self._orchestrator()
        orchestrator.handle_message(SIGNAL_TEXT)
        second = orchestrator.handle_message(SIGNAL_TEXT)

        self.assertFalse(second.accepted)
        self.assertEqual(second.reason_code, "POSITION_ALREADY_OPEN")
        self.assertEqual(self.gateway.calls.count("submit_market_order"), 1)
        self.assertEqual(self.notifier.headlines()[-1], "⏰ <b>SIGNAL IGNORED</b>")

    def test_outside_trading_hours_counts_ignored_signal(self) -> None:
        settings = TradingSettings(trading_hours_enabled=True, trading_start_hour=6, trading_end_hour=10)
        result = self._orchestrator(settings).handle_message(SIGNAL_TEXT)

        self.assertEqual(result.reason_code, "OUTSIDE_TRADING_HOURS")
        self.assertEqual(self.statistics.snapshot().signals_ignored, 1)
        self.assertIn("<b>Next trading:</b> in 18h 0m", self.notifier.messages[-1])
        self.assertEqual(self.gateway.calls, [])

    def test_other_rejections_do_not_count_as_ignored(self) -> None:
        self._orchestrator().handle_signal(Signal(symbol="BTCUSDT", direction="LONG", timestamp=NOON))
        self.assertEqual(self.statistics.snapshot().signals_ignored, 0)

    def test_partial_protection_confirms_once_and_alerts(self) -> None:
        self.gateway.stop_loss_ok = False
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertTrue(result.accepted)
        self.assertEqual(result.reason_code, "PARTIAL_PROTECTION_FAILURE")
        position = self.ledger.get_open_position("ADAUSDT")
        assert position is not None
        self.assertEqual(position.take_profit_order_id, "tp-1")
        self.assertIsNone(position.stop_loss_order_id)
        self.assertEqual(self.statistics.daily_trades, 1)
        self.assertEqual(
            self.notifier.headlines(),
            ["✅ <b>POSITION OPENED</b>", "🚨🚨 <b>PARTIAL PROTECTION FAILURE</b> 🚨🚨"],
        )
        self.assertIn("<b>Missing:</b> STOP_LOSS", self.notifier.messages[-1])
        confirm_lines = [
            call[0][0] for call in self.log_mock.call_args_list if "event=confirm_open" in call[0][0]
        ]
        self.assertEqual(len(confirm_lines), 1)
        self.assertTrue(any("level=CRITICAL" in call[0][0] for call in self.log_mock.call_args_list))

    def test_entry_failure_releases_reservation(self) -> None:
        self.gateway.entry_ok = False
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertFalse(result.accepted)
        self.assertEqual(result.reason_code, "ENTRY_FAILED")
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "NONE")
        self.assertEqual(self.statistics.daily_trades, 0)
        self.assertEqual(self.notifier.headlines(), ["❌ <b>ERROR PROCESSING SIGNAL</b>"])

    def test_price_failure_releases_reservation(self) -> None:
        self.gateway.price = GatewayResult(ok=False, reason_code="PRICE_UNAVAILABLE", error_message="no ticker")
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertEqual(result.reason_code, "PRICE_UNAVAILABLE")
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "NONE")
        self.assertNotIn("set_leverage", self.gateway.calls)

    def test_unexpected_exception_releases_reservation(self) -> None:
        self.gateway.price = RuntimeError("socket closed")
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertFalse(result.accepted)
        self.assertEqual(result.reason_code, "UNEXPECTED_ERROR")
        self.assertIn("socket closed", result.failure_reason)
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "NONE")
        self.assertEqual(self.ledger.open_count(), 0)

    def test_failing_notifier_does_not_change_outcome(self) -> None:
        notifier = _RecordingNotifier(fail_with=RuntimeError("telegram down"))
        result = self._orchestrator(notifier=notifier).handle_message(SIGNAL_TEXT)
        self.assertTrue(result.accepted)
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "OPEN")
        self.assertTrue(any("event=notification_failed" in call[0][0] for call in self.log_mock.call_args_list))

    def test_notify_reports_unsuccessful_send(self) -> None:
        orchestrator = self._orchestrator(notifier=_RecordingNotifier(result_ok=False))
        self.assertFalse(orchestrator.notify("hello"))

    def test_dry_run_opens_without_orders_or_notifications(self) -> None:
        result = self._orchestrator(TradingSettings(dry_run=True)).handle_message(SIGNAL_TEXT)

        self.assertTrue(result.accepted)
        self.assertEqual(result.reason_code, "DRY_RUN_OPENED")
        position = self.ledger.get_open_position("ADAUSDT")
        assert position is not None
        self.assertTrue(position.dry_run)
        self.assertNotIn("submit_market_order", self.gateway.calls)
        self.assertEqual(self.notifier.messages, [])

    def test_dry_run_position_closes_on_next_reconciliation_and_frees_capacity(self) -> None:
        orchestrator = self._orchestrator(TradingSettings(dry_run=True, max_open_positions=1))
        first = orchestrator.handle_message(SIGNAL_TEXT)
        self.assertEqual(first.reason_code, "DRY_RUN_OPENED")

        tick = reconcile_open_positions(self.ledger, self.gateway, now=NOON + timedelta(minutes=5))  # type: ignore[arg-type]
        self.assertEqual(len(tick.closed), 1)
        self.assertEqual(tick.closed[0].exit_price_source, "ENTRY_FALLBACK")
        orchestrator.handle_closed_positions(tick.closed)
        self.assertEqual(self.ledger.open_count(), 0)

        second = orchestrator.handle_message(SIGNAL_TEXT)
        self.assertEqual(second.reason_code, "DRY_RUN_OPENED")
        self.assertEqual(self.statistics.snapshot().total_trades, 1)

    def test_sizing_uses_balance_fetched_at_submission(self) -> None:
        self.gateway.balance_sequence = [
            GatewayResult(ok=True, reason_code="OK", value=1000.0),
            GatewayResult(ok=True, reason_code="OK", value=10.0),
        ]
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertTrue(result.accepted)
        self.assertEqual(self.gateway.calls.count("get_balance"), 2)
        self.assertEqual(len(self.gateway.submitted), 1)
        symbol, quantity = self.gateway.submitted[0]
        self.assertEqual(symbol, "ADAUSDT")
        self.assertAlmostEqual(quantity, 0.83)
        self.assertIn("<b>Risk:</b> $0.25", self.notifier.messages[0])

    def test_balance_unavailable_at_submission_releases_reservation(self) -> None:
        self.gateway.balance_sequence = [
            GatewayResult(ok=True, reason_code="OK", value=1000.0),
            GatewayResult(ok=False, reason_code="REQUEST_FAILED", error_message="timeout"),
        ]
        result = self._orchestrator().handle_message(SIGNAL_TEXT)

        self.assertFalse(result.accepted)
        self.assertEqual(result.reason_code, "BALANCE_UNAVAILABLE")
        self.assertEqual(self.ledger.symbol_state("ADAUSDT"), "NONE")
        self.assertNotIn("set_leverage", self.gateway.calls)
        self.assertEqual(self.notifier.headlines(), ["❌ <b>ERROR PROCESSING SIGNAL</b>"])

    def test_daily_report_rolls_over_stale_counters(self) -> None:
        self.statistics.record_signal_received()
        self.statistics.record_signal_ignored()
        self.statistics.record_position_opened()

        self.now = datetime(2024, 5, 2, 23, 0, tzinfo=timezone.utc)
        report = self._orchestrator().send_daily_report()

        assert report is not None
        self.assertEqual(report.date, "2024-05-02")
        self.assertEqual(report.signals_ignored, 0)
        self.assertEqual(report.total_trades, 0)
        self.assertEqual(self.statistics.daily_trades, 0)
        self.assertEqual(report.total_signals, 1)

    def test_daily_report_sent_once_per_day_after_configured_hour(self) -> None:
        orchestrator = self._orchestrator(TradingSettings(daily_report_hour_utc=23))
        self.assertIsNone(orchestrator.maybe_send_daily_report())

        self.now = NOON.replace(hour=23, minute=5)
        self.gateway.balance = GatewayResult(ok=True, reason_code="OK", value=1010.0)
        report = orchestrator.maybe_send_daily_report()
        assert report is not None
        self.assertAlmostEqual(report.total_pnl, 10.0)
        self.assertAlmostEqual(report.roi, 1.0)
        self.assertEqual(self.notifier.headlines(), ["📊 <b>DAILY REPORT</b>"])

        self.assertIsNone(orchestrator.maybe_send_daily_report())
        self.assertEqual(len(self.notifier.messages), 1)

    def test_daily_report_skipped_when_balance_unavailable(self) -> None:
        self.gateway.balance = GatewayResult(ok=False, reason_code="REQUEST_FAILED", error_message="timeout")
        self.assertIsNone(self._orchestrator().send_daily_report())
        self.assertEqual(self.notifier.messages, [])


if __name__ == "__main__":
    unittest.main()
