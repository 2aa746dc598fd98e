from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from signal_trade import (
    ClosedPosition,
    DailyReport,
    PositionParameters,
    format_bot_started,
    format_bot_stopped,
    format_daily_report,
    format_duration,
    format_partial_protection_alert,
    format_position_closed,
    format_position_opened,
    format_signal_error,
    format_signal_ignored,
)

OPENED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

LONG_PARAMS = PositionParameters(
    entry_price=100.0,
    quantity=83.33,
    position_size_notional=8333.33,
    leverage=20,
    required_margin=416.65,
    stop_loss_price=99.7,
    take_profit_price=100.5,
    risk_amount=25.0,
    direction="LONG",
)


def _closed(exit_price: float, pnl: float) -> ClosedPosition:
    return ClosedPosition(
        symbol="ADAUSDT",
        direction="LONG",
        entry_price=100.0,
        quantity=10.0,
        take_profit_price=100.5,
        stop_loss_price=99.7,
        entry_order_id="entry-1",
        take_profit_order_id="tp-1",
        stop_loss_order_id="sl-1",
        opened_at=OPENED_AT,
        leverage=20,
        dry_run=False,
        exit_price=exit_price,
        realized_pnl=pnl,
        realized_pnl_percent=pnl / 10.0,
        duration_seconds=3725,
        closed_at=OPENED_AT + timedelta(seconds=3725),
        close_reason="TAKE_PROFIT" if pnl >= 0 else "STOP_LOSS",
        exit_price_source="TRADE",
    )


class NotificationFormattingTests(unittest.TestCase):
    def test_format_duration(self) -> None:
        self.assertEqual(format_duration(0), "0s")
        self.assertEqual(format_duration(59), "59s")
        self.assertEqual(format_duration(120), "2m")
        self.assertEqual(format_duration(3725), "1h 2m 5s")
        self.assertEqual(format_duration(-5), "0s")

    def test_position_opened(self) -> None:
        text = format_position_opened("ADAUSDT", LONG_PARAMS, balance=1000.0, signal_time=OPENED_AT)
        self.assertTrue(text.startswith("✅ <b>POSITION OPENED</b>"))
        self.assertIn("<b>Entry Price:</b> $100", text)
        self.assertIn("<b>Quantity:</b> 83.33 ADA", text)
        self.assertIn("<b>Leverage:</b> 20x", text)
        self.assertIn("$100.5 (+0.50%)", text)
        self.assertIn("$99.7 (-0.30%)", text)
        self.assertIn("$25.00 (2.50% of balance)", text)
        self.assertIn("Signal from: 2024-05-01 12:00:00 UTC", text)

    def test_position_opened_dry_run_header(self) -> None:
        text = format_position_opened("ADAUSDT", LONG_PARAMS, balance=1000.0, dry_run=True)
        self.assertIn("DRY RUN", text.splitlines()[0])
        self.assertNotIn("Signal from", text)

    def test_position_closed_profit_and_loss(self) -> None:
        profit = format_position_closed(_closed(100.5, 5.0))
        self.assertIn("POSITION CLOSED - PROFIT", profit)
        self.assertIn("<b>Result:</b> +0.50% (+$5.00)", profit)
        self.assertIn("<b>Duration:</b> 1h 2m 5s", profit)

        loss = format_position_closed(_closed(99.7, -3.0))
        self.assertIn("POSITION CLOSED - LOSS", loss)
        self.assertIn("-0.30% (-$3.00)", loss)
        self.assertIn("STOP_LOSS", loss)

    def test_signal_ignored_with_trading_hours_info(self) -> None:
        text = format_signal_ignored(
            "ADAUSDT",
            "LONG",
            "outside trading hours",
            {"current_time": "23:10", "trading_hours": "6:00-22:00", "next_trading": "6h 50m"},
        )
        self.assertIn("SIGNAL IGNORED", text)
        self.assertIn("<b>Current time:</b> 23:10 UTC", text)
        self.assertIn("<b>Next trading:</b> in 6h 50m", text)

    def test_signal_ignored_escapes_html(self) -> None:
        text = format_signal_ignored("A<B", "LONG", "x & y")
        self.assertIn("A&lt;B", text)
        self.assertIn("x &amp; y", text)
        self.assertNotIn("Next trading", text)

    def test_partial_protection_alert(self) -> None:
        text = format_partial_protection_alert(
            "ADAUSDT",
            "LONG",
            entry_order_id="entry-1",
            missing_legs=["STOP_LOSS"],
            failure_reason="STOP_LOSS=rejected",
        )
        self.assertIn("PARTIAL PROTECTION FAILURE", text)
        self.assertIn("<b>Missing:</b> STOP_LOSS", text)
        self.assertIn("Manual action required", text)

    def test_signal_error(self) -> None:
        text = format_signal_error("ADAUSDT", "SHORT", "ENTRY_FAILED", "ab not enough")
        self.assertIn("ERROR PROCESSING SIGNAL", text)
        self.assertIn("ENTRY_FAILED", text)

    def test_daily_report(self) -> None:
        report = DailyReport(
            date="2024-05-01",
            trading_hours="6:00-22:00",
            total_signals=12,
            signals_ignored=3,
            total_trades=4,
            win_trades=3,
            lose_trades=1,
            win_rate=75.0,
            total_pnl=-12.5,
            roi=-1.25,
            start_balance=1000.0,
            current_balance=987.5,
            realized_pnl=-10.0,
        )
        text = format_daily_report(report)
        self.assertIn("DAILY REPORT", text)
        self.assertIn("<b>Wins:</b> 3 (75.0%)", text)
        self.assertIn("<b>Losses:</b> 1 (25.0%)", text)
        self.assertIn("Total P&amp;L:</b> -$12.50", text)
        self.assertIn("<b>ROI:</b> -1.25%", text)
        self.assertIn("$1000.00 → $987.50", text)

    def test_lifecycle_messages(self) -> None:
        started = format_bot_started(1000.0, dry_run=True, trading_hours=None, allowed_symbols=("ADAUSDT", "TAOUSDT"))
        self.assertIn("Mode: DRY RUN", started)
        self.assertIn("Trading hours: 24/7", started)
        self.assertIn("Symbols: ADAUSDT, TAOUSDT", started)
        live = format_bot_started(10.0, dry_run=False, trading_hours="6:00-22:00", allowed_symbols=("ADAUSDT",))
        self.assertIn("Trading hours: 6:00-22:00 UTC", live)
        stopped = format_bot_stopped(1, 5)
        self.assertIn("Open positions: 1", stopped)
        self.assertIn("Total trades today: 5", stopped)


if __name__ == "__main__":
    unittest.main()
