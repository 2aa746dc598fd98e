from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from signal_trade import (
    TradingHoursWindow,
    format_time_until,
    get_trading_hours_info,
    get_trading_hours_info_with_logging,
    is_hour_in_window,
    is_trading_hours_active,
)


def _utc(hour: int, minute: int = 0) -> datetime:
    return datetime(2024, 5, 1, hour, minute, tzinfo=timezone.utc)


class TradingWindowTests(unittest.TestCase):
    def test_daytime_window_is_half_open(self) -> None:
        window = TradingHoursWindow(start_hour=6, end_hour=22)
        self.assertFalse(is_trading_hours_active(_utc(5, 59), window))
        self.assertTrue(is_trading_hours_active(_utc(6, 0), window))
        self.assertTrue(is_trading_hours_active(_utc(21, 59), window))
        self.assertFalse(is_trading_hours_active(_utc(22, 0), window))

    def test_overnight_window_wraps_midnight(self) -> None:
        window = TradingHoursWindow(start_hour=22, end_hour=6)
        self.assertTrue(is_trading_hours_active(_utc(23, 30), window))
        self.assertTrue(is_trading_hours_active(_utc(0, 15), window))
        self.assertTrue(is_trading_hours_active(_utc(5, 59), window))
        self.assertFalse(is_trading_hours_active(_utc(6, 0), window))
        self.assertFalse(is_trading_hours_active(_utc(12, 0), window))

    def test_disabled_window_is_always_active(self) -> None:
        window = TradingHoursWindow(start_hour=6, end_hour=22, enabled=False)
        self.assertTrue(is_trading_hours_active(_utc(3, 0), window))

    def test_hour_helper(self) -> None:
        self.assertTrue(is_hour_in_window(6, start_hour=6, end_hour=22))
        self.assertFalse(is_hour_in_window(22, start_hour=6, end_hour=22))
        self.assertTrue(is_hour_in_window(23, start_hour=22, end_hour=6))

    def test_naive_datetime_is_treated_as_utc(self) -> None:
        window = TradingHoursWindow(start_hour=6, end_hour=22)
        self.assertTrue(is_trading_hours_active(datetime(2024, 5, 1, 10, 0), window))


class TradingHoursInfoTests(unittest.TestCase):
    def test_info_while_inside_window(self) -> None:
        info = get_trading_hours_info(_utc(10, 5), TradingHoursWindow(start_hour=6, end_hour=22))
        self.assertTrue(info.active)
        self.assertEqual(info.current_time, "10:05")
        self.assertEqual(info.trading_hours, "6:00-22:00")
        self.assertIsNone(info.next_trading_in)
        self.assertIsNone(info.seconds_until_next)

    def test_info_before_window_opens_today(self) -> None:
        info = get_trading_hours_info(_utc(4, 30), TradingHoursWindow(start_hour=6, end_hour=22))
        self.assertFalse(info.active)
        self.assertEqual(info.seconds_until_next, 90 * 60)
        self.assertEqual(info.next_trading_in, "1h 30m")

    def test_info_after_window_closes_rolls_to_tomorrow(self) -> None:
        info = get_trading_hours_info(_utc(23, 0), TradingHoursWindow(start_hour=6, end_hour=22))
        self.assertFalse(info.active)
        self.assertEqual(info.next_trading_in, "7h 0m")

    def test_info_for_overnight_window_during_the_day(self) -> None:
        info = get_trading_hours_info(_utc(12, 0), TradingHoursWindow(start_hour=22, end_hour=6))
        self.assertFalse(info.active)
        self.assertEqual(info.next_trading_in, "10h 0m")

    def test_format_time_until(self) -> None:
        self.assertEqual(format_time_until(0), "0h 0m")
        self.assertEqual(format_time_until(3599), "0h 59m")
        self.assertEqual(format_time_until(-10), "0h 0m")

    def test_logging_wrapper(self) -> None:
        with patch("signal_trade.event_logging.write_trade_log_line") as mocked:
            get_trading_hours_info_with_logging(_utc(4, 30), TradingHoursWindow(start_hour=6, end_hour=22))
        line = mocked.call_args[0][0]
        self.assertIn("component=trading_hours", line)
        self.assertIn("result=inactive", line)
        self.assertIn("next_trading_in=1h 30m", line)


if __name__ == "__main__":
    unittest.main()
