from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from signal_trade import NotASignal, ParsedSignal, has_signal_marker, parse_signal, parse_signal_with_logging

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

STRUCTURED_MESSAGE = """🚨 SIGNAL DETECTED

<b>Symbol:</b> ADAUSDT
<b>Direction:</b> 📈 LONG

{"timestamp": 1714564800000, "symbol": "adausdt", "direction": "long", "signalType": "BREAKOUT", "stats": {"volume": 3.2}}"""


class SignalParserTests(unittest.TestCase):
    def test_structured_block_wins_and_normalizes_fields(self) -> None:
        result = parse_signal(STRUCTURED_MESSAGE, now=NOW)
        self.assertIsInstance(result, ParsedSignal)
        assert isinstance(result, ParsedSignal)
        self.assertEqual(result.strategy, "STRUCTURED_BLOCK")
        self.assertEqual(result.signal.symbol, "ADAUSDT")
        self.assertEqual(result.signal.direction, "LONG")
        self.assertEqual(result.signal.signal_type, "BREAKOUT")
        self.assertEqual(result.signal.stats["volume"], 3.2)
        self.assertEqual(result.signal.timestamp, datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))

    def test_labeled_text_fallback_when_block_lacks_fields(self) -> None:
        text = (
            "🚨 SIGNAL\n<b>Symbol:</b> TAOUSDT\n<b>Direction:</b> SHORT\n"
            '{"symbol": "", "direction": null}'
        )
        result = parse_signal(text, now=NOW)
        self.assertIsInstance(result, ParsedSignal)
        assert isinstance(result, ParsedSignal)
        self.assertEqual(result.strategy, "LABELED_TEXT")
        self.assertEqual(result.signal.symbol, "TAOUSDT")
        self.assertEqual(result.signal.direction, "SHORT")
        self.assertEqual(result.signal.signal_type, "UNKNOWN")
        self.assertEqual(result.signal.timestamp, NOW)

    def test_invalid_json_block_falls_back_to_labels(self) -> None:
        text = 'SIGNAL DETECTED\nSymbol: UNIUSDT\nDirection: LONG\n{"symbol": "UNIUSDT", "direction": LONG}'
        result = parse_signal(text, now=NOW)
        assert isinstance(result, ParsedSignal)
        self.assertEqual(result.strategy, "LABELED_TEXT")
        self.assertEqual(result.signal.symbol, "UNIUSDT")

    def test_message_without_marker_is_not_a_signal(self) -> None:
        result = parse_signal('{"symbol": "ADAUSDT", "direction": "LONG"}', now=NOW)
        self.assertIsInstance(result, NotASignal)
        self.assertEqual(result.reason_code, "NO_MARKER")
        self.assertFalse(result.is_signal)

    def test_marker_without_block_is_not_a_signal(self) -> None:
        result = parse_signal("🚨 SIGNAL\nSymbol: ADAUSDT\nDirection: LONG", now=NOW)
        self.assertEqual(result.reason_code, "NO_STRUCTURED_BLOCK")

    def test_empty_message(self) -> None:
        self.assertEqual(parse_signal("   ", now=NOW).reason_code, "EMPTY_MESSAGE")

    def test_fields_missing_everywhere(self) -> None:
        text = 'SIGNAL DETECTED {"symbol": 5, "direction": ""}'
        self.assertEqual(parse_signal(text, now=NOW).reason_code, "FIELDS_MISSING")

    def test_unknown_direction_is_still_parsed(self) -> None:
        text = 'SIGNAL DETECTED {"symbol": "ADAUSDT", "direction": "sideways"}'
        result = parse_signal(text, now=NOW)
        assert isinstance(result, ParsedSignal)
        self.assertEqual(result.signal.direction, "SIDEWAYS")

    def test_iso_and_second_timestamps(self) -> None:
        iso = parse_signal('SIGNAL DETECTED {"symbol": "A", "direction": "LONG", "timestamp": "2024-05-01T10:00:00Z"}', now=NOW)
        seconds = parse_signal('SIGNAL DETECTED {"symbol": "A", "direction": "LONG", "timestamp": 1714557600}', now=NOW)
        assert isinstance(iso, ParsedSignal) and isinstance(seconds, ParsedSignal)
        self.assertEqual(iso.signal.timestamp, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(seconds.signal.timestamp, datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc))

    def test_has_signal_marker(self) -> None:
        self.assertTrue(has_signal_marker("... SIGNAL DETECTED ..."))
        self.assertFalse(has_signal_marker("signal detected"))

    def test_logging_wrapper_emits_structured_event(self) -> None:
        with patch("signal_trade.event_logging.write_trade_log_line") as mocked:
            parse_signal_with_logging(STRUCTURED_MESSAGE, now=NOW, loop_label="unit")
        line = mocked.call_args[0][0]
        self.assertIn("component=signal_parser", line)
        self.assertIn("result=parsed", line)
        self.assertIn("symbol=ADAUSDT", line)
        self.assertIn("loop_label=unit", line)

    def test_logging_wrapper_marks_ignored_text_as_debug(self) -> None:
        with patch("signal_trade.event_logging.write_trade_log_line") as mocked:
            parse_signal_with_logging("hello channel", now=NOW)
        line = mocked.call_args[0][0]
        self.assertIn("level=DEBUG", line)
        self.assertIn("failure_reason=NO_MARKER", line)


if __name__ == "__main__":
    unittest.main()
