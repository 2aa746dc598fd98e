from __future__ import annotations

import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from signal_trade import (
    GatewayResult,
    InstrumentConstraints,
    OpenPosition,
    PositionLedger,
    Signal,
    TradingSettings,
    validate_signal,
    validate_signal_with_logging,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class _FakeGateway:
    def __init__(
        self,
        *,
        balance: GatewayResult[float] = GatewayResult(ok=True, reason_code="BALANCE_OK", value=1000.0),
        tradable: bool = True,
        instrument_ok: bool = True,
    ) -> None:
        self.balance = balance
        self.tradable = tradable
        self.instrument_ok = instrument_ok
        self.calls: list[str] = []

    def get_balance(self) -> GatewayResult[float]:
        self.calls.append("get_balance")
        return self.balance

    def get_instrument_constraints(self, symbol: str) -> GatewayResult[InstrumentConstraints]:
        self.calls.append(f"get_instrument_constraints:{symbol}")
        if not self.instrument_ok:
            return GatewayResult(ok=False, reason_code="INSTRUMENT_NOT_FOUND", error_message="symbol not found")
        return GatewayResult(
            ok=True,
            reason_code="INSTRUMENT_OK",
            value=InstrumentConstraints(
                symbol=symbol,
                tick_size=1.0,
                min_qty=1.0,
                max_qty=100000.0,
                price_precision=4,
                tradable=self.tradable,
            ),
        )


def _signal(symbol: str = "ADAUSDT", direction: str = "LONG") -> Signal:
    return Signal(symbol=symbol, direction=direction, timestamp=NOW)


class SignalValidatorTests(unittest.TestCase):
    def setUp(self) -> None:
        patcher = patch("signal_trade.event_logging.write_trade_log_line")
        self.log_mock = patcher.start()
        self.addCleanup(patcher.stop)
        self.settings = TradingSettings()
        self.ledger = PositionLedger()
        self.gateway = _FakeGateway()

    def _validate(self, signal: Signal, **overrides: object):
        params: dict[str, object] = {
            "settings": self.settings,
            "ledger": self.ledger,
            "daily_trades": 0,
            "gateway": self.gateway,
            "now": NOW,
        }
        params.update(overrides)
        return validate_signal(signal, **params)  # type: ignore[arg-type]

    def test_valid_signal_returns_balance_and_constraints(self) -> None:
        result = self._validate(_signal())
        self.assertTrue(result.valid)
        self.assertEqual(result.reason_code, "SIGNAL_VALID")
        self.assertEqual(result.balance, 1000.0)
        assert result.constraints is not None
        self.assertEqual(result.constraints.symbol, "ADAUSDT")

    def test_symbol_outside_allow_list(self) -> None:
        result = self._validate(_signal("BTCUSDT"))
        self.assertFalse(result.valid)
        self.assertEqual(result.reason_code, "SYMBOL_NOT_ALLOWED")
        self.assertEqual(self.gateway.calls, [])

    def test_invalid_direction(self) -> None:
        result = self._validate(_signal(direction="SIDEWAYS"))
        self.assertEqual(result.reason_code, "INVALID_DIRECTION")

    def test_outside_trading_hours_carries_info(self) -> None:
        settings = TradingSettings(trading_hours_enabled=True, trading_start_hour=6, trading_end_hour=10)
        result = self._validate(_signal(), settings=settings)
        self.assertEqual(result.reason_code, "OUTSIDE_TRADING_HOURS")
        self.assertEqual(result.info["current_time"], "12:00")
        self.assertEqual(result.info["trading_hours"], "6:00-10:00")
        self.assertEqual(result.info["next_trading"], "18h 0m")
        self.assertEqual(self.gateway.calls, [])

    def test_existing_position_or_reservation_blocks_symbol(self) -> None:
        self.ledger.reserve("ADAUSDT", 3)
        result = self._validate(_signal())
        self.assertEqual(result.reason_code, "POSITION_ALREADY_OPEN")

    def test_max_open_positions(self) -> None:
        settings = TradingSettings(max_open_positions=1)
        self.ledger.reserve("TAOUSDT", 1)
        self.ledger.confirm_open(
            OpenPosition(
                symbol="TAOUSDT",
                direction="SHORT",
                entry_price=400.0,
                quantity=1.0,
                take_profit_price=398.0,
                stop_loss_price=401.2,
                entry_order_id="entry-tao",
                take_profit_order_id="tp",
                stop_loss_order_id="sl",
                opened_at=NOW,
            )
        )
        result = self._validate(_signal(), settings=settings)
        self.assertEqual(result.reason_code, "MAX_OPEN_POSITIONS_REACHED")

    def test_max_daily_trades(self) -> None:
        result = self._validate(_signal(), daily_trades=self.settings.max_daily_trades)
        self.assertEqual(result.reason_code, "MAX_DAILY_TRADES_REACHED")
        self.assertEqual(self.gateway.calls, [])

    def test_balance_unavailable(self) -> None:
        self.gateway.balance = GatewayResult(ok=False, reason_code="REQUEST_FAILED", error_message="timeout")
        result = self._validate(_signal())
        self.assertEqual(result.reason_code, "BALANCE_UNAVAILABLE")
        self.assertEqual(result.reason, "timeout")

    def test_zero_balance(self) -> None:
        self.gateway.balance = GatewayResult(ok=True, reason_code="BALANCE_OK", value=0.0)
        result = self._validate(_signal())
        self.assertEqual(result.reason_code, "INSUFFICIENT_BALANCE")

    def test_instrument_unavailable_and_not_tradable(self) -> None:
        self.gateway.instrument_ok = False
        self.assertEqual(self._validate(_signal()).reason_code, "INSTRUMENT_UNAVAILABLE")
        self.gateway.instrument_ok = True
        self.gateway.tradable = False
        self.assertEqual(self._validate(_signal()).reason_code, "INSTRUMENT_NOT_TRADABLE")

    def test_logging_wrapper_includes_reason_code(self) -> None:
        validate_signal_with_logging(
            _signal("BTCUSDT"),
            settings=self.settings,
            ledger=self.ledger,
            daily_trades=0,
            gateway=self.gateway,  # type: ignore[arg-type]
            now=NOW,
            loop_label="unit",
        )
        line = self.log_mock.call_args[0][0]
        self.assertIn("component=signal_validator", line)
        self.assertIn("result=rejected", line)
        self.assertIn("reason_code=SYMBOL_NOT_ALLOWED", line)


if __name__ == "__main__":
    unittest.main()
