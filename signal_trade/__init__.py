from .bybit_gateway import BybitGateway
from .config import Credentials, TradingSettings, load_credentials, load_trading_settings
from .event_logging import StructuredLogEvent, format_structured_event, log_structured_event
from .exchange_models import (
    ClosedPnlRecord,
    ExchangeGateway,
    ExchangeTrade,
    GatewayResult,
    InstrumentConstraints,
    LivePosition,
    OrderAck,
    closing_side,
    entry_side,
    format_decimal_text,
)
from .ledger_models import ClosedPosition, LedgerTransitionResult, OpenPosition, PositionMark
from .notifications import (
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
from .order_sequencer import open_position, open_position_with_logging
from .order_sequencer_models import OrderLegResult, OrderSequenceResult
from .orchestrator import SignalOrchestrator
from .orchestrator_models import SignalHandleResult
from .position_ledger import PositionLedger, apply_ledger_event
from .reconciliation import (
    ReconciliationLoop,
    build_closed_position,
    classify_close_reason,
    compute_realized_pnl,
    reconcile_open_positions,
    reconcile_open_positions_with_logging,
    resolve_exit_price,
)
from .reconciliation_models import ExitPriceResolution, ReconciliationTickResult
from .risk_calculator import (
    compute_position_parameters,
    compute_position_parameters_with_logging,
    floor_quantity,
    has_sufficient_balance,
    round_price,
)
from .risk_models import PositionParameters, PositionSizingResult, RiskSettings
from .scheduler import PeriodicTask
from .signal_models import NotASignal, ParsedSignal, Signal
from .signal_parser import has_signal_marker, has_structured_block, parse_signal, parse_signal_with_logging
from .signal_validator import trading_window_from_settings, validate_signal, validate_signal_with_logging
from .statistics import StatisticsAggregator
from .statistics_models import DailyReport, StatisticsSnapshot
from .telegram_gateway import (
    TelegramNotifier,
    parse_telegram_update,
    poll_telegram_updates,
    poll_telegram_updates_with_logging,
    send_telegram_message,
    send_telegram_message_with_logging,
)
from .telegram_models import TelegramMessageEvent, TelegramPollResult, TelegramSendResult
from .trading_hours import (
    format_time_until,
    get_trading_hours_info,
    get_trading_hours_info_with_logging,
    is_hour_in_window,
    is_trading_hours_active,
)
from .trading_hours_models import TradingHoursInfo, TradingHoursWindow
from .validation_models import SignalValidationResult

__all__ = [
    "BybitGateway",
    "ClosedPnlRecord",
    "ClosedPosition",
    "Credentials",
    "DailyReport",
    "ExchangeGateway",
    "ExchangeTrade",
    "ExitPriceResolution",
    "GatewayResult",
    "InstrumentConstraints",
    "LedgerTransitionResult",
    "LivePosition",
    "NotASignal",
    "OpenPosition",
    "OrderAck",
    "OrderLegResult",
    "OrderSequenceResult",
    "ParsedSignal",
    "PeriodicTask",
    "PositionLedger",
    "PositionMark",
    "PositionParameters",
    "PositionSizingResult",
    "ReconciliationLoop",
    "ReconciliationTickResult",
    "RiskSettings",
    "Signal",
    "SignalHandleResult",
    "SignalOrchestrator",
    "SignalValidationResult",
    "StatisticsAggregator",
    "StatisticsSnapshot",
    "StructuredLogEvent",
    "TelegramMessageEvent",
    "TelegramNotifier",
    "TelegramPollResult",
    "TelegramSendResult",
    "TradingHoursInfo",
    "TradingHoursWindow",
    "TradingSettings",
    "apply_ledger_event",
    "build_closed_position",
    "classify_close_reason",
    "closing_side",
    "compute_position_parameters",
    "compute_position_parameters_with_logging",
    "compute_realized_pnl",
    "entry_side",
    "floor_quantity",
    "format_bot_started",
    "format_bot_stopped",
    "format_daily_report",
    "format_decimal_text",
    "format_duration",
    "format_partial_protection_alert",
    "format_position_closed",
    "format_position_opened",
    "format_signal_error",
    "format_signal_ignored",
    "format_structured_event",
    "format_time_until",
    "get_trading_hours_info",
    "get_trading_hours_info_with_logging",
    "has_signal_marker",
    "has_structured_block",
    "has_sufficient_balance",
    "is_hour_in_window",
    "is_trading_hours_active",
    "load_credentials",
    "load_trading_settings",
    "log_structured_event",
    "open_position",
    "open_position_with_logging",
    "parse_signal",
    "parse_signal_with_logging",
    "parse_telegram_update",
    "poll_telegram_updates",
    "poll_telegram_updates_with_logging",
    "reconcile_open_positions",
    "reconcile_open_positions_with_logging",
    "resolve_exit_price",
    "round_price",
    "send_telegram_message",
    "send_telegram_message_with_logging",
    "trading_window_from_settings",
    "validate_signal",
    "validate_signal_with_logging",
]
