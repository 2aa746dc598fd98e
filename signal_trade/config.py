from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, TypeVar

from .event_logging import LOG_FIELD_EMPTY, StructuredLogEvent, log_structured_event
from .exchange_models import PositionMode

RISK_PERCENT_DEFAULT = 2.5
LEVERAGE_DEFAULT = 20
TAKE_PROFIT_PERCENT_DEFAULT = 0.5
STOP_LOSS_PERCENT_DEFAULT = 0.3
ALLOWED_SYMBOLS_DEFAULT: tuple[str, ...] = ("ADAUSDT", "TAOUSDT", "UNIUSDT")
MAX_DAILY_TRADES_DEFAULT = 20
MAX_OPEN_POSITIONS_DEFAULT = 3
TRADING_START_HOUR_DEFAULT = 6
TRADING_END_HOUR_DEFAULT = 22
RECONCILIATION_INTERVAL_SECONDS_DEFAULT = 30
DAILY_REPORT_HOUR_UTC_DEFAULT = 23
POSITION_MODE_DEFAULT: PositionMode = "ONE_WAY"

RISK_PERCENT_ENV = "RISK_PERCENTAGE"
LEVERAGE_ENV = "LEVERAGE"
TAKE_PROFIT_PERCENT_ENV = "TAKE_PROFIT_PERCENT"
STOP_LOSS_PERCENT_ENV = "STOP_LOSS_PERCENT"
ALLOWED_SYMBOLS_ENV = "ALLOWED_SYMBOLS"
MAX_DAILY_TRADES_ENV = "MAX_DAILY_TRADES"
MAX_OPEN_POSITIONS_ENV = "MAX_OPEN_POSITIONS"
DRY_RUN_ENV = "DRY_RUN"
TRADING_HOURS_ENABLED_ENV = "TRADING_HOURS_ENABLED"
TRADING_START_HOUR_ENV = "TRADING_START_HOUR"
TRADING_END_HOUR_ENV = "TRADING_END_HOUR"
RECONCILIATION_INTERVAL_SECONDS_ENV = "RECONCILIATION_INTERVAL_SECONDS"
DAILY_REPORT_HOUR_UTC_ENV = "DAILY_REPORT_HOUR_UTC"
POSITION_MODE_ENV = "BYBIT_POSITION_MODE"
TESTNET_ENV = "BYBIT_TESTNET"

BYBIT_API_KEY_ENV = "BYBIT_API_KEY"
BYBIT_API_SECRET_ENV = "BYBIT_API_SECRET"
TELEGRAM_BOT_TOKEN_ENV = "TELEGRAM_BOT_TOKEN"
TELEGRAM_CHANNEL_ID_ENV = "TELEGRAM_CHANNEL_ID"

_TRUTHY_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSY_VALUES = frozenset({"0", "false", "no", "off", ""})

_T = TypeVar("_T", int, float)


@dataclass(frozen=True)
class TradingSettings:
    risk_percent: float = RISK_PERCENT_DEFAULT
    leverage: int = LEVERAGE_DEFAULT
    take_profit_percent: float = TAKE_PROFIT_PERCENT_DEFAULT
    stop_loss_percent: float = STOP_LOSS_PERCENT_DEFAULT
    allowed_symbols: tuple[str, ...] = ALLOWED_SYMBOLS_DEFAULT
    max_daily_trades: int = MAX_DAILY_TRADES_DEFAULT
    max_open_positions: int = MAX_OPEN_POSITIONS_DEFAULT
    dry_run: bool = False
    trading_hours_enabled: bool = False
    trading_start_hour: int = TRADING_START_HOUR_DEFAULT
    trading_end_hour: int = TRADING_END_HOUR_DEFAULT
    reconciliation_interval_seconds: int = RECONCILIATION_INTERVAL_SECONDS_DEFAULT
    daily_report_hour_utc: int = DAILY_REPORT_HOUR_UTC_DEFAULT
    position_mode: PositionMode = POSITION_MODE_DEFAULT
    testnet: bool = False


@dataclass(frozen=True)
class Credentials:
    bybit_api_key: str
    bybit_api_secret: str
    telegram_bot_token: str
    telegram_channel_id: str

    def missing_credentials(self) -> tuple[str, ...]:
        pairs = (
            (BYBIT_API_KEY_ENV, self.bybit_api_key),
            (BYBIT_API_SECRET_ENV, self.bybit_api_secret),
            (TELEGRAM_BOT_TOKEN_ENV, self.telegram_bot_token),
            (TELEGRAM_CHANNEL_ID_ENV, self.telegram_channel_id),
        )
        return tuple(key for key, value in pairs if not value)


def _log_config_event(
    event: str,
    input_data: str,
    decision: str,
    result: str,
    *,
    failure_reason: str = LOG_FIELD_EMPTY,
    **context: object,
) -> None:
    log_structured_event(
        StructuredLogEvent(
            component="config",
            event=event,
            input_data=input_data,
            decision=decision,
            result=result,
            state_before="loading",
            state_after="loading",
            failure_reason=failure_reason,
            level="INFO" if failure_reason == LOG_FIELD_EMPTY else "WARN",
        ),
        **context,
    )


def _read_number(
    env: Mapping[str, str],
    key: str,
    default: _T,
    *,
    parse: Callable[[str], _T],
    minimum: Optional[_T] = None,
    maximum: Optional[_T] = None,
    exclusive_minimum: bool = False,
) -> _T:
    raw = env.get(key)
    if raw is None or not raw.strip():
        _log_config_event(
            "setting_default_used",
            input_data=f"{key}=<missing>",
            decision="use_default",
            result=f"value={default}",
            key=key,
            value=default,
        )
        return default
    try:
        value = parse(raw.strip())
    except ValueError:
        _log_config_event(
            "setting_parse_failed",
            input_data=f"{key}={raw}",
            decision="fallback_to_default",
            result=f"value={default}",
            failure_reason=f"invalid_{parse.__name__}",
            key=key,
            raw=raw,
            fallback=default,
        )
        return default

    below = minimum is not None and (value <= minimum if exclusive_minimum else value < minimum)
    above = maximum is not None and value > maximum
    if below or above:
        _log_config_event(
            "setting_out_of_range",
            input_data=f"{key}={value}",
            decision="fallback_to_default",
            result=f"value={default}",
            failure_reason="below_minimum" if below else "above_maximum",
            key=key,
            raw=value,
            minimum=minimum if minimum is not None else LOG_FIELD_EMPTY,
            maximum=maximum if maximum is not None else LOG_FIELD_EMPTY,
            fallback=default,
        )
        return default

    _log_config_event(
        "setting_loaded",
        input_data=f"{key}={raw}",
        decision="accept_input",
        result=f"value={value}",
        key=key,
        value=value,
    )
    return value


def _read_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    _log_config_event(
        "setting_parse_failed",
        input_data=f"{key}={raw}",
        decision="fallback_to_default",
        result=f"value={default}",
        failure_reason="invalid_bool",
        key=key,
    )
    return default


def _read_symbols(env: Mapping[str, str], key: str, default: Sequence[str]) -> tuple[str, ...]:
    raw = env.get(key)
    if raw is None:
        return tuple(default)
    symbols = tuple(dict.fromkeys(token.strip().upper() for token in raw.split(",") if token.strip()))
    if not symbols:
        _log_config_event(
            "setting_parse_failed",
            input_data=f"{key}={raw}",
            decision="fallback_to_default",
            result=f"value={','.join(default)}",
            failure_reason="empty_symbol_list",
            key=key,
        )
        return tuple(default)
    return symbols


def _read_position_mode(env: Mapping[str, str], key: str, default: PositionMode) -> PositionMode:
    raw = (env.get(key) or "").strip().upper()
    if raw == "ONE_WAY":
        return "ONE_WAY"
    if raw == "HEDGE":
        return "HEDGE"
    if raw:
        _log_config_event(
            "setting_parse_failed",
            input_data=f"{key}={raw}",
            decision="fallback_to_default",
            result=f"value={default}",
            failure_reason="invalid_position_mode",
            key=key,
        )
    return default


def load_trading_settings(env: Optional[Mapping[str, str]] = None) -> TradingSettings:
    source = env if env is not None else os.environ
    _log_config_event(
        "settings_load_started",
        input_data=f"env_source={'custom' if env is not None else 'os.environ'}",
        decision="begin_settings_load",
        result="started",
    )

    settings = TradingSettings(
        risk_percent=_read_number(
            source,
            RISK_PERCENT_ENV,
            RISK_PERCENT_DEFAULT,
            parse=float,
            minimum=0.0,
            maximum=100.0,
            exclusive_minimum=True,
        ),
        leverage=_read_number(source, LEVERAGE_ENV, LEVERAGE_DEFAULT, parse=int, minimum=1, maximum=100),
        take_profit_percent=_read_number(
            source,
            TAKE_PROFIT_PERCENT_ENV,
            TAKE_PROFIT_PERCENT_DEFAULT,
            parse=float,
            minimum=0.0,
            exclusive_minimum=True,
        ),
        stop_loss_percent=_read_number(
            source,
            STOP_LOSS_PERCENT_ENV,
            STOP_LOSS_PERCENT_DEFAULT,
            parse=float,
            minimum=0.0,
            maximum=99.0,
            exclusive_minimum=True,
        ),
        allowed_symbols=_read_symbols(source, ALLOWED_SYMBOLS_ENV, ALLOWED_SYMBOLS_DEFAULT),
        max_daily_trades=_read_number(
            source,
            MAX_DAILY_TRADES_ENV,
            MAX_DAILY_TRADES_DEFAULT,
            parse=int,
            minimum=1,
        ),
        max_open_positions=_read_number(
            source,
            MAX_OPEN_POSITIONS_ENV,
            MAX_OPEN_POSITIONS_DEFAULT,
            parse=int,
            minimum=1,
        ),
        dry_run=_read_bool(source, DRY_RUN_ENV, False),
        trading_hours_enabled=_read_bool(source, TRADING_HOURS_ENABLED_ENV, False),
        trading_start_hour=_read_number(
            source,
            TRADING_START_HOUR_ENV,
            TRADING_START_HOUR_DEFAULT,
            parse=int,
            minimum=0,
            maximum=23,
        ),
        trading_end_hour=_read_number(
            source,
            TRADING_END_HOUR_ENV,
            TRADING_END_HOUR_DEFAULT,
            parse=int,
            minimum=0,
            maximum=23,
        ),
        reconciliation_interval_seconds=_read_number(
            source,
            RECONCILIATION_INTERVAL_SECONDS_ENV,
            RECONCILIATION_INTERVAL_SECONDS_DEFAULT,
            parse=int,
            minimum=1,
        ),
        daily_report_hour_utc=_read_number(
            source,
            DAILY_REPORT_HOUR_UTC_ENV,
            DAILY_REPORT_HOUR_UTC_DEFAULT,
            parse=int,
            minimum=0,
            maximum=23,
        ),
        position_mode=_read_position_mode(source, POSITION_MODE_ENV, POSITION_MODE_DEFAULT),
        testnet=_read_bool(source, TESTNET_ENV, False),
    )
    _log_config_event(
        "settings_load_completed",
        input_data="all_settings_processed",
        decision="finalize_settings",
        result="settings_ready",
        risk_percent=settings.risk_percent,
        leverage=settings.leverage,
        take_profit_percent=settings.take_profit_percent,
        stop_loss_percent=settings.stop_loss_percent,
        allowed_symbols=",".join(settings.allowed_symbols),
        max_daily_trades=settings.max_daily_trades,
        max_open_positions=settings.max_open_positions,
        dry_run=settings.dry_run,
        trading_hours=(
            f"{settings.trading_start_hour}-{settings.trading_end_hour}"
            if settings.trading_hours_enabled
            else "disabled"
        ),
        reconciliation_interval_seconds=settings.reconciliation_interval_seconds,
        position_mode=settings.position_mode,
        testnet=settings.testnet,
    )
    return settings


def load_credentials(env: Optional[Mapping[str, str]] = None) -> Credentials:
    source = env if env is not None else os.environ
    return Credentials(
        bybit_api_key=(source.get(BYBIT_API_KEY_ENV) or "").strip(),
        bybit_api_secret=(source.get(BYBIT_API_SECRET_ENV) or "").strip(),
        telegram_bot_token=(source.get(TELEGRAM_BOT_TOKEN_ENV) or "").strip(),
        telegram_channel_id=(source.get(TELEGRAM_CHANNEL_ID_ENV) or "").strip(),
    )
