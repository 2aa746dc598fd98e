from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .event_logging import StructuredLogEvent, log_structured_event
from .trading_hours_models import TradingHoursInfo, TradingHoursWindow


def _as_utc(now: datetime) -> datetime:
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def is_hour_in_window(hour: int, *, start_hour: int, end_hour: int) -> bool:
    if end_hour > start_hour:
        return start_hour <= hour < end_hour
    # Window wraps past midnight, e.g. 22:00-06:00.
    return hour >= start_hour or hour < end_hour


def is_trading_hours_active(now: datetime, window: TradingHoursWindow) -> bool:
    if not window.enabled:
        return True
    return is_hour_in_window(
        _as_utc(now).hour,
        start_hour=window.start_hour,
        end_hour=window.end_hour,
    )


def _next_window_start(now: datetime, window: TradingHoursWindow) -> datetime:
    next_start = now.replace(hour=window.start_hour, minute=0, second=0, microsecond=0)
    if next_start <= now:
        next_start += timedelta(days=1)
    return next_start


def format_time_until(seconds: int) -> str:
    total_minutes = max(0, int(seconds)) // 60
    return f"{total_minutes // 60}h {total_minutes % 60}m"


def get_trading_hours_info(now: datetime, window: TradingHoursWindow) -> TradingHoursInfo:
    utc_now = _as_utc(now)
    active = is_trading_hours_active(utc_now, window)
    next_trading_in = None
    seconds_until_next = None
    if not active:
        seconds_until_next = int((_next_window_start(utc_now, window) - utc_now).total_seconds())
        next_trading_in = format_time_until(seconds_until_next)
    return TradingHoursInfo(
        active=active,
        current_time=utc_now.strftime("%H:%M"),
        trading_hours=window.label,
        next_trading_in=next_trading_in,
        seconds_until_next=seconds_until_next,
    )


def get_trading_hours_info_with_logging(
    now: datetime,
    window: TradingHoursWindow,
    *,
    loop_label: str = "loop",
) -> TradingHoursInfo:
    info = get_trading_hours_info(now, window)
    log_structured_event(
        StructuredLogEvent(
            component="trading_hours",
            event="evaluate_trading_hours",
            input_data=f"utc_time={info.current_time} window={info.trading_hours} enabled={window.enabled}",
            decision="compare_utc_hour_with_window",
            result="active" if info.active else "inactive",
            level="INFO" if info.active else "DEBUG",
        ),
        loop_label=loop_label,
        next_trading_in=info.next_trading_in or "-",
    )
    return info
