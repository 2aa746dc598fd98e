from __future__ import annotations

import threading
from datetime import date, datetime, timezone
from typing import Optional

from .event_logging import StructuredLogEvent, log_structured_event
from .ledger_models import ClosedPosition
from .statistics_models import DailyReport, StatisticsSnapshot


def _utc_date(now: datetime) -> date:
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(timezone.utc).date()


class StatisticsAggregator:
    """Session counters plus the per-UTC-day trade tally.

    ``daily_trades`` counts opens and gates the daily trade limit;
    ``total_trades`` and the win/lose split count closures.
    """

    def __init__(self, *, start_balance: float = 0.0, now: Optional[datetime] = None) -> None:
        self._lock = threading.Lock()
        self._current_date = _utc_date(now if now is not None else datetime.now(timezone.utc))
        self._start_balance = float(start_balance)
        self._total_signals = 0
        self._signals_ignored = 0
        self._daily_trades = 0
        self._total_trades = 0
        self._win_trades = 0
        self._lose_trades = 0
        self._total_realized_pnl = 0.0

    def set_start_balance(self, balance: float) -> None:
        with self._lock:
            self._start_balance = float(balance)

    def roll_over_if_new_day(self, now: datetime) -> bool:
        today = _utc_date(now)
        with self._lock:
            if today == self._current_date:
                return False
            previous = self._current_date
            self._current_date = today
            self._signals_ignored = 0
            self._daily_trades = 0
            self._total_trades = 0
            self._win_trades = 0
            self._lose_trades = 0
            self._total_realized_pnl = 0.0
        log_structured_event(
            StructuredLogEvent(
                component="statistics",
                event="daily_rollover",
                input_data=f"date={today.isoformat()}",
                decision="utc_date_changed",
                result="daily_counters_reset",
                state_before=previous.isoformat(),
                state_after=today.isoformat(),
            )
        )
        return True

    def record_signal_received(self) -> int:
        with self._lock:
            self._total_signals += 1
            return self._total_signals

    def record_signal_ignored(self) -> int:
        with self._lock:
            self._signals_ignored += 1
            return self._signals_ignored

    def record_position_opened(self) -> int:
        with self._lock:
            self._daily_trades += 1
            return self._daily_trades

    def record_position_closed(self, closed: ClosedPosition) -> None:
        with self._lock:
            self._total_trades += 1
            if closed.is_win:
                self._win_trades += 1
            else:
                self._lose_trades += 1
            self._total_realized_pnl += float(closed.realized_pnl)

    @property
    def daily_trades(self) -> int:
        with self._lock:
            return self._daily_trades

    def snapshot(self) -> StatisticsSnapshot:
        with self._lock:
            return StatisticsSnapshot(
                total_signals=self._total_signals,
                signals_ignored=self._signals_ignored,
                daily_trades=self._daily_trades,
                total_trades=self._total_trades,
                win_trades=self._win_trades,
                lose_trades=self._lose_trades,
                total_realized_pnl=self._total_realized_pnl,
                start_balance=self._start_balance,
                current_date=self._current_date,
            )

    def build_daily_report(
        self,
        current_balance: float,
        now: datetime,
        *,
        start_hour: int,
        end_hour: int,
    ) -> DailyReport:
        stats = self.snapshot()
        total_pnl = float(current_balance) - stats.start_balance
        roi = total_pnl / stats.start_balance * 100.0 if stats.start_balance > 0 else 0.0
        return DailyReport(
            date=_utc_date(now).isoformat(),
            trading_hours=f"{start_hour}:00-{end_hour}:00",
            total_signals=stats.total_signals,
            signals_ignored=stats.signals_ignored,
            total_trades=stats.total_trades,
            win_trades=stats.win_trades,
            lose_trades=stats.lose_trades,
            win_rate=stats.win_rate,
            total_pnl=total_pnl,
            roi=roi,
            start_balance=stats.start_balance,
            current_balance=float(current_balance),
            realized_pnl=stats.total_realized_pnl,
        )
