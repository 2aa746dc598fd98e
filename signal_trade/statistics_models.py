from __future__ import annotations

from dataclasses import dataclass
from datetime import date


@dataclass(frozen=True)
class StatisticsSnapshot:
    total_signals: int
    signals_ignored: int
    daily_trades: int
    total_trades: int
    win_trades: int
    lose_trades: int
    total_realized_pnl: float
    start_balance: float
    current_date: date

    @property
    def win_rate(self) -> float:
        if self.total_trades <= 0:
            return 0.0
        return self.win_trades / self.total_trades * 100.0


@dataclass(frozen=True)
class DailyReport:
    date: str
    trading_hours: str
    total_signals: int
    signals_ignored: int
    total_trades: int
    win_trades: int
    lose_trades: int
    win_rate: float
    total_pnl: float
    roi: float
    start_balance: float
    current_balance: float
    realized_pnl: float

    @property
    def loss_rate(self) -> float:
        return 100.0 - self.win_rate if self.total_trades > 0 else 0.0
