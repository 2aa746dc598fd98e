from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class TradingHoursWindow:
    start_hour: int
    end_hour: int
    enabled: bool = True

    @property
    def label(self) -> str:
        return f"{self.start_hour}:00-{self.end_hour}:00"


@dataclass(frozen=True)
class TradingHoursInfo:
    active: bool
    current_time: str
    trading_hours: str
    next_trading_in: Optional[str]
    seconds_until_next: Optional[int]
