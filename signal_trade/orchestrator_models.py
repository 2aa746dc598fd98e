from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .ledger_models import OpenPosition

NOT_A_SIGNAL = "NOT_A_SIGNAL"
BALANCE_UNAVAILABLE = "BALANCE_UNAVAILABLE"
PRICE_UNAVAILABLE = "PRICE_UNAVAILABLE"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class SignalHandleResult:
    accepted: bool
    reason_code: str
    failure_reason: str = "-"
    symbol: Optional[str] = None
    direction: Optional[str] = None
    position: Optional[OpenPosition] = None
