from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Literal, Mapping, Optional

from .exchange_models import InstrumentConstraints

ValidationReasonCode = Literal[
    "SIGNAL_VALID",
    "SYMBOL_NOT_ALLOWED",
    "INVALID_DIRECTION",
    "OUTSIDE_TRADING_HOURS",
    "POSITION_ALREADY_OPEN",
    "MAX_OPEN_POSITIONS_REACHED",
    "MAX_DAILY_TRADES_REACHED",
    "BALANCE_UNAVAILABLE",
    "INSUFFICIENT_BALANCE",
    "INSTRUMENT_UNAVAILABLE",
    "INSTRUMENT_NOT_TRADABLE",
]


@dataclass(frozen=True)
class SignalValidationResult:
    valid: bool
    reason_code: ValidationReasonCode
    reason: str = "-"
    info: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    balance: Optional[float] = None
    constraints: Optional[InstrumentConstraints] = None
