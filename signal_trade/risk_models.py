from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from .exchange_models import Direction

SizingFailureCode = Literal["INVALID_INPUT", "DEGENERATE_STOP", "INSUFFICIENT_BALANCE"]
SizingClamp = Literal["MARGIN_CAPPED", "MIN_QTY_APPLIED", "MAX_QTY_APPLIED"]

POSITION_SIZED = "POSITION_SIZED"


@dataclass(frozen=True)
class RiskSettings:
    risk_percent: float
    leverage: int
    stop_loss_percent: float
    take_profit_percent: float


@dataclass(frozen=True)
class PositionParameters:
    entry_price: float
    quantity: float
    position_size_notional: float
    leverage: int
    required_margin: float
    stop_loss_price: float
    take_profit_price: float
    risk_amount: float
    direction: Direction


@dataclass(frozen=True)
class PositionSizingResult:
    ok: bool
    parameters: Optional[PositionParameters]
    reason_code: str
    failure_reason: str
    clamps: Sequence[SizingClamp] = field(default_factory=tuple)
