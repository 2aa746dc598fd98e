from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional, Sequence

from .ledger_models import OpenPosition
from .risk_models import PositionParameters

OrderLegName = Literal["LEVERAGE", "ENTRY", "TAKE_PROFIT", "STOP_LOSS"]

POSITION_OPENED = "POSITION_OPENED"
DRY_RUN_OPENED = "DRY_RUN_OPENED"
PARTIAL_PROTECTION_FAILURE = "PARTIAL_PROTECTION_FAILURE"
SETUP_FAILED = "SETUP_FAILED"
ENTRY_FAILED = "ENTRY_FAILED"


@dataclass(frozen=True)
class OrderLegResult:
    leg: OrderLegName
    ok: bool
    reason_code: str
    order_id: Optional[str] = None
    failure_reason: str = "-"


@dataclass(frozen=True)
class OrderSequenceResult:
    success: bool
    reason_code: str
    failure_reason: str = "-"
    parameters: Optional[PositionParameters] = None
    position: Optional[OpenPosition] = None
    entry_order_id: Optional[str] = None
    failed_leg: Optional[OrderLegName] = None
    legs: Sequence[OrderLegResult] = field(default_factory=tuple)

    @property
    def opened(self) -> bool:
        """True when an entry fill exists, protected or not."""
        return self.position is not None
