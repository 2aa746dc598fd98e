from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

from .ledger_models import ClosedPosition, ExitPriceSource

NO_TRACKED_POSITIONS = "NO_TRACKED_POSITIONS"
RECONCILIATION_ERROR = "RECONCILIATION_ERROR"
RECONCILED = "RECONCILED"


@dataclass(frozen=True)
class ExitPriceResolution:
    price: float
    source: ExitPriceSource
    exchange_pnl: Optional[float] = None


@dataclass(frozen=True)
class ReconciliationTickResult:
    ok: bool
    reason_code: str
    checked: int = 0
    closed: Sequence[ClosedPosition] = field(default_factory=tuple)
    still_open: int = 0
    errors: Sequence[str] = field(default_factory=tuple)
