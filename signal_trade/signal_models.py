from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Literal, Mapping, Union

ParseStrategy = Literal["STRUCTURED_BLOCK", "LABELED_TEXT"]

SIGNAL_TYPE_UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Signal:
    symbol: str
    # Kept as text: a parsed signal may carry a direction the validator rejects.
    direction: str
    timestamp: datetime
    signal_type: str = SIGNAL_TYPE_UNKNOWN
    stats: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class ParsedSignal:
    signal: Signal
    strategy: ParseStrategy

    @property
    def is_signal(self) -> bool:
        return True


@dataclass(frozen=True)
class NotASignal:
    reason_code: str
    failure_reason: str

    @property
    def is_signal(self) -> bool:
        return False


SignalParseResult = Union[ParsedSignal, NotASignal]
