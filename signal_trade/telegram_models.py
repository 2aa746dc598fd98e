from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence


@dataclass(frozen=True)
class TelegramMessageEvent:
    update_id: int
    chat_id: str
    message_id: int
    message_text: str
    received_at_local: int


@dataclass(frozen=True)
class TelegramUpdateParseResult:
    accepted: bool
    reason_code: str
    failure_reason: str = ""
    event: Optional[TelegramMessageEvent] = None
    update_id: Optional[int] = None


@dataclass(frozen=True)
class TelegramPollResult:
    ok: bool
    reason_code: str
    next_update_id: int
    events: Sequence[TelegramMessageEvent] = field(default_factory=tuple)
    failure_reason: str = ""


@dataclass(frozen=True)
class TelegramSendResult:
    ok: bool
    reason_code: str
    message_id: Optional[int] = None
    failure_reason: str = ""
