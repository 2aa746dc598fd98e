from __future__ import annotations

import threading
from typing import Optional, Sequence

from .event_logging import StructuredLogEvent, log_structured_event
from .ledger_models import (
    ClosedPosition,
    LedgerEvent,
    LedgerTransitionResult,
    OpenPosition,
    PositionMark,
    SymbolLedgerState,
)

_LEDGER_TRANSITIONS: dict[tuple[SymbolLedgerState, LedgerEvent], SymbolLedgerState] = {
    ("NONE", "RESERVE"): "OPENING",
    ("CLOSED", "RESERVE"): "OPENING",
    ("OPENING", "RELEASE"): "NONE",
    ("OPENING", "CONFIRM_OPEN"): "OPEN",
    ("OPEN", "CONFIRM_CLOSED"): "CLOSED",
}

_ACTIVE_STATES: frozenset[str] = frozenset({"OPENING", "OPEN"})


def apply_ledger_event(symbol: str, current_state: SymbolLedgerState, event: LedgerEvent) -> LedgerTransitionResult:
    next_state = _LEDGER_TRANSITIONS.get((current_state, event))
    if next_state is None:
        return LedgerTransitionResult(
            symbol=symbol,
            event=event,
            previous_state=current_state,
            current_state=current_state,
            accepted=False,
            reason_code="INVALID_TRANSITION",
        )
    return LedgerTransitionResult(
        symbol=symbol,
        event=event,
        previous_state=current_state,
        current_state=next_state,
        accepted=True,
        reason_code="TRANSITION_APPLIED",
    )


def _normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


class PositionLedger:
    """In-memory record of the positions this process opened.

    Every read-modify-write runs under one re-entrant lock. ``reserve`` is the
    atomic "is the symbol free and is there room" check-then-act that the
    signal path must win before any order is sent; the reconciliation path
    only ever moves OPEN records to history.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._states: dict[str, SymbolLedgerState] = {}
        self._open: dict[str, OpenPosition] = {}
        self._closed: list[ClosedPosition] = []
        self._marks: dict[str, PositionMark] = {}

    def _state(self, symbol: str) -> SymbolLedgerState:
        return self._states.get(symbol, "NONE")

    def _active_count(self) -> int:
        return sum(1 for state in self._states.values() if state in _ACTIVE_STATES)

    def _rejected(self, symbol: str, event: LedgerEvent, reason_code: str) -> LedgerTransitionResult:
        state = self._state(symbol)
        return LedgerTransitionResult(
            symbol=symbol,
            event=event,
            previous_state=state,
            current_state=state,
            accepted=False,
            reason_code=reason_code,
        )

    def _apply(self, symbol: str, event: LedgerEvent) -> LedgerTransitionResult:
        result = apply_ledger_event(symbol, self._state(symbol), event)
        if result.accepted:
            self._states[symbol] = result.current_state
        return result

    def reserve(self, symbol: str, max_open_positions: int) -> LedgerTransitionResult:
        key = _normalize_symbol(symbol)
        with self._lock:
            if self._state(key) in _ACTIVE_STATES:
                result = self._rejected(key, "RESERVE", "POSITION_ALREADY_OPEN")
            elif self._active_count() >= int(max_open_positions):
                result = self._rejected(key, "RESERVE", "MAX_OPEN_POSITIONS_REACHED")
            else:
                result = self._apply(key, "RESERVE")
            active_count = self._active_count()
        _log_ledger_transition(result, active_count=active_count, max_open_positions=max_open_positions)
        return result

    def release(self, symbol: str) -> LedgerTransitionResult:
        key = _normalize_symbol(symbol)
        with self._lock:
            result = self._apply(key, "RELEASE")
            if result.accepted:
                self._states.pop(key, None)
            active_count = self._active_count()
        _log_ledger_transition(result, active_count=active_count)
        return result

    def confirm_open(self, position: OpenPosition) -> LedgerTransitionResult:
        key = _normalize_symbol(position.symbol)
        with self._lock:
            result = self._apply(key, "CONFIRM_OPEN")
            if result.accepted:
                self._open[key] = position
            active_count = self._active_count()
        _log_ledger_transition(
            result,
            active_count=active_count,
            entry_order_id=position.entry_order_id,
            protection_complete=position.protection_complete,
        )
        return result

    def close(self, symbol: str, closed: ClosedPosition) -> LedgerTransitionResult:
        key = _normalize_symbol(symbol)
        with self._lock:
            tracked = self._open.get(key)
            if (
                tracked is None
                or _normalize_symbol(closed.symbol) != key
                or tracked.entry_order_id != closed.entry_order_id
            ):
                result = self._rejected(key, "CONFIRM_CLOSED", "OPEN_POSITION_MISMATCH")
            else:
                result = self._apply(key, "CONFIRM_CLOSED")
                if result.accepted:
                    del self._open[key]
                    self._marks.pop(key, None)
                    self._closed.append(closed)
            active_count = self._active_count()
        _log_ledger_transition(
            result,
            active_count=active_count,
            realized_pnl=closed.realized_pnl,
            close_reason=closed.close_reason,
        )
        return result

    def has_open_position(self, symbol: str) -> bool:
        with self._lock:
            return self._state(_normalize_symbol(symbol)) in _ACTIVE_STATES

    def open_count(self) -> int:
        with self._lock:
            return self._active_count()

    def symbol_state(self, symbol: str) -> SymbolLedgerState:
        with self._lock:
            return self._state(_normalize_symbol(symbol))

    def get_open_position(self, symbol: str) -> Optional[OpenPosition]:
        with self._lock:
            return self._open.get(_normalize_symbol(symbol))

    def open_positions(self) -> Sequence[OpenPosition]:
        with self._lock:
            return tuple(self._open.values())

    def closed_positions(self) -> Sequence[ClosedPosition]:
        with self._lock:
            return tuple(self._closed)

    def update_mark(self, symbol: str, mark: PositionMark) -> bool:
        key = _normalize_symbol(symbol)
        with self._lock:
            if key not in self._open:
                return False
            self._marks[key] = mark
            return True

    def get_mark(self, symbol: str) -> Optional[PositionMark]:
        with self._lock:
            return self._marks.get(_normalize_symbol(symbol))

    def clear_closed_history(self) -> int:
        with self._lock:
            count = len(self._closed)
            self._closed.clear()
            return count


def _log_ledger_transition(result: LedgerTransitionResult, **context: object) -> None:
    log_structured_event(
        StructuredLogEvent(
            component="position_ledger",
            event=result.event.lower(),
            input_data=f"symbol={result.symbol}",
            decision="check_transition_table",
            result="accepted" if result.accepted else "rejected",
            state_before=result.previous_state,
            state_after=result.current_state,
            failure_reason="-" if result.accepted else result.reason_code,
        ),
        reason_code=result.reason_code,
        **context,
    )
