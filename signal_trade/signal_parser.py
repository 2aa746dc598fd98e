from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .event_logging import StructuredLogEvent, log_structured_event
from .signal_models import (
    SIGNAL_TYPE_UNKNOWN,
    NotASignal,
    ParsedSignal,
    Signal,
    SignalParseResult,
)

SIGNAL_MARKERS: tuple[str, ...] = ("SIGNAL DETECTED", "🚨 SIGNAL")

_LABELED_SYMBOL_PATTERN = re.compile(r"(?:<b>\s*)?Symbol:\s*(?:</b>)?\s*([A-Za-z0-9]+)", re.IGNORECASE)
_LABELED_DIRECTION_PATTERN = re.compile(
    r"(?:<b>\s*)?Direction:\s*(?:</b>)?\s*(?:[^\w\s<]+\s*)?(LONG|SHORT)\b",
    re.IGNORECASE,
)
_EPOCH_MILLIS_THRESHOLD = 10**12


def _log_text_preview(text: str, limit: int = 180) -> str:
    compact = " ".join((text or "").split())
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}...(+{len(compact) - limit} chars)"


def has_signal_marker(text: str) -> bool:
    return any(marker in (text or "") for marker in SIGNAL_MARKERS)


def has_structured_block(text: str) -> bool:
    content = text or ""
    return "{" in content and '"symbol"' in content and '"direction"' in content


def _iter_json_objects(text: str):
    decoder = json.JSONDecoder()
    index = text.find("{")
    while index != -1:
        try:
            obj, _ = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            obj = None
        if isinstance(obj, dict):
            yield obj
        index = text.find("{", index + 1)


def _coerce_timestamp(value: Any, fallback: datetime) -> datetime:
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, (int, float)):
        seconds = float(value) / 1000.0 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    text = str(value).strip()
    if not text:
        return fallback
    try:
        return _coerce_timestamp(float(text), fallback)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _required_text(payload: Mapping[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    return normalized or None


def _parse_structured_block(text: str, now: datetime) -> Optional[Signal]:
    for payload in _iter_json_objects(text):
        symbol = _required_text(payload, "symbol")
        direction = _required_text(payload, "direction")
        if symbol is None or direction is None:
            continue
        signal_type = payload.get("signalType")
        stats = payload.get("stats")
        return Signal(
            symbol=symbol,
            direction=direction,
            timestamp=_coerce_timestamp(payload.get("timestamp"), now),
            signal_type=str(signal_type).strip() if signal_type else SIGNAL_TYPE_UNKNOWN,
            stats=MappingProxyType(dict(stats)) if isinstance(stats, Mapping) else MappingProxyType({}),
        )
    return None


def _parse_labeled_text(text: str, now: datetime) -> Optional[Signal]:
    symbol_match = _LABELED_SYMBOL_PATTERN.search(text)
    direction_match = _LABELED_DIRECTION_PATTERN.search(text)
    if symbol_match is None or direction_match is None:
        return None
    return Signal(
        symbol=symbol_match.group(1).upper(),
        direction=direction_match.group(1).upper(),
        timestamp=now,
    )


def parse_signal(raw_text: str, *, now: Optional[datetime] = None) -> SignalParseResult:
    text = raw_text or ""
    parse_time = now if now is not None else datetime.now(timezone.utc)
    if not text.strip():
        return NotASignal("EMPTY_MESSAGE", "message is empty")
    if not has_signal_marker(text):
        return NotASignal("NO_MARKER", "signal marker not found")
    if not has_structured_block(text):
        return NotASignal("NO_STRUCTURED_BLOCK", "structured block with symbol and direction not found")

    signal = _parse_structured_block(text, parse_time)
    if signal is not None:
        return ParsedSignal(signal=signal, strategy="STRUCTURED_BLOCK")

    signal = _parse_labeled_text(text, parse_time)
    if signal is not None:
        return ParsedSignal(signal=signal, strategy="LABELED_TEXT")

    return NotASignal("FIELDS_MISSING", "symbol or direction could not be extracted")


def parse_signal_with_logging(
    raw_text: str,
    *,
    now: Optional[datetime] = None,
    loop_label: str = "loop",
) -> SignalParseResult:
    result = parse_signal(raw_text, now=now)
    if isinstance(result, ParsedSignal):
        log_structured_event(
            StructuredLogEvent(
                component="signal_parser",
                event="parse_signal",
                input_data=_log_text_preview(raw_text),
                decision=f"strategy={result.strategy}",
                result="parsed",
                state_before="raw_text",
                state_after="signal",
            ),
            loop_label=loop_label,
            symbol=result.signal.symbol,
            direction=result.signal.direction,
            signal_type=result.signal.signal_type,
        )
    else:
        log_structured_event(
            StructuredLogEvent(
                component="signal_parser",
                event="parse_signal",
                input_data=_log_text_preview(raw_text),
                decision="try_structured_then_labeled",
                result="not_a_signal",
                state_before="raw_text",
                state_after="ignored",
                failure_reason=result.reason_code,
                level="DEBUG",
            ),
            loop_label=loop_label,
        )
    return result
