from __future__ import annotations

import time
from typing import Any, Callable, Mapping, Optional, Sequence

import requests

from .event_logging import LOG_FIELD_EMPTY, StructuredLogEvent, log_structured_event
from .telegram_models import (
    TelegramMessageEvent,
    TelegramPollResult,
    TelegramSendResult,
    TelegramUpdateParseResult,
)

TELEGRAM_API_BASE_URL_DEFAULT = "https://api.telegram.org"
TELEGRAM_POLL_LIMIT_DEFAULT = 100
TELEGRAM_POLL_TIMEOUT_SECONDS_DEFAULT = 2
TELEGRAM_REQUEST_TIMEOUT_SECONDS_DEFAULT = 10
TELEGRAM_PARSE_MODE_DEFAULT = "HTML"


def _normalize(value: object) -> str:
    text = " ".join(str(value).split())
    return text if text else LOG_FIELD_EMPTY


def _log_telegram_event(
    *,
    event: str,
    input_data: str,
    decision: str,
    result: str,
    failure_reason: str = LOG_FIELD_EMPTY,
    state_before: str = LOG_FIELD_EMPTY,
    state_after: str = LOG_FIELD_EMPTY,
    **context: object,
) -> None:
    log_structured_event(
        StructuredLogEvent(
            component="telegram_gateway",
            event=event,
            input_data=input_data,
            decision=decision,
            result=result,
            state_before=state_before,
            state_after=state_after,
            failure_reason=failure_reason,
            level="INFO" if failure_reason in (LOG_FIELD_EMPTY, "") else "WARN",
        ),
        **context,
    )


def _read_update_id(update: Mapping[str, Any]) -> Optional[int]:
    try:
        return int(update.get("update_id"))
    except (TypeError, ValueError):
        return None


def _read_message_container(update: Mapping[str, Any]) -> Optional[Mapping[str, Any]]:
    for key in ("channel_post", "message"):
        payload = update.get(key)
        if isinstance(payload, Mapping):
            return payload
    return None


def _chat_identifiers(chat: Mapping[str, Any]) -> set[str]:
    identifiers: set[str] = set()
    chat_id = chat.get("id")
    if chat_id is not None:
        identifiers.add(str(chat_id).strip())
    username = str(chat.get("username") or "").strip()
    if username:
        identifiers.add(f"@{username.lstrip('@')}")
    return identifiers


def parse_telegram_update(
    update: Mapping[str, Any],
    *,
    allowed_chat_ids: Sequence[str],
    received_at_local: Optional[int] = None,
) -> TelegramUpdateParseResult:
    update_id = _read_update_id(update)
    if update_id is None:
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="UPDATE_ID_MISSING",
            failure_reason="update_id_missing_or_invalid",
        )

    message_payload = _read_message_container(update)
    if message_payload is None:
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="MESSAGE_CONTAINER_MISSING",
            failure_reason="message_container_missing",
            update_id=update_id,
        )

    chat_payload = message_payload.get("chat")
    if not isinstance(chat_payload, Mapping):
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="CHAT_PAYLOAD_MISSING",
            failure_reason="chat_payload_missing",
            update_id=update_id,
        )

    identifiers = _chat_identifiers(chat_payload)
    allowed = {str(value).strip() for value in allowed_chat_ids if str(value).strip()}
    matched = identifiers & allowed
    if not matched:
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="CHAT_NOT_TARGET",
            failure_reason="chat_not_target",
            update_id=update_id,
        )

    try:
        message_id = int(message_payload.get("message_id"))
    except (TypeError, ValueError):
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="MESSAGE_ID_INVALID",
            failure_reason="message_id_missing_or_invalid",
            update_id=update_id,
        )

    text_value = message_payload.get("text")
    if text_value is None:
        text_value = message_payload.get("caption")
    message_text = str(text_value or "").strip()
    if not message_text:
        return TelegramUpdateParseResult(
            accepted=False,
            reason_code="MESSAGE_TEXT_MISSING",
            failure_reason="message_text_missing",
            update_id=update_id,
        )

    return TelegramUpdateParseResult(
        accepted=True,
        reason_code="OK",
        event=TelegramMessageEvent(
            update_id=update_id,
            chat_id=str(chat_payload.get("id")),
            message_id=message_id,
            message_text=message_text,
            received_at_local=int(received_at_local if received_at_local is not None else time.time()),
        ),
        update_id=update_id,
    )


def poll_telegram_updates(
    *,
    bot_token: str,
    allowed_chat_ids: Sequence[str],
    last_update_id: int = 0,
    poll_timeout_seconds: int = TELEGRAM_POLL_TIMEOUT_SECONDS_DEFAULT,
    request_timeout_seconds: int = TELEGRAM_REQUEST_TIMEOUT_SECONDS_DEFAULT,
    limit: int = TELEGRAM_POLL_LIMIT_DEFAULT,
    base_url: str = TELEGRAM_API_BASE_URL_DEFAULT,
    request_get: Callable[..., requests.Response] = requests.get,
    now_provider: Callable[[], float] = time.time,
) -> TelegramPollResult:
    token = str(bot_token or "").strip()
    offset = max(0, int(last_update_id))
    if not token:
        return TelegramPollResult(
            ok=False,
            reason_code="BOT_TOKEN_MISSING",
            next_update_id=offset,
            failure_reason="bot_token_missing",
        )

    url = f"{base_url.rstrip('/')}/bot{token}/getUpdates"
    params = {
        "offset": offset,
        "timeout": max(0, int(poll_timeout_seconds)),
        "limit": max(1, min(int(limit), 100)),
    }
    # Long-poll requests must outlive the server-side wait.
    timeout = max(1, int(request_timeout_seconds), int(poll_timeout_seconds) + 1)

    try:
        response = request_get(url, params=params, timeout=timeout)
    except requests.RequestException:
        return TelegramPollResult(
            ok=False,
            reason_code="REQUEST_FAILED",
            next_update_id=offset,
            failure_reason="request_exception",
        )

    if int(getattr(response, "status_code", 0)) != 200:
        return TelegramPollResult(
            ok=False,
            reason_code="HTTP_STATUS_ERROR",
            next_update_id=offset,
            failure_reason=f"http_status_{getattr(response, 'status_code', 'unknown')}",
        )

    try:
        payload = response.json()
    except ValueError:
        return TelegramPollResult(
            ok=False,
            reason_code="INVALID_JSON",
            next_update_id=offset,
            failure_reason="json_decode_failed",
        )

    if not isinstance(payload, Mapping):
        return TelegramPollResult(
            ok=False,
            reason_code="INVALID_PAYLOAD",
            next_update_id=offset,
            failure_reason="payload_not_mapping",
        )

    if payload.get("ok") is not True:
        return TelegramPollResult(
            ok=False,
            reason_code="TELEGRAM_API_ERROR",
            next_update_id=offset,
            failure_reason=_normalize(payload.get("description")),
        )

    updates = payload.get("result")
    if not isinstance(updates, list):
        return TelegramPollResult(
            ok=False,
            reason_code="INVALID_RESULT_TYPE",
            next_update_id=offset,
            failure_reason="result_not_list",
        )

    if not updates:
        return TelegramPollResult(ok=True, reason_code="NO_UPDATES", next_update_id=offset)

    accepted_events: list[TelegramMessageEvent] = []
    next_update_id = offset
    received_at_local = int(now_provider())
    for raw in updates:
        if not isinstance(raw, Mapping):
            continue
        update_id = _read_update_id(raw)
        if update_id is not None:
            next_update_id = max(next_update_id, update_id + 1)
        parsed = parse_telegram_update(
            raw,
            allowed_chat_ids=allowed_chat_ids,
            received_at_local=received_at_local,
        )
        if parsed.accepted and parsed.event is not None:
            accepted_events.append(parsed.event)

    return TelegramPollResult(
        ok=True,
        reason_code="OK",
        next_update_id=next_update_id,
        events=tuple(accepted_events),
    )


def poll_telegram_updates_with_logging(
    *,
    bot_token: str,
    allowed_chat_ids: Sequence[str],
    last_update_id: int = 0,
    poll_timeout_seconds: int = TELEGRAM_POLL_TIMEOUT_SECONDS_DEFAULT,
    request_timeout_seconds: int = TELEGRAM_REQUEST_TIMEOUT_SECONDS_DEFAULT,
    limit: int = TELEGRAM_POLL_LIMIT_DEFAULT,
    base_url: str = TELEGRAM_API_BASE_URL_DEFAULT,
    request_get: Callable[..., requests.Response] = requests.get,
    now_provider: Callable[[], float] = time.time,
    loop_label: str = "loop",
) -> TelegramPollResult:
    result = poll_telegram_updates(
        bot_token=bot_token,
        allowed_chat_ids=allowed_chat_ids,
        last_update_id=last_update_id,
        poll_timeout_seconds=poll_timeout_seconds,
        request_timeout_seconds=request_timeout_seconds,
        limit=limit,
        base_url=base_url,
        request_get=request_get,
        now_provider=now_provider,
    )
    if result.ok and not result.events:
        return result
    _log_telegram_event(
        event="poll_telegram_updates",
        input_data=f"offset={max(0, int(last_update_id))} limit={max(1, min(int(limit), 100))}",
        decision="call_get_updates_and_filter_chats",
        result=result.reason_code,
        failure_reason=result.failure_reason if not result.ok else LOG_FIELD_EMPTY,
        state_before=f"offset={max(0, int(last_update_id))}",
        state_after=f"offset={int(result.next_update_id)}",
        event_count=len(result.events),
        loop_label=loop_label,
    )
    return result


def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    parse_mode: str = TELEGRAM_PARSE_MODE_DEFAULT,
    request_timeout_seconds: int = TELEGRAM_REQUEST_TIMEOUT_SECONDS_DEFAULT,
    base_url: str = TELEGRAM_API_BASE_URL_DEFAULT,
    request_post: Callable[..., requests.Response] = requests.post,
) -> TelegramSendResult:
    token = str(bot_token or "").strip()
    target = str(chat_id or "").strip()
    if not token:
        return TelegramSendResult(ok=False, reason_code="BOT_TOKEN_MISSING", failure_reason="bot_token_missing")
    if not target:
        return TelegramSendResult(ok=False, reason_code="CHAT_ID_MISSING", failure_reason="chat_id_missing")

    url = f"{base_url.rstrip('/')}/bot{token}/sendMessage"
    body = {
        "chat_id": target,
        "text": text,
        "parse_mode": parse_mode,
        "disable_web_page_preview": True,
    }
    try:
        response = request_post(url, json=body, timeout=max(1, int(request_timeout_seconds)))
    except requests.RequestException:
        return TelegramSendResult(ok=False, reason_code="REQUEST_FAILED", failure_reason="request_exception")

    try:
        payload = response.json()
    except ValueError:
        payload = None

    if int(getattr(response, "status_code", 0)) != 200:
        description = payload.get("description") if isinstance(payload, Mapping) else None
        return TelegramSendResult(
            ok=False,
            reason_code="HTTP_STATUS_ERROR",
            failure_reason=_normalize(description or f"http_status_{getattr(response, 'status_code', 'unknown')}"),
        )
    if not isinstance(payload, Mapping):
        return TelegramSendResult(ok=False, reason_code="INVALID_JSON", failure_reason="json_decode_failed")
    if payload.get("ok") is not True:
        return TelegramSendResult(
            ok=False,
            reason_code="TELEGRAM_API_ERROR",
            failure_reason=_normalize(payload.get("description")),
        )

    message = payload.get("result")
    message_id: Optional[int] = None
    if isinstance(message, Mapping):
        try:
            message_id = int(message.get("message_id"))
        except (TypeError, ValueError):
            message_id = None
    return TelegramSendResult(ok=True, reason_code="OK", message_id=message_id)


def send_telegram_message_with_logging(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    parse_mode: str = TELEGRAM_PARSE_MODE_DEFAULT,
    request_timeout_seconds: int = TELEGRAM_REQUEST_TIMEOUT_SECONDS_DEFAULT,
    base_url: str = TELEGRAM_API_BASE_URL_DEFAULT,
    request_post: Callable[..., requests.Response] = requests.post,
    loop_label: str = "loop",
) -> TelegramSendResult:
    result = send_telegram_message(
        bot_token=bot_token,
        chat_id=chat_id,
        text=text,
        parse_mode=parse_mode,
        request_timeout_seconds=request_timeout_seconds,
        base_url=base_url,
        request_post=request_post,
    )
    first_line = (text or "").splitlines()[0] if text else ""
    _log_telegram_event(
        event="send_message",
        input_data=f"chat_id={_normalize(chat_id)} headline={_normalize(first_line)}",
        decision="post_send_message",
        result=result.reason_code,
        failure_reason=result.failure_reason if not result.ok else LOG_FIELD_EMPTY,
        loop_label=loop_label,
        message_id=result.message_id if result.message_id is not None else LOG_FIELD_EMPTY,
    )
    return result


class TelegramNotifier:
    """Callable that posts HTML messages to one chat."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        request_post: Callable[..., requests.Response] = requests.post,
        base_url: str = TELEGRAM_API_BASE_URL_DEFAULT,
    ) -> None:
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._request_post = request_post
        self._base_url = base_url

    def __call__(self, text: str) -> TelegramSendResult:
        return send_telegram_message_with_logging(
            bot_token=self._bot_token,
            chat_id=self._chat_id,
            text=text,
            base_url=self._base_url,
            request_post=self._request_post,
            loop_label="notify",
        )
