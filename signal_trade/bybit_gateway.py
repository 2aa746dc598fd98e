from __future__ import annotations

import hashlib
import hmac
import json
import time
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Sequence

import requests

from .event_logging import LOG_FIELD_EMPTY, StructuredLogEvent, log_structured_event
from .exchange_models import (
    LEVERAGE_ALREADY_SET,
    LEVERAGE_SET,
    ClosedPnlRecord,
    Direction,
    ExchangeTrade,
    GatewayResult,
    InstrumentConstraints,
    LivePosition,
    OrderAck,
    OrderSide,
    PositionMode,
    ProtectiveKind,
    format_decimal_text,
)

BYBIT_MAINNET_BASE_URL = "https://api.bybit.com"
BYBIT_TESTNET_BASE_URL = "https://api-testnet.bybit.com"
BYBIT_CATEGORY = "linear"
BYBIT_ACCOUNT_TYPE = "UNIFIED"
BYBIT_SETTLE_COIN = "USDT"
BYBIT_RECV_WINDOW_DEFAULT = 5000
BYBIT_REQUEST_TIMEOUT_SECONDS_DEFAULT = 10
BYBIT_INSTRUMENT_TRADING_STATUS = "Trading"
BYBIT_LEVERAGE_NOT_MODIFIED_CODE = 110043

TRIGGER_DIRECTION_RISING = 1
TRIGGER_DIRECTION_FALLING = 2


def _default_now_ms() -> int:
    return int(time.time() * 1000)


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _ms_to_datetime(value: Any) -> Optional[datetime]:
    millis = _to_float(value)
    if millis is None:
        return None
    try:
        return datetime.fromtimestamp(millis / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def trigger_direction_for(kind: ProtectiveKind, direction: Direction) -> int:
    rising = (kind == "TAKE_PROFIT") == (direction == "LONG")
    return TRIGGER_DIRECTION_RISING if rising else TRIGGER_DIRECTION_FALLING


def position_idx_for(position_mode: PositionMode, direction: Direction) -> int:
    if position_mode != "HEDGE":
        return 0
    return 1 if direction == "LONG" else 2


def _result_list(payload: Mapping[str, Any]) -> list[Mapping[str, Any]]:
    rows = payload.get("list")
    if not isinstance(rows, list):
        return []
    return [row for row in rows if isinstance(row, Mapping)]


class BybitGateway:
    """Bybit V5 REST adapter for USDT linear perpetuals.

    Every call returns a :class:`GatewayResult`; transport, HTTP and exchange
    errors are converted into reason codes and never raised to callers.
    """

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        testnet: bool = False,
        position_mode: PositionMode = "ONE_WAY",
        session: Optional[requests.Session] = None,
        recv_window: int = BYBIT_RECV_WINDOW_DEFAULT,
        request_timeout_seconds: int = BYBIT_REQUEST_TIMEOUT_SECONDS_DEFAULT,
        base_url: Optional[str] = None,
        now_ms: Callable[[], int] = _default_now_ms,
    ) -> None:
        self._api_key = str(api_key or "").strip()
        self._api_secret = str(api_secret or "").strip()
        self._position_mode = position_mode
        self._session = session if session is not None else requests.Session()
        self._recv_window = int(recv_window)
        self._timeout = max(1, int(request_timeout_seconds))
        self._base_url = (base_url or (BYBIT_TESTNET_BASE_URL if testnet else BYBIT_MAINNET_BASE_URL)).rstrip("/")
        self._now_ms = now_ms

    @property
    def position_mode(self) -> PositionMode:
        return self._position_mode

    def _sign(self, timestamp: str, payload: str) -> str:
        message = f"{timestamp}{self._api_key}{self._recv_window}{payload}"
        return hmac.new(self._api_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()

    def _signed_headers(self, payload: str) -> dict[str, str]:
        timestamp = str(int(self._now_ms()))
        return {
            "X-BAPI-API-KEY": self._api_key,
            "X-BAPI-SIGN": self._sign(timestamp, payload),
            "X-BAPI-SIGN-TYPE": "2",
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": str(self._recv_window),
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Mapping[str, Any]] = None,
        signed: bool = True,
    ) -> GatewayResult[Mapping[str, Any]]:
        method_name = method.upper()
        query = urllib.parse.urlencode(
            [(key, value) for key, value in (params or {}).items() if value is not None]
        )
        url = f"{self._base_url}{path}"
        if query:
            url = f"{url}?{query}"
        body_text = json.dumps(dict(body), separators=(",", ":")) if body is not None else ""

        headers: dict[str, str] = {}
        if signed:
            headers.update(self._signed_headers(body_text if method_name == "POST" else query))
        if method_name == "POST":
            headers["Content-Type"] = "application/json"

        try:
            response = self._session.request(
                method_name,
                url,
                headers=headers,
                data=body_text if method_name == "POST" else None,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            return self._failed(path, "REQUEST_FAILED", f"request_exception: {exc!r}")

        status_code = int(getattr(response, "status_code", 0))
        if status_code != 200:
            return self._failed(path, "HTTP_STATUS_ERROR", f"http_status_{status_code}")

        try:
            payload = response.json()
        except ValueError:
            return self._failed(path, "INVALID_JSON", "json_decode_failed")
        if not isinstance(payload, Mapping):
            return self._failed(path, "INVALID_PAYLOAD", "payload_not_mapping")

        try:
            ret_code = int(payload.get("retCode", -1))
        except (TypeError, ValueError):
            ret_code = -1
        if ret_code != 0:
            return self._failed(
                path,
                "EXCHANGE_ERROR",
                str(payload.get("retMsg") or "exchange_error"),
                error_code=ret_code,
            )

        result = payload.get("result")
        return GatewayResult(ok=True, reason_code="OK", value=result if isinstance(result, Mapping) else {})

    def _failed(
        self,
        path: str,
        reason_code: str,
        message: str,
        *,
        error_code: Optional[int] = None,
    ) -> GatewayResult[Any]:
        log_structured_event(
            StructuredLogEvent(
                component="bybit_gateway",
                event="request_failed",
                input_data=f"path={path}",
                decision="convert_failure_to_reason_code",
                result=reason_code,
                failure_reason=message,
                level="WARN",
            ),
            error_code=error_code if error_code is not None else LOG_FIELD_EMPTY,
        )
        return GatewayResult(ok=False, reason_code=reason_code, error_code=error_code, error_message=message)

    def check_connection(self) -> GatewayResult[float]:
        server_time = self._request("GET", "/v5/market/time", signed=False)
        if not server_time.ok:
            return GatewayResult(
                ok=False,
                reason_code="CONNECTION_FAILED",
                error_code=server_time.error_code,
                error_message=server_time.failure_reason,
            )
        balance = self.get_balance()
        if not balance.ok:
            return GatewayResult(
                ok=False,
                reason_code="AUTHENTICATION_FAILED",
                error_code=balance.error_code,
                error_message=balance.failure_reason,
            )
        log_structured_event(
            StructuredLogEvent(
                component="bybit_gateway",
                event="check_connection",
                input_data=f"base_url={self._base_url}",
                decision="server_time_then_wallet_balance",
                result="connected",
                state_before="disconnected",
                state_after="connected",
            ),
            balance=balance.value,
            position_mode=self._position_mode,
        )
        return GatewayResult(ok=True, reason_code="CONNECTED", value=balance.value)

    def get_balance(self) -> GatewayResult[float]:
        response = self._request(
            "GET",
            "/v5/account/wallet-balance",
            params={"accountType": BYBIT_ACCOUNT_TYPE, "coin": BYBIT_SETTLE_COIN},
        )
        if not response.ok:
            return response
        for account in _result_list(response.value or {}):
            coins = account.get("coin")
            if not isinstance(coins, list):
                continue
            for coin in coins:
                if not isinstance(coin, Mapping) or coin.get("coin") != BYBIT_SETTLE_COIN:
                    continue
                available = _to_float(coin.get("availableToWithdraw"))
                if available is None:
                    available = _to_float(coin.get("walletBalance"))
                if available is None:
                    break
                return GatewayResult(ok=True, reason_code="OK", value=available)
        return GatewayResult(
            ok=False,
            reason_code="BALANCE_NOT_FOUND",
            error_message=f"{BYBIT_SETTLE_COIN} balance missing from wallet response",
        )

    def get_instrument_constraints(self, symbol: str) -> GatewayResult[InstrumentConstraints]:
        response = self._request(
            "GET",
            "/v5/market/instruments-info",
            params={"category": BYBIT_CATEGORY, "symbol": symbol},
            signed=False,
        )
        if not response.ok:
            return response
        rows = _result_list(response.value or {})
        if not rows:
            return GatewayResult(ok=False, reason_code="INSTRUMENT_NOT_FOUND", error_message=f"{symbol} not listed")
        row = rows[0]
        lot_size = row.get("lotSizeFilter")
        lot_size = lot_size if isinstance(lot_size, Mapping) else {}
        qty_step = _to_float(lot_size.get("qtyStep"))
        min_qty = _to_float(lot_size.get("minOrderQty"))
        max_qty = _to_float(lot_size.get("maxOrderQty"))
        try:
            price_precision = int(str(row.get("priceScale")).strip())
        except (TypeError, ValueError):
            price_precision = None
        if qty_step is None or min_qty is None or max_qty is None or price_precision is None:
            return GatewayResult(
                ok=False,
                reason_code="INVALID_INSTRUMENT_PAYLOAD",
                error_message=f"lot size or price scale missing for {symbol}",
            )
        return GatewayResult(
            ok=True,
            reason_code="OK",
            value=InstrumentConstraints(
                symbol=str(row.get("symbol") or symbol),
                tick_size=qty_step,
                min_qty=min_qty,
                max_qty=max_qty,
                price_precision=price_precision,
                tradable=row.get("status") == BYBIT_INSTRUMENT_TRADING_STATUS,
            ),
        )

    def get_current_price(self, symbol: str) -> GatewayResult[float]:
        response = self._request(
            "GET",
            "/v5/market/tickers",
            params={"category": BYBIT_CATEGORY, "symbol": symbol},
            signed=False,
        )
        if not response.ok:
            return response
        rows = _result_list(response.value or {})
        price = _to_float(rows[0].get("lastPrice")) if rows else None
        if price is None or price <= 0:
            return GatewayResult(ok=False, reason_code="PRICE_UNAVAILABLE", error_message=f"no last price for {symbol}")
        return GatewayResult(ok=True, reason_code="OK", value=price)

    def set_leverage(self, symbol: str, leverage: int) -> GatewayResult[int]:
        leverage_text = str(int(leverage))
        response = self._request(
            "POST",
            "/v5/position/set-leverage",
            body={
                "category": BYBIT_CATEGORY,
                "symbol": symbol,
                "buyLeverage": leverage_text,
                "sellLeverage": leverage_text,
            },
        )
        if response.ok:
            return GatewayResult(ok=True, reason_code=LEVERAGE_SET, value=int(leverage))
        message = (response.error_message or "").lower()
        if response.error_code == BYBIT_LEVERAGE_NOT_MODIFIED_CODE or "leverage not modified" in message:
            return GatewayResult(ok=True, reason_code=LEVERAGE_ALREADY_SET, value=int(leverage))
        return response

    def _create_order(self, body: Mapping[str, Any], *, side: OrderSide, quantity: float, trigger_price: Optional[float]) -> GatewayResult[OrderAck]:
        response = self._request("POST", "/v5/order/create", body=body)
        if not response.ok:
            return response
        order_id = str((response.value or {}).get("orderId") or "").strip()
        if not order_id:
            return GatewayResult(ok=False, reason_code="ORDER_ID_MISSING", error_message="orderId missing from response")
        return GatewayResult(
            ok=True,
            reason_code="ORDER_ACCEPTED",
            value=OrderAck(
                order_id=order_id,
                symbol=str(body["symbol"]),
                side=side,
                quantity=float(quantity),
                trigger_price=trigger_price,
            ),
        )

    def submit_market_order(
        self,
        symbol: str,
        side: OrderSide,
        quantity: float,
        *,
        direction: Direction,
    ) -> GatewayResult[OrderAck]:
        body = {
            "category": BYBIT_CATEGORY,
            "symbol": symbol,
            "side": side,
            "orderType": "Market",
            "qty": format_decimal_text(quantity),
            "positionIdx": position_idx_for(self._position_mode, direction),
        }
        return self._create_order(body, side=side, quantity=quantity, trigger_price=None)

    def submit_protective_order(
        self,
        symbol: str,
        side: OrderSide,
        kind: ProtectiveKind,
        trigger_price: float,
        quantity: float,
        *,
        direction: Direction,
    ) -> GatewayResult[OrderAck]:
        body = {
            "category": BYBIT_CATEGORY,
            "symbol": symbol,
            "side": side,
            "orderType": "Market",
            "qty": format_decimal_text(quantity),
            "triggerPrice": format_decimal_text(trigger_price),
            "triggerDirection": trigger_direction_for(kind, direction),
            "triggerBy": "LastPrice",
            "reduceOnly": True,
            "positionIdx": position_idx_for(self._position_mode, direction),
        }
        return self._create_order(body, side=side, quantity=quantity, trigger_price=float(trigger_price))

    def get_live_positions(self, symbol: Optional[str] = None) -> GatewayResult[Sequence[LivePosition]]:
        params: dict[str, Any] = {"category": BYBIT_CATEGORY}
        if symbol:
            params["symbol"] = symbol
        else:
            params["settleCoin"] = BYBIT_SETTLE_COIN
        response = self._request("GET", "/v5/position/list", params=params)
        if not response.ok:
            return response
        positions: list[LivePosition] = []
        for row in _result_list(response.value or {}):
            size = _to_float(row.get("size"))
            if size is None or size == 0.0:
                continue
            positions.append(
                LivePosition(
                    symbol=str(row.get("symbol") or ""),
                    side=str(row.get("side") or ""),
                    size=size,
                    avg_price=_to_float(row.get("avgPrice")) or 0.0,
                    mark_price=_to_float(row.get("markPrice")) or 0.0,
                    unrealized_pnl=_to_float(row.get("unrealisedPnl")) or 0.0,
                )
            )
        return GatewayResult(ok=True, reason_code="OK", value=tuple(positions))

    def get_recent_trades(self, symbol: str, limit: int) -> GatewayResult[Sequence[ExchangeTrade]]:
        response = self._request(
            "GET",
            "/v5/execution/list",
            params={"category": BYBIT_CATEGORY, "symbol": symbol, "limit": max(1, min(int(limit), 100))},
        )
        if not response.ok:
            return response
        trades: list[ExchangeTrade] = []
        for row in _result_list(response.value or {}):
            price = _to_float(row.get("execPrice"))
            executed_at = _ms_to_datetime(row.get("execTime"))
            if price is None or executed_at is None:
                continue
            trades.append(
                ExchangeTrade(
                    symbol=str(row.get("symbol") or symbol),
                    side=str(row.get("side") or ""),
                    exec_price=price,
                    timestamp=executed_at,
                )
            )
        return GatewayResult(ok=True, reason_code="OK", value=tuple(trades))

    def get_closed_pnl(self, symbol: str, limit: int) -> GatewayResult[Sequence[ClosedPnlRecord]]:
        response = self._request(
            "GET",
            "/v5/position/closed-pnl",
            params={"category": BYBIT_CATEGORY, "symbol": symbol, "limit": max(1, min(int(limit), 100))},
        )
        if not response.ok:
            return response
        records: list[ClosedPnlRecord] = []
        for row in _result_list(response.value or {}):
            exit_price = _to_float(row.get("avgExitPrice"))
            created_at = _ms_to_datetime(row.get("createdTime"))
            if exit_price is None or created_at is None:
                continue
            records.append(
                ClosedPnlRecord(
                    symbol=str(row.get("symbol") or symbol),
                    side=str(row.get("side") or ""),
                    avg_exit_price=exit_price,
                    closed_pnl=_to_float(row.get("closedPnl")) or 0.0,
                    created_at=created_at,
                )
            )
        return GatewayResult(ok=True, reason_code="OK", value=tuple(records))
