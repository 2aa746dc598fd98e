from __future__ import annotations

import html
import math
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

from .exchange_models import format_decimal_text
from .ledger_models import ClosedPosition
from .risk_models import PositionParameters
from .statistics_models import DailyReport

SETTLE_ASSET_SUFFIX = "USDT"


def _text(value: object) -> str:
    return html.escape(str(value), quote=False)


def _signed(value: float, *, prefix: str = "") -> str:
    sign = "+" if value >= 0 else "-"
    return f"{sign}{prefix}{abs(value):.2f}"


def _direction_label(direction: str) -> str:
    return f"📈 {direction}" if direction == "LONG" else f"📉 {direction}"


def format_duration(seconds: float) -> str:
    try:
        total = float(seconds)
    except (TypeError, ValueError):
        return "0s"
    if not math.isfinite(total) or total < 0:
        return "0s"
    whole = int(total)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_position_opened(
    symbol: str,
    params: PositionParameters,
    *,
    balance: float,
    signal_time: Optional[datetime] = None,
    dry_run: bool = False,
) -> str:
    entry = params.entry_price
    if params.direction == "LONG":
        tp_percent = (params.take_profit_price - entry) / entry * 100.0
        sl_percent = (entry - params.stop_loss_price) / entry * 100.0
    else:
        tp_percent = (entry - params.take_profit_price) / entry * 100.0
        sl_percent = (params.stop_loss_price - entry) / entry * 100.0
    risk_share = params.risk_amount / balance * 100.0 if balance > 0 else 0.0
    base_asset = symbol[: -len(SETTLE_ASSET_SUFFIX)] if symbol.endswith(SETTLE_ASSET_SUFFIX) else symbol
    header = "🧪 <b>POSITION OPENED (DRY RUN)</b>" if dry_run else "✅ <b>POSITION OPENED</b>"
    lines = [
        header,
        "",
        f"<b>Symbol:</b> {_text(symbol)}",
        f"<b>Direction:</b> {_direction_label(params.direction)}",
        f"<b>Entry Price:</b> ${format_decimal_text(entry)}",
        f"<b>Quantity:</b> {params.quantity:,.8g} {_text(base_asset)}",
        f"<b>Leverage:</b> {params.leverage}x",
        "",
        f"🎯 <b>Take Profit:</b> ${format_decimal_text(params.take_profit_price)} (+{tp_percent:.2f}%)",
        f"🛑 <b>Stop Loss:</b> ${format_decimal_text(params.stop_loss_price)} (-{sl_percent:.2f}%)",
        f"💰 <b>Risk:</b> ${params.risk_amount:.2f} ({risk_share:.2f}% of balance)",
    ]
    if signal_time is not None:
        lines.extend(["", f"Signal from: {signal_time.astimezone(timezone.utc):%Y-%m-%d %H:%M:%S} UTC"])
    return "\n".join(lines)


def format_position_closed(closed: ClosedPosition) -> str:
    is_profit = closed.realized_pnl >= 0
    emoji = "🟢" if is_profit else "🔴"
    result_text = "PROFIT" if is_profit else "LOSS"
    return "\n".join(
        [
            f"{emoji} <b>POSITION CLOSED - {result_text}</b>",
            "",
            f"<b>Symbol:</b> {_text(closed.symbol)}",
            f"<b>Direction:</b> {closed.direction}",
            f"<b>Entry:</b> ${format_decimal_text(closed.entry_price)}",
            f"<b>Exit:</b> ${format_decimal_text(closed.exit_price)}",
            (
                f"<b>Result:</b> {_signed(closed.realized_pnl_percent)}% "
                f"({_signed(closed.realized_pnl, prefix='$')})"
            ),
            f"<b>Close reason:</b> {closed.close_reason}",
            "",
            f"<b>Duration:</b> {format_duration(closed.duration_seconds)}",
        ]
    )


def format_signal_ignored(
    symbol: str,
    direction: str,
    reason: str,
    info: Optional[Mapping[str, str]] = None,
) -> str:
    details = info or {}
    lines = [
        "⏰ <b>SIGNAL IGNORED</b>",
        "",
        f"<b>Symbol:</b> {_text(symbol)}",
        f"<b>Direction:</b> {_text(direction)}",
        f"<b>Reason:</b> {_text(reason)}",
    ]
    if details.get("current_time"):
        lines.extend(["", f"<b>Current time:</b> {_text(details['current_time'])} UTC"])
    if details.get("trading_hours"):
        lines.append(f"<b>Trading hours:</b> {_text(details['trading_hours'])} UTC")
    next_trading = details.get("next_trading")
    if next_trading and next_trading != "-":
        lines.append(f"<b>Next trading:</b> in {_text(next_trading)}")
    return "\n".join(lines)


def format_partial_protection_alert(
    symbol: str,
    direction: str,
    *,
    entry_order_id: str,
    missing_legs: Sequence[str],
    failure_reason: str,
) -> str:
    return "\n".join(
        [
            "🚨🚨 <b>PARTIAL PROTECTION FAILURE</b> 🚨🚨",
            "",
            f"<b>Symbol:</b> {_text(symbol)}",
            f"<b>Direction:</b> {_text(direction)}",
            f"<b>Entry order:</b> {_text(entry_order_id)}",
            f"<b>Missing:</b> {_text(', '.join(missing_legs) or '-')}",
            f"<b>Error:</b> {_text(failure_reason)}",
            "",
            "Position is LIVE without full protection. Manual action required.",
        ]
    )


def format_signal_error(symbol: str, direction: str, reason_code: str, failure_reason: str) -> str:
    return "\n".join(
        [
            "❌ <b>ERROR PROCESSING SIGNAL</b>",
            "",
            f"<b>Symbol:</b> {_text(symbol)}",
            f"<b>Direction:</b> {_text(direction)}",
            f"<b>Reason:</b> {_text(reason_code)}",
            f"<b>Error:</b> {_text(failure_reason)}",
        ]
    )


def format_daily_report(report: DailyReport) -> str:
    pnl_emoji = "💰" if report.total_pnl >= 0 else "📉"
    roi_emoji = "📈" if report.roi >= 0 else "📉"
    return "\n".join(
        [
            "📊 <b>DAILY REPORT</b>",
            "",
            f"<b>Date:</b> {report.date}",
            f"<b>Trading Hours:</b> {report.trading_hours} UTC",
            f"<b>Total Signals:</b> {report.total_signals}",
            f"<b>Signals Ignored (off-hours):</b> {report.signals_ignored}",
            f"<b>Total Trades:</b> {report.total_trades}",
            f"✅ <b>Wins:</b> {report.win_trades} ({report.win_rate:.1f}%)",
            f"❌ <b>Losses:</b> {report.lose_trades} ({report.loss_rate:.1f}%)",
            f"{pnl_emoji} <b>Total P&amp;L:</b> {_signed(report.total_pnl, prefix='$')}",
            f"{roi_emoji} <b>ROI:</b> {_signed(report.roi)}%",
            "",
            f"<b>Balance:</b> ${report.start_balance:.2f} → ${report.current_balance:.2f}",
        ]
    )


def format_bot_started(
    balance: float,
    *,
    dry_run: bool,
    trading_hours: Optional[str],
    allowed_symbols: Sequence[str],
) -> str:
    return "\n".join(
        [
            "🤖 <b>TRADING BOT STARTED</b>",
            "",
            f"Balance: {balance:.2f} USDT",
            f"Mode: {'DRY RUN' if dry_run else 'LIVE TRADING'}",
            f"Trading hours: {f'{trading_hours} UTC' if trading_hours else '24/7'}",
            f"Symbols: {_text(', '.join(allowed_symbols))}",
        ]
    )


def format_bot_stopped(open_positions: int, daily_trades: int) -> str:
    return "\n".join(
        [
            "🛑 <b>TRADING BOT STOPPED</b>",
            "",
            f"Open positions: {open_positions}",
            f"Total trades today: {daily_trades}",
        ]
    )
