from __future__ import annotations

import argparse
import json
import time

import config
from runtime_paths import get_signal_inbox_path


def build_signal_message(symbol: str, direction: str, signal_type: str) -> str:
    payload = {
        "timestamp": int(time.time() * 1000),
        "symbol": symbol.strip().upper(),
        "direction": direction.strip().upper(),
        "signalType": signal_type,
    }
    return (
        "🚨 SIGNAL DETECTED\n\n"
        f"<b>Symbol:</b> {payload['symbol']}\n"
        f"<b>Direction:</b> {payload['direction']}\n\n"
        f"{json.dumps(payload)}"
    )


def main() -> int:
    parser = argparse.ArgumentParser(description="Append a test signal for the running bot's signal loop.")
    parser.add_argument("--symbol", type=str, help="Instrument symbol, e.g. ADAUSDT")
    parser.add_argument("--direction", type=str, choices=("LONG", "SHORT", "long", "short"), help="Trade direction")
    parser.add_argument("--signal-type", type=str, default="MANUAL", help="signalType field of the JSON block")
    parser.add_argument(
        "--message-text",
        type=str,
        default=None,
        help="Raw message text; overrides --symbol/--direction",
    )
    args = parser.parse_args()

    if args.message_text is None and not (args.symbol and args.direction):
        parser.error("either --message-text or both --symbol and --direction are required")

    message_text = (
        args.message_text
        if args.message_text is not None
        else build_signal_message(args.symbol, args.direction, args.signal_type)
    )
    event = {
        "message_text": message_text,
        "received_at_local": int(time.time()),
    }
    inbox_path = get_signal_inbox_path(config.SIGNAL_INBOX_FILENAME)
    inbox_path.parent.mkdir(parents=True, exist_ok=True)
    with inbox_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(event, ensure_ascii=True))
        handle.write("\n")
    print(f"queued signal -> {inbox_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
