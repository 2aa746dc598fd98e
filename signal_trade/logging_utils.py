from __future__ import annotations

import os
import time
from pathlib import Path

import config
from log_rotation import append_rotating_log_line
from runtime_paths import get_log_path

_TRUTHY_ENV_VALUES = frozenset({"1", "true", "yes", "on"})


def resolve_trade_log_path() -> Path:
    override = os.environ.get(config.TRADE_LOG_PATH_ENV, "").strip()
    if override:
        return Path(override)
    return get_log_path(config.TRADE_LOG_FILENAME)


def _echo_enabled() -> bool:
    return os.environ.get(config.TRADE_LOG_ECHO_ENV, "").strip().lower() in _TRUTHY_ENV_VALUES


def write_trade_log_line(message: str) -> None:
    timestamp = time.strftime("%Y-%m-%d %H:%M:%S")
    line = f"[{timestamp}] {message}\n"
    if _echo_enabled():
        print(line, end="", flush=True)
    try:
        append_rotating_log_line(resolve_trade_log_path(), line)
    except Exception:
        # Logging must never break runtime flow.
        pass
