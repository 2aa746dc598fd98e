from __future__ import annotations

import os
import tempfile
from pathlib import Path

RUNTIME_DIR_ENV = "SIGNAL_TRADE_HOME"
DEFAULT_LOG_FILENAME = "application.log"
DEFAULT_INBOX_FILENAME = "signal-inbox.jsonl"


def _bare_file_name(filename: str, fallback: str) -> str:
    return Path(str(filename or "").strip()).name or fallback


def get_runtime_dir() -> Path:
    """Return SIGNAL_TRADE_HOME when set, otherwise the project directory."""
    override = os.getenv(RUNTIME_DIR_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    return Path(__file__).resolve().parent


def get_log_path(filename: str, *, base_dir: str | Path | None = None) -> Path:
    """Build ``<base>/logs/<stem>_log_file/<filename>`` for one log stream."""
    file_name = _bare_file_name(filename, DEFAULT_LOG_FILENAME)
    stream_dir = f"{Path(file_name).stem or 'application'}_log_file"
    root = Path(base_dir).expanduser() if base_dir is not None else get_runtime_dir()
    return root / "logs" / stream_dir / file_name


def get_signal_inbox_path(filename: str) -> Path:
    # The injector CLI and the bot only share the file name.
    return Path(tempfile.gettempdir()) / _bare_file_name(filename, DEFAULT_INBOX_FILENAME)
