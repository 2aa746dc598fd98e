from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import config

_LOCK_GUARD = threading.Lock()
_PATH_LOCKS: dict[str, threading.Lock] = {}


def _resolve_max_bytes(max_bytes: int | None) -> int:
    value = int(max_bytes if max_bytes is not None else config.LOG_ROTATE_MAX_BYTES)
    return max(1024, value)


def _resolve_backup_count(backup_count: int | None) -> int:
    value = int(backup_count if backup_count is not None else config.LOG_ROTATE_BACKUP_COUNT)
    return max(0, value)


def _lock_for_path(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _LOCK_GUARD:
        lock = _PATH_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _PATH_LOCKS[key] = lock
        return lock


def _backup_path(path: Path, index: int) -> Path:
    return path.with_name(f"{path.name}.{index}")


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink()
    except OSError:
        pass


def _remove_stale_backups(path: Path, backup_count: int) -> None:
    # Backups above the limit can be left behind when the limit is lowered.
    for candidate in path.parent.glob(f"{path.name}.*"):
        suffix = candidate.name[len(path.name) + 1 :]
        if suffix.isdigit() and int(suffix) > backup_count:
            _remove_quietly(candidate)


def _shift_backups(path: Path, backup_count: int) -> Path | None:
    if backup_count <= 0:
        _remove_quietly(path)
        return None

    _remove_stale_backups(path, backup_count - 1)
    for index in range(backup_count - 1, 0, -1):
        source = _backup_path(path, index)
        if source.exists():
            try:
                os.replace(source, _backup_path(path, index + 1))
            except OSError:
                pass

    target = _backup_path(path, 1)
    try:
        os.replace(path, target)
    except OSError:
        return None
    return target


def _needs_rotation(path: Path, line: str, max_bytes: int) -> bool:
    if not path.exists():
        return False
    line_bytes = len(line.encode("utf-8", errors="replace"))
    return path.stat().st_size + line_bytes > max_bytes


def append_rotating_log_line(
    path: Path,
    line: str,
    *,
    max_bytes: int | None = None,
    backup_count: int | None = None,
) -> None:
    max_size = _resolve_max_bytes(max_bytes)
    max_backups = _resolve_backup_count(backup_count)
    with _lock_for_path(path):
        path.parent.mkdir(parents=True, exist_ok=True)
        rotated_to: Path | None = None
        rotated = False
        try:
            if _needs_rotation(path, line, max_size):
                rotated_to = _shift_backups(path, max_backups)
                rotated = True
        except OSError:
            rotated = False

        with open(path, "a", encoding="utf-8") as handle:
            if rotated:
                stamp = time.strftime("%Y-%m-%d %H:%M:%S")
                rotated_name = rotated_to.name if rotated_to is not None else "-"
                handle.write(
                    f"[{stamp}] [LOG_ROTATE] rotated_file={rotated_name} "
                    f"max_bytes={max_size} backups={max_backups}\n"
                )
            handle.write(line)
