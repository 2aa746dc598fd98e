from __future__ import annotations

import threading
from typing import Callable, Optional

from .event_logging import LogLevel, StructuredLogEvent, log_structured_event

STOP_JOIN_TIMEOUT_SECONDS_DEFAULT = 5.0


def _log_scheduler_event(
    name: str,
    event: str,
    result: str,
    *,
    state_before: str = "-",
    state_after: str = "-",
    failure_reason: str = "-",
    level: LogLevel = "INFO",
    **context: object,
) -> None:
    log_structured_event(
        StructuredLogEvent(
            component="scheduler",
            event=event,
            input_data=f"task={name}",
            decision="periodic_single_flight",
            result=result,
            state_before=state_before,
            state_after=state_after,
            failure_reason=failure_reason,
            level=level,
        ),
        **context,
    )


class PeriodicTask:
    """Runs ``tick`` on a daemon thread, waiting ``interval_seconds`` after each run.

    Ticks never overlap: the next wait only starts when the previous tick
    returns. An exception in a tick is logged and the loop carries on.
    """

    def __init__(self, name: str, tick: Callable[[], object], *, interval_seconds: float) -> None:
        self.name = name
        self._tick = tick
        self._interval_seconds = max(0.01, float(interval_seconds))
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive() and not self._stop_event.is_set()

    def start(self) -> bool:
        with self._lock:
            thread = self._thread
            if thread is not None and thread.is_alive():
                _log_scheduler_event(self.name, "start_skipped", "already_running", state_before="running", state_after="running")
                return False
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name=f"{self.name}-loop", daemon=True)
            self._thread.start()
        _log_scheduler_event(
            self.name,
            "started",
            "thread_started",
            state_before="stopped",
            state_after="running",
            interval_seconds=self._interval_seconds,
        )
        return True

    def stop(self, timeout: float = STOP_JOIN_TIMEOUT_SECONDS_DEFAULT) -> bool:
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread.is_alive() and threading.current_thread() is not thread:
            thread.join(timeout=timeout)
            if thread.is_alive():
                _log_scheduler_event(
                    self.name,
                    "stop_timeout",
                    "thread_still_alive",
                    state_before="stopping",
                    state_after="stopping",
                    failure_reason="join_timeout",
                    level="WARN",
                    timeout=timeout,
                )
                return False
        _log_scheduler_event(self.name, "stopped", "thread_joined", state_before="running", state_after="stopped")
        return True

    def run_once(self) -> None:
        try:
            self._tick()
        except Exception as exc:
            _log_scheduler_event(
                self.name,
                "tick_failed",
                "exception",
                failure_reason=repr(exc),
                level="ERROR",
            )

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_once()
            if self._stop_event.wait(self._interval_seconds):
                break
