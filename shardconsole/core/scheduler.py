"""Background interval worker used by the housekeeping sweeps."""

from __future__ import annotations

import threading
from typing import Callable

from shardconsole.core.logging import get_logger


class PeriodicTask:
    def __init__(self, name: str, interval_seconds: float, callback: Callable[[], object]) -> None:
        self.name = name
        self.interval_seconds = max(0.01, float(interval_seconds))
        self._callback = callback
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.logger = get_logger("shardconsole.scheduler")

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self._callback()
            except Exception:
                self.logger.exception("periodic task failed", extra={"service": self.name})
