"""Append-only audit trail of logins, lockouts and executed commands."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
import threading
from typing import Callable

from shardconsole.core.logging import get_logger


class AuditLog:
    """Writes one ``[YYYY-MM-DD HH:MM:SS] text`` line per event.

    Write failures are logged and dropped; the audit sink never takes the
    console down with it.
    """

    def __init__(self, path: str | Path, *, now: Callable[[], datetime] = datetime.now) -> None:
        self.path = Path(path)
        self._now = now
        self._lock = threading.Lock()
        self.logger = get_logger("shardconsole.audit")

    def record(self, message: str) -> None:
        line = f"[{self._now().strftime('%Y-%m-%d %H:%M:%S')}] {message.replace(chr(10), ' ').replace(chr(13), ' ')}"
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(line)
                    handle.write("\n")
            except OSError as exc:
                self.logger.error(
                    "audit write failed",
                    extra={"service": "audit", "payload": {"path": str(self.path), "error": str(exc)}},
                )

    def tail(self, limit: int = 20) -> list[str]:
        limit = max(0, int(limit))
        with self._lock:
            if not self.path.exists():
                return []
            lines = self.path.read_text(encoding="utf-8").splitlines()
        return lines[-limit:] if limit else []
