"""Per-address failed-login tracking with time-boxed lockouts."""

from __future__ import annotations

from dataclasses import dataclass
import threading
import time
from typing import Callable

from shardconsole.config.schema import LockoutConfig
from shardconsole.core.logging import get_logger


@dataclass(slots=True)
class FailureRecord:
    address: str
    count: int = 0
    last_failure: float = 0.0
    locked_until: float = 0.0


@dataclass(slots=True)
class FailureOutcome:
    count: int
    locked: bool
    locked_until: float = 0.0


class LockoutTracker:
    def __init__(self, config: LockoutConfig | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or LockoutConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._records: dict[str, FailureRecord] = {}
        self.logger = get_logger("shardconsole.lockout")

    def record_failure(self, address: str) -> FailureOutcome:
        now = self._clock()
        with self._lock:
            record = self._records.get(address)
            if record is None:
                record = FailureRecord(address=address)
                self._records[address] = record
            elif record.locked_until and now >= record.locked_until:
                record.count = 0
                record.locked_until = 0.0
            record.count += 1
            record.last_failure = now
            newly_locked = False
            if record.count >= self.config.max_failures and not record.locked_until:
                record.locked_until = now + self.config.lockout_seconds
                newly_locked = True
            outcome = FailureOutcome(
                count=record.count,
                locked=bool(record.locked_until) and now < record.locked_until,
                locked_until=record.locked_until,
            )
        if newly_locked:
            self.logger.warning(
                "address locked out",
                extra={
                    "service": "lockout",
                    "source_ip": address,
                    "payload": {"failures": outcome.count, "lockout_seconds": self.config.lockout_seconds},
                },
            )
        return outcome

    def is_locked_out(self, address: str) -> bool:
        now = self._clock()
        with self._lock:
            record = self._records.get(address)
            if record is None or not record.locked_until:
                return False
            if now < record.locked_until:
                return True
            record.count = 0
            record.locked_until = 0.0
            return False

    def reset(self, address: str) -> None:
        with self._lock:
            self._records.pop(address, None)

    def failure_count(self, address: str) -> int:
        with self._lock:
            record = self._records.get(address)
            return record.count if record else 0

    def sweep(self, now: float | None = None) -> list[str]:
        """Evict records whose last failure is older than the retention horizon."""
        current = self._clock() if now is None else now
        horizon = self.config.retention_seconds
        with self._lock:
            expired = [
                address
                for address, record in self._records.items()
                if current - record.last_failure > horizon and not (record.locked_until and current < record.locked_until)
            ]
            for address in expired:
                del self._records[address]
        if expired:
            self.logger.debug(
                "failure records evicted",
                extra={"service": "lockout", "payload": {"evicted": len(expired)}},
            )
        return expired

    def snapshot(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            locked = sum(1 for record in self._records.values() if record.locked_until and now < record.locked_until)
            return {"tracked": len(self._records), "locked": locked}
