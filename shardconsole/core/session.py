"""Console session model and the concurrency-capped session registry."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import threading
import time
from typing import Any, Callable
from uuid import uuid4

from shardconsole.config.schema import SessionConfig
from shardconsole.core.access import AccessTier
from shardconsole.core.logging import get_logger


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    TERMINATED = "terminated"


class TerminationReason(str, Enum):
    EXIT = "exit"
    IDLE_TIMEOUT = "idle_timeout"
    SHUTDOWN = "shutdown"
    DISCONNECT = "disconnect"
    AUTH_FAILED = "auth_failed"
    REJECTED = "rejected"


def new_session_id() -> str:
    return uuid4().hex[:8]


@dataclass(slots=True, eq=False)
class ConsoleSession:
    source_ip: str
    source_port: int = 0
    channel: Any = None
    session_id: str = field(default_factory=new_session_id)
    connected_at: datetime = field(default_factory=datetime.now)
    last_activity: float = field(default_factory=time.monotonic)
    username: str | None = None
    access: AccessTier = AccessTier.PLAYER
    state: SessionState = SessionState.CONNECTING
    termination_reason: TerminationReason | None = None
    owned_actor: Any = None
    _state_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def authenticated(self) -> bool:
        return self.username is not None

    @property
    def terminated(self) -> bool:
        return self.state is SessionState.TERMINATED

    @property
    def endpoint(self) -> str:
        return f"{self.source_ip}:{self.source_port}"

    def advance(self, state: SessionState) -> bool:
        """Move forward in the lifecycle; a terminated session never moves again."""
        with self._state_lock:
            if self.state is SessionState.TERMINATED:
                return False
            self.state = state
            return True

    def terminate(self, reason: TerminationReason) -> bool:
        """Mark the session terminated. Only the first caller gets True."""
        with self._state_lock:
            if self.state is SessionState.TERMINATED:
                return False
            self.state = SessionState.TERMINATED
            self.termination_reason = reason
            return True

    def describe(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "username": self.username,
            "access": self.access.label if self.username else None,
            "source_ip": self.source_ip,
            "source_port": self.source_port,
            "state": self.state.value,
            "connected_at": self.connected_at.strftime("%Y-%m-%d %H:%M:%S"),
        }


class SessionRegistry:
    def __init__(self, config: SessionConfig | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.config = config or SessionConfig()
        self.logger = get_logger("shardconsole.session")
        self._clock = clock
        self._lock = threading.RLock()
        self._sessions: OrderedDict[str, ConsoleSession] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self.config.max_sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        if not isinstance(session, ConsoleSession):
            return False
        with self._lock:
            return self._sessions.get(session.session_id) is session

    def new_session(self, source_ip: str, source_port: int = 0, channel: Any = None) -> ConsoleSession:
        return ConsoleSession(
            source_ip=source_ip,
            source_port=source_port,
            channel=channel,
            last_activity=self._clock(),
        )

    def reserve(self, session: ConsoleSession) -> bool:
        """Admit a session only while below the cap; check and insert are one step."""
        with self._lock:
            if session.session_id in self._sessions:
                return False
            if len(self._sessions) >= self.config.max_sessions:
                return False
            self._sessions[session.session_id] = session
            return True

    def remove(self, session: ConsoleSession) -> bool:
        with self._lock:
            if self._sessions.get(session.session_id) is not session:
                return False
            del self._sessions[session.session_id]
            return True

    def get(self, session_id: str) -> ConsoleSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def sessions(self) -> list[ConsoleSession]:
        with self._lock:
            snapshot = list(self._sessions.values())
        return sorted(snapshot, key=lambda item: item.connected_at)

    def touch(self, session: ConsoleSession) -> None:
        session.last_activity = self._clock()

    def idle_seconds(self, session: ConsoleSession) -> float:
        return max(0.0, self._clock() - session.last_activity)

    def sweep_idle(self, now: float | None = None) -> list[ConsoleSession]:
        """Remove and return sessions idle longer than the timeout."""
        current = self._clock() if now is None else now
        timeout = self.config.idle_timeout_seconds
        with self._lock:
            expired = [
                session
                for session in self._sessions.values()
                if current - session.last_activity > timeout
            ]
            for session in expired:
                del self._sessions[session.session_id]
        return expired

    def drain(self) -> list[ConsoleSession]:
        with self._lock:
            drained = list(self._sessions.values())
            self._sessions.clear()
        return drained

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            active = sum(1 for session in self._sessions.values() if session.state is SessionState.ACTIVE)
            return {"sessions": len(self._sessions), "authenticated": active, "capacity": self.config.max_sessions}
