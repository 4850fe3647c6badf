"""Console server: wires the listener, handshake, router, broker and sweeps."""

from __future__ import annotations

from datetime import datetime
import threading
import time
from typing import Any, Callable

from shardconsole.config.schema import AppConfig
from shardconsole.console.auth import AuthOutcome, Authenticator
from shardconsole.console.broker import PrivilegedActorBroker
from shardconsole.console.commands import CommandRouter
from shardconsole.console.listener import ConsoleListener
from shardconsole.core.audit import AuditLog
from shardconsole.core.credentials import CredentialStore, operators_with_default_passwords
from shardconsole.core.errors import ConsoleStartupError
from shardconsole.core.lockout import LockoutTracker
from shardconsole.core.logging import EventLogger, configure_logging, get_logger
from shardconsole.core.scheduler import PeriodicTask
from shardconsole.core.session import ConsoleSession, SessionRegistry, SessionState, TerminationReason
from shardconsole.simulation.base import Simulation
from shardconsole.simulation.world import InMemoryWorld


BANNER = "=== Shard Console ==="
GOODBYE_NOTICE = "Goodbye!"
TIMEOUT_NOTICE = "Session timed out. Goodbye!"
SHUTDOWN_NOTICE = "Server is shutting down. Goodbye!"


class ConsoleServer:
    def __init__(
        self,
        config: AppConfig,
        *,
        simulation: Simulation | None = None,
        registry: SessionRegistry | None = None,
        lockout: LockoutTracker | None = None,
        credentials: CredentialStore | None = None,
        audit: AuditLog | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self._validate_non_development_credentials()
        configure_logging(config.logging)
        self.logger = get_logger("shardconsole.server", level=config.logging.level)
        self.event_logger = EventLogger(
            logger=get_logger("shardconsole.events", level=config.logging.level),
            service_name=config.logging.service_name,
        )

        self._owns_simulation = simulation is None
        self.simulation = simulation if simulation is not None else InMemoryWorld(config.simulation)
        self.registry = registry if registry is not None else SessionRegistry(config.sessions, clock=clock)
        self.lockout = lockout if lockout is not None else LockoutTracker(config.lockout, clock=clock)
        self.credentials = (
            credentials
            if credentials is not None
            else CredentialStore(salt=config.auth.password_salt, operators=config.auth.operators, now=now)
        )
        self.audit = audit if audit is not None else AuditLog(config.audit.path, now=now)

        self.broker = PrivilegedActorBroker(self.simulation, config.broker, event_logger=self.event_logger)
        self.authenticator = Authenticator(
            config.auth,
            credentials=self.credentials,
            lockout=self.lockout,
            audit=self.audit,
            event_logger=self.event_logger,
        )
        self.router = CommandRouter(
            config.commands,
            registry=self.registry,
            lockout=self.lockout,
            credentials=self.credentials,
            simulation=self.simulation,
            broker=self.broker,
            audit=self.audit,
            event_logger=self.event_logger,
            clock=clock,
            now=now,
        )
        self.listener = ConsoleListener(
            config.listener,
            registry=self.registry,
            lockout=self.lockout,
            on_session=self._serve,
            event_logger=self.event_logger,
        )
        self._session_sweeper = PeriodicTask(
            "console-session-sweep", config.sessions.sweep_interval_seconds, self.sweep_sessions
        )
        self._failure_sweeper = PeriodicTask(
            "console-failure-sweep", config.lockout.sweep_interval_seconds, self.sweep_failures
        )
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()
        self._started = False

    def _validate_non_development_credentials(self) -> None:
        environment = str(self.config.environment).strip().lower()
        if environment == "development":
            return
        offenders = operators_with_default_passwords(self.config.auth.operators, self.config.auth.password_salt)
        if offenders:
            raise ConsoleStartupError(
                "refusing startup outside development with default credentials configured: "
                f"operators {', '.join(sorted(offenders))}"
            )

    @property
    def running(self) -> bool:
        return self._started

    @property
    def bound_endpoint(self) -> tuple[str, int] | None:
        return self.listener.bound_endpoint

    def start(self) -> tuple[str, int]:
        if self._started:
            raise ConsoleStartupError("console server already started")
        if self._owns_simulation:
            self.simulation.start()
        try:
            host, port = self.listener.start()
        except ConsoleStartupError:
            if self._owns_simulation:
                self.simulation.stop()
            raise
        self.router.mark_started()
        self._session_sweeper.start()
        self._failure_sweeper.start()
        self._started = True
        self.audit.record(f"Console started on {host}:{port}")
        self.event_logger.emit(
            message="console started",
            service="server",
            action="service_start",
            event_type="start",
            payload={"host": host, "port": port, "max_sessions": self.registry.capacity},
        )
        return host, port

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        timeout = self.config.listener.join_timeout_seconds
        self.listener.stop()
        self._session_sweeper.stop(timeout=timeout)
        self._failure_sweeper.stop(timeout=timeout)

        drained = self.registry.drain()
        for session in drained:
            self._end_session(session, TerminationReason.SHUTDOWN, SHUTDOWN_NOTICE)
        self._join_workers(timeout)

        if self._owns_simulation:
            self.simulation.stop(timeout=timeout)
        self.audit.record("Console stopped")
        self.event_logger.emit(
            message="console stopped",
            service="server",
            action="service_stop",
            event_type="end",
            payload={"sessions_closed": len(drained)},
        )

    def status(self) -> dict[str, Any]:
        endpoint = self.bound_endpoint
        return {
            "running": self._started,
            "environment": self.config.environment,
            "endpoint": {"host": endpoint[0], "port": endpoint[1]} if endpoint else None,
            "sessions": self.registry.snapshot(),
            "active_sessions": [session.describe() for session in self.registry.sessions()],
            "lockout": self.lockout.snapshot(),
            "operators": len(self.credentials),
            "simulation": self.simulation.stats(),
        }

    # housekeeping

    def sweep_sessions(self, now: float | None = None) -> int:
        expired = self.registry.sweep_idle(now)
        for session in expired:
            self.audit.record(f"Session timeout: {session.username or '(unauthenticated)'}@{session.endpoint}")
            self._end_session(session, TerminationReason.IDLE_TIMEOUT, TIMEOUT_NOTICE)
        return len(expired)

    def sweep_failures(self, now: float | None = None) -> int:
        return len(self.lockout.sweep(now))

    # per-connection worker

    def _serve(self, session: ConsoleSession) -> None:
        worker = threading.current_thread()
        with self._workers_lock:
            self._workers.add(worker)
        try:
            self._run_session(session)
        except Exception:
            self.logger.exception(
                "console session worker failed",
                extra={"service": "server", "session_id": session.session_id, "source_ip": session.source_ip},
            )
            self._end_session(session, TerminationReason.DISCONNECT)
        finally:
            with self._workers_lock:
                self._workers.discard(worker)

    def _run_session(self, session: ConsoleSession) -> None:
        channel = session.channel
        channel.send_lines(
            [
                BANNER,
                f"Session ID: {session.session_id}",
                f"Connected: {session.connected_at.strftime('%Y-%m-%d %H:%M:%S')}",
                "",
            ]
        )
        if not session.advance(SessionState.AUTHENTICATING):
            return

        outcome = self.authenticator.authenticate(session)
        if outcome is AuthOutcome.DISCONNECTED:
            self._end_session(session, TerminationReason.DISCONNECT)
            return
        if outcome is not AuthOutcome.SUCCESS:
            self._end_session(session, TerminationReason.AUTH_FAILED)
            return
        self.registry.touch(session)
        if not session.advance(SessionState.ACTIVE):
            return

        while not session.terminated:
            line = channel.recvline()
            if line is None:
                self._end_session(session, TerminationReason.DISCONNECT)
                return
            if session.terminated:
                return
            if not self.router.dispatch(session, line):
                self._end_session(session, TerminationReason.EXIT, GOODBYE_NOTICE)
                return

    def _end_session(self, session: ConsoleSession, reason: TerminationReason, notice: str | None = None) -> bool:
        """Tear a session down once; later callers for the same session are no-ops."""
        if not session.terminate(reason):
            return False
        self.registry.remove(session)
        if notice:
            session.channel.send_line(notice)
        self.broker.release(session)
        session.channel.close()

        if session.authenticated:
            self.audit.record(f"Session ended: {session.username}@{session.endpoint} (Session: {session.session_id})")
        self.event_logger.emit(
            message="console session ended",
            service="server",
            action="session_end",
            session_id=session.session_id,
            source_ip=session.source_ip,
            source_port=session.source_port,
            username=session.username,
            event_type="end",
            payload={"reason": reason.value},
        )
        return True

    def _join_workers(self, timeout: float) -> None:
        deadline = time.monotonic() + timeout
        with self._workers_lock:
            workers = [worker for worker in self._workers if worker is not threading.current_thread()]
        for worker in workers:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            worker.join(timeout=remaining)
        with self._workers_lock:
            still_running = sum(1 for worker in self._workers if worker.is_alive())
        if still_running:
            self.logger.warning(
                "console workers still running after shutdown",
                extra={"service": "server", "payload": {"workers": still_running}},
            )
