"""TCP listener with port-range fallback and pre-handshake admission gates."""

from __future__ import annotations

import errno
import ipaddress
import socket
import socketserver
import threading
from typing import Any, Callable, Iterable

from shardconsole.config.schema import ListenerConfig
from shardconsole.console.channel import LineChannel
from shardconsole.core.errors import BindExhaustedError, ConsoleStartupError
from shardconsole.core.lockout import LockoutTracker
from shardconsole.core.logging import EventLogger, get_logger
from shardconsole.core.session import ConsoleSession, SessionRegistry


_ADDRESS_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}

REFUSAL_NOTICE = "Connection refused."


def normalize_address(raw: str) -> str:
    """Canonical text form of a peer address; IPv4-mapped IPv6 collapses to IPv4."""
    token = str(raw).split("%", 1)[0].strip()
    try:
        parsed = ipaddress.ip_address(token)
    except ValueError:
        return token
    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return str(parsed.ipv4_mapped)
    return str(parsed)


class AddressAllowList:
    def __init__(self, entries: Iterable[str]) -> None:
        self._networks = [ipaddress.ip_network(str(entry).strip(), strict=False) for entry in entries]

    def __len__(self) -> int:
        return len(self._networks)

    def permits(self, address: str) -> bool:
        try:
            parsed = ipaddress.ip_address(normalize_address(address))
        except ValueError:
            return False
        return any(parsed.version == network.version and parsed in network for network in self._networks)


class _ConsoleTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True
    block_on_close = False

    def __init__(self, server_address: tuple[str, int], listener: "ConsoleListener") -> None:
        self.listener = listener
        self._admitted: dict[int, ConsoleSession] = {}
        self._admitted_lock = threading.Lock()
        if ":" in server_address[0]:
            self.address_family = socket.AF_INET6
        super().__init__(server_address, _ConsoleRequestHandler)

    def process_request(self, request: Any, client_address: Any) -> None:
        # Runs on the accept thread, so gate checks are serialized across accepts.
        session = self.listener.admit(request, client_address)
        if session is None:
            self.shutdown_request(request)
            return
        with self._admitted_lock:
            self._admitted[id(request)] = session
        try:
            super().process_request(request, client_address)
        except Exception:
            with self._admitted_lock:
                self._admitted.pop(id(request), None)
            self.listener.abandon(session)
            raise

    def claim_session(self, request: Any) -> ConsoleSession | None:
        with self._admitted_lock:
            return self._admitted.pop(id(request), None)


class _ConsoleRequestHandler(socketserver.BaseRequestHandler):
    server: _ConsoleTCPServer

    def handle(self) -> None:
        session = self.server.claim_session(self.request)
        if session is not None:
            self.server.listener.on_session(session)


class ConsoleListener:
    def __init__(
        self,
        config: ListenerConfig,
        *,
        registry: SessionRegistry,
        lockout: LockoutTracker,
        on_session: Callable[[ConsoleSession], None],
        event_logger: EventLogger | None = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.lockout = lockout
        self.on_session = on_session
        self.allow_list = AddressAllowList(config.allowed_addresses)
        self.event_logger = event_logger
        self.logger = get_logger("shardconsole.listener")
        self._server: _ConsoleTCPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    @property
    def bound_endpoint(self) -> tuple[str, int] | None:
        if self._server is None:
            return None
        address = self._server.server_address
        return str(address[0]), int(address[1])

    def start(self) -> tuple[str, int]:
        if self._server is not None:
            raise ConsoleStartupError("console listener already started")
        self._server = self._bind()
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            kwargs={"poll_interval": 0.2},
            name="console-listener",
            daemon=True,
        )
        self._thread.start()
        endpoint = self.bound_endpoint
        assert endpoint is not None
        self.logger.info(
            "console listener started",
            extra={"service": "listener", "payload": {"host": endpoint[0], "port": endpoint[1]}},
        )
        return endpoint

    def stop(self) -> None:
        server = self._server
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=self.config.join_timeout_seconds)
        self._thread = None
        self._server = None
        self.logger.info("console listener stopped", extra={"service": "listener"})

    def _bind(self) -> _ConsoleTCPServer:
        host = self.config.host
        for port in range(self.config.port_start, self.config.port_end + 1):
            try:
                return _ConsoleTCPServer((host, port), self)
            except OSError as exc:
                if exc.errno in _ADDRESS_IN_USE:
                    self.logger.warning(
                        "console port in use, trying next",
                        extra={"service": "listener", "payload": {"host": host, "port": port}},
                    )
                    continue
                raise ConsoleStartupError(f"failed to bind console listener on {host}:{port}: {exc}") from exc
        raise BindExhaustedError(host, self.config.port_start, self.config.port_end)

    def admit(self, request: socket.socket, client_address: Any) -> ConsoleSession | None:
        """Apply allow-list, capacity and lockout gates; return a reserved session or None."""
        source_ip = normalize_address(str(client_address[0]))
        source_port = int(client_address[1]) if len(client_address) > 1 else 0

        if not self.allow_list.permits(source_ip):
            self._refuse(request, source_ip, source_port, "not_allowed")
            return None

        session = self.registry.new_session(source_ip, source_port, LineChannel(request))
        if not self.registry.reserve(session):
            self._refuse(request, source_ip, source_port, "capacity")
            return None

        if self.lockout.is_locked_out(source_ip):
            self.registry.remove(session)
            self._refuse(request, source_ip, source_port, "locked_out")
            return None

        self._emit(
            message="console connection accepted",
            action="connection_accepted",
            outcome="success",
            session_id=session.session_id,
            source_ip=source_ip,
            source_port=source_port,
        )
        return session

    def abandon(self, session: ConsoleSession) -> None:
        self.registry.remove(session)
        session.channel.close()

    def _refuse(self, request: socket.socket, source_ip: str, source_port: int, reason: str) -> None:
        if self.config.refusal_notice:
            try:
                request.sendall(f"{REFUSAL_NOTICE}\r\n".encode("utf-8"))
            except OSError:
                pass
        self._emit(
            message="console connection refused",
            action="connection_refused",
            outcome="failure",
            source_ip=source_ip,
            source_port=source_port,
            payload={"reason": reason},
            level="WARNING",
        )

    def _emit(
        self,
        *,
        message: str,
        action: str,
        outcome: str,
        source_ip: str,
        source_port: int,
        session_id: str | None = None,
        payload: dict[str, object] | None = None,
        level: str = "INFO",
    ) -> None:
        if self.event_logger is None:
            return
        self.event_logger.emit(
            message=message,
            service="listener",
            action=action,
            session_id=session_id,
            source_ip=source_ip,
            source_port=source_port,
            outcome=outcome,
            event_type="connection",
            payload=payload,
            level=level,
        )
