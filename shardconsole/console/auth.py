"""Username/password handshake for a freshly admitted console session."""

from __future__ import annotations

from enum import Enum

from shardconsole.config.schema import AuthConfig
from shardconsole.core.audit import AuditLog
from shardconsole.core.credentials import CredentialStore
from shardconsole.core.lockout import LockoutTracker
from shardconsole.core.logging import EventLogger
from shardconsole.core.session import ConsoleSession


USERNAME_PROMPT = "Username: "
PASSWORD_PROMPT = "Password: "
INVALID_CREDENTIALS = "Invalid credentials."
AUTH_FAILED_NOTICE = "Authentication failed. Goodbye!"


class AuthOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    LOCKED_OUT = "locked_out"
    DISCONNECTED = "disconnected"


class Authenticator:
    def __init__(
        self,
        config: AuthConfig,
        *,
        credentials: CredentialStore,
        lockout: LockoutTracker,
        audit: AuditLog,
        event_logger: EventLogger,
    ) -> None:
        self.config = config
        self.credentials = credentials
        self.lockout = lockout
        self.audit = audit
        self.event_logger = event_logger

    def authenticate(self, session: ConsoleSession) -> AuthOutcome:
        channel = session.channel
        attempts = 0
        while attempts < self.config.max_attempts:
            username = channel.prompt(USERNAME_PROMPT)
            if username is None:
                return AuthOutcome.DISCONNECTED
            username = username.strip()
            if not username:
                channel.send_line("Invalid username.")
                attempts += 1
                continue

            password = channel.prompt(PASSWORD_PROMPT)
            if password is None:
                return AuthOutcome.DISCONNECTED
            password = password.strip()
            if not password:
                channel.send_line("Invalid password.")
                attempts += 1
                continue

            result = self.credentials.authenticate(username, password)
            if result is not None:
                session.username = result.username
                session.access = result.access
                self.lockout.reset(session.source_ip)
                last_login = (
                    result.previous_login.strftime("%Y-%m-%d %H:%M:%S") if result.previous_login else "First time"
                )
                channel.send_lines(
                    [
                        f"Welcome, {result.username}! Access Level: {result.access.label}",
                        f"Last login: {last_login}",
                        "Type 'help' for available commands, 'exit' to disconnect.",
                        "",
                    ]
                )
                self.audit.record(
                    f"Successful login: {result.username}@{session.endpoint} (Session: {session.session_id})"
                )
                self._emit(session, username=result.username, outcome="success", attempt=attempts + 1)
                return AuthOutcome.SUCCESS

            attempts += 1
            failure = self.lockout.record_failure(session.source_ip)
            channel.send_line(INVALID_CREDENTIALS)
            self.audit.record(f"Failed login attempt: {username}@{session.endpoint}")
            self._emit(session, username=username, outcome="failure", attempt=attempts)
            if failure.locked:
                self.audit.record(f"IP lockout: {session.source_ip} after {failure.count} failed attempts")
                channel.send_line(AUTH_FAILED_NOTICE)
                return AuthOutcome.LOCKED_OUT

        self.audit.record(f"Too many failed attempts: {session.endpoint}")
        channel.send_line(AUTH_FAILED_NOTICE)
        return AuthOutcome.FAILED

    def _emit(self, session: ConsoleSession, *, username: str, outcome: str, attempt: int) -> None:
        self.event_logger.emit(
            message=f"console login {outcome}",
            service="auth",
            action="auth_attempt",
            session_id=session.session_id,
            source_ip=session.source_ip,
            source_port=session.source_port,
            username=username,
            outcome=outcome,
            event_type="authentication",
            payload={"attempt": attempt},
            level="INFO" if outcome == "success" else "WARNING",
        )
