"""Console verb table and per-line dispatch."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import time
from typing import Callable

from shardconsole.config.schema import CommandsConfig
from shardconsole.console.broker import PrivilegedActorBroker
from shardconsole.core.access import AccessTier, parse_tier, tier_names
from shardconsole.core.audit import AuditLog
from shardconsole.core.credentials import CredentialStore
from shardconsole.core.errors import CommandError
from shardconsole.core.lockout import LockoutTracker
from shardconsole.core.logging import EventLogger, get_logger
from shardconsole.core.session import ConsoleSession, SessionRegistry
from shardconsole.simulation.base import Simulation


CommandHandler = Callable[[ConsoleSession, list[str]], list[str]]

FORWARD_NOTE = "Any other input is forwarded to the simulation command interpreter."


@dataclass(slots=True, frozen=True)
class CommandSpec:
    name: str
    handler: CommandHandler
    access: AccessTier = AccessTier.PLAYER
    usage: str = ""
    summary: str = ""
    aliases: tuple[str, ...] = ()
    ends_session: bool = False


def _duration(seconds: float) -> str:
    return str(timedelta(seconds=int(max(0.0, seconds))))


class CommandRouter:
    def __init__(
        self,
        config: CommandsConfig,
        *,
        registry: SessionRegistry,
        lockout: LockoutTracker,
        credentials: CredentialStore,
        simulation: Simulation,
        broker: PrivilegedActorBroker,
        audit: AuditLog,
        event_logger: EventLogger,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.registry = registry
        self.lockout = lockout
        self.credentials = credentials
        self.simulation = simulation
        self.broker = broker
        self.audit = audit
        self.event_logger = event_logger
        self.logger = get_logger("shardconsole.commands")
        self._clock = clock
        self._now = now
        self._started_at = clock()
        self._specs: list[CommandSpec] = []
        self._table: dict[str, CommandSpec] = {}
        self._register_builtin_commands()

    def register(self, spec: CommandSpec) -> None:
        for key in (spec.name, *spec.aliases):
            self._table[key.lower()] = spec
        self._specs.append(spec)

    def lookup(self, verb: str) -> CommandSpec | None:
        return self._table.get(verb.lower())

    def mark_started(self) -> None:
        self._started_at = self._clock()

    def dispatch(self, session: ConsoleSession, line: str) -> bool:
        """Handle one input line. Returns False when the session should end."""
        text = line.strip()
        if not text:
            return True
        self.registry.touch(session)

        parts = text.split()
        spec = self.lookup(parts[0])
        if spec is None:
            self._run(session, "forward", text, lambda: self._forward(session, text))
            return True

        if session.access < spec.access:
            session.channel.send_line(f"Insufficient access level for {spec.name}.")
            self._emit(session, spec.name, outcome="failure", payload={"reason": "insufficient_access"})
            return True

        if self._run(session, spec.name, text, lambda: spec.handler(session, parts[1:])):
            self._emit(session, spec.name, outcome="success")
        return not spec.ends_session

    def _run(self, session: ConsoleSession, verb: str, text: str, action: Callable[[], list[str]]) -> bool:
        try:
            lines = action()
        except CommandError as exc:
            self.logger.warning(
                "console command rejected",
                extra={
                    "service": "commands",
                    "session_id": session.session_id,
                    "user_name": session.username,
                    "payload": {"command": text, "error": str(exc)},
                },
            )
            session.channel.send_line(f"Error executing command: {exc}")
            self._emit(session, verb, outcome="failure", payload={"error": str(exc)})
            return False
        except Exception as exc:
            self.logger.exception(
                "console command failed",
                extra={
                    "service": "commands",
                    "session_id": session.session_id,
                    "user_name": session.username,
                    "payload": {"command": text},
                },
            )
            session.channel.send_line(f"Error executing command: {exc}")
            self._emit(session, verb, outcome="failure", payload={"error": str(exc)})
            return False
        if lines:
            session.channel.send_lines(lines)
        return True

    def _forward(self, session: ConsoleSession, text: str) -> list[str]:
        self.audit.record(f"Command: {session.username}: {text}")
        self.broker.execute(session, text)
        self._emit(session, "forward", outcome="success", payload={"command": text})
        return [f"Command submitted: {text}"]

    def _emit(
        self,
        session: ConsoleSession,
        verb: str,
        *,
        outcome: str,
        payload: dict[str, object] | None = None,
    ) -> None:
        self.event_logger.emit(
            message=f"console command {verb}",
            service="commands",
            action="command",
            session_id=session.session_id,
            source_ip=session.source_ip,
            source_port=session.source_port,
            username=session.username,
            outcome=outcome,
            event_type="access",
            payload={"verb": verb, **(payload or {})},
            level="INFO" if outcome == "success" else "WARNING",
        )

    # verbs

    def _register_builtin_commands(self) -> None:
        elevated = self.config.elevated_tier
        self.register(CommandSpec("help", self._cmd_help, usage="help", summary="Show this command list"))
        self.register(CommandSpec("status", self._cmd_status, usage="status", summary="Console and simulation status"))
        self.register(CommandSpec("who", self._cmd_who, usage="who", summary="List online players"))
        self.register(CommandSpec("sessions", self._cmd_sessions, usage="sessions", summary="List console sessions"))
        self.register(
            CommandSpec(
                "broadcast",
                self._cmd_broadcast,
                access=elevated,
                usage="broadcast <message>",
                summary="Send a message to every player",
            )
        )
        self.register(
            CommandSpec(
                "createaccount",
                self._cmd_createaccount,
                access=elevated,
                usage="createaccount <user> <pass> [tier]",
                summary="Create a simulation account",
            )
        )
        self.register(
            CommandSpec(
                "listaccounts",
                self._cmd_listaccounts,
                access=elevated,
                usage="listaccounts",
                summary="List simulation accounts",
            )
        )
        self.register(
            CommandSpec(
                "setaccess",
                self._cmd_setaccess,
                access=elevated,
                usage="setaccess <user> <tier>",
                summary="Change an account's access tier",
            )
        )
        self.register(
            CommandSpec(
                "exit",
                self._cmd_exit,
                usage="exit",
                summary="Disconnect",
                aliases=("quit",),
                ends_session=True,
            )
        )

    def _cmd_help(self, session: ConsoleSession, args: list[str]) -> list[str]:
        lines = ["=== Console Commands ==="]
        for spec in self._specs:
            if session.access < spec.access:
                continue
            tier = f" [{spec.access.label}+]" if spec.access > AccessTier.PLAYER else ""
            lines.append(f"  {spec.usage:<36} {spec.summary}{tier}")
        lines.append(FORWARD_NOTE)
        return lines

    def _cmd_status(self, session: ConsoleSession, args: list[str]) -> list[str]:
        stats = self.simulation.stats()
        sessions = self.registry.snapshot()
        failures = self.lockout.snapshot()
        return [
            "=== Console Status ===",
            f"Console uptime: {_duration(self._clock() - self._started_at)}",
            f"Simulation uptime: {_duration(float(stats.get('uptime_seconds', 0.0)))}",
            f"Online actors: {stats.get('online', 0)}",
            f"Total actors: {stats.get('actors', 0)}",
            f"Accounts: {stats.get('accounts', 0)}",
            f"Console sessions: {sessions['sessions']}/{sessions['capacity']}",
            f"Tracked failure records: {failures['tracked']} (locked: {failures['locked']})",
            f"Registered operators: {len(self.credentials)}",
        ]

    def _cmd_who(self, session: ConsoleSession, args: list[str]) -> list[str]:
        players = sorted(
            (actor for actor in self.simulation.online_actors() if actor.player),
            key=lambda actor: actor.name.lower(),
        )
        lines = [f"=== Online Players ({len(players)}) ==="]
        if not players:
            lines.append("No players online.")
            return lines
        for actor in players:
            tier = f" [{actor.access.label}]" if actor.access > AccessTier.PLAYER else ""
            lines.append(f"{actor.name}{tier} - {actor.location_label}")
        return lines

    def _cmd_sessions(self, session: ConsoleSession, args: list[str]) -> list[str]:
        active = self.registry.sessions()
        now = self._now()
        lines = [f"=== Active Console Sessions ({len(active)}) ==="]
        for other in active:
            marker = " (current)" if other is session else ""
            lines.append(f"{other.session_id}: {other.username or '(authenticating)'} from {other.endpoint}{marker}")
            connected = (now - other.connected_at).total_seconds()
            idle = self.registry.idle_seconds(other)
            lines.append(f"  Connected: {_duration(connected)}, Idle: {_duration(idle)}")
        return lines

    def _cmd_broadcast(self, session: ConsoleSession, args: list[str]) -> list[str]:
        if not args:
            raise CommandError("usage: broadcast <message>")
        message = " ".join(args)
        self.broker.submit(session, "broadcast", lambda: self.simulation.broadcast(f"[Broadcast] {message}"))
        self.audit.record(f"Broadcast by {session.username}: {message}")
        return [f"Broadcast sent: {message}"]

    def _cmd_createaccount(self, session: ConsoleSession, args: list[str]) -> list[str]:
        if len(args) not in {2, 3}:
            raise CommandError("usage: createaccount <user> <pass> [tier]")
        username, password = args[0], args[1]
        tier = self._parse_tier(args[2]) if len(args) == 3 else AccessTier.PLAYER
        if tier > session.access:
            raise CommandError(f"cannot grant {tier.label}, above your own access level")
        if self.simulation.get_account(username) is not None:
            raise CommandError(f"account '{username}' already exists")
        self.broker.submit(
            session,
            "create_account",
            lambda: self.simulation.create_account(username, password, tier),
        )
        self.audit.record(f"Account created: {username} ({tier.label}) by {session.username}")
        return [f"Account creation submitted: {username} ({tier.label})"]

    def _cmd_listaccounts(self, session: ConsoleSession, args: list[str]) -> list[str]:
        accounts = self.simulation.accounts()
        lines = [f"=== Accounts ({len(accounts)}) ==="]
        for account in accounts:
            created = account.created_at.strftime("%Y-%m-%d %H:%M:%S") if account.created_at else "unknown"
            lines.append(f"{account.username:<20} {account.access.label:<14} {created}")
        return lines

    def _cmd_setaccess(self, session: ConsoleSession, args: list[str]) -> list[str]:
        if len(args) != 2:
            raise CommandError("usage: setaccess <user> <tier>")
        username = args[0]
        tier = self._parse_tier(args[1])
        account = self.simulation.get_account(username)
        if account is None:
            raise CommandError(f"account '{username}' does not exist")
        if account.access > session.access:
            raise CommandError(f"cannot modify '{account.username}', above your own access level")
        if tier > session.access:
            raise CommandError(f"cannot grant {tier.label}, above your own access level")
        self.broker.submit(session, "set_access", lambda: self.simulation.set_access(username, tier))
        self.audit.record(
            f"Access changed: {account.username} {account.access.label} -> {tier.label} by {session.username}"
        )
        return [f"Access level update submitted: {account.username} -> {tier.label}"]

    def _cmd_exit(self, session: ConsoleSession, args: list[str]) -> list[str]:
        return []

    @staticmethod
    def _parse_tier(raw: str) -> AccessTier:
        try:
            return parse_tier(raw)
        except ValueError as exc:
            raise CommandError(f"{exc}; expected one of {', '.join(tier_names())}") from exc
