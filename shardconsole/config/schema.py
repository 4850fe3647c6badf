"""Dataclasses for top-level console config."""

from __future__ import annotations

from dataclasses import dataclass, field
import ipaddress
from typing import Any

from shardconsole.core.access import AccessTier, parse_tier
from shardconsole.core.errors import ConsoleConfigError


DEFAULT_ALLOWED_ADDRESSES = ["127.0.0.1", "::1"]
DEFAULT_PASSWORD_SALT = "ShardConsoleSalt"


@dataclass(slots=True)
class ListenerConfig:
    host: str = "0.0.0.0"
    port_start: int = 6003
    port_end: int = 6010
    allowed_addresses: list[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ADDRESSES))
    refusal_notice: bool = False
    join_timeout_seconds: float = 5.0


@dataclass(slots=True)
class SessionConfig:
    max_sessions: int = 5
    idle_timeout_seconds: float = 1800.0
    sweep_interval_seconds: float = 60.0


@dataclass(slots=True)
class OperatorConfig:
    username: str
    password_digest: str
    access: AccessTier = AccessTier.PLAYER


@dataclass(slots=True)
class AuthConfig:
    max_attempts: int = 3
    password_salt: str = DEFAULT_PASSWORD_SALT
    operators: list[OperatorConfig] = field(default_factory=list)


@dataclass(slots=True)
class LockoutConfig:
    max_failures: int = 3
    lockout_seconds: float = 900.0
    retention_seconds: float = 3600.0
    sweep_interval_seconds: float = 60.0


@dataclass(slots=True)
class CommandsConfig:
    elevated_tier: AccessTier = AccessTier.GAMEMASTER


@dataclass(slots=True)
class BrokerConfig:
    persist_actors: bool = False
    reuse_existing_actors: bool = True


@dataclass(slots=True)
class AuditConfig:
    path: str = "logs/console-audit.log"


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "shardconsole"


@dataclass(slots=True)
class SeedActorConfig:
    name: str
    access: AccessTier = AccessTier.PLAYER
    location: tuple[int, int, int] = (0, 0, 0)
    map_name: str = "Felucca"


@dataclass(slots=True)
class SimulationConfig:
    tick_interval_seconds: float = 0.05
    seed_actors: list[SeedActorConfig] = field(default_factory=list)


@dataclass(slots=True)
class AppConfig:
    environment: str = "development"
    listener: ListenerConfig = field(default_factory=ListenerConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    lockout: LockoutConfig = field(default_factory=LockoutConfig)
    commands: CommandsConfig = field(default_factory=CommandsConfig)
    broker: BrokerConfig = field(default_factory=BrokerConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)


VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_LOG_SINKS = {"stdout", "file"}


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name, {})
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConsoleConfigError(f"'{name}' must be an object")
    return raw


def _parse_bool_value(raw: Any, *, field_name: str, default: bool) -> bool:
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        normalized = raw.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ConsoleConfigError(f"'{field_name}' must be a boolean")


def _parse_positive_float(raw: Any, *, field_name: str, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError) as exc:
        raise ConsoleConfigError(f"'{field_name}' must be a number") from exc
    if value <= 0:
        raise ConsoleConfigError(f"'{field_name}' must be greater than zero")
    return value


def _parse_int_range(raw: Any, *, field_name: str, default: int, minimum: int, maximum: int) -> int:
    if raw is None:
        return default
    if isinstance(raw, bool):
        raise ConsoleConfigError(f"'{field_name}' must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConsoleConfigError(f"'{field_name}' must be an integer") from exc
    if value < minimum or value > maximum:
        raise ConsoleConfigError(f"'{field_name}' must be between {minimum} and {maximum}")
    return value


def _parse_tier_value(raw: Any, *, field_name: str, default: AccessTier) -> AccessTier:
    if raw is None:
        return default
    try:
        return parse_tier(raw)
    except ValueError as exc:
        raise ConsoleConfigError(f"'{field_name}': {exc}") from exc


def _parse_allowed_addresses(raw: Any) -> list[str]:
    source = DEFAULT_ALLOWED_ADDRESSES if raw is None else raw
    if not isinstance(source, list):
        raise ConsoleConfigError("'listener.allowed_addresses' must be a list")
    values: list[str] = []
    seen: set[str] = set()
    for item in source:
        token = str(item).strip()
        if not token or token in seen:
            continue
        try:
            ipaddress.ip_network(token, strict=False)
        except ValueError as exc:
            raise ConsoleConfigError(f"invalid allow-list entry '{token}'") from exc
        seen.add(token)
        values.append(token)
    return values


def _parse_operators(raw: Any) -> list[OperatorConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConsoleConfigError("'auth.operators' must be a list")
    operators: list[OperatorConfig] = []
    seen: set[str] = set()
    for item in raw:
        if not isinstance(item, dict):
            raise ConsoleConfigError("'auth.operators' entries must be objects")
        username = str(item.get("username", "")).strip()
        digest = str(item.get("password_digest", "")).strip()
        if not username or not digest:
            raise ConsoleConfigError("operator requires non-empty 'username' and 'password_digest'")
        if any(ch.isspace() for ch in username):
            raise ConsoleConfigError(f"operator '{username}' must not contain whitespace")
        key = username.lower()
        if key in seen:
            raise ConsoleConfigError(f"duplicate operator '{username}'")
        seen.add(key)
        operators.append(
            OperatorConfig(
                username=username,
                password_digest=digest,
                access=_parse_tier_value(
                    item.get("access"),
                    field_name=f"auth.operators[{username}].access",
                    default=AccessTier.PLAYER,
                ),
            )
        )
    return operators


def _parse_seed_actors(raw: Any) -> list[SeedActorConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConsoleConfigError("'simulation.seed_actors' must be a list")
    actors: list[SeedActorConfig] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ConsoleConfigError("'simulation.seed_actors' entries must be objects")
        name = str(item.get("name", "")).strip()
        if not name:
            raise ConsoleConfigError("seed actor requires a non-empty 'name'")
        location_raw = item.get("location", [0, 0, 0])
        if not isinstance(location_raw, list) or len(location_raw) != 3:
            raise ConsoleConfigError(f"seed actor '{name}' location must be a list of three integers")
        try:
            location = (int(location_raw[0]), int(location_raw[1]), int(location_raw[2]))
        except (TypeError, ValueError) as exc:
            raise ConsoleConfigError(f"seed actor '{name}' location must be a list of three integers") from exc
        actors.append(
            SeedActorConfig(
                name=name,
                access=_parse_tier_value(
                    item.get("access"),
                    field_name=f"simulation.seed_actors[{name}].access",
                    default=AccessTier.PLAYER,
                ),
                location=location,
                map_name=str(item.get("map", "Felucca")).strip() or "Felucca",
            )
        )
    return actors


def parse_config(data: dict[str, Any]) -> AppConfig:
    if not isinstance(data, dict):
        raise ConsoleConfigError("config root must be an object")
    environment = str(data.get("environment", "development")).strip() or "development"

    listener_raw = _section(data, "listener")
    port_start = _parse_int_range(
        listener_raw.get("port_start"), field_name="listener.port_start", default=6003, minimum=0, maximum=65535
    )
    port_end = _parse_int_range(
        listener_raw.get("port_end"), field_name="listener.port_end", default=max(port_start, 6010), minimum=0, maximum=65535
    )
    if port_end < port_start:
        raise ConsoleConfigError("listener.port_end must be greater than or equal to listener.port_start")
    listener = ListenerConfig(
        host=str(listener_raw.get("host", "0.0.0.0")).strip() or "0.0.0.0",
        port_start=port_start,
        port_end=port_end,
        allowed_addresses=_parse_allowed_addresses(listener_raw.get("allowed_addresses")),
        refusal_notice=_parse_bool_value(
            listener_raw.get("refusal_notice"), field_name="listener.refusal_notice", default=False
        ),
        join_timeout_seconds=_parse_positive_float(
            listener_raw.get("join_timeout_seconds"), field_name="listener.join_timeout_seconds", default=5.0
        ),
    )

    sessions_raw = _section(data, "sessions")
    sessions = SessionConfig(
        max_sessions=_parse_int_range(
            sessions_raw.get("max_sessions"), field_name="sessions.max_sessions", default=5, minimum=1, maximum=1000
        ),
        idle_timeout_seconds=_parse_positive_float(
            sessions_raw.get("idle_timeout_seconds"), field_name="sessions.idle_timeout_seconds", default=1800.0
        ),
        sweep_interval_seconds=_parse_positive_float(
            sessions_raw.get("sweep_interval_seconds"), field_name="sessions.sweep_interval_seconds", default=60.0
        ),
    )

    auth_raw = _section(data, "auth")
    password_salt = str(auth_raw.get("password_salt", DEFAULT_PASSWORD_SALT))
    if not password_salt:
        raise ConsoleConfigError("auth.password_salt must not be empty")
    auth = AuthConfig(
        max_attempts=_parse_int_range(
            auth_raw.get("max_attempts"), field_name="auth.max_attempts", default=3, minimum=1, maximum=10
        ),
        password_salt=password_salt,
        operators=_parse_operators(auth_raw.get("operators")),
    )

    lockout_raw = _section(data, "lockout")
    lockout = LockoutConfig(
        max_failures=_parse_int_range(
            lockout_raw.get("max_failures"), field_name="lockout.max_failures", default=3, minimum=1, maximum=1000
        ),
        lockout_seconds=_parse_positive_float(
            lockout_raw.get("lockout_seconds"), field_name="lockout.lockout_seconds", default=900.0
        ),
        retention_seconds=_parse_positive_float(
            lockout_raw.get("retention_seconds"), field_name="lockout.retention_seconds", default=3600.0
        ),
        sweep_interval_seconds=_parse_positive_float(
            lockout_raw.get("sweep_interval_seconds"), field_name="lockout.sweep_interval_seconds", default=60.0
        ),
    )

    commands_raw = _section(data, "commands")
    commands = CommandsConfig(
        elevated_tier=_parse_tier_value(
            commands_raw.get("elevated_tier"), field_name="commands.elevated_tier", default=AccessTier.GAMEMASTER
        ),
    )

    broker_raw = _section(data, "broker")
    broker = BrokerConfig(
        persist_actors=_parse_bool_value(
            broker_raw.get("persist_actors"), field_name="broker.persist_actors", default=False
        ),
        reuse_existing_actors=_parse_bool_value(
            broker_raw.get("reuse_existing_actors"), field_name="broker.reuse_existing_actors", default=True
        ),
    )

    audit_raw = _section(data, "audit")
    audit_path = str(audit_raw.get("path", "logs/console-audit.log")).strip()
    if not audit_path:
        raise ConsoleConfigError("audit.path must not be empty")
    audit = AuditConfig(path=audit_path)

    logging_raw = _section(data, "logging")
    level = str(logging_raw.get("level", "INFO")).upper()
    if level not in VALID_LOG_LEVELS:
        raise ConsoleConfigError(f"invalid log level '{level}'")
    sink = str(logging_raw.get("sink", "stdout")).lower()
    if sink not in VALID_LOG_SINKS:
        raise ConsoleConfigError(f"invalid log sink '{sink}'")
    file_path = logging_raw.get("file_path")
    logging_config = LoggingConfig(
        level=level,
        sink=sink,
        file_path=str(file_path) if file_path else None,
        service_name=str(logging_raw.get("service_name", "shardconsole")).strip() or "shardconsole",
    )

    simulation_raw = _section(data, "simulation")
    simulation = SimulationConfig(
        tick_interval_seconds=_parse_positive_float(
            simulation_raw.get("tick_interval_seconds"), field_name="simulation.tick_interval_seconds", default=0.05
        ),
        seed_actors=_parse_seed_actors(simulation_raw.get("seed_actors")),
    )

    return AppConfig(
        environment=environment,
        listener=listener,
        sessions=sessions,
        auth=auth,
        lockout=lockout,
        commands=commands,
        broker=broker,
        audit=audit,
        logging=logging_config,
        simulation=simulation,
    )
