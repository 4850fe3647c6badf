"""In-memory reference world with a single-threaded update loop.

Stands in for the host simulation when the console runs standalone and in
tests. All mutation happens on the ``simulation-loop`` thread; other threads
only read copies taken under ``_state_lock``.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
import hashlib
import queue
import threading
import time
from typing import Any, Callable

from shardconsole.config.schema import SimulationConfig
from shardconsole.core.access import AccessTier, parse_tier
from shardconsole.core.errors import SimulationError
from shardconsole.core.logging import get_logger
from shardconsole.simulation.base import Account, Actor, Simulation


COMMAND_PREFIX = "["

CommandHandler = Callable[[Actor, list[str]], None]


@dataclass(slots=True)
class _WorldCommand:
    name: str
    access: AccessTier
    handler: CommandHandler


@dataclass(slots=True)
class _StoredAccount:
    username: str
    password_digest: str
    access: AccessTier
    created_at: datetime = field(default_factory=datetime.now)


class InMemoryWorld(Simulation):
    _MAX_JOURNAL = 500

    def __init__(self, config: SimulationConfig | None = None) -> None:
        self.config = config or SimulationConfig()
        self.logger = get_logger("shardconsole.simulation")
        self._tasks: queue.Queue[tuple[str, Callable[[], Any]] | None] = queue.Queue()
        self._state_lock = threading.RLock()
        self._accounts: dict[str, _StoredAccount] = {}
        self._actors: dict[int, Actor] = {}
        self._next_actor_id = 1
        self._thread: threading.Thread | None = None
        self._started_at = time.monotonic()
        self._ticks = 0
        self._saves = 0
        self.journal: deque[dict[str, Any]] = deque(maxlen=self._MAX_JOURNAL)
        self.broadcasts: deque[str] = deque(maxlen=self._MAX_JOURNAL)
        self._commands: dict[str, _WorldCommand] = {}
        self._register_builtin_commands()
        for seed in self.config.seed_actors:
            self.add_actor(
                Actor(
                    name=seed.name,
                    access=seed.access,
                    location=seed.location,
                    map_name=seed.map_name,
                )
            )

    # lifecycle

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._started_at = time.monotonic()
        self._thread = threading.Thread(target=self._run, name="simulation-loop", daemon=True)
        self._thread.start()
        self.logger.info("simulation loop started", extra={"service": "simulation"})

    def stop(self, timeout: float = 2.0) -> None:
        if not self._thread:
            return
        # tasks queued before the sentinel still run
        self._tasks.put(None)
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        self.logger.info("simulation loop stopped", extra={"service": "simulation"})

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def in_loop(self) -> bool:
        return self._thread is not None and threading.current_thread() is self._thread

    def submit(self, task: Callable[[], Any], *, label: str = "task") -> None:
        self._tasks.put((label, task))

    def wait_idle(self, timeout: float = 2.0) -> bool:
        """Block until every task submitted before this call has run."""
        if not self.running:
            return False
        done = threading.Event()
        self.submit(done.set, label="wait_idle")
        return done.wait(timeout)

    def _run(self) -> None:
        interval = self.config.tick_interval_seconds
        while True:
            try:
                item = self._tasks.get(timeout=interval)
            except queue.Empty:
                self._ticks += 1
                continue
            if item is None:
                break
            label, task = item
            try:
                task()
            except Exception:
                self.logger.exception(
                    "simulation task failed",
                    extra={"service": "simulation", "payload": {"task": label}},
                )

    def _require_loop(self) -> None:
        if self.running and not self.in_loop():
            raise SimulationError("world state may only be mutated from the simulation loop")

    # queries

    def get_account(self, username: str) -> Account | None:
        with self._state_lock:
            stored = self._accounts.get(username.strip().lower())
            return self._account_view(stored) if stored else None

    def accounts(self) -> list[Account]:
        with self._state_lock:
            views = [self._account_view(stored) for stored in self._accounts.values()]
        return sorted(views, key=lambda item: item.username.lower())

    def get_actor(self, actor_id: int) -> Actor | None:
        with self._state_lock:
            actor = self._actors.get(actor_id)
            return replace(actor) if actor else None

    def actors(self) -> list[Actor]:
        with self._state_lock:
            return [replace(actor) for actor in self._actors.values()]

    def stats(self) -> dict[str, Any]:
        with self._state_lock:
            online = sum(1 for actor in self._actors.values() if actor.online and not actor.deleted)
            return {
                "uptime_seconds": max(0.0, time.monotonic() - self._started_at),
                "ticks": self._ticks,
                "saves": self._saves,
                "actors": len(self._actors),
                "online": online,
                "accounts": len(self._accounts),
                "pending_tasks": self._tasks.qsize(),
            }

    @staticmethod
    def _account_view(stored: _StoredAccount) -> Account:
        return Account(username=stored.username, access=stored.access, created_at=stored.created_at)

    # mutations

    def create_account(self, username: str, password: str, access: AccessTier = AccessTier.PLAYER) -> Account:
        self._require_loop()
        normalized = username.strip()
        if not normalized or not password:
            raise SimulationError("account requires a username and password")
        key = normalized.lower()
        with self._state_lock:
            if key in self._accounts:
                raise SimulationError(f"account '{normalized}' already exists")
            stored = _StoredAccount(
                username=normalized,
                password_digest=hashlib.sha256(password.encode("utf-8")).hexdigest(),
                access=access,
            )
            self._accounts[key] = stored
            return self._account_view(stored)

    def set_access(self, username: str, access: AccessTier) -> Account:
        self._require_loop()
        with self._state_lock:
            stored = self._accounts.get(username.strip().lower())
            if stored is None:
                raise SimulationError(f"account '{username}' does not exist")
            stored.access = access
            for actor in self._actors.values():
                if actor.account and actor.account.lower() == stored.username.lower():
                    actor.access = access
            return self._account_view(stored)

    def delete_account(self, username: str) -> bool:
        self._require_loop()
        with self._state_lock:
            return self._accounts.pop(username.strip().lower(), None) is not None

    def add_actor(self, actor: Actor) -> Actor:
        self._require_loop()
        with self._state_lock:
            stored = replace(actor, actor_id=self._next_actor_id, deleted=False)
            self._next_actor_id += 1
            self._actors[stored.actor_id] = stored
            return replace(stored)

    def remove_actor(self, actor_id: int) -> bool:
        self._require_loop()
        with self._state_lock:
            actor = self._actors.pop(actor_id, None)
            if actor is None:
                return False
            actor.deleted = True
            actor.online = False
            return True

    def broadcast(self, message: str) -> None:
        self._require_loop()
        self.broadcasts.append(message)
        self.logger.info("broadcast delivered", extra={"service": "simulation", "payload": {"message": message}})

    def execute(self, actor: Actor, text: str) -> None:
        self._require_loop()
        with self._state_lock:
            live = self._actors.get(actor.actor_id)
        if live is None or live.deleted:
            raise SimulationError(f"actor '{actor.name}' is not in the world")
        command_text = text.strip()
        if command_text.startswith(COMMAND_PREFIX):
            command_text = command_text[len(COMMAND_PREFIX) :].strip()
        parts = command_text.split()
        if not parts:
            raise SimulationError("empty command")
        command = self._commands.get(parts[0].lower())
        if command is None:
            raise SimulationError(f"unknown command '{parts[0]}'")
        if live.access < command.access:
            raise SimulationError(f"'{command.name}' requires {command.access.label}")
        command.handler(live, parts[1:])
        self.journal.append({"actor": live.name, "command": command.name, "text": command_text})

    # interpreter

    def register_command(self, name: str, access: AccessTier, handler: CommandHandler) -> None:
        self._commands[name.lower()] = _WorldCommand(name=name.lower(), access=access, handler=handler)

    def _register_builtin_commands(self) -> None:
        self.register_command("save", AccessTier.ADMINISTRATOR, self._cmd_save)
        self.register_command("where", AccessTier.COUNSELOR, self._cmd_where)
        self.register_command("go", AccessTier.GAMEMASTER, self._cmd_go)
        self.register_command("kick", AccessTier.GAMEMASTER, self._cmd_kick)
        self.register_command("setaccess", AccessTier.ADMINISTRATOR, self._cmd_setaccess)

    def _cmd_save(self, actor: Actor, args: list[str]) -> None:
        self._saves += 1
        self.logger.info("world saved", extra={"service": "simulation", "payload": {"by": actor.name}})

    def _cmd_where(self, actor: Actor, args: list[str]) -> None:
        self.logger.info(
            "actor location",
            extra={"service": "simulation", "payload": {"actor": actor.name, "location": actor.location_label}},
        )

    def _cmd_go(self, actor: Actor, args: list[str]) -> None:
        if len(args) not in {3, 4}:
            raise SimulationError("usage: go <x> <y> <z> [map]")
        try:
            location = (int(args[0]), int(args[1]), int(args[2]))
        except ValueError as exc:
            raise SimulationError("go coordinates must be integers") from exc
        with self._state_lock:
            actor.location = location
            if len(args) == 4:
                actor.map_name = args[3]

    def _cmd_kick(self, actor: Actor, args: list[str]) -> None:
        if not args:
            raise SimulationError("usage: kick <name>")
        target_name = " ".join(args).lower()
        with self._state_lock:
            for target in self._actors.values():
                if target.name.lower() == target_name and target.online:
                    if target.access >= actor.access:
                        raise SimulationError(f"cannot kick '{target.name}'")
                    target.online = False
                    return
        raise SimulationError(f"no online actor named '{' '.join(args)}'")

    def _cmd_setaccess(self, actor: Actor, args: list[str]) -> None:
        if len(args) != 2:
            raise SimulationError("usage: setaccess <account> <tier>")
        try:
            tier = parse_tier(args[1])
        except ValueError as exc:
            raise SimulationError(str(exc)) from exc
        self.set_access(args[0], tier)
