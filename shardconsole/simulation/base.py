"""Simulation collaborator interface consumed by the console."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from shardconsole.core.access import AccessTier


@dataclass(slots=True)
class Account:
    username: str
    access: AccessTier = AccessTier.PLAYER
    created_at: datetime | None = None


@dataclass(slots=True)
class Actor:
    name: str
    access: AccessTier = AccessTier.PLAYER
    location: tuple[int, int, int] = (0, 0, 0)
    map_name: str = "Felucca"
    account: str | None = None
    actor_id: int = 0
    player: bool = True
    online: bool = True
    hidden: bool = False
    immobile: bool = False
    interactive: bool = True
    deleted: bool = False

    @property
    def location_label(self) -> str:
        x, y, z = self.location
        return f"({x}, {y}, {z}) ({self.map_name})"


class Simulation(ABC):
    """Boundary to the host simulation.

    Query methods return copies and may be called from any thread. Mutating
    methods may only run inside the simulation's own loop; callers reach the
    loop through ``submit``, which never waits for the task to complete.
    """

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self, timeout: float = 2.0) -> None: ...

    @abstractmethod
    def submit(self, task: Callable[[], Any], *, label: str = "task") -> None: ...

    @abstractmethod
    def in_loop(self) -> bool: ...

    @abstractmethod
    def get_account(self, username: str) -> Account | None: ...

    @abstractmethod
    def accounts(self) -> list[Account]: ...

    @abstractmethod
    def get_actor(self, actor_id: int) -> Actor | None: ...

    @abstractmethod
    def actors(self) -> list[Actor]: ...

    def online_actors(self) -> list[Actor]:
        return [actor for actor in self.actors() if actor.online and not actor.deleted]

    @abstractmethod
    def stats(self) -> dict[str, Any]: ...

    @abstractmethod
    def create_account(self, username: str, password: str, access: AccessTier = AccessTier.PLAYER) -> Account: ...

    @abstractmethod
    def set_access(self, username: str, access: AccessTier) -> Account: ...

    @abstractmethod
    def delete_account(self, username: str) -> bool: ...

    @abstractmethod
    def add_actor(self, actor: Actor) -> Actor: ...

    @abstractmethod
    def remove_actor(self, actor_id: int) -> bool: ...

    @abstractmethod
    def execute(self, actor: Actor, text: str) -> None: ...

    @abstractmethod
    def broadcast(self, message: str) -> None: ...
