"""Bridge from console sessions into the simulation's serialized loop."""

from __future__ import annotations

from typing import Any, Callable

from shardconsole.config.schema import BrokerConfig
from shardconsole.core.logging import EventLogger, get_logger
from shardconsole.core.session import ConsoleSession
from shardconsole.simulation.base import Actor, Simulation


CONSOLE_ACTOR_PREFIX = "ConsoleAdmin_"


class PrivilegedActorBroker:
    """Owns the acting identity used for forwarded commands.

    ``resolve`` and the teardown in ``release`` touch world state and therefore
    only ever run inside tasks handed to ``Simulation.submit``.
    """

    def __init__(
        self,
        simulation: Simulation,
        config: BrokerConfig | None = None,
        *,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.simulation = simulation
        self.config = config or BrokerConfig()
        self.event_logger = event_logger
        self.logger = get_logger("shardconsole.broker")

    @staticmethod
    def actor_name(session: ConsoleSession) -> str:
        return f"{CONSOLE_ACTOR_PREFIX}{session.session_id}"

    def submit(self, session: ConsoleSession, label: str, task: Callable[[], Any]) -> None:
        """Queue ``task`` on the simulation loop; failures are logged there, never raised here."""

        def _guarded() -> None:
            try:
                task()
            except Exception as exc:
                self.logger.exception(
                    "simulation task failed",
                    extra={
                        "service": "broker",
                        "session_id": session.session_id,
                        "user_name": session.username,
                        "payload": {"task": label, "error": str(exc)},
                    },
                )

        self.simulation.submit(_guarded, label=label)

    def execute(self, session: ConsoleSession, text: str) -> None:
        self.submit(session, "forwarded_command", lambda: self._execute(session, text))

    def release(self, session: ConsoleSession) -> None:
        if self.config.persist_actors:
            return
        self.submit(session, "release_actor", lambda: self._teardown(session))

    def resolve(self, session: ConsoleSession) -> Actor | None:
        """Pick the acting identity for ``session``; None once the session has ended."""
        if session.terminated:
            return None
        owned = session.owned_actor
        if owned is not None:
            live = self.simulation.get_actor(owned.actor_id)
            if live is not None and not live.deleted:
                return live
            session.owned_actor = None

        if self.config.reuse_existing_actors:
            candidate = self._find_privileged_actor(session)
            if candidate is not None:
                return candidate

        return self._create_actor(session)

    def _find_privileged_actor(self, session: ConsoleSession) -> Actor | None:
        eligible = [actor for actor in self.simulation.online_actors() if actor.access >= session.access]
        if not eligible:
            return None
        return min(eligible, key=lambda actor: actor.actor_id)

    def _create_actor(self, session: ConsoleSession) -> Actor:
        name = self.actor_name(session)
        account = self.simulation.get_account(name)
        if account is None:
            self.simulation.create_account(name, session.session_id + name, session.access)
        elif account.access != session.access:
            self.simulation.set_access(name, session.access)
        actor = self.simulation.add_actor(
            Actor(
                name=name,
                access=session.access,
                account=name,
                player=True,
                online=False,
                hidden=True,
                immobile=True,
                interactive=False,
            )
        )
        session.owned_actor = actor
        self._emit(session, "console actor created", "actor_created", {"actor": name, "actor_id": actor.actor_id})
        return actor

    def _execute(self, session: ConsoleSession, text: str) -> None:
        actor = self.resolve(session)
        if actor is None:
            self.logger.warning(
                "forwarded command dropped, session already ended",
                extra={"service": "broker", "session_id": session.session_id, "payload": {"command": text}},
            )
            return
        self.simulation.execute(actor, text)
        self._emit(session, "forwarded command executed", "command_executed", {"actor": actor.name, "command": text})

    def _teardown(self, session: ConsoleSession) -> None:
        actor = session.owned_actor
        session.owned_actor = None
        if actor is None:
            return
        self.simulation.remove_actor(actor.actor_id)
        self.simulation.delete_account(actor.account or actor.name)
        self._emit(session, "console actor removed", "actor_removed", {"actor": actor.name, "actor_id": actor.actor_id})

    def _emit(self, session: ConsoleSession, message: str, action: str, payload: dict[str, object]) -> None:
        if self.event_logger is None:
            return
        self.event_logger.emit(
            message=message,
            service="broker",
            action=action,
            session_id=session.session_id,
            source_ip=session.source_ip,
            username=session.username,
            outcome="success",
            event_type="change",
            payload=payload,
        )
