from datetime import datetime
import logging

import pytest

from shardconsole.config.schema import (
    BrokerConfig,
    CommandsConfig,
    LockoutConfig,
    SeedActorConfig,
    SessionConfig,
    SimulationConfig,
)
from shardconsole.console.broker import PrivilegedActorBroker
from shardconsole.console.commands import FORWARD_NOTE, CommandRouter
from shardconsole.core.access import AccessTier
from shardconsole.core.audit import AuditLog
from shardconsole.core.credentials import CredentialStore
from shardconsole.core.lockout import LockoutTracker
from shardconsole.core.logging import EventLogger, get_logger
from shardconsole.core.session import ConsoleSession, SessionRegistry, SessionState
from shardconsole.simulation.world import InMemoryWorld


class _RecordingChannel:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def send_line(self, text: str = "") -> bool:
        self.lines.append(text)
        return True

    def send_lines(self, lines: list[str]) -> bool:
        self.lines.extend(lines)
        return True

    def close(self) -> None:
        return None


@pytest.fixture
def world():
    instance = InMemoryWorld(
        SimulationConfig(
            tick_interval_seconds=0.01,
            seed_actors=[
                SeedActorConfig(name="zoe", location=(10, 20, 0), map_name="Trammel"),
                SeedActorConfig(name="Mirela", access=AccessTier.GAMEMASTER, location=(5445, 1153, 0)),
            ],
        )
    )
    instance.start()
    yield instance
    instance.stop()


@pytest.fixture
def harness(tmp_path, world, fake_clock):
    registry = SessionRegistry(SessionConfig(max_sessions=5), clock=fake_clock)
    audit = AuditLog(tmp_path / "audit.log")
    router = CommandRouter(
        CommandsConfig(),
        registry=registry,
        lockout=LockoutTracker(LockoutConfig(), clock=fake_clock),
        credentials=CredentialStore(salt="salt"),
        simulation=world,
        broker=PrivilegedActorBroker(world, BrokerConfig()),
        audit=audit,
        event_logger=EventLogger(logger=get_logger("shardconsole.test.commands"), service_name="test"),
        clock=fake_clock,
        now=lambda: datetime(2026, 5, 1, 12, 0, 0),
    )

    def _login(username: str, access: AccessTier) -> ConsoleSession:
        session = registry.new_session("127.0.0.1", 40000 + len(registry), _RecordingChannel())
        session.connected_at = datetime(2026, 5, 1, 11, 0, 0)
        session.username = username
        session.access = access
        registry.reserve(session)
        session.advance(SessionState.ACTIVE)
        return session

    return router, registry, audit, _login


def test_blank_lines_are_ignored(harness) -> None:
    router, _, _, login = harness
    session = login("gm", AccessTier.GAMEMASTER)
    assert router.dispatch(session, "   ") is True
    assert session.channel.lines == []


def test_dispatch_updates_last_activity(harness, fake_clock) -> None:
    router, registry, _, login = harness
    session = login("gm", AccessTier.GAMEMASTER)
    fake_clock.advance(120)
    router.dispatch(session, "who")
    assert registry.idle_seconds(session) == 0


def test_verbs_are_case_insensitive_and_exit_ends_session(harness) -> None:
    router, _, _, login = harness
    session = login("player", AccessTier.PLAYER)
    assert router.dispatch(session, "EXIT") is False
    assert router.dispatch(session, "Quit") is False


def test_help_hides_verbs_above_caller_tier(harness) -> None:
    router, _, _, login = harness
    player = login("player", AccessTier.PLAYER)
    router.dispatch(player, "help")
    text = "\n".join(player.channel.lines)
    assert "who" in text
    assert "broadcast" not in text
    assert player.channel.lines[-1] == FORWARD_NOTE

    gm = login("gm", AccessTier.GAMEMASTER)
    router.dispatch(gm, "help")
    assert any("broadcast <message>" in line and "[GameMaster+]" in line for line in gm.channel.lines)


def test_who_lists_online_players_sorted_with_tier_above_player(harness) -> None:
    router, _, _, login = harness
    session = login("player", AccessTier.PLAYER)
    router.dispatch(session, "who")
    assert session.channel.lines == [
        "=== Online Players (2) ===",
        "Mirela [GameMaster] - (5445, 1153, 0) (Felucca)",
        "zoe - (10, 20, 0) (Trammel)",
    ]


def test_sessions_marks_current_session(harness, fake_clock) -> None:
    router, _, _, login = harness
    other = login("admin", AccessTier.ADMINISTRATOR)
    session = login("gm", AccessTier.GAMEMASTER)
    fake_clock.advance(30)
    router.dispatch(session, "sessions")
    lines = session.channel.lines
    assert lines[0] == "=== Active Console Sessions (2) ==="
    assert any(line.startswith(f"{other.session_id}: admin from 127.0.0.1:") and "(current)" not in line for line in lines)
    assert f"{session.session_id}: gm from {session.endpoint} (current)" in lines
    assert "  Connected: 1:00:00, Idle: 0:00:00" in lines


def test_status_reports_registry_and_simulation_counts(harness) -> None:
    router, _, _, login = harness
    session = login("player", AccessTier.PLAYER)
    router.dispatch(session, "status")
    lines = session.channel.lines
    assert lines[0] == "=== Console Status ==="
    assert "Online actors: 2" in lines
    assert "Console sessions: 1/5" in lines
    assert "Tracked failure records: 0 (locked: 0)" in lines


def test_player_broadcast_is_denied_and_nothing_is_sent(harness, world) -> None:
    router, _, _, login = harness
    session = login("player", AccessTier.PLAYER)
    assert router.dispatch(session, "broadcast hello") is True
    assert session.channel.lines == ["Insufficient access level for broadcast."]
    assert world.wait_idle()
    assert list(world.broadcasts) == []


def test_gamemaster_broadcast_reaches_simulation(harness, world) -> None:
    router, _, audit, login = harness
    session = login("gm", AccessTier.GAMEMASTER)
    router.dispatch(session, "broadcast hello   world")
    assert session.channel.lines == ["Broadcast sent: hello world"]
    assert world.wait_idle()
    assert list(world.broadcasts) == ["[Broadcast] hello world"]
    assert audit.tail(1)[0].endswith("Broadcast by gm: hello world")


def test_broadcast_without_message_reports_usage(harness) -> None:
    router, _, _, login = harness
    session = login("gm", AccessTier.GAMEMASTER)
    router.dispatch(session, "broadcast")
    assert session.channel.lines == ["Error executing command: usage: broadcast <message>"]


def test_createaccount_submits_and_respects_caller_tier(harness, world) -> None:
    router, _, _, login = harness
    session = login("gm", AccessTier.GAMEMASTER)

    router.dispatch(session, "createaccount builder pw counselor")
    assert session.channel.lines[-1] == "Account creation submitted: builder (Counselor)"
    assert world.wait_idle()
    assert world.get_account("builder").access is AccessTier.COUNSELOR

    router.dispatch(session, "createaccount boss pw admin")
    assert session.channel.lines[-1].startswith("Error executing command: cannot grant Administrator")

    router.dispatch(session, "createaccount BUILDER pw")
    assert session.channel.lines[-1] == "Error executing command: account 'BUILDER' already exists"

    router.dispatch(session, "createaccount lonely")
    assert session.channel.lines[-1].startswith("Error executing command: usage:")


def test_setaccess_validates_account_and_tiers(harness, world) -> None:
    router, _, _, login = harness
    session = login("gm", AccessTier.GAMEMASTER)
    router.dispatch(session, "createaccount builder pw")
    assert world.wait_idle()

    router.dispatch(session, "setaccess ghost seer")
    assert session.channel.lines[-1] == "Error executing command: account 'ghost' does not exist"

    router.dispatch(session, "setaccess builder owner")
    assert "cannot grant Owner" in session.channel.lines[-1]

    router.dispatch(session, "setaccess builder wizard")
    assert session.channel.lines[-1] == (
        "Error executing command: invalid access tier 'wizard'; "
        "expected one of Player, Counselor, GameMaster, Seer, Administrator, Developer, Owner"
    )

    router.dispatch(session, "setaccess builder gm")
    assert session.channel.lines[-1] == "Access level update submitted: builder -> GameMaster"
    assert world.wait_idle()
    assert world.get_account("builder").access is AccessTier.GAMEMASTER


def test_listaccounts_rows_are_sorted(harness, world) -> None:
    router, _, _, login = harness
    session = login("admin", AccessTier.ADMINISTRATOR)
    router.dispatch(session, "createaccount zed pw")
    router.dispatch(session, "createaccount Amy pw seer")
    assert world.wait_idle()
    session.channel.lines.clear()

    router.dispatch(session, "listaccounts")
    lines = session.channel.lines
    assert lines[0] == "=== Accounts (2) ==="
    assert lines[1].split()[:2] == ["Amy", "Seer"]
    assert lines[2].split()[:2] == ["zed", "Player"]


def test_unknown_input_is_forwarded_and_audited(harness, world) -> None:
    router, _, audit, login = harness
    session = login("admin", AccessTier.ADMINISTRATOR)
    assert router.dispatch(session, "  save  ") is True
    assert session.channel.lines == ["Command submitted: save"]
    assert audit.tail(1)[0].endswith("Command: admin: save")
    assert world.wait_idle()
    assert world.stats()["saves"] == 1


def test_handler_exceptions_are_reported_and_loop_continues(harness, monkeypatch) -> None:
    router, _, _, login = harness
    session = login("player", AccessTier.PLAYER)

    def _boom() -> dict:
        raise RuntimeError("stats unavailable")

    monkeypatch.setattr(router.simulation, "stats", _boom)
    assert router.dispatch(session, "status") is True
    assert session.channel.lines == ["Error executing command: stats unavailable"]
    assert router.dispatch(session, "who") is True


class _RecordingEvents:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def emit(self, **fields) -> None:
        self.events.append(fields)


def test_rejected_command_is_logged_as_failure(harness) -> None:
    router, _, _, login = harness
    events = _RecordingEvents()
    router.event_logger = events
    records: list[logging.LogRecord] = []
    handler = logging.Handler(level=logging.WARNING)
    handler.emit = records.append
    router.logger.addHandler(handler)
    session = login("gm", AccessTier.GAMEMASTER)

    try:
        router.dispatch(session, "setaccess nobody Player")
    finally:
        router.logger.removeHandler(handler)

    assert session.channel.lines[-1] == "Error executing command: account 'nobody' does not exist"
    assert [event["outcome"] for event in events.events] == ["failure"]
    assert events.events[0]["payload"]["error"] == "account 'nobody' does not exist"
    assert [record.getMessage() for record in records] == ["console command rejected"]

    router.dispatch(session, "who")
    assert events.events[-1]["outcome"] == "success"
