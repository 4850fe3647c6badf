from shardconsole.config.schema import SessionConfig
from shardconsole.core.session import (
    ConsoleSession,
    SessionRegistry,
    SessionState,
    TerminationReason,
)


class _Clock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_reserve_never_exceeds_capacity() -> None:
    registry = SessionRegistry(SessionConfig(max_sessions=2))
    first = registry.new_session("127.0.0.1", 5000)
    second = registry.new_session("127.0.0.1", 5001)
    third = registry.new_session("127.0.0.1", 5002)

    assert registry.reserve(first) is True
    assert registry.reserve(second) is True
    assert registry.reserve(third) is False
    assert len(registry) == 2
    assert third not in registry


def test_reserve_rejects_duplicate_session() -> None:
    registry = SessionRegistry(SessionConfig(max_sessions=3))
    session = registry.new_session("127.0.0.1")
    assert registry.reserve(session) is True
    assert registry.reserve(session) is False
    assert len(registry) == 1


def test_remove_reports_true_only_once() -> None:
    registry = SessionRegistry()
    session = registry.new_session("127.0.0.1")
    registry.reserve(session)
    assert registry.remove(session) is True
    assert registry.remove(session) is False
    assert len(registry) == 0


def test_session_ids_are_short_hex_and_unique() -> None:
    registry = SessionRegistry()
    ids = {registry.new_session("127.0.0.1").session_id for _ in range(50)}
    assert len(ids) == 50
    assert all(len(item) == 8 and int(item, 16) >= 0 for item in ids)


def test_sweep_idle_removes_only_expired_sessions() -> None:
    clock = _Clock()
    registry = SessionRegistry(SessionConfig(idle_timeout_seconds=60), clock=clock)
    stale = registry.new_session("127.0.0.1", 1)
    registry.reserve(stale)
    clock.now += 50
    fresh = registry.new_session("127.0.0.1", 2)
    registry.reserve(fresh)

    clock.now += 11
    expired = registry.sweep_idle()
    assert expired == [stale]
    assert stale not in registry
    assert fresh in registry


def test_touch_defers_idle_expiry() -> None:
    clock = _Clock()
    registry = SessionRegistry(SessionConfig(idle_timeout_seconds=60), clock=clock)
    session = registry.new_session("127.0.0.1")
    registry.reserve(session)
    clock.now += 59
    registry.touch(session)
    clock.now += 59
    assert registry.sweep_idle() == []
    assert registry.idle_seconds(session) == 59


def test_drain_empties_registry() -> None:
    registry = SessionRegistry()
    sessions = [registry.new_session("127.0.0.1", port) for port in range(3)]
    for session in sessions:
        registry.reserve(session)
    drained = registry.drain()
    assert set(drained) == set(sessions)
    assert len(registry) == 0


def test_terminate_is_one_way_and_first_caller_wins() -> None:
    session = ConsoleSession(source_ip="127.0.0.1")
    assert session.advance(SessionState.AUTHENTICATING) is True
    assert session.terminate(TerminationReason.IDLE_TIMEOUT) is True
    assert session.terminate(TerminationReason.EXIT) is False
    assert session.termination_reason is TerminationReason.IDLE_TIMEOUT
    assert session.advance(SessionState.ACTIVE) is False
    assert session.state is SessionState.TERMINATED


def test_snapshot_counts_authenticated_sessions() -> None:
    registry = SessionRegistry(SessionConfig(max_sessions=4))
    active = registry.new_session("127.0.0.1", 1)
    pending = registry.new_session("127.0.0.1", 2)
    registry.reserve(active)
    registry.reserve(pending)
    active.advance(SessionState.ACTIVE)
    assert registry.snapshot() == {"sessions": 2, "authenticated": 1, "capacity": 4}
