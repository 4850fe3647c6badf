from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from shardconsole.config.schema import DEFAULT_PASSWORD_SALT, AppConfig, parse_config
from shardconsole.console.server import ConsoleServer
from shardconsole.core.credentials import hash_password


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _operator(username: str, password: str, access: str) -> dict[str, str]:
    return {
        "username": username,
        "password_digest": hash_password(password, DEFAULT_PASSWORD_SALT),
        "access": access,
    }


def build_config(tmp_path: Path, **overrides: dict[str, Any]) -> AppConfig:
    data: dict[str, Any] = {
        "listener": {
            "host": "127.0.0.1",
            "port_start": 0,
            "port_end": 0,
            "allowed_addresses": ["127.0.0.1"],
            "join_timeout_seconds": 2,
        },
        "sessions": {"sweep_interval_seconds": 3600},
        "auth": {
            "operators": [
                _operator("admin", "changeme", "Administrator"),
                _operator("gm", "gmpass", "GameMaster"),
                _operator("player", "playerpass", "Player"),
            ],
        },
        "lockout": {"sweep_interval_seconds": 3600},
        "audit": {"path": str(tmp_path / "audit.log")},
        "simulation": {"tick_interval_seconds": 0.01},
    }
    for section, values in overrides.items():
        if isinstance(values, dict):
            data.setdefault(section, {}).update(values)
        else:
            data[section] = values
    return parse_config(data)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config_factory(tmp_path: Path) -> Callable[..., AppConfig]:
    def _factory(**overrides: dict[str, Any]) -> AppConfig:
        return build_config(tmp_path, **overrides)

    return _factory


@pytest.fixture
def console_factory(config_factory: Callable[..., AppConfig]) -> Iterator[Callable[..., ConsoleServer]]:
    started: list[ConsoleServer] = []

    def _factory(config: AppConfig | None = None, **kwargs: Any) -> ConsoleServer:
        server = ConsoleServer(config or config_factory(), **kwargs)
        server.start()
        started.append(server)
        return server

    yield _factory
    for server in started:
        server.stop()
