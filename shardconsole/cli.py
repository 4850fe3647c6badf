"""CLI entry point for shardconsole."""

from __future__ import annotations

import argparse
from dataclasses import asdict
import json
from pathlib import Path
import sys
import time
from typing import Any, Sequence

from shardconsole.config.loader import DEFAULT_CONFIG_PATH, initialize_config, load_config
from shardconsole.config.schema import DEFAULT_PASSWORD_SALT
from shardconsole.console.server import ConsoleServer
from shardconsole.core.credentials import hash_password
from shardconsole.core.doctor import run_diagnostics
from shardconsole.core.errors import ConsoleConfigError, ConsoleStartupError


DEFAULT_CONFIG = DEFAULT_CONFIG_PATH


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shardconsole")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init", help="Create starter config")
    init_parser.add_argument("--config", type=Path, default=Path("./config/shardconsole.yml"))
    init_parser.add_argument("--force", action="store_true")

    up_parser = subparsers.add_parser("up", help="Start the console listener")
    up_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    up_parser.add_argument("--once", action="store_true", help="Start, print status, then stop")

    show_parser = subparsers.add_parser("show-config", help="Print the effective configuration")
    show_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)

    hash_parser = subparsers.add_parser("hash-password", help="Compute an operator password digest")
    hash_parser.add_argument("password")
    salt_group = hash_parser.add_mutually_exclusive_group()
    salt_group.add_argument("--config", type=Path, default=None, help="Use the salt from this config")
    salt_group.add_argument("--salt", type=str, default=None)

    doctor_parser = subparsers.add_parser("doctor", help="Run config readiness checks")
    doctor_parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG)
    doctor_parser.add_argument("--skip-port-probe", action="store_true")

    return parser


def cmd_init(config_path: Path, force: bool) -> int:
    initialize_config(config_path, force=force)
    print(f"wrote config: {config_path}")
    return 0


def cmd_up(config_path: Path, once: bool = False) -> int:
    config = load_config(config_path)
    server = ConsoleServer(config)
    try:
        server.start()
        print(json.dumps(server.status(), indent=2, default=str))
        if once:
            return 0
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        return 0
    finally:
        server.stop()
    return 0


def _redacted_config(payload: dict[str, Any]) -> dict[str, Any]:
    auth = payload.get("auth", {})
    if auth.get("password_salt"):
        auth["password_salt"] = "***"
    for operator in auth.get("operators", []):
        operator["password_digest"] = "***"
    return payload


def cmd_show_config(config_path: Path) -> int:
    config = load_config(config_path)
    payload = _redacted_config(asdict(config))
    print(json.dumps(payload, indent=2, default=str))
    return 0


def cmd_hash_password(password: str, *, config_path: Path | None, salt: str | None) -> int:
    if salt is None:
        salt = load_config(config_path).auth.password_salt if config_path else DEFAULT_PASSWORD_SALT
    if not salt:
        raise ConsoleConfigError("password salt must not be empty")
    print(hash_password(password, salt))
    return 0


def cmd_doctor(config_path: Path, *, probe_ports: bool) -> int:
    config = load_config(config_path)
    report = run_diagnostics(config, probe_ports=probe_ports)
    print(json.dumps(report, indent=2))
    return 0 if bool(report.get("ok")) else 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        if args.command == "init":
            return cmd_init(args.config, args.force)
        if args.command == "up":
            return cmd_up(args.config, once=args.once)
        if args.command == "show-config":
            return cmd_show_config(args.config)
        if args.command == "hash-password":
            return cmd_hash_password(args.password, config_path=args.config, salt=args.salt)
        if args.command == "doctor":
            return cmd_doctor(args.config, probe_ports=not args.skip_port_probe)
    except (ConsoleConfigError, ConsoleStartupError, FileNotFoundError, FileExistsError) as exc:
        print(f"shardconsole: {exc}", file=sys.stderr)
        return 1

    parser.error(f"unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
