"""Operational diagnostics for local config readiness."""

from __future__ import annotations

from dataclasses import dataclass
import ipaddress
import os
from pathlib import Path
import socket
from typing import Any

from shardconsole.config.schema import AppConfig
from shardconsole.core.credentials import operators_with_default_passwords


@dataclass(slots=True)
class DoctorCheck:
    name: str
    ok: bool
    detail: str


def run_diagnostics(config: AppConfig, *, probe_ports: bool = True) -> dict[str, Any]:
    checks: list[DoctorCheck] = []

    allow_ok, allow_detail = _allow_list_check(config)
    checks.append(DoctorCheck(name="allow_list", ok=allow_ok, detail=allow_detail))

    if probe_ports:
        port_ok, port_detail = _port_range_check(config)
    else:
        port_ok = config.listener.port_start <= config.listener.port_end
        port_detail = f"port range {config.listener.port_start}-{config.listener.port_end} (not probed)"
    checks.append(DoctorCheck(name="port_range", ok=port_ok, detail=port_detail))

    default_credentials_ok, default_credentials_detail = _default_credentials_check(config)
    checks.append(
        DoctorCheck(
            name="default_credentials",
            ok=default_credentials_ok,
            detail=default_credentials_detail,
        )
    )
    checks.append(
        DoctorCheck(
            name="operators",
            ok=bool(config.auth.operators),
            detail=(
                f"{len(config.auth.operators)} operator(s) configured"
                if config.auth.operators
                else "no operators configured; nobody can log in"
            ),
        )
    )

    audit_ok, audit_detail = _audit_path_check(config)
    checks.append(DoctorCheck(name="audit_path", ok=audit_ok, detail=audit_detail))

    lockout = config.lockout
    checks.append(
        DoctorCheck(
            name="lockout_policy",
            ok=lockout.lockout_seconds <= lockout.retention_seconds,
            detail=(
                f"max_failures={lockout.max_failures} lockout={lockout.lockout_seconds:g}s "
                f"retention={lockout.retention_seconds:g}s"
            ),
        )
    )

    return {
        "ok": all(item.ok for item in checks),
        "environment": config.environment,
        "checks": [
            {
                "name": item.name,
                "ok": item.ok,
                "detail": item.detail,
            }
            for item in checks
        ],
    }


def _allow_list_check(config: AppConfig) -> tuple[bool, str]:
    entries = config.listener.allowed_addresses
    if not entries:
        return (False, "allow-list is empty; every connection will be refused")
    wide = [entry for entry in entries if ipaddress.ip_network(entry, strict=False).prefixlen == 0]
    if wide:
        return (False, f"allow-list admits every address: {', '.join(wide)}")
    return (True, f"{len(entries)} allow-list entr{'y' if len(entries) == 1 else 'ies'}")


def _port_range_check(config: AppConfig) -> tuple[bool, str]:
    listener = config.listener
    family = socket.AF_INET6 if ":" in listener.host else socket.AF_INET
    for port in range(listener.port_start, listener.port_end + 1):
        probe = socket.socket(family, socket.SOCK_STREAM)
        try:
            probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            probe.bind((listener.host, port))
        except OSError:
            continue
        finally:
            probe.close()
        return (True, f"port {port} available on {listener.host}")
    return (False, f"no available ports on {listener.host} between {listener.port_start} and {listener.port_end}")


def _default_credentials_check(config: AppConfig) -> tuple[bool, str]:
    offenders = operators_with_default_passwords(config.auth.operators, config.auth.password_salt)
    if not offenders:
        return (True, "no operators use known default passwords")
    detail = f"operators using default passwords: {', '.join(sorted(offenders))}"
    if str(config.environment).strip().lower() == "development":
        return (True, f"{detail} (allowed in development)")
    return (False, detail)


def _audit_path_check(config: AppConfig) -> tuple[bool, str]:
    path = Path(config.audit.path)
    parent = path.parent
    while not parent.exists() and parent != parent.parent:
        parent = parent.parent
    if path.exists() and not os.access(path, os.W_OK):
        return (False, f"audit log not writable: {path}")
    if not os.access(parent, os.W_OK):
        return (False, f"audit directory not writable: {parent}")
    return (True, f"audit log at {path}")
