"""Operator credential store keyed by case-insensitive username."""

from __future__ import annotations

import base64
from dataclasses import dataclass
from datetime import datetime
import hashlib
import hmac
import threading
from typing import Callable, Iterable

from shardconsole.config.schema import OperatorConfig
from shardconsole.core.access import AccessTier
from shardconsole.core.logging import get_logger


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.sha256(f"{password}{salt}".encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


@dataclass(slots=True)
class Credential:
    username: str
    password_digest: str
    access: AccessTier
    last_login: datetime | None = None
    login_count: int = 0


@dataclass(slots=True)
class LoginResult:
    username: str
    access: AccessTier
    previous_login: datetime | None
    login_count: int


class CredentialStore:
    def __init__(
        self,
        *,
        salt: str,
        operators: Iterable[OperatorConfig] = (),
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        if not salt:
            raise ValueError("password salt must not be empty")
        self._salt = salt
        self._now = now
        self._lock = threading.RLock()
        self._credentials: dict[str, Credential] = {}
        self.logger = get_logger("shardconsole.credentials")
        for operator in operators:
            self._credentials[operator.username.lower()] = Credential(
                username=operator.username,
                password_digest=operator.password_digest,
                access=operator.access,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._credentials)

    def digest(self, password: str) -> str:
        return hash_password(password, self._salt)

    def add(self, username: str, password: str, access: AccessTier) -> bool:
        normalized = username.strip()
        if not normalized or not password:
            raise ValueError("username and password must not be empty")
        key = normalized.lower()
        with self._lock:
            if key in self._credentials:
                return False
            self._credentials[key] = Credential(
                username=normalized,
                password_digest=self.digest(password),
                access=access,
            )
        self.logger.info(
            "operator added",
            extra={"service": "credentials", "payload": {"username": normalized, "access": access.label}},
        )
        return True

    def remove(self, username: str) -> bool:
        with self._lock:
            removed = self._credentials.pop(username.strip().lower(), None)
        if removed is not None:
            self.logger.info("operator removed", extra={"service": "credentials", "payload": {"username": removed.username}})
        return removed is not None

    def get(self, username: str) -> Credential | None:
        with self._lock:
            credential = self._credentials.get(username.strip().lower())
            if credential is None:
                return None
            return Credential(
                username=credential.username,
                password_digest=credential.password_digest,
                access=credential.access,
                last_login=credential.last_login,
                login_count=credential.login_count,
            )

    def usernames(self) -> list[str]:
        with self._lock:
            return sorted(credential.username for credential in self._credentials.values())

    def authenticate(self, username: str, password: str) -> LoginResult | None:
        """Verify a login and, on success, stamp the login statistics.

        Unknown usernames and wrong passwords both return None after the same
        digest computation.
        """
        submitted = self.digest(password)
        with self._lock:
            credential = self._credentials.get(username.strip().lower())
            if credential is None or not hmac.compare_digest(submitted, credential.password_digest):
                return None
            previous = credential.last_login
            credential.last_login = self._now()
            credential.login_count += 1
            return LoginResult(
                username=credential.username,
                access=credential.access,
                previous_login=previous,
                login_count=credential.login_count,
            )


KNOWN_DEFAULT_PASSWORDS = ("changeme", "gmpass", "seerpass", "admin", "password")


def operators_with_default_passwords(operators: Iterable[OperatorConfig], salt: str) -> list[str]:
    """Usernames whose configured digest matches a well-known default password."""
    defaults = {hash_password(password, salt) for password in KNOWN_DEFAULT_PASSWORDS}
    return [operator.username for operator in operators if operator.password_digest in defaults]
