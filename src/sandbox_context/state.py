from __future__ import annotations

import itertools
import re
from dataclasses import dataclass, replace

_NAMESPACE = re.compile(r"[0-9A-Za-z._\-]{0,100}")

# Numeric ids in the shape production user ids have; the counter guarantees uniqueness.
_USER_ID_BASE = 185804764220139124118


class InvalidNamespaceError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class SimulatedUser:
    # In-memory identity record; user_id is assigned by AuthState.login().
    email: str
    admin: bool = False
    user_id: str = ""
    auth_domain: str = "gmail.com"

    def __post_init__(self) -> None:
        if not self.email or "@" not in self.email:
            raise ValueError(f"SimulatedUser.email must be an email address: {self.email!r}")

    @property
    def nickname(self) -> str:
        local, _, domain = self.email.partition("@")
        return local if domain == self.auth_domain else self.email


class NamespaceState:
    # Current namespace of one Context; "" is the default scope.
    def __init__(self) -> None:
        self._current = ""

    @property
    def current(self) -> str:
        return self._current

    def set(self, namespace: str) -> None:
        if not isinstance(namespace, str) or not _NAMESPACE.fullmatch(namespace):
            raise InvalidNamespaceError(f"invalid namespace {namespace!r}: must match {_NAMESPACE.pattern}")
        self._current = namespace


class AuthState:
    # Current simulated user of one Context; ids are never reissued within its lifetime.
    def __init__(self) -> None:
        self._current: SimulatedUser | None = None
        self._seq = itertools.count(1)

    def login(self, user: SimulatedUser) -> SimulatedUser:
        effective = replace(user, user_id=str(_USER_ID_BASE + next(self._seq)))
        self._current = effective
        return effective

    def logout(self) -> None:
        self._current = None

    def current(self) -> SimulatedUser | None:
        return self._current

    def snapshot(self) -> dict[str, object] | None:
        user = self._current
        if user is None:
            return None
        return {
            "email": user.email,
            "admin": user.admin,
            "user_id": user.user_id,
            "auth_domain": user.auth_domain,
        }
