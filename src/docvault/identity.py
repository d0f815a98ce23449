"""Identity collaborator — user role lookup for the administrator bypass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Iterable


class Role(str, Enum):
    """System-wide role of a user."""

    ADMIN = "admin"
    TECHNICIAN = "technician"
    USER = "user"


@dataclass(frozen=True)
class UserInfo:
    """The slice of a user record the core needs."""

    id: int
    role: Role = Role.USER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


@runtime_checkable
class IdentityProvider(Protocol):
    """Looks up users by id.  Returns ``None`` for unknown users."""

    async def get_user(self, user_id: int) -> UserInfo | None: ...


class StaticIdentityProvider:
    """In-memory identity provider backed by a fixed set of users."""

    def __init__(self, users: Iterable[UserInfo] = ()) -> None:
        self._users = {u.id: u for u in users}

    def add(self, user: UserInfo) -> None:
        """Add or replace a user."""
        self._users[user.id] = user

    async def get_user(self, user_id: int) -> UserInfo | None:
        return self._users.get(user_id)
