from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserRole(str, Enum):
    """Roles known to the access policy."""

    USER = "user"
    ADMIN = "admin"


@dataclass(slots=True)
class User:
    """Account record referenced by tickets."""

    id: str
    username: str
    email: str | None
    full_name: str | None
    department: str | None
    role: UserRole
    is_active: bool
    created_at: datetime
    updated_at: datetime

    def as_actor(self) -> Actor:
        return Actor(id=self.id, role=self.role, is_active=self.is_active)


@dataclass(frozen=True, slots=True)
class Actor:
    """The authenticated identity performing an operation."""

    id: str
    role: UserRole
    is_active: bool = True

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN
