from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from packages.db.models import UserTable

from .models import User, UserRole


class UserNotFoundError(RuntimeError):
    """Raised when an operation targets a non-existent user."""


class EmailInUseError(RuntimeError):
    """Raised when an email address already belongs to another account."""


_EDITABLE_COLUMNS = frozenset({"full_name", "email", "role", "department", "is_active"})


class UserRepository:
    """Data access for user accounts; users are deactivated, never deleted."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create_user(
        self,
        *,
        username: str,
        role: UserRole = UserRole.USER,
        email: str | None = None,
        full_name: str | None = None,
        department: str | None = None,
        is_active: bool = True,
    ) -> User:
        now = datetime.now(timezone.utc)
        row = UserTable(
            id=str(uuid.uuid4()),
            username=username,
            email=email,
            full_name=full_name,
            department=department,
            role=role.value,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            async with session.begin():
                session.add(row)
        return self._table_to_user(row)

    async def get_user(self, user_id: str) -> User | None:
        async with self._session_factory() as session:
            row = await session.get(UserTable, user_id)
            return None if row is None else self._table_to_user(row)

    async def list_users(
        self,
        *,
        role: UserRole | None = None,
        is_active: bool | None = None,
        search: str | None = None,
    ) -> list[User]:
        statement = select(UserTable)
        if role is not None:
            statement = statement.where(UserTable.role == role.value)
        if is_active is not None:
            statement = statement.where(UserTable.is_active == is_active)
        if search:
            pattern = f"%{search}%"
            statement = statement.where(
                or_(
                    UserTable.username.ilike(pattern),
                    UserTable.full_name.ilike(pattern),
                    UserTable.email.ilike(pattern),
                )
            )
        async with self._session_factory() as session:
            result = await session.execute(statement.order_by(UserTable.created_at.desc()))
            return [self._table_to_user(row) for row in result.scalars().all()]

    async def list_support_staff(self) -> list[User]:
        return await self.list_users(role=UserRole.ADMIN, is_active=True)

    async def update_user(self, user_id: str, changes: Mapping[str, Any]) -> User:
        """Apply ``changes`` to a user's profile columns and return the stored record."""

        unknown = set(changes) - _EDITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update user fields {sorted(unknown)}")
        email = changes.get("email")
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await session.get(UserTable, user_id)
                    if row is None:
                        raise UserNotFoundError(f"User {user_id} not found")
                    if email is not None:
                        taken = await session.scalar(
                            select(UserTable.id).where(UserTable.email == email, UserTable.id != user_id)
                        )
                        if taken is not None:
                            raise EmailInUseError(f"Email {email} is already used by another account")
                    for name, value in changes.items():
                        setattr(row, name, value.value if isinstance(value, Enum) else value)
                    row.updated_at = datetime.now(timezone.utc)
        except IntegrityError as exc:
            raise EmailInUseError(f"Email {email} is already used by another account") from exc
        return self._table_to_user(row)

    async def count_users(self, *, is_active: bool | None = None) -> int:
        statement = select(func.count()).select_from(UserTable)
        if is_active is not None:
            statement = statement.where(UserTable.is_active == is_active)
        async with self._session_factory() as session:
            return int(await session.scalar(statement) or 0)

    async def deactivate_user(self, user_id: str) -> User:
        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(UserTable, user_id)
                if row is None:
                    raise UserNotFoundError(f"User {user_id} not found")
                row.is_active = False
                row.updated_at = datetime.now(timezone.utc)
            return self._table_to_user(row)

    @staticmethod
    def _table_to_user(row: UserTable) -> User:
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            full_name=row.full_name,
            department=row.department,
            role=UserRole(row.role),
            is_active=bool(row.is_active),
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )


def _ensure_datetime(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
