"""Validated inputs for account administration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import UserRole

_NULLABLE_FIELDS = frozenset({"full_name", "email", "department"})


class UserUpdate(BaseModel):
    """Admin edit of an account; only fields explicitly sent are changed."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str | None = Field(default=None, min_length=2, max_length=100, pattern=r"^[A-Za-z\s]+$")
    email: str | None = Field(default=None, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    role: UserRole | None = None
    department: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, value: str | None) -> str | None:
        return value.lower() if value is not None else None

    def changes(self) -> dict[str, Any]:
        """Explicitly sent fields; a null only clears the profile fields that may be empty."""

        return {
            name: value
            for name, value in self.model_dump(exclude_unset=True).items()
            if value is not None or name in _NULLABLE_FIELDS
        }
