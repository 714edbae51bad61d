"""User accounts referenced by tickets."""

from .models import Actor, User, UserRole
from .repository import EmailInUseError, UserNotFoundError, UserRepository

__all__ = ["Actor", "EmailInUseError", "User", "UserNotFoundError", "UserRepository", "UserRole"]
