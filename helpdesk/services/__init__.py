"""Service layer exports."""

from .database import DatabaseConnectionTester, to_asyncpg_dsn

__all__ = ["DatabaseConnectionTester", "to_asyncpg_dsn"]
