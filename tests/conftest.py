from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

import packages.db.models  # noqa: F401  registers the tables on SQLModel.metadata
from helpdesk.metrics import HELPDESK_METRICS, MetricsRegistry
from helpdesk.tickets import SequenceAllocator, TicketService
from helpdesk.tickets.repository import TicketRepository
from helpdesk.users import UserRepository, UserRole
from helpdesk.users.service import UserService

FIXED_NOW = datetime(2024, 1, 31, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Returns ``now``; with a ``step`` every reading moves the clock forward."""

    def __init__(self, now: datetime, step: timedelta | None = None) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> datetime:
        if self.step is None:
            return self.now
        reading = self.now
        self.now += self.step
        return reading

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database gives every session its own connection, like the production pool.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'helpdesk.db'}", poolclass=NullPool)
    async with engine.begin() as connection:
        await connection.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def registry():
    return MetricsRegistry(HELPDESK_METRICS)


@pytest.fixture
def clock():
    return FrozenClock(FIXED_NOW)


@pytest.fixture
def ticking_clock():
    return FrozenClock(FIXED_NOW, step=timedelta(milliseconds=1))


@pytest.fixture
def user_repository(session_factory):
    return UserRepository(session_factory)


@pytest.fixture
def ticket_repository(session_factory, engine):
    return TicketRepository(session_factory, engine=engine)


@pytest.fixture
def allocator(session_factory, registry):
    return SequenceAllocator(session_factory, registry=registry)


@pytest.fixture
def service(ticket_repository, user_repository, allocator, registry, clock):
    return TicketService(ticket_repository, user_repository, allocator, registry=registry, clock=clock)


@pytest.fixture
def user_service(user_repository, ticket_repository):
    return UserService(user_repository, ticket_repository)


@pytest_asyncio.fixture
async def users(user_repository):
    return SimpleNamespace(
        admin=await user_repository.create_user(username="admin", role=UserRole.ADMIN),
        agent=await user_repository.create_user(username="agent", role=UserRole.ADMIN, full_name="Support Agent"),
        requester=await user_repository.create_user(username="requester", email="requester@example.com"),
        other=await user_repository.create_user(username="other"),
        inactive=await user_repository.create_user(username="former", is_active=False),
    )
