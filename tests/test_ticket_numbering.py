from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from helpdesk.metrics.definitions import TICKET_NUMBER_CONFLICTS
from helpdesk.tickets import SequenceAllocator, TicketCategory, TicketConflictError, TicketService
from helpdesk.tickets.numbering import format_ticket_number, parse_sequence
from helpdesk.tickets.schemas import PageRequest, TicketDraft, TicketFilters
from packages.db.models import TicketTable


def _draft(title: str = "Cannot reach VPN") -> TicketDraft:
    return TicketDraft(
        title=title,
        description="The VPN client times out after login.",
        category=TicketCategory.NETWORK_ISSUE,
    )


class StaleFirstAllocator(SequenceAllocator):
    """Hands out queued numbers before computing fresh ones, like a racing process would."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.stale: list[str] = []

    async def next_number(self, session, moment):
        if self.stale:
            return self.stale.pop(0)
        return await super().next_number(session, moment)


def test_format_and_parse_ticket_number():
    number = format_ticket_number(date(2024, 1, 31), 7)
    assert number == "TKT-20240131-0007"
    assert parse_sequence(number) == 7
    assert parse_sequence("INC-20240131-0007") is None


def test_format_rejects_out_of_range_sequence():
    with pytest.raises(ValueError):
        format_ticket_number(date(2024, 1, 31), 0)
    with pytest.raises(ValueError):
        format_ticket_number(date(2024, 1, 31), 10000)


def test_allocator_requires_a_positive_attempt_budget(session_factory):
    with pytest.raises(ValueError):
        SequenceAllocator(session_factory, max_attempts=0)


def test_day_window_uses_the_configured_timezone(session_factory):
    allocator = SequenceAllocator(session_factory, tz=ZoneInfo("Europe/Istanbul"))

    start, end = allocator.day_window(date(2024, 1, 31))

    assert start == datetime(2024, 1, 30, 21, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 1, 31, 20, 59, 59, 999999, tzinfo=timezone.utc)
    assert allocator.local_day(datetime(2024, 1, 31, 22, 0, tzinfo=timezone.utc)) == date(2024, 2, 1)


@pytest.mark.asyncio
async def test_first_ticket_of_the_day_gets_sequence_one(service, users, clock):
    ticket = await service.create_ticket(users.requester.as_actor(), _draft())

    assert ticket.ticket_number == "TKT-20240131-0001"


@pytest.mark.asyncio
async def test_sequence_restarts_on_a_new_day(service, users, clock):
    actor = users.requester.as_actor()
    await service.create_ticket(actor, _draft())
    await service.create_ticket(actor, _draft())

    clock.advance(days=1)
    ticket = await service.create_ticket(actor, _draft())

    assert ticket.ticket_number == "TKT-20240201-0001"


@pytest.mark.asyncio
async def test_concurrent_creations_number_in_creation_order(
    ticket_repository, user_repository, allocator, registry, ticking_clock, users
):
    service = TicketService(ticket_repository, user_repository, allocator, registry=registry, clock=ticking_clock)
    actor = users.requester.as_actor()

    tickets = await asyncio.gather(
        *(service.create_ticket(actor, _draft(f"Outage report {index}")) for index in range(10))
    )

    by_creation = sorted(tickets, key=lambda ticket: ticket.created_at)
    assert len({ticket.created_at for ticket in tickets}) == 10
    assert [ticket.ticket_number for ticket in by_creation] == [
        f"TKT-20240131-{sequence:04d}" for sequence in range(1, 11)
    ]
    stored = await ticket_repository.list_tickets(
        TicketFilters(), PageRequest(limit=10, sort_by="created_at", sort_order="asc")
    )
    assert [ticket.ticket_number for ticket in stored.items] == [
        ticket.ticket_number for ticket in by_creation
    ]


@pytest.mark.asyncio
async def test_taken_number_is_retried_with_a_fresh_sequence(
    session_factory, ticket_repository, user_repository, registry, clock, users
):
    allocator = StaleFirstAllocator(session_factory, registry=registry)
    service = TicketService(ticket_repository, user_repository, allocator, registry=registry, clock=clock)
    actor = users.requester.as_actor()

    first = await service.create_ticket(actor, _draft())
    allocator.stale.append(first.ticket_number)
    second = await service.create_ticket(actor, _draft())

    assert first.ticket_number == "TKT-20240131-0001"
    assert second.ticket_number == "TKT-20240131-0002"
    assert registry.counter(TICKET_NUMBER_CONFLICTS).value() == 1
    assert await ticket_repository.get_ticket(second.id) is not None


@pytest.mark.asyncio
async def test_allocation_gives_up_after_max_attempts(
    session_factory, ticket_repository, user_repository, registry, clock, users
):
    # A row carrying today's first number but stamped yesterday stays invisible to
    # the day scan, so every attempt collides with it.
    async with session_factory() as session:
        async with session.begin():
            session.add(
                TicketTable(
                    ticket_number="TKT-20240131-0001",
                    title="Imported ticket",
                    description="Imported from the previous system.",
                    category=TicketCategory.OTHER.value,
                    priority="Medium",
                    impact="Low",
                    urgency="Low",
                    status="Open",
                    tags=[],
                    created_by=users.admin.id,
                    created_at=clock() - timedelta(days=1),
                    updated_at=clock() - timedelta(days=1),
                )
            )

    allocator = SequenceAllocator(session_factory, max_attempts=3, registry=registry)
    service = TicketService(ticket_repository, user_repository, allocator, registry=registry, clock=clock)

    with pytest.raises(TicketConflictError):
        await service.create_ticket(users.requester.as_actor(), _draft())

    assert registry.counter(TICKET_NUMBER_CONFLICTS).value() == 3


@pytest.mark.asyncio
async def test_exhausted_day_is_reported_as_a_conflict(session_factory, service, users, clock):
    async with session_factory() as session:
        async with session.begin():
            session.add(
                TicketTable(
                    ticket_number="TKT-20240131-9999",
                    title="Last ticket of the day",
                    description="Takes the final sequence number.",
                    category=TicketCategory.OTHER.value,
                    priority="Medium",
                    impact="Low",
                    urgency="Low",
                    status="Open",
                    tags=[],
                    created_by=users.admin.id,
                    created_at=clock() - timedelta(minutes=5),
                    updated_at=clock() - timedelta(minutes=5),
                )
            )

    with pytest.raises(TicketConflictError):
        await service.create_ticket(users.requester.as_actor(), _draft())

    clock.advance(days=1)
    ticket = await service.create_ticket(users.requester.as_actor(), _draft())
    assert ticket.ticket_number == "TKT-20240201-0001"
