"""Day-scoped ticket number allocation.

Numbers look like ``TKT-20240131-0007``: the calendar day followed by a four
digit sequence that restarts at ``0001`` every day. Allocation reads the
highest sequence already used for the day and adds one, so two concurrent
creations could compute the same value. The allocator therefore runs the read
and the insert as one critical section: an ``asyncio.Lock`` serialises
allocations inside the process and the unique constraint on
``tickets.ticket_number`` rejects duplicates coming from other processes, in
which case the whole transaction is retried with a freshly computed sequence.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import TICKET_NUMBER_CONFLICTS
from packages.db.models import TicketTable

from .errors import TicketConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TICKET_NUMBER_PREFIX = "TKT"
MAX_SEQUENCE = 9999
_TICKET_NUMBER_RE = re.compile(r"^TKT-(?P<day>\d{8})-(?P<sequence>\d{4})$")


def format_ticket_number(day: date, sequence: int) -> str:
    if not 1 <= sequence <= MAX_SEQUENCE:
        raise ValueError(f"Sequence {sequence} is outside 1..{MAX_SEQUENCE}")
    return f"{TICKET_NUMBER_PREFIX}-{day:%Y%m%d}-{sequence:04d}"


def parse_sequence(ticket_number: str) -> int | None:
    match = _TICKET_NUMBER_RE.match(ticket_number)
    if match is None:
        return None
    return int(match.group("sequence"))


class SequenceAllocator:
    """Serialised allocator for ``TKT-YYYYMMDD-NNNN`` identifiers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        tz: tzinfo = timezone.utc,
        max_attempts: int = 5,
        registry: MetricsRegistry | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._session_factory = session_factory
        self._tz = tz
        self._max_attempts = max_attempts
        self._lock = asyncio.Lock()
        self._conflicts = (registry or metrics_registry).counter(TICKET_NUMBER_CONFLICTS)

    def local_day(self, moment: datetime) -> date:
        return moment.astimezone(self._tz).date()

    def day_window(self, day: date) -> tuple[datetime, datetime]:
        """Return the UTC bounds of ``day`` in the allocator's timezone."""

        start = datetime.combine(day, time.min, tzinfo=self._tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz) - timedelta(microseconds=1)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    async def next_number(self, session: AsyncSession, moment: datetime) -> str:
        """Compute the number following the last one issued on ``moment``'s day."""

        day = self.local_day(moment)
        start, end = self.day_window(day)
        result = await session.execute(
            select(TicketTable.ticket_number)
            .where(TicketTable.created_at >= start, TicketTable.created_at <= end)
            .order_by(TicketTable.ticket_number.desc())
            .limit(1)
        )
        last = result.scalars().first()
        sequence = 1
        if last is not None:
            sequence = (parse_sequence(last) or 0) + 1
        if sequence > MAX_SEQUENCE:
            raise TicketConflictError(f"Ticket numbers for {day:%Y-%m-%d} are exhausted")
        return format_ticket_number(day, sequence)

    async def allocate(
        self,
        persist: Callable[[AsyncSession, str, datetime], Awaitable[T]],
        *,
        clock: Callable[[], datetime],
    ) -> T:
        """Allocate a number and persist the record using it.

        The creation time is read from ``clock`` inside the critical section,
        so a later ``created_at`` never receives a lower sequence. ``persist``
        receives the open session, the allocated number and that time, and must
        write the ticket inside the session. The transaction commits when it
        returns; on a duplicate number the transaction is rolled back and the
        allocation starts over.
        """

        async with self._lock:
            for attempt in range(1, self._max_attempts + 1):
                ticket_number: str | None = None
                try:
                    async with self._session_factory() as session:
                        async with session.begin():
                            moment = clock()
                            ticket_number = await self.next_number(session, moment)
                            return await persist(session, ticket_number, moment)
                except IntegrityError:
                    if ticket_number is None or not await self._is_taken(ticket_number):
                        raise
                    self._conflicts.inc()
                    logger.warning(
                        "Ticket number %s already taken (attempt %d/%d)",
                        ticket_number,
                        attempt,
                        self._max_attempts,
                    )
        raise TicketConflictError(
            f"Could not allocate a unique ticket number after {self._max_attempts} attempts"
        )

    async def _is_taken(self, ticket_number: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(TicketTable.id).where(TicketTable.ticket_number == ticket_number)
            )
            return result.first() is not None
