from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Sequence

from sqlalchemy import case, func, literal, or_, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import TicketAttachmentTable, TicketCommentTable, TicketTable

from .models import (
    Ticket,
    TicketAttachment,
    TicketCategory,
    TicketComment,
    TicketLevel,
    TicketPage,
    TicketPriority,
    TicketStats,
)
from .schemas import PageRequest, TicketFilters
from .state import ACTIVE_STATUSES, LIFECYCLE_STAMPS, TicketChanges, TicketStatus

_SORT_COLUMNS = {
    "created_at": TicketTable.created_at,
    "updated_at": TicketTable.updated_at,
    "priority": TicketTable.priority,
    "ticket_number": TicketTable.ticket_number,
}


class TicketRepository:
    """Persistence helper wrapping ``tickets``, ``ticket_comments`` and ``ticket_attachments``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def add_ticket(self, session: AsyncSession, ticket: Ticket) -> Ticket:
        """Stage a new ticket in ``session``; the caller owns the transaction."""

        session.add(
            TicketTable(
                id=ticket.id,
                ticket_number=ticket.ticket_number,
                title=ticket.title,
                description=ticket.description,
                category=ticket.category.value,
                priority=ticket.priority.value,
                impact=ticket.impact.value,
                urgency=ticket.urgency.value,
                status=ticket.status.value,
                tags=list(ticket.tags),
                resolution=ticket.resolution,
                estimated_resolution_time=ticket.estimated_resolution_time,
                created_by=ticket.created_by,
                assigned_to=ticket.assigned_to,
                resolved_at=ticket.resolved_at,
                closed_at=ticket.closed_at,
                created_at=ticket.created_at,
                updated_at=ticket.updated_at,
            )
        )
        await session.flush()
        for position, attachment in enumerate(ticket.attachments):
            session.add(
                TicketAttachmentTable(
                    ticket_id=ticket.id,
                    position=position,
                    filename=attachment.filename,
                    original_name=attachment.original_name,
                    path=attachment.path,
                    size=attachment.size,
                    mimetype=attachment.mimetype,
                    uploaded_at=attachment.uploaded_at,
                )
            )
        await session.flush()
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._session_factory() as session:
            row = await session.get(TicketTable, ticket_id)
            if row is None:
                return None
            tickets = await self._hydrate(session, [row])
        return tickets[0]

    async def list_tickets(
        self,
        filters: TicketFilters,
        page: PageRequest,
        *,
        visible_to: str | None = None,
    ) -> TicketPage:
        """Return one page of tickets.

        ``visible_to`` restricts the result to tickets created by or assigned to
        that user id; ``None`` lists every ticket.
        """

        conditions: list[Any] = []
        if visible_to is not None:
            conditions.append(
                or_(TicketTable.created_by == visible_to, TicketTable.assigned_to == visible_to)
            )
        if filters.status is not None:
            conditions.append(TicketTable.status == filters.status.value)
        if filters.priority is not None:
            conditions.append(TicketTable.priority == filters.priority.value)
        if filters.category is not None:
            conditions.append(TicketTable.category == filters.category.value)
        if filters.assigned_to is not None:
            conditions.append(TicketTable.assigned_to == filters.assigned_to)
        if filters.created_by is not None:
            conditions.append(TicketTable.created_by == filters.created_by)
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    TicketTable.title.ilike(pattern),
                    TicketTable.description.ilike(pattern),
                    TicketTable.ticket_number.ilike(pattern),
                )
            )

        column = _SORT_COLUMNS[page.sort_by]
        ordering = column.desc() if page.sort_order == "desc" else column.asc()

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count()).select_from(TicketTable).where(*conditions)
            )
            result = await session.execute(
                select(TicketTable)
                .where(*conditions)
                .order_by(ordering, TicketTable.ticket_number.desc())
                .offset(page.offset)
                .limit(page.limit)
            )
            tickets = await self._hydrate(session, list(result.scalars().all()))
        return TicketPage(items=tickets, total=int(total or 0), page=page.page, limit=page.limit)

    async def update_ticket(self, ticket_id: str, changes: TicketChanges) -> Ticket | None:
        """Write only the columns named in ``changes`` and return the stored ticket.

        Lifecycle stamps are written through ``coalesce`` so a stamp that is
        already stored survives, whatever snapshot the caller worked from.
        """

        columns = TicketTable.__table__.c
        values: dict[str, Any] = {}
        for name, value in changes.values.items():
            if isinstance(value, Enum):
                value = value.value
            if name in LIFECYCLE_STAMPS:
                value = func.coalesce(columns[name], literal(value, type_=columns[name].type))
            values[name] = value
        if changes.start_if_open:
            values["status"] = case(
                (columns.status == TicketStatus.OPEN.value, TicketStatus.IN_PROGRESS.value),
                else_=columns.status,
            )

        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(TicketTable)
                    .where(columns.id == ticket_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    return None
        return await self.get_ticket(ticket_id)

    async def add_comment(self, comment: TicketComment) -> bool:
        """Append ``comment`` and bump the ticket's ``updated_at`` in one transaction."""

        async with self._session_factory() as session:
            async with session.begin():
                row = await session.get(TicketTable, comment.ticket_id)
                if row is None:
                    return False
                session.add(
                    TicketCommentTable(
                        id=comment.id,
                        ticket_id=comment.ticket_id,
                        author=comment.author,
                        message=comment.message,
                        is_internal=comment.is_internal,
                        created_at=comment.created_at,
                    )
                )
                row.updated_at = comment.created_at
        return True

    async def get_stats(self) -> TicketStats:
        async with self._session_factory() as session:
            by_status = await self._count_by(session, TicketTable.status)
            by_priority = await self._count_by(session, TicketTable.priority)
            by_category = await self._count_by(session, TicketTable.category)
        return TicketStats(
            total=sum(by_status.values()),
            by_status={status.value: by_status.get(status.value, 0) for status in TicketStatus},
            by_priority=by_priority,
            by_category=by_category,
        )

    async def count_by_status(self, *, created_by: str | None = None) -> dict[str, int]:
        """Ticket counts for every status, optionally limited to one creator."""

        statement = select(TicketTable.status, func.count()).group_by(TicketTable.status)
        if created_by is not None:
            statement = statement.where(TicketTable.created_by == created_by)
        async with self._session_factory() as session:
            result = await session.execute(statement)
            counts = {str(value): int(count) for value, count in result.all()}
        return {status.value: counts.get(status.value, 0) for status in TicketStatus}

    async def count_active_for_user(self, user_id: str) -> int:
        """Count unfinished tickets the user created or is assigned to."""

        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(TicketTable)
                .where(
                    TicketTable.status.in_([status.value for status in ACTIVE_STATUSES]),
                    or_(TicketTable.created_by == user_id, TicketTable.assigned_to == user_id),
                )
            )
        return int(total or 0)

    @staticmethod
    async def _count_by(
session: AsyncSession, column: Any) -> dict[str, int]:
        result = await session.execute(select(column, func.count()).group_by(column))
        return {str(value): int(count) for value, count in result.all()}

    async def _hydrate(self, session: AsyncSession, rows: Sequence[TicketTable]) -> list[Ticket]:
        if not rows:
            return []
        ticket_ids = [row.id for row in rows]
        comment_result = await session.execute(
            select(TicketCommentTable)
            .where(TicketCommentTable.ticket_id.in_(ticket_ids))
            .order_by(TicketCommentTable.created_at.asc())
        )
        attachment_result = await session.execute(
            select(TicketAttachmentTable)
            .where(TicketAttachmentTable.ticket_id.in_(ticket_ids))
            .order_by(TicketAttachmentTable.position.asc())
        )

        comments: dict[str, list[TicketComment]] = defaultdict(list)
        for comment_row in comment_result.scalars().all():
            comments[comment_row.ticket_id].append(self._table_to_comment(comment_row))
        attachments: dict[str, list[TicketAttachment]] = defaultdict(list)
        for attachment_row in attachment_result.scalars().all():
            attachments[attachment_row.ticket_id].append(self._table_to_attachment(attachment_row))

        return [
            self._table_to_ticket(row, comments=comments[row.id], attachments=attachments[row.id])
            for row in rows
        ]

    @staticmethod
    def _table_to_ticket(
        row: TicketTable,
        *,
        comments: list[TicketComment],
        attachments: list[TicketAttachment],
    ) -> Ticket:
        return Ticket(
            id=row.id,
            ticket_number=row.ticket_number,
            title=row.title,
            description=row.description,
            category=TicketCategory(row.category),
            priority=TicketPriority(row.priority),
            impact=TicketLevel(row.impact),
            urgency=TicketLevel(row.urgency),
            status=TicketStatus(row.status),
            tags=list(row.tags or []),
            created_by=row.created_by,
            assigned_to=row.assigned_to,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
            resolution=row.resolution,
            estimated_resolution_time=_optional_datetime(row.estimated_resolution_time),
            resolved_at=_optional_datetime(row.resolved_at),
            closed_at=_optional_datetime(row.closed_at),
            attachments=attachments,
            comments=comments,
        )

    @staticmethod
    def _table_to_comment(row: TicketCommentTable) -> TicketComment:
        return TicketComment(
            id=row.id,
            ticket_id=row.ticket_id,
            author=row.author,
            message=row.message,
            is_internal=bool(row.is_internal),
            created_at=_ensure_datetime(row.created_at),
        )

    @staticmethod
    def _table_to_attachment(row: TicketAttachmentTable) -> TicketAttachment:
        return TicketAttachment(
            filename=row.filename,
            original_name=row.original_name,
            path=row.path,
            size=row.size,
            mimetype=row.mimetype,
            uploaded_at=_ensure_datetime(row.uploaded_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")


def _optional_datetime(value: datetime | None) -> datetime | None:
    return None if value is None else _ensure_datetime(value)
