from __future__ import annotations

import logging
import os
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.metrics import MetricsRegistry, metrics_registry
from helpdesk.metrics.definitions import (
    TICKET_ACCESS_DENIED,
    TICKET_COMMENTS,
    TICKET_CREATION_DURATION,
    TICKETS_CREATED,
)
from helpdesk.users.models import Actor
from helpdesk.users.repository import UserRepository

from .errors import (
    InvalidAssigneeError,
    TicketAccessDeniedError,
    TicketNotFoundError,
    TicketValidationError,
)
from .models import Ticket, TicketAttachment, TicketComment, TicketPage, TicketStats
from .numbering import SequenceAllocator
from .policy import (
    Action,
    Denied,
    Granted,
    TicketAction,
    UpdateFields,
    authorize,
    can_view,
    effective_internal,
    visible_comments,
)
from .repository import TicketRepository
from .schemas import AttachmentMetadata, PageRequest, TicketDraft, TicketFilters, TicketPatch
from .state import TicketChanges, TicketLifecycle

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Fields that cannot be cleared; an explicit null in a patch leaves them untouched.
_REQUIRED_FIELDS = frozenset({"title", "description", "category", "priority", "impact", "urgency", "status"})
_PLAIN_FIELDS = (
    "title",
    "description",
    "category",
    "priority",
    "impact",
    "urgency",
    "tags",
    "resolution",
    "estimated_resolution_time",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketService:
    """High level orchestration of ticket creation, access control and lifecycle."""

    def __init__(
        self,
        repository: TicketRepository,
        users: UserRepository,
        allocator: SequenceAllocator,
        *,
        max_attachments: int = 5,
        max_attachment_size: int = 5 * 1024 * 1024,
        allowed_attachment_types: Iterable[str] = ("jpg", "jpeg", "png", "gif", "pdf", "doc", "docx", "txt"),
        registry: MetricsRegistry | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._users = users
        self._allocator = allocator
        self._max_attachments = max_attachments
        self._max_attachment_size = max_attachment_size
        self._allowed_attachment_types = frozenset(ext.lower().lstrip(".") for ext in allowed_attachment_types)
        self._clock = clock
        registry = registry or metrics_registry
        self._created = registry.counter(TICKETS_CREATED)
        self._denied = registry.counter(TICKET_ACCESS_DENIED)
        self._comments = registry.counter(TICKET_COMMENTS)
        self._creation_duration = registry.histogram(TICKET_CREATION_DURATION)

    async def ensure_schema(self) -> None:
        await self._repository.ensure_schema()

    async def create_ticket(
        self,
        actor: Actor,
        draft: TicketDraft,
        attachments: Sequence[AttachmentMetadata] = (),
    ) -> Ticket:
        self._validate_attachments(attachments)
        ticket_id = str(uuid.uuid4())

        async def persist(session: AsyncSession, ticket_number: str, now: datetime) -> Ticket:
            ticket = Ticket(
                id=ticket_id,
                ticket_number=ticket_number,
                title=draft.title,
                description=draft.description,
                category=draft.category,
                priority=draft.priority,
                impact=draft.impact,
                urgency=draft.urgency,
                status=TicketLifecycle.initial_state(),
                tags=list(draft.tags),
                created_by=actor.id,
                assigned_to=None,
                created_at=now,
                updated_at=now,
                attachments=[
                    TicketAttachment(
                        filename=item.filename,
                        original_name=item.original_name,
                        path=item.path,
                        size=item.size,
                        mimetype=item.mimetype,
                        uploaded_at=now,
                    )
                    for item in attachments
                ],
            )
            return await self._repository.add_ticket(session, ticket)

        with tracer.start_as_current_span("tickets.create") as span, self._creation_duration.time():
            ticket = await self._allocator.allocate(persist, clock=self._clock)
            span.set_attribute("ticket.number", ticket.ticket_number)
        self._created.inc()
        logger.info("Ticket %s created by %s", ticket.ticket_number, actor.id)
        return ticket

    async def list_tickets(
        self,
        actor: Actor,
        filters: TicketFilters | None = None,
        page: PageRequest | None = None,
    ) -> TicketPage:
        result = await self._repository.list_tickets(
            filters or TicketFilters(),
            page or PageRequest(),
            visible_to=None if actor.is_admin else actor.id,
        )
        result.items = [self._for_reader(actor, ticket) for ticket in result.items]
        return result

    async def get_ticket(self, actor: Actor, ticket_id: str) -> Ticket:
        ticket = await self._load(actor, ticket_id, TicketAction.READ)
        return self._for_reader(actor, ticket)

    async def update_ticket(self, actor: Actor, ticket_id: str, patch: TicketPatch) -> Ticket:
        requested = patch.requested_fields()
        _, decision = await self._load_with_decision(actor, ticket_id, UpdateFields.of(requested))
        permitted = decision.fields
        dropped = requested - permitted
        if dropped:
            logger.debug("Dropping fields %s from update of %s by %s", sorted(dropped), ticket_id, actor.id)

        now = self._clock()
        changes = TicketChanges(
            {
                name: getattr(patch, name)
                for name in _PLAIN_FIELDS
                if name in permitted and not (name in _REQUIRED_FIELDS and getattr(patch, name) is None)
            }
        )
        if "tags" in changes.values and changes.values["tags"] is None:
            changes.values["tags"] = []

        if "assigned_to" in permitted:
            await self._ensure_assignable(patch.assigned_to)
            TicketLifecycle.set_assignee(changes, patch.assigned_to)
        if "status" in permitted and patch.status is not None:
            TicketLifecycle.set_status(changes, patch.status, now=now)
        changes.values["updated_at"] = now

        saved = await self._repository.update_ticket(ticket_id, changes)
        if saved is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        logger.info("Ticket %s updated by %s (%s)", saved.ticket_number, actor.id, ", ".join(sorted(permitted)))
        return self._for_reader(actor, saved)

    async def add_comment(
        self,
        actor: Actor,
        ticket_id: str,
        message: str,
        *,
        wants_internal: bool = False,
    ) -> TicketComment:
        ticket = await self._load(actor, ticket_id, TicketAction.ADD_COMMENT)
        is_internal = effective_internal(actor, wants_internal)
        if wants_internal and not is_internal:
            logger.debug("Downgrading internal comment by %s on %s", actor.id, ticket_id)

        comment = TicketComment(
            id=str(uuid.uuid4()),
            ticket_id=ticket.id,
            author=actor.id,
            message=message,
            is_internal=is_internal,
            created_at=self._clock(),
        )
        if not await self._repository.add_comment(comment):
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        self._comments.inc(labels={"visibility": "internal" if is_internal else "public"})
        return comment

    async def assign_ticket(self, actor: Actor, ticket_id: str, assignee_id: str | None) -> Ticket:
        await self._load(actor, ticket_id, TicketAction.ASSIGN)
        await self._ensure_assignable(assignee_id)
        changes = TicketLifecycle.set_assignee(TicketChanges(), assignee_id)
        changes.values["updated_at"] = self._clock()
        saved = await self._repository.update_ticket(ticket_id, changes)
        if saved is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        logger.info("Ticket %s assigned to %s by %s", saved.ticket_number, assignee_id, actor.id)
        return self._for_reader(actor, saved)

    async def get_stats(self, actor: Actor) -> TicketStats:
        if not actor.is_admin:
            self._denied.inc(labels={"action": "stats"})
            raise TicketAccessDeniedError("Admin access required")
        return await self._repository.get_stats()

    async def _load(self, actor: Actor, ticket_id: str, action: Action) -> Ticket:
        ticket, _ = await self._load_with_decision(actor, ticket_id, action)
        return ticket

    async def _load_with_decision(self, actor: Actor, ticket_id: str, action: Action) -> tuple[Ticket, Granted]:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")

        decision = authorize(actor, ticket, action)
        if isinstance(decision, Denied):
            label = "update_fields" if isinstance(action, UpdateFields) else action.value
            self._denied.inc(labels={"action": label})
            if not can_view(actor, ticket):
                # Without read access the ticket must look like it does not exist.
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            raise TicketAccessDeniedError(decision.reason)
        return ticket, decision

    async def _ensure_assignable(self, assignee_id: str | None) -> None:
        if assignee_id is None:
            return
        assignee = await self._users.get_user(assignee_id)
        if assignee is None:
            raise InvalidAssigneeError(f"Assignee {assignee_id} not found")
        if not assignee.is_active:
            raise InvalidAssigneeError(f"Assignee {assignee_id} is deactivated")

    def _validate_attachments(self, attachments: Sequence[AttachmentMetadata]) -> None:
        if len(attachments) > self._max_attachments:
            raise TicketValidationError(
                "attachments", f"Too many files. Maximum is {self._max_attachments} files."
            )
        for attachment in attachments:
            if attachment.size > self._max_attachment_size:
                raise TicketValidationError(
                    "attachments", f"File {attachment.original_name} exceeds {self._max_attachment_size} bytes."
                )
            extension = os.path.splitext(attachment.original_name)[1].lower().lstrip(".")
            if extension not in self._allowed_attachment_types:
                allowed = ", ".join(sorted(self._allowed_attachment_types))
                raise TicketValidationError(
                    "attachments", f"File type .{extension} is not allowed. Allowed types: {allowed}"
                )

    @staticmethod
    def _for_reader(actor: Actor, ticket: Ticket) -> Ticket:
        return replace(ticket, comments=visible_comments(actor, ticket.comments))
