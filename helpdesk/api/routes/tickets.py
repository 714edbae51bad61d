from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Body, HTTPException, Query, status
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from helpdesk.dependencies.auth import CurrentActor
from helpdesk.dependencies.tickets import AdminActor, TicketServiceDep
from helpdesk.tickets.errors import (
    InvalidAssigneeError,
    TicketAccessDeniedError,
    TicketConflictError,
    TicketNotFoundError,
    TicketValidationError,
)
from helpdesk.tickets.models import (
    Ticket,
    TicketAttachment,
    TicketCategory,
    TicketComment,
    TicketLevel,
    TicketPriority,
)
from helpdesk.tickets.policy import writable_fields
from helpdesk.tickets.schemas import AttachmentMetadata, PageRequest, TicketDraft, TicketFilters, TicketPatch
from helpdesk.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(TicketDraft):
    attachments: list[AttachmentMetadata] = Field(default_factory=list)


class TicketCommentRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(..., min_length=1, max_length=1000)
    is_internal: bool = False


class TicketListQuery(TicketFilters, PageRequest):
    """Filter and paging parameters read from the query string."""


class TicketAssignRequest(BaseModel):
    assigned_to: str | None = None


class TicketCommentModel(BaseModel):
    id: str
    author: str
    message: str
    is_internal: bool
    created_at: datetime

    @classmethod
    def from_entity(cls, entity: TicketComment) -> "TicketCommentModel":
        return cls(
            id=entity.id,
            author=entity.author,
            message=entity.message,
            is_internal=entity.is_internal,
            created_at=entity.created_at,
        )


class TicketAttachmentModel(BaseModel):
    filename: str
    original_name: str
    path: str
    size: int
    mimetype: str
    uploaded_at: datetime

    @classmethod
    def from_entity(cls, entity: TicketAttachment) -> "TicketAttachmentModel":
        return cls(
            filename=entity.filename,
            original_name=entity.original_name,
            path=entity.path,
            size=entity.size,
            mimetype=entity.mimetype,
            uploaded_at=entity.uploaded_at,
        )


class TicketModel(BaseModel):
    id: str
    ticket_number: str
    title: str
    description: str
    category: TicketCategory
    priority: TicketPriority
    impact: TicketLevel
    urgency: TicketLevel
    status: TicketStatus
    tags: list[str]
    created_by: str
    assigned_to: str | None
    resolution: str | None
    estimated_resolution_time: datetime | None
    resolved_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    age_in_days: int
    resolution_time_in_hours: int | None
    attachments: list[TicketAttachmentModel]
    comments: list[TicketCommentModel]

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketModel":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            description=ticket.description,
            category=ticket.category,
            priority=ticket.priority,
            impact=ticket.impact,
            urgency=ticket.urgency,
            status=ticket.status,
            tags=list(ticket.tags),
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            resolution=ticket.resolution,
            estimated_resolution_time=ticket.estimated_resolution_time,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            age_in_days=ticket.age_in_days(),
            resolution_time_in_hours=ticket.resolution_time_in_hours,
            attachments=[TicketAttachmentModel.from_entity(item) for item in ticket.attachments],
            comments=[TicketCommentModel.from_entity(item) for item in ticket.comments],
        )


class PaginationModel(BaseModel):
    current_page: int
    total_pages: int
    total_tickets: int
    has_next_page: bool
    has_prev_page: bool


class TicketListModel(BaseModel):
    tickets: list[TicketModel]
    pagination: PaginationModel


class TicketStatsModel(BaseModel):
    total_tickets: int
    status_counts: dict[str, int]
    priority_distribution: dict[str, int]
    category_distribution: dict[str, int]


def _not_found(exc: Exception) -> HTTPException:
    return HTTPException(status_code=404, detail=str(exc))


@router.post("", response_model=TicketModel, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    try:
        ticket = await service.create_ticket(actor, payload, payload.attachments)
    except TicketValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TicketConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)


@router.get("", response_model=TicketListModel, summary="List tickets visible to the caller")
async def list_tickets(
    service: TicketServiceDep,
    actor: CurrentActor,
    query: Annotated[TicketListQuery, Query()],
) -> TicketListModel:
    result = await service.list_tickets(actor, query, query)
    return TicketListModel(
        tickets=[TicketModel.from_entity(ticket) for ticket in result.items],
        pagination=PaginationModel(
            current_page=result.page,
            total_pages=result.total_pages,
            total_tickets=result.total,
            has_next_page=result.has_next,
            has_prev_page=result.has_previous,
        ),
    )


@router.get("/stats", response_model=TicketStatsModel)
async def get_ticket_stats(service: TicketServiceDep, actor: AdminActor) -> TicketStatsModel:
    stats = await service.get_stats(actor)
    return TicketStatsModel(
        total_tickets=stats.total,
        status_counts=stats.by_status,
        priority_distribution=stats.by_priority,
        category_distribution=stats.by_category,
    )


@router.get("/{ticket_id}", response_model=TicketModel)
async def get_ticket(ticket_id: str, service: TicketServiceDep, actor: CurrentActor) -> TicketModel:
    try:
        ticket = await service.get_ticket(actor, ticket_id)
    except TicketNotFoundError as exc:
        raise _not_found(exc) from exc
    return TicketModel.from_entity(ticket)


@router.put("/{ticket_id}", response_model=TicketModel)
async def update_ticket(
    ticket_id: str,
    payload: Annotated[dict[str, Any], Body()],
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketModel:
    # Fields the actor can never write are dropped before validation, so their
    # values are not checked either.
    try:
        patch = TicketPatch.from_payload(payload, writable_fields(actor))
    except ValidationError as exc:
        raise RequestValidationError(
            [{**error, "loc": ("body", *error["loc"])} for error in exc.errors(include_url=False)]
        ) from exc
    try:
        ticket = await service.update_ticket(actor, ticket_id, patch)
    except TicketNotFoundError as exc:
        raise _not_found(exc) from exc
    except TicketAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except InvalidAssigneeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)


@router.post("/{ticket_id}/comments", response_model=TicketCommentModel, status_code=status.HTTP_201_CREATED)
async def add_ticket_comment(
    ticket_id: str,
    payload: TicketCommentRequest,
    service: TicketServiceDep,
    actor: CurrentActor,
) -> TicketCommentModel:
    try:
        comment = await service.add_comment(
            actor, ticket_id, payload.message, wants_internal=payload.is_internal
        )
    except TicketNotFoundError as exc:
        raise _not_found(exc) from exc
    return TicketCommentModel.from_entity(comment)


@router.put("/{ticket_id}/assign", response_model=TicketModel)
async def assign_ticket(
    ticket_id: str,
    payload: TicketAssignRequest,
    service: TicketServiceDep,
    actor: AdminActor,
) -> TicketModel:
    try:
        ticket = await service.assign_ticket(actor, ticket_id, payload.assigned_to)
    except TicketNotFoundError as exc:
        raise _not_found(exc) from exc
    except InvalidAssigneeError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TicketModel.from_entity(ticket)
