from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from helpdesk.dependencies.auth import CurrentActor, get_user_repository
from helpdesk.dependencies.tickets import AdminActor
from helpdesk.dependencies.users import UserServiceDep
from helpdesk.tickets.models import Ticket, TicketCategory, TicketPriority
from helpdesk.tickets.state import TicketStatus
from helpdesk.users.models import User, UserRole
from helpdesk.users.repository import EmailInUseError, UserNotFoundError, UserRepository
from helpdesk.users.schemas import UserUpdate
from helpdesk.users.service import Dashboard, UserServiceError

router = APIRouter(prefix="/users", tags=["users"])

UserRepositoryDep = Annotated[UserRepository, Depends(get_user_repository)]


class UserModel(BaseModel):
    id: str
    username: str
    email: str | None
    full_name: str | None
    department: str | None
    role: UserRole
    is_active: bool
    created_at: datetime

    @classmethod
    def from_entity(cls, user: User) -> "UserModel":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            full_name=user.full_name,
            department=user.department,
            role=user.role,
            is_active=user.is_active,
            created_at=user.created_at,
        )


class TicketSummaryModel(BaseModel):
    id: str
    ticket_number: str
    title: str
    category: TicketCategory
    priority: TicketPriority
    status: TicketStatus
    created_by: str
    assigned_to: str | None
    created_at: datetime

    @classmethod
    def from_entity(cls, ticket: Ticket) -> "TicketSummaryModel":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            category=ticket.category,
            priority=ticket.priority,
            status=ticket.status,
            created_by=ticket.created_by,
            assigned_to=ticket.assigned_to,
            created_at=ticket.created_at,
        )


class DashboardModel(BaseModel):
    overview: dict[str, int]
    recent_tickets: list[TicketSummaryModel]

    @classmethod
    def from_entity(cls, dashboard: Dashboard) -> "DashboardModel":
        return cls(
            overview=dict(dashboard.overview),
            recent_tickets=[TicketSummaryModel.from_entity(ticket) for ticket in dashboard.recent_tickets],
        )


@router.get("", response_model=list[UserModel])
async def list_users(
    users: UserRepositoryDep,
    _: AdminActor,
    role: UserRole | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    search: str | None = Query(default=None, max_length=100),
) -> list[UserModel]:
    found = await users.list_users(role=role, is_active=is_active, search=search)
    return [UserModel.from_entity(user) for user in found]


@router.get("/support-staff", response_model=list[UserModel], summary="Active users tickets can be assigned to")
async def list_support_staff(users: UserRepositoryDep, _: CurrentActor) -> list[UserModel]:
    return [UserModel.from_entity(user) for user in await users.list_support_staff()]


@router.get("/dashboard", response_model=DashboardModel, summary="Ticket overview for the current user")
async def get_dashboard(service: UserServiceDep, actor: CurrentActor) -> DashboardModel:
    return DashboardModel.from_entity(await service.dashboard(actor))


@router.get("/{user_id}", response_model=UserModel)
async def get_user(user_id: str, users: UserRepositoryDep, _: AdminActor) -> UserModel:
    user = await users.get_user(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserModel.from_entity(user)


@router.put("/{user_id}", response_model=UserModel, summary="Edit a user account")
async def update_user(
    user_id: str,
    payload: UserUpdate,
    service: UserServiceDep,
    actor: AdminActor,
) -> UserModel:
    try:
        user = await service.update_user(actor, user_id, payload)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except EmailInUseError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except UserServiceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UserModel.from_entity(user)


@router.delete("/{user_id}", response_model=UserModel, summary="Deactivate a user account")
async def deactivate_user(user_id: str, service: UserServiceDep, actor: AdminActor) -> UserModel:
    try:
        user = await service.deactivate_user(actor, user_id)
    except UserNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UserServiceError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return UserModel.from_entity(user)
