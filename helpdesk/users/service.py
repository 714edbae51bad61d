"""Account administration rules that depend on ticket data."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from helpdesk.tickets.models import Ticket
from helpdesk.tickets.repository import TicketRepository
from helpdesk.tickets.schemas import PageRequest, TicketFilters
from helpdesk.tickets.state import TicketStatus

from .models import Actor, User
from .repository import UserNotFoundError, UserRepository
from .schemas import UserUpdate

logger = logging.getLogger(__name__)

RECENT_TICKETS = 10


class UserServiceError(RuntimeError):
    """Base error for refused account operations."""


class SelfDeactivationError(UserServiceError):
    def __init__(self) -> None:
        super().__init__("You cannot deactivate your own account")


class UserHasActiveTicketsError(UserServiceError):
    def __init__(self, user_id: str, count: int) -> None:
        super().__init__(f"User {user_id} still has {count} active ticket(s)")
        self.count = count


@dataclass(slots=True)
class Dashboard:
    overview: dict[str, int]
    recent_tickets: list[Ticket] = field(default_factory=list)


class UserService:
    """Guards account changes against open work and builds per-user dashboards."""

    def __init__(self, users: UserRepository, tickets: TicketRepository) -> None:
        self._users = users
        self._tickets = tickets

    async def update_user(self, actor: Actor, user_id: str, update: UserUpdate) -> User:
        changes = update.changes()
        if changes.get("is_active") is False:
            await self._ensure_can_deactivate(actor, user_id)
        user = await self._users.update_user(user_id, changes)
        logger.info("User %s updated by %s (%s)", user_id, actor.id, ", ".join(sorted(changes)))
        return user

    async def deactivate_user(self, actor: Actor, user_id: str) -> User:
        await self._ensure_can_deactivate(actor, user_id)
        user = await self._users.deactivate_user(user_id)
        logger.info("User %s deactivated by %s", user_id, actor.id)
        return user

    async def dashboard(self, actor: Actor) -> Dashboard:
        if actor.is_admin:
            counts = await self._tickets.count_by_status()
            overview = {
                "total_users": await self._users.count_users(is_active=True),
                "total_tickets": sum(counts.values()),
                "open_tickets": counts[TicketStatus.OPEN.value],
                "in_progress_tickets": counts[TicketStatus.IN_PROGRESS.value],
            }
            filters = TicketFilters()
        else:
            counts = await self._tickets.count_by_status(created_by=actor.id)
            overview = {
                "my_tickets": sum(counts.values()),
                "open_tickets": counts[TicketStatus.OPEN.value],
                "in_progress_tickets": counts[TicketStatus.IN_PROGRESS.value],
                "resolved_tickets": counts[TicketStatus.RESOLVED.value],
            }
            filters = TicketFilters(created_by=actor.id)
        page = await self._tickets.list_tickets(filters, PageRequest(limit=RECENT_TICKETS))
        return Dashboard(overview=overview, recent_tickets=page.items)

    async def _ensure_can_deactivate(self, actor: Actor, user_id: str) -> None:
        if user_id == actor.id:
            raise SelfDeactivationError()
        if await self._users.get_user(user_id) is None:
            raise UserNotFoundError(f"User {user_id} not found")
        active = await self._tickets.count_active_for_user(user_id)
        if active:
            raise UserHasActiveTicketsError(user_id, active)
