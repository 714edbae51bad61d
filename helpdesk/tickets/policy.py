"""Role matrix deciding what an actor may do with a ticket.

``authorize`` is a pure function of the actor and the ticket's ownership, so it
can be exercised without storage or HTTP. It returns ``Granted`` with the full
capability set the actor holds on the ticket (and, for field updates, the
subset of requested fields that survive), or ``Denied``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol, Sequence, Union

from helpdesk.users.models import Actor

from .models import TicketComment


class TicketAction(str, Enum):
    READ = "read"
    UPDATE_FIELDS = "update_fields"
    ADD_COMMENT = "add_comment"
    ADD_INTERNAL_COMMENT = "add_internal_comment"
    ASSIGN = "assign"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class UpdateFields:
    """Request to change the named ticket fields."""

    fields: frozenset[str]

    @classmethod
    def of(cls, fields: Iterable[str]) -> UpdateFields:
        return cls(frozenset(fields))


Action = Union[TicketAction, UpdateFields]


@dataclass(frozen=True, slots=True)
class Granted:
    capabilities: frozenset[TicketAction]
    fields: frozenset[str] = frozenset()

    def allows(self, action: TicketAction) -> bool:
        return action in self.capabilities


@dataclass(frozen=True, slots=True)
class Denied:
    reason: str


Decision = Union[Granted, Denied]


class OwnedTicket(Protocol):
    created_by: str
    assigned_to: str | None


ALL_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "description",
        "category",
        "priority",
        "impact",
        "urgency",
        "status",
        "tags",
        "resolution",
        "estimated_resolution_time",
        "assigned_to",
    }
)
PARTICIPANT_FIELDS: frozenset[str] = frozenset({"title", "description", "priority"})

ADMIN_CAPABILITIES: frozenset[TicketAction] = frozenset(TicketAction)
PARTICIPANT_CAPABILITIES: frozenset[TicketAction] = frozenset(
    {TicketAction.READ, TicketAction.UPDATE_FIELDS, TicketAction.ADD_COMMENT}
)


def is_participant(actor: Actor, ticket: OwnedTicket) -> bool:
    return actor.id == ticket.created_by or (
        ticket.assigned_to is not None and actor.id == ticket.assigned_to
    )


def can_view(actor: Actor, ticket: OwnedTicket) -> bool:
    return actor.is_admin or is_participant(actor, ticket)


def authorize(actor: Actor, ticket: OwnedTicket, action: Action) -> Decision:
    if actor.is_admin:
        if isinstance(action, UpdateFields):
            return Granted(ADMIN_CAPABILITIES, action.fields & ALL_FIELDS)
        return Granted(ADMIN_CAPABILITIES, ALL_FIELDS)

    if not is_participant(actor, ticket):
        return Denied("actor is neither creator, assignee nor administrator")

    if isinstance(action, UpdateFields):
        return Granted(PARTICIPANT_CAPABILITIES, action.fields & PARTICIPANT_FIELDS)
    if action in PARTICIPANT_CAPABILITIES:
        return Granted(PARTICIPANT_CAPABILITIES, PARTICIPANT_FIELDS)
    return Denied(f"{action.value} requires the admin role")


def writable_fields(actor: Actor) -> frozenset[str]:
    """Fields an actor may ever change on a ticket it can update."""

    return ALL_FIELDS if actor.is_admin else PARTICIPANT_FIELDS


def effective_internal(actor: Actor, wants_internal: bool) -> bool:
    """Internal visibility is only honoured for administrators."""

    return wants_internal and actor.is_admin


def visible_comments(actor: Actor, comments: Sequence[TicketComment]) -> list[TicketComment]:
    if actor.is_admin:
        return list(comments)
    return [comment for comment in comments if not comment.is_internal]
