from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    WAITING_FOR_RESPONSE = "Waiting for Response"
    RESOLVED = "Resolved"
    CLOSED = "Closed"


# Statuses that still need work from someone.
ACTIVE_STATUSES: frozenset[TicketStatus] = frozenset(
    {TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.WAITING_FOR_RESPONSE}
)

LIFECYCLE_STAMPS = ("resolved_at", "closed_at")


@dataclass
class TicketChanges:
    """Column writes for one ticket update.

    Only the columns named in ``values`` are written. Lifecycle stamps are
    written as "keep the stored value if there is one", and ``start_if_open``
    moves the ticket to In Progress only if it is still Open when the write
    lands.
    """

    values: dict[str, Any] = field(default_factory=dict)
    start_if_open: bool = False

    @property
    def fields(self) -> frozenset[str]:
        return frozenset(self.values)


class TicketLifecycle:
    """Derive the writes that accompany status and assignment changes.

    There is no transition table: any status may follow any other one. Who may
    change the status at all is decided by the access policy. What this class
    owns are the side effects:

    * entering ``Resolved`` stamps ``resolved_at`` the first time only,
    * entering ``Closed`` stamps ``closed_at`` the first time only,
    * assigning someone to an ``Open`` ticket moves it to ``In Progress``.

    Timestamps are never cleared, even when the status later regresses.
    """

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.OPEN

    @classmethod
    def set_status(cls, changes: TicketChanges, new_status: TicketStatus, *, now: datetime) -> TicketChanges:
        changes.values["status"] = new_status
        if new_status == TicketStatus.RESOLVED:
            changes.values["resolved_at"] = now
        if new_status == TicketStatus.CLOSED:
            changes.values["closed_at"] = now
        # An explicit status always wins over the automatic start.
        changes.start_if_open = False
        return changes

    @classmethod
    def set_assignee(cls, changes: TicketChanges, assignee_id: str | None) -> TicketChanges:
        changes.values["assigned_to"] = assignee_id
        changes.start_if_open = assignee_id is not None and "status" not in changes.values
        return changes
