"""Ticket domain models and services."""

from .errors import (
    InvalidAssigneeError,
    TicketAccessDeniedError,
    TicketConflictError,
    TicketNotFoundError,
    TicketServiceError,
    TicketValidationError,
)
from .models import Ticket, TicketAttachment, TicketCategory, TicketComment, TicketLevel, TicketPriority
from .numbering import SequenceAllocator
from .policy import Denied, Granted, TicketAction, UpdateFields, authorize
from .service import TicketService
from .state import TicketLifecycle, TicketStatus

__all__ = [
    "Denied",
    "Granted",
    "InvalidAssigneeError",
    "SequenceAllocator",
    "Ticket",
    "TicketAccessDeniedError",
    "TicketAction",
    "TicketAttachment",
    "TicketCategory",
    "TicketComment",
    "TicketConflictError",
    "TicketLevel",
    "TicketLifecycle",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketService",
    "TicketServiceError",
    "TicketStatus",
    "TicketValidationError",
    "UpdateFields",
    "authorize",
]
