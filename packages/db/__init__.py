"""Database models and utilities."""

from .models import (
    TicketAttachmentTable,
    TicketCommentTable,
    TicketTable,
    UserTable,
)

__all__ = [
    "TicketAttachmentTable",
    "TicketCommentTable",
    "TicketTable",
    "UserTable",
]
