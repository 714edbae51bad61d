from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .state import TicketStatus


class TicketPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TicketLevel(str, Enum):
    """Scale shared by the impact and urgency classifications."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class TicketCategory(str, Enum):
    TECHNICAL_ISSUE = "Technical Issue"
    SOFTWARE_INSTALLATION = "Software Installation"
    HARDWARE_PROBLEM = "Hardware Problem"
    NETWORK_ISSUE = "Network Issue"
    ACCOUNT_ACCESS = "Account Access"
    EMAIL_PROBLEM = "Email Problem"
    PRINTER_ISSUE = "Printer Issue"
    MOBILE_DEVICE = "Mobile Device"
    SECURITY_CONCERN = "Security Concern"
    TRAINING_REQUEST = "Training Request"
    GENERAL_INQUIRY = "General Inquiry"
    OTHER = "Other"


@dataclass(slots=True)
class TicketAttachment:
    """Metadata of a stored upload; the bytes live in external file storage."""

    filename: str
    original_name: str
    path: str
    size: int
    mimetype: str
    uploaded_at: datetime


@dataclass(slots=True)
class TicketComment:
    """Single entry of a ticket's append-only conversation."""

    id: str
    ticket_id: str
    author: str
    message: str
    is_internal: bool
    created_at: datetime


@dataclass(slots=True)
class Ticket:
    """Aggregate representing a support ticket with its comments and attachments."""

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
    created_at: datetime
    updated_at: datetime
    resolution: str | None = None
    estimated_resolution_time: datetime | None = None
    resolved_at: datetime | None = None
    closed_at: datetime | None = None
    attachments: list[TicketAttachment] = field(default_factory=list)
    comments: list[TicketComment] = field(default_factory=list)

    def age_in_days(self, now: datetime | None = None) -> int:
        reference = now or datetime.now(timezone.utc)
        seconds = abs((reference - self.created_at).total_seconds())
        return math.ceil(seconds / 86400)

    @property
    def resolution_time_in_hours(self) -> int | None:
        if self.resolved_at is None:
            return None
        seconds = abs((self.resolved_at - self.created_at).total_seconds())
        return round(seconds / 3600)


@dataclass(slots=True)
class TicketPage:
    """One page of a filtered ticket listing."""

    items: list[Ticket]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1


@dataclass(slots=True)
class TicketStats:
    """Counts used by the administrator dashboard."""

    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    by_category: dict[str, int]
