"""SQLModel table definitions for the helpdesk data layer."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, JSON, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


def _uuid_str() -> str:
    """Generate a random UUID string."""

    return str(uuid.uuid4())


class UserTable(SQLModel, table=True):
    """Application user accounts referenced by tickets."""

    __tablename__ = "users"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    username: str = Field(sa_column=Column(String(150), nullable=False, unique=True))
    email: str | None = Field(default=None, sa_column=Column(String(255), nullable=True, unique=True))
    full_name: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    department: str | None = Field(default=None, sa_column=Column(String(255), nullable=True))
    role: str = Field(default="user", sa_column=Column(String(20), nullable=False, default="user"))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketTable(SQLModel, table=True):
    """Support tickets and their lifecycle timestamps."""

    __tablename__ = "tickets"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_number: str = Field(sa_column=Column(String(20), nullable=False, unique=True, index=True))
    title: str = Field(sa_column=Column(String(200), nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    category: str = Field(sa_column=Column(String(50), nullable=False))
    priority: str = Field(sa_column=Column(String(20), nullable=False))
    impact: str = Field(sa_column=Column(String(20), nullable=False))
    urgency: str = Field(sa_column=Column(String(20), nullable=False))
    status: str = Field(sa_column=Column(String(30), nullable=False, index=True))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    resolution: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    estimated_resolution_time: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_by: str = Field(
        sa_column=Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    )
    assigned_to: str | None = Field(
        default=None, sa_column=Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    )
    resolved_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketCommentTable(SQLModel, table=True):
    """Append-only comments attached to a ticket."""

    __tablename__ = "ticket_comments"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    )
    author: str = Field(sa_column=Column(String(36), ForeignKey("users.id"), nullable=False))
    message: str = Field(sa_column=Column(Text, nullable=False))
    is_internal: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class TicketAttachmentTable(SQLModel, table=True):
    """Metadata for files uploaded alongside a ticket."""

    __tablename__ = "ticket_attachments"

    id: str = Field(default_factory=_uuid_str, primary_key=True, index=True)
    ticket_id: str = Field(
        sa_column=Column(String(36), ForeignKey("tickets.id"), nullable=False, index=True)
    )
    position: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    filename: str = Field(sa_column=Column(String(255), nullable=False))
    original_name: str = Field(sa_column=Column(String(255), nullable=False))
    path: str = Field(sa_column=Column(String(1024), nullable=False))
    size: int = Field(sa_column=Column(Integer, nullable=False))
    mimetype: str = Field(sa_column=Column(String(255), nullable=False))
    uploaded_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
