"""Validated inputs accepted by the ticket service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import TicketCategory, TicketLevel, TicketPriority
from .state import TicketStatus


def _normalise_tags(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple, set)):
        return value
    tags: list[str] = []
    for item in value:
        tag = str(item).strip().lower()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class AttachmentMetadata(BaseModel):
    """Upload record produced by the file storage collaborator."""

    filename: str = Field(..., min_length=1, max_length=255)
    original_name: str = Field(..., min_length=1, max_length=255)
    path: str = Field(..., min_length=1, max_length=1024)
    size: int = Field(..., ge=0)
    mimetype: str = Field(..., min_length=1, max_length=255)


class TicketDraft(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    category: TicketCategory
    priority: TicketPriority = TicketPriority.MEDIUM
    impact: TicketLevel = TicketLevel.LOW
    urgency: TicketLevel = TicketLevel.LOW
    tags: list[str] = Field(default_factory=list)

    @field_validator("tags", mode="before")
    @classmethod
    def normalise_tags(cls, value: Any) -> Any:
        return _normalise_tags(value)


class TicketPatch(BaseModel):
    """Partial update; only fields explicitly sent count as requested."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(default=None, min_length=5, max_length=200)
    description: str | None = Field(default=None, min_length=10, max_length=2000)
    category: TicketCategory | None = None
    priority: TicketPriority | None = None
    impact: TicketLevel | None = None
    urgency: TicketLevel | None = None
    status: TicketStatus | None = None
    tags: list[str] | None = None
    resolution: str | None = Field(default=None, max_length=1000)
    estimated_resolution_time: datetime | None = None
    assigned_to: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalise_tags(cls, value: Any) -> Any:
        return _normalise_tags(value)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], writable: Iterable[str]) -> TicketPatch:
        """Validate only the keys in ``writable``; anything else is ignored unseen."""

        allowed = frozenset(writable)
        return cls.model_validate({key: value for key, value in payload.items() if key in allowed})

    def requested_fields(self) -> frozenset[str]:
        return frozenset(self.model_fields_set)


class TicketFilters(BaseModel):
    status: TicketStatus | None = None
    priority: TicketPriority | None = None
    category: TicketCategory | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    search: str | None = Field(default=None, max_length=200)


class PageRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
    sort_by: Literal["created_at", "updated_at", "priority", "ticket_number"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit
