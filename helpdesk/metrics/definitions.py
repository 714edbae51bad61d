"""Catalogue of the metrics published by the helpdesk service."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple


class MetricKind(str, Enum):
    COUNTER = "counter"
    HISTOGRAM = "histogram"


@dataclass(frozen=True)
class MetricDefinition:
    """Static description of a metric; the registry builds the live series from it."""

    name: str
    kind: MetricKind
    description: str
    label_names: Tuple[str, ...] = ()
    buckets: Tuple[float, ...] = ()


TICKETS_CREATED = "tickets_created_total"
TICKET_NUMBER_CONFLICTS = "ticket_number_conflicts_total"
TICKET_ACCESS_DENIED = "ticket_access_denied_total"
TICKET_COMMENTS = "ticket_comments_total"
TICKET_CREATION_DURATION = "ticket_creation_duration_seconds"

# Upper bounds in seconds; allocation retries push creations into the upper buckets.
CREATION_BUCKETS: Tuple[float, ...] = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)


HELPDESK_METRICS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=TICKETS_CREATED,
        kind=MetricKind.COUNTER,
        description="Tickets successfully created.",
    ),
    MetricDefinition(
        name=TICKET_NUMBER_CONFLICTS,
        kind=MetricKind.COUNTER,
        description="Ticket number allocations rejected by the unique constraint.",
    ),
    MetricDefinition(
        name=TICKET_ACCESS_DENIED,
        kind=MetricKind.COUNTER,
        description="Ticket operations rejected by the access policy.",
        label_names=("action",),
    ),
    MetricDefinition(
        name=TICKET_COMMENTS,
        kind=MetricKind.COUNTER,
        description="Comments appended to tickets.",
        label_names=("visibility",),
    ),
    MetricDefinition(
        name=TICKET_CREATION_DURATION,
        kind=MetricKind.HISTOGRAM,
        description="Time spent allocating a number and persisting a new ticket.",
        buckets=CREATION_BUCKETS,
    ),
)
