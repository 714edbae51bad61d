from dataclasses import dataclass
from datetime import datetime, timezone

import pytest

from helpdesk.tickets import Denied, Granted, TicketAction, UpdateFields, authorize
from helpdesk.tickets.models import TicketComment
from helpdesk.tickets.policy import (
    ALL_FIELDS,
    PARTICIPANT_FIELDS,
    can_view,
    effective_internal,
    visible_comments,
)
from helpdesk.users import Actor, UserRole


@dataclass
class OwnedStub:
    created_by: str
    assigned_to: str | None = None


ADMIN = Actor("admin-1", UserRole.ADMIN)
CREATOR = Actor("user-1", UserRole.USER)
ASSIGNEE = Actor("user-2", UserRole.USER)
STRANGER = Actor("user-3", UserRole.USER)
TICKET = OwnedStub(created_by=CREATOR.id, assigned_to=ASSIGNEE.id)


def _comment(comment_id: str, *, is_internal: bool) -> TicketComment:
    return TicketComment(
        id=comment_id,
        ticket_id="ticket-1",
        author=ADMIN.id,
        message="note",
        is_internal=is_internal,
        created_at=datetime.now(timezone.utc),
    )


@pytest.mark.parametrize("action", list(TicketAction))
def test_admin_is_granted_every_action(action):
    decision = authorize(ADMIN, OwnedStub(created_by="someone-else"), action)

    assert isinstance(decision, Granted)
    assert decision.allows(action)
    assert decision.fields == ALL_FIELDS


@pytest.mark.parametrize("actor", [CREATOR, ASSIGNEE])
def test_participants_can_read_and_comment(actor):
    for action in (TicketAction.READ, TicketAction.ADD_COMMENT):
        decision = authorize(actor, TICKET, action)
        assert isinstance(decision, Granted)
        assert not decision.allows(TicketAction.ASSIGN)


@pytest.mark.parametrize(
    "action",
    [TicketAction.ASSIGN, TicketAction.DELETE, TicketAction.ADD_INTERNAL_COMMENT],
)
def test_participant_is_denied_admin_actions(action):
    decision = authorize(CREATOR, TICKET, action)

    assert isinstance(decision, Denied)
    assert "admin" in decision.reason


def test_stranger_is_denied_even_reading():
    assert isinstance(authorize(STRANGER, TICKET, TicketAction.READ), Denied)
    assert not can_view(STRANGER, TICKET)
    assert can_view(ASSIGNEE, TICKET)


def test_participant_update_is_narrowed_to_participant_fields():
    requested = UpdateFields.of({"title", "priority", "status", "assigned_to", "tags"})

    decision = authorize(CREATOR, TICKET, requested)

    assert isinstance(decision, Granted)
    assert decision.fields == frozenset({"title", "priority"})
    assert decision.fields <= PARTICIPANT_FIELDS


def test_admin_update_keeps_known_fields_only():
    decision = authorize(ADMIN, TICKET, UpdateFields.of({"status", "assigned_to", "ticket_number"}))

    assert isinstance(decision, Granted)
    assert decision.fields == frozenset({"status", "assigned_to"})


def test_stranger_update_is_denied():
    assert isinstance(authorize(STRANGER, TICKET, UpdateFields.of({"title"})), Denied)


def test_internal_flag_only_honoured_for_admins():
    assert effective_internal(ADMIN, True) is True
    assert effective_internal(ADMIN, False) is False
    assert effective_internal(CREATOR, True) is False


def test_internal_comments_hidden_from_non_admins():
    comments = [_comment("c1", is_internal=False), _comment("c2", is_internal=True)]

    assert [comment.id for comment in visible_comments(CREATOR, comments)] == ["c1"]
    assert [comment.id for comment in visible_comments(ADMIN, comments)] == ["c1", "c2"]
