from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from helpdesk.dependencies import auth as auth_deps
from helpdesk.main import create_app
from helpdesk.tickets import Ticket, TicketCategory, TicketLevel, TicketPriority, TicketStatus
from helpdesk.users import Actor, EmailInUseError, User, UserNotFoundError, UserRole
from helpdesk.users.schemas import UserUpdate
from helpdesk.users.service import Dashboard, SelfDeactivationError, UserHasActiveTicketsError

ADMIN = Actor("admin-1", UserRole.ADMIN)


@pytest.mark.asyncio
async def test_list_users_filters_by_role_activity_and_search(user_repository, users):
    admins = await user_repository.list_users(role=UserRole.ADMIN)
    inactive = await user_repository.list_users(is_active=False)
    searched = await user_repository.list_users(search="support")

    assert {user.username for user in admins} == {"admin", "agent"}
    assert [user.username for user in inactive] == ["former"]
    assert [user.username for user in searched] == ["agent"]


@pytest.mark.asyncio
async def test_support_staff_are_active_admins(user_repository, users):
    await user_repository.deactivate_user(users.agent.id)

    staff = await user_repository.list_support_staff()

    assert [user.username for user in staff] == ["admin"]


@pytest.mark.asyncio
async def test_deactivate_user_keeps_the_record(user_repository, users):
    deactivated = await user_repository.deactivate_user(users.requester.id)
    stored = await user_repository.get_user(users.requester.id)

    assert deactivated.is_active is False
    assert stored is not None
    assert stored.is_active is False
    assert stored.as_actor().is_active is False


@pytest.mark.asyncio
async def test_deactivate_unknown_user_raises(user_repository):
    with pytest.raises(UserNotFoundError):
        await user_repository.deactivate_user("missing")


@pytest.mark.asyncio
async def test_update_user_changes_only_sent_fields(user_repository, users):
    update = UserUpdate(full_name="Requester Person", email="Requester.New@Example.com", department=None)

    updated = await user_repository.update_user(users.requester.id, update.changes())

    assert updated.full_name == "Requester Person"
    assert updated.email == "requester.new@example.com"
    assert updated.department is None
    assert updated.role is UserRole.USER
    assert updated.is_active is True
    assert updated.updated_at >= users.requester.updated_at


@pytest.mark.asyncio
async def test_update_user_promotes_role(user_repository, users):
    updated = await user_repository.update_user(users.other.id, UserUpdate(role="admin").changes())

    assert updated.role is UserRole.ADMIN
    assert (await user_repository.get_user(users.other.id)).role is UserRole.ADMIN


@pytest.mark.asyncio
async def test_update_user_rejects_an_email_held_by_someone_else(user_repository, users):
    with pytest.raises(EmailInUseError):
        await user_repository.update_user(users.other.id, {"email": "requester@example.com"})

    same = await user_repository.update_user(users.requester.id, {"email": "requester@example.com"})
    assert same.email == "requester@example.com"


@pytest.mark.asyncio
async def test_update_unknown_user_raises(user_repository):
    with pytest.raises(UserNotFoundError):
        await user_repository.update_user("missing", {"department": "IT"})


def test_user_update_ignores_nulls_for_required_fields():
    update = UserUpdate(role=None, is_active=None, department=None)

    assert update.changes() == {"department": None}


@pytest.mark.asyncio
async def test_count_users_by_activity(user_repository, users):
    assert await user_repository.count_users() == 5
    assert await user_repository.count_users(is_active=True) == 4


def _user(user_id: str = "user-1", *, is_active: bool = True) -> User:
    now = datetime.now(timezone.utc)
    return User(
        id=user_id,
        username="requester",
        email="requester@example.com",
        full_name=None,
        department=None,
        role=UserRole.USER,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def user_client():
    app = create_app()
    directory = AsyncMock()
    accounts = AsyncMock()
    state = {"actor": ADMIN}
    app.state.user_repository = directory
    app.state.user_service = accounts
    app.dependency_overrides[auth_deps.get_current_actor] = lambda: state["actor"]
    client = TestClient(app)
    try:
        yield client, directory, accounts, state
    finally:
        app.dependency_overrides.clear()


def test_list_users_endpoint_forwards_filters(user_client):
    client, directory, _, _ = user_client
    directory.list_users = AsyncMock(return_value=[_user()])

    response = client.get("/users", params={"role": "user", "is_active": "true"})

    assert response.status_code == 200
    assert response.json()[0]["username"] == "requester"
    directory.list_users.assert_awaited_with(role=UserRole.USER, is_active=True, search=None)


def test_get_user_endpoint_returns_404(user_client):
    client, directory, _, _ = user_client
    directory.get_user = AsyncMock(return_value=None)

    assert client.get("/users/missing").status_code == 404


def test_admin_cannot_deactivate_themselves(user_client):
    client, _, accounts, _ = user_client
    accounts.deactivate_user = AsyncMock(side_effect=SelfDeactivationError())

    response = client.delete(f"/users/{ADMIN.id}")

    assert response.status_code == 400
    assert response.json()["detail"] == "You cannot deactivate your own account"


def test_deactivate_user_endpoint(user_client):
    client, _, accounts, _ = user_client
    accounts.deactivate_user = AsyncMock(return_value=_user(is_active=False))

    response = client.delete("/users/user-1")

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    accounts.deactivate_user.assert_awaited_with(ADMIN, "user-1")


def test_deactivate_user_with_active_tickets_returns_400(user_client):
    client, _, accounts, _ = user_client
    accounts.deactivate_user = AsyncMock(side_effect=UserHasActiveTicketsError("user-1", 2))

    response = client.delete("/users/user-1")

    assert response.status_code == 400
    assert "2 active ticket" in response.json()["detail"]


def test_deactivate_missing_user_returns_404(user_client):
    client, _, accounts, _ = user_client
    accounts.deactivate_user = AsyncMock(side_effect=UserNotFoundError("User missing not found"))

    assert client.delete("/users/missing").status_code == 404


def test_update_user_endpoint_forwards_sent_fields(user_client):
    client, _, accounts, _ = user_client
    accounts.update_user = AsyncMock(return_value=_user())

    response = client.put("/users/user-1", json={"email": "Someone@Example.com", "role": "admin"})

    assert response.status_code == 200
    actor, user_id, update = accounts.update_user.await_args.args
    assert (actor, user_id) == (ADMIN, "user-1")
    assert update.changes() == {"email": "someone@example.com", "role": UserRole.ADMIN}


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (UserNotFoundError("User missing not found"), 404),
        (EmailInUseError("Email taken"), 409),
        (UserHasActiveTicketsError("user-1", 1), 400),
    ],
)
def test_update_user_endpoint_maps_errors(user_client, error, status_code):
    client, _, accounts, _ = user_client
    accounts.update_user = AsyncMock(side_effect=error)

    response = client.put("/users/user-1", json={"is_active": False})

    assert response.status_code == status_code


def test_update_user_endpoint_validates_input(user_client):
    client, _, accounts, state = user_client

    assert client.put("/users/user-1", json={"email": "not-an-email"}).status_code == 422
    assert client.put("/users/user-1", json={"full_name": "R2-D2"}).status_code == 422
    assert client.put("/users/user-1", json={"role": "superuser"}).status_code == 422

    state["actor"] = Actor("user-1", UserRole.USER)
    assert client.put("/users/user-1", json={"department": "IT"}).status_code == 403
    accounts.update_user.assert_not_awaited()


def test_dashboard_is_available_to_every_user(user_client):
    client, _, accounts, state = user_client
    requester = Actor("user-1", UserRole.USER)
    state["actor"] = requester
    now = datetime.now(timezone.utc)
    ticket = Ticket(
        id="ticket-1",
        ticket_number="TKT-20240131-0001",
        title="Mail client crashes",
        description="Crashes on start.",
        category=TicketCategory.EMAIL_PROBLEM,
        priority=TicketPriority.MEDIUM,
        impact=TicketLevel.LOW,
        urgency=TicketLevel.LOW,
        status=TicketStatus.OPEN,
        tags=[],
        created_by=requester.id,
        assigned_to=None,
        created_at=now,
        updated_at=now,
    )
    overview = {"my_tickets": 1, "open_tickets": 1, "in_progress_tickets": 0, "resolved_tickets": 0}
    accounts.dashboard = AsyncMock(return_value=Dashboard(overview=overview, recent_tickets=[ticket]))

    response = client.get("/users/dashboard")

    assert response.status_code == 200
    body = response.json()
    assert body["overview"] == overview
    assert [item["ticket_number"] for item in body["recent_tickets"]] == ["TKT-20240131-0001"]
    accounts.dashboard.assert_awaited_with(requester)


def test_user_listing_requires_admin():
    app = create_app()
    app.state.user_repository = AsyncMock()
    app.dependency_overrides[auth_deps.get_current_actor] = lambda: Actor("user-1", UserRole.USER)
    client = TestClient(app)

    assert client.get("/users").status_code == 403
