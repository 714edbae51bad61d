from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from helpdesk.main import create_app


def test_ping_is_public():
    client = TestClient(create_app())

    response = client.get("/ping")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ready_without_database_returns_503():
    client = TestClient(create_app())

    assert client.get("/ping/ready").status_code == 503


def test_ready_reports_database_state():
    app = create_app()
    tester = AsyncMock()
    app.state.database_tester = tester
    client = TestClient(app)

    assert client.get("/ping/ready").json() == {"status": "ok", "database": "ok"}

    tester.test_connection = AsyncMock(side_effect=OSError("connection refused"))
    assert client.get("/ping/ready").status_code == 503
