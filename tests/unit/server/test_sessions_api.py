import asyncio

import pytest
from fastapi.testclient import TestClient

from src.server.session.dependencies import set_session_store
from src.server.session.store import SQLiteSessionStore


@pytest.fixture
def store(tmp_path):
    db_path = tmp_path / "sessions_api.db"
    store = SQLiteSessionStore(str(db_path))
    asyncio.run(store.init())
    return store


@pytest.fixture
def client(store):
    set_session_store(store)

    from src.server.app import app

    with TestClient(app) as test_client:
        yield test_client

    set_session_store(None)


def test_session_listing_and_history_flow(client: TestClient, store: SQLiteSessionStore):
    response = client.post("/api/chat/sessions", json={"title": "测试会话"})
    assert response.status_code == 201
    created = response.json()["session"]
    assert created["title"] == "测试会话"
    assert "createdAt" in created and "updatedAt" in created

    asyncio.run(store.append("S1", "user", "hi"))
    asyncio.run(store.append("S1", "assistant", "Hello!"))

    response = client.get("/api/chat/sessions")
    assert response.status_code == 200
    sessions = response.json()["sessions"]
    assert [s["id"] for s in sessions] == ["S1", created["id"]]
    assert sessions[0]["lastMessagePreview"] == "Hello!"

    response = client.get("/api/chat/history/S1")
    assert response.status_code == 200
    assert response.json() == {
        "sessionId": "S1",
        "history": [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "Hello!"},
        ],
    }

    response = client.get(f"/api/chat/history/{created['id']}")
    assert response.status_code == 200
    assert response.json()["history"] == []


def test_create_session_without_body(client: TestClient):
    response = client.post("/api/chat/sessions")
    assert response.status_code == 201
    assert response.json()["session"]["title"] is None


def test_unknown_history_is_404(client: TestClient):
    response = client.get("/api/chat/history/missing")
    assert response.status_code == 404
    assert response.json() == {"error": 'Session "missing" not found.'}


def test_health_reports_store_backend(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["store"] == "sqlite"
