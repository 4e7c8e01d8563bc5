"""Integration tests exercising API endpoints via FastAPI's TestClient."""

from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.security import identity_from_token
from app.models import ActiveSession, Message, MessageType


def register_user(
    client: TestClient,
    username: str,
    password: str = "wonderland",
    email: str | None = None,
) -> dict[str, Any]:
    response = client.post(
        "/api/auth/register",
        json={"username": username, "email": email or f"{username}@example.com", "password": password},
    )
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_health_and_root(client: TestClient):
    assert client.get("/health").json()["status"] == "ok"
    assert client.get("/api/").json() == {"message": "Welcome to the XeroxChat API"}


def test_register_and_login_flow(client: TestClient):
    """End-to-end flow for registering and logging in a user."""

    data = register_user(client, "alice")
    assert data["message"] == "Registration successful"
    assert data["user"]["username"] == "alice"
    assert data["token_type"] == "bearer"
    assert "password_hash" not in data["user"]

    by_name = client.post("/api/auth/login", json={"username": "alice", "password": "wonderland"})
    assert by_name.status_code == 200
    assert isinstance(by_name.json()["access_token"], str)

    by_email = client.post(
        "/api/auth/login", json={"email": "alice@example.com", "password": "wonderland"}
    )
    assert by_email.status_code == 200
    assert by_email.json()["user"]["id"] == data["user"]["id"]

    wrong = client.post("/api/auth/login", json={"username": "alice", "password": "nope!!"})
    assert wrong.status_code == 401


def test_register_conflicts_and_validation(client: TestClient):
    register_user(client, "alice")

    same_email = client.post(
        "/api/auth/register",
        json={"username": "other", "email": "alice@example.com", "password": "wonderland"},
    )
    same_name = client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "fresh@example.com", "password": "wonderland"},
    )
    short_password = client.post(
        "/api/auth/register",
        json={"username": "bob", "email": "bob@example.com", "password": "123"},
    )
    bad_email = client.post(
        "/api/auth/register",
        json={"username": "carol", "email": "not-an-email", "password": "wonderland"},
    )

    assert same_email.status_code == 409
    assert same_email.json()["detail"] == "Email already registered"
    assert same_name.status_code == 409
    assert same_name.json()["detail"] == "Username already taken"
    assert short_password.status_code == 400
    assert bad_email.status_code == 422


def test_logout_removes_active_session(client: TestClient, session_factory):
    data = register_user(client, "alice")
    token = data["access_token"]
    with session_factory() as session:
        session.add(
            ActiveSession(
                session_id=identity_from_token(token).session_id,
                user_id=data["user"]["id"],
                room_name="general",
            )
        )
        session.commit()

    response = client.post("/api/auth/logout", headers=auth_headers(token))

    assert response.status_code == 200
    with session_factory() as session:
        assert session.execute(select(ActiveSession)).scalars().all() == []

    assert client.post("/api/auth/logout").status_code == 401


def test_history_search_and_room_users(client: TestClient, make_room, session_factory):
    make_room("general")
    token = register_user(client, "alice")["access_token"]
    headers = auth_headers(token)

    with client.websocket_connect(f"/ws/chat?token={token}") as connection:
        connection.send_json({"type": "joinRoom", "data": {"room": "general"}})
        assert connection.receive_json()["type"] == "loadMessages"
        for text in ("first pizza", "second", "third pizza"):
            connection.send_json({"type": "chatMessage", "data": {"text": text}})

        # Drain until the last chat line comes back so every write is committed.
        while True:
            frame = connection.receive_json()
            if frame["type"] == "message" and frame["data"]["text"] == "third pizza":
                break

        users = client.get("/api/rooms/general/users", headers=headers)
        assert users.status_code == 200
        assert users.json()["room"] == "general"
        assert users.json()["users"][0]["username"] == "alice"
        assert users.json()["users"][0]["isOnline"] is True

        history = client.get("/api/messages/general", headers=headers, params={"limit": 2})
        assert history.status_code == 200
        assert [item["text"] for item in history.json()["messages"]] == ["second", "third pizza"]
        assert history.json()["total"] == 4

        full = client.get("/api/messages/general", headers=headers).json()["messages"]
        assert [item["text"] for item in full] == [
            "alice has joined the chat!",
            "first pizza",
            "second",
            "third pizza",
        ]
        assert all(item["time"].endswith(("am", "pm")) for item in full)

        found = client.get("/api/search/general", headers=headers, params={"q": "pizza"})
        assert found.status_code == 200
        assert [item["text"] for item in found.json()["messages"]] == ["third pizza", "first pizza"]

        blank = client.get("/api/search/general", headers=headers, params={"q": "   "})
        assert blank.status_code == 400

        assert client.get("/api/messages/general").status_code == 401

        with session_factory() as session:
            kinds = [row.message_type for row in session.execute(select(Message)).scalars()]
        assert kinds.count(MessageType.TEXT) == 3
        assert kinds.count(MessageType.SYSTEM) == 1


def test_metrics_endpoint_renders_text(client: TestClient):
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "chat_events_total" in response.text
    assert "chat_active_connections" in response.text


def test_rate_limit_is_tracked_per_client(client: TestClient):
    first_client = {"X-Forwarded-For": "10.0.0.1"}
    for _ in range(100):
        assert client.get("/api/", headers=first_client).status_code == 200

    assert client.get("/api/", headers=first_client).status_code == 429
    assert client.get("/api/", headers={"X-Forwarded-For": "10.0.0.2"}).status_code == 200
    assert client.get("/health", headers=first_client).status_code == 200

