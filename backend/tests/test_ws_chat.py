from __future__ import annotations

import time

import pytest
from fastapi.websockets import WebSocketDisconnect
from starlette.testclient import WebSocketTestSession

from app.api import ws as ws_module
from app.core.security import create_access_token


def _join(connection: WebSocketTestSession, room: str = "general") -> list[dict]:
    """Join ``room`` and return every frame up to the joiner's roomUsers snapshot."""

    connection.send_json({"type": "joinRoom", "data": {"username": "ignored", "room": room}})
    frames = []
    while True:
        frame = connection.receive_json()
        frames.append(frame)
        if frame["type"] == "roomUsers":
            return frames


def test_two_users_chat_in_a_room(client, make_user, make_room, token_for) -> None:
    alice = make_user("alice")
    bob = make_user("bob")
    make_room("general")

    with client.websocket_connect(f"/ws/chat?token={token_for(alice)}") as alice_ws:
        alice_frames = _join(alice_ws)
        assert [frame["type"] for frame in alice_frames] == ["loadMessages", "message", "roomUsers"]
        assert alice_frames[0]["data"] == []
        assert alice_frames[1]["data"]["text"] == "Welcome to XeroxChat, alice! 🎉"

        with client.websocket_connect(
            "/ws/chat", headers={"Authorization": f"Bearer {token_for(bob)}"}
        ) as bob_ws:
            bob_frames = _join(bob_ws)
            assert bob_frames[1]["data"]["text"] == "Welcome to XeroxChat, bob! 🎉"
            assert [user["username"] for user in bob_frames[-1]["data"]["users"]] == ["alice", "bob"]

            notice = alice_ws.receive_json()
            assert notice["data"]["text"] == "bob has joined the chat! 👋"
            assert alice_ws.receive_json()["type"] == "roomUsers"

            bob_ws.send_json({"type": "typing"})
            assert alice_ws.receive_json() == {
                "type": "typing",
                "data": {"username": "bob", "isTyping": True},
            }

            bob_ws.send_json({"type": "chatMessage", "data": {"text": "hello"}})
            for connection in (alice_ws, bob_ws):
                frame = connection.receive_json()
                assert frame["type"] == "message"
                assert frame["data"]["username"] == "bob"
                assert frame["data"]["text"] == "hello"

        leave = alice_ws.receive_json()
        assert leave["data"]["text"] == "bob has left the chat! 👋"
        users = alice_ws.receive_json()
        assert users["type"] == "roomUsers"
        assert [user["username"] for user in users["data"]["users"]] == ["alice"]


def test_protocol_errors_are_reported_on_the_connection(client, make_user, make_room, token_for) -> None:
    alice = make_user("alice")
    make_room("general")

    with client.websocket_connect(f"/ws/chat?token={token_for(alice)}") as connection:
        connection.send_json({"type": "chatMessage", "data": {"text": "too early"}})
        assert connection.receive_json() == {"type": "error", "data": "You must join a room first"}

        connection.send_text("{not json")
        assert connection.receive_json() == {"type": "error", "data": "Invalid payload"}

        connection.send_json(["no", "type"])
        assert connection.receive_json()["type"] == "error"

        connection.send_json({"type": "dance"})
        assert connection.receive_json() == {"type": "error", "data": "Unknown event type: dance"}

        connection.send_json({"type": "joinRoom", "data": {}})
        assert connection.receive_json() == {"type": "error", "data": "joinRoom requires a room name"}

        connection.send_json({"type": "joinRoom", "data": {"room": "atlantis"}})
        assert connection.receive_json() == {"type": "error", "data": "Room atlantis not found"}

        _join(connection)
        connection.send_json({"type": "chatMessage", "data": "   "})
        assert connection.receive_json() == {"type": "error", "data": "Message cannot be empty"}

        connection.send_json({"type": "chatMessage", "data": "plain string works"})
        frame = connection.receive_json()
        assert frame["type"] == "message"
        assert frame["data"]["text"] == "plain string works"


def test_binary_frame_is_rejected_without_closing(client, make_user, make_room, token_for) -> None:
    alice = make_user("alice")
    make_room("general")

    with client.websocket_connect(f"/ws/chat?token={token_for(alice)}") as connection:
        connection.send_bytes(b'{"type": "typing"}')
        assert connection.receive_json() == {"type": "error", "data": "Binary frames are not supported"}

        connection.send_json({"type": "ping"})
        assert connection.receive_json() == {"type": "pong"}

        _join(connection)
        connection.send_json({"type": "chatMessage", "data": "still here"})
        assert connection.receive_json()["data"]["text"] == "still here"


@pytest.mark.parametrize("query", ["", "?token=garbage"])
def test_connection_without_valid_token_is_refused(client, query) -> None:
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/chat{query}"):
            pass

    assert excinfo.value.code == 1008


def test_token_for_deleted_user_is_refused(client) -> None:
    token = create_access_token({"sub": "4242", "sid": "gone"})

    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/chat?token={token}"):
            pass

    assert excinfo.value.code == 1008


def test_chat_connection_survives_keepalive_timeout(client, make_user, token_for) -> None:
    """Ensure that the server side keepalive pings keep the socket open."""

    user = make_user("keepalive-user")

    settings = ws_module.settings
    original_timeout = settings.websocket_keepalive_timeout_seconds
    original_interval = settings.websocket_keepalive_ping_interval_seconds

    settings.websocket_keepalive_timeout_seconds = 0.1
    settings.websocket_keepalive_ping_interval_seconds = 0.05

    try:
        with client.websocket_connect(f"/ws/chat?token={token_for(user)}") as connection:
            _assert_keepalive_sequence(connection)
    finally:
        settings.websocket_keepalive_timeout_seconds = original_timeout
        settings.websocket_keepalive_ping_interval_seconds = original_interval


def _assert_keepalive_sequence(connection: WebSocketTestSession) -> None:
    """Observe two keepalive pings with client responses to keep the connection active."""

    time.sleep(0.15)
    ping = connection.receive_json()
    assert ping["type"] == "ping"
    connection.send_json({"type": "pong"})

    time.sleep(0.12)
    ping_again = connection.receive_json()
    assert ping_again["type"] == "ping"
    connection.send_json({"type": "pong"})

    connection.send_json({"type": "ping"})
    pong = connection.receive_json()
    assert pong["type"] == "pong"
