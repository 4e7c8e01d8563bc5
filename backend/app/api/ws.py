"""WebSocket endpoint carrying the live chat event stream."""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Dict, TypeVar

import anyio
from fastapi import APIRouter, WebSocket, status
from fastapi.exceptions import HTTPException
from fastapi.websockets import WebSocketDisconnect, WebSocketState
from pydantic import ValidationError

from app.api.deps import CurrentUser, resolve_token
from app.config import get_settings
from app.schemas import JoinRoomIn
from xeroxchat.realtime import ChatIdentity, ChatRuntime, safe_send_json

router = APIRouter(prefix="/ws", tags=["ws"])

settings = get_settings()

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def iter_keepalive_messages(
    websocket: WebSocket,
    receiver: Callable[[], Awaitable[T]],
    *,
    timeout_seconds: float | int | None,
    ping_interval_seconds: float | int | None,
    ping_payload: Dict[str, Any] | None = None,
) -> AsyncIterator[T]:
    """Yield messages from *receiver* while sending keepalive pings when idle."""

    ping_payload = ping_payload or {"type": "ping"}
    timeout = float(timeout_seconds) if timeout_seconds else 0.0
    interval = float(ping_interval_seconds) if ping_interval_seconds else 0.0
    last_activity = time.monotonic()
    last_ping_sent: float | None = None

    while True:
        try:
            if timeout > 0:
                message = await asyncio.wait_for(receiver(), timeout=timeout)
            else:
                message = await receiver()
        except asyncio.TimeoutError:
            if websocket.application_state != WebSocketState.CONNECTED:
                break

            now = time.monotonic()
            idle_long_enough = interval <= 0 or now - last_activity >= interval
            ping_due = last_ping_sent is None or interval <= 0 or now - last_ping_sent >= interval
            if idle_long_enough and ping_due:
                if not await safe_send_json(websocket, ping_payload):
                    break
                last_ping_sent = now
            continue
        except asyncio.CancelledError:  # pragma: no cover - cooperative cancellation
            raise
        except (RuntimeError, WebSocketDisconnect):
            break
        else:
            last_activity = time.monotonic()
            last_ping_sent = None
            yield message


def _extract_token(websocket: WebSocket) -> str | None:
    token = websocket.query_params.get("token")
    if not token:
        auth_header = websocket.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.removeprefix("Bearer ").strip()
    return token or None


async def _resolve_user(websocket: WebSocket, runtime: ChatRuntime) -> CurrentUser | None:
    token = _extract_token(websocket)
    if not token:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Missing token")
        return None

    try:
        return await resolve_token(token, runtime.gateway)
    except HTTPException as exc:
        if exc.status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Service unavailable")
        else:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid token")
        return None


async def _receive_frame(websocket: WebSocket) -> str | bytes:
    """Next data frame, text or binary; a close frame raises ``WebSocketDisconnect``."""

    message = await websocket.receive()
    if message["type"] == "websocket.disconnect":
        raise WebSocketDisconnect(message.get("code", status.WS_1000_NORMAL_CLOSURE), message.get("reason"))
    if message.get("text") is not None:
        return message["text"]
    return message.get("bytes") or b""


async def _send_error(websocket: WebSocket, detail: str) -> None:
    await safe_send_json(websocket, {"type": "error", "data": detail})


async def _dispatch(
    runtime: ChatRuntime,
    websocket: WebSocket,
    connection_id: str,
    identity: ChatIdentity,
    session_id: str,
    event: str,
    data: Any,
) -> None:
    coordinator = runtime.coordinator
    if event == "joinRoom":
        try:
            request = JoinRoomIn.model_validate(data if isinstance(data, dict) else {})
        except ValidationError:
            await _send_error(websocket, "joinRoom requires a room name")
            return
        await coordinator.join(
            connection_id,
            identity,
            request.room,
            session_id=session_id,
            ip_address=websocket.client.host if websocket.client else None,
            user_agent=websocket.headers.get("user-agent"),
        )
    elif event == "chatMessage":
        # Plain strings are accepted as well as {"text": ...}.
        text = data.get("text") if isinstance(data, dict) else data
        await coordinator.send_message(connection_id, text)
    elif event == "typing":
        await coordinator.set_typing(connection_id, True)
    elif event == "stopTyping":
        await coordinator.set_typing(connection_id, False)
    else:
        await _send_error(websocket, f"Unknown event type: {event}")


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket) -> None:
    """Serve one chat connection; its frames are handled strictly in order."""

    runtime: ChatRuntime | None = getattr(websocket.app.state, "chat", None)
    if runtime is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Service unavailable")
        return

    current = await _resolve_user(websocket, runtime)
    if current is None:
        return

    await websocket.accept()
    connection_id = uuid.uuid4().hex
    identity = ChatIdentity(user_id=current.user.id, username=current.user.username)
    session_id = current.session_id or connection_id
    await runtime.fanout.register(connection_id, websocket)
    logger.info("Chat connection %s opened for %s", connection_id, identity.username)

    try:
        async for raw_message in iter_keepalive_messages(
            websocket,
            lambda: _receive_frame(websocket),
            timeout_seconds=settings.websocket_keepalive_timeout_seconds,
            ping_interval_seconds=settings.websocket_keepalive_ping_interval_seconds,
        ):
            if not isinstance(raw_message, str):
                await _send_error(websocket, "Binary frames are not supported")
                continue

            try:
                payload = json.loads(raw_message)
            except json.JSONDecodeError:
                await _send_error(websocket, "Invalid payload")
                continue

            if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
                await _send_error(websocket, "Message payload must be a JSON object with a type")
                continue

            event = payload["type"]
            if event == "ping":
                await safe_send_json(websocket, {"type": "pong"})
                continue
            if event == "pong":
                continue

            await _dispatch(
                runtime,
                websocket,
                connection_id,
                identity,
                session_id,
                event,
                payload.get("data"),
            )
    finally:
        # Leave handling must finish even when the handler itself is being cancelled.
        with anyio.CancelScope(shield=True):
            await runtime.coordinator.disconnect(connection_id)
        logger.info("Chat connection %s closed", connection_id)
