"""Room-scoped delivery of events to live websocket connections."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, Set

from fastapi.websockets import WebSocket, WebSocketDisconnect, WebSocketState

from app.monitoring.metrics import realtime_connections, realtime_events_total

logger = logging.getLogger(__name__)


def build_event(event: str, data: Any) -> dict[str, Any]:
    """Wrap a payload in the ``{"type", "data"}`` envelope used on the wire."""

    return {"type": event, "data": data}


async def safe_send_json(websocket: WebSocket, data: dict[str, Any]) -> bool:
    """Safely send JSON data through websocket, handling disconnections gracefully.

    Returns True if message was sent successfully, False otherwise.
    """
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


class RoomFanout:
    """Track which connections subscribe to which room and deliver events to them.

    Delivery is at most once per subscribed connection; a socket that is
    closing simply misses the event.
    """

    def __init__(self) -> None:
        self._sockets: Dict[str, WebSocket] = {}
        self._rooms: Dict[str, Set[str]] = defaultdict(set)
        self._subscriptions: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def register(self, connection_id: str, websocket: WebSocket) -> None:
        async with self._lock:
            if connection_id not in self._sockets:
                realtime_connections.labels().inc()
            self._sockets[connection_id] = websocket

    async def unregister(self, connection_id: str) -> None:
        """Forget the connection and drop it from every room it subscribed to."""

        async with self._lock:
            if self._sockets.pop(connection_id, None) is not None:
                realtime_connections.labels().dec()
            for room in self._subscriptions.pop(connection_id, set()):
                self._discard_locked(room, connection_id)

    async def subscribe(self, connection_id: str, room: str) -> None:
        async with self._lock:
            self._rooms[room].add(connection_id)
            self._subscriptions[connection_id].add(room)

    def _discard_locked(self, room: str, connection_id: str) -> None:
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            self._rooms.pop(room, None)

    def subscribers(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    async def emit_to_connection(self, connection_id: str, event: str, data: Any) -> bool:
        websocket = self._sockets.get(connection_id)
        if websocket is None:
            return False
        delivered = await safe_send_json(websocket, build_event(event, data))
        if delivered:
            realtime_events_total.labels(event, "out").inc()
        return delivered

    async def emit_to_room(
        self,
        room: str,
        event: str,
        data: Any,
        *,
        exclude: str | Iterable[str] | None = None,
    ) -> int:
        """Deliver to every subscriber of ``room`` except ``exclude``; returns the delivery count."""

        if isinstance(exclude, str):
            excluded = {exclude}
        else:
            excluded = set(exclude or ())
        async with self._lock:
            targets = [
                self._sockets[connection_id]
                for connection_id in self._rooms.get(room, ())
                if connection_id not in excluded and connection_id in self._sockets
            ]
        payload = build_event(event, data)
        delivered = 0
        for websocket in targets:
            if await safe_send_json(websocket, payload):
                delivered += 1
        if delivered:
            realtime_events_total.labels(event, "out").inc(delivered)
        return delivered
