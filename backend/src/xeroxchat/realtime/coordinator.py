"""Join, message, typing and disconnect handling for chat connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from typing import Any, Awaitable, TypeVar

from app.core.formatting import format_live_message, format_stored_message
from app.models import MessageType
from app.monitoring.metrics import realtime_events_total
from app.schemas.chat import RoomUserOut, RoomUsersOut, TypingOut
from app.services.gateway import (
    GatewayError,
    NotFoundError,
    PersistenceGateway,
    StorageError,
)

from .directory import ConnectedUser, PresenceDirectory
from .fanout import RoomFanout

logger = logging.getLogger(__name__)

T = TypeVar("T")

WELCOME_TEMPLATE = "Welcome to XeroxChat, {username}! 🎉"
JOIN_NOTICE_TEMPLATE = "{username} has joined the chat! 👋"
LEAVE_NOTICE_TEMPLATE = "{username} has left the chat! 👋"
JOIN_RECORD_TEMPLATE = "{username} has joined the chat!"
LEAVE_RECORD_TEMPLATE = "{username} has left the chat!"

NOT_JOINED_ERROR = "You must join a room first"


@dataclass(slots=True, frozen=True)
class ChatIdentity:
    """An already authenticated user, as handed over by the auth layer."""

    user_id: int
    username: str


class RoomMembershipCoordinator:
    """Drive each connection through Unbound -> Joined -> Left.

    Every outcome the sender should know about is reported as an ``error``
    event on its own connection; nothing but programming errors propagates to
    the transport loop.
    """

    def __init__(
        self,
        directory: PresenceDirectory,
        gateway: PersistenceGateway,
        fanout: RoomFanout,
        *,
        display_tz: tzinfo,
        bot_name: str = "XeroxChat Bot",
        join_history_limit: int = 20,
        max_message_length: int = 2000,
    ) -> None:
        self._directory = directory
        self._gateway = gateway
        self._fanout = fanout
        self._display_tz = display_tz
        self._bot_name = bot_name
        self._join_history_limit = join_history_limit
        self._max_message_length = max_message_length

    @property
    def directory(self) -> PresenceDirectory:
        return self._directory

    # Helpers --------------------------------------------------------------

    async def _best_effort(self, action: str, operation: Awaitable[T]) -> T | None:
        try:
            return await operation
        except GatewayError:
            logger.warning(
                "Best-effort %s failed; continuing",
                action,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return None

    async def _send_error(self, connection_id: str, detail: str) -> None:
        await self._fanout.emit_to_connection(connection_id, "error", detail)

    def _bot_message(self, text: str) -> dict[str, Any]:
        return format_live_message(self._bot_name, text, self._display_tz).model_dump(mode="json")

    async def room_users(self, room: str) -> RoomUsersOut:
        """Membership list from the store, or from live connections when it is down."""

        try:
            members = await self._gateway.list_users_in_room(room)
        except StorageError:
            logger.warning(
                "Could not load users of room %s from storage; using live connections",
                room,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            subscribed = self._fanout.subscribers(room)
            users: list[RoomUserOut] = []
            seen: set[int] = set()
            for entry in self._directory.members(room):
                if entry.connection_id in subscribed and entry.user_id not in seen:
                    seen.add(entry.user_id)
                    users.append(RoomUserOut(username=entry.username))
            return RoomUsersOut(room=room, users=users)
        return RoomUsersOut(
            room=room,
            users=[
                RoomUserOut(
                    id=member.id,
                    username=member.username,
                    is_online=member.is_online,
                    avatar=member.avatar_url,
                )
                for member in members
            ],
        )

    async def _publish_room_users(self, room: str) -> None:
        snapshot = await self.room_users(room)
        await self._fanout.emit_to_room(room, "roomUsers", snapshot.to_payload())

    # Transitions ----------------------------------------------------------

    async def join(
        self,
        connection_id: str,
        identity: ChatIdentity,
        room: str,
        *,
        session_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ConnectedUser | None:
        """Attach an unbound connection to ``room``.

        The joiner receives the history replay and the welcome notice before
        anyone else hears about the join.
        """

        realtime_events_total.labels("joinRoom", "in").inc()
        room = room.strip()
        current = self._directory.get(connection_id)
        if current is not None:
            await self._send_error(connection_id, f"Already joined room {current.room}")
            return None
        if not room:
            await self._send_error(connection_id, "Room name is required")
            return None

        try:
            found = await self._gateway.find_room(room)
        except StorageError:
            logger.exception("Could not look up room %s", room)
            await self._send_error(connection_id, "Error joining room")
            return None
        if found is None:
            await self._send_error(connection_id, f"Room {room} not found")
            return None

        entry = ConnectedUser(
            user_id=identity.user_id,
            connection_id=connection_id,
            session_id=session_id or connection_id,
            username=identity.username,
            room=found.name,
        )
        self._directory.put(connection_id, entry)

        await self._best_effort(
            "online status update", self._gateway.set_online_status(entry.user_id, True)
        )
        await self._best_effort(
            "session upsert",
            self._gateway.upsert_session(
                entry.session_id,
                entry.user_id,
                connection_id,
                entry.room,
                ip_address,
                user_agent,
            ),
        )
        await self._fanout.subscribe(connection_id, entry.room)

        try:
            history = await self._gateway.get_recent_messages(entry.room, self._join_history_limit)
        except GatewayError:
            logger.warning(
                "Could not load history for room %s",
                entry.room,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            history = []
        await self._fanout.emit_to_connection(
            connection_id,
            "loadMessages",
            [format_stored_message(record, self._display_tz).model_dump(mode="json") for record in history],
        )
        await self._fanout.emit_to_connection(
            connection_id,
            "message",
            self._bot_message(WELCOME_TEMPLATE.format(username=entry.username)),
        )
        await self._fanout.emit_to_room(
            entry.room,
            "message",
            self._bot_message(JOIN_NOTICE_TEMPLATE.format(username=entry.username)),
            exclude=connection_id,
        )
        await self._best_effort(
            "join notice persistence",
            self._gateway.create_message(
                entry.user_id,
                entry.room,
                JOIN_RECORD_TEMPLATE.format(username=entry.username),
                MessageType.SYSTEM,
            ),
        )
        await self._publish_room_users(entry.room)

        logger.info("%s joined room %s (connection %s)", entry.username, entry.room, connection_id)
        return entry

    async def send_message(self, connection_id: str, text: str) -> bool:
        """Persist and broadcast a chat line; returns True when it was broadcast."""

        realtime_events_total.labels("chatMessage", "in").inc()
        entry = self._directory.get(connection_id)
        if entry is None:
            await self._send_error(connection_id, NOT_JOINED_ERROR)
            return False

        body = text.strip() if isinstance(text, str) else ""
        if not body:
            await self._send_error(connection_id, "Message cannot be empty")
            return False
        if len(body) > self._max_message_length:
            await self._send_error(
                connection_id,
                f"Message exceeds {self._max_message_length} characters",
            )
            return False

        sent_at = datetime.now(timezone.utc)
        failure: GatewayError | None = None
        try:
            await self._gateway.create_message(entry.user_id, entry.room, body, MessageType.TEXT)
        except GatewayError as exc:
            logger.error(
                "Could not persist message from %s in %s: %s", entry.username, entry.room, exc.detail
            )
            failure = exc

        # Live delivery goes ahead even when the history write failed.
        payload = format_live_message(entry.username, body, self._display_tz, sent_at)
        await self._fanout.emit_to_room(entry.room, "message", payload.model_dump(mode="json"))

        if failure is not None:
            detail = "Room no longer exists" if isinstance(failure, NotFoundError) else "Error sending message"
            await self._send_error(connection_id, detail)
            return True

        # Keeps the session of an active chatter away from the stale reaper.
        await self._best_effort(
            "session activity refresh",
            self._gateway.update_session_activity(entry.session_id, connection_id, entry.room),
        )
        return True

    async def set_typing(self, connection_id: str, is_typing: bool) -> bool:
        """Relay an ephemeral typing indicator to the other members of the room."""

        realtime_events_total.labels("typing" if is_typing else "stopTyping", "in").inc()
        entry = self._directory.get(connection_id)
        if entry is None:
            await self._send_error(connection_id, NOT_JOINED_ERROR)
            return False
        payload = TypingOut(username=entry.username, is_typing=is_typing)
        await self._fanout.emit_to_room(
            entry.room,
            "typing",
            payload.model_dump(by_alias=True),
            exclude=connection_id,
        )
        return True

    async def disconnect(self, connection_id: str) -> ConnectedUser | None:
        """Tear the connection down; a second call for the same id is a no-op."""

        entry = self._directory.remove(connection_id)
        await self._fanout.unregister(connection_id)
        if entry is None:
            return None

        # Another live connection of the same user keeps it online.
        if not any(other.user_id == entry.user_id for other in self._directory):
            await self._best_effort(
                "offline status update", self._gateway.set_online_status(entry.user_id, False)
            )
        # A reconnect may already have taken the session row over.
        await self._best_effort(
            "session removal", self._gateway.remove_session(entry.session_id, connection_id)
        )

        await self._fanout.emit_to_room(
            entry.room,
            "message",
            self._bot_message(LEAVE_NOTICE_TEMPLATE.format(username=entry.username)),
        )
        await self._best_effort(
            "leave notice persistence",
            self._gateway.create_message(
                entry.user_id,
                entry.room,
                LEAVE_RECORD_TEMPLATE.format(username=entry.username),
                MessageType.SYSTEM,
            ),
        )
        await self._publish_room_users(entry.room)

        logger.info("%s left room %s (connection %s)", entry.username, entry.room, connection_id)
        return entry
