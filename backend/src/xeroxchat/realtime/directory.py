"""In-memory registry of live chat connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterator


@dataclass(slots=True)
class ConnectedUser:
    """A live connection bound to a user and a room."""

    user_id: int
    connection_id: str
    session_id: str
    username: str
    room: str
    joined_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class PresenceDirectory:
    """Maps a connection id to the user and room attached to it.

    Every mutation touches a single key and never awaits, so handlers running
    on the same event loop cannot observe a half-applied update.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ConnectedUser] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._entries

    def put(self, connection_id: str, record: ConnectedUser) -> None:
        self._entries[connection_id] = record

    def get(self, connection_id: str) -> ConnectedUser | None:
        return self._entries.get(connection_id)

    def remove(self, connection_id: str) -> ConnectedUser | None:
        return self._entries.pop(connection_id, None)

    def members(self, room: str) -> list[ConnectedUser]:
        """Entries attached to ``room``; a full scan, only used when the store is down."""

        return [entry for entry in list(self._entries.values()) if entry.room == room]

    def __iter__(self) -> Iterator[ConnectedUser]:
        return iter(list(self._entries.values()))
