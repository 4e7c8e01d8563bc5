"""Payloads exchanged over the live chat transport."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ChatMessageOut(BaseModel):
    """Formatted chat line or bot notice delivered as a ``message`` event."""

    username: str
    text: str
    time: str = Field(..., description="Display time such as '3:05 pm'")
    timestamp: datetime


class HistoryMessageOut(BaseModel):
    """Persisted message replayed through ``loadMessages`` or the history API."""

    id: int
    username: str
    text: str
    time: str
    timestamp: datetime
    avatar: str | None = None


class RoomUserOut(BaseModel):
    """Room member entry. Degraded listings only carry the username."""

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = None
    username: str
    is_online: bool | None = Field(default=None, alias="isOnline")
    avatar: str | None = None


class RoomUsersOut(BaseModel):
    room: str
    users: list[RoomUserOut] = Field(default_factory=list)

    def to_payload(self) -> dict:
        return {
            "room": self.room,
            "users": [
                user.model_dump(mode="json", by_alias=True, exclude_unset=True)
                for user in self.users
            ],
        }


class TypingOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    is_typing: bool = Field(..., alias="isTyping")


class JoinRoomIn(BaseModel):
    """Inbound ``joinRoom`` payload; the username is informational only."""

    username: str | None = None
    room: str = Field(..., min_length=1, max_length=100)


class MessageListResponse(BaseModel):
    room: str
    total: int | None = Field(default=None, description="Non-deleted messages stored for the room")
    messages: list[HistoryMessageOut] = Field(default_factory=list)
