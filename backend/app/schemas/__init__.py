"""Pydantic schemas for API payloads."""

from .auth import AuthResponse, LoginRequest, Token, UserCreate, UserRead
from .chat import (
    ChatMessageOut,
    HistoryMessageOut,
    JoinRoomIn,
    MessageListResponse,
    RoomUserOut,
    RoomUsersOut,
    TypingOut,
)

__all__ = [
    "AuthResponse",
    "LoginRequest",
    "Token",
    "UserCreate",
    "UserRead",
    "ChatMessageOut",
    "HistoryMessageOut",
    "JoinRoomIn",
    "MessageListResponse",
    "RoomUserOut",
    "RoomUsersOut",
    "TypingOut",
]
