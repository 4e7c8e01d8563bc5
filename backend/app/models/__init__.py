"""Database models package."""

from .base import Base
from .chat import ActiveSession, Message, Room, User
from .enums import MessageType

__all__ = [
    "Base",
    "User",
    "Room",
    "Message",
    "ActiveSession",
    "MessageType",
]
