"""Application service helpers."""

from .gateway import (
    ConflictError,
    GatewayError,
    NotFoundError,
    PersistenceGateway,
    RoomRecord,
    RoomUser,
    SessionRecord,
    StorageError,
    StoredMessage,
    UserRecord,
)
from .reaper import SessionReaper

__all__ = [
    "ConflictError",
    "GatewayError",
    "NotFoundError",
    "PersistenceGateway",
    "RoomRecord",
    "RoomUser",
    "SessionRecord",
    "SessionReaper",
    "StorageError",
    "StoredMessage",
    "UserRecord",
]
