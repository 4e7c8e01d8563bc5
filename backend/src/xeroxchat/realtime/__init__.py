"""Realtime room membership and message fanout."""

from .coordinator import ChatIdentity, RoomMembershipCoordinator  # noqa: F401
from .directory import ConnectedUser, PresenceDirectory  # noqa: F401
from .fanout import RoomFanout, build_event, safe_send_json  # noqa: F401
from .runtime import ChatRuntime, build_chat_runtime  # noqa: F401

__all__ = [
    "ChatIdentity",
    "ChatRuntime",
    "ConnectedUser",
    "PresenceDirectory",
    "RoomFanout",
    "RoomMembershipCoordinator",
    "build_chat_runtime",
    "build_event",
    "safe_send_json",
]
