from __future__ import annotations

from enum import Enum


class MessageType(str, Enum):
    """Kinds of records stored in the message history."""

    TEXT = "text"
    SYSTEM = "system"
