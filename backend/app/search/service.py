"""Database-backed full-text search over room messages."""

from __future__ import annotations

from sqlalchemy import Select, select
from sqlalchemy.dialects.mysql import match as mysql_match
from sqlalchemy.engine import Dialect
from sqlalchemy.orm import Session

from app.models import Message, Room, User


class MessageSearchService:
    """Match message bodies within one room using the configured database backend.

    MySQL uses the ``FULLTEXT`` index in natural language mode; other backends
    fall back to a case-insensitive substring match.
    """

    def __init__(self, session: Session):
        self._session = session
        bind = session.get_bind()
        self._dialect: Dialect | None = bind.dialect if bind is not None else None

    def search(self, room_name: str, query: str, *, limit: int) -> list[tuple[Message, str, str | None]]:
        """Return ``(message, username, avatar_url)`` rows, most recent first."""

        query = query.strip()
        if not query or limit <= 0:
            return []

        stmt: Select = (
            select(Message, User.username, User.avatar_url)
            .join(User, Message.user_id == User.id)
            .join(Room, Message.room_id == Room.id)
            .where(
                Room.name == room_name,
                Message.is_deleted.is_(False),
                self._build_matcher(query),
            )
            .order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(limit)
        )
        return [tuple(row) for row in self._session.execute(stmt).all()]

    # Internal helpers -----------------------------------------------------

    def _build_matcher(self, query: str):
        if self._dialect is not None and self._dialect.name == "mysql":
            return mysql_match(Message.message, against=query).in_natural_language_mode()
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return Message.message.ilike(f"%{escaped}%", escape="\\")
