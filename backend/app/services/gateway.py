"""Durable operations behind the realtime chat engine.

Every public method is a coroutine: the blocking SQLAlchemy work runs in a
worker thread with its own short-lived session, so other connections keep
being served while a handler waits on the store.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable, TypeVar

import anyio
from passlib.context import CryptContext
from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.core.security import pwd_context
from app.models import ActiveSession, Message, MessageType, Room, User
from app.monitoring.metrics import gateway_failures_total
from app.search import MessageSearchService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GatewayError(Exception):
    """Base class for failures reported by the persistence gateway."""

    kind = "error"

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(detail)
        self.operation = operation
        self.detail = detail


class StorageError(GatewayError):
    """The durable store could not complete the operation (usually transient)."""

    kind = "storage"


class NotFoundError(GatewayError):
    """A referenced row (room, user) does not exist."""

    kind = "not_found"


class ConflictError(GatewayError):
    """A uniqueness rule was violated."""

    kind = "conflict"


@dataclass(slots=True, frozen=True)
class UserRecord:
    id: int
    username: str
    email: str
    password_hash: str
    avatar_url: str | None
    is_online: bool
    last_seen: datetime | None
    created_at: datetime | None

    @classmethod
    def from_model(cls, user: User) -> "UserRecord":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            password_hash=user.password_hash,
            avatar_url=user.avatar_url,
            is_online=bool(user.is_online),
            last_seen=user.last_seen,
            created_at=user.created_at,
        )


@dataclass(slots=True, frozen=True)
class RoomRecord:
    id: int
    name: str


@dataclass(slots=True, frozen=True)
class StoredMessage:
    """A persisted message joined with its author's display data."""

    id: int
    user_id: int
    username: str
    avatar_url: str | None
    body: str
    message_type: MessageType
    timestamp: datetime


@dataclass(slots=True, frozen=True)
class RoomUser:
    id: int
    username: str
    is_online: bool
    avatar_url: str | None


@dataclass(slots=True, frozen=True)
class SessionRecord:
    session_id: str
    user_id: int
    socket_id: str | None
    room_name: str | None
    ip_address: str | None
    user_agent: str | None
    last_activity: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _stored(message: Message, username: str, avatar_url: str | None) -> StoredMessage:
    return StoredMessage(
        id=message.id,
        user_id=message.user_id,
        username=username,
        avatar_url=avatar_url,
        body=message.message,
        message_type=message.message_type,
        timestamp=message.timestamp,
    )


def _session_record(row: ActiveSession) -> SessionRecord:
    return SessionRecord(
        session_id=row.session_id,
        user_id=row.user_id,
        socket_id=row.socket_id,
        room_name=row.room_name,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        last_activity=row.last_activity,
    )


class PersistenceGateway:
    """Users, message history and active-session bookkeeping in the relational store."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        password_context: CryptContext | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._pwd_context = password_context or pwd_context

    async def _run(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        return await anyio.to_thread.run_sync(partial(self._execute, operation, func, *args))

    def _execute(self, operation: str, func: Callable[..., T], *args: Any) -> T:
        try:
            with self._session_factory() as db:
                return func(db, *args)
        except GatewayError as exc:
            gateway_failures_total.labels(operation, exc.kind).inc()
            raise
        except SQLAlchemyError as exc:
            gateway_failures_total.labels(operation, StorageError.kind).inc()
            raise StorageError(operation, f"{operation} failed: {exc.__class__.__name__}") from exc

    # Health ---------------------------------------------------------------

    async def ping(self) -> None:
        def _ping(db: Session) -> None:
            db.execute(text("SELECT 1"))

        await self._run("ping", _ping)

    # Users ----------------------------------------------------------------

    async def create_user(self, username: str, email: str, credential: str) -> int:
        """Insert a user with a hashed credential and return its id."""

        def _create(db: Session) -> int:
            user = User(
                username=username,
                email=email,
                password_hash=self._pwd_context.hash(credential),
            )
            db.add(user)
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                raise ConflictError("create_user", "Username or email already registered") from exc
            return user.id

        return await self._run("create_user", _create)

    async def find_user_by_email(self, email: str) -> UserRecord | None:
        return await self._run("find_user_by_email", self._find_user, User.email == email)

    async def find_user_by_username(self, username: str) -> UserRecord | None:
        return await self._run("find_user_by_username", self._find_user, User.username == username)

    async def find_user_by_id(self, user_id: int) -> UserRecord | None:
        return await self._run("find_user_by_id", self._find_user, User.id == user_id)

    @staticmethod
    def _find_user(db: Session, condition) -> UserRecord | None:
        user = db.execute(select(User).where(condition)).scalar_one_or_none()
        return UserRecord.from_model(user) if user is not None else None

    async def set_online_status(self, user_id: int, is_online: bool) -> None:
        def _set(db: Session) -> None:
            db.execute(
                update(User)
                .where(User.id == user_id)
                .values(is_online=is_online, last_seen=_utcnow())
            )
            db.commit()

        await self._run("set_online_status", _set)

    async def verify_credential(self, plain: str, hashed: str) -> bool:
        def _verify() -> bool:
            try:
                return self._pwd_context.verify(plain, hashed)
            except (ValueError, TypeError):
                logger.warning("Stored credential hash could not be parsed")
                return False

        return await anyio.to_thread.run_sync(_verify)

    # Rooms and messages ---------------------------------------------------

    async def find_room(self, name: str) -> RoomRecord | None:
        def _find(db: Session) -> RoomRecord | None:
            room = db.execute(select(Room).where(Room.name == name)).scalar_one_or_none()
            return RoomRecord(id=room.id, name=room.name) if room is not None else None

        return await self._run("find_room", _find)

    async def create_message(
        self,
        user_id: int,
        room_name: str,
        body: str,
        message_type: MessageType = MessageType.TEXT,
    ) -> int:
        """Persist a message in the named room and return its id."""

        def _create(db: Session) -> int:
            room_id = db.execute(select(Room.id).where(Room.name == room_name)).scalar_one_or_none()
            if room_id is None:
                raise NotFoundError("create_message", f"Room '{room_name}' not found")
            message = Message(
                user_id=user_id,
                room_id=room_id,
                message=body,
                message_type=MessageType(message_type),
                timestamp=_utcnow(),
            )
            db.add(message)
            db.commit()
            return message.id

        return await self._run("create_message", _create)

    async def get_recent_messages(self, room_name: str, limit: int = 50) -> list[StoredMessage]:
        """Return the ``limit`` newest non-deleted messages, oldest first."""

        def _recent(db: Session) -> list[StoredMessage]:
            if limit <= 0:
                return []
            stmt = (
                select(Message, User.username, User.avatar_url)
                .join(User, Message.user_id == User.id)
                .join(Room, Message.room_id == Room.id)
                .where(Room.name == room_name, Message.is_deleted.is_(False))
                .order_by(Message.timestamp.desc(), Message.id.desc())
                .limit(limit)
            )
            rows = db.execute(stmt).all()
            return [_stored(message, username, avatar) for message, username, avatar in reversed(rows)]

        return await self._run("get_recent_messages", _recent)

    async def search_messages(self, room_name: str, term: str, limit: int = 20) -> list[StoredMessage]:
        """Full-text match over one room's non-deleted messages, most recent first."""

        def _search(db: Session) -> list[StoredMessage]:
            rows = MessageSearchService(db).search(room_name, term, limit=limit)
            return [_stored(message, username, avatar) for message, username, avatar in rows]

        return await self._run("search_messages", _search)

    async def get_message_count(self, room_name: str) -> int:
        def _count(db: Session) -> int:
            stmt = (
                select(func.count(Message.id))
                .join(Room, Message.room_id == Room.id)
                .where(Room.name == room_name, Message.is_deleted.is_(False))
            )
            return int(db.execute(stmt).scalar_one())

        return await self._run("get_message_count", _count)

    # Active sessions ------------------------------------------------------

    async def upsert_session(
        self,
        session_id: str,
        user_id: int,
        connection_id: str,
        room_name: str,
        ip_address: str | None,
        user_agent: str | None,
    ) -> None:
        """Create the session row or overwrite its socket, room and activity."""

        def _upsert(db: Session) -> None:
            row = db.execute(
                select(ActiveSession).where(ActiveSession.session_id == session_id)
            ).scalar_one_or_none()
            if row is None:
                db.add(
                    ActiveSession(
                        session_id=session_id,
                        user_id=user_id,
                        socket_id=connection_id,
                        room_name=room_name,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        last_activity=_utcnow(),
                    )
                )
                try:
                    db.commit()
                    return
                except IntegrityError:
                    # Another connection of the same session inserted first.
                    db.rollback()
            self._touch_session(db, session_id, connection_id, room_name)

        await self._run("upsert_session", _upsert)

    async def update_session_activity(
        self, session_id: str, connection_id: str, room_name: str
    ) -> bool:
        return await self._run(
            "update_session_activity", self._touch_session, session_id, connection_id, room_name
        )

    @staticmethod
    def _touch_session(db: Session, session_id: str, connection_id: str, room_name: str) -> bool:
        result = db.execute(
            update(ActiveSession)
            .where(ActiveSession.session_id == session_id)
            .values(socket_id=connection_id, room_name=room_name, last_activity=_utcnow())
        )
        db.commit()
        return bool(result.rowcount)

    async def find_session_by_connection(self, connection_id: str) -> SessionRecord | None:
        def _find(db: Session) -> SessionRecord | None:
            row = db.execute(
                select(ActiveSession).where(ActiveSession.socket_id == connection_id)
            ).scalars().first()
            return _session_record(row) if row is not None else None

        return await self._run("find_session_by_connection", _find)

    async def remove_session(self, session_id: str, connection_id: str | None = None) -> None:
        """Delete the session row; with ``connection_id``, only while that connection owns it."""

        def _remove(db: Session) -> None:
            stmt = delete(ActiveSession).where(ActiveSession.session_id == session_id)
            if connection_id is not None:
                stmt = stmt.where(ActiveSession.socket_id == connection_id)
            db.execute(stmt)
            db.commit()

        await self._run("remove_session", _remove)

    async def reap_stale_sessions(self, older_than: datetime) -> int:
        """Delete sessions whose last activity predates ``older_than``."""

        def _reap(db: Session) -> int:
            result = db.execute(
                delete(ActiveSession).where(ActiveSession.last_activity < older_than)
            )
            db.commit()
            return int(result.rowcount or 0)

        return await self._run("reap_stale_sessions", _reap)

    async def list_users_in_room(self, room_name: str) -> list[RoomUser]:
        """Distinct users holding an active session in the room, by username."""

        def _list(db: Session) -> list[RoomUser]:
            stmt = (
                select(User.id, User.username, User.is_online, User.avatar_url)
                .join(ActiveSession, ActiveSession.user_id == User.id)
                .where(ActiveSession.room_name == room_name)
                .distinct()
                .order_by(User.username)
            )
            return [
                RoomUser(id=user_id, username=username, is_online=bool(online), avatar_url=avatar)
                for user_id, username, online, avatar in db.execute(stmt).all()
            ]

        return await self._run("list_users_in_room", _list)
