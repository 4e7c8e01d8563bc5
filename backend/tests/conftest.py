"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Iterator

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketState
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

ROOT_DIR = Path(__file__).resolve().parents[1]
for path in (ROOT_DIR, ROOT_DIR / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from app.api.limiter import limiter
from app.core.formatting import resolve_display_timezone
from app.core.security import create_session_token, get_password_hash
from app.main import app
from app.models import Base, Room, User
from app.services.gateway import PersistenceGateway
from xeroxchat.realtime import PresenceDirectory, RoomFanout, RoomMembershipCoordinator


class DummyWebSocket:
    """Stand-in for a connected websocket that records what it was sent."""

    def __init__(self, name: str = "", journal: list[tuple[str, dict[str, Any]]] | None = None) -> None:
        self.name = name
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self._journal = journal

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)
        if self._journal is not None:
            self._journal.append((self.name, payload))

    def events(self, event_type: str) -> list[Any]:
        return [item["data"] for item in self.sent if item["type"] == event_type]


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    """Return a session factory bound to the test engine."""

    return sessionmaker(bind=test_engine, expire_on_commit=False, future=True)


@pytest.fixture()
def db_session(session_factory) -> Iterator[Session]:
    """Yield a SQLAlchemy session for unit tests."""

    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def make_user(session_factory) -> Callable[..., User]:
    """Insert a user row and return it."""

    def _make(username: str, password: str = "secret123", email: str | None = None) -> User:
        with session_factory() as session:
            user = User(
                username=username,
                email=email or f"{username}@example.com",
                password_hash=get_password_hash(password),
            )
            session.add(user)
            session.commit()
            return user

    return _make


@pytest.fixture()
def make_room(session_factory) -> Callable[[str], Room]:
    def _make(name: str) -> Room:
        with session_factory() as session:
            room = Room(name=name)
            session.add(room)
            session.commit()
            return room

    return _make


@pytest.fixture()
def gateway(session_factory) -> PersistenceGateway:
    return PersistenceGateway(session_factory)


@pytest.fixture()
def fanout() -> RoomFanout:
    return RoomFanout()


@pytest.fixture()
def directory() -> PresenceDirectory:
    return PresenceDirectory()


@pytest.fixture()
def coordinator(directory, gateway, fanout) -> RoomMembershipCoordinator:
    return RoomMembershipCoordinator(
        directory,
        gateway,
        fanout,
        display_tz=resolve_display_timezone("+06:00"),
        bot_name="XeroxChat Bot",
        join_history_limit=20,
        max_message_length=200,
    )


@pytest.fixture()
def client(session_factory) -> Iterator[TestClient]:
    """Yield a FastAPI TestClient whose chat runtime uses the test database."""

    app.state.session_factory = session_factory
    limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.state.session_factory = None
    limiter.reset()


@pytest.fixture()
def token_for() -> Callable[[User], str]:
    def _token(user: User, session_id: str | None = None) -> str:
        token, _sid, _ttl = create_session_token(user.id, session_id)
        return token

    return _token


@pytest.fixture()
def journal() -> list[tuple[str, dict[str, Any]]]:
    """Delivery log shared by sockets, in the order frames were sent."""

    return []


@pytest.fixture()
def make_socket(journal) -> Callable[[str], DummyWebSocket]:
    def _make(name: str) -> DummyWebSocket:
        return DummyWebSocket(name, journal)

    return _make
