"""Wiring and lifecycle of the realtime chat components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session, sessionmaker

from app.config import Settings
from app.core.formatting import resolve_display_timezone
from app.services.gateway import PersistenceGateway, StorageError
from app.services.reaper import SessionReaper

from .coordinator import RoomMembershipCoordinator
from .directory import PresenceDirectory
from .fanout import RoomFanout

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ChatRuntime:
    """The live objects one process needs to serve chat connections."""

    directory: PresenceDirectory
    fanout: RoomFanout
    gateway: PersistenceGateway
    coordinator: RoomMembershipCoordinator
    reaper: SessionReaper

    async def start(self) -> None:
        try:
            await self.gateway.ping()
        except StorageError:
            logger.critical("Database is unreachable; refusing to start the chat service")
            raise
        self.reaper.start()
        logger.info("Realtime chat runtime started")

    async def stop(self) -> None:
        await self.reaper.stop()
        logger.info("Realtime chat runtime stopped")


def build_chat_runtime(settings: Settings, session_factory: sessionmaker[Session]) -> ChatRuntime:
    directory = PresenceDirectory()
    fanout = RoomFanout()
    gateway = PersistenceGateway(session_factory)
    coordinator = RoomMembershipCoordinator(
        directory,
        gateway,
        fanout,
        display_tz=resolve_display_timezone(settings.display_timezone),
        bot_name=settings.bot_name,
        join_history_limit=settings.chat_join_history_limit,
        max_message_length=settings.chat_message_max_length,
    )
    reaper = SessionReaper(
        gateway,
        stale_after=timedelta(hours=settings.session_stale_after_hours),
        interval_seconds=settings.session_reap_interval_seconds,
    )
    return ChatRuntime(
        directory=directory,
        fanout=fanout,
        gateway=gateway,
        coordinator=coordinator,
        reaper=reaper,
    )
