"""HTTP read endpoints for room history, search and membership."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.api.deps import CurrentUser, get_chat_runtime, get_current_user, get_gateway
from app.api.limiter import limiter
from app.config import get_settings
from app.core.formatting import format_stored_message, resolve_display_timezone
from app.schemas import MessageListResponse
from app.services.gateway import PersistenceGateway, StorageError
from xeroxchat.realtime import ChatRuntime

router = APIRouter(tags=["messages"])

settings = get_settings()

logger = logging.getLogger(__name__)


def _store_unavailable(exc: StorageError) -> HTTPException:
    logger.error("Message store request failed: %s", exc.detail)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Message store unavailable",
    )


@router.get("/messages/{room}", response_model=MessageListResponse)
@limiter.limit(settings.rate_limit_default)
async def read_recent_messages(
    request: Request,
    room: str,
    limit: int | None = Query(default=None, ge=1),
    _: CurrentUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> MessageListResponse:
    """Return the latest messages of a room, oldest first."""

    effective_limit = min(limit or settings.chat_history_default_limit, settings.chat_history_max_limit)
    try:
        records = await gateway.get_recent_messages(room, effective_limit)
        total = await gateway.get_message_count(room)
    except StorageError as exc:
        raise _store_unavailable(exc) from exc
    tz = resolve_display_timezone(settings.display_timezone)
    return MessageListResponse(
        room=room,
        total=total,
        messages=[format_stored_message(record, tz) for record in records],
    )


@router.get("/search/{room}", response_model=MessageListResponse)
@limiter.limit(settings.rate_limit_default)
async def search_room_messages(
    request: Request,
    room: str,
    q: str | None = Query(default=None, max_length=200),
    _: CurrentUser = Depends(get_current_user),
    gateway: PersistenceGateway = Depends(get_gateway),
) -> MessageListResponse:
    """Full-text search over a room's messages, most recent first."""

    term = (q or "").strip()
    if not term:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Search term required")
    try:
        records = await gateway.search_messages(room, term, settings.chat_search_limit)
    except StorageError as exc:
        raise _store_unavailable(exc) from exc
    tz = resolve_display_timezone(settings.display_timezone)
    return MessageListResponse(
        room=room,
        messages=[format_stored_message(record, tz) for record in records],
    )


@router.get("/rooms/{room}/users")
@limiter.limit(settings.rate_limit_default)
async def read_room_users(
    request: Request,
    room: str,
    _: CurrentUser = Depends(get_current_user),
    runtime: ChatRuntime = Depends(get_chat_runtime),
) -> dict:
    """Membership list in the same shape as the ``roomUsers`` event."""

    snapshot = await runtime.coordinator.room_users(room)
    return snapshot.to_payload()
