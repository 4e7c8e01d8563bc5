"""Rendering of chat records into outbound event payloads.

Stored timestamps stay in UTC; they are converted to the display timezone only
here, for both live messages and history replays.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.schemas.chat import ChatMessageOut, HistoryMessageOut

if TYPE_CHECKING:  # pragma: no cover - typing helpers only
    from app.services.gateway import StoredMessage

_OFFSET_RE = re.compile(r"^(?:UTC|GMT)?([+-])(\d{1,2}):?(\d{2})$", re.IGNORECASE)

DEFAULT_DISPLAY_OFFSET = timezone(timedelta(hours=6))


@lru_cache
def resolve_display_timezone(name: str | None) -> tzinfo:
    """Turn a zone name (``Asia/Dhaka``) or a fixed offset (``+06:00``) into a tzinfo."""

    if not name:
        return DEFAULT_DISPLAY_OFFSET
    match = _OFFSET_RE.match(name.strip())
    if match:
        sign, hours, minutes = match.groups()
        delta = timedelta(hours=int(hours), minutes=int(minutes))
        return timezone(-delta if sign == "-" else delta)
    try:
        return ZoneInfo(name.strip())
    except (ZoneInfoNotFoundError, ValueError):
        return DEFAULT_DISPLAY_OFFSET


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything is written in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_display_time(value: datetime, tz: tzinfo) -> str:
    """Render ``value`` as ``h:mm am`` in the display timezone."""

    local = _as_utc(value).astimezone(tz)
    hour = local.hour % 12 or 12
    suffix = "am" if local.hour < 12 else "pm"
    return f"{hour}:{local.minute:02d} {suffix}"


def format_live_message(
    username: str,
    text: str,
    tz: tzinfo,
    timestamp: datetime | None = None,
) -> ChatMessageOut:
    """Build the ``message`` event payload for a chat line or a bot notice."""

    moment = _as_utc(timestamp) if timestamp is not None else datetime.now(timezone.utc)
    return ChatMessageOut(
        username=username,
        text=text,
        time=format_display_time(moment, tz),
        timestamp=moment,
    )


def format_stored_message(record: "StoredMessage", tz: tzinfo) -> HistoryMessageOut:
    """Build one ``loadMessages`` item from a persisted message."""

    moment = _as_utc(record.timestamp)
    return HistoryMessageOut(
        id=record.id,
        username=record.username,
        text=record.body,
        time=format_display_time(moment, tz),
        timestamp=moment,
        avatar=record.avatar_url,
    )
