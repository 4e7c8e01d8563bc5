"""Core utilities for the XeroxChat backend."""

from .formatting import (
    format_display_time,
    format_live_message,
    format_stored_message,
    resolve_display_timezone,
)

__all__ = [
    "format_display_time",
    "format_live_message",
    "format_stored_message",
    "resolve_display_timezone",
]
