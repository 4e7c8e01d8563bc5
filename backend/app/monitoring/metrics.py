"""Metric definitions for the realtime chat engine."""

from __future__ import annotations

from .registry import registry


realtime_connections = registry.gauge(
    "chat_active_connections",
    "Number of chat websocket connections registered on this instance.",
)

realtime_events_total = registry.counter(
    "chat_events_total",
    "Count of chat events processed, by event type and direction.",
    label_names=("event", "direction"),
)

gateway_failures_total = registry.counter(
    "chat_gateway_failures_total",
    "Persistence gateway operations that failed, by operation and error kind.",
    label_names=("operation", "kind"),
)

sessions_reaped_total = registry.counter(
    "chat_sessions_reaped_total",
    "Active session rows purged by the stale session reaper.",
)
