"""Chat engine metrics and the text exposition registry behind ``/metrics``."""

from .metrics import (
    gateway_failures_total,
    realtime_connections,
    realtime_events_total,
    sessions_reaped_total,
)
from .registry import registry

__all__ = [
    "gateway_failures_total",
    "realtime_connections",
    "realtime_events_total",
    "registry",
    "sessions_reaped_total",
]
