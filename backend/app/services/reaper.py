"""Periodic purge of stale active-session rows."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta, timezone

from app.monitoring.metrics import sessions_reaped_total
from app.services.gateway import GatewayError, PersistenceGateway

logger = logging.getLogger(__name__)


class SessionReaper:
    """Delete sessions idle past ``stale_after`` every ``interval_seconds``.

    Runs independently of connection lifecycles; a failed run is logged and
    the next one is attempted on schedule.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        *,
        stale_after: timedelta = timedelta(hours=24),
        interval_seconds: float = 3600.0,
    ) -> None:
        self._gateway = gateway
        self._stale_after = stale_after
        self._interval = max(float(interval_seconds), 0.01)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(timezone.utc)) - self._stale_after
        try:
            removed = await self._gateway.reap_stale_sessions(cutoff)
        except GatewayError:
            logger.warning(
                "Stale session cleanup failed; retrying on next run",
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            return 0
        if removed:
            sessions_reaped_total.labels().inc(removed)
            logger.info("Removed %d stale active session(s)", removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.run_once()
            except Exception:
                logger.exception("Unexpected error in stale session reaper")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="chat-session-reaper")

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
