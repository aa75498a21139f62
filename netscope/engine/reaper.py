"""Periodic eviction of finished sessions from the in-memory store."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from netscope.base.session import SessionStore

logger = logging.getLogger(__name__)


class SessionReaper:
    """
    Background task that sweeps the store every `interval_seconds`.

    Only terminal sessions older than `retention_seconds` are evicted; a scan
    that is still running stays no matter how old it is.
    """

    def __init__(self, store: SessionStore, retention_seconds: float = 600.0, interval_seconds: float = 60.0):
        self._store = store
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: Optional[float] = None) -> List[str]:
        removed = self._store.sweep_expired(self.retention_seconds, now=now)
        if removed:
            logger.info(f"[Reaper] Evicted {len(removed)} expired sessions")
        return removed

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[Reaper] Started (interval={self.interval_seconds}s, retention={self.retention_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("[Reaper] Stopped")

    async def _loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval_seconds)
                self.sweep()
            except asyncio.CancelledError:
                logger.info("[Reaper] Sweep task cancelled")
                raise
            except Exception as e:
                logger.error(f"[Reaper] Sweep error: {e}")
