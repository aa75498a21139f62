from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional, Sequence

from netscope.base.config import NetscopeConfig, get_config
from netscope.base.session import SessionStore
from netscope.data.db import Database
from netscope.engine.finalizer import ScanFinalizer
from netscope.engine.reaper import SessionReaper
from netscope.engine.runner import ProcessRunner

logger = logging.getLogger(__name__)

# How long shutdown waits for background scan tasks after killing their processes
SHUTDOWN_GRACE_SECONDS = 10.0


class ApplicationState:
    """
    The collaborators every request handler works with.

    Built once per process (or once per test) and reached through get_state().
    Nothing in the store, runner or finalizer looks up globals on its own.
    """

    _instance: Optional["ApplicationState"] = None

    @classmethod
    def instance(cls) -> "ApplicationState":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def __init__(
        self,
        config: Optional[NetscopeConfig] = None,
        db: Optional[Database] = None,
        store: Optional[SessionStore] = None,
    ):
        self.config = config or get_config()

        self.store = store or SessionStore(max_logs=self.config.session.max_logs)
        self.db = db or Database(str(self.config.storage.db_path))
        self.runner = ProcessRunner(
            self.store,
            executable=self.config.scan.nmap_path,
            timeout_margin_seconds=self.config.scan.timeout_margin_seconds,
            max_result_buffer_bytes=self.config.scan.max_result_buffer_bytes,
        )
        self.finalizer = ScanFinalizer(self.store, self.runner, self.db)
        self.reaper = SessionReaper(
            self.store,
            retention_seconds=self.config.session.retention_seconds,
            interval_seconds=self.config.session.sweep_interval_seconds,
        )

        # Background finalizer task per scan id
        self.scan_tasks: Dict[str, asyncio.Task] = {}

    async def startup(self) -> None:
        await self.db.init()
        self.reaper.start()

    async def shutdown(self) -> None:
        await self.reaper.stop()
        await self.runner.shutdown()

        pending = [t for t in self.scan_tasks.values() if not t.done()]
        if pending:
            logger.info(f"[State] Waiting for {len(pending)} scan tasks to settle")
            _, still_running = await asyncio.wait(pending, timeout=SHUTDOWN_GRACE_SECONDS)
            for task in still_running:
                task.cancel()
        self.scan_tasks.clear()

        await self.db.close()

    def start_scan(self, scan_id: str, args: Sequence[str], host_timeout_seconds: float) -> asyncio.Task:
        """Schedule the finalizer for an already-created session."""
        task = asyncio.create_task(
            self.finalizer.execute(scan_id, args, host_timeout_seconds),
            name=f"scan-{scan_id}",
        )
        self.scan_tasks[scan_id] = task
        task.add_done_callback(lambda _t, sid=scan_id: self.scan_tasks.pop(sid, None))
        return task


def get_state() -> ApplicationState:
    return ApplicationState.instance()


def set_state(state: Optional[ApplicationState]) -> None:
    """Install a prebuilt state (tests) or clear it so the next get_state() rebuilds."""
    ApplicationState._instance = state
