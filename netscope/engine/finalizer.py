"""Background scan task: run the scanner, parse, persist, and settle the session."""
#
# PURPOSE:
# ScanFinalizer.execute() is the coroutine the API schedules for each accepted
# scan. It is the only place that turns a subprocess outcome into a terminal
# session state, and it never lets an exception escape: every failure ends as
# a fail_scan() with a message safe to show the client.
#
# FLOW:
#   status running -> ProcessRunner.run() -> parse XML -> save_scan_results()
#   -> complete_scan()      (happy path)
#   -> fail_scan(message)   (any failure along the way)
#

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Sequence

from netscope.base.session import SessionSnapshot, SessionStatus, SessionStore
from netscope.engine.runner import ProcessRunner
from netscope.errors import NetscopeError, NmapParseError
from netscope.parsers.nmap_xml import ParsedScan, parse_nmap_xml

logger = logging.getLogger(__name__)

# Raw scanner output echoed into the server log when parsing fails
_RAW_LOG_PREVIEW = 2000

GENERIC_FAILURE_MESSAGE = "Scan failed due to an internal error"
SAVE_FAILURE_MESSAGE = "Failed to save scan results"


class ScanFinalizer:
    def __init__(
        self,
        store: SessionStore,
        runner: ProcessRunner,
        db=None,
        parser: Callable[[str], ParsedScan] = parse_nmap_xml,
    ):
        self._store = store
        self._runner = runner
        self._db = db
        self._parser = parser

    async def execute(
        self,
        session_id: str,
        args: Sequence[str],
        host_timeout_seconds: float,
    ) -> Optional[SessionSnapshot]:
        """
        Drive one scan to a terminal state.

        Returns the final snapshot, or None if the session was evicted meanwhile.
        """
        self._store.update_status(session_id, SessionStatus.RUNNING)
        await self._persist_status(session_id, "running")

        try:
            run = await self._runner.run(session_id, args, host_timeout_seconds)
        except NetscopeError as e:
            # Not installed, timeout, cancel, buffer cap, already running
            logger.warning(f"[Finalizer] {session_id} runner failed: {e}")
            await self._fail(session_id, e.message)
            return self._store.get_session(session_id)
        except asyncio.CancelledError:
            await self._fail(session_id, "Scan cancelled")
            raise
        except Exception as e:
            logger.error(f"[Finalizer] {session_id} unexpected runner error: {e}", exc_info=True)
            await self._fail(session_id, GENERIC_FAILURE_MESSAGE)
            return self._store.get_session(session_id)

        if run.exit_code != 0:
            # Nonzero exit alone is not fatal; nmap often exits 1 with a usable report
            logger.warning(f"[Finalizer] {session_id} scanner exited with {run.exit_code}; parsing output anyway")

        try:
            parsed = self._parser(run.raw_result)
        except NmapParseError as e:
            logger.error(
                f"[Finalizer] {session_id} parse failed ({e.details.get('reason')}); "
                f"raw output: {run.raw_result[:_RAW_LOG_PREVIEW]!r}"
            )
            if run.raw_logs:
                logger.error(f"[Finalizer] {session_id} scanner stderr: {run.raw_logs[-_RAW_LOG_PREVIEW:]}")
            await self._fail(session_id, e.message)
            return self._store.get_session(session_id)

        if self._db is not None:
            try:
                await self._db.save_scan_results(session_id, parsed)
            except Exception as e:
                logger.error(f"[Finalizer] {session_id} could not persist results: {e}", exc_info=True)
                await self._fail(session_id, SAVE_FAILURE_MESSAGE)
                return self._store.get_session(session_id)

        # Process already exited; a cancel that arrived since still wins
        cancel_message = self._runner.pop_cancel(session_id)
        if cancel_message is not None:
            logger.info(f"[Finalizer] {session_id} cancelled after the scanner exited")
            await self._fail(session_id, cancel_message)
            return self._store.get_session(session_id)

        logger.info(
            f"[Finalizer] {session_id} done: {parsed.stats.hosts_up} hosts up, "
            f"{parsed.stats.total_open_ports} open ports"
        )
        self._store.complete_scan(session_id, parsed.to_dict())
        return self._store.get_session(session_id)

    async def _fail(self, session_id: str, message: str) -> None:
        self._runner.pop_cancel(session_id)
        self._store.fail_scan(session_id, message)
        if self._db is None:
            return
        try:
            await self._db.fail_scan_record(session_id, message)
        except Exception as e:
            logger.error(f"[Finalizer] {session_id} could not persist failure: {e}")

    async def _persist_status(self, session_id: str, status: str) -> None:
        if self._db is None:
            return
        try:
            await self._db.update_scan_status(session_id, status)
        except Exception as e:
            logger.error(f"[Finalizer] {session_id} could not persist status {status}: {e}")
