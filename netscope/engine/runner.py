"""Spawns the scanner for one session and pumps its output into the session store."""
#
# PURPOSE:
# Owns the nmap child process for a single scan. Two readers run side by side:
#   stdout -> XML report, appended chunk by chunk to the session's result buffer
#   stderr -> progress lines (--stats-every), each non-empty line becomes a session log
#
# SAFETY:
# The argument list is handed to create_subprocess_exec as separate argv
# entries. Nothing is ever joined into a shell command line, so target strings
# cannot inject commands no matter what the argument builder produced.
#
# OUTCOMES:
# - exit (any code)  -> RunResult; a nonzero exit is not fatal by itself
# - spawn failure    -> ToolNotInstalledError
# - timeout          -> process killed, ScanTimeoutError
# - cancel()         -> process killed (or never spawned), ScanCancelledError
# - buffer cap       -> process killed, ResultBufferOverflowError
#

from __future__ import annotations

import asyncio
import codecs
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from netscope.base.session import SessionStore
from netscope.errors import (
    SHUTDOWN_CANCEL_MESSAGE,
    USER_CANCEL_MESSAGE,
    ErrorCode,
    NetscopeError,
    ResultBufferOverflowError,
    ScanCancelledError,
    ScanTimeoutError,
    ToolNotInstalledError,
)

logger = logging.getLogger(__name__)

# StreamReader line limit; nmap stats lines are short but service banners are not
_STREAM_LIMIT = 1024 * 1024


@dataclass(frozen=True)
class RunResult:
    raw_result: str
    raw_logs: str
    exit_code: Optional[int]


class ProcessRunner:
    """
    One subprocess per session, never pooled or reused.

    Args:
        store: Session store receiving logs and result chunks
        executable: Scanner binary (resolved through PATH when not absolute)
        timeout_margin_seconds: Added to each scan's host timeout to get the kill deadline
        max_result_buffer_bytes: Kill the scan if stdout grows past this (0 = unbounded)
    """

    def __init__(
        self,
        store: SessionStore,
        executable: str = "nmap",
        timeout_margin_seconds: float = 60.0,
        max_result_buffer_bytes: int = 0,
        read_chunk_size: int = 4096,
    ):
        self._store = store
        self.executable = executable
        self.timeout_margin_seconds = timeout_margin_seconds
        self.max_result_buffer_bytes = max_result_buffer_bytes
        self._chunk_size = read_chunk_size
        self._procs: Dict[str, asyncio.subprocess.Process] = {}
        # session id -> message for cancels not yet turned into ScanCancelledError
        self._cancelled: Dict[str, str] = {}

    def is_running(self, session_id: str) -> bool:
        return session_id in self._procs

    def active_sessions(self) -> List[str]:
        return list(self._procs)

    async def run(self, session_id: str, args: Sequence[str], host_timeout_seconds: float) -> RunResult:
        if session_id in self._procs:
            raise NetscopeError(
                ErrorCode.SCAN_ALREADY_RUNNING,
                "A scanner process is already running for this session",
                details={"session_id": session_id},
            )

        pending = self._cancelled.pop(session_id, None)
        if pending is not None:
            logger.info(f"[Runner] {session_id} cancelled before spawn")
            raise ScanCancelledError(session_id, pending)

        argv = [str(arg) for arg in args]
        logger.info(f"[Runner] Spawning {self.executable} for {session_id}: {argv}")

        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as exc:
            self._cancelled.pop(session_id, None)
            logger.error(f"[Runner] {self.executable} could not be started: {exc}")
            raise ToolNotInstalledError(self.executable, str(exc)) from exc

        # cancel() may have landed while the spawn was in flight
        pending = self._cancelled.pop(session_id, None)
        if pending is not None:
            logger.info(f"[Runner] {session_id} cancelled during spawn; killing pid {proc.pid}")
            await self._kill(proc)
            raise ScanCancelledError(session_id, pending)

        self._procs[session_id] = proc
        result_parts: List[str] = []
        log_lines: List[str] = []
        stdout_task = asyncio.create_task(self._pump_stdout(session_id, proc.stdout, result_parts))
        stderr_task = asyncio.create_task(self._pump_stderr(session_id, proc.stderr, log_lines))
        deadline = host_timeout_seconds + self.timeout_margin_seconds
        cancel_message: Optional[str] = None

        try:
            exit_code = await asyncio.wait_for(
                self._drain(proc, stdout_task, stderr_task),
                timeout=deadline,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[Runner] {session_id} exceeded {deadline}s; killing pid {proc.pid}")
            await self._kill(proc)
            raise ScanTimeoutError(host_timeout_seconds, self.timeout_margin_seconds)
        except ResultBufferOverflowError:
            logger.warning(f"[Runner] {session_id} result buffer over {self.max_result_buffer_bytes} bytes; killing")
            await self._kill(proc)
            raise
        except asyncio.CancelledError:
            await self._kill(proc)
            raise
        finally:
            for task in (stdout_task, stderr_task):
                if not task.done():
                    task.cancel()
            self._procs.pop(session_id, None)
            cancel_message = self._cancelled.pop(session_id, None)

        if cancel_message is not None:
            raise ScanCancelledError(session_id, cancel_message)

        logger.info(f"[Runner] {session_id} exited with code {exit_code}")
        return RunResult(
            raw_result="".join(result_parts),
            raw_logs="\n".join(log_lines),
            exit_code=exit_code,
        )

    def cancel(self, session_id: str, message: str = USER_CANCEL_MESSAGE) -> bool:
        """
        Cancel the session's scan. Returns False if the session is unknown or
        already finished.

        A running process is killed and the pending run() raises
        ScanCancelledError. A session whose process has not been spawned yet
        is flagged, and run() stops it as soon as it gets that far.
        """
        proc = self._procs.get(session_id)
        if proc is None:
            snapshot = self._store.get_session(session_id)
            if snapshot is None or snapshot.is_terminal:
                return False
            self._cancelled[session_id] = message
            logger.info(f"[Runner] Cancel requested for {session_id} before its process started")
            return True
        self._cancelled[session_id] = message
        try:
            if proc.returncode is None:
                proc.kill()
        except ProcessLookupError:
            pass
        logger.info(f"[Runner] Cancel requested for {session_id}")
        return True

    def pop_cancel(self, session_id: str) -> Optional[str]:
        """Take a cancel request that arrived after run() returned (None if there is none)."""
        return self._cancelled.pop(session_id, None)

    async def shutdown(self) -> None:
        """Stop every live scan (application shutdown)."""
        for session_id in self._store.session_ids():
            self.cancel(session_id, SHUTDOWN_CANCEL_MESSAGE)
        for proc in list(self._procs.values()):
            await self._kill(proc)

    async def detect_version(self, timeout: float = 5.0) -> Optional[str]:
        """Return the first line of `<executable> --version`, or None if unavailable."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                "--version",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError):
            return None
        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            return None
        if proc.returncode != 0:
            return None
        lines = stdout.decode("utf-8", errors="replace").strip().splitlines()
        return lines[0].strip() if lines else None

    # ------------------------------------------------------------------
    # Stream pumps
    # ------------------------------------------------------------------

    async def _drain(self, proc: asyncio.subprocess.Process, *pumps: asyncio.Task) -> int:
        await asyncio.gather(*pumps)
        return await proc.wait()

    async def _pump_stdout(self, session_id: str, stream: asyncio.StreamReader, parts: List[str]) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        total_bytes = 0
        while True:
            chunk = await stream.read(self._chunk_size)
            final = not chunk
            text = decoder.decode(chunk, final=final)
            if text:
                parts.append(text)
                self._store.append_result_buffer(session_id, text)
            if final:
                return
            total_bytes += len(chunk)
            if self.max_result_buffer_bytes and total_bytes > self.max_result_buffer_bytes:
                raise ResultBufferOverflowError(self.max_result_buffer_bytes)

    async def _pump_stderr(self, session_id: str, stream: asyncio.StreamReader, lines: List[str]) -> None:
        while True:
            raw = await stream.readline()
            if not raw:
                return
            line = raw.decode("utf-8", errors="replace").strip()
            if line:
                lines.append(line)
                self._store.add_log(session_id, line)

    async def _kill(self, proc: asyncio.subprocess.Process) -> None:
        try:
            if proc.returncode is None:
                proc.kill()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning(f"[Runner] pid {proc.pid} did not exit after SIGKILL")
