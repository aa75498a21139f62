"""In-memory scan sessions and the per-session event fan-out."""
#
# PURPOSE:
# Every accepted scan gets a session: a small in-memory record holding its
# status, the most recent progress lines, the raw XML the scanner has written
# so far, and eventually the parsed result or an error message.
#
# The SessionStore is the ONLY thing that mutates sessions. The runner, the
# finalizer and the SSE endpoint hold a session id and go through the store's
# methods. Each mutation notifies listeners registered for that
# (session id, event kind) pair before the method returns, so every
# subscriber sees events in exactly the order the mutations happened.
#
# KEY CONCEPTS:
# - Ring buffer: logs is a deque(maxlen=200); the oldest line falls off
# - Snapshots: readers get an immutable SessionSnapshot, never the live object
# - Single event loop: mutations are synchronous, so no locking is needed
#

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# Maximum number of log lines kept per session
MAX_SESSION_LOGS = 200


class SessionStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.DONE, SessionStatus.ERROR)


class EventKind(str, Enum):
    LOG = "log"
    STATUS = "status"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    """One notification delivered to session listeners."""
    kind: EventKind
    session_id: str
    payload: Dict[str, Any]
    timestamp: float = field(default_factory=time.time)


Listener = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only copy of a session handed out by the store."""
    id: str
    status: SessionStatus
    created_at: float
    logs: Tuple[str, ...]
    result_buffer: str
    result: Optional[Any]
    error_message: Optional[str]
    target: str
    profile: str
    owner_id: str

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at,
            "target": self.target,
            "profile": self.profile,
            "logCount": len(self.logs),
            "resultBufferSize": len(self.result_buffer),
            "errorMessage": self.error_message,
        }


@dataclass
class ScanSession:
    id: str
    target: str
    profile: str
    owner_id: str
    created_at: float
    max_logs: int = MAX_SESSION_LOGS
    status: SessionStatus = SessionStatus.STARTING
    result: Optional[Any] = None
    error_message: Optional[str] = None
    logs: Deque[str] = field(init=False)
    _result_chunks: List[str] = field(default_factory=list, init=False, repr=False)
    _result_size: int = field(default=0, init=False, repr=False)

    def __post_init__(self):
        self.logs = deque(maxlen=self.max_logs)

    @property
    def result_buffer(self) -> str:
        if len(self._result_chunks) > 1:
            # Collapse so repeated reads stay cheap
            self._result_chunks = ["".join(self._result_chunks)]
        return self._result_chunks[0] if self._result_chunks else ""

    def append_result(self, chunk: str) -> int:
        self._result_chunks.append(chunk)
        self._result_size += len(chunk)
        return self._result_size

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            id=self.id,
            status=self.status,
            created_at=self.created_at,
            logs=tuple(self.logs),
            result_buffer=self.result_buffer,
            result=self.result,
            error_message=self.error_message,
            target=self.target,
            profile=self.profile,
            owner_id=self.owner_id,
        )


class SessionStore:
    """
    Registry of live and recently finished scan sessions.

    Unknown session ids are tolerated everywhere: mutations on an absent
    session are no-ops, so one stray call cannot take down unrelated scans.
    """

    def __init__(self, max_logs: int = MAX_SESSION_LOGS, clock: Callable[[], float] = time.time):
        self._max_logs = max_logs
        self._clock = clock
        self._sessions: Dict[str, ScanSession] = {}
        self._listeners: Dict[Tuple[str, EventKind], List[Listener]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_session(self, session_id: str, target: str, profile: str, owner_id: str) -> SessionSnapshot:
        existing = self._sessions.get(session_id)
        if existing is not None:
            logger.warning(f"[SessionStore] Session {session_id} already exists; returning it unchanged")
            return existing.snapshot()

        session = ScanSession(
            id=session_id,
            target=target,
            profile=profile,
            owner_id=owner_id,
            created_at=self._clock(),
            max_logs=self._max_logs,
        )
        self._sessions[session_id] = session
        logger.info(f"[SessionStore] Session created: {session_id} target={target} profile={profile} owner={owner_id}")

        self._emit(session_id, EventKind.STATUS, {"status": SessionStatus.STARTING.value})
        return session.snapshot()

    def update_status(self, session_id: str, status: Union[SessionStatus, str]) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        status = SessionStatus(status)
        if session.status.is_terminal and not status.is_terminal:
            # Not rejected; callers own the state machine
            logger.warning(
                f"[SessionStore] Session {session_id} moved out of terminal state "
                f"{session.status.value} -> {status.value}"
            )
        session.status = status
        logger.debug(f"[SessionStore] Session {session_id} status -> {status.value}")
        self._emit(session_id, EventKind.STATUS, {"status": status.value})

    def add_log(self, session_id: str, line: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        # deque(maxlen) drops the oldest entry when full
        session.logs.append(line)
        self._emit(session_id, EventKind.LOG, {"message": line})

    def append_result_buffer(self, session_id: str, chunk: str) -> int:
        """Append raw scanner output. Returns the buffer size afterwards (0 if absent)."""
        session = self._sessions.get(session_id)
        if session is None:
            return 0
        return session.append_result(chunk)

    def complete_scan(self, session_id: str, result: Any) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.status.is_terminal:
            logger.warning(
                f"[SessionStore] complete_scan on already-terminal session {session_id} "
                f"({session.status.value}); overwriting"
            )
        session.status = SessionStatus.DONE
        session.result = result
        session.error_message = None
        logger.info(f"[SessionStore] Session {session_id} completed")
        self._emit(session_id, EventKind.DONE, {"result": result})

    def fail_scan(self, session_id: str, message: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        if session.status.is_terminal:
            logger.warning(
                f"[SessionStore] fail_scan on already-terminal session {session_id} "
                f"({session.status.value}); overwriting"
            )
        session.status = SessionStatus.ERROR
        session.error_message = message
        session.result = None
        logger.error(f"[SessionStore] Session {session_id} failed: {message}")
        self._emit(session_id, EventKind.ERROR, {"message": message})

    def remove_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info(f"[SessionStore] Session removed: {session_id}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[SessionSnapshot]:
        session = self._sessions.get(session_id)
        return session.snapshot() if session is not None else None

    def get_sessions_for_owner(self, owner_id: str) -> List[SessionSnapshot]:
        return [s.snapshot() for s in self._sessions.values() if s.owner_id == owner_id]

    def session_ids(self) -> List[str]:
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep_expired(self, retention_seconds: float, now: Optional[float] = None) -> List[str]:
        """
        Evict terminal sessions created more than retention_seconds ago.

        Running sessions are never evicted by age. Returns the evicted ids.
        """
        now = self._clock() if now is None else now
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if session.status.is_terminal and now - session.created_at > retention_seconds
        ]
        for session_id in expired:
            self.remove_session(session_id)
        return expired

    # ------------------------------------------------------------------
    # Event fan-out
    # ------------------------------------------------------------------

    def subscribe(self, session_id: str, kind: Union[EventKind, str], callback: Listener) -> None:
        self._listeners[(session_id, EventKind(kind))].append(callback)

    def unsubscribe(self, session_id: str, kind: Union[EventKind, str], callback: Listener) -> None:
        key = (session_id, EventKind(kind))
        listeners = self._listeners.get(key)
        if not listeners:
            return
        try:
            listeners.remove(callback)
        except ValueError:
            return
        if not listeners:
            del self._listeners[key]

    def listener_count(self, session_id: str, kind: Optional[Union[EventKind, str]] = None) -> int:
        if kind is not None:
            return len(self._listeners.get((session_id, EventKind(kind)), ()))
        return sum(len(self._listeners.get((session_id, k), ())) for k in EventKind)

    def _emit(self, session_id: str, kind: EventKind, payload: Dict[str, Any]) -> None:
        listeners = self._listeners.get((session_id, kind))
        if not listeners:
            return
        event = SessionEvent(kind=kind, session_id=session_id, payload=payload, timestamp=self._clock())
        # Copy: a listener may unsubscribe itself while we iterate
        for callback in list(listeners):
            try:
                callback(event)
            except Exception as e:
                name = getattr(callback, "__name__", repr(callback))
                logger.error(f"[SessionStore] Listener {name} failed on {kind.value} for {session_id}: {e}", exc_info=True)
