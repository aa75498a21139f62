from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from netscope.base.session import EventKind, SessionEvent, SessionSnapshot, SessionStatus, SessionStore
from netscope.errors import ErrorCode, NetscopeError
from netscope.server.routers.auth import verify_token
from netscope.server.state import ApplicationState, get_state

router = APIRouter(prefix="/scans", tags=["realtime"])

logger = logging.getLogger(__name__)

TERMINAL_KINDS = (EventKind.DONE, EventKind.ERROR)


def _frame(event: str, payload: Dict[str, Any]) -> Dict[str, str]:
    return {"event": event, "data": json.dumps(payload, default=str)}


def _terminal_frame(snapshot: SessionSnapshot) -> Dict[str, str]:
    if snapshot.status == SessionStatus.DONE:
        return _frame(EventKind.DONE.value, {"result": snapshot.result})
    return _frame(EventKind.ERROR.value, {"message": snapshot.error_message})


async def stream_session_events(store: SessionStore, session_id: str) -> AsyncIterator[Dict[str, str]]:
    """
    Frames for one SSE connection: connected, the buffered log replay, then
    live events until done/error.

    The snapshot is read and the listeners registered with no await in
    between, so no mutation can slip between replay and live delivery.
    Listeners are removed in `finally`, which also runs when the client
    disconnects and the response task cancels this generator.
    """
    queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
    listener = queue.put_nowait

    snapshot = store.get_session(session_id)
    if snapshot is None:
        yield _frame(EventKind.ERROR.value, {"message": "Scan session not found"})
        return
    if not snapshot.is_terminal:
        for kind in EventKind:
            store.subscribe(session_id, kind, listener)

    try:
        yield _frame("connected", {"sessionId": session_id, "status": snapshot.status.value})
        for line in snapshot.logs:
            yield _frame(EventKind.LOG.value, {"message": line})

        if snapshot.is_terminal:
            yield _terminal_frame(snapshot)
            return

        while True:
            event = await queue.get()
            yield _frame(event.kind.value, event.payload)
            if event.kind in TERMINAL_KINDS:
                logger.debug(f"[SSE] {session_id} reached {event.kind.value}; closing stream")
                return
    finally:
        for kind in EventKind:
            store.unsubscribe(session_id, kind, listener)
        logger.debug(f"[SSE] {session_id} subscriber detached")


@router.get("/{scan_id}/stream")
async def stream_scan(
    scan_id: str,
    owner_id: str = Depends(verify_token),
    state: ApplicationState = Depends(get_state),
):
    """
    Server-Sent Events stream for a live scan.

    Rejections happen here, before the response starts, so they are plain
    JSON errors rather than SSE frames.
    """
    snapshot = state.store.get_session(scan_id)
    if snapshot is None:
        raise NetscopeError(ErrorCode.SCAN_SESSION_NOT_FOUND, "Scan session not found", details={"scan_id": scan_id})
    if snapshot.owner_id != owner_id:
        logger.warning(f"[SSE] {owner_id} denied access to session {scan_id}")
        raise NetscopeError(ErrorCode.AUTH_PERMISSION_DENIED, "Access denied", details={"scan_id": scan_id})

    logger.info(f"[SSE] {owner_id} attached to {scan_id} (status={snapshot.status.value})")
    ping = max(1, int(state.config.session.keepalive_seconds))
    return EventSourceResponse(stream_session_events(state.store, scan_id), ping=ping)
