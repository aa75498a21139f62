from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends

from netscope import __version__
from netscope.server.routers.auth import verify_token
from netscope.server.state import ApplicationState, get_state

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(state: ApplicationState = Depends(get_state)):
    """Liveness plus a count of what is in memory."""
    return {
        "status": "ok",
        "version": __version__,
        "timestamp": time.time(),
        "activeSessions": len(state.store),
        "runningScans": len(state.runner.active_sessions()),
    }


@router.get("/health/nmap", dependencies=[Depends(verify_token)])
async def nmap_health(state: ApplicationState = Depends(get_state)):
    version = await state.runner.detect_version()
    if version is None:
        logger.warning(f"{state.runner.executable} is not available")
    return {
        "nmapAvailable": version is not None,
        "version": version or "Nmap not available",
    }
