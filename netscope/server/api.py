# netscope/server/api.py
# FastAPI application: routers, error handling, CORS, startup/shutdown.

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from netscope import __version__
from netscope.base.config import get_config, setup_logging
from netscope.errors import NetscopeError
from netscope.server.routers import realtime, scans, system
from netscope.server.state import get_state

logger = logging.getLogger(__name__)


app = FastAPI(
    title="NetScope API",
    description="Nmap scan dashboard backend with live progress streaming",
    version=__version__,
)

# All endpoints live under /v1 so a later API version can coexist
v1_router = APIRouter(
    prefix="/v1",
    responses={404: {"description": "Not found"}},
)


@app.exception_handler(NetscopeError)
async def netscope_error_handler(request: Request, exc: NetscopeError):
    """Convert NetscopeError into its JSON body and HTTP status."""
    logger.error(f"[API] {exc.code.value}: {exc.message} ({request.url.path})")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def origins_to_regex(patterns: Iterable[str]) -> Optional[str]:
    """
    Turn allowed-origin patterns into one regex for CORSMiddleware.

    A trailing ":*" matches any port (or none): "http://localhost:*".
    """
    parts = []
    for pattern in patterns:
        if pattern.endswith(":*"):
            parts.append(re.escape(pattern[:-2]) + r"(:\d+)?")
        else:
            parts.append(re.escape(pattern))
    if not parts:
        return None
    return "^(" + "|".join(parts) + ")$"


app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=origins_to_regex(get_config().security.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    config = get_config()
    setup_logging(config)
    logger.info(f"NetScope API starting on {config.api_host}:{config.api_port}")
    await get_state().startup()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("NetScope API shutting down...")
    await get_state().shutdown()


v1_router.include_router(system.router)
v1_router.include_router(scans.router)
v1_router.include_router(realtime.router)
app.include_router(v1_router)


def serve(port: Optional[int] = None, host: Optional[str] = None):
    config = get_config()
    uvicorn.run(app, host=host or config.api_host, port=port or config.api_port, log_level="info")


if __name__ == "__main__":
    serve()
