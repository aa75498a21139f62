from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Dict, List, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from netscope.errors import ErrorCode, NetscopeError
from netscope.server.state import ApplicationState, get_state

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

# Principal used for token-less requests when auth is not required
LOCAL_PRINCIPAL = "local"


class RateLimiter:
    def __init__(self, requests_per_minute: int = 60, clock=time.time):
        self.requests_per_minute = requests_per_minute
        self.requests: Dict[str, List[float]] = defaultdict(list)
        self._clock = clock
        self._lock = threading.Lock()

    def is_allowed(self, key: str) -> bool:
        now = self._clock()
        window = 60.0
        with self._lock:
            self.requests[key] = [
                t for t in self.requests[key] if now - t < window
            ]
            if len(self.requests[key]) >= self.requests_per_minute:
                return False
            self.requests[key].append(now)
            return True


# ---------------------------------------------------------------------------
# Lazy-initialized rate limiter (NO import-time config access)
# ---------------------------------------------------------------------------

_scan_rate_limiter: Optional[RateLimiter] = None


def get_scan_rate_limiter(state: ApplicationState) -> RateLimiter:
    global _scan_rate_limiter
    if _scan_rate_limiter is None:
        limit = state.config.security.rate_limit_scans_per_minute
        _scan_rate_limiter = RateLimiter(requests_per_minute=limit)
        logger.info(f"Scan rate limiter initialized ({limit}/min)")
    return _scan_rate_limiter


def reset_rate_limiters() -> None:
    global _scan_rate_limiter
    _scan_rate_limiter = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

async def verify_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    state: ApplicationState = Depends(get_state),
) -> str:
    """
    Resolve the caller to an owner id.

    The token comes from the Authorization header, or from ?token= for
    EventSource clients that cannot set headers.
    """
    config = state.config
    token = credentials.credentials if credentials else request.query_params.get("token")

    if not token:
        if config.security.require_auth:
            raise NetscopeError(
                ErrorCode.AUTH_TOKEN_MISSING,
                "Authentication token required",
                details={"endpoint": str(request.url.path)},
            )
        return LOCAL_PRINCIPAL

    owner_id = config.security.api_tokens.get(token)
    if owner_id is None:
        logger.warning(f"Rejected invalid token on {request.url.path} from {get_client_ip(request)}")
        raise NetscopeError(
            ErrorCode.AUTH_TOKEN_INVALID,
            "Invalid authentication token",
            details={"endpoint": str(request.url.path)},
        )
    return owner_id


async def check_scan_rate_limit(
    request: Request,
    state: ApplicationState = Depends(get_state),
) -> None:
    client_ip = get_client_ip(request)
    if not get_scan_rate_limiter(state).is_allowed(client_ip):
        raise NetscopeError(
            ErrorCode.AUTH_RATE_LIMIT_EXCEEDED,
            "Rate limit exceeded",
            details={"endpoint": str(request.url.path), "client_ip": client_ip},
        )
