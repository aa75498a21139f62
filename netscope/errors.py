"""Structured error taxonomy for NetScope."""
#
# PURPOSE:
# Gives every failure a searchable code, a human-readable message and an
# HTTP status, so the API layer and the live scan stream report errors the
# same way.
#
# ERROR CODE FORMAT:
# - SCAN_XXX: Scan lifecycle errors
# - TOOL_XXX: Scanner subprocess errors
# - DB_XXX: Database errors
# - AUTH_XXX: Authentication/authorization errors
# - CONFIG_XXX: Configuration errors
#
# USAGE:
#   from netscope.errors import NetscopeError, ErrorCode
#
#   raise NetscopeError(
#       ErrorCode.SCAN_SESSION_NOT_FOUND,
#       "Scan session not found",
#       details={"scan_id": scan_id}
#   )
#
import json
from enum import Enum
from typing import Dict, Any, Optional


class ErrorCode(Enum):
    # Scan Errors
    SCAN_ALREADY_RUNNING = "SCAN_001"
    SCAN_TARGET_INVALID = "SCAN_002"
    SCAN_TIMEOUT = "SCAN_003"
    SCAN_CANCELLED = "SCAN_004"
    SCAN_SESSION_NOT_FOUND = "SCAN_005"
    SCAN_NOT_FOUND = "SCAN_006"
    SCAN_CONFIG_INVALID = "SCAN_007"
    SCAN_RESULT_TOO_LARGE = "SCAN_008"

    # Tool Errors
    TOOL_NOT_INSTALLED = "TOOL_001"
    TOOL_EXEC_FAILED = "TOOL_002"
    TOOL_OUTPUT_PARSE_ERROR = "TOOL_004"
    TOOL_ARGS_REJECTED = "TOOL_007"

    # Database Errors
    DB_CONNECTION_FAILED = "DB_001"
    DB_QUERY_FAILED = "DB_003"
    DB_INIT_FAILED = "DB_004"

    # Auth Errors
    AUTH_TOKEN_INVALID = "AUTH_001"
    AUTH_TOKEN_MISSING = "AUTH_002"
    AUTH_PERMISSION_DENIED = "AUTH_003"
    AUTH_RATE_LIMIT_EXCEEDED = "AUTH_004"

    # Config Errors
    CONFIG_INVALID = "CONFIG_001"

    # System Errors
    SYSTEM_INTERNAL_ERROR = "SYSTEM_001"


class NetscopeError(Exception):
    """
    Base exception class for NetScope with structured error information.

    Attributes:
        code: ErrorCode enum value (e.g., "SCAN_001")
        message: Human-readable error message
        details: Optional dictionary with additional context
        http_status: Suggested HTTP status code for API responses
    """

    HTTP_STATUS_MAP: Dict[ErrorCode, int] = {
        # Scan errors
        ErrorCode.SCAN_ALREADY_RUNNING: 409,   # Conflict
        ErrorCode.SCAN_TARGET_INVALID: 400,    # Bad Request
        ErrorCode.SCAN_TIMEOUT: 408,           # Request Timeout
        ErrorCode.SCAN_CANCELLED: 499,         # Client Closed Request
        ErrorCode.SCAN_SESSION_NOT_FOUND: 404,  # Not Found
        ErrorCode.SCAN_NOT_FOUND: 404,
        ErrorCode.SCAN_CONFIG_INVALID: 400,
        ErrorCode.SCAN_RESULT_TOO_LARGE: 413,  # Payload Too Large

        # Tool errors
        ErrorCode.TOOL_NOT_INSTALLED: 503,     # Service Unavailable
        ErrorCode.TOOL_EXEC_FAILED: 500,
        ErrorCode.TOOL_OUTPUT_PARSE_ERROR: 500,
        ErrorCode.TOOL_ARGS_REJECTED: 400,

        # Database errors
        ErrorCode.DB_CONNECTION_FAILED: 503,
        ErrorCode.DB_QUERY_FAILED: 500,
        ErrorCode.DB_INIT_FAILED: 500,

        # Auth errors
        ErrorCode.AUTH_TOKEN_INVALID: 401,     # Unauthorized
        ErrorCode.AUTH_TOKEN_MISSING: 401,
        ErrorCode.AUTH_PERMISSION_DENIED: 403,  # Forbidden
        ErrorCode.AUTH_RATE_LIMIT_EXCEEDED: 429,  # Too Many Requests

        # Config errors
        ErrorCode.CONFIG_INVALID: 500,

        # System errors
        ErrorCode.SYSTEM_INTERNAL_ERROR: 500,
    }

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.http_status = http_status or self.HTTP_STATUS_MAP.get(code, 500)

        # Build exception message with code for easy debugging
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for JSON serialization.

        Returns:
            Dictionary with code, message, details, and http_status
        """
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# ============================================================================
# Scanner subprocess failures
# ============================================================================
# Raised by the process runner and converted into a session "error" transition
# by the finalizer. The message is what the client ends up seeing.

class ToolNotInstalledError(NetscopeError):
    """The scanner executable could not be spawned (missing or not executable)."""

    def __init__(self, executable: str, reason: str = ""):
        super().__init__(
            ErrorCode.TOOL_NOT_INSTALLED,
            "Nmap is not installed or not in PATH. Please install Nmap to use this feature.",
            details={"executable": executable, "reason": reason},
        )


class ScanTimeoutError(NetscopeError):
    """The scanner ran past its host timeout plus the safety margin and was killed."""

    def __init__(self, host_timeout_seconds: float, margin_seconds: float):
        super().__init__(
            ErrorCode.SCAN_TIMEOUT,
            f"Scan timed out after {_fmt_seconds(host_timeout_seconds + margin_seconds)}s "
            f"(configured host timeout {_fmt_seconds(host_timeout_seconds)}s)",
            details={
                "host_timeout_seconds": host_timeout_seconds,
                "margin_seconds": margin_seconds,
            },
        )


USER_CANCEL_MESSAGE = "Scan cancelled by user"
SHUTDOWN_CANCEL_MESSAGE = "Scan stopped because the server is shutting down"


class ScanCancelledError(NetscopeError):
    """The scanner was killed on operator request or by server shutdown."""

    def __init__(self, session_id: str, message: str = USER_CANCEL_MESSAGE):
        super().__init__(
            ErrorCode.SCAN_CANCELLED,
            message,
            details={"session_id": session_id},
        )


class ResultBufferOverflowError(NetscopeError):
    """The structured-result stream grew past the configured cap."""

    def __init__(self, limit_bytes: int):
        super().__init__(
            ErrorCode.SCAN_RESULT_TOO_LARGE,
            f"Scan output exceeded the {limit_bytes} byte limit",
            details={"limit_bytes": limit_bytes},
        )


class NmapParseError(NetscopeError):
    """The XML report was empty or malformed."""

    def __init__(self, reason: str):
        super().__init__(
            ErrorCode.TOOL_OUTPUT_PARSE_ERROR,
            "Failed to parse scan results",
            details={"reason": reason},
        )


def _fmt_seconds(value: float) -> str:
    # 600.0 -> "600", 0.5 -> "0.5"
    return f"{value:g}"


__all__ = [
    "ErrorCode",
    "NetscopeError",
    "ToolNotInstalledError",
    "ScanTimeoutError",
    "ScanCancelledError",
    "USER_CANCEL_MESSAGE",
    "SHUTDOWN_CANCEL_MESSAGE",
    "ResultBufferOverflowError",
    "NmapParseError",
]
