# ============================================================================
# netscope/base/config.py
# Application Configuration Management
# ============================================================================
#
# PURPOSE:
# Every tunable of the dashboard backend lives here: where the SQLite file
# goes, which nmap binary to spawn, how long finished sessions stay in memory,
# which bearer tokens map to which operators.
#
# KEY CONCEPTS:
# 1. Frozen dataclasses per concern, combined into NetscopeConfig
# 2. Environment variables (NETSCOPE_*) override the defaults
# 3. get_config()/set_config() give one shared instance; tests inject their own
#
# ============================================================================

from __future__ import annotations

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# ============================================================================
# Security & Access Control Configuration
# ============================================================================

@dataclass(frozen=True)
class SecurityConfig:
    # Bearer token -> owner id. Every session and scan record is owned by the
    # principal whose token started it.
    api_tokens: Dict[str, str] = field(default_factory=dict)

    # When False, requests without a token run as the "local" principal.
    # Presenting an unknown token is still rejected.
    require_auth: bool = False

    allowed_origins: tuple = ("http://127.0.0.1:*", "http://localhost:*")

    # Scan starts per client per minute (scans are expensive, reads are not limited)
    rate_limit_scans_per_minute: int = 30


# ============================================================================
# File Storage Configuration
# ============================================================================

@dataclass(frozen=True)
class StorageConfig:
    base_dir: Path = field(default_factory=lambda: Path.home() / ".netscope")
    db_name: str = "netscope.db"

    @property
    def db_path(self) -> Path:
        return self.base_dir / self.db_name


# ============================================================================
# Scanner Execution Configuration
# ============================================================================

@dataclass(frozen=True)
class ScanConfig:
    # Executable spawned for every scan. Resolved through PATH when not absolute.
    nmap_path: str = "nmap"

    # The hard kill timer is host timeout + this margin (nmap needs a little
    # time after --host-timeout fires to flush its XML)
    timeout_margin_seconds: float = 60.0

    # Used when a request does not carry its own host timeout
    default_host_timeout_seconds: int = 600

    # Cap on the raw XML buffer per session. 0 = unbounded.
    max_result_buffer_bytes: int = 0

    # Public IPv4 targets are refused unless this is set
    allow_public_targets: bool = False


# ============================================================================
# Live Session Configuration
# ============================================================================

@dataclass(frozen=True)
class SessionConfig:
    # Ring buffer size for per-session log lines
    max_logs: int = 200

    # Terminal sessions older than this are evicted by the reaper
    retention_seconds: float = 600.0

    # How often the reaper sweeps
    sweep_interval_seconds: float = 60.0

    # SSE keep-alive comment interval
    keepalive_seconds: float = 15.0


# ============================================================================
# Logging Configuration
# ============================================================================

@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    file_enabled: bool = True
    file_name: str = "netscope.log"
    max_file_size_mb: int = 10
    backup_count: int = 5


# ============================================================================
# Master Configuration Container
# ============================================================================

@dataclass
class NetscopeConfig:
    security: SecurityConfig = field(default_factory=SecurityConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    log: LogConfig = field(default_factory=LogConfig)
    debug: bool = False
    api_host: str = "127.0.0.1"
    api_port: int = 5000

    def __post_init__(self):
        self.storage.base_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls) -> "NetscopeConfig":
        security = SecurityConfig(
            api_tokens=parse_api_tokens(os.getenv("NETSCOPE_API_TOKENS", "")),
            require_auth=_env_bool("NETSCOPE_REQUIRE_AUTH", False),
            allowed_origins=_env_origins(),
            rate_limit_scans_per_minute=int(os.getenv("NETSCOPE_SCAN_RATE_LIMIT", "30")),
        )

        base_dir = Path(os.getenv("NETSCOPE_DATA_DIR", str(Path.home() / ".netscope")))
        storage = StorageConfig(base_dir=base_dir)

        scan = ScanConfig(
            nmap_path=os.getenv("NETSCOPE_NMAP_PATH", "nmap"),
            timeout_margin_seconds=float(os.getenv("NETSCOPE_TIMEOUT_MARGIN", "60")),
            default_host_timeout_seconds=int(os.getenv("NETSCOPE_HOST_TIMEOUT", "600")),
            max_result_buffer_bytes=int(os.getenv("NETSCOPE_MAX_RESULT_BYTES", "0")),
            allow_public_targets=_env_bool("NETSCOPE_ALLOW_PUBLIC_SCAN", False),
        )

        session = SessionConfig(
            retention_seconds=float(os.getenv("NETSCOPE_SESSION_RETENTION", "600")),
            sweep_interval_seconds=float(os.getenv("NETSCOPE_SESSION_SWEEP_INTERVAL", "60")),
            keepalive_seconds=float(os.getenv("NETSCOPE_SSE_KEEPALIVE", "15")),
        )

        log = LogConfig(
            level=os.getenv("NETSCOPE_LOG_LEVEL", "INFO"),
            file_enabled=_env_bool("NETSCOPE_LOG_FILE", True),
        )

        return cls(
            security=security,
            storage=storage,
            scan=scan,
            session=session,
            log=log,
            debug=_env_bool("NETSCOPE_DEBUG", False),
            api_host=os.getenv("NETSCOPE_API_HOST", "127.0.0.1"),
            api_port=int(os.getenv("NETSCOPE_API_PORT", "5000")),
        )


def parse_api_tokens(raw: str) -> Dict[str, str]:
    """
    Parse "owner:token,owner2:token2" into {token: owner}.

    Malformed entries are skipped with a warning rather than failing startup.
    """
    tokens: Dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        owner, sep, token = entry.partition(":")
        if not sep or not owner.strip() or not token.strip():
            logger.warning("Ignoring malformed NETSCOPE_API_TOKENS entry")
            continue
        tokens[token.strip()] = owner.strip()
    return tokens


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


def _env_origins() -> tuple:
    origins_str = os.getenv("NETSCOPE_ALLOWED_ORIGINS", "")
    if origins_str:
        return tuple(o.strip() for o in origins_str.split(",") if o.strip())
    return ("http://127.0.0.1:*", "http://localhost:*")


# ============================================================================
# Global Configuration Singleton
# ============================================================================

_config: Optional[NetscopeConfig] = None


def get_config() -> NetscopeConfig:
    """Return the shared configuration, loading it from the environment on first use."""
    global _config
    if _config is None:
        _config = NetscopeConfig.from_env()
    return _config


def set_config(config: Optional[NetscopeConfig]) -> None:
    """Replace the global configuration (mainly used for testing). None forces a reload."""
    global _config
    _config = config


def setup_logging(config: Optional[NetscopeConfig] = None) -> None:
    """
    Configure Python's logging system based on our settings.

    Sets up console and file logging with rotation.
    Call this once at application startup.
    """
    cfg = config or get_config()

    handlers: List[logging.Handler] = [logging.StreamHandler()]

    if cfg.log.file_enabled:
        from logging.handlers import RotatingFileHandler
        log_path = cfg.storage.base_dir / cfg.log.file_name
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=cfg.log.max_file_size_mb * 1024 * 1024,
            backupCount=cfg.log.backup_count,
        )
        handlers.append(file_handler)

    level = "DEBUG" if cfg.debug else cfg.log.level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=cfg.log.format,
        handlers=handlers,
        force=True,
    )
