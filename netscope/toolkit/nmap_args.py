"""
Scan configuration model and the nmap argument builder.

build_nmap_args() is a pure function: a validated ScanRequestConfig goes in,
a flat argv list comes out. The list always starts with ``-oX -`` (XML report
on stdout), always carries ``--stats-every 2s`` (progress lines on stderr) and
always ends with the target.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ScanProfile = Literal["quick", "balanced", "full", "custom"]
TimingTemplate = Literal["T0", "T1", "T2", "T3", "T4", "T5"]
PortMode = Literal["default", "top-100", "top-1000", "fast", "custom"]

SCAN_PROFILES = ("quick", "balanced", "full", "custom")

# Flags that reach outside a plain port scan (NSE scripts, raw packet control,
# alternate data files). None of them can be produced by the builder; the
# check guards against future builder changes.
DANGEROUS_FLAGS = (
    "--script",
    "--script-args",
    "--script-help",
    "--script-trace",
    "--reason",
    "--packet-trace",
    "--send-eth",
    "--send-ip",
    "--privileged",
    "--unprivileged",
    "--release-memory",
    "--datadir",
    "--servicedb",
    "--versiondb",
)

SHELL_METACHARACTERS = re.compile(r"[$`|&;(){}\[\]<>]")


class ScanRequestConfig(BaseModel):
    """Every option the scan builder exposes. Accepts snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    target: str = Field(..., min_length=1, max_length=255)
    scan_profile: ScanProfile = "custom"

    timing_template: TimingTemplate = "T4"
    host_timeout_seconds: int = 600
    max_retries: Optional[int] = None
    min_rate: Optional[int] = None
    max_rate: Optional[int] = None

    service_detection: bool = False
    os_detection: bool = False

    no_dns_resolution: bool = True
    skip_host_discovery: bool = False
    only_open_ports: bool = True

    port_mode: PortMode = "default"
    ports_custom: Optional[str] = None

    tcp_syn_scan: bool = False
    tcp_connect_scan: bool = True
    udp_scan: bool = False

    treat_as_online: bool = False

    verbosity: Literal[0, 1, 2] = 0

    @field_validator("target")
    @classmethod
    def strip_target(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Target cannot be empty")
        return v


DEFAULT_SCAN_CONFIG: Dict[str, Any] = {
    "timing_template": "T4",
    "host_timeout_seconds": 600,
    "service_detection": False,
    "os_detection": False,
    "no_dns_resolution": True,
    "skip_host_discovery": False,
    "only_open_ports": True,
    "port_mode": "default",
    "tcp_syn_scan": False,
    "tcp_connect_scan": True,
    "udp_scan": False,
    "treat_as_online": False,
    "verbosity": 0,
}

PROFILE_PRESETS: Dict[str, Dict[str, Any]] = {
    "quick": {
        "timing_template": "T4",
        "service_detection": False,
        "os_detection": False,
        "skip_host_discovery": False,
        "only_open_ports": True,
        "port_mode": "fast",
        "tcp_syn_scan": False,
        "tcp_connect_scan": True,
        "udp_scan": False,
        "verbosity": 0,
        "host_timeout_seconds": 300,
    },
    "balanced": {
        "timing_template": "T3",
        "service_detection": True,
        "os_detection": False,
        "skip_host_discovery": False,
        "only_open_ports": True,
        "port_mode": "default",
        "tcp_syn_scan": False,
        "tcp_connect_scan": True,
        "udp_scan": False,
        "verbosity": 1,
        "host_timeout_seconds": 600,
    },
    "full": {
        "timing_template": "T4",
        "service_detection": True,
        "os_detection": True,
        "skip_host_discovery": True,
        "only_open_ports": True,
        "port_mode": "default",
        "tcp_syn_scan": False,
        "tcp_connect_scan": True,
        "udp_scan": False,
        "verbosity": 1,
        "host_timeout_seconds": 600,
    },
    "custom": {},
}


def apply_profile_defaults(
    overrides: Mapping[str, Any],
    profile: str,
    default_host_timeout_seconds: Optional[int] = None,
) -> ScanRequestConfig:
    """
    Merge defaults, then the profile preset, then the caller's explicit values.

    `overrides` must hold only the fields the caller actually set (use
    ``model_dump(exclude_unset=True)``), otherwise model defaults would mask
    the preset. `default_host_timeout_seconds` replaces the base default
    only; presets that set their own timeout keep it.
    """
    if profile not in PROFILE_PRESETS:
        raise ValueError(f"Unknown scan profile: {profile}")
    merged: Dict[str, Any] = dict(DEFAULT_SCAN_CONFIG)
    if default_host_timeout_seconds is not None:
        merged["host_timeout_seconds"] = default_host_timeout_seconds
    merged.update(PROFILE_PRESETS[profile])
    merged.update({k: v for k, v in overrides.items() if v is not None})
    merged["scan_profile"] = profile
    return ScanRequestConfig.model_validate(merged)


def build_nmap_args(config: ScanRequestConfig) -> List[str]:
    args: List[str] = ["-oX", "-"]

    args.append(f"-{config.timing_template}")

    if config.no_dns_resolution:
        args.append("-n")
    if config.skip_host_discovery or config.treat_as_online:
        args.append("-Pn")

    if config.service_detection:
        args.append("-sV")
    if config.os_detection:
        args.append("-O")

    args.extend(_port_args(config))

    # SYN and Connect are exclusive; validation reports the conflict, SYN wins here
    if config.tcp_syn_scan:
        args.append("-sS")
    elif config.tcp_connect_scan:
        args.append("-sT")
    if config.udp_scan:
        args.append("-sU")

    if config.only_open_ports:
        args.append("--open")

    args.append(f"--host-timeout={config.host_timeout_seconds}s")
    if config.max_retries is not None:
        args.append(f"--max-retries={config.max_retries}")
    if config.min_rate is not None:
        args.append(f"--min-rate={config.min_rate}")
    if config.max_rate is not None:
        args.append(f"--max-rate={config.max_rate}")

    if config.verbosity == 1:
        args.append("-v")
    elif config.verbosity == 2:
        args.append("-vv")

    args.extend(["--stats-every", "2s"])
    args.append(config.target)
    return args


def _port_args(config: ScanRequestConfig) -> List[str]:
    if config.port_mode == "top-100":
        return ["--top-ports=100"]
    if config.port_mode == "top-1000":
        return ["--top-ports=1000"]
    if config.port_mode == "fast":
        return ["-F"]
    if config.port_mode == "custom" and config.ports_custom:
        ports = re.sub(r"\s+", "", config.ports_custom)
        if ports:
            return [f"-p{ports}"]
    return []


def validate_generated_args(args: List[str]) -> bool:
    """False if any argument is a dangerous flag or carries shell metacharacters."""
    for arg in args:
        if arg.startswith(DANGEROUS_FLAGS):
            return False
        if SHELL_METACHARACTERS.search(arg):
            return False
    return True


def generate_command_preview(config: ScanRequestConfig) -> str:
    """Human-readable command line with the target masked."""
    args = build_nmap_args(config)
    return f"nmap {' '.join(args[:-1])} <target>"
