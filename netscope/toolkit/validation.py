"""
Request-level validation for scan configurations.

Returns lists of ValidationIssue instead of raising so the builder preview can
show every problem at once. Errors block a scan; warnings are informational
(privilege requirements, slow scan types).
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from netscope.toolkit.nmap_args import ScanRequestConfig

HOST_TIMEOUT_RANGE = (1, 3600)
MAX_RETRIES_RANGE = (0, 10)
RATE_RANGE = (1, 100000)

PORTS_PATTERN = re.compile(r"^[\d,\-]+$")

_IPV4 = re.compile(r"^(\d{1,3}\.){3}\d{1,3}$")
_CIDR = re.compile(r"^(\d{1,3}\.){3}\d{1,3}/\d{1,2}$")
_RANGE = re.compile(r"^(\d{1,3}\.){3}\d{1,3}-(\d{1,3}|(\d{1,3}\.){3}\d{1,3})$")
_HOSTNAME = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9\-]{0,61}[a-zA-Z0-9])?)*$"
)

PRIVATE_NETWORKS = (
    ipaddress.IPv4Network("10.0.0.0/8"),
    ipaddress.IPv4Network("172.16.0.0/12"),
    ipaddress.IPv4Network("192.168.0.0/16"),
)

PUBLIC_TARGET_MESSAGE = (
    "Public IP scanning is restricted. Only private networks allowed "
    "(10.x.x.x, 172.16-31.x.x, 192.168.x.x)"
)


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)


def _is_private(network: ipaddress.IPv4Network) -> bool:
    return any(network.subnet_of(private) for private in PRIVATE_NETWORKS)


def validate_target(target: str, allow_public: bool = False) -> Optional[ValidationIssue]:
    """Accepts IPv4, CIDR, last-octet or full ranges, and hostnames."""
    if not target or not target.strip():
        return ValidationIssue("target", "Target is required")
    target = target.strip()

    invalid = ValidationIssue(
        "target", "Invalid target format. Use IP address, CIDR, IP range, or hostname"
    )

    if _IPV4.match(target) or _CIDR.match(target):
        try:
            network = ipaddress.IPv4Network(target, strict=False)
        except ValueError:
            return invalid
        if not allow_public and not _is_private(network):
            return ValidationIssue("target", PUBLIC_TARGET_MESSAGE)
        return None

    if _RANGE.match(target):
        start, _, end = target.partition("-")
        try:
            first = ipaddress.IPv4Address(start)
            if "." in end:
                last = ipaddress.IPv4Address(end)
            else:
                last = ipaddress.IPv4Address(start.rsplit(".", 1)[0] + "." + end)
        except ValueError:
            return invalid
        if last < first:
            return invalid
        if not allow_public:
            for addr in (first, last):
                if not _is_private(ipaddress.IPv4Network(addr)):
                    return ValidationIssue("target", PUBLIC_TARGET_MESSAGE)
        return None

    # Dotted all-numeric strings that failed the IPv4 patterns are not hostnames
    if re.match(r"^[\d.]+$", target):
        return invalid
    if _HOSTNAME.match(target):
        return None
    return invalid


def validate_ports_custom(ports: Optional[str]) -> Optional[ValidationIssue]:
    if not ports or not ports.strip():
        return None
    normalized = re.sub(r"\s+", "", ports)
    if not PORTS_PATTERN.match(normalized):
        return ValidationIssue(
            "portsCustom",
            'Invalid port format. Use numbers, commas, and hyphens only (e.g., "22,80,443" or "1-1000")',
        )
    for item in normalized.split(","):
        if not item:
            continue
        bounds = item.split("-")
        if len(bounds) > 2:
            return ValidationIssue("portsCustom", f"Invalid port range: {item}")
        for part in bounds:
            if part == "":
                continue
            port = int(part)
            if port < 1 or port > 65535:
                return ValidationIssue(
                    "portsCustom", f"Invalid port number: {part}. Ports must be between 1-65535"
                )
        if len(bounds) == 2 and bounds[0] and bounds[1] and int(bounds[0]) > int(bounds[1]):
            return ValidationIssue("portsCustom", f"Invalid port range: {item}")
    return None


def validate_numeric_field(value: Optional[int], field_name: str, low: int, high: int) -> Optional[ValidationIssue]:
    if value is None:
        return None
    if value < low or value > high:
        return ValidationIssue(field_name, f"{field_name} must be between {low}-{high}")
    return None


def validate_scan_config_conflicts(config: ScanRequestConfig) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    if config.tcp_syn_scan and config.tcp_connect_scan:
        errors.append(ValidationIssue(
            "scanType", "Cannot enable both SYN scan (-sS) and Connect scan (-sT). Choose one."
        ))

    if config.port_mode == "custom" and not (config.ports_custom or "").strip():
        errors.append(ValidationIssue("portsCustom", "Custom port mode requires specifying ports"))
    if config.port_mode != "custom" and config.ports_custom:
        errors.append(ValidationIssue(
            "portsCustom", "Ports custom field should be empty when not using custom port mode"
        ))

    if config.min_rate is not None and config.max_rate is not None and config.min_rate > config.max_rate:
        errors.append(ValidationIssue("minRate", "minRate cannot be greater than maxRate"))

    if config.os_detection:
        warnings.append(ValidationIssue("osDetection", "OS detection (-O) may require administrative privileges"))
    if config.tcp_syn_scan:
        warnings.append(ValidationIssue("tcpSynScan", "SYN scan (-sS) requires privileged access"))
    if config.udp_scan:
        warnings.append(ValidationIssue("udpScan", "UDP scan is significantly slower than TCP scanning"))

    return errors, warnings


def validate_scan_config(
    config: ScanRequestConfig,
    allow_public_targets: bool = False,
) -> Tuple[List[ValidationIssue], List[ValidationIssue]]:
    """Full check of a merged configuration. Returns (errors, warnings)."""
    errors: List[ValidationIssue] = []

    target_issue = validate_target(config.target, allow_public=allow_public_targets)
    if target_issue:
        errors.append(target_issue)

    for value, name, (low, high) in (
        (config.host_timeout_seconds, "hostTimeoutSeconds", HOST_TIMEOUT_RANGE),
        (config.max_retries, "maxRetries", MAX_RETRIES_RANGE),
        (config.min_rate, "minRate", RATE_RANGE),
        (config.max_rate, "maxRate", RATE_RANGE),
    ):
        issue = validate_numeric_field(value, name, low, high)
        if issue:
            errors.append(issue)

    if config.port_mode == "custom" and config.ports_custom:
        ports_issue = validate_ports_custom(config.ports_custom)
        if ports_issue:
            errors.append(ports_issue)

    conflict_errors, warnings = validate_scan_config_conflicts(config)
    errors.extend(conflict_errors)
    return errors, warnings
