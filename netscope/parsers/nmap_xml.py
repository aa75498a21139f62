"""
netscope/parsers/nmap_xml.py
Parses the nmap XML report (-oX -) into hosts, ports and a per-host risk rating.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from netscope.errors import NmapParseError

logger = logging.getLogger(__name__)

# Open-port weights used for the host risk score
HIGH_RISK_PORTS = frozenset({21, 23, 135, 139, 445, 1433, 3306, 3389, 5985, 5986, 27017})
MEDIUM_RISK_PORTS = frozenset({22, 25, 110, 143, 993, 995, 1337, 1338, 5432})
LOW_RISK_PORTS = frozenset({20, 53, 80, 443, 8080, 8443})

HIGH_RISK_THRESHOLD = 8
MEDIUM_RISK_THRESHOLD = 4

PORT_RISK_REASONS: Dict[int, str] = {
    21: "FTP service - unencrypted file transfer",
    22: "SSH service - remote administration",
    23: "Telnet service - unencrypted remote access",
    25: "SMTP service - email server",
    110: "POP3 service - email access",
    143: "IMAP service - email access",
    135: "RPC Endpoint Mapper - Windows service",
    139: "NetBIOS Session Service - Windows networking",
    445: "SMB over TCP - Windows file sharing",
    1433: "Microsoft SQL Server - database access",
    3306: "MySQL - database access",
    3389: "Remote Desktop Protocol - remote desktop access",
    5432: "PostgreSQL - database access",
    27017: "MongoDB - database access",
}


@dataclass
class PortResult:
    port: int
    protocol: str
    state: str
    service: Optional[str] = None
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "port": self.port,
            "protocol": self.protocol,
            "state": self.state,
            "service": self.service,
            "version": self.version,
        }


@dataclass
class HostResult:
    ip: Optional[str]
    status: str
    hostname: Optional[str] = None
    ports: List[PortResult] = field(default_factory=list)
    os_guess: Optional[str] = None
    risk_level: str = "low"
    risk_score: int = 0
    risk_reasons: List[str] = field(default_factory=list)

    @property
    def open_ports(self) -> List[PortResult]:
        return [p for p in self.ports if p.state == "open"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ip": self.ip,
            "hostname": self.hostname,
            "status": self.status,
            "ports": [p.to_dict() for p in self.ports],
            "osGuess": self.os_guess,
            "riskLevel": self.risk_level,
            "riskScore": self.risk_score,
            "riskReasons": list(self.risk_reasons),
        }


@dataclass
class ScanStats:
    total_hosts: int = 0
    hosts_up: int = 0
    hosts_down: int = 0
    total_open_ports: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalHosts": self.total_hosts,
            "hostsUp": self.hosts_up,
            "hostsDown": self.hosts_down,
            "totalOpenPorts": self.total_open_ports,
            "durationSeconds": self.duration_seconds,
        }


@dataclass
class ParsedScan:
    hosts: List[HostResult] = field(default_factory=list)
    stats: ScanStats = field(default_factory=ScanStats)

    def summary(self) -> Dict[str, int]:
        return {
            "totalHosts": self.stats.total_hosts,
            "hostsUp": self.stats.hosts_up,
            "totalOpenPorts": self.stats.total_open_ports,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hosts": [h.to_dict() for h in self.hosts],
            "stats": self.stats.to_dict(),
        }


def parse_nmap_xml(xml_text: str) -> ParsedScan:
    """
    Parse a complete nmap XML document.

    Raises NmapParseError when the text is empty, not well-formed, or not an
    <nmaprun> document (a scan killed mid-write leaves truncated XML).
    """
    if not xml_text or not xml_text.strip():
        raise NmapParseError("empty output")

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise NmapParseError(f"malformed XML: {e}") from e

    if root.tag != "nmaprun":
        raise NmapParseError(f"unexpected root element <{root.tag}>")

    hosts = [_parse_host(el) for el in root.findall("host")]

    stats = ScanStats()
    hosts_el = root.find("runstats/hosts")
    if hosts_el is not None:
        stats.total_hosts = _int(hosts_el.get("total"))
        stats.hosts_up = _int(hosts_el.get("up"))
        stats.hosts_down = _int(hosts_el.get("down"))
    finished = root.find("runstats/finished")
    if finished is not None and finished.get("elapsed"):
        try:
            stats.duration_seconds = float(finished.get("elapsed"))
        except ValueError:
            logger.debug(f"Ignoring non-numeric elapsed value: {finished.get('elapsed')}")
    stats.total_open_ports = sum(len(h.open_ports) for h in hosts)

    return ParsedScan(hosts=hosts, stats=stats)


def _parse_host(host_el: ET.Element) -> HostResult:
    addr = host_el.find("address[@addrtype='ipv4']")
    if addr is None:
        addr = host_el.find("address[@addrtype='ipv6']")

    status_el = host_el.find("status")
    host = HostResult(
        ip=addr.get("addr") if addr is not None else None,
        status=status_el.get("state", "unknown") if status_el is not None else "unknown",
    )

    hostname_el = host_el.find("hostnames/hostname")
    if hostname_el is not None:
        host.hostname = hostname_el.get("name")

    for port_el in host_el.findall("ports/port"):
        state_el = port_el.find("state")
        service_el = port_el.find("service")
        version = None
        if service_el is not None:
            version = " ".join(
                v for v in (service_el.get("product"), service_el.get("version")) if v
            ) or None
        host.ports.append(PortResult(
            port=_int(port_el.get("portid")),
            protocol=port_el.get("protocol", "tcp"),
            state=state_el.get("state", "unknown") if state_el is not None else "unknown",
            service=service_el.get("name") if service_el is not None else None,
            version=version,
        ))

    osmatch = host_el.find("os/osmatch")
    if osmatch is not None:
        host.os_guess = osmatch.get("name")

    host.risk_score = risk_score(host.ports)
    host.risk_level = risk_level(host.risk_score)
    host.risk_reasons = risk_reasons(host.ports)
    return host


def risk_score(ports: List[PortResult]) -> int:
    score = 0
    for p in ports:
        if p.state != "open":
            continue
        if p.port in HIGH_RISK_PORTS:
            score += 3
        elif p.port in MEDIUM_RISK_PORTS:
            score += 2
        elif p.port in LOW_RISK_PORTS:
            score += 1
    return score


def risk_level(score: int) -> str:
    if score >= HIGH_RISK_THRESHOLD:
        return "high"
    if score >= MEDIUM_RISK_THRESHOLD:
        return "medium"
    return "low"


def risk_reasons(ports: List[PortResult]) -> List[str]:
    return [PORT_RISK_REASONS[p.port] for p in ports if p.state == "open" and p.port in PORT_RISK_REASONS]


def _int(value: Optional[str]) -> int:
    try:
        return int(value) if value is not None else 0
    except ValueError:
        return 0
