import pytest

from netscope.toolkit.nmap_args import ScanRequestConfig, apply_profile_defaults
from netscope.toolkit.validation import (
    PUBLIC_TARGET_MESSAGE,
    validate_ports_custom,
    validate_scan_config,
    validate_scan_config_conflicts,
    validate_target,
)


@pytest.mark.parametrize("target", [
    "192.168.1.10",
    "10.0.0.0/8",
    "172.16.5.4",
    "172.31.255.255",
    "192.168.1.1-254",
    "192.168.1.1-192.168.1.20",
    "scanme.local",
    "router",
])
def test_valid_targets(target):
    assert validate_target(target) is None


@pytest.mark.parametrize("target", ["", "   ", "not a host!", "999.1.1.1", "10.0.0.1/40", "192.168.1.20-5", "1.2.3"])
def test_invalid_targets(target):
    issue = validate_target(target)
    assert issue is not None
    assert issue.field == "target"


@pytest.mark.parametrize("target", ["8.8.8.8", "172.32.0.1", "1.1.1.0/24", "8.8.8.1-20", "10.0.0.0/7"])
def test_public_targets_rejected_by_default(target):
    issue = validate_target(target)
    assert issue is not None
    assert issue.message == PUBLIC_TARGET_MESSAGE


def test_public_targets_allowed_when_configured():
    assert validate_target("8.8.8.8", allow_public=True) is None


@pytest.mark.parametrize("ports,ok", [
    ("22,80,443", True),
    ("1-1000", True),
    (" 22 , 80 ", True),
    ("", True),
    ("0", False),
    ("65536", False),
    ("22;80", False),
    ("abc", False),
    ("100-10", False),
    ("1-2-3", False),
])
def test_ports_custom(ports, ok):
    assert (validate_ports_custom(ports) is None) is ok


def test_syn_and_connect_conflict_is_error():
    config = ScanRequestConfig(target="10.0.0.1", tcp_syn_scan=True, tcp_connect_scan=True)
    errors, warnings = validate_scan_config_conflicts(config)

    assert [e.field for e in errors] == ["scanType"]
    assert [w.field for w in warnings] == ["tcpSynScan"]


def test_privilege_and_performance_notes_are_warnings():
    config = ScanRequestConfig(target="10.0.0.1", os_detection=True, udp_scan=True)
    errors, warnings = validate_scan_config(config)

    assert errors == []
    assert {w.field for w in warnings} == {"osDetection", "udpScan"}


def test_custom_port_mode_requires_ports():
    errors, _ = validate_scan_config(ScanRequestConfig(target="10.0.0.1", port_mode="custom"))
    assert [e.field for e in errors] == ["portsCustom"]

    errors, _ = validate_scan_config(ScanRequestConfig(target="10.0.0.1", ports_custom="80"))
    assert [e.field for e in errors] == ["portsCustom"]


def test_numeric_ranges():
    config = ScanRequestConfig(
        target="10.0.0.1", host_timeout_seconds=0, max_retries=11, min_rate=0, max_rate=100001
    )
    errors, _ = validate_scan_config(config)

    assert {e.field for e in errors} == {"hostTimeoutSeconds", "maxRetries", "minRate", "maxRate"}


def test_min_rate_above_max_rate():
    errors, _ = validate_scan_config(ScanRequestConfig(target="10.0.0.1", min_rate=500, max_rate=100))
    assert [e.field for e in errors] == ["minRate"]


def test_profile_presets_validate_cleanly():
    for profile in ("quick", "balanced", "custom"):
        errors, _ = validate_scan_config(apply_profile_defaults({"target": "192.168.0.1"}, profile))
        assert errors == [], profile
    errors, warnings = validate_scan_config(apply_profile_defaults({"target": "192.168.0.1"}, "full"))
    assert errors == []
    assert [w.field for w in warnings] == ["osDetection"]
