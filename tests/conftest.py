"""Pytest configuration for NetScope."""
import os
import sys
import tempfile
import textwrap
from pathlib import Path

import pytest

_TEST_DATA_DIR = tempfile.mkdtemp(prefix="netscope-tests-")


def pytest_configure():
    # Keep the import-time config away from ~/.netscope
    os.environ.setdefault("NETSCOPE_DATA_DIR", _TEST_DATA_DIR)
    os.environ.setdefault("NETSCOPE_LOG_FILE", "false")


SAMPLE_NMAP_XML = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE nmaprun>
<nmaprun scanner="nmap" args="nmap -oX - -T4 -F 192.168.1.0/30" start="1700000000" version="7.94">
<host starttime="1700000001" endtime="1700000005">
<status state="up" reason="syn-ack"/>
<address addr="192.168.1.1" addrtype="ipv4"/>
<hostnames><hostname name="router.lan" type="PTR"/></hostnames>
<ports>
<port protocol="tcp" portid="22"><state state="open" reason="syn-ack"/><service name="ssh" product="OpenSSH" version="9.3"/></port>
<port protocol="tcp" portid="80"><state state="open" reason="syn-ack"/><service name="http"/></port>
<port protocol="tcp" portid="445"><state state="open" reason="syn-ack"/><service name="microsoft-ds"/></port>
<port protocol="tcp" portid="3389"><state state="open" reason="syn-ack"/><service name="ms-wbt-server"/></port>
<port protocol="tcp" portid="8080"><state state="filtered" reason="no-response"/><service name="http-proxy"/></port>
</ports>
<os><osmatch name="Linux 5.4" accuracy="96"/></os>
</host>
<host starttime="1700000001" endtime="1700000005">
<status state="up" reason="syn-ack"/>
<address addr="192.168.1.2" addrtype="ipv4"/>
<address addr="AA:BB:CC:DD:EE:FF" addrtype="mac"/>
<ports>
<port protocol="tcp" portid="443"><state state="open" reason="syn-ack"/><service name="https"/></port>
</ports>
</host>
<runstats>
<finished time="1700000006" timestr="Tue Nov 14 22:13:26 2023" elapsed="5.42" summary="Nmap done" exit="success"/>
<hosts up="2" down="2" total="4"/>
</runstats>
</nmaprun>
"""


def fake_nmap_script(stdout_text="", stderr_lines=(), exit_code=0, sleep=0.0, sleep_before_output=0.0):
    """Python source that behaves like a scanner: progress on stderr, report on stdout."""
    return textwrap.dedent(f"""
        import sys, time
        time.sleep({sleep_before_output!r})
        for line in {list(stderr_lines)!r}:
            sys.stderr.write(line + "\\n")
            sys.stderr.flush()
        sys.stdout.write({stdout_text!r})
        sys.stdout.flush()
        time.sleep({sleep!r})
        sys.exit({exit_code!r})
    """)


@pytest.fixture
def nmap_xml():
    return SAMPLE_NMAP_XML


@pytest.fixture
def fake_nmap():
    """`fake_nmap(...)` -> argv for ProcessRunner(executable=sys.executable)."""
    def _make(**kwargs):
        return ["-c", fake_nmap_script(**kwargs)]
    return _make


@pytest.fixture
def fake_nmap_executable(tmp_path):
    """
    Write an executable standing in for nmap on disk. It ignores its
    arguments, so the API can hand it a real nmap argv.
    """
    def _make(name="fake-nmap", **kwargs):
        path = Path(tmp_path) / name
        path.write_text(f"#!{sys.executable}\n" + fake_nmap_script(**kwargs))
        path.chmod(0o755)
        return str(path)
    return _make


@pytest.fixture
def make_config(tmp_path):
    from netscope.base.config import (
        LogConfig,
        NetscopeConfig,
        ScanConfig,
        SecurityConfig,
        SessionConfig,
        StorageConfig,
    )

    def _make(nmap_path="nmap", require_auth=True, rate_limit=30, allow_public=False, **session_overrides):
        return NetscopeConfig(
            security=SecurityConfig(
                api_tokens={"tok-alice": "alice", "tok-bob": "bob"},
                require_auth=require_auth,
                rate_limit_scans_per_minute=rate_limit,
            ),
            storage=StorageConfig(base_dir=Path(tmp_path) / "data"),
            scan=ScanConfig(nmap_path=nmap_path, timeout_margin_seconds=5.0, allow_public_targets=allow_public),
            session=SessionConfig(**session_overrides),
            log=LogConfig(file_enabled=False),
        )
    return _make
