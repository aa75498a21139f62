import pytest

from netscope.errors import ErrorCode, NmapParseError
from netscope.parsers.nmap_xml import PortResult, parse_nmap_xml, risk_level, risk_reasons, risk_score


def test_parses_hosts_ports_and_stats(nmap_xml):
    parsed = parse_nmap_xml(nmap_xml)

    assert parsed.stats.total_hosts == 4
    assert parsed.stats.hosts_up == 2
    assert parsed.stats.hosts_down == 2
    assert parsed.stats.total_open_ports == 5
    assert parsed.stats.duration_seconds == pytest.approx(5.42)

    router, web = parsed.hosts
    assert router.ip == "192.168.1.1"
    assert router.hostname == "router.lan"
    assert router.status == "up"
    assert router.os_guess == "Linux 5.4"
    assert [p.port for p in router.ports] == [22, 80, 445, 3389, 8080]
    assert router.ports[0].service == "ssh"
    assert router.ports[0].version == "OpenSSH 9.3"
    assert router.ports[4].state == "filtered"

    assert web.ip == "192.168.1.2"
    assert web.hostname is None


def test_risk_rating(nmap_xml):
    router, web = parse_nmap_xml(nmap_xml).hosts

    # 22 (2) + 80 (1) + 445 (3) + 3389 (3); filtered 8080 does not count
    assert router.risk_score == 9
    assert router.risk_level == "high"
    assert router.risk_reasons == [
        "SSH service - remote administration",
        "SMB over TCP - Windows file sharing",
        "Remote Desktop Protocol - remote desktop access",
    ]
    assert web.risk_score == 1
    assert web.risk_level == "low"
    assert web.risk_reasons == []


@pytest.mark.parametrize("score,level", [(0, "low"), (3, "low"), (4, "medium"), (7, "medium"), (8, "high")])
def test_risk_level_thresholds(score, level):
    assert risk_level(score) == level


def test_closed_ports_carry_no_risk():
    ports = [PortResult(port=23, protocol="tcp", state="closed")]
    assert risk_score(ports) == 0
    assert risk_reasons(ports) == []


def test_to_dict_uses_client_field_names(nmap_xml):
    data = parse_nmap_xml(nmap_xml).to_dict()

    assert set(data) == {"hosts", "stats"}
    assert data["stats"] == {
        "totalHosts": 4,
        "hostsUp": 2,
        "hostsDown": 2,
        "totalOpenPorts": 5,
        "durationSeconds": 5.42,
    }
    host = data["hosts"][0]
    assert {"ip", "hostname", "status", "ports", "osGuess", "riskLevel", "riskScore", "riskReasons"} == set(host)


def test_report_without_hosts():
    parsed = parse_nmap_xml('<nmaprun><runstats><hosts up="0" down="1" total="1"/></runstats></nmaprun>')

    assert parsed.hosts == []
    assert parsed.stats.hosts_down == 1
    assert parsed.stats.total_open_ports == 0


@pytest.mark.parametrize("text", ["", "   \n", "<nmaprun><host>", "garbage", "<other/>"])
def test_unparseable_output_raises(text):
    with pytest.raises(NmapParseError) as exc_info:
        parse_nmap_xml(text)
    assert exc_info.value.code == ErrorCode.TOOL_OUTPUT_PARSE_ERROR
    assert exc_info.value.message == "Failed to parse scan results"
