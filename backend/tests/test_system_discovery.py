"""
Tests for system discovery: category probing, package manager detection,
the direct-parsing fallback and the optional enrichment overlay.
"""

import json

import httpx
import pytest

from fakes import ScriptedExecutor, ScriptedHost
from models import HostStatus
from services.credentials import SshTarget
from services.enrichment import SystemInfoEnricher, extract_json_object
from services.errors import ConnectionFailed, ServiceUnavailable
from services.system_discovery import (
    FALLBACK_CONFIDENCE,
    SystemDiscovery,
    discover_updates,
    evaluate_host_status,
)
from test_system_info_parser import DF_ROOT, FREE_B, OS_RELEASE, SYSTEMCTL

TARGET = SshTarget(host_id=1, name="nas01", address="192.168.4.10", port=22, username="admin", password="secret")

APT_LISTING = (
    "Listing...\n"
    "openssl/bookworm-security 3.0.11-1~deb12u2 amd64 [upgradable from: 3.0.11-1~deb12u1]\n"
    "curl/bookworm 7.88.1-10+deb12u5 amd64 [upgradable from: 7.88.1-10+deb12u4]\n"
    "vim/bookworm 2:9.0.1378-2 amd64 [upgradable from: 2:9.0.1378-1]\n"
)


def debian_host(disk=DF_ROOT) -> ScriptedHost:
    return ScriptedHost([
        ("cat /etc/os-release", OS_RELEASE),
        ("hostname", "nas01"),
        ("uptime -p", "up 3 days, 2 hours"),
        ("free -b", FREE_B),
        ("uname -r", "6.1.0-18-amd64"),
        ("uname -m", "x86_64"),
        ("df -h /", disk),
        ("ip -o -4 addr show", "2: eth0    inet 192.168.4.10/24 brd 192.168.4.255 scope global eth0"),
        ("systemctl list-units", SYSTEMCTL),
        ("cat /proc/loadavg", "0.15 0.10 0.05 1/234 5678"),
        ("command -v apt", "/usr/bin/apt"),
        ("apt list --upgradable", APT_LISTING),
        ("dpkg-query", "412"),
    ])


def enricher_answering(handler) -> SystemInfoEnricher:
    return SystemInfoEnricher(
        base_url="http://ollama.local:11434",
        model="llama3.2",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestHostStatus:

    def test_thresholds(self):
        assert evaluate_host_status(25.0, 50.0) == HostStatus.ONLINE
        assert evaluate_host_status(85.0, 50.0) == HostStatus.WARNING
        assert evaluate_host_status(25.0, 92.0) == HostStatus.WARNING
        assert evaluate_host_status(95.0, 50.0) == HostStatus.CRITICAL
        assert evaluate_host_status(25.0, 96.0) == HostStatus.CRITICAL

    def test_unknown_usage_is_online(self):
        assert evaluate_host_status(None, None) == HostStatus.ONLINE


class TestDiscoverUpdates:

    @pytest.mark.asyncio
    async def test_apt_separates_security_updates(self):
        executor = ScriptedExecutor({"192.168.4.10": debian_host()})
        async with executor.session(TARGET) as session:
            info = await discover_updates(session)
        assert info == {
            "package_manager": "apt",
            "available_updates": 3,
            "security_updates": 1,
            "installed_packages": 412,
        }

    @pytest.mark.asyncio
    async def test_priority_order(self):
        host = ScriptedHost([
            ("command -v dnf", "/usr/bin/dnf"),
            ("command -v yum", "/usr/bin/yum"),
            ("yum -q check-update", "5"),
            ("rpm -qa", "800"),
        ])
        executor = ScriptedExecutor({"192.168.4.10": host})
        async with executor.session(TARGET) as session:
            info = await discover_updates(session)
        assert info["package_manager"] == "yum"
        assert info["available_updates"] == 5
        assert info["installed_packages"] == 800
        assert "security_updates" not in info
        assert not any("dnf -q" in call for call in host.calls)

    @pytest.mark.asyncio
    async def test_no_package_manager(self):
        executor = ScriptedExecutor({"192.168.4.10": ScriptedHost()})
        async with executor.session(TARGET) as session:
            assert await discover_updates(session) == {}


class TestSystemDiscovery:

    @pytest.mark.asyncio
    async def test_fallback_parsing(self):
        host = debian_host()
        discovery = SystemDiscovery(ScriptedExecutor({"192.168.4.10": host}), SystemInfoEnricher(base_url=""))
        result = await discovery.discover(TARGET)

        assert result.success is True
        assert result.enriched is False
        assert result.confidence == FALLBACK_CONFIDENCE
        assert result.operating_system == "Debian GNU/Linux 12 (bookworm)"
        assert result.os_version == "12"
        assert result.hostname == "nas01"
        assert result.kernel_version == "6.1.0-18-amd64"
        assert result.architecture == "x86_64"
        assert result.memory_percent == 25.0
        assert result.disk_percent == 87.0
        assert result.running_services == ["cron", "docker", "ssh"]
        assert result.network_interfaces == ["eth0: 192.168.4.10/24"]
        assert result.package_manager == "apt"
        assert result.available_updates == 3
        assert result.security_updates == 1
        assert result.host_status == HostStatus.ONLINE
        # Unanswered categories are omitted, not errors
        assert "cpu" not in result.raw_system_data
        assert result.raw_system_data["kernel"] == "6.1.0-18-amd64"
        assert host.sessions_opened == 1

    @pytest.mark.asyncio
    async def test_stops_probing_category_at_first_answer(self):
        host = debian_host()
        discovery = SystemDiscovery(ScriptedExecutor({"192.168.4.10": host}), SystemInfoEnricher(base_url=""))
        await discovery.discover(TARGET)
        assert "uptime -p" in host.calls
        assert "cat /proc/uptime" not in host.calls
        assert "lsb_release -a 2>/dev/null" not in host.calls

    @pytest.mark.asyncio
    async def test_critical_disk(self):
        full_disk = "Filesystem Size Used Avail Use% Mounted on\n/dev/sda1 50G 49G 1G 98% /\n"
        discovery = SystemDiscovery(
            ScriptedExecutor({"192.168.4.10": debian_host(full_disk)}), SystemInfoEnricher(base_url="")
        )
        result = await discovery.discover(TARGET)
        assert result.host_status == HostStatus.CRITICAL

    @pytest.mark.asyncio
    async def test_enrichment_overlay(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            summary = {
                "operating_system": "Debian",
                "os_version": "12.5",
                "running_services": ["nginx", "docker"],
                "available_updates": "7",
                "confidence": 0.92,
            }
            return httpx.Response(200, json={"response": f"Sure! {json.dumps(summary)} Hope that helps."})

        discovery = SystemDiscovery(ScriptedExecutor({"192.168.4.10": debian_host()}), enricher_answering(handler))
        result = await discovery.discover(TARGET)

        assert result.enriched is True
        assert result.confidence == 0.92
        assert result.operating_system == "Debian"
        assert result.os_version == "12.5"
        assert result.running_services == ["nginx", "docker"]
        assert result.available_updates == 7
        # Gaps in the summary keep the directly parsed values
        assert result.kernel_version == "6.1.0-18-amd64"
        assert result.security_updates == 1
        assert requests[0]["model"] == "llama3.2"
        assert "=== KERNEL ===" in requests[0]["prompt"]

    @pytest.mark.asyncio
    async def test_enrichment_failure_falls_back(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="model not loaded")

        discovery = SystemDiscovery(ScriptedExecutor({"192.168.4.10": debian_host()}), enricher_answering(handler))
        result = await discovery.discover(TARGET)
        assert result.success is True
        assert result.enriched is False
        assert result.confidence == FALLBACK_CONFIDENCE
        assert result.operating_system == "Debian GNU/Linux 12 (bookworm)"

    @pytest.mark.asyncio
    async def test_enrichment_answering_a_list_falls_back(self):
        enricher = enricher_answering(lambda request: httpx.Response(200, json=["unexpected"]))
        discovery = SystemDiscovery(ScriptedExecutor({"192.168.4.10": debian_host()}), enricher)
        result = await discovery.discover(TARGET)
        assert result.success is True
        assert result.enriched is False
        assert result.confidence == FALLBACK_CONFIDENCE

    @pytest.mark.asyncio
    async def test_unreachable_host_raises(self):
        discovery = SystemDiscovery(
            ScriptedExecutor({"192.168.4.10": ScriptedHost(unreachable=True)}), SystemInfoEnricher(base_url="")
        )
        with pytest.raises(ConnectionFailed):
            await discovery.discover(TARGET)


class TestEnricher:

    def test_extract_json_object(self):
        assert extract_json_object('noise {"a": {"b": 1}} trailing') == {"a": {"b": 1}}

    def test_extract_json_object_missing(self):
        with pytest.raises(ValueError):
            extract_json_object("no json here")

    @pytest.mark.asyncio
    async def test_not_configured(self):
        enricher = SystemInfoEnricher(base_url="")
        assert enricher.is_configured is False
        with pytest.raises(ServiceUnavailable):
            await enricher.summarize({"kernel": "6.1"})

    @pytest.mark.asyncio
    async def test_unparseable_answer(self):
        enricher = enricher_answering(lambda request: httpx.Response(200, json={"response": "I am not sure."}))
        with pytest.raises(ServiceUnavailable):
            await enricher.summarize({"kernel": "6.1"})

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        enricher = enricher_answering(lambda request: httpx.Response(200, json="just text"))
        with pytest.raises(ServiceUnavailable):
            await enricher.summarize({"kernel": "6.1"})

    @pytest.mark.asyncio
    async def test_non_text_response_field(self):
        enricher = enricher_answering(
            lambda request: httpx.Response(200, json={"response": {"operating_system": "Debian"}})
        )
        with pytest.raises(ServiceUnavailable):
            await enricher.summarize({"kernel": "6.1"})

    @pytest.mark.asyncio
    async def test_check(self):
        enricher = enricher_answering(lambda request: httpx.Response(200, json={"models": []}))
        assert await enricher.check() is True
