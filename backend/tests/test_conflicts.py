"""
Tests for IP conflict resolution.

Every source is consulted: the registry, container inventories (running
and stopped), hypervisor guests, host interfaces and a ping. Unreachable
hosts contribute no evidence and never fail the check.
"""

import json

import pytest

from fakes import FakeProbe, ScriptedExecutor, ScriptedHost, add_host
from models import DeviceStatus, DeviceType, DiscoverySource, NetworkDevice
from services.conflicts import (
    SOURCE_DATABASE,
    SOURCE_DOCKER,
    SOURCE_INTERFACE,
    SOURCE_NETWORK_SCAN,
    SOURCE_VM,
    ConflictResolver,
)

CONTAINERS = [
    {
        "Id": "a1b2c3d4e5f6a7b8c9d0",
        "Name": "/pihole",
        "State": {"Status": "running"},
        "NetworkSettings": {
            "Networks": {"macvlan_lan": {"IPAddress": "192.168.4.150", "MacAddress": "02:42:c0:a8:04:96"}}
        },
    },
    {
        "Id": "ffeeddccbbaa00112233",
        "Name": "/old-nginx",
        "State": {"Status": "exited"},
        "NetworkSettings": {
            "Networks": {"macvlan_lan": {"IPAddress": "", "IPAMConfig": {"IPv4Address": "192.168.4.151"}}}
        },
    },
]

# One object per line, as the bulk inspect command prints them
INSPECT_ALL = "\n".join(json.dumps(container) for container in CONTAINERS)

VIRSH = """## web01
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 vnet0      52:54:00:ab:cd:ef    ipv4         192.168.4.160/24
"""

IP_ADDR = "2: bond0    inet 192.168.4.2/24 brd 192.168.4.255 scope global bond0\n"
IP_LINK = "2: bond0: <BROADCAST,MULTICAST,MASTER,UP> mtu 1500 qdisc noqueue state UP\\    link/ether a4:bb:6d:00:11:22 brd ff:ff:ff:ff:ff:ff\n"


def docker_host(**kwargs) -> ScriptedHost:
    return ScriptedHost(
        [
            ("docker ps -aq | xargs -r docker inspect", INSPECT_ALL),
            ("ip -o -4 addr show", "2: eth0    inet 192.168.4.20/24 brd 192.168.4.255 scope global eth0\n"),
            ("ip -o link show", ""),
        ],
        **kwargs,
    )


def hypervisor_host() -> ScriptedHost:
    return ScriptedHost([
        ("docker ps -aq", ""),
        ("virsh", VIRSH),
        ("ip -o -4 addr show", IP_ADDR),
        ("ip -o link show", IP_LINK),
    ])


async def add_device(db, ip, hostname="nas01", **kwargs) -> NetworkDevice:
    device = NetworkDevice(
        ip_address=ip,
        hostname=hostname,
        device_type=DeviceType.SERVER,
        status=DeviceStatus.ONLINE,
        source=DiscoverySource.MANUAL_ENTRY,
        **kwargs,
    )
    db.add(device)
    await db.commit()
    await db.refresh(device)
    return device


def resolver(hosts, probe=None, host_timeout=5.0) -> ConflictResolver:
    return ConflictResolver(
        ScriptedExecutor(hosts),
        probe=probe or FakeProbe(),
        host_timeout=host_timeout,
        max_concurrent_hosts=4,
    )


class TestConflictResolver:

    @pytest.mark.asyncio
    async def test_free_address(self, db_session):
        await add_host(db_session, "docker01", "192.168.4.20")
        probe = FakeProbe()
        result = await resolver({"192.168.4.20": docker_host()}, probe).check_conflict(db_session, "192.168.4.199")

        assert result.is_available is True
        assert result.has_conflict is False
        assert result.conflicts == []
        assert result.is_reachable_on_network is False
        assert result.ping_response_ms is None
        assert result.hosts_checked == 1
        assert result.hosts_failed == 0
        assert probe.pinged == ["192.168.4.199"]

    @pytest.mark.asyncio
    async def test_registry_and_container_evidence(self, db_session):
        host = await add_host(db_session, "docker01", "192.168.4.20")
        await add_device(db_session, "192.168.4.150", hostname="pihole")

        result = await resolver({"192.168.4.20": docker_host()}).check_conflict(db_session, "192.168.4.150")

        assert result.has_conflict is True
        assert result.is_available is False
        assert [c.source for c in result.conflicts] == [SOURCE_DATABASE, SOURCE_DOCKER]
        docker = result.conflicts[1]
        assert docker.device_name == "pihole"
        assert docker.server_name == "docker01"
        assert docker.server_id == host.id
        assert docker.mac_address == "02:42:c0:a8:04:96"

    @pytest.mark.asyncio
    async def test_stopped_container_still_conflicts(self, db_session):
        await add_host(db_session, "docker01", "192.168.4.20")
        result = await resolver({"192.168.4.20": docker_host()}).check_conflict(db_session, "192.168.4.151")
        [conflict] = result.conflicts
        assert conflict.source == SOURCE_DOCKER
        assert conflict.device_name == "old-nginx"
        assert conflict.status == "exited"

    @pytest.mark.asyncio
    async def test_vm_and_interface_evidence(self, db_session):
        await add_host(db_session, "pve", "192.168.4.2")
        hosts = {"192.168.4.2": hypervisor_host()}

        vm = await resolver(hosts).check_conflict(db_session, "192.168.4.160")
        assert [c.source for c in vm.conflicts] == [SOURCE_VM]
        assert vm.conflicts[0].device_name == "web01"

        iface = await resolver(hosts).check_conflict(db_session, "192.168.4.2")
        assert [c.source for c in iface.conflicts] == [SOURCE_INTERFACE]
        assert iface.conflicts[0].mac_address == "a4:bb:6d:00:11:22"

    @pytest.mark.asyncio
    async def test_excluded_device_is_not_evidence(self, db_session):
        device = await add_device(db_session, "192.168.4.170")
        result = await resolver({}).check_conflict(db_session, "192.168.4.170", exclude_device_id=device.id)
        assert result.is_available is True

        result = await resolver({}).check_conflict(db_session, "192.168.4.170")
        assert [c.source for c in result.conflicts] == [SOURCE_DATABASE]

    @pytest.mark.asyncio
    async def test_unreachable_host_contributes_nothing(self, db_session):
        await add_host(db_session, "docker01", "192.168.4.20")
        await add_host(db_session, "offline", "192.168.4.21")
        hosts = {
            "192.168.4.20": docker_host(),
            "192.168.4.21": ScriptedHost(unreachable=True),
        }

        result = await resolver(hosts).check_conflict(db_session, "192.168.4.150")

        assert result.success is True
        assert result.hosts_checked == 2
        assert result.hosts_failed == 1
        assert [c.source for c in result.conflicts] == [SOURCE_DOCKER]

    @pytest.mark.asyncio
    async def test_slow_host_times_out(self, db_session):
        await add_host(db_session, "slow", "192.168.4.22")
        hosts = {"192.168.4.22": docker_host(delay=1.0)}

        result = await resolver(hosts, host_timeout=0.05).check_conflict(db_session, "192.168.4.150")

        assert result.hosts_failed == 1
        assert result.is_available is True

    @pytest.mark.asyncio
    async def test_ping_only_evidence(self, db_session):
        probe = FakeProbe({"192.168.4.180": 0.42})
        result = await resolver({}, probe).check_conflict(db_session, "192.168.4.180")

        assert result.is_reachable_on_network is True
        assert result.ping_response_ms == 0.42
        [conflict] = result.conflicts
        assert conflict.source == SOURCE_NETWORK_SCAN
        assert conflict.details == "IP responds to ping but not found in system"

    @pytest.mark.asyncio
    async def test_ping_with_other_evidence_adds_no_scan_entry(self, db_session):
        await add_device(db_session, "192.168.4.181")
        probe = FakeProbe({"192.168.4.181": 1.5})
        result = await resolver({}, probe).check_conflict(db_session, "192.168.4.181")

        assert result.is_reachable_on_network is True
        assert [c.source for c in result.conflicts] == [SOURCE_DATABASE]

    @pytest.mark.asyncio
    async def test_unreadable_inspect_output(self, db_session):
        await add_host(db_session, "docker01", "192.168.4.20")
        host = ScriptedHost([
            ("docker ps -aq", "{not json"),
            ("ip -o -4 addr show", "2: eth0    inet 192.168.4.20/24 scope global eth0\n"),
            ("ip -o link show", ""),
        ])
        result = await resolver({"192.168.4.20": host}).check_conflict(db_session, "192.168.4.150")
        assert result.hosts_failed == 0
        assert result.is_available is True

    @pytest.mark.asyncio
    async def test_one_session_per_host(self, db_session):
        await add_host(db_session, "docker01", "192.168.4.20")
        host = docker_host()
        await resolver({"192.168.4.20": host}).check_conflict(db_session, "192.168.4.150")
        assert host.sessions_opened == 1
        assert host.calls[0].startswith("docker ps -aq")
