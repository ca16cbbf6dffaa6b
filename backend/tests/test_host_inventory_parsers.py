"""Tests for hypervisor guest listings and ``ip`` output parsing."""

from parsers.base import normalize_mac
from parsers.ip_addr import IpAddrParser, parse_link_macs
from parsers.virsh import VirshAddressParser

VIRSH = """## web01
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 vnet0      52:54:00:ab:cd:ef    ipv4         192.168.4.45/24
 -          -                    ipv6         fe80::5054:ff:feab:cdef/64

## db01
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 vnet1      52:54:00:11:22:33    ipv4         192.168.4.46/24
 -          -                    ipv4         10.10.0.5/16

## stopped-vm
"""

AGENT_SOURCE = """## web01
 Name       MAC address          Protocol     Address
-------------------------------------------------------------------------------
 lo         00:00:00:00:00:00    ipv4         127.0.0.1/8
 -          -                    ipv6         ::1/128
 eth0       52:54:00:aa:00:61    ipv4         192.168.4.61/24
 -          -                    ipv4         169.254.10.2/16
 -          -                    ipv6         fe80::5054:ff:feaa:61/64
"""

IP_ADDR = """1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
2: eth0    inet 192.168.4.10/24 brd 192.168.4.255 scope global dynamic eth0\\       valid_lft 85000sec preferred_lft 85000sec
3: docker0    inet 172.17.0.1/16 brd 172.17.255.255 scope global docker0\\       valid_lft forever preferred_lft forever
4: bond0    inet 192.168.4.11/24 brd 192.168.4.255 scope global bond0\\       valid_lft forever preferred_lft forever
"""

IP_LINK = """1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN mode DEFAULT group default qlen 1000\\    link/loopback 00:00:00:00:00:00 brd 00:00:00:00:00:00
2: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc fq_codel state UP mode DEFAULT group default qlen 1000\\    link/ether 52:54:00:12:34:56 brd ff:ff:ff:ff:ff:ff
4: bond0: <BROADCAST,MULTICAST,MASTER,UP,LOWER_UP> mtu 1500 qdisc noqueue state UP mode DEFAULT group default qlen 1000\\    link/ether A4:BB:6D:00:11:22 brd ff:ff:ff:ff:ff:ff
"""


class TestNormalizeMac:

    def test_formats(self):
        assert normalize_mac("A4-BB-6D-00-11-22") == "a4:bb:6d:00:11:22"
        assert normalize_mac("a4bb.6d00.1122") == "a4:bb:6d:00:11:22"
        assert normalize_mac("a4bb6d001122") == "a4:bb:6d:00:11:22"

    def test_rejects_invalid_and_zero(self):
        assert normalize_mac("") is None
        assert normalize_mac("not-a-mac") is None
        assert normalize_mac("00:00:00:00:00:00") is None


class TestVirshAddressParser:

    def test_guest_addresses(self):
        result = VirshAddressParser().parse(VIRSH)
        assert result.success is True
        assert [(a.vm_name, a.ip_address) for a in result.vm_addresses] == [
            ("web01", "192.168.4.45"),
            ("db01", "192.168.4.46"),
            ("db01", "10.10.0.5"),
        ]
        web = result.vm_addresses[0]
        assert web.interface == "vnet0"
        assert web.mac_address == "52:54:00:ab:cd:ef"
        assert web.prefix_length == 24

    def test_continuation_row_has_no_interface(self):
        extra = VirshAddressParser().parse(VIRSH).vm_addresses[2]
        assert extra.interface is None
        assert extra.mac_address is None

    def test_agent_source_skips_loopback_and_link_local(self):
        result = VirshAddressParser().parse(AGENT_SOURCE)
        assert [(a.vm_name, a.interface, a.ip_address) for a in result.vm_addresses] == [
            ("web01", "eth0", "192.168.4.61"),
        ]
        assert result.warnings == []

    def test_empty(self):
        assert VirshAddressParser().parse("").vm_addresses == []

    def test_unrecognised_line_warns(self):
        result = VirshAddressParser().parse("## web01\n something odd here\n")
        assert result.vm_addresses == []
        assert len(result.warnings) == 1


class TestIpAddrParser:

    def test_link_macs(self):
        macs = parse_link_macs(IP_LINK)
        assert macs == {"eth0": "52:54:00:12:34:56", "bond0": "a4:bb:6d:00:11:22"}

    def test_addresses_with_macs(self):
        result = IpAddrParser().parse(IP_ADDR, link_output=IP_LINK)
        assert result.success is True
        by_name = {i.interface: i for i in result.interfaces}
        assert set(by_name) == {"lo", "eth0", "docker0", "bond0"}
        assert by_name["eth0"].ip_address == "192.168.4.10"
        assert by_name["eth0"].prefix_length == 24
        assert by_name["eth0"].mac_address == "52:54:00:12:34:56"
        assert by_name["eth0"].is_dynamic is True
        assert by_name["bond0"].is_dynamic is False
        assert by_name["docker0"].mac_address is None

    def test_empty_input(self):
        result = IpAddrParser().parse("")
        assert result.success is False
        assert result.interfaces == []
