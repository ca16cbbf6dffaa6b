"""Parser package for remote command output.

Each parser turns the text printed by one remote tool (docker, virsh,
ip, ping, and assorted system-info commands) into dataclasses.
"""

from .base import (
    BaseParser,
    DiscoveredContainer,
    InterfaceAddress,
    NetworkAttachment,
    ParseResult,
    PortMapping,
    VmGuestAddress,
    normalize_mac,
)
from .docker import DockerPsParser, parse_port_mapping, parse_ports, format_port_mapping
from .virsh import VirshAddressParser
from .ip_addr import IpAddrParser
from .ping import PingParser, PingReply

__all__ = [
    "BaseParser",
    "DiscoveredContainer",
    "InterfaceAddress",
    "NetworkAttachment",
    "ParseResult",
    "PortMapping",
    "VmGuestAddress",
    "normalize_mac",
    "DockerPsParser",
    "parse_port_mapping",
    "parse_ports",
    "format_port_mapping",
    "VirshAddressParser",
    "IpAddrParser",
    "PingParser",
    "PingReply",
]
