"""Parser for ``ip -o -4 addr show`` and ``ip -o link show`` output."""

import logging
import re
from ipaddress import ip_interface
from typing import Dict, Optional

from .base import BaseParser, InterfaceAddress, ParseResult, normalize_mac

logger = logging.getLogger(__name__)

# 2: eth0    inet 192.168.4.10/24 brd 192.168.4.255 scope global dynamic eth0\ ...
_ADDR_RE = re.compile(r"^\d+:\s+(?P<iface>[^\s:]+)\s+inet\s+(?P<cidr>[\d.]+/\d+)(?P<rest>.*)$")
# 2: eth0: <BROADCAST,MULTICAST,UP> mtu 1500 ... link/ether 52:54:00:12:34:56 brd ...
_LINK_RE = re.compile(r"^\d+:\s+(?P<iface>[^:\s]+)(?:@\S+)?:.*?link/\w+\s+(?P<mac>[0-9a-fA-F:]{17})")


def parse_link_macs(data: Optional[str]) -> Dict[str, str]:
    """Map interface name to MAC address from ``ip -o link show``."""
    macs: Dict[str, str] = {}
    if not data:
        return macs
    for line in data.splitlines():
        match = _LINK_RE.match(line.strip())
        if not match:
            continue
        mac = normalize_mac(match.group("mac"))
        if mac:
            macs[match.group("iface").split("@")[0]] = mac
    return macs


class IpAddrParser(BaseParser):
    source_type: str = "ip_addr"

    def parse(self, data: str, link_output: Optional[str] = None, **kwargs) -> ParseResult:
        """
        Parse one-line ``ip addr`` output.

        Args:
            data: ``ip -o -4 addr show`` output
            link_output: optional ``ip -o link show`` output used to attach MACs
        """
        result = ParseResult(success=True, source_type=self.source_type)
        if not data or not data.strip():
            result.errors.append("Empty input data")
            result.success = False
            return result

        macs = parse_link_macs(link_output)
        for line in data.splitlines():
            line = line.strip()
            if not line:
                continue
            match = _ADDR_RE.match(line)
            if not match:
                result.warnings.append(f"Unrecognised ip addr line: {line}")
                continue
            try:
                iface = ip_interface(match.group("cidr"))
            except ValueError:
                logger.warning(f"Skipping invalid interface address '{match.group('cidr')}'")
                continue
            name = match.group("iface").split("@")[0]
            result.interfaces.append(
                InterfaceAddress(
                    interface=name,
                    ip_address=str(iface.ip),
                    prefix_length=iface.network.prefixlen,
                    mac_address=macs.get(name),
                    is_dynamic=" dynamic" in match.group("rest"),
                )
            )
        return result
