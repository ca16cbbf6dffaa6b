"""Hypervisor guest and raw interface inventory for one host."""

import logging
from typing import List

from parsers.base import InterfaceAddress, VmGuestAddress
from parsers.ip_addr import IpAddrParser
from parsers.virsh import VirshAddressParser
from services.command_sets import IP_ADDR, IP_LINK, VIRSH_GUEST_ADDRESSES
from services.errors import CommandFailed

logger = logging.getLogger(__name__)

# Virtual plumbing that never represents a device of its own
SKIPPED_INTERFACE_PREFIXES = ("lo", "docker", "br-", "veth", "virbr", "vnet", "cni", "flannel")


def is_skipped_interface(name: str) -> bool:
    return name == "lo" or name.startswith(SKIPPED_INTERFACE_PREFIXES)


async def collect_vm_addresses(runner) -> List[VmGuestAddress]:
    """
    Guest addresses reported by the hypervisor. A host without virsh
    yields an empty list.
    """
    try:
        output = await runner.run(VIRSH_GUEST_ADDRESSES)
    except CommandFailed as e:
        logger.debug(f"No hypervisor inventory: {e}")
        return []
    result = VirshAddressParser().parse(output)
    for warning in result.warnings:
        logger.warning(f"virsh: {warning}")
    return result.vm_addresses


async def collect_interfaces(runner, include_virtual: bool = True) -> List[InterfaceAddress]:
    """IPv4 addresses held by the host's interfaces, with MACs where known."""
    output = await runner.run(IP_ADDR)
    try:
        links = await runner.run(IP_LINK)
    except CommandFailed as e:
        logger.warning(f"Could not read interface MACs: {e}")
        links = None
    result = IpAddrParser().parse(output, link_output=links)
    for warning in result.warnings:
        logger.warning(f"ip addr: {warning}")
    if include_virtual:
        return result.interfaces
    return [i for i in result.interfaces if not is_skipped_interface(i.interface)]
