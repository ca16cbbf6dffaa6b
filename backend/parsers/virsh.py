"""Parser for hypervisor guest address listings.

Input is the concatenated output of ``virsh domifaddr`` for every domain,
each block introduced by a ``## <domain>`` marker line::

    ## web01
     Name       MAC address          Protocol     Address
    -------------------------------------------------------------
     vnet0      52:54:00:ab:cd:ef    ipv4         192.168.122.45/24

With ``--source agent`` the guest's own interfaces are listed, including
``lo``. Loopback and link-local addresses never identify a guest and are
dropped.
"""

import logging
from ipaddress import ip_interface

from .base import BaseParser, ParseResult, VmGuestAddress, normalize_mac

logger = logging.getLogger(__name__)

DOMAIN_MARKER = "## "
LOOPBACK_INTERFACE = "lo"


class VirshAddressParser(BaseParser):
    source_type: str = "virsh"

    def parse(self, data: str, **kwargs) -> ParseResult:
        result = ParseResult(success=True, source_type=self.source_type)
        if not data or not data.strip():
            return result

        current_vm = None
        current_nic = None
        for line in data.splitlines():
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith(DOMAIN_MARKER):
                current_vm = stripped[len(DOMAIN_MARKER):].strip() or None
                current_nic = None
                continue
            if current_vm is None or stripped.startswith(("Name", "---", "error:")):
                continue

            parts = stripped.split()
            # Continuation rows for extra addresses on one NIC use "-" for name and MAC
            if len(parts) != 4 or parts[2] not in ("ipv4", "ipv6"):
                result.warnings.append(f"Unrecognised virsh line for {current_vm}: {stripped}")
                continue
            if parts[0] != "-":
                current_nic = parts[0]
            if parts[2] != "ipv4" or current_nic == LOOPBACK_INTERFACE:
                continue
            try:
                iface = ip_interface(parts[3])
            except ValueError:
                logger.warning(f"Skipping invalid guest address '{parts[3]}' on {current_vm}")
                result.warnings.append(f"Invalid address '{parts[3]}'")
                continue
            if iface.ip.is_loopback or iface.ip.is_link_local:
                continue
            result.vm_addresses.append(
                VmGuestAddress(
                    vm_name=current_vm,
                    ip_address=str(iface.ip),
                    interface=None if parts[0] == "-" else parts[0],
                    mac_address=normalize_mac(parts[1]) if parts[1] != "-" else None,
                    prefix_length=iface.network.prefixlen,
                )
            )
        return result
