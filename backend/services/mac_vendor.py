"""
MAC vendor lookup for newly registered devices.

Uses the IEEE OUI list downloaded by mac-vendor-lookup. The vendor file is
read directly because the package's sync API starts its own event loop,
which fails inside a running one. A small built-in table covers the
hypervisor and single-board OUIs common in a homelab when the file is
missing.
"""

import os
import re
import sys
import logging
from typing import Optional, Dict

import mac_vendor_lookup

from parsers.base import normalize_mac

logger = logging.getLogger(__name__)

# Second hex digit with bit 1 set = locally administered (not IEEE assigned).
# Docker's default 02:42:xx and libvirt's random MACs fall in this range.
_LOCAL_ADMIN_SECOND_CHARS = set("2367abef")

# Minimal fallback when the OUI file is missing
_FALLBACK_DB: Dict[str, str] = {
    "000C29": "VMware",
    "005056": "VMware",
    "00163E": "Xen",
    "080027": "VirtualBox",
    "525400": "QEMU/KVM",
    "B827EB": "Raspberry Pi",
    "DCA632": "Raspberry Pi",
    "E45F01": "Raspberry Pi",
    "0242AC": "Docker",
}


def is_locally_administered(mac: str) -> bool:
    """Return True if the MAC is locally administered (random / not IEEE-assigned)."""
    clean = re.sub(r"[:\-.]", "", mac).lower()
    if len(clean) < 2:
        return False
    return clean[1] in _LOCAL_ADMIN_SECOND_CHARS


def _find_vendor_file() -> Optional[str]:
    """Locate the mac-vendors.txt file in the mac-vendor-lookup cache locations."""
    pkg_dir = os.path.dirname(os.path.abspath(mac_vendor_lookup.__file__))
    candidates = [
        os.path.join(os.path.dirname(pkg_dir), "cache", "mac-vendors.txt"),
        os.path.join(sys.prefix, "cache", "mac-vendors.txt"),
        os.path.join(os.path.expanduser("~"), ".cache", "mac-vendors.txt"),
        os.path.join(os.path.dirname(__file__), "..", "data", "mac-vendors.txt"),
    ]
    for path in candidates:
        if os.path.isfile(path):
            return path
    return None


def _load_vendor_db(vendor_file: Optional[str]) -> Dict[str, str]:
    """Load the OUI -> vendor mapping ("00E04C:REALTEK SEMICONDUCTOR CORP.")."""
    db: Dict[str, str] = {}
    if not vendor_file:
        logger.warning(
            "IEEE OUI vendor file not found, using built-in subset. Run "
            "`python -c \"from mac_vendor_lookup import MacLookup; MacLookup().update_vendors()\"` "
            "to download it."
        )
        return db
    try:
        with open(vendor_file, "r", encoding="utf-8") as f:
            for line in f:
                prefix, sep, vendor = line.strip().partition(":")
                if sep and prefix and vendor.strip():
                    db[prefix.strip().upper()] = vendor.strip()
        logger.info(f"Loaded {len(db)} OUI entries from {vendor_file}")
    except OSError as e:
        logger.error(f"Failed to read vendor file {vendor_file}: {e}")
    return db


class MacVendorLookup:
    """Resolves vendor names from MAC addresses."""

    def __init__(self, oui_db: Optional[Dict[str, str]] = None):
        # Loaded lazily so importing the service never touches the filesystem
        self._oui_db = oui_db

    @property
    def oui_db(self) -> Dict[str, str]:
        if self._oui_db is None:
            self._oui_db = _load_vendor_db(_find_vendor_file())
        return self._oui_db

    def lookup(self, mac: Optional[str]) -> Optional[str]:
        """
        Lookup vendor for a MAC address.

        Returns:
            Vendor name, "Locally Administered" for random MACs, or None.
        """
        normalized = normalize_mac(mac)
        if not normalized:
            return None
        oui_hex = normalized[:8].replace(":", "").upper()
        vendor = self.oui_db.get(oui_hex) or _FALLBACK_DB.get(oui_hex)
        if vendor:
            return vendor
        if is_locally_administered(normalized):
            return "Locally Administered"
        return None


_vendor_lookup: Optional[MacVendorLookup] = None


def get_vendor_lookup() -> MacVendorLookup:
    """Get or create the global vendor lookup instance."""
    global _vendor_lookup
    if _vendor_lookup is None:
        _vendor_lookup = MacVendorLookup()
    return _vendor_lookup


def lookup_mac_vendor(mac: Optional[str]) -> Optional[str]:
    """Convenience function to lookup a MAC vendor."""
    return get_vendor_lookup().lookup(mac)
