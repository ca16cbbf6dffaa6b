"""Base classes and data structures for remote command output parsing."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from datetime import datetime


@dataclass
class PortMapping:
    """One container port, published or not."""

    container_port: int
    protocol: str = "tcp"
    host_port: Optional[int] = None
    host_ip: Optional[str] = None


@dataclass
class NetworkAttachment:
    """A container's attachment to one container network."""

    network_name: str
    ip_address: Optional[str] = None
    gateway: Optional[str] = None
    mac_address: Optional[str] = None
    prefix_length: Optional[int] = None
    subnet: Optional[str] = None  # derived from gateway + prefix length


@dataclass
class DiscoveredContainer:
    """A container as seen on one inventory pass. Never persisted."""

    container_id: str
    name: str
    image: str
    status: str
    created: Optional[str] = None
    ports: List[PortMapping] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    networks: List[NetworkAttachment] = field(default_factory=list)
    network_mode: Optional[str] = None
    mac_address: Optional[str] = None
    is_web_service: bool = False
    service_url: Optional[str] = None

    @property
    def is_running(self) -> bool:
        return self.status.lower().startswith("up")

    @property
    def ip_addresses(self) -> List[str]:
        return [n.ip_address for n in self.networks if n.ip_address]


@dataclass
class VmGuestAddress:
    """An address reported by the hypervisor for a guest interface."""

    vm_name: str
    ip_address: str
    interface: Optional[str] = None
    mac_address: Optional[str] = None
    prefix_length: Optional[int] = None


@dataclass
class InterfaceAddress:
    """An IPv4 address held by a host network interface."""

    interface: str
    ip_address: str
    prefix_length: Optional[int] = None
    mac_address: Optional[str] = None
    is_dynamic: bool = False


@dataclass
class ParseResult:
    """Result of parsing operation."""

    success: bool
    source_type: str
    containers: List[DiscoveredContainer] = field(default_factory=list)
    vm_addresses: List[VmGuestAddress] = field(default_factory=list)
    interfaces: List[InterfaceAddress] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    parsed_at: datetime = field(default_factory=datetime.utcnow)


class BaseParser(ABC):
    """Abstract base class for all parsers."""

    source_type: str = "unknown"

    @abstractmethod
    def parse(self, data: str, **kwargs) -> ParseResult:
        """Parse input data and return structured result."""
        pass


def normalize_mac(mac: Optional[str]) -> Optional[str]:
    """Normalize a MAC address to lowercase colon-separated format.

    Returns None for empty input and for the all-zero address.
    """
    if not mac:
        return None
    cleaned = mac.strip().lower().replace("-", ":").replace(".", "")
    if ":" not in cleaned and len(cleaned) == 12:
        cleaned = ":".join(cleaned[i:i + 2] for i in range(0, 12, 2))
    parts = cleaned.split(":")
    if len(parts) != 6:
        return None
    try:
        cleaned = ":".join(f"{int(p, 16):02x}" for p in parts)
    except ValueError:
        return None
    if cleaned == "00:00:00:00:00:00":
        return None
    return cleaned
