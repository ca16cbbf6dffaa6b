"""
Network device registry.

One row per device observed on the network (container, VM guest, host
interface, scanned device or manual entry). The hardware address is the
primary matching key when known; the IP address is the fallback key.
Rows are never removed because a scan did not see them.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, JSON, ForeignKey, Index
from database import Base


class DeviceType:
    SERVER = "Server"
    VIRTUAL_MACHINE = "VirtualMachine"
    NETWORK_INTERFACE = "NetworkInterface"
    IOT = "IoT"
    UNKNOWN = "Unknown"


class DeviceStatus:
    ONLINE = "Online"
    OFFLINE = "Offline"


class DiscoverySource:
    DOCKER = "Docker"
    NETWORK_SCAN = "NetworkScan"
    VIRTUAL_MACHINE = "VirtualMachine"
    MANUAL_ENTRY = "ManualEntry"
    OTHER = "Other"


class NetworkDevice(Base):
    """SQLAlchemy model for registry devices."""

    __tablename__ = "network_devices"

    id = Column(Integer, primary_key=True, index=True)

    # Not unique: transient duplicates are tolerated during reconciliation
    ip_address = Column(String(45), nullable=False, index=True)
    mac_address = Column(String(17), nullable=True, index=True)
    hostname = Column(String(255), nullable=True)
    vendor = Column(String(255), nullable=True)
    operating_system = Column(String(255), nullable=True)

    device_type = Column(String(50), default=DeviceType.UNKNOWN)
    status = Column(String(20), default=DeviceStatus.ONLINE)
    source = Column(String(50), default=DiscoverySource.OTHER)

    is_static_ip = Column(Boolean, default=False)
    is_dhcp_assigned = Column(Boolean, default=False)

    notes = Column(Text, nullable=True)
    open_ports = Column(JSON, nullable=True)  # [80, 443]

    managed_host_id = Column(
        Integer, ForeignKey("managed_hosts.id", ondelete="SET NULL"), nullable=True
    )
    subnet_id = Column(Integer, ForeignKey("subnets.id", ondelete="SET NULL"), nullable=True)

    # Set explicitly by the reconciler; never regressed
    first_seen = Column(DateTime, default=datetime.utcnow)
    last_seen = Column(DateTime, default=datetime.utcnow)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_network_device_ip", "ip_address"),
        Index("idx_network_device_mac", "mac_address"),
        Index("idx_network_device_host", "managed_host_id"),
    )

    def __repr__(self):
        return (
            f"<NetworkDevice(id={self.id}, ip_address={self.ip_address}, "
            f"mac_address={self.mac_address}, hostname={self.hostname})>"
        )
