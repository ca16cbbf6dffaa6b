"""
Managed host model.

A ManagedHost is a machine the engine reaches over SSH. Discovery and
inventory operations run "on" a host; NetworkDevice rows observed there
reference it through ``managed_host_id``.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from database import Base


class HostStatus:
    UNKNOWN = "Unknown"
    ONLINE = "Online"
    WARNING = "Warning"
    CRITICAL = "Critical"
    OFFLINE = "Offline"


class ManagedHost(Base):
    """SQLAlchemy model for SSH-managed hosts."""

    __tablename__ = "managed_hosts"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    host_address = Column(String(255), nullable=False, unique=True)
    ssh_port = Column(Integer, nullable=True)  # falls back to credential / default port

    # Inline auth material (used when no credential is linked)
    username = Column(String(255), nullable=True)
    password = Column(String(255), nullable=True)
    private_key_path = Column(String(1024), nullable=True)
    credential_id = Column(
        Integer, ForeignKey("ssh_credentials.id", ondelete="SET NULL"), nullable=True
    )

    host_type = Column(String(50), nullable=True)  # baremetal/vm/container-host/etc
    description = Column(Text, nullable=True)

    # Mutated by discovery and health cycles
    status = Column(String(20), default=HostStatus.UNKNOWN)
    operating_system = Column(String(255), nullable=True)
    last_check_time = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (Index("idx_managed_host_status", "status"),)

    def __repr__(self):
        return f"<ManagedHost(id={self.id}, name={self.name}, address={self.host_address})>"
