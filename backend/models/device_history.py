from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from database import Base


class DeviceEvent:
    FIRST_SEEN = "first_seen"
    IP_CHANGE = "ip_change"
    MAC_CHANGE = "mac_change"
    HOSTNAME_CHANGE = "hostname_change"
    STATUS_CHANGE = "status_change"
    UPDATED = "updated"


class DeviceHistory(Base):
    """Change log for registry devices, written by reconciliation."""

    __tablename__ = "device_history"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(
        Integer, ForeignKey("network_devices.id", ondelete="CASCADE"), nullable=False
    )
    event_type = Column(String(50), nullable=False)
    old_value = Column(String(255), nullable=True)
    new_value = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (Index("idx_device_history_device", "device_id"),)

    def __repr__(self):
        return f"<DeviceHistory(device_id={self.device_id}, event={self.event_type})>"
