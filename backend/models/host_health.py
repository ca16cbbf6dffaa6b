"""
Health cycle records.

Every health check of a managed host leaves one HostHealthCheck row, healthy
or not. Threshold breaches and lost connections raise HostAlert rows; at
most one unresolved alert of each type exists per host.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text, JSON, ForeignKey, Index
from database import Base


class AlertType:
    HIGH_CPU_USAGE = "HighCpuUsage"
    HIGH_MEMORY_USAGE = "HighMemoryUsage"
    HIGH_DISK_USAGE = "HighDiskUsage"
    CONNECTION_LOST = "ConnectionLost"


class AlertSeverity:
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class HostHealthCheck(Base):
    __tablename__ = "host_health_checks"

    id = Column(Integer, primary_key=True, index=True)
    managed_host_id = Column(
        Integer, ForeignKey("managed_hosts.id", ondelete="CASCADE"), nullable=False
    )
    check_time = Column(DateTime, default=datetime.utcnow, index=True)
    is_healthy = Column(Boolean, default=False)

    cpu_usage = Column(Float, nullable=True)
    memory_usage = Column(Float, nullable=True)
    disk_usage = Column(Float, nullable=True)
    load_average = Column(Float, nullable=True)
    running_processes = Column(Integer, nullable=True)

    error_message = Column(Text, nullable=True)
    raw_data = Column(JSON, nullable=True)  # category -> command output

    __table_args__ = (Index("idx_health_check_host_time", "managed_host_id", "check_time"),)

    def __repr__(self):
        return f"<HostHealthCheck(host={self.managed_host_id}, healthy={self.is_healthy})>"


class HostAlert(Base):
    __tablename__ = "host_alerts"

    id = Column(Integer, primary_key=True, index=True)
    managed_host_id = Column(
        Integer, ForeignKey("managed_hosts.id", ondelete="CASCADE"), nullable=False
    )
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Set by the first health check that no longer sees the condition
    is_resolved = Column(Boolean, default=False)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_host_alert_open", "managed_host_id", "alert_type", "is_resolved"),
    )

    def __repr__(self):
        return f"<HostAlert(host={self.managed_host_id}, type={self.alert_type}, resolved={self.is_resolved})>"
