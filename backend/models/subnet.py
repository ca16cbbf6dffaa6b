from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text
from database import Base


class Subnet(Base):
    """SQLAlchemy model for registered subnets (CIDR lookup table)."""

    __tablename__ = "subnets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    network = Column(String(64), nullable=False, unique=True)  # e.g. "192.168.4.0/24"
    gateway = Column(String(45), nullable=True)
    dhcp_start = Column(String(45), nullable=True)
    dhcp_end = Column(String(45), nullable=True)
    vlan_id = Column(Integer, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Subnet(id={self.id}, network={self.network})>"
