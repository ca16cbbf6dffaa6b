from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime
from database import Base


class SshCredential(Base):
    """Stored SSH authentication material shared between hosts."""

    __tablename__ = "ssh_credentials"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False, unique=True)
    username = Column(String(255), nullable=False)
    password = Column(String(255), nullable=True)
    private_key_path = Column(String(1024), nullable=True)
    default_port = Column(Integer, nullable=True)
    is_default = Column(Boolean, default=False, index=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<SshCredential(id={self.id}, name={self.name}, username={self.username})>"
