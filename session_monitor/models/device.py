"""
Device model for monitored devices
"""

from sqlalchemy import Column, String, Boolean, DateTime, BigInteger
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from session_monitor.database.connection import Base


class Device(Base):
    """Device model holding the live online state and accumulated duration"""

    __tablename__ = "devices"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    is_online = Column(Boolean, default=False, nullable=False, index=True)
    total_time_ms = Column(BigInteger, default=0, nullable=False)
    open_session_start = Column(DateTime(timezone=True))
    open_session_id = Column(String(255))
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    sessions = relationship(
        "DeviceSession",
        back_populates="device",
        cascade="all, delete-orphan",
        order_by="DeviceSession.position",
    )

    def __repr__(self):
        return f"<Device(id={self.id}, name={self.name}, online={self.is_online})>"
