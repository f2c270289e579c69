"""
Closed session model
"""

from sqlalchemy import Column, String, Integer, DateTime, BigInteger, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from session_monitor.database.connection import Base


class DeviceSession(Base):
    """Completed device session, ordered by completion"""

    __tablename__ = "device_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(255), ForeignKey("devices.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)  # completion order within the device
    session_id = Column(String(255))
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    ended_at = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(BigInteger, nullable=False, default=0)
    is_estimated = Column(Boolean, nullable=False, default=False)

    # Relationship
    device = relationship("Device", back_populates="sessions")

    def __repr__(self):
        return f"<DeviceSession(device_id={self.device_id}, duration_ms={self.duration_ms}, estimated={self.is_estimated})>"
