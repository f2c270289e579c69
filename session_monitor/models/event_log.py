"""
Event log model for the trailing lifecycle events
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from session_monitor.database.connection import Base


class EventLog(Base):
    """Trailing lifecycle event, newest first by position"""

    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position = Column(Integer, nullable=False, index=True)
    device_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(20), nullable=False)
    raw_type = Column(String(100))
    session_id = Column(String(255))
    display_name = Column(String(255))
    timestamp = Column(DateTime(timezone=True), nullable=False)
    received_at = Column(DateTime(timezone=True), nullable=False)
    raw_payload = Column(JSON)

    def __repr__(self):
        return f"<EventLog(device_id={self.device_id}, type={self.event_type}, timestamp={self.timestamp})>"
