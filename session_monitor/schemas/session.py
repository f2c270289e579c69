"""
Session and lifecycle event schemas
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime, timedelta
from enum import Enum


class EventKind(str, Enum):
    """Normalized lifecycle event kinds"""
    START = "start"
    END = "end"
    UNKNOWN = "unknown"


class DeviceStatus(str, Enum):
    """Per-device states of the session state machine"""
    OFFLINE = "offline"
    ONLINE_WITH_SESSION = "online_with_session"
    ONLINE_NO_SESSION = "online_no_session"


class LifecycleEvent(BaseModel):
    """Canonical event produced by the normalizer"""
    device_id: str = Field(..., description="Device identifier, 'unknown' when absent")
    kind: EventKind = Field(..., description="Normalized event kind")
    timestamp: datetime = Field(..., description="Event time, arrival time when not supplied")
    received_at: datetime = Field(..., description="Arrival time")
    session_id: Optional[str] = Field(None, description="Optional correlation token")
    display_name: Optional[str] = Field(None, description="Human label carried by the event")
    raw_kind: Optional[str] = Field(None, description="Event type as sent by the device")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Passthrough payload fields")


class OpenSession(BaseModel):
    """Session that has started but not yet ended"""
    start_time: datetime
    session_id: Optional[str] = None

    class Config:
        frozen = True


class ClosedSession(BaseModel):
    """Completed session; never mutated once recorded"""
    start_time: datetime
    end_time: datetime
    duration_ms: int = Field(..., ge=0)
    session_id: Optional[str] = None
    estimated: bool = False

    class Config:
        frozen = True


class DeviceState(BaseModel):
    """Live state of one monitored device"""
    id: str
    display_name: str
    is_online: bool = False
    open_session: Optional[OpenSession] = None
    closed_sessions: List[ClosedSession] = Field(default_factory=list)
    accumulated_ms: int = 0
    created_at: datetime

    @property
    def status(self) -> DeviceStatus:
        if self.open_session is not None:
            return DeviceStatus.ONLINE_WITH_SESSION
        if self.is_online:
            return DeviceStatus.ONLINE_NO_SESSION
        return DeviceStatus.OFFLINE

    @property
    def has_estimated_sessions(self) -> bool:
        return any(session.estimated for session in self.closed_sessions)

    def recompute_accumulated(self) -> int:
        """Rebuild the accumulated duration cache from the closed sessions"""
        self.accumulated_ms = sum(session.duration_ms for session in self.closed_sessions)
        return self.accumulated_ms

    def current_session_ms(self, now: datetime) -> int:
        if self.open_session is None:
            return 0
        return max(0, duration_ms(self.open_session.start_time, now))

    def total_ms(self, now: Optional[datetime] = None) -> int:
        """Accumulated duration, including the open session when `now` is given"""
        if now is None:
            return self.accumulated_ms
        return self.accumulated_ms + self.current_session_ms(now)


class Snapshot(BaseModel):
    """Persisted engine state"""
    version: str = "2.0"
    saved_at: datetime
    devices: List[DeviceState] = Field(default_factory=list)
    trailing_events: List[LifecycleEvent] = Field(default_factory=list)


def duration_ms(start: datetime, end: datetime) -> int:
    """Whole milliseconds between two timestamps (negative when end < start)"""
    return (end - start) // timedelta(milliseconds=1)
