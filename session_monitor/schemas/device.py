"""
Device Pydantic schemas
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

from session_monitor.schemas.session import (
    ClosedSession,
    DeviceState,
    DeviceStatus,
    LifecycleEvent,
    OpenSession,
)


class DeviceResponse(BaseModel):
    """Schema for device response"""
    id: str = Field(..., description="Unique device identifier")
    display_name: str = Field(..., description="Device name")
    status: DeviceStatus
    is_online: bool
    open_session: Optional[OpenSession] = None
    current_session_ms: int = Field(0, description="Elapsed time of the open session")
    total_ms: int = Field(..., description="Closed sessions plus the open session so far")
    session_count: int = 0
    has_estimated_sessions: bool = False
    created_at: datetime
    sessions: Optional[List[ClosedSession]] = None

    @classmethod
    def from_state(cls, state: DeviceState, now: datetime, include_sessions: bool = False) -> "DeviceResponse":
        return cls(
            id=state.id,
            display_name=state.display_name,
            status=state.status,
            is_online=state.is_online,
            open_session=state.open_session,
            current_session_ms=state.current_session_ms(now),
            total_ms=state.total_ms(now),
            session_count=len(state.closed_sessions),
            has_estimated_sessions=state.has_estimated_sessions,
            created_at=state.created_at,
            sessions=list(state.closed_sessions) if include_sessions else None,
        )


class DeviceListResponse(BaseModel):
    """Schema for device list response"""
    devices: List[DeviceResponse]
    total: int
    online: int


class EventListResponse(BaseModel):
    """Schema for the trailing event log, newest first"""
    events: List[LifecycleEvent]
    total: int
    limit: int


class EventInjectResponse(BaseModel):
    """Result of applying an injected event"""
    event: LifecycleEvent
    outcome: str
    device: Optional[DeviceResponse] = None
