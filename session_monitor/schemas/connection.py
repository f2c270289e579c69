"""
Connection supervisor Pydantic schemas
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class ConnectionState(str, Enum):
    """Transport connection states"""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECT_SCHEDULED = "reconnect_scheduled"


class ConnectionNotice(BaseModel):
    """State transition published by the connection supervisor"""
    state: ConnectionState
    attempt: int = 0
    delay_seconds: Optional[float] = Field(None, description="Delay before the scheduled retry")
    message: str = ""
    exhausted: bool = Field(False, description="Reconnect budget used up; manual connect required")
    at: datetime


class ConnectRequest(BaseModel):
    """Optional endpoint/channel override for a manual connect"""
    endpoint: Optional[str] = None
    channel: Optional[str] = None


class ConnectionStatusResponse(BaseModel):
    """Schema for connection status response"""
    state: ConnectionState
    endpoint: Optional[str] = None
    channel: Optional[str] = None
    attempt: int = 0
    max_attempts: int
    auto_reconnect: bool
    last_notice: Optional[ConnectionNotice] = None
