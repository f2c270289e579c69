"""
Transport connection endpoints
"""

from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
import structlog

from session_monitor.api.dependencies import get_collector
from session_monitor.collectors.connection_supervisor import ConnectionSupervisor
from session_monitor.collectors.event_collector import EventCollector
from session_monitor.core.config import settings
from session_monitor.schemas.connection import ConnectRequest, ConnectionStatusResponse

logger = structlog.get_logger(__name__)
router = APIRouter()


def get_supervisor(collector: EventCollector = Depends(get_collector)) -> ConnectionSupervisor:
    if collector.supervisor is None:
        raise HTTPException(status_code=503, detail="No transport configured")
    return collector.supervisor


def _status(supervisor: ConnectionSupervisor) -> ConnectionStatusResponse:
    return ConnectionStatusResponse(
        state=supervisor.state,
        endpoint=supervisor.endpoint,
        channel=supervisor.channel,
        attempt=supervisor.attempt,
        max_attempts=supervisor.max_attempts,
        auto_reconnect=supervisor.auto_reconnect,
        last_notice=supervisor.last_notice
    )

@router.get("/connection", response_model=ConnectionStatusResponse)
async def get_connection(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    """Get the current transport connection state"""
    return _status(supervisor)

@router.post("/connection/connect", response_model=ConnectionStatusResponse)
async def connect(
    request: Optional[ConnectRequest] = None,
    supervisor: ConnectionSupervisor = Depends(get_supervisor)
):
    """Connect (or reconnect) to the broker, resetting the retry budget"""

    request = request or ConnectRequest()
    endpoint = request.endpoint or supervisor.endpoint or settings.broker_url
    channel = request.channel or supervisor.channel or settings.topic
    if not endpoint:
        raise HTTPException(status_code=422, detail="No broker endpoint configured")

    logger.info("Manual connect requested", endpoint=endpoint, channel=channel)
    supervisor.connect(endpoint, channel)
    return _status(supervisor)

@router.post("/connection/disconnect", response_model=ConnectionStatusResponse)
async def disconnect(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    """Disconnect and stop reconnecting until the next connect"""

    logger.info("Manual disconnect requested")
    supervisor.disconnect()
    return _status(supervisor)

@router.post("/connection/wake", response_model=ConnectionStatusResponse)
async def wake(supervisor: ConnectionSupervisor = Depends(get_supervisor)):
    """Reconnect immediately if the connection was lost"""

    triggered = supervisor.wake()
    logger.info("Wake requested", reconnecting=triggered)
    return _status(supervisor)
