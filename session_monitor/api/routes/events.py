"""
Lifecycle event endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from datetime import datetime, timezone
import structlog

from session_monitor.api.dependencies import get_collector
from session_monitor.collectors.event_collector import EventCollector
from session_monitor.core.exceptions import MalformedPayload
from session_monitor.schemas.device import DeviceResponse, EventInjectResponse, EventListResponse

logger = structlog.get_logger(__name__)
router = APIRouter()

@router.get("/events", response_model=EventListResponse)
async def get_events(
    limit: int = Query(100, ge=1, le=1000),
    collector: EventCollector = Depends(get_collector)
):
    """Get the trailing event log, newest first"""

    events = collector.registry.events(limit)
    return EventListResponse(events=events, total=len(events), limit=limit)

@router.post("/events", response_model=EventInjectResponse, status_code=202)
async def inject_event(request: Request, collector: EventCollector = Depends(get_collector)):
    """Apply a raw lifecycle payload as if it had arrived on the channel"""

    body = await request.body()
    try:
        event, outcome = await collector.inject(body)
    except MalformedPayload as e:
        logger.warning("Rejected injected payload", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))

    logger.info("Event injected", device_id=event.device_id, kind=event.kind.value, outcome=outcome.value)

    device = collector.registry.get(event.device_id)
    return EventInjectResponse(
        event=event,
        outcome=outcome.value,
        device=DeviceResponse.from_state(device, datetime.now(timezone.utc)) if device else None
    )
