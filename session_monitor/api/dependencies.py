"""
Shared FastAPI dependencies
"""

from fastapi import HTTPException, Request

from session_monitor.collectors.event_collector import EventCollector


def get_collector(request: Request) -> EventCollector:
    """Return the running event collector attached at startup"""
    collector = getattr(request.app.state, "collector", None)
    if collector is None or not collector.running:
        raise HTTPException(status_code=503, detail="Event collector not running")
    return collector
