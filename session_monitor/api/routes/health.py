"""
Health check endpoints
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import structlog

from session_monitor.core.config import settings
from session_monitor.database.connection import get_database

logger = structlog.get_logger(__name__)
router = APIRouter()

@router.get("/health")
async def health_check():
    """Basic health check"""
    return {
        "status": "healthy",
        "service": "Device Session Monitor API",
        "version": "2.0.0"
    }

@router.get("/health/detailed")
async def detailed_health_check(request: Request, db: Session = Depends(get_database)):
    """Detailed health check with collector, connection and storage state"""

    collector = getattr(request.app.state, "collector", None)
    collector_running = collector is not None and collector.running
    supervisor = collector.supervisor if collector is not None else None
    store = collector.store if collector is not None else None

    result = {
        "status": "healthy" if collector_running else "unhealthy",
        "collector": "running" if collector_running else "stopped",
        "connection": supervisor.state.value if supervisor is not None else "unavailable",
        "storage": store.backend if store is not None else "none",
        "devices": len(collector.registry) if collector is not None else 0,
        "service": "Device Session Monitor API",
        "version": "2.0.0"
    }

    if settings.storage_backend == "database":
        try:
            # Test database connection
            db.execute(text("SELECT 1"))
            result["database"] = "connected"
        except SQLAlchemyError as e:
            logger.error("Database health check failed", error=str(e))
            result["database"] = "disconnected"
            result["status"] = "unhealthy"

    return result
