"""
Device Session Monitor - FastAPI Application
Main entry point for the API server
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import structlog
from contextlib import asynccontextmanager

from session_monitor.api.routes import connection, devices, events, health, reports
from session_monitor.collectors.event_collector import build_collector
from session_monitor.core.config import settings
from session_monitor.core.logging import configure_logging

# Configure structured logging
configure_logging(settings.log_level)

logger = structlog.get_logger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    logger.info("Starting Device Session Monitor API")
    # Startup
    collector = build_collector(settings)
    await collector.start()
    app.state.collector = collector

    if settings.auto_connect and settings.broker_url:
        collector.supervisor.connect(settings.broker_url, settings.topic)
    else:
        logger.info("Auto-connect disabled or no broker configured")

    yield
    # Shutdown
    logger.info("Shutting down Device Session Monitor API")
    await collector.stop()

# Create FastAPI application
app = FastAPI(
    title="Device Session Monitor API",
    description="Reconstructs device play sessions from lifecycle events and reports daily usage",
    version="2.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, prefix="/api/v1", tags=["health"])
app.include_router(devices.router, prefix="/api/v1", tags=["devices"])
app.include_router(events.router, prefix="/api/v1", tags=["events"])
app.include_router(reports.router, prefix="/api/v1", tags=["reports"])
app.include_router(connection.router, prefix="/api/v1", tags=["connection"])

@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Device Session Monitor API",
        "version": "2.0.0",
        "docs": "/docs",
        "health": "/api/v1/health"
    }

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler"""
    logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

if __name__ == "__main__":
    uvicorn.run(
        "session_monitor.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
