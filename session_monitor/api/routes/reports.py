"""
Usage report endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import date, datetime, timedelta, timezone
import structlog

from session_monitor.api.dependencies import get_collector
from session_monitor.collectors.event_collector import EventCollector
from session_monitor.core.config import settings
from session_monitor.engine.aggregator import aggregate, overview
from session_monitor.engine.calendar import local_date
from session_monitor.schemas.report import DailyReport, UsageOverview

logger = structlog.get_logger(__name__)
router = APIRouter()

@router.get("/reports/daily", response_model=DailyReport)
async def get_daily_report(
    from_date: Optional[date] = Query(None, description="First calendar day, inclusive"),
    to_date: Optional[date] = Query(None, description="Last calendar day, inclusive"),
    collector: EventCollector = Depends(get_collector)
):
    """Get per-day usage buckets, newest day first"""

    now = datetime.now(timezone.utc)
    if to_date is None:
        to_date = local_date(now, collector.tz)
    if from_date is None:
        from_date = to_date - timedelta(days=settings.report_default_days - 1)
    if from_date > to_date:
        raise HTTPException(status_code=422, detail="from_date must not be after to_date")

    report = aggregate(collector.registry.copy_devices(), from_date, to_date, now=now, tz=collector.tz)
    logger.debug(
        "Daily report computed",
        from_date=str(from_date),
        to_date=str(to_date),
        days=report.summary.day_count
    )
    return report

@router.get("/reports/overview", response_model=UsageOverview)
async def get_overview(collector: EventCollector = Depends(get_collector)):
    """Get the online count with today's and the last 24 hours' usage"""

    return overview(collector.registry.copy_devices(), datetime.now(timezone.utc), tz=collector.tz)
