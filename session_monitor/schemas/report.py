"""
Usage report Pydantic schemas
"""

from pydantic import BaseModel, Field
from typing import Dict, List
from datetime import date


class DeviceDayUsage(BaseModel):
    """Duration attributed to one device on one calendar day"""
    display_name: str
    duration_ms: int = 0
    still_ongoing: bool = False


class DailyBucket(BaseModel):
    """Usage for one calendar day"""
    date: date
    total_ms: int = 0
    per_device: Dict[str, DeviceDayUsage] = Field(default_factory=dict)


class ReportSummary(BaseModel):
    """Totals across every bucket of a report"""
    day_count: int = 0
    total_ms: int = 0
    device_count: int = 0


class DailyReport(BaseModel):
    """Calendar-day buckets, newest first, with their summary"""
    buckets: List[DailyBucket] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)


class UsageOverview(BaseModel):
    """Live headline numbers"""
    online_count: int = 0
    today_ms: int = 0
    last_24h_ms: int = 0
    label: str = Field("today", description="Which total to headline: today or last_24h")
