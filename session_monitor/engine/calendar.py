"""
Calendar-day helpers shared by the reconstructor and the aggregator
"""

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional

DAY_MS = 24 * 60 * 60 * 1000


def local_date(ts: datetime, tz: Optional[tzinfo] = None) -> date:
    """Calendar date of `ts` in `tz` (system local when None)"""
    return ts.astimezone(tz).date()


def start_of_day(day: date, tz: Optional[tzinfo] = None) -> datetime:
    """Aware datetime of midnight starting `day` in `tz`"""
    if tz is None:
        # Resolve the local offset in effect at that midnight
        return datetime.combine(day, time()).astimezone()
    return datetime.combine(day, time(), tzinfo=tz)


def start_of_day_for(ts: datetime, tz: Optional[tzinfo] = None) -> datetime:
    return start_of_day(local_date(ts, tz), tz)


def next_midnight(day: date, tz: Optional[tzinfo] = None) -> datetime:
    return start_of_day(day + timedelta(days=1), tz)
