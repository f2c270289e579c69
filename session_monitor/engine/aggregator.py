"""
Daily aggregator: calendar-day usage buckets computed from device sessions
"""

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from session_monitor.engine.calendar import DAY_MS, local_date, next_midnight, start_of_day
from session_monitor.schemas.report import (
    DailyBucket,
    DailyReport,
    DeviceDayUsage,
    ReportSummary,
    UsageOverview,
)
from session_monitor.schemas.session import DeviceState, duration_ms

# (start, end, duration_ms, ongoing)
SessionSpan = Tuple[datetime, datetime, int, bool]


def aggregate(
    devices: Iterable[DeviceState],
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> DailyReport:
    """Bucket every session into calendar days.

    Pure function of its inputs. Open sessions are treated as ending at `now`.
    Sessions that end before `from_date` or start after `to_date` are skipped
    whole; sessions overlapping the range are split in full and only their
    in-range days kept.
    """
    now = now or datetime.now(timezone.utc)
    range_start = start_of_day(from_date, tz) if from_date else None
    range_end = start_of_day(to_date + timedelta(days=1), tz) if to_date else None

    buckets: Dict[date, DailyBucket] = {}
    for device in devices:
        for start, end, total, ongoing in _spans(device, now):
            if range_start is not None and end < range_start:
                continue
            if range_end is not None and start >= range_end:
                continue

            pieces = split_by_day(start, end, total, tz)
            first_day, last_day = pieces[0][0], pieces[-1][0]
            for day, piece_ms in pieces:
                # A session ending exactly at midnight leaves an empty piece
                if piece_ms == 0 and not ongoing and day != first_day:
                    continue
                if from_date and day < from_date:
                    continue
                if to_date and day > to_date:
                    continue
                _add(buckets, day, device, piece_ms, ongoing and day == last_day)

    ordered = sorted(buckets.values(), key=lambda bucket: bucket.date, reverse=True)
    seen: Set[str] = set()
    for bucket in ordered:
        seen.update(bucket.per_device)

    return DailyReport(
        buckets=ordered,
        summary=ReportSummary(
            day_count=len(ordered),
            total_ms=sum(bucket.total_ms for bucket in ordered),
            device_count=len(seen),
        ),
    )


def split_by_day(
    start: datetime, end: datetime, total_ms: int, tz: Optional[tzinfo] = None
) -> List[Tuple[date, int]]:
    """Split a session's duration across the calendar days it touches.

    The first day gets the time up to the following midnight, full days in
    between get 24 hours, the last day gets what remains. Every piece is
    clipped to the unallocated duration so the pieces sum to `total_ms`.
    """
    total_ms = max(0, total_ms)
    first_day = local_date(start, tz)
    last_day = local_date(end, tz)
    if last_day <= first_day:
        return [(first_day, total_ms)]

    pieces: List[Tuple[date, int]] = []
    remaining = total_ms
    day = first_day
    while day <= last_day:
        if day == first_day:
            piece = duration_ms(start, next_midnight(day, tz))
        elif day == last_day:
            piece = remaining
        else:
            piece = DAY_MS
        piece = max(0, min(piece, remaining))
        pieces.append((day, piece))
        remaining -= piece
        day += timedelta(days=1)
    return pieces


def overview(
    devices: Iterable[DeviceState],
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> UsageOverview:
    """Online count plus today's and the trailing 24 hours' usage"""
    now = now or datetime.now(timezone.utc)
    today = local_date(now, tz)
    cutoff = now - timedelta(hours=24)

    online_count = 0
    today_ms = 0
    last_24h_ms = 0
    for device in devices:
        if device.is_online:
            online_count += 1
        for start, end, total, _ in _spans(device, now):
            for day, piece_ms in split_by_day(start, end, total, tz):
                if day == today:
                    today_ms += piece_ms
            if start >= cutoff:
                last_24h_ms += total
            elif end >= cutoff:
                last_24h_ms += min(duration_ms(cutoff, end), total)

    label = "last_24h" if today_ms == 0 and last_24h_ms > 0 else "today"
    return UsageOverview(
        online_count=online_count,
        today_ms=today_ms,
        last_24h_ms=last_24h_ms,
        label=label,
    )


def _spans(device: DeviceState, now: datetime) -> Iterator[SessionSpan]:
    for session in device.closed_sessions:
        yield session.start_time, session.end_time, session.duration_ms, False
    if device.open_session is not None:
        start = device.open_session.start_time
        yield start, now, max(0, duration_ms(start, now)), True


def _add(buckets: Dict[date, DailyBucket], day: date, device: DeviceState, piece_ms: int, ongoing: bool):
    bucket = buckets.get(day)
    if bucket is None:
        bucket = buckets[day] = DailyBucket(date=day)
    bucket.total_ms += piece_ms

    usage = bucket.per_device.get(device.id)
    if usage is None:
        usage = bucket.per_device[device.id] = DeviceDayUsage(display_name=device.display_name)
    usage.duration_ms += piece_ms
    if ongoing:
        usage.still_ongoing = True
