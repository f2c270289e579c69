"""
Session reconstructor: applies lifecycle events to the device registry
"""

from datetime import datetime, tzinfo
from enum import Enum
from typing import Optional

import structlog

from session_monitor.engine.calendar import start_of_day_for
from session_monitor.engine.registry import DeviceRegistry
from session_monitor.schemas.session import (
    ClosedSession,
    DeviceState,
    DeviceStatus,
    EventKind,
    LifecycleEvent,
    OpenSession,
    duration_ms,
)

logger = structlog.get_logger(__name__)


class Outcome(str, Enum):
    """Which transition an applied event took"""
    OPENED = "opened"
    REOPENED = "reopened"
    CLOSED = "closed"
    ESTIMATED = "estimated"
    DUPLICATE_END = "duplicate_end"
    IGNORED = "ignored"


class SessionReconstructor:
    """Per-device start/end state machine over a :class:`DeviceRegistry`.

    Events must be applied one at a time by a single writer; the recovery
    path reads the device's closed-session list and must not interleave with
    another mutation of the same device.
    """

    def __init__(self, registry: DeviceRegistry, tz: Optional[tzinfo] = None):
        self.registry = registry
        self.tz = tz

    def apply(self, event: LifecycleEvent) -> Outcome:
        """Apply one normalized event and record it in the trailing log"""
        device = self.registry.ensure(event.device_id, event.display_name, event.received_at)

        if event.kind == EventKind.START:
            outcome = self._start(device, event)
        elif event.kind == EventKind.END:
            outcome = self._end(device, event)
        else:
            logger.info(
                "Unrecognised event kind, no state change",
                device_id=device.id,
                raw_kind=event.raw_kind,
            )
            outcome = Outcome.IGNORED

        self.registry.record_event(event)
        return outcome

    def delete_device(self, device_id: str) -> bool:
        """Remove a device and its trailing events"""
        removed = self.registry.remove(device_id)
        if removed:
            logger.info("Device deleted", device_id=device_id)
        else:
            logger.info("Delete requested for unknown device", device_id=device_id)
        return removed

    def _start(self, device: DeviceState, event: LifecycleEvent) -> Outcome:
        outcome = Outcome.OPENED
        if device.open_session is not None:
            # Last start wins: the unfinished session is not recorded anywhere
            logger.warning(
                "Start received with a session already open, discarding it",
                device_id=device.id,
                discarded_start=device.open_session.start_time.isoformat(),
                discarded_session_id=device.open_session.session_id,
            )
            outcome = Outcome.REOPENED

        device.open_session = OpenSession(start_time=event.timestamp, session_id=event.session_id)
        device.is_online = True
        logger.info("Session started", device_id=device.id, session_id=event.session_id)
        return outcome

    def _end(self, device: DeviceState, event: LifecycleEvent) -> Outcome:
        status = device.status

        if status == DeviceStatus.ONLINE_WITH_SESSION:
            opened = device.open_session
            session = ClosedSession(
                start_time=opened.start_time,
                end_time=event.timestamp,
                duration_ms=max(0, duration_ms(opened.start_time, event.timestamp)),
                session_id=opened.session_id if opened.session_id is not None else event.session_id,
            )
            self._close(device, session)
            logger.info(
                "Session closed",
                device_id=device.id,
                duration_ms=session.duration_ms,
                duration=format_duration(session.duration_ms),
            )
            return Outcome.CLOSED

        if status == DeviceStatus.ONLINE_NO_SESSION:
            start_time = self._estimate_start(device, event.timestamp)
            session = ClosedSession(
                start_time=start_time,
                end_time=event.timestamp,
                duration_ms=max(0, duration_ms(start_time, event.timestamp)),
                session_id=event.session_id,
                estimated=True,
            )
            self._close(device, session)
            logger.info(
                "Session closed with estimated start",
                device_id=device.id,
                estimated_start=start_time.isoformat(),
                duration_ms=session.duration_ms,
                duration=format_duration(session.duration_ms),
            )
            return Outcome.ESTIMATED

        logger.info("End received for offline device, treating as duplicate", device_id=device.id)
        return Outcome.DUPLICATE_END

    def _estimate_start(self, device: DeviceState, end_time: datetime) -> datetime:
        """Best guess for the start of a session whose start event was lost.

        The end of the most recent closed session bounds the start from below;
        without history the session gets zero duration. An estimate later than
        the end is clamped to midnight of the end's calendar day.
        """
        if device.closed_sessions:
            estimate = device.closed_sessions[-1].end_time
        else:
            estimate = end_time

        if estimate > end_time:
            estimate = start_of_day_for(end_time, self.tz)
        return estimate

    @staticmethod
    def _close(device: DeviceState, session: ClosedSession):
        device.closed_sessions.append(session)
        device.accumulated_ms += session.duration_ms
        device.open_session = None
        device.is_online = False


def format_duration(ms: int) -> str:
    """Render milliseconds as ``"<h>h <m>m"``"""
    hours, remainder = divmod(max(0, ms), 60 * 60 * 1000)
    return f"{hours}h {remainder // (60 * 1000)}m"
