"""
Relational snapshot store backed by SQLAlchemy
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from session_monitor.core.exceptions import PersistenceError
from session_monitor.models import Device, DeviceSession, EventLog
from session_monitor.schemas.session import (
    ClosedSession,
    DeviceState,
    EventKind,
    LifecycleEvent,
    OpenSession,
    Snapshot,
)

logger = structlog.get_logger(__name__)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class DatabaseSnapshotStore:
    """Stores the snapshot across the devices, device_sessions and event_logs tables.

    Each save replaces the stored state inside one transaction.
    """

    backend = "database"

    def __init__(self, session_factory):
        self.session_factory = session_factory

    def load(self) -> Optional[Snapshot]:
        db = self.session_factory()
        try:
            devices = db.query(Device).order_by(Device.created_at, Device.id).all()
            events = db.query(EventLog).order_by(EventLog.position).all()
            if not devices and not events:
                logger.info("No stored snapshot found in database")
                return None

            snapshot = Snapshot(
                saved_at=max(
                    (_as_utc(device.updated_at) for device in devices if device.updated_at is not None),
                    default=datetime.now(timezone.utc),
                ),
                devices=[self._device_state(device) for device in devices],
                trailing_events=[self._event(row) for row in events],
            )
        except SQLAlchemyError as e:
            raise PersistenceError(f"cannot read snapshot from database: {e}") from e
        except (ValidationError, ValueError) as e:
            db.rollback()
            self._discard(db)
            raise PersistenceError(f"corrupt snapshot rows discarded: {e}") from e
        finally:
            db.close()

        logger.info(
            "Snapshot loaded from database",
            devices=len(snapshot.devices),
            events=len(snapshot.trailing_events),
        )
        return snapshot

    def save(self, snapshot: Snapshot):
        db = self.session_factory()
        try:
            db.query(EventLog).delete()
            db.query(DeviceSession).delete()
            db.query(Device).delete()

            for state in snapshot.devices:
                device = Device(
                    id=state.id,
                    name=state.display_name,
                    is_online=state.is_online,
                    total_time_ms=state.accumulated_ms,
                    open_session_start=_as_utc(state.open_session.start_time) if state.open_session else None,
                    open_session_id=state.open_session.session_id if state.open_session else None,
                    created_at=_as_utc(state.created_at),
                    updated_at=_as_utc(snapshot.saved_at),
                )
                device.sessions = [
                    DeviceSession(
                        position=position,
                        session_id=session.session_id,
                        started_at=_as_utc(session.start_time),
                        ended_at=_as_utc(session.end_time),
                        duration_ms=session.duration_ms,
                        is_estimated=session.estimated,
                    )
                    for position, session in enumerate(state.closed_sessions)
                ]
                db.add(device)

            for position, event in enumerate(snapshot.trailing_events):
                db.add(EventLog(
                    position=position,
                    device_id=event.device_id,
                    event_type=event.kind.value,
                    raw_type=event.raw_kind,
                    session_id=event.session_id,
                    display_name=event.display_name,
                    timestamp=_as_utc(event.timestamp),
                    received_at=_as_utc(event.received_at),
                    raw_payload=event.attributes,
                ))

            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError(f"cannot write snapshot to database: {e}") from e
        finally:
            db.close()

        logger.debug("Snapshot saved to database", devices=len(snapshot.devices))

    @staticmethod
    def _device_state(device: Device) -> DeviceState:
        open_session = None
        if device.open_session_start is not None:
            open_session = OpenSession(
                start_time=_as_utc(device.open_session_start),
                session_id=device.open_session_id,
            )
        return DeviceState(
            id=device.id,
            display_name=device.name,
            is_online=device.is_online,
            open_session=open_session,
            closed_sessions=[
                ClosedSession(
                    start_time=_as_utc(row.started_at),
                    end_time=_as_utc(row.ended_at),
                    duration_ms=row.duration_ms,
                    session_id=row.session_id,
                    estimated=row.is_estimated,
                )
                for row in device.sessions
            ],
            accumulated_ms=device.total_time_ms or 0,
            created_at=_as_utc(device.created_at),
        )

    @staticmethod
    def _event(row: EventLog) -> LifecycleEvent:
        return LifecycleEvent(
            device_id=row.device_id,
            kind=EventKind(row.event_type),
            timestamp=_as_utc(row.timestamp),
            received_at=_as_utc(row.received_at),
            session_id=row.session_id,
            display_name=row.display_name,
            raw_kind=row.raw_type,
            attributes=row.raw_payload or {},
        )

    @staticmethod
    def _discard(db):
        try:
            db.query(EventLog).delete()
            db.query(DeviceSession).delete()
            db.query(Device).delete()
            db.commit()
            logger.warning("Corrupt snapshot rows removed")
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to remove corrupt snapshot rows", error=str(e))
