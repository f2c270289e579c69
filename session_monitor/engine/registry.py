"""
Device registry: live device state plus the trailing event log
"""

from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, Iterator, List, Optional

import structlog

from session_monitor.schemas.session import DeviceState, LifecycleEvent, Snapshot

logger = structlog.get_logger(__name__)

DEFAULT_EVENT_LIMIT = 100


class DeviceRegistry:
    """Owned store of device state.

    The registry has no behaviour beyond accessors; every mutation is made by
    :class:`~session_monitor.engine.reconstructor.SessionReconstructor`.
    """

    def __init__(self, event_limit: int = DEFAULT_EVENT_LIMIT):
        self._devices: Dict[str, DeviceState] = {}
        self._events: Deque[LifecycleEvent] = deque(maxlen=event_limit)

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._devices

    def __iter__(self) -> Iterator[DeviceState]:
        return iter(list(self._devices.values()))

    @property
    def event_limit(self) -> int:
        return self._events.maxlen

    def get(self, device_id: str) -> Optional[DeviceState]:
        return self._devices.get(device_id)

    def ensure(self, device_id: str, display_name: Optional[str], seen_at: datetime) -> DeviceState:
        """Return the device, creating it on first sight"""
        device = self._devices.get(device_id)
        if device is None:
            device = DeviceState(
                id=device_id,
                display_name=display_name or device_id,
                created_at=seen_at,
            )
            self._devices[device_id] = device
            logger.info("Device registered", device_id=device_id, display_name=device.display_name)
        return device

    def remove(self, device_id: str) -> bool:
        """Drop a device and every trailing event that references it"""
        if self._devices.pop(device_id, None) is None:
            return False
        kept = [event for event in self._events if event.device_id != device_id]
        self._events.clear()
        self._events.extend(kept)
        return True

    def record_event(self, event: LifecycleEvent):
        self._events.appendleft(event)

    def events(self, limit: Optional[int] = None) -> List[LifecycleEvent]:
        """Trailing events, newest first"""
        events = list(self._events)
        return events if limit is None else events[:limit]

    def copy_devices(self) -> List[DeviceState]:
        """Point-in-time deep copies, safe to read while the registry keeps changing"""
        return [device.model_copy(deep=True) for device in self._devices.values()]

    def to_snapshot(self, saved_at: Optional[datetime] = None) -> Snapshot:
        return Snapshot(
            saved_at=saved_at or datetime.now(timezone.utc),
            devices=self.copy_devices(),
            trailing_events=[event.model_copy(deep=True) for event in self._events],
        )

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, event_limit: int = DEFAULT_EVENT_LIMIT) -> "DeviceRegistry":
        """Rebuild a registry from a persisted snapshot.

        Open sessions are cleared while the online flag is kept, so a device
        that was mid-session when the snapshot was taken comes back as
        ONLINE_NO_SESSION and its next end event takes the recovery path.
        Accumulated durations are recomputed from the closed sessions.
        """
        registry = cls(event_limit=event_limit)
        reset_count = 0
        for stored in snapshot.devices:
            device = stored.model_copy(deep=True)
            if device.open_session is not None:
                device.open_session = None
                reset_count += 1
            cached = device.accumulated_ms
            if device.recompute_accumulated() != cached:
                logger.warning(
                    "Accumulated duration out of step with sessions, recomputed",
                    device_id=device.id,
                    stored_ms=cached,
                    recomputed_ms=device.accumulated_ms,
                )
            registry._devices[device.id] = device
        for event in snapshot.trailing_events[:event_limit]:
            registry._events.append(event.model_copy(deep=True))

        logger.info(
            "Registry restored from snapshot",
            devices=len(registry),
            events=len(registry._events),
            sessions_reset=reset_count,
        )
        return registry
