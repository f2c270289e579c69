"""
Event collector for the Device Session Monitor
Serializes transport deliveries and admin commands in front of the reconstructor
"""

import asyncio
from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, Optional, Tuple

import structlog

from session_monitor.collectors.connection_supervisor import ConnectionSupervisor
from session_monitor.collectors.mqtt_transport import MqttTransport
from session_monitor.core.config import Settings
from session_monitor.core.exceptions import MalformedPayload, PersistenceError
from session_monitor.engine.normalizer import RawPayload, normalize
from session_monitor.engine.reconstructor import Outcome, SessionReconstructor
from session_monitor.engine.registry import DEFAULT_EVENT_LIMIT, DeviceRegistry
from session_monitor.schemas.connection import ConnectionNotice
from session_monitor.schemas.session import LifecycleEvent
from session_monitor.storage.factory import build_snapshot_store

logger = structlog.get_logger(__name__)


class _Delivery:
    """Raw payload received from the transport"""

    __slots__ = ("channel", "payload", "received_at")

    def __init__(self, channel: str, payload: RawPayload, received_at: datetime):
        self.channel = channel
        self.payload = payload
        self.received_at = received_at


class _Command:
    """Registry mutation requested outside the transport, with its result future"""

    __slots__ = ("action", "future")

    def __init__(self, action: Callable[[], Any], future: asyncio.Future):
        self.action = action
        self.future = future


_STOP = object()


class EventCollector:
    """Single writer for the device registry.

    Every mutation (transport delivery, injected event, device deletion) goes
    through one queue drained by one task, and is applied synchronously on
    the event loop. Readers on the loop therefore never see a half-applied
    event. Snapshots for persistence are taken between events and written
    off-thread, one write at a time.
    """

    def __init__(
        self,
        store=None,
        tz: Optional[tzinfo] = None,
        event_limit: int = DEFAULT_EVENT_LIMIT,
        save_interval: float = 60.0,
    ):
        self.store = store
        self.tz = tz
        self.event_limit = event_limit
        self.save_interval = save_interval
        self.registry = DeviceRegistry(event_limit=event_limit)
        self.reconstructor = SessionReconstructor(self.registry, tz=tz)
        self.supervisor: Optional[ConnectionSupervisor] = None
        self.running = False

        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._saver: Optional[asyncio.Task] = None
        self._flush_task: Optional[asyncio.Task] = None
        self._dirty = False

    # Lifecycle

    def load(self):
        """Restore the registry from the store; any failure leaves it empty"""
        if self.store is None:
            return
        try:
            snapshot = self.store.load()
        except PersistenceError as e:
            logger.error("Failed to load snapshot, starting empty", error=str(e))
            snapshot = None

        if snapshot is None:
            self._replace_registry(DeviceRegistry(event_limit=self.event_limit))
        else:
            self._replace_registry(DeviceRegistry.from_snapshot(snapshot, event_limit=self.event_limit))

    async def start(self):
        """Load stored state and start the consumer"""
        self.load()
        self._queue = asyncio.Queue()
        self.running = True
        self._worker = asyncio.create_task(self._consume_loop())
        if self.store is not None and self.save_interval > 0:
            self._saver = asyncio.create_task(self._periodic_save_loop())
        logger.info("Event collector started", devices=len(self.registry))

    async def stop(self):
        """Disconnect, drain the queue and write a final snapshot"""
        if not self.running:
            return
        self.running = False
        if self.supervisor is not None:
            self.supervisor.disconnect()

        self._queue.put_nowait(_STOP)
        await self._worker
        if self._saver is not None:
            self._saver.cancel()
            try:
                await self._saver
            except asyncio.CancelledError:
                pass

        if self._flush_task is not None:
            await self._flush_task
        if self.store is not None:
            await self._write(self.registry.to_snapshot())
        logger.info("Event collector stopped")

    # Writer entry points

    def submit(self, channel: str, payload: RawPayload):
        """Queue a raw transport delivery; must be called on the loop thread"""
        if self._queue is None:
            raise RuntimeError("collector not started")
        self._queue.put_nowait(_Delivery(channel, payload, datetime.now(timezone.utc)))

    async def inject(self, payload: RawPayload) -> Tuple[LifecycleEvent, Outcome]:
        """Normalize and apply a payload as if the transport had delivered it.

        Raises :class:`MalformedPayload` without touching any state.
        """
        event = normalize(payload)
        outcome = await self._call(lambda: self.reconstructor.apply(event))
        return event, outcome

    async def delete_device(self, device_id: str) -> bool:
        return await self._call(lambda: self.reconstructor.delete_device(device_id))

    # Consumer

    async def _call(self, action: Callable[[], Any]):
        if self._queue is None:
            raise RuntimeError("collector not started")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(_Command(action, future))
        return await future

    async def _consume_loop(self):
        while True:
            item = await self._queue.get()
            try:
                if item is _STOP:
                    return
                self._handle(item)
            except Exception as e:
                logger.exception("Failed to apply event", item=type(item).__name__, error=str(e))
                if isinstance(item, _Command) and not item.future.done():
                    item.future.set_exception(e)
            finally:
                self._queue.task_done()

    def _handle(self, item):
        if isinstance(item, _Delivery):
            try:
                event = normalize(item.payload, received_at=item.received_at)
            except MalformedPayload as e:
                logger.warning("Dropping malformed payload", channel=item.channel, error=str(e))
                return
            outcome = self.reconstructor.apply(event)
            logger.debug(
                "Event applied",
                channel=item.channel,
                device_id=event.device_id,
                kind=event.kind.value,
                outcome=outcome.value,
            )
            self._schedule_save()
            return

        try:
            result = item.action()
        except Exception as e:
            if not item.future.done():
                item.future.set_exception(e)
            return
        if not item.future.done():
            item.future.set_result(result)
        self._schedule_save()

    # Persistence

    def _schedule_save(self):
        if self.store is None:
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush())

    async def _flush(self):
        while self._dirty:
            self._dirty = False
            # Taken on the loop thread between two applied events
            snapshot = self.registry.to_snapshot()
            await self._write(snapshot)

    async def _write(self, snapshot):
        try:
            await asyncio.to_thread(self.store.save, snapshot)
        except PersistenceError as e:
            # In-memory state stays authoritative
            logger.error("Failed to save snapshot", error=str(e))

    async def _periodic_save_loop(self):
        while self.running:
            await asyncio.sleep(self.save_interval)
            if len(self.registry) > 0:
                self._schedule_save()
                logger.debug("Periodic snapshot save scheduled")

    def _replace_registry(self, registry: DeviceRegistry):
        self.registry = registry
        self.reconstructor.registry = registry

    # Connection notices

    def on_connection_notice(self, notice: ConnectionNotice):
        log = logger.error if notice.exhausted else logger.info
        log(
            "Connection state changed",
            state=notice.state.value,
            attempt=notice.attempt,
            message=notice.message,
        )


def build_collector(settings: Settings) -> EventCollector:
    """Wire collector, MQTT transport and connection supervisor from settings"""
    collector = EventCollector(
        store=build_snapshot_store(settings),
        tz=settings.report_tz,
        event_limit=settings.trailing_event_limit,
        save_interval=settings.save_interval,
    )
    transport = MqttTransport(
        on_message=collector.submit,
        client_prefix=settings.mqtt_client_prefix,
        keepalive=settings.mqtt_keepalive,
    )
    supervisor = ConnectionSupervisor(
        transport,
        connect_timeout=settings.connect_timeout,
        base_delay=settings.reconnect_base_delay,
        max_delay=settings.reconnect_max_delay,
        max_attempts=settings.max_reconnect_attempts,
    )
    supervisor.add_listener(collector.on_connection_notice)
    collector.supervisor = supervisor
    return collector
