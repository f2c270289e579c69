import unittest
import sys
import os
import json
import tempfile
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from session_monitor.collectors.connection_supervisor import ConnectionSupervisor
from session_monitor.collectors.event_collector import EventCollector, build_collector
from session_monitor.collectors.mqtt_transport import MqttTransport
from session_monitor.core.config import Settings
from session_monitor.core.exceptions import MalformedPayload, PersistenceError
from session_monitor.engine.reconstructor import Outcome
from session_monitor.engine.registry import DeviceRegistry
from session_monitor.schemas.session import DeviceStatus
from session_monitor.storage.file_store import FileSnapshotStore

T = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def payload(device_id, event, at):
    return json.dumps({"deviceId": device_id, "event": event, "timestamp": at.isoformat()}).encode("utf-8")


class TestEventCollector(unittest.IsolatedAsyncioTestCase):
    """Test cases for the single-writer event collector"""

    async def asyncSetUp(self):
        self.store = MagicMock()
        self.store.load.return_value = None
        self.collector = EventCollector(store=self.store, tz=timezone.utc, save_interval=0)
        await self.collector.start()

    async def asyncTearDown(self):
        await self.collector.stop()

    async def drain(self):
        await self.collector._queue.join()
        if self.collector._flush_task is not None:
            await self.collector._flush_task

    async def test_deliveries_are_applied_in_order(self):
        self.collector.submit("game", payload("console-1", "game_start", T))
        self.collector.submit("game", payload("console-1", "game_end", T + timedelta(minutes=30)))
        await self.drain()

        device = self.collector.registry.get("console-1")
        self.assertEqual(device.status, DeviceStatus.OFFLINE)
        self.assertEqual(device.accumulated_ms, 30 * 60 * 1000)
        self.assertEqual(len(self.collector.registry.events()), 2)

    async def test_malformed_delivery_is_dropped(self):
        self.collector.submit("game", b"not json")
        self.collector.submit("game", payload("console-1", "game_start", T))
        await self.drain()

        self.assertEqual(len(self.collector.registry), 1)
        self.assertEqual(len(self.collector.registry.events()), 1)

    async def test_inject_returns_outcome(self):
        event, outcome = await self.collector.inject(payload("console-1", "game_start", T))

        self.assertEqual(outcome, Outcome.OPENED)
        self.assertEqual(event.device_id, "console-1")
        self.assertIn("console-1", self.collector.registry)

    async def test_inject_malformed_leaves_state_untouched(self):
        with self.assertRaises(MalformedPayload):
            await self.collector.inject(b"[]")
        self.assertEqual(len(self.collector.registry), 0)
        self.assertEqual(self.collector.registry.events(), [])

    async def test_delete_device(self):
        await self.collector.inject(payload("console-1", "game_start", T))

        self.assertTrue(await self.collector.delete_device("console-1"))
        self.assertFalse(await self.collector.delete_device("console-1"))
        self.assertEqual(self.collector.registry.events(), [])

    async def test_failed_event_does_not_stop_the_writer(self):
        with patch.object(self.collector.reconstructor, "apply", side_effect=OverflowError("date value out of range")):
            self.collector.submit("game", payload("console-1", "game_end", T))
            await self.collector._queue.join()
            with self.assertRaises(OverflowError):
                await self.collector.inject(payload("console-1", "game_start", T))

        self.assertFalse(self.collector._worker.done())
        self.collector.submit("game", payload("other", "game_start", T))
        await self.drain()
        self.assertIn("other", self.collector.registry)

    async def test_end_with_unplaceable_timestamp_is_applied_at_arrival(self):
        self.collector.submit("game", payload("console-1", "game_start", T))
        await self.drain()
        self.collector.registry.get("console-1").open_session = None

        self.collector.submit("game", json.dumps({
            "deviceId": "console-1", "event": "game_end", "timestamp": "0001-01-01T02:30:00+03:00"
        }).encode("utf-8"))
        self.collector.submit("game", payload("other", "game_start", T))
        await self.drain()

        device = self.collector.registry.get("console-1")
        self.assertTrue(device.closed_sessions[-1].estimated)
        self.assertIn("other", self.collector.registry)

    async def test_changes_are_saved(self):
        await self.collector.inject(payload("console-1", "game_start", T))
        await self.drain()

        self.store.save.assert_called()
        snapshot = self.store.save.call_args.args[0]
        self.assertEqual([d.id for d in snapshot.devices], ["console-1"])

    async def test_save_failure_keeps_memory_state(self):
        self.store.save.side_effect = PersistenceError("disk full")
        await self.collector.inject(payload("console-1", "game_start", T))
        await self.drain()

        self.assertIn("console-1", self.collector.registry)


class TestEventCollectorLifecycle(unittest.IsolatedAsyncioTestCase):
    """Test cases for load and shutdown"""

    async def test_load_failure_starts_empty(self):
        store = MagicMock()
        store.load.side_effect = PersistenceError("corrupt")
        collector = EventCollector(store=store, save_interval=0)

        await collector.start()
        self.assertEqual(len(collector.registry), 0)
        await collector.stop()

    async def test_restart_restores_devices_without_open_sessions(self):
        registry_store = {}
        store = MagicMock()
        store.load.side_effect = lambda: registry_store.get("snapshot")
        store.save.side_effect = lambda snapshot: registry_store.__setitem__("snapshot", snapshot)

        first = EventCollector(store=store, tz=timezone.utc, save_interval=0)
        await first.start()
        await first.inject(payload("console-1", "game_start", T))
        await first.stop()

        second = EventCollector(store=store, tz=timezone.utc, save_interval=0)
        await second.start()
        device = second.registry.get("console-1")
        self.assertEqual(device.status, DeviceStatus.ONLINE_NO_SESSION)
        self.assertIs(second.reconstructor.registry, second.registry)
        await second.stop()

    async def test_stop_disconnects_and_writes_final_snapshot(self):
        store = MagicMock()
        store.load.return_value = None
        collector = EventCollector(store=store, save_interval=0)
        collector.supervisor = MagicMock()

        await collector.start()
        await collector.stop()

        collector.supervisor.disconnect.assert_called_once()
        store.save.assert_called_once()
        self.assertFalse(collector.running)

    async def test_submit_before_start_raises(self):
        collector = EventCollector()
        with self.assertRaises(RuntimeError):
            collector.submit("game", b"{}")


class TestBuildCollector(unittest.TestCase):
    """Test cases for wiring from settings"""

    def test_wiring(self):
        with tempfile.TemporaryDirectory() as tmp:
            settings = Settings(
                storage_backend="file",
                snapshot_path=os.path.join(tmp, "snapshot.json"),
                report_timezone="UTC",
                max_reconnect_attempts=3,
                trailing_event_limit=10,
            )
            collector = build_collector(settings)

        self.assertIsInstance(collector.store, FileSnapshotStore)
        self.assertIsInstance(collector.supervisor, ConnectionSupervisor)
        self.assertIsInstance(collector.supervisor.transport, MqttTransport)
        self.assertEqual(collector.supervisor.max_attempts, 3)
        self.assertEqual(collector.registry.event_limit, 10)
        self.assertEqual(collector.tz.key, "UTC")

    def test_unknown_backend(self):
        with self.assertRaises(ValueError):
            build_collector(Settings(storage_backend="redis"))


if __name__ == '__main__':
    unittest.main()
