import unittest
import sys
import os
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from session_monitor.collectors.connection_supervisor import ConnectionSupervisor
from session_monitor.core.exceptions import TransportError
from session_monitor.schemas.connection import ConnectionState

ENDPOINT = "ws://broker.local:8083/mqtt"


class FakeTimer:
    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Records timers instead of running them"""

    def __init__(self):
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [timer for timer in self.timers if not timer.cancelled]

    def fire(self, timer):
        self.timers.remove(timer)
        timer.callback()


class TestConnectionSupervisor(unittest.TestCase):
    """Test cases for connect, backoff and exhaustion"""

    def setUp(self):
        self.transport = MagicMock()
        self.scheduler = FakeScheduler()
        self.notices = []
        self.supervisor = ConnectionSupervisor(self.transport, scheduler=self.scheduler)
        self.supervisor.add_listener(self.notices.append)

    def retry_timer(self):
        timers = [t for t in self.scheduler.pending() if t.callback == self.supervisor._on_retry_timer]
        self.assertEqual(len(timers), 1)
        return timers[0]

    def fail_current_attempt(self):
        self.supervisor.on_error(TransportError("refused"))
        self.supervisor.on_closed()

    def test_binds_itself_to_transport(self):
        self.transport.bind.assert_called_once_with(self.supervisor)

    def test_connect_success_subscribes(self):
        self.assertTrue(self.supervisor.connect(ENDPOINT, "game"))
        self.assertEqual(self.supervisor.state, ConnectionState.CONNECTING)
        self.transport.connect.assert_called_once_with(ENDPOINT, "game")

        self.supervisor.on_connected()

        self.assertEqual(self.supervisor.state, ConnectionState.CONNECTED)
        self.transport.subscribe.assert_called_once_with("game")
        self.assertEqual(self.scheduler.pending(), [])

    def test_empty_endpoint_is_not_attempted(self):
        self.assertFalse(self.supervisor.connect("", "game"))
        self.transport.connect.assert_not_called()
        self.assertEqual(self.supervisor.state, ConnectionState.DISCONNECTED)

    def test_backoff_sequence_then_exhaustion(self):
        self.supervisor.connect(ENDPOINT, "game")

        delays = []
        for _ in range(5):
            self.fail_current_attempt()
            self.assertEqual(self.supervisor.state, ConnectionState.RECONNECT_SCHEDULED)
            delays.append(self.supervisor.last_notice.delay_seconds)
            self.scheduler.fire(self.retry_timer())

        self.assertEqual(delays, [1, 2, 4, 8, 16])
        self.assertEqual(self.transport.connect.call_count, 6)

        # Sixth consecutive failure
        self.fail_current_attempt()

        self.assertEqual(self.supervisor.state, ConnectionState.DISCONNECTED)
        self.assertTrue(self.supervisor.last_notice.exhausted)
        self.assertFalse(any(t.callback == self.supervisor._on_retry_timer for t in self.scheduler.pending()))

    def test_error_and_close_schedule_one_retry(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        self.retry_timer()
        self.assertEqual(self.supervisor.attempt, 1)

    def test_backoff_is_capped(self):
        self.assertEqual(self.supervisor.backoff_delay(1), 1)
        self.assertEqual(self.supervisor.backoff_delay(5), 16)
        self.assertEqual(self.supervisor.backoff_delay(6), 30)
        self.assertEqual(self.supervisor.backoff_delay(10), 30)

    def test_success_resets_attempt_counter(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        self.scheduler.fire(self.retry_timer())
        self.fail_current_attempt()
        self.assertEqual(self.supervisor.attempt, 2)

        self.scheduler.fire(self.retry_timer())
        self.supervisor.on_connected()

        self.assertEqual(self.supervisor.attempt, 0)
        self.supervisor.on_closed()
        self.assertEqual(self.supervisor.last_notice.delay_seconds, 1)

    def test_manual_disconnect_cancels_retry(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        timer = self.retry_timer()

        self.supervisor.disconnect()

        self.assertTrue(timer.cancelled)
        self.assertEqual(self.supervisor.state, ConnectionState.DISCONNECTED)
        self.assertFalse(self.supervisor.auto_reconnect)

        # A close reported after the disconnect schedules nothing
        self.supervisor.on_closed()
        self.assertEqual(self.scheduler.pending(), [])

    def test_stale_retry_timer_after_disconnect_does_nothing(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        timer = self.retry_timer()
        self.supervisor.disconnect()

        timer.callback()

        self.assertEqual(self.transport.connect.call_count, 1)

    def test_connect_timeout_counts_as_failure(self):
        self.supervisor.connect(ENDPOINT, "game")
        timeout = [t for t in self.scheduler.pending() if t.callback == self.supervisor._on_connect_timeout][0]
        self.assertEqual(timeout.delay, 4.0)

        self.scheduler.fire(timeout)

        self.transport.disconnect.assert_called()
        self.assertEqual(self.supervisor.state, ConnectionState.RECONNECT_SCHEDULED)
        self.assertEqual(self.supervisor.attempt, 1)

    def test_connect_raising_transport_error_schedules_retry(self):
        self.transport.connect.side_effect = TransportError("unsupported scheme")
        self.supervisor.connect("ftp://nope", "game")
        self.assertEqual(self.supervisor.state, ConnectionState.RECONNECT_SCHEDULED)

    def test_manual_connect_resets_exhausted_budget(self):
        self.supervisor.max_attempts = 1
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        self.scheduler.fire(self.retry_timer())
        self.fail_current_attempt()
        self.assertTrue(self.supervisor.last_notice.exhausted)

        self.supervisor.connect(ENDPOINT, "game")

        self.assertEqual(self.supervisor.attempt, 0)
        self.assertEqual(self.supervisor.state, ConnectionState.CONNECTING)

    def test_wake_reconnects_immediately_without_touching_counter(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        timer = self.retry_timer()

        self.assertTrue(self.supervisor.wake())

        self.assertEqual(self.transport.connect.call_count, 2)
        self.assertEqual(self.supervisor.attempt, 1)
        self.assertFalse(timer.cancelled)

        self.supervisor.on_connected()
        self.assertTrue(timer.cancelled)

    def test_failed_wake_leaves_pending_retry_in_place(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.fail_current_attempt()
        timer = self.retry_timer()

        self.assertTrue(self.supervisor.wake())
        self.fail_current_attempt()

        self.assertEqual(self.supervisor.attempt, 1)
        self.assertEqual(self.supervisor.state, ConnectionState.RECONNECT_SCHEDULED)
        self.assertFalse(timer.cancelled)
        self.assertIs(self.retry_timer(), timer)

        self.scheduler.fire(timer)
        self.assertEqual(self.transport.connect.call_count, 3)
        self.assertEqual(self.supervisor.state, ConnectionState.CONNECTING)

    def test_wake_ignored_when_connected_or_disabled(self):
        self.assertFalse(self.supervisor.wake())

        self.supervisor.connect(ENDPOINT, "game")
        self.supervisor.on_connected()
        self.assertFalse(self.supervisor.wake())

        self.supervisor.disconnect()
        self.assertFalse(self.supervisor.wake())

    def test_subscribe_failure_is_not_fatal(self):
        self.transport.subscribe.side_effect = TransportError("not authorised")
        self.supervisor.connect(ENDPOINT, "game")
        self.supervisor.on_connected()
        self.assertEqual(self.supervisor.state, ConnectionState.CONNECTED)

    def test_notices_published_for_every_transition(self):
        self.supervisor.connect(ENDPOINT, "game")
        self.supervisor.on_connected()
        states = [notice.state for notice in self.notices]
        self.assertEqual(states, [ConnectionState.CONNECTING, ConnectionState.CONNECTED])


if __name__ == '__main__':
    unittest.main()
