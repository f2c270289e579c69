"""
Connection supervisor: transport lifecycle with exponential reconnect backoff
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import structlog

from session_monitor.core.exceptions import ReconnectExhausted, TransportError
from session_monitor.schemas.connection import ConnectionNotice, ConnectionState

logger = structlog.get_logger(__name__)

NoticeListener = Callable[[ConnectionNotice], None]
# (delay_seconds, callback) -> handle with cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]


class ConnectionSupervisor:
    """Owns connect, subscribe and reconnect for one transport.

    The transport reports back through :meth:`on_connected`,
    :meth:`on_error` and :meth:`on_closed`, always on the event loop thread.
    Retries and the connect timeout are cancellable timer handles; when a
    timer fires the supervisor re-checks its own state before acting, so a
    timer racing a manual disconnect does nothing.
    """

    def __init__(
        self,
        transport,
        connect_timeout: float = 4.0,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int = 5,
        scheduler: Optional[Scheduler] = None,
    ):
        self.transport = transport
        self.connect_timeout = connect_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_attempts = max_attempts
        self._scheduler = scheduler

        self.state = ConnectionState.DISCONNECTED
        self.endpoint: Optional[str] = None
        self.channel: Optional[str] = None
        self.attempt = 0
        self.auto_reconnect = False
        self.last_notice: Optional[ConnectionNotice] = None
        self._retry_handle = None
        self._timeout_handle = None
        self._listeners: List[NoticeListener] = []

        transport.bind(self)

    def add_listener(self, listener: NoticeListener):
        self._listeners.append(listener)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number `attempt` (1-based)"""
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    # Operator actions

    def connect(self, endpoint: str, channel: str) -> bool:
        """Manual connect; re-enables auto-reconnect and clears the retry budget"""
        self.endpoint = endpoint
        self.channel = channel
        self.auto_reconnect = True
        self.attempt = 0
        self._cancel_retry()
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._cancel_timeout()
            self.transport.disconnect()
        return self._open()

    def disconnect(self):
        """Manual disconnect; disables auto-reconnect until the next connect"""
        self.auto_reconnect = False
        self.attempt = 0
        self._cancel_retry()
        self._cancel_timeout()
        self.transport.disconnect()
        self._transition(ConnectionState.DISCONNECTED, "disconnected by operator")

    def wake(self) -> bool:
        """Attempt an immediate reconnect after focus/visibility is regained.

        Leaves the attempt counter and any scheduled retry untouched.
        """
        if not self.auto_reconnect or not self.endpoint:
            return False
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return False
        logger.info("Wake received while disconnected, reconnecting now", attempt=self.attempt)
        return self._open()

    # Transport callbacks

    def on_connected(self):
        if self.state != ConnectionState.CONNECTING:
            logger.debug("Ignoring connect report in state", state=self.state.value)
            return
        self._cancel_timeout()
        self._cancel_retry()
        self.attempt = 0
        self._transition(ConnectionState.CONNECTED, f"connected to {self.endpoint}")

        try:
            self.transport.subscribe(self.channel)
            logger.info("Subscribed to channel", channel=self.channel)
        except TransportError as e:
            logger.error("Failed to subscribe", channel=self.channel, error=str(e))

    def on_error(self, error: Exception):
        logger.warning("Transport error", error=str(error), state=self.state.value)
        self._handle_failure(error)

    def on_closed(self):
        if self.state == ConnectionState.DISCONNECTED and not self.auto_reconnect:
            return
        logger.info("Transport connection closed", state=self.state.value)
        self._handle_failure(TransportError("connection closed"))

    # Internals

    def _open(self) -> bool:
        if not self.endpoint:
            logger.info("No broker endpoint configured, skipping connect")
            return False

        self._transition(ConnectionState.CONNECTING, f"connecting to {self.endpoint}")
        self._timeout_handle = self._schedule(self.connect_timeout, self._on_connect_timeout)
        try:
            self.transport.connect(self.endpoint, self.channel)
        except TransportError as e:
            logger.warning("Connect attempt failed", endpoint=self.endpoint, error=str(e))
            self._handle_failure(e)
        return True

    def _handle_failure(self, error: Exception):
        self._cancel_timeout()
        if not self.auto_reconnect:
            self._transition(ConnectionState.DISCONNECTED, str(error))
            return
        if self._retry_handle is not None:
            # A retry is already pending; it fires as planned
            if self.state != ConnectionState.RECONNECT_SCHEDULED:
                self._transition(ConnectionState.RECONNECT_SCHEDULED, str(error))
            return
        self._schedule_reconnect(error)

    def _schedule_reconnect(self, error: Exception):
        if self.attempt >= self.max_attempts:
            exhausted = ReconnectExhausted(self.attempt)
            logger.error(
                "Reconnect attempts exhausted, manual connect required",
                attempts=self.attempt,
                last_error=str(error),
            )
            self.auto_reconnect = False
            self._transition(ConnectionState.DISCONNECTED, str(exhausted), exhausted=True)
            return

        self.attempt += 1
        delay = self.backoff_delay(self.attempt)
        self._retry_handle = self._schedule(delay, self._on_retry_timer)
        logger.info(
            "Reconnect scheduled",
            attempt=self.attempt,
            max_attempts=self.max_attempts,
            delay_ms=int(delay * 1000),
        )
        self._transition(
            ConnectionState.RECONNECT_SCHEDULED,
            f"reconnecting in {delay:g}s ({self.attempt}/{self.max_attempts})",
            delay=delay,
        )

    def _on_retry_timer(self):
        self._retry_handle = None
        if not self.auto_reconnect:
            return
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        logger.info("Reconnect attempt starting", attempt=self.attempt)
        self._open()

    def _on_connect_timeout(self):
        self._timeout_handle = None
        if self.state != ConnectionState.CONNECTING:
            return
        self.transport.disconnect()
        self._handle_failure(TransportError(f"connect timed out after {self.connect_timeout:g}s"))

    def _schedule(self, delay: float, callback: Callable[[], None]):
        if self._scheduler is not None:
            return self._scheduler(delay, callback)
        return asyncio.get_running_loop().call_later(delay, callback)

    def _cancel_retry(self):
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _cancel_timeout(self):
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None

    def _transition(
        self,
        state: ConnectionState,
        message: str,
        delay: Optional[float] = None,
        exhausted: bool = False,
    ):
        self.state = state
        notice = ConnectionNotice(
            state=state,
            attempt=self.attempt,
            delay_seconds=delay,
            message=message,
            exhausted=exhausted,
            at=datetime.now(timezone.utc),
        )
        self.last_notice = notice
        for listener in list(self._listeners):
            listener(notice)
