"""
MQTT transport built on paho-mqtt
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt
import structlog

from session_monitor.core.exceptions import TransportError

logger = structlog.get_logger(__name__)

MessageSink = Callable[[str, bytes], None]

# scheme -> (paho transport, default port, tls)
SCHEMES: Dict[str, tuple] = {
    "mqtt": ("tcp", 1883, False),
    "tcp": ("tcp", 1883, False),
    "mqtts": ("tcp", 8883, True),
    "ssl": ("tcp", 8883, True),
    "ws": ("websockets", 80, False),
    "wss": ("websockets", 443, True),
}


def _reason_value(reason_code: Any) -> int:
    rc = getattr(reason_code, "value", reason_code)
    try:
        return int(rc)
    except (TypeError, ValueError):
        logger.warning("Unexpected MQTT reason code", reason_code=repr(reason_code))
        return -1


class MqttTransport:
    """Publish/subscribe transport for the connection supervisor.

    paho runs its network loop on its own thread; every callback is handed to
    the asyncio loop with ``call_soon_threadsafe`` so the supervisor and the
    message sink only ever run on the loop thread. Reconnection belongs to the
    supervisor: a failed or closed client is stopped and a fresh one is built
    for the next attempt. Callbacks from a client that is no longer current
    are dropped.
    """

    def __init__(
        self,
        on_message: MessageSink,
        client_prefix: str = "session-monitor",
        keepalive: int = 60,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._on_message_sink = on_message
        self.client_prefix = client_prefix
        self.keepalive = keepalive
        self._loop = loop
        self._listener = None
        self._client: Optional[mqtt.Client] = None

    def bind(self, listener):
        """Register the object receiving on_connected/on_error/on_closed"""
        self._listener = listener

    def connect(self, endpoint: str, channel: str):
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        if self._client is not None:
            self.disconnect()

        url = urlparse(endpoint)
        scheme = (url.scheme or "mqtt").lower()
        if scheme not in SCHEMES or not url.hostname:
            raise TransportError(f"unsupported broker endpoint: {endpoint}")
        transport, default_port, tls = SCHEMES[scheme]

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=f"{self.client_prefix}-{uuid.uuid4().hex[:8]}",
            protocol=mqtt.MQTTv311,
            transport=transport,
            clean_session=True,
        )
        if transport == "websockets":
            client.ws_set_options(path=url.path or "/mqtt")
        if tls:
            client.tls_set()
        if url.username:
            client.username_pw_set(url.username, password=url.password)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message

        self._client = client
        try:
            client.connect_async(url.hostname, url.port or default_port, keepalive=self.keepalive)
        except (ValueError, OSError) as e:
            self._client = None
            raise TransportError(f"failed to start connection to {endpoint}: {e}") from e

        logger.info("Connecting to MQTT broker", host=url.hostname, port=url.port or default_port, transport=transport)
        client.loop_start()

    def subscribe(self, channel: str):
        client = self._client
        if client is None:
            raise TransportError("not connected")
        result, _ = client.subscribe(channel, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise TransportError(f"subscribe to {channel} failed (rc={result})")

    def disconnect(self):
        """Close the current client without reporting the close upstream"""
        client, self._client = self._client, None
        if client is None:
            return
        client.disconnect()
        if self._loop is not None and not self._loop.is_closed():
            # Joining the network thread may block for a pending socket connect
            self._loop.run_in_executor(None, client.loop_stop)
        else:
            client.loop_stop()

    # paho network thread callbacks

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if client is not self._client:
            return
        rc = _reason_value(reason_code)
        if rc == 0:
            self._dispatch(self._listener.on_connected)
        else:
            client.loop_stop()
            self._dispatch(self._listener.on_error, TransportError(f"connection refused (rc={rc})"))

    def _on_connect_fail(self, client, userdata):
        if client is not self._client:
            return
        client.loop_stop()
        self._dispatch(self._listener.on_error, TransportError("unable to reach broker"))

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        if client is not self._client:
            return
        rc = _reason_value(reason_code)
        if rc != 0:
            logger.warning("Unexpected MQTT disconnect", rc=rc)
        client.loop_stop()
        self._dispatch(self._listener.on_closed)

    def _on_message(self, client, userdata, message):
        if client is not self._client:
            return
        self._dispatch(self._on_message_sink, message.topic, message.payload)

    def _dispatch(self, callback, *args):
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(callback, *args)
