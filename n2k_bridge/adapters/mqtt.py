"""MQTT adapter publishing converted messages through paho-mqtt."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from ..exceptions import BridgeError

LOGGER = logging.getLogger(__name__)

STATUS_ONLINE = b"online"
STATUS_OFFLINE = b"offline"


class MQTTConnectionError(BridgeError):
    """Raised when the broker cannot be reached or rejects a publish."""


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho runs its network loop on its own thread and reconnects by itself
    after a dropped connection; callbacks are marshalled back onto the
    asyncio loop. When ``status_topic`` is set the client keeps a retained
    ``online``/``offline`` marker there, with ``offline`` registered as the
    last will so consumers notice an unclean exit too.
    """

    def __init__(
        self,
        config: MQTTConfig,
        *,
        status_topic: Optional[str] = None,
        keepalive: int = 60,
    ) -> None:
        self.config = config
        self.status_topic = status_topic
        self.keepalive = keepalive

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._last_connect_rc: Optional[int] = None
        self._connected = False
        self._disconnect_handlers: List[Callable[[int], None]] = []

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the broker and wait for its CONNACK."""

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None

        client = mqtt.Client(client_id=self.config.client_id)
        client.enable_logger(LOGGER)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.status_topic:
            client.will_set(self.status_topic, STATUS_OFFLINE, qos=1, retain=True)
        client.reconnect_delay_set(
            min_delay=self.config.reconnect_min_seconds,
            max_delay=self.config.reconnect_max_seconds,
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s:%s as %s",
            self.config.broker_host,
            self.config.broker_port,
            self.config.client_id,
        )
        client.connect_async(self.config.broker_host, self.config.broker_port, self.keepalive)
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._abort()
            raise MQTTConnectionError(
                f"No answer from MQTT broker {self.config.broker_host} within {timeout:.0f}s"
            ) from exc

        if self._last_connect_rc != 0:
            self._abort()
            raise MQTTConnectionError(
                f"MQTT broker refused the connection (rc={self._last_connect_rc})"
            )

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Mark the bridge offline and close the connection."""

        client = self._client
        if client is None:
            return
        assert self._disconnect_event is not None

        if self.status_topic and self._connected:
            client.publish(self.status_topic, STATUS_OFFLINE, qos=1, retain=True)
        client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        finally:
            client.loop_stop()
            self._client = None
            self._connected = False

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> None:
        if self._client is None:
            raise MQTTConnectionError("MQTT client is not connected")

        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish to {topic} failed with rc={info.rc}")

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None:
        self._disconnect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    def _abort(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
            self._client = None

    # ------------------------------------------------------------------
    # paho callbacks; these run on the paho network thread
    # ------------------------------------------------------------------
    def _on_connect(self, client: mqtt.Client, userdata, flags, rc: int) -> None:
        self._last_connect_rc = rc
        self._connected = rc == 0
        if rc == 0:
            LOGGER.info("Connected to MQTT broker")
            if self.status_topic:
                client.publish(self.status_topic, STATUS_ONLINE, qos=1, retain=True)
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
        if self._connected_event is not None and self._loop is not None:
            self._loop.call_soon_threadsafe(self._connected_event.set)

    def _on_disconnect(self, client: mqtt.Client, userdata, rc: int) -> None:
        self._connected = False
        if rc == 0:
            LOGGER.info("Disconnected from MQTT broker")
        else:
            LOGGER.warning("Lost MQTT connection (rc=%s); paho will reconnect", rc)
        if self._loop is None:
            return
        if self._disconnect_event is not None:
            self._loop.call_soon_threadsafe(self._disconnect_event.set)
        for handler in self._disconnect_handlers:
            self._loop.call_soon_threadsafe(handler, rc)
