"""Main application entry-point for n2k-bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Optional, TextIO, Tuple

from .adapters import (
    MQTTClient,
    MQTTTransport,
    PathPoller,
    PollGroup,
    SignalKClient,
    StdoutTransport,
)
from .config import BridgeConfig, load_config
from .conversion import ConversionEngine, DeviceMapping, get_encoder
from .conversion.engine import MessageSink
from .conversion.messages import kinds_for
from .exceptions import DeviceMappingError
from .logging import configure_logging

LOGGER = logging.getLogger(__name__)


class BridgeApp:
    """Wires the Signal K input, conversion engine and transport together.

    Startup order: validate device mappings, connect the transport, start
    the engine timers, then subscribe to telemetry. Shutdown runs in
    reverse.
    """

    def __init__(
        self,
        config: Optional[BridgeConfig] = None,
        *,
        signalk_client: Optional[SignalKClient] = None,
        mqtt_client: Optional[MQTTClient] = None,
        stream: Optional[TextIO] = None,
    ) -> None:
        self._config = config or load_config()
        self._signalk = signalk_client
        self._mqtt_client = mqtt_client
        self._stream = stream
        self._poller: Optional[PathPoller] = None
        self._shutdown_event: Optional[asyncio.Event] = None
        self.engine: Optional[ConversionEngine] = None
        self.mqtt_disconnects = 0

    @property
    def config(self) -> BridgeConfig:
        return self._config

    async def run(self) -> None:
        """Run until :meth:`request_shutdown` is called or the task is cancelled."""

        self._shutdown_event = asyncio.Event()
        LOGGER.info("n2k-bridge starting with config: %s", self._config.path)

        await self.start_services()
        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            LOGGER.info("n2k-bridge received shutdown signal")
            raise
        finally:
            await self.stop_services()

    def request_shutdown(self) -> None:
        if self._shutdown_event is not None:
            self._shutdown_event.set()

    async def start_services(self) -> None:
        table = self._config.build_mapping_table(strict=False)
        if table.errors and len(table) == 0:
            raise DeviceMappingError("No usable device mappings; see the errors above")
        sink = await self._build_transport()

        self.engine = ConversionEngine(
            table,
            sink,
            options=self._config.composer_options(),
            trigger=self._config.conversion.trigger,
        )
        self.engine.start()

        if self._signalk is None:
            self._signalk = SignalKClient(self._config.signalk)

        if self._config.signalk.mode == "poll":
            self._poller = PathPoller(
                fetch_path=self._signalk.fetch_path,
                interval_seconds=self._config.signalk.poll_interval_seconds,
            )
            for mapping in table:
                group, callback = self._build_poll_group(mapping)
                self._poller.add_group(group, callback)
            self._poller.start()
            LOGGER.info("Polling %d paths from %s", len(table.all_paths()), self._config.signalk.url)
        else:
            await self._signalk.start(self.engine.handle_update, table.all_paths())
            LOGGER.info(
                "Subscribed to %d paths on %s", len(table.all_paths()), self._config.signalk.url
            )

    async def stop_services(self) -> None:
        if self._poller is not None:
            await self._poller.stop()
            self._poller = None

        if self._signalk is not None:
            await self._signalk.stop()

        if self.engine is not None:
            await self.engine.stop()

        if self._mqtt_client is not None:
            try:
                await self._mqtt_client.disconnect()
            except asyncio.TimeoutError:
                LOGGER.warning("Timed out waiting for MQTT disconnect")

    async def _build_transport(self) -> MessageSink:
        output = self._config.output
        encoder = get_encoder(output.convention)

        if output.transport == "stdout":
            return StdoutTransport(encoder, stream=self._stream)

        if self._mqtt_client is None:
            self._mqtt_client = MQTTClient(
                self._config.mqtt, status_topic=f"{output.topic_prefix}/status"
            )
        self._mqtt_client.register_disconnect_handler(self._on_mqtt_disconnect)
        await self._mqtt_client.connect()
        return MQTTTransport(
            self._mqtt_client,
            encoder,
            topic_prefix=output.topic_prefix,
            qos=self._config.mqtt.qos,
        )

    def _on_mqtt_disconnect(self, rc: int) -> None:
        if rc == 0:
            return
        self.mqtt_disconnects += 1
        LOGGER.warning(
            "Lost MQTT connection (rc=%s); messages are dropped until it reconnects", rc
        )

    def _build_poll_group(self, mapping: DeviceMapping) -> Tuple[PollGroup, Any]:
        assert self.engine is not None
        engine = self.engine
        paths = mapping.paths()
        keys: List[str] = list(paths.values())
        default_ttl = max(
            engine.options.ttl_for(kind) for kind in kinds_for(mapping.device_kind)
        )
        timeouts = tuple(
            mapping.ttl_overrides.get(name, default_ttl) for name in paths
        )
        group = PollGroup(
            name=f"{mapping.device_kind.value}:{mapping.source_id}",
            keys=tuple(keys),
            timeouts=timeouts,
        )

        def _on_values(values: Tuple[Any, ...]) -> None:
            engine.handle_values(mapping, keys, values)

        return group, _on_values

    @classmethod
    def start(cls, config: Optional[BridgeConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
            conversion_level=instance._config.logging.conversion_level,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("n2k-bridge received shutdown signal")
