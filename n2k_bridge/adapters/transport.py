"""Transports handing encoded records to their destination."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any, Callable, Dict, Optional, TextIO

from ..conversion import ComposedMessage
from .mqtt import MQTTClient

LOGGER = logging.getLogger(__name__)

Encoder = Callable[[ComposedMessage], Dict[str, Any]]


def serialize_record(record: Dict[str, Any]) -> str:
    return json.dumps(record, separators=(",", ":"))


class MQTTTransport:
    """Publishes each record as JSON to ``<topic_prefix>/<pgn>``."""

    def __init__(
        self,
        client: MQTTClient,
        encoder: Encoder,
        *,
        topic_prefix: str,
        qos: int = 0,
    ) -> None:
        self._client = client
        self._encoder = encoder
        self._topic_prefix = topic_prefix.rstrip("/")
        self._qos = qos

    def topic_for(self, message: ComposedMessage) -> str:
        return f"{self._topic_prefix}/{message.pgn}"

    def __call__(self, message: ComposedMessage) -> None:
        if not self._client.is_connected():
            LOGGER.debug("MQTT offline; dropping PGN %s", message.pgn)
            return
        payload = serialize_record(self._encoder(message)).encode("utf-8")
        self._client.publish(self.topic_for(message), payload, qos=self._qos)


class StdoutTransport:
    """Writes one JSON record per line."""

    def __init__(self, encoder: Encoder, *, stream: Optional[TextIO] = None) -> None:
        self._encoder = encoder
        self._stream = stream or sys.stdout

    def __call__(self, message: ComposedMessage) -> None:
        self._stream.write(serialize_record(self._encoder(message)) + "\n")
        self._stream.flush()
