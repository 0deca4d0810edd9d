"""Adapter modules for external integrations."""

from .mqtt import MQTTClient, MQTTConnectionError
from .signalk import PathPoller, PollGroup, SignalKClient
from .transport import MQTTTransport, StdoutTransport

__all__ = [
    "MQTTClient",
    "MQTTConnectionError",
    "MQTTTransport",
    "PathPoller",
    "PollGroup",
    "SignalKClient",
    "StdoutTransport",
]
