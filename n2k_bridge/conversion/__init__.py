"""Conversion core: value cache, rate limiter, units and message composers."""

from .cache import ABSENT, Present, ValueCache, to_alarm_sample, to_sample
from .composers import (
    ComposerOptions,
    MessageComposer,
    build_composers,
    build_status_bitmask,
)
from .encoding import OutputConvention, encode_named, encode_wire, get_encoder
from .engine import ConversionEngine, EngineStats, TriggerMode
from .mapping import DeviceKind, DeviceMapping, DeviceMappingTable
from .messages import (
    MESSAGE_SCHEMAS,
    ComposedMessage,
    MessageKind,
    MissingFieldPolicy,
    NotAvailable,
)
from .rate_limiter import RateLimiter
from .scheduler import Scheduler
from .units import AngularUnit, Duration, FieldWidth

__all__ = [
    "ABSENT",
    "AngularUnit",
    "ComposedMessage",
    "ComposerOptions",
    "ConversionEngine",
    "DeviceKind",
    "DeviceMapping",
    "DeviceMappingTable",
    "Duration",
    "EngineStats",
    "FieldWidth",
    "MESSAGE_SCHEMAS",
    "MessageComposer",
    "MessageKind",
    "MissingFieldPolicy",
    "NotAvailable",
    "OutputConvention",
    "Present",
    "RateLimiter",
    "Scheduler",
    "TriggerMode",
    "ValueCache",
    "build_composers",
    "build_status_bitmask",
    "encode_named",
    "encode_wire",
    "get_encoder",
    "to_alarm_sample",
    "to_sample",
]
