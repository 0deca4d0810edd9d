"""Render composed messages in one of the two supported output conventions.

named
    canboat-style JSON with human-readable field labels and display units,
    e.g. ``{"pgn": 127508, "Battery Instance": 0, "Voltage": 12.5}``.
    Durations are ISO 8601 strings, status words are lists of active
    condition names and "not available" fields are ``None``.

wire
    ``{"pgn", "prio", "dst", "fields"}`` with lower-camel field names and SI
    values (ratios for percentages, rad/s for speed). Durations are seconds
    and "not available" fields carry the all-ones raw value of their width.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Dict

from .messages import (
    BROADCAST_ADDRESS,
    ComposedMessage,
    FieldSpec,
    FieldType,
    NotAvailable,
)
from .units import Duration

Record = Dict[str, Any]


class OutputConvention(str, Enum):
    NAMED = "named"
    WIRE = "wire"


def _named_value(spec: FieldSpec, value: Any) -> Any:
    if isinstance(value, NotAvailable):
        return None
    if isinstance(value, Duration):
        return value.to_iso8601()
    if spec.type is FieldType.BITMASK:
        return [name for bit, name in enumerate(spec.bit_names) if value & (1 << bit)]
    if spec.type is FieldType.LOOKUP:
        return spec.lookup.get(value, value)
    return value


def _wire_value(spec: FieldSpec, value: Any) -> Any:
    if isinstance(value, NotAvailable):
        return value.raw
    if isinstance(value, Duration):
        return value.total_seconds
    if spec.type in (FieldType.BITMASK, FieldType.LOOKUP):
        return value
    if spec.si_scale != 1.0:
        return value * spec.si_scale
    return value


def encode_named(message: ComposedMessage) -> Record:
    schema = message.schema
    record: Record = {"pgn": schema.pgn, schema.instance_label: message.instance_id}
    for spec in schema.fields:
        if spec.key in message.fields:
            record[spec.label] = _named_value(spec, message.fields[spec.key])
    return record


def encode_wire(message: ComposedMessage) -> Record:
    schema = message.schema
    fields: Record = {schema.instance_key: message.instance_id}
    for spec in schema.fields:
        if spec.key in message.fields:
            fields[spec.key] = _wire_value(spec, message.fields[spec.key])
    return {
        "pgn": schema.pgn,
        "prio": schema.priority,
        "dst": BROADCAST_ADDRESS,
        "fields": fields,
    }


ENCODERS: Dict[OutputConvention, Callable[[ComposedMessage], Record]] = {
    OutputConvention.NAMED: encode_named,
    OutputConvention.WIRE: encode_wire,
}


def get_encoder(convention: OutputConvention) -> Callable[[ComposedMessage], Record]:
    return ENCODERS[OutputConvention(convention)]
