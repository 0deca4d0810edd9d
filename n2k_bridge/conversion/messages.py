"""Message kinds, field layouts and the composed record type.

Field layouts follow the canboat PGN database: every field has a lower-camel
wire name, a human-readable label, a fixed width and an SI scale used by the
wire convention.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .mapping import DeviceKind, ENGINE_STATUS_1_CONDITIONS, ENGINE_STATUS_2_CONDITIONS
from .units import FieldWidth

BROADCAST_ADDRESS = 255

# Wire scales for fields composed in display units.
PERCENT = 0.01
RPM = math.pi / 30


class MessageKind(str, Enum):
    """Supported message kinds, named after their PGN purpose."""

    BATTERY_STATUS = "batteryStatus"
    DC_DETAILED_STATUS = "dcDetailedStatus"
    ENGINE_RAPID = "engineParametersRapid"
    ENGINE_DYNAMIC = "engineParametersDynamic"
    TEMPERATURE = "temperatureExtendedRange"


class MissingFieldPolicy(str, Enum):
    """How a composer encodes a field whose value is absent or stale."""

    OMIT = "omit"
    SENTINEL = "sentinel"


class FieldType(str, Enum):
    NUMBER = "number"
    DURATION = "duration"
    BITMASK = "bitmask"
    LOOKUP = "lookup"


@dataclass(frozen=True)
class NotAvailable:
    """Explicit "data not available" marker for a fixed-width field."""

    width: FieldWidth

    @property
    def raw(self) -> int:
        return self.width.not_available


@dataclass(frozen=True)
class FieldSpec:
    key: str
    label: str
    width: FieldWidth
    type: FieldType = FieldType.NUMBER
    si_scale: float = 1.0
    bit_names: Tuple[str, ...] = ()
    lookup: Mapping[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageSchema:
    kind: MessageKind
    pgn: int
    device_kind: DeviceKind
    interval_ms: int
    priority: int
    default_ttl: float
    instance_key: str
    instance_label: str
    fields: Tuple[FieldSpec, ...]

    def field_spec(self, key: str) -> FieldSpec:
        for spec in self.fields:
            if spec.key == key:
                return spec
        raise KeyError(key)


@dataclass(frozen=True)
class ComposedMessage:
    """One outbound record; immutable once produced."""

    kind: MessageKind
    instance_id: int
    fields: Mapping[str, Any]

    @property
    def schema(self) -> MessageSchema:
        return MESSAGE_SCHEMAS[self.kind]

    @property
    def pgn(self) -> int:
        return self.schema.pgn


_U8 = FieldWidth(8)
_S8 = FieldWidth(8, signed=True)
_U16 = FieldWidth(16)

DC_TYPES: Dict[int, str] = {
    0: "Battery",
    1: "Alternator",
    2: "Converter",
    3: "Solar Cell",
    4: "Wind Generator",
}

TEMPERATURE_SOURCES: Dict[int, str] = {
    0: "Sea Temperature",
    1: "Outside Temperature",
    2: "Inside Temperature",
    3: "Engine Room Temperature",
    4: "Main Cabin Temperature",
    5: "Live Well Temperature",
    6: "Bait Well Temperature",
    7: "Refrigeration Temperature",
    8: "Heating System Temperature",
    9: "Dew Point Temperature",
    10: "Apparent Wind Chill Temperature",
    11: "Theoretical Wind Chill Temperature",
    12: "Heat Index Temperature",
    13: "Freezer Temperature",
    14: "Exhaust Gas Temperature",
    15: "Shaft Seal Temperature",
}


MESSAGE_SCHEMAS: Dict[MessageKind, MessageSchema] = {
    MessageKind.BATTERY_STATUS: MessageSchema(
        kind=MessageKind.BATTERY_STATUS,
        pgn=127508,
        device_kind=DeviceKind.BATTERY,
        interval_ms=1000,
        priority=6,
        default_ttl=60.0,
        instance_key="batteryInstance",
        instance_label="Battery Instance",
        fields=(
            FieldSpec("voltage", "Voltage", FieldWidth(16, 0.01)),
            FieldSpec("current", "Current", FieldWidth(16, 0.1, signed=True)),
            FieldSpec("temperature", "Temperature", FieldWidth(16, 0.01)),
        ),
    ),
    MessageKind.DC_DETAILED_STATUS: MessageSchema(
        kind=MessageKind.DC_DETAILED_STATUS,
        pgn=127506,
        device_kind=DeviceKind.BATTERY,
        interval_ms=1000,
        priority=6,
        default_ttl=60.0,
        instance_key="dcInstance",
        instance_label="DC Instance",
        fields=(
            FieldSpec("dcType", "DC Type", _U8, FieldType.LOOKUP, lookup=DC_TYPES),
            FieldSpec("stateOfCharge", "State of Charge", _U8, si_scale=PERCENT),
            FieldSpec("stateOfHealth", "State of Health", _U8, si_scale=PERCENT),
            FieldSpec(
                "timeRemaining", "Time Remaining", FieldWidth(16, 60), FieldType.DURATION
            ),
            FieldSpec("rippleVoltage", "Ripple Voltage", FieldWidth(16, 0.001)),
            FieldSpec("remainingCapacity", "Amp Hours", _U16, si_scale=3600.0),
        ),
    ),
    MessageKind.ENGINE_RAPID: MessageSchema(
        kind=MessageKind.ENGINE_RAPID,
        pgn=127488,
        device_kind=DeviceKind.ENGINE,
        interval_ms=250,
        priority=2,
        default_ttl=5.0,
        instance_key="engineInstance",
        instance_label="Engine Instance",
        fields=(
            FieldSpec("speed", "Speed", FieldWidth(16, 0.25), si_scale=RPM),
            FieldSpec("boostPressure", "Boost Pressure", FieldWidth(16, 0.1), si_scale=1000.0),
            FieldSpec("tiltTrim", "Tilt/Trim", _S8, si_scale=PERCENT),
        ),
    ),
    MessageKind.ENGINE_DYNAMIC: MessageSchema(
        kind=MessageKind.ENGINE_DYNAMIC,
        pgn=127489,
        device_kind=DeviceKind.ENGINE,
        interval_ms=1000,
        priority=2,
        default_ttl=10.0,
        instance_key="engineInstance",
        instance_label="Engine Instance",
        fields=(
            FieldSpec("oilPressure", "Oil pressure", FieldWidth(16, 0.1), si_scale=1000.0),
            FieldSpec("oilTemperature", "Oil temperature", FieldWidth(16, 0.1)),
            FieldSpec("temperature", "Temperature", FieldWidth(16, 0.01)),
            FieldSpec(
                "alternatorPotential",
                "Alternator Potential",
                FieldWidth(16, 0.01, signed=True),
            ),
            FieldSpec(
                "fuelRate",
                "Fuel Rate",
                FieldWidth(16, 0.1, signed=True),
                si_scale=1 / 3_600_000,
            ),
            FieldSpec(
                "totalEngineHours",
                "Total Engine hours",
                FieldWidth(32, 1),
                FieldType.DURATION,
            ),
            FieldSpec("coolantPressure", "Coolant Pressure", FieldWidth(16, 0.1), si_scale=1000.0),
            FieldSpec("fuelPressure", "Fuel Pressure", FieldWidth(16, 1.0), si_scale=1000.0),
            FieldSpec(
                "discreteStatus1",
                "Discrete Status 1",
                _U16,
                FieldType.BITMASK,
                bit_names=ENGINE_STATUS_1_CONDITIONS,
            ),
            FieldSpec(
                "discreteStatus2",
                "Discrete Status 2",
                _U16,
                FieldType.BITMASK,
                bit_names=ENGINE_STATUS_2_CONDITIONS,
            ),
            FieldSpec("engineLoad", "Engine Load", _S8, si_scale=PERCENT),
            FieldSpec("engineTorque", "Engine Torque", _S8, si_scale=PERCENT),
        ),
    ),
    MessageKind.TEMPERATURE: MessageSchema(
        kind=MessageKind.TEMPERATURE,
        pgn=130312,
        device_kind=DeviceKind.TEMPERATURE,
        interval_ms=2000,
        priority=5,
        default_ttl=30.0,
        instance_key="instance",
        instance_label="Instance",
        fields=(
            FieldSpec("source", "Source", _U8, FieldType.LOOKUP, lookup=TEMPERATURE_SOURCES),
            FieldSpec("actualTemperature", "Actual Temperature", FieldWidth(16, 0.01)),
            FieldSpec("setTemperature", "Set Temperature", FieldWidth(16, 0.01)),
        ),
    ),
}


def kinds_for(device_kind: DeviceKind) -> Tuple[MessageKind, ...]:
    return tuple(
        schema.kind
        for schema in MESSAGE_SCHEMAS.values()
        if schema.device_kind is device_kind
    )


def lookup_value(spec: FieldSpec, label: str) -> Optional[int]:
    """Reverse lookup of an enumeration label (case-insensitive)."""

    wanted = label.strip().lower()
    for code, name in spec.lookup.items():
        if name.lower() == wanted or name.lower().removesuffix(" temperature") == wanted:
            return code
    return None
