"""Message composers turning cached telemetry into outbound records.

One composer exists per message kind. A composer reads every field through
the value cache (respecting TTLs), converts it, checks the kind's emission
predicate and returns at most one :class:`ComposedMessage`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Type

from . import units
from .cache import ValueCache
from .mapping import (
    DeviceMapping,
    ENGINE_STATUS_1_CONDITIONS,
    ENGINE_STATUS_2_CONDITIONS,
)
from .messages import (
    MESSAGE_SCHEMAS,
    ComposedMessage,
    FieldSpec,
    FieldType,
    MessageKind,
    MessageSchema,
    MissingFieldPolicy,
    NotAvailable,
)

LOGGER = logging.getLogger(__name__)

DC_TYPE_BATTERY = 0


@dataclass(frozen=True)
class ComposerOptions:
    """Per-deployment composition settings."""

    missing_fields: MissingFieldPolicy = MissingFieldPolicy.OMIT
    rpm_step: float = 10.0
    ripple_voltage_digits: int = 2
    ttl_seconds: Mapping[MessageKind, float] = field(default_factory=dict)
    # Notifications are only sent on state change, so by default a latched
    # alarm state never expires.
    alarm_ttl_seconds: float = math.inf

    def ttl_for(self, kind: MessageKind) -> float:
        return self.ttl_seconds.get(kind, MESSAGE_SCHEMAS[kind].default_ttl)


def build_status_bitmask(states: Sequence[Optional[bool]]) -> Optional[int]:
    """Pack boolean conditions into a bitmask, bit 0 first.

    ``None`` entries carry no data. When every entry is ``None`` the result
    is ``None`` so the caller can emit the field's "not available" value
    instead of an all-clear mask.
    """

    if all(state is None for state in states):
        return None
    mask = 0
    for bit, state in enumerate(states):
        if state:
            mask |= 1 << bit
    return mask


class _FieldReader:
    """Reads one source's fields from the cache through their TTLs."""

    def __init__(
        self,
        mapping: DeviceMapping,
        cache: ValueCache,
        default_ttl: float,
        alarm_ttl: float = math.inf,
    ) -> None:
        self._mapping = mapping
        self._cache = cache
        self._default_ttl = default_ttl
        self._alarm_ttl = alarm_ttl
        self._paths = mapping.paths()

    def _read(self, name: str, default_ttl: float) -> Optional[float]:
        path = self._paths.get(name)
        if path is None:
            return None
        ttl = self._mapping.ttl_overrides.get(name, default_ttl)
        return self._cache.read(path, ttl)

    def __call__(self, name: str) -> Optional[float]:
        return self._read(name, self._default_ttl)

    def flag(self, name: str) -> Optional[bool]:
        """Read an alarm condition through the alarm TTL."""

        value = self._read(name, self._alarm_ttl)
        if value is None:
            return None
        return value >= 0.5


class MessageComposer:
    """Base composer; subclasses convert fields and define the predicate.

    ``required_fields`` must all be present, and when ``any_of_fields`` is
    non-empty at least one of them must be present, for a message to be
    worth sending.
    """

    kind: MessageKind
    required_fields: Tuple[str, ...] = ()
    any_of_fields: Tuple[str, ...] = ()

    def __init__(self, options: Optional[ComposerOptions] = None) -> None:
        self.options = options or ComposerOptions()

    @property
    def schema(self) -> MessageSchema:
        return MESSAGE_SCHEMAS[self.kind]

    @property
    def interval_ms(self) -> int:
        return self.schema.interval_ms

    def compose(
        self, mapping: DeviceMapping, cache: ValueCache
    ) -> Optional[ComposedMessage]:
        read = _FieldReader(
            mapping,
            cache,
            self.options.ttl_for(self.kind),
            alarm_ttl=self.options.alarm_ttl_seconds,
        )
        values = self.convert(mapping, read)

        if not self.should_emit(values):
            return None

        fields: Dict[str, Any] = {}
        for spec in self.schema.fields:
            value = values.get(spec.key)
            if value is None:
                if self.options.missing_fields is MissingFieldPolicy.SENTINEL:
                    fields[spec.key] = NotAvailable(spec.width)
                continue
            fields[spec.key] = _fit(spec, value)

        return ComposedMessage(
            kind=self.kind, instance_id=mapping.instance_id, fields=fields
        )

    def should_emit(self, values: Mapping[str, Any]) -> bool:
        if any(values.get(name) is None for name in self.required_fields):
            return False
        if self.any_of_fields:
            return any(values.get(name) is not None for name in self.any_of_fields)
        return True

    def convert(
        self, mapping: DeviceMapping, read: _FieldReader
    ) -> Dict[str, Any]:
        raise NotImplementedError


def _fit(spec: FieldSpec, value: Any) -> Any:
    """Saturate numeric values to the field's representable range."""

    if spec.type is FieldType.NUMBER:
        clamped = units.clamp(value, spec.width)
        if isinstance(value, int):
            return int(clamped)
        return clamped
    if spec.type is FieldType.BITMASK:
        return value & ((1 << spec.width.bits) - 1)
    return value


def _convert(value: Optional[float], func, *args, **kwargs) -> Any:
    if value is None:
        return None
    return func(value, *args, **kwargs)


def _duration(seconds: Optional[float], spec: FieldSpec) -> Optional[units.Duration]:
    if seconds is None or seconds < 0:
        return None
    return units.duration(units.clamp(seconds, spec.width))


class BatteryStatusComposer(MessageComposer):
    """PGN 127508, sent when any of voltage, current or temperature is known."""

    kind = MessageKind.BATTERY_STATUS
    any_of_fields = ("voltage", "current", "temperature")

    def convert(self, mapping, read):
        return {
            "voltage": _convert(read("voltage"), units.voltage),
            "current": _convert(read("current"), units.current),
            "temperature": _convert(read("temperature"), units.temperature),
        }


class DcDetailedStatusComposer(MessageComposer):
    """PGN 127506, keyed on state of charge."""

    kind = MessageKind.DC_DETAILED_STATUS
    required_fields = ("stateOfCharge",)

    def convert(self, mapping, read):
        amp_hours = read("ampHours")
        return {
            "dcType": DC_TYPE_BATTERY,
            "stateOfCharge": _convert(read("stateOfCharge"), units.ratio_to_percent),
            "stateOfHealth": _convert(read("stateOfHealth"), units.ratio_to_percent),
            "timeRemaining": _duration(
                read("timeRemaining"), self.schema.field_spec("timeRemaining")
            ),
            "rippleVoltage": _convert(
                read("ripple"), units.round_to, self.options.ripple_voltage_digits
            ),
            "remainingCapacity": (
                None if amp_hours is None else int(units.round_to(amp_hours, 0))
            ),
        }


class EngineRapidComposer(MessageComposer):
    """PGN 127488, sent whenever engine speed is known."""

    kind = MessageKind.ENGINE_RAPID
    required_fields = ("speed",)

    def convert(self, mapping, read):
        revolutions = read("revolutions")
        speed = None
        if revolutions is not None and mapping.revolutions_unit is not None:
            speed = units.angular_rate_to_rpm(
                revolutions, mapping.revolutions_unit, step=self.options.rpm_step
            )
        return {
            "speed": speed,
            "boostPressure": _convert(read("boostPressure"), units.pressure_kpa),
            "tiltTrim": _convert(read("trimState"), units.ratio_to_percent),
        }


class EngineDynamicComposer(MessageComposer):
    """PGN 127489 with measured values and the two discrete status words."""

    kind = MessageKind.ENGINE_DYNAMIC
    any_of_fields = (
        "oilPressure",
        "oilTemperature",
        "temperature",
        "alternatorPotential",
        "fuelRate",
        "totalEngineHours",
        "coolantPressure",
        "fuelPressure",
        "discreteStatus1",
        "discreteStatus2",
        "engineLoad",
        "engineTorque",
    )

    def convert(self, mapping, read):
        fuel_rate = read("fuelRate")
        return {
            "oilPressure": _convert(read("oilPressure"), units.pressure_kpa),
            "oilTemperature": _convert(read("oilTemperature"), units.temperature),
            "temperature": _convert(read("temperature"), units.temperature),
            "alternatorPotential": _convert(read("alternatorVoltage"), units.voltage),
            # a stopped engine reports no fuel rate rather than zero
            "fuelRate": (
                units.fuel_rate(fuel_rate)
                if fuel_rate is not None and fuel_rate > 0
                else None
            ),
            "totalEngineHours": _duration(
                read("runTime"), self.schema.field_spec("totalEngineHours")
            ),
            "coolantPressure": _convert(read("coolantPressure"), units.pressure_kpa),
            "fuelPressure": _convert(read("fuelPressure"), units.pressure_kpa),
            "discreteStatus1": build_status_bitmask(
                [read.flag(name) for name in ENGINE_STATUS_1_CONDITIONS]
            ),
            "discreteStatus2": build_status_bitmask(
                [read.flag(name) for name in ENGINE_STATUS_2_CONDITIONS]
            ),
            "engineLoad": _convert(read("engineLoad"), units.ratio_to_percent),
            "engineTorque": _convert(read("engineTorque"), units.ratio_to_percent),
        }


class TemperatureComposer(MessageComposer):
    """PGN 130312 for a single configured temperature sensor."""

    kind = MessageKind.TEMPERATURE
    required_fields = ("actualTemperature",)

    def convert(self, mapping, read):
        return {
            "source": mapping.temperature_source,
            "actualTemperature": _convert(read("temperature"), units.temperature),
            "setTemperature": _convert(read("setTemperature"), units.temperature),
        }


COMPOSER_TYPES: Dict[MessageKind, Type[MessageComposer]] = {
    composer.kind: composer
    for composer in (
        BatteryStatusComposer,
        DcDetailedStatusComposer,
        EngineRapidComposer,
        EngineDynamicComposer,
        TemperatureComposer,
    )
}


def build_composers(
    options: Optional[ComposerOptions] = None,
    kinds: Optional[Iterable[MessageKind]] = None,
) -> Dict[MessageKind, MessageComposer]:
    """Instantiate one composer per message kind."""

    selected = tuple(kinds) if kinds is not None else tuple(COMPOSER_TYPES)
    composers = {kind: COMPOSER_TYPES[kind](options) for kind in selected}
    LOGGER.debug("Built composers: %s", ", ".join(k.value for k in composers))
    return composers
