"""Device mapping table linking Signal K sources to NMEA 2000 instances."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from ..exceptions import DeviceMappingError
from .units import AngularUnit

LOGGER = logging.getLogger(__name__)


class DeviceKind(str, Enum):
    BATTERY = "battery"
    ENGINE = "engine"
    TEMPERATURE = "temperature"


ENGINE_STATUS_1_CONDITIONS: Tuple[str, ...] = (
    "checkEngine",
    "overTemperature",
    "lowOilPressure",
    "lowOilLevel",
    "lowFuelPressure",
    "lowSystemVoltage",
    "lowCoolantLevel",
    "waterFlow",
    "waterInFuel",
    "chargeIndicator",
    "preheatIndicator",
    "highBoostPressure",
    "revLimitExceeded",
    "eGRSystem",
    "throttlePositionSensor",
    "engineEmergencyStopMode",
)

# Bits 8-15 of the second status word are reserved.
ENGINE_STATUS_2_CONDITIONS: Tuple[str, ...] = (
    "warningLevel1",
    "warningLevel2",
    "powerReduction",
    "maintenanceNeeded",
    "engineCommError",
    "subOrSecondaryThrottle",
    "neutralStartProtect",
    "engineShuttingDown",
)

ALARM_FIELDS = frozenset(ENGINE_STATUS_1_CONDITIONS + ENGINE_STATUS_2_CONDITIONS)

PATH_TEMPLATES: Dict[DeviceKind, Dict[str, str]] = {
    DeviceKind.BATTERY: {
        "voltage": "electrical.batteries.{id}.voltage",
        "current": "electrical.batteries.{id}.current",
        "temperature": "electrical.batteries.{id}.temperature",
        "stateOfCharge": "electrical.batteries.{id}.capacity.stateOfCharge",
        "timeRemaining": "electrical.batteries.{id}.capacity.timeRemaining",
        "stateOfHealth": "electrical.batteries.{id}.capacity.stateOfHealth",
        "ripple": "electrical.batteries.{id}.ripple",
        "ampHours": "electrical.batteries.{id}.ampHours",
    },
    DeviceKind.ENGINE: {
        "revolutions": "propulsion.{id}.revolutions",
        "boostPressure": "propulsion.{id}.boostPressure",
        "trimState": "propulsion.{id}.drive.trimState",
        "oilPressure": "propulsion.{id}.oilPressure",
        "oilTemperature": "propulsion.{id}.oilTemperature",
        "temperature": "propulsion.{id}.temperature",
        "alternatorVoltage": "propulsion.{id}.alternatorVoltage",
        "fuelRate": "propulsion.{id}.fuel.rate",
        "runTime": "propulsion.{id}.runTime",
        "coolantPressure": "propulsion.{id}.coolantPressure",
        "fuelPressure": "propulsion.{id}.fuel.pressure",
        "engineLoad": "propulsion.{id}.engineLoad",
        "engineTorque": "propulsion.{id}.engineTorque",
        **{
            name: f"notifications.propulsion.{{id}}.{name}"
            for name in ENGINE_STATUS_1_CONDITIONS + ENGINE_STATUS_2_CONDITIONS
        },
    },
    DeviceKind.TEMPERATURE: {
        "temperature": "environment.{id}.temperature",
    },
}


@dataclass(frozen=True)
class DeviceMapping:
    """Static association of one Signal K source with a protocol instance.

    ``extra_paths`` overrides a standard field path (e.g. a battery
    temperature measured by a separate sensor) or adds optional fields
    such as ``setTemperature`` for temperature sources.
    """

    source_id: str
    instance_id: int
    device_kind: DeviceKind
    extra_paths: Mapping[str, str] = field(default_factory=dict)
    revolutions_unit: Optional[AngularUnit] = None
    temperature_source: int = 0
    ttl_overrides: Mapping[str, float] = field(default_factory=dict)

    def paths(self) -> Dict[str, str]:
        """Return field name -> Signal K path for this source."""

        paths = {
            name: template.format(id=self.source_id)
            for name, template in PATH_TEMPLATES[self.device_kind].items()
        }
        paths.update(self.extra_paths)
        return paths


def _collect_errors(mappings: List[DeviceMapping]) -> Dict[DeviceKind, List[str]]:
    errors: Dict[DeviceKind, List[str]] = {}
    seen_instances: Dict[Tuple[DeviceKind, int], str] = {}
    seen_sources: set[Tuple[DeviceKind, str]] = set()

    for mapping in mappings:
        problems = errors.setdefault(mapping.device_kind, [])

        source_key = (mapping.device_kind, mapping.source_id)
        if source_key in seen_sources:
            problems.append(
                f"{mapping.device_kind.value} source '{mapping.source_id}' is mapped more than once"
            )
        seen_sources.add(source_key)

        instance_key = (mapping.device_kind, mapping.instance_id)
        previous = seen_instances.get(instance_key)
        if previous is not None and previous != mapping.source_id:
            problems.append(
                f"{mapping.device_kind.value} instance {mapping.instance_id} is used by "
                f"both '{previous}' and '{mapping.source_id}'"
            )
        seen_instances.setdefault(instance_key, mapping.source_id)

        if not 0 <= mapping.instance_id <= 252:
            problems.append(
                f"Instance {mapping.instance_id} for '{mapping.source_id}' is outside 0-252"
            )

        if mapping.device_kind is DeviceKind.ENGINE and mapping.revolutions_unit is None:
            problems.append(
                f"Engine '{mapping.source_id}' must declare the unit of its revolutions path"
            )

    return {kind: problems for kind, problems in errors.items() if problems}


class DeviceMappingTable:
    """Immutable set of device mappings built once at startup.

    Conflicts are collected per device kind. With ``strict`` (the default,
    used by ``check-config``) any conflict raises; otherwise the conflicting
    kind is logged at ERROR and left out while the other kinds stay usable.
    """

    def __init__(self, mappings: Iterable[DeviceMapping], *, strict: bool = True) -> None:
        configured = list(mappings)
        self.errors: Dict[DeviceKind, List[str]] = _collect_errors(configured)

        if self.errors and strict:
            raise DeviceMappingError(
                "; ".join(message for messages in self.errors.values() for message in messages)
            )
        for device_kind, messages in self.errors.items():
            for message in messages:
                LOGGER.error("%s", message)
            LOGGER.error(
                "No %s messages will be sent until the mapping conflicts are fixed",
                device_kind.value,
            )

        self._mappings: List[DeviceMapping] = [
            m for m in configured if m.device_kind not in self.errors
        ]
        self._by_source: Dict[Tuple[DeviceKind, str], DeviceMapping] = {}
        self._paths: Dict[Tuple[DeviceKind, str], Dict[str, str]] = {}
        self._path_index: Dict[str, List[Tuple[DeviceMapping, str]]] = {}

        for mapping in self._mappings:
            key = (mapping.device_kind, mapping.source_id)
            self._by_source[key] = mapping
            paths = mapping.paths()
            self._paths[key] = paths
            for field_name, path in paths.items():
                self._path_index.setdefault(path, []).append((mapping, field_name))

        LOGGER.debug(
            "Device mapping table built: %d sources, %d paths",
            len(self._mappings),
            len(self._path_index),
        )

    @property
    def disabled_kinds(self) -> List[DeviceKind]:
        return list(self.errors)

    def get(self, device_kind: DeviceKind, source_id: str) -> Optional[DeviceMapping]:
        return self._by_source.get((device_kind, source_id))

    def paths_for(self, device_kind: DeviceKind, source_id: str) -> Dict[str, str]:
        """Return the cache-key set consumed by one source's composers."""

        try:
            return dict(self._paths[(device_kind, source_id)])
        except KeyError:
            raise KeyError(f"No {device_kind.value} mapping for '{source_id}'") from None

    def lookup_path(self, path: str) -> List[Tuple[DeviceMapping, str]]:
        """Resolve a Signal K path to the (mapping, field) pairs that track it."""

        return list(self._path_index.get(path, ()))

    def all_paths(self) -> List[str]:
        return sorted(self._path_index)

    def of_kind(self, device_kind: DeviceKind) -> List[DeviceMapping]:
        return [m for m in self._mappings if m.device_kind is device_kind]

    def __iter__(self) -> Iterator[DeviceMapping]:
        return iter(self._mappings)

    def __len__(self) -> int:
        return len(self._mappings)
