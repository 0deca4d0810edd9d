"""Configuration loader for n2k-bridge."""

from __future__ import annotations

import logging
import math
from configparser import ConfigParser, SectionProxy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import constants
from .conversion import (
    AngularUnit,
    ComposerOptions,
    DeviceKind,
    DeviceMapping,
    DeviceMappingTable,
    MessageKind,
    MissingFieldPolicy,
    OutputConvention,
    TriggerMode,
)
from .conversion.mapping import ALARM_FIELDS, PATH_TEMPLATES
from .conversion.messages import MESSAGE_SCHEMAS, lookup_value
from .exceptions import ConfigurationError

LOGGER = logging.getLogger(__name__)

OPTIONAL_FIELDS = ("setTemperature",)


@dataclass(slots=True)
class SignalKConfig:
    url: str = f"http://{constants.DEFAULT_SIGNALK_HOST}:{constants.DEFAULT_SIGNALK_PORT}"
    token: Optional[str] = None
    mode: str = "stream"
    poll_interval_seconds: float = 1.0
    reconnect_initial_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0


@dataclass(slots=True)
class MQTTConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: str = constants.APP_NAME
    qos: int = 0
    reconnect_min_seconds: int = 1
    reconnect_max_seconds: int = 30


@dataclass(slots=True)
class OutputConfig:
    transport: str = "mqtt"
    convention: OutputConvention = OutputConvention.NAMED
    missing_fields: MissingFieldPolicy = MissingFieldPolicy.OMIT
    topic_prefix: str = constants.DEFAULT_TOPIC_PREFIX


@dataclass(slots=True)
class ConversionConfig:
    trigger: TriggerMode = TriggerMode.PERIODIC
    rpm_step: float = 10.0
    ripple_voltage_digits: int = 2
    ttl_seconds: Dict[MessageKind, float] = field(default_factory=dict)
    alarm_ttl_seconds: float = math.inf


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False
    conversion_level: Optional[str] = None


@dataclass(slots=True)
class BridgeConfig:
    signalk: SignalKConfig
    mqtt: MQTTConfig
    output: OutputConfig
    conversion: ConversionConfig
    logging: LoggingConfig
    devices: List[DeviceMapping]
    raw: ConfigParser
    path: Path

    def composer_options(self) -> ComposerOptions:
        return ComposerOptions(
            missing_fields=self.output.missing_fields,
            rpm_step=self.conversion.rpm_step,
            ripple_voltage_digits=self.conversion.ripple_voltage_digits,
            ttl_seconds=dict(self.conversion.ttl_seconds),
            alarm_ttl_seconds=self.conversion.alarm_ttl_seconds,
        )

    def build_mapping_table(self, *, strict: bool = True) -> DeviceMappingTable:
        """Validate device mappings.

        Strict tables raise DeviceMappingError on any conflict. Otherwise the
        conflicting device kinds are left out and listed in ``table.errors``.
        """
        return DeviceMappingTable(self.devices, strict=strict)


def _parse_enum(enum_type, value: str, option: str):
    try:
        return enum_type(value.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_type)
        raise ConfigurationError(
            f"Invalid value {value!r} for '{option}' (expected one of: {choices})"
        ) from None


def _parse_float(section: SectionProxy, option: str, fallback: float) -> float:
    try:
        return section.getfloat(option, fallback=fallback)
    except ValueError:
        raise ConfigurationError(
            f"[{section.name}] {option} must be a number, got {section.get(option)!r}"
        ) from None


def _field_lookup(device_kind: DeviceKind) -> Dict[str, str]:
    """Map lower-cased field names (as configparser stores them) to real names."""

    names: Iterable[str] = list(PATH_TEMPLATES[device_kind]) + list(OPTIONAL_FIELDS)
    return {name.lower(): name for name in names}


def _parse_device(section: SectionProxy) -> DeviceMapping:
    kind_name, _, source_id = section.name.partition(" ")
    device_kind = _parse_enum(DeviceKind, kind_name, "section")
    source_id = source_id.strip()
    if not source_id:
        raise ConfigurationError(f"Section [{section.name}] is missing a source id")

    try:
        instance_id = section.getint("instance")
    except ValueError:
        raise ConfigurationError(
            f"[{section.name}] instance must be an integer, got {section.get('instance')!r}"
        ) from None
    if instance_id is None:
        raise ConfigurationError(f"[{section.name}] requires an 'instance' option")

    fields = _field_lookup(device_kind)
    extra_paths: Dict[str, str] = {}
    ttl_overrides: Dict[str, float] = {}
    default_ttl: Optional[float] = None

    for option, value in section.items():
        if option.startswith("path."):
            name = fields.get(option[len("path."):])
            if name is None:
                raise ConfigurationError(f"[{section.name}] unknown field in '{option}'")
            extra_paths[name] = value.strip()
        elif option.startswith("ttl."):
            name = fields.get(option[len("ttl."):])
            if name is None:
                raise ConfigurationError(f"[{section.name}] unknown field in '{option}'")
            ttl_overrides[name] = _parse_float(section, option, 0.0)
        elif option == "ttl":
            default_ttl = _parse_float(section, option, 0.0)

    if default_ttl is not None:
        # Alarm conditions keep the [conversion] alarm_ttl unless set per field.
        for name in fields.values():
            if name not in ALARM_FIELDS:
                ttl_overrides.setdefault(name, default_ttl)

    # Shorthand options for the common overrides.
    if section.get("temperature_path"):
        extra_paths["temperature"] = section.get("temperature_path").strip()
    if device_kind is DeviceKind.TEMPERATURE:
        if section.get("path"):
            extra_paths["temperature"] = section.get("path").strip()
        if section.get("set_path"):
            extra_paths["setTemperature"] = section.get("set_path").strip()

    revolutions_unit: Optional[AngularUnit] = None
    unit_value = section.get("revolutions_unit")
    if unit_value:
        try:
            revolutions_unit = AngularUnit.parse(unit_value)
        except ValueError as exc:
            raise ConfigurationError(f"[{section.name}] {exc}") from None

    temperature_source = 0
    source_value = section.get("source")
    if source_value:
        source_value = source_value.strip()
        if source_value.isdigit():
            temperature_source = int(source_value)
        else:
            spec = MESSAGE_SCHEMAS[MessageKind.TEMPERATURE].field_spec("source")
            code = lookup_value(spec, source_value)
            if code is None:
                raise ConfigurationError(
                    f"[{section.name}] unknown temperature source {source_value!r}"
                )
            temperature_source = code

    return DeviceMapping(
        source_id=source_id,
        instance_id=instance_id,
        device_kind=device_kind,
        extra_paths=extra_paths,
        revolutions_unit=revolutions_unit,
        temperature_source=temperature_source,
        ttl_overrides=ttl_overrides,
    )


def load_config(path: Optional[Path] = None) -> BridgeConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or constants.DEFAULT_CONFIG_PATH
    parser = ConfigParser()
    parser.read_dict(
        {
            "signalk": {
                "url": SignalKConfig().url,
                "mode": "stream",
                "poll_interval_seconds": "1.0",
                "reconnect_initial_seconds": "1.0",
                "reconnect_max_seconds": "30.0",
            },
            "mqtt": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "client_id": constants.APP_NAME,
                "qos": "0",
            },
            "output": {
                "transport": "mqtt",
                "convention": OutputConvention.NAMED.value,
                "missing_fields": MissingFieldPolicy.OMIT.value,
                "topic_prefix": constants.DEFAULT_TOPIC_PREFIX,
            },
            "conversion": {
                "trigger": TriggerMode.PERIODIC.value,
                "rpm_step": "10",
                "ripple_voltage_digits": "2",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("mqtt", "broker_host")
    broker_port_value = parser.getint(
        "mqtt", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("mqtt", "broker_host", host_part)
            parser.set("mqtt", "broker_port", str(parsed_port))

    signalk_section = parser["signalk"]
    mode = signalk_section.get("mode", "stream").strip().lower()
    if mode not in ("stream", "poll"):
        raise ConfigurationError(f"[signalk] mode must be 'stream' or 'poll', got {mode!r}")

    signalk = SignalKConfig(
        url=signalk_section.get("url"),
        token=signalk_section.get("token", fallback=None),
        mode=mode,
        poll_interval_seconds=max(
            0.1, _parse_float(signalk_section, "poll_interval_seconds", 1.0)
        ),
        reconnect_initial_seconds=_parse_float(
            signalk_section, "reconnect_initial_seconds", 1.0
        ),
        reconnect_max_seconds=_parse_float(signalk_section, "reconnect_max_seconds", 30.0),
    )

    mqtt = MQTTConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=parser.get("mqtt", "username", fallback=None),
        password=parser.get("mqtt", "password", fallback=None),
        client_id=parser.get("mqtt", "client_id", fallback=constants.APP_NAME),
        qos=max(0, min(2, parser.getint("mqtt", "qos", fallback=0))),
        reconnect_min_seconds=max(1, parser.getint("mqtt", "reconnect_min_seconds", fallback=1)),
        reconnect_max_seconds=max(1, parser.getint("mqtt", "reconnect_max_seconds", fallback=30)),
    )

    transport = parser.get("output", "transport").strip().lower()
    if transport not in ("mqtt", "stdout"):
        raise ConfigurationError(
            f"[output] transport must be 'mqtt' or 'stdout', got {transport!r}"
        )

    output = OutputConfig(
        transport=transport,
        convention=_parse_enum(
            OutputConvention, parser.get("output", "convention"), "output.convention"
        ),
        missing_fields=_parse_enum(
            MissingFieldPolicy,
            parser.get("output", "missing_fields"),
            "output.missing_fields",
        ),
        topic_prefix=parser.get("output", "topic_prefix").strip().rstrip("/"),
    )

    conversion_section = parser["conversion"]
    kinds_by_name = {kind.value.lower(): kind for kind in MessageKind}
    ttl_seconds: Dict[MessageKind, float] = {}
    for option in conversion_section:
        if not option.startswith("ttl."):
            continue
        kind = kinds_by_name.get(option[len("ttl."):])
        if kind is None:
            raise ConfigurationError(f"[conversion] unknown message kind in '{option}'")
        ttl_seconds[kind] = _parse_float(conversion_section, option, 0.0)

    conversion = ConversionConfig(
        trigger=_parse_enum(
            TriggerMode, conversion_section.get("trigger"), "conversion.trigger"
        ),
        rpm_step=max(0.0, _parse_float(conversion_section, "rpm_step", 10.0)),
        ripple_voltage_digits=max(
            0, conversion_section.getint("ripple_voltage_digits", fallback=2)
        ),
        ttl_seconds=ttl_seconds,
        alarm_ttl_seconds=(
            _parse_float(conversion_section, "alarm_ttl", math.inf)
            if conversion_section.get("alarm_ttl")
            else math.inf
        ),
    )

    log_path_value = parser.get("logging", "path", fallback=None)
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
        conversion_level=parser.get("logging", "conversion_level", fallback=None),
    )

    device_kinds = {kind.value for kind in DeviceKind}
    devices = [
        _parse_device(parser[section])
        for section in parser.sections()
        if section.partition(" ")[0].lower() in device_kinds
    ]
    if not devices:
        LOGGER.warning("No device sections found in %s", config_path)

    return BridgeConfig(
        signalk=signalk,
        mqtt=mqtt,
        output=output,
        conversion=conversion,
        logging=logging_config,
        devices=devices,
        raw=parser,
        path=config_path,
    )
