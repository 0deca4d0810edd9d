from typing import List

import pytest

from n2k_bridge.conversion import (
    AngularUnit,
    ComposedMessage,
    DeviceKind,
    DeviceMapping,
    DeviceMappingTable,
)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink:
    def __init__(self) -> None:
        self.messages: List[ComposedMessage] = []

    def __call__(self, message: ComposedMessage) -> None:
        self.messages.append(message)

    def of_pgn(self, pgn: int) -> List[ComposedMessage]:
        return [message for message in self.messages if message.pgn == pgn]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def battery_mapping() -> DeviceMapping:
    return DeviceMapping(source_id="house", instance_id=0, device_kind=DeviceKind.BATTERY)


@pytest.fixture
def engine_mapping() -> DeviceMapping:
    return DeviceMapping(
        source_id="port",
        instance_id=0,
        device_kind=DeviceKind.ENGINE,
        revolutions_unit=AngularUnit.RADIANS_PER_SECOND,
    )


@pytest.fixture
def temperature_mapping() -> DeviceMapping:
    return DeviceMapping(
        source_id="outside",
        instance_id=3,
        device_kind=DeviceKind.TEMPERATURE,
        temperature_source=1,
    )


@pytest.fixture
def table(battery_mapping, engine_mapping, temperature_mapping) -> DeviceMappingTable:
    return DeviceMappingTable([battery_mapping, engine_mapping, temperature_mapping])
