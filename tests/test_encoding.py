"""Tests for the named and wire output conventions."""

import pytest

from n2k_bridge.conversion import (
    ComposedMessage,
    Duration,
    MessageKind,
    NotAvailable,
    OutputConvention,
    encode_named,
    encode_wire,
    get_encoder,
)
from n2k_bridge.conversion.units import FieldWidth


def _dc_message():
    return ComposedMessage(
        kind=MessageKind.DC_DETAILED_STATUS,
        instance_id=1,
        fields={
            "dcType": 0,
            "stateOfCharge": 93,
            "timeRemaining": Duration(3, 25, 40),
            "remainingCapacity": 105,
            "stateOfHealth": NotAvailable(FieldWidth(8)),
        },
    )


def test_named_convention_uses_labels():
    record = encode_named(_dc_message())

    assert record == {
        "pgn": 127506,
        "DC Instance": 1,
        "DC Type": "Battery",
        "State of Charge": 93,
        "State of Health": None,
        "Time Remaining": "PT3H25M40S",
        "Amp Hours": 105,
    }


def test_wire_convention_uses_si_values():
    record = encode_wire(_dc_message())

    assert record["pgn"] == 127506
    assert record["prio"] == 6
    assert record["dst"] == 255
    fields = dict(record["fields"])
    assert fields.pop("stateOfCharge") == pytest.approx(0.93)
    assert fields == {
        "dcInstance": 1,
        "dcType": 0,
        "stateOfHealth": 0xFF,
        "timeRemaining": 12340,
        "remainingCapacity": 105 * 3600,
    }


def test_named_bitmask_lists_active_conditions():
    message = ComposedMessage(
        kind=MessageKind.ENGINE_DYNAMIC,
        instance_id=0,
        fields={"discreteStatus1": (1 << 1) | (1 << 3), "discreteStatus2": 0},
    )

    record = encode_named(message)

    assert record["Discrete Status 1"] == ["overTemperature", "lowOilLevel"]
    assert record["Discrete Status 2"] == []
    assert encode_wire(message)["fields"]["discreteStatus1"] == 10


def test_wire_speed_and_pressure_are_si():
    message = ComposedMessage(
        kind=MessageKind.ENGINE_RAPID,
        instance_id=0,
        fields={"speed": 2000.0, "boostPressure": 150.0, "tiltTrim": -12},
    )

    fields = encode_wire(message)["fields"]

    assert fields["engineInstance"] == 0
    assert fields["speed"] == pytest.approx(209.4395, rel=1e-6)
    assert fields["tiltTrim"] == pytest.approx(-0.12)
    assert fields["boostPressure"] == pytest.approx(150_000.0)


def test_temperature_source_lookup():
    message = ComposedMessage(
        kind=MessageKind.TEMPERATURE,
        instance_id=3,
        fields={"source": 1, "actualTemperature": 288.2},
    )

    assert encode_named(message) == {
        "pgn": 130312,
        "Instance": 3,
        "Source": "Outside Temperature",
        "Actual Temperature": 288.2,
    }


def test_get_encoder_accepts_enum_or_value():
    assert get_encoder(OutputConvention.NAMED) is encode_named
    assert get_encoder("wire") is encode_wire
    with pytest.raises(ValueError):
        get_encoder("yaml")
