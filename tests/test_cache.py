"""Tests for the value cache and sample normalization."""

import math

import pytest

from n2k_bridge.conversion.cache import (
    ABSENT,
    Present,
    ValueCache,
    to_alarm_sample,
    to_sample,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        (12.5, Present(12.5)),
        (3, Present(3.0)),
        ({"value": 0.93}, Present(0.93)),
        (None, ABSENT),
        (True, ABSENT),
        ("12", ABSENT),
        (math.nan, ABSENT),
        (math.inf, ABSENT),
        ({"value": None}, ABSENT),
    ],
)
def test_to_sample(raw, expected):
    assert to_sample(raw) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ({"state": "alarm", "message": "Overheat"}, Present(1.0)),
        ({"value": {"state": "warn"}}, Present(1.0)),
        ("emergency", Present(1.0)),
        ("normal", Present(0.0)),
        (True, Present(1.0)),
        (False, Present(0.0)),
        (1, Present(1.0)),
        (0, Present(0.0)),
        (None, ABSENT),
    ],
)
def test_to_alarm_sample(raw, expected):
    assert to_alarm_sample(raw) == expected


def test_absent_is_falsy_singleton():
    assert not ABSENT
    assert type(ABSENT)() is ABSENT


def test_read_returns_value_within_ttl(clock):
    cache = ValueCache(monotonic=clock)
    assert cache.update("electrical.batteries.house.voltage", 12.5) is True

    clock.advance(59.0)
    assert cache.read("electrical.batteries.house.voltage", ttl=60.0) == 12.5


def test_read_returns_none_after_ttl(clock):
    cache = ValueCache(monotonic=clock)
    cache.update("electrical.batteries.house.voltage", 12.5)

    clock.advance(60.5)

    assert cache.read("electrical.batteries.house.voltage", ttl=60.0) is None
    # expired entries are kept
    assert "electrical.batteries.house.voltage" in cache


def test_read_unknown_key_is_absent(clock):
    cache = ValueCache(monotonic=clock)
    assert cache.read("nope", ttl=60.0) is None


def test_non_finite_update_keeps_previous_value(clock):
    cache = ValueCache(monotonic=clock)
    cache.update("path", 12.5)
    clock.advance(1.0)

    assert cache.update("path", math.nan) is False
    assert cache.update("path", None) is False

    entry = cache.get_entry("path")
    assert entry is not None
    assert entry.last_value == 12.5
    assert entry.last_updated == 1000.0


def test_value_wrapper_is_unwrapped(clock):
    cache = ValueCache(monotonic=clock)
    cache.update("path", {"value": 0.5})

    assert cache.read("path", ttl=1.0) == 0.5


def test_alarm_coercer_is_used(clock):
    cache = ValueCache(monotonic=clock)
    cache.update("notifications.propulsion.port.overTemperature", {"state": "alarm"}, coerce=to_alarm_sample)

    assert cache.read("notifications.propulsion.port.overTemperature", ttl=10.0) == 1.0


def test_clear_empties_cache(clock):
    cache = ValueCache(monotonic=clock)
    cache.update("a", 1)
    cache.update("b", 2)
    assert len(cache) == 2
    assert {entry.key for entry in cache} == {"a", "b"}

    cache.clear()

    assert len(cache) == 0
