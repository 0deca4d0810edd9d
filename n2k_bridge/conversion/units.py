"""Unit conversion helpers mapping Signal K SI values to NMEA 2000 units.

All functions are pure and total over finite inputs: intermediate
overflow saturates to the largest finite float instead of raising, and
composers clamp the result to the field width. Callers check that a value
is present (see :mod:`n2k_bridge.conversion.cache`) before converting;
non-finite inputs are never passed in.

Rounding is half-up (``floor(x * 10**digits + 0.5)``) so results match the
canboat tooling rather than Python's banker's rounding, and every rounding
helper is idempotent on its own output.
"""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum

SECONDS_PER_HOUR = 3600
SECONDS_PER_MINUTE = 60
CUBIC_METERS_PER_SECOND_TO_LITERS_PER_HOUR = 3_600_000
# Floats at or above 2**52 have no fractional part left to round.
EXACT_INTEGER_LIMIT = float(2**52)


class AngularUnit(str, Enum):
    """Unit in which a source publishes rotational speed."""

    RADIANS_PER_SECOND = "rad/s"
    HERTZ = "hz"

    @classmethod
    def parse(cls, value: str) -> "AngularUnit":
        normalized = value.strip().lower()
        aliases = {
            "rad/s": cls.RADIANS_PER_SECOND,
            "radps": cls.RADIANS_PER_SECOND,
            "radians": cls.RADIANS_PER_SECOND,
            "hz": cls.HERTZ,
            "rev/s": cls.HERTZ,
            "rps": cls.HERTZ,
        }
        try:
            return aliases[normalized]
        except KeyError:
            raise ValueError(f"Unknown angular rate unit: {value!r}") from None


@dataclass(frozen=True)
class Duration:
    """Whole hours, minutes and seconds; sub-second precision is dropped."""

    hours: int
    minutes: int
    seconds: int

    @property
    def total_seconds(self) -> int:
        return self.hours * SECONDS_PER_HOUR + self.minutes * SECONDS_PER_MINUTE + self.seconds

    def to_iso8601(self) -> str:
        return f"PT{self.hours}H{self.minutes}M{self.seconds}S"

    def __str__(self) -> str:
        return f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}"


@dataclass(frozen=True)
class FieldWidth:
    """Fixed-width field layout used for clamping and sentinel values.

    ``resolution`` is expressed in the unit of the composed value, e.g. a
    16 bit pressure field with 100 Pa resolution carried in kPa has
    ``resolution=0.1``. The all-ones raw pattern is reserved for "not
    available", so the largest valid raw value is one below it.
    """

    bits: int
    resolution: float = 1.0
    signed: bool = False

    @property
    def max_raw(self) -> int:
        if self.signed:
            return (1 << (self.bits - 1)) - 2
        return (1 << self.bits) - 2

    @property
    def min_raw(self) -> int:
        if self.signed:
            return -(1 << (self.bits - 1))
        return 0

    @property
    def max_value(self) -> float:
        return self.max_raw * self.resolution

    @property
    def min_value(self) -> float:
        return self.min_raw * self.resolution

    @property
    def not_available(self) -> int:
        if self.signed:
            return (1 << (self.bits - 1)) - 1
        return (1 << self.bits) - 1


def _saturate(value: float) -> float:
    """Replace an overflowed intermediate with the largest finite float."""

    if math.isinf(value):
        return math.copysign(sys.float_info.max, value)
    return value


def round_to(value: float, digits: int) -> float:
    """Round half-up to ``digits`` decimal places.

    Magnitudes too large to carry the requested precision are already
    rounded and come back unchanged.
    """

    value = _saturate(value)
    factor = 10**digits
    scaled = value * factor
    if not math.isfinite(scaled) or abs(scaled) >= EXACT_INTEGER_LIMIT:
        return value
    # Drop binary representation error first so 290.15 rounds to 290.2.
    scaled = round(scaled, 9)
    return math.floor(scaled + 0.5) / factor


def round_to_step(value: float, step: float) -> float:
    """Round half-up to the nearest multiple of ``step``."""

    value = _saturate(value)
    if step <= 0:
        return value
    steps = value / step
    if not math.isfinite(steps) or abs(steps) >= EXACT_INTEGER_LIMIT:
        return value
    return _saturate(math.floor(steps + 0.5) * step)


def voltage(volts: float) -> float:
    return round_to(volts, 2)


def current(amps: float) -> float:
    return round_to(amps, 1)


def temperature(kelvin: float) -> float:
    return round_to(kelvin, 1)


def ratio_to_percent(ratio: float, digits: int = 0) -> float:
    """Convert a 0..1 ratio to percent.

    Whole-percent fields get an ``int``; fields with finer granularity pass
    ``digits`` (e.g. 2 for 0.01 %).
    """

    percent = round_to(ratio * 100, digits)
    if digits == 0:
        return int(percent)
    return percent


def angular_rate_to_rpm(
    rate: float, unit: AngularUnit, *, step: float = 0.0
) -> float:
    """Convert rotational speed to revolutions per minute.

    A positive ``step`` quantises the result (e.g. 10 rpm) to avoid emitting
    a new value for every bit of sensor jitter.
    """

    if unit is AngularUnit.RADIANS_PER_SECOND:
        rpm = rate * 60 / (2 * math.pi)
    else:
        rpm = rate * 60
    if step > 0:
        return round_to_step(rpm, step)
    return float(round_to(rpm, 0))


def fuel_rate(cubic_meters_per_second: float) -> float:
    return round_to(cubic_meters_per_second * CUBIC_METERS_PER_SECOND_TO_LITERS_PER_HOUR, 1)


def pressure_kpa(pascals: float) -> float:
    return round_to(pascals / 1000, 1)


def duration(seconds: float) -> Duration:
    """Split seconds into whole hours, minutes and seconds, flooring each part.

    Negative input is treated as zero.
    """

    total = max(0, math.floor(seconds))
    hours, remainder = divmod(total, SECONDS_PER_HOUR)
    minutes, secs = divmod(remainder, SECONDS_PER_MINUTE)
    return Duration(hours=hours, minutes=minutes, seconds=secs)


def clamp(value: float, width: FieldWidth) -> float:
    """Saturate ``value`` to the representable range of ``width``."""

    if value > width.max_value:
        return width.max_value
    if value < width.min_value:
        return width.min_value
    return value
