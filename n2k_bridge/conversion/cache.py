"""Per-source cache of the last known telemetry values."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Union

# Notification states that mark an alarm condition as active.
ACTIVE_ALARM_STATES = frozenset({"alarm", "warn", "alert", "emergency"})


@dataclass(frozen=True)
class Present:
    """A finite numeric sample."""

    value: float


class _Absent:
    """Marker for a missing or non-finite sample."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "ABSENT"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()

Sample = Union[Present, _Absent]
SampleCoercer = Callable[[Any], Sample]


def to_sample(raw: Any) -> Sample:
    """Normalize a raw Signal K value into a :class:`Present` or ``ABSENT``.

    Accepts bare numbers and ``{"value": n}`` wrappers. Booleans, strings,
    ``None`` and non-finite floats are absent.
    """

    if isinstance(raw, Mapping):
        raw = raw.get("value")
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return ABSENT
    value = float(raw)
    if not math.isfinite(value):
        return ABSENT
    return Present(value)


def to_alarm_sample(raw: Any) -> Sample:
    """Normalize an alarm or notification value to ``1.0`` (active) / ``0.0``.

    Signal K notifications arrive as ``{"state": "alarm", ...}``; plain
    tokens, booleans and ``1``/``0`` are accepted as well. ``None`` is absent,
    any other value is an inactive condition.
    """

    # REST responses wrap the notification object: {"value": {"state": ...}}
    while isinstance(raw, Mapping):
        if "state" in raw:
            raw = raw.get("state")
        elif "value" in raw:
            raw = raw.get("value")
        else:
            break
    if raw is None:
        return ABSENT
    if isinstance(raw, bool):
        return Present(1.0 if raw else 0.0)
    if isinstance(raw, (int, float)):
        return Present(1.0 if raw == 1 else 0.0)
    if isinstance(raw, str) and raw.strip().lower() in ACTIVE_ALARM_STATES:
        return Present(1.0)
    return Present(0.0)


@dataclass
class CachedEntry:
    key: str
    last_value: float
    last_updated: float


class ValueCache:
    """Holds the last finite value and its timestamp for each tracked path.

    A non-finite or absent sample never overwrites a cached value; stale but
    valid data is preferred over erasing it. Expired entries read as absent
    but are not deleted.

    Not thread-safe; all calls happen on the event loop thread.
    """

    def __init__(self, *, monotonic: Optional[Callable[[], float]] = None) -> None:
        self._monotonic = monotonic or time.monotonic
        self._entries: Dict[str, CachedEntry] = {}

    def update(
        self, key: str, raw: Any, *, coerce: SampleCoercer = to_sample
    ) -> bool:
        """Store ``raw`` under ``key`` if it normalizes to a present value.

        Returns True when the cache was updated.
        """

        sample = raw if isinstance(raw, (Present, _Absent)) else coerce(raw)
        if not isinstance(sample, Present):
            return False
        self._entries[key] = CachedEntry(
            key=key, last_value=sample.value, last_updated=self._monotonic()
        )
        return True

    def read(self, key: str, ttl: float) -> Optional[float]:
        """Return the cached value if it is no older than ``ttl`` seconds."""

        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._monotonic() - entry.last_updated > ttl:
            return None
        return entry.last_value

    def get_entry(self, key: str) -> Optional[CachedEntry]:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[CachedEntry]:
        return iter(self._entries.values())

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
