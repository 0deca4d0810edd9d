"""Minimum-interval gate for message emission.

Each (instance, message kind) pair has its own timer. A call that is
rejected does not touch the timer, so bursts above the mandated rate are
dropped rather than queued or coalesced.
"""

from __future__ import annotations

import time
from typing import Callable, Dict, Hashable, Optional, Tuple

RateKey = Tuple[int, Hashable]


class RateLimiter:
    """Kind-agnostic rate limiter keyed by an opaque ``(instance, kind)`` pair.

    ``tolerance_ms`` lets a caller that is itself paced at the interval (the
    periodic scheduler) absorb wake-up jitter; event-driven callers leave it
    at zero and get the exact interval.

    Thread-safety: This class is NOT thread-safe. All calls should occur
    on the same event loop thread.
    """

    def __init__(self, *, monotonic: Optional[Callable[[], float]] = None) -> None:
        """Initialize the limiter.

        Args:
            monotonic: Clock function returning monotonic seconds. Defaults to time.monotonic.
        """
        self._monotonic = monotonic or time.monotonic
        self._last_emitted: Dict[RateKey, float] = {}

    def _elapsed_ok(
        self, key: RateKey, now: float, interval_ms: float, tolerance_ms: float
    ) -> bool:
        last = self._last_emitted.get(key)
        if last is None:
            return True
        return (now - last) * 1000.0 >= interval_ms - max(tolerance_ms, 0.0)

    def would_allow(
        self,
        instance_id: int,
        kind: Hashable,
        interval_ms: float,
        *,
        tolerance_ms: float = 0.0,
    ) -> bool:
        """Return what :meth:`allow` would answer, without recording anything."""

        return self._elapsed_ok(
            (instance_id, kind), self._monotonic(), interval_ms, tolerance_ms
        )

    def allow(
        self,
        instance_id: int,
        kind: Hashable,
        interval_ms: float,
        *,
        tolerance_ms: float = 0.0,
    ) -> bool:
        """Return True and restart the timer if ``interval_ms`` has elapsed.

        The first call for a key always succeeds.
        """

        key = (instance_id, kind)
        now = self._monotonic()
        if not self._elapsed_ok(key, now, interval_ms, tolerance_ms):
            return False
        self._last_emitted[key] = now
        return True

    def last_emitted(self, instance_id: int, kind: Hashable) -> Optional[float]:
        return self._last_emitted.get((instance_id, kind))

    def reset(self) -> None:
        """Discard all timers."""
        self._last_emitted.clear()
