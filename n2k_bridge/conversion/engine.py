"""Conversion engine coordinating cache, rate limiter and composers."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .cache import ValueCache, to_alarm_sample, to_sample
from .composers import ComposerOptions, MessageComposer, build_composers
from .mapping import ALARM_FIELDS, DeviceKind, DeviceMapping, DeviceMappingTable
from .messages import ComposedMessage, MessageKind, kinds_for
from .rate_limiter import RateLimiter
from .scheduler import Scheduler

LOGGER = logging.getLogger(__name__)

MessageSink = Callable[[ComposedMessage], None]

# Fraction of a kind's interval a scheduled tick may arrive early.
SCHEDULER_TOLERANCE = 0.1


class TriggerMode(str, Enum):
    """What drives composition.

    PERIODIC runs one timer per (source, kind) at the kind's interval.
    EVENT composes as soon as a source's telemetry changes.
    """

    PERIODIC = "periodic"
    EVENT = "event"


@dataclass
class EngineStats:
    emitted: int = 0
    suppressed: int = 0
    empty: int = 0
    ignored_updates: int = 0
    sink_errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "emitted": self.emitted,
            "suppressed": self.suppressed,
            "empty": self.empty,
            "ignoredUpdates": self.ignored_updates,
            "sinkErrors": self.sink_errors,
        }


class ConversionEngine:
    """Turns telemetry updates into rate-limited protocol messages.

    The engine is invoked from a single asyncio event loop; callers must
    treat it as single-threaded.
    """

    def __init__(
        self,
        table: DeviceMappingTable,
        sink: MessageSink,
        *,
        options: Optional[ComposerOptions] = None,
        trigger: TriggerMode = TriggerMode.PERIODIC,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        self._table = table
        self._sink = sink
        self._trigger = TriggerMode(trigger)
        self._monotonic = monotonic or time.monotonic

        self.options = options or ComposerOptions()
        self.composers: Dict[MessageKind, MessageComposer] = build_composers(self.options)
        self.rate_limiter = RateLimiter(monotonic=self._monotonic)
        self.scheduler = Scheduler()
        self.stats = EngineStats()

        self._caches: Dict[Tuple[DeviceKind, str], ValueCache] = {
            (mapping.device_kind, mapping.source_id): ValueCache(monotonic=self._monotonic)
            for mapping in table
        }
        self._running = False

    @property
    def table(self) -> DeviceMappingTable:
        return self._table

    @property
    def trigger(self) -> TriggerMode:
        return self._trigger

    @property
    def running(self) -> bool:
        return self._running

    def cache_for(self, mapping: DeviceMapping) -> ValueCache:
        return self._caches[(mapping.device_kind, mapping.source_id)]

    # ------------------------------------------------------------------
    # Telemetry input
    # ------------------------------------------------------------------
    def handle_update(self, path: str, raw: Any) -> bool:
        """Ingest a push-style ``(path, value)`` update.

        Returns False when no mapped source tracks ``path``.
        """

        targets = self._table.lookup_path(path)
        if not targets:
            self.stats.ignored_updates += 1
            return False

        touched: List[DeviceMapping] = []
        for mapping, field_name in targets:
            if self._store(mapping, field_name, path, raw) and mapping not in touched:
                touched.append(mapping)

        if self._trigger is TriggerMode.EVENT:
            for mapping in touched:
                self.process_source(mapping)
        return True

    def handle_values(
        self,
        mapping: DeviceMapping,
        keys: Sequence[str],
        values: Sequence[Any],
    ) -> None:
        """Ingest a pull-style positional tuple of values for one source."""

        if len(keys) != len(values):
            raise ValueError(
                f"Expected {len(keys)} values for '{mapping.source_id}', got {len(values)}"
            )

        field_by_path = {path: name for name, path in mapping.paths().items()}
        updated = False
        for path, raw in zip(keys, values):
            field_name = field_by_path.get(path)
            if field_name is None:
                self.stats.ignored_updates += 1
                continue
            updated = self._store(mapping, field_name, path, raw) or updated

        if updated and self._trigger is TriggerMode.EVENT:
            self.process_source(mapping)

    def _store(self, mapping: DeviceMapping, field_name: str, path: str, raw: Any) -> bool:
        coerce = to_alarm_sample if field_name in ALARM_FIELDS else to_sample
        return self.cache_for(mapping).update(path, raw, coerce=coerce)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------
    def tick(
        self,
        mapping: DeviceMapping,
        kind: MessageKind,
        *,
        tolerance_ms: float = 0.0,
    ) -> Optional[ComposedMessage]:
        """Compose and emit one message kind for one source if allowed.

        An empty tick (emission predicate false) does not consume the rate
        budget; a suppressed tick is dropped. Scheduler-driven ticks pass a
        ``tolerance_ms`` so wake-up jitter never costs a whole interval.
        """

        composer = self.composers[kind]
        interval_ms = composer.interval_ms

        if not self.rate_limiter.would_allow(
            mapping.instance_id, kind, interval_ms, tolerance_ms=tolerance_ms
        ):
            self.stats.suppressed += 1
            return None

        message = composer.compose(mapping, self.cache_for(mapping))
        if message is None:
            self.stats.empty += 1
            LOGGER.debug(
                "No data for %s on %s '%s'",
                kind.value,
                mapping.device_kind.value,
                mapping.source_id,
            )
            return None

        self.rate_limiter.allow(
            mapping.instance_id, kind, interval_ms, tolerance_ms=tolerance_ms
        )
        self._emit(message)
        return message

    def process_source(self, mapping: DeviceMapping) -> List[ComposedMessage]:
        """Tick every message kind produced by ``mapping``'s device kind."""

        messages: List[ComposedMessage] = []
        for kind in kinds_for(mapping.device_kind):
            message = self.tick(mapping, kind)
            if message is not None:
                messages.append(message)
        return messages

    def _emit(self, message: ComposedMessage) -> None:
        try:
            self._sink(message)
        except Exception:
            self.stats.sink_errors += 1
            LOGGER.exception(
                "Failed to hand off PGN %s instance %s", message.pgn, message.instance_id
            )
        else:
            self.stats.emitted += 1

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start periodic ticks. Must be called from a running event loop."""

        if self._running:
            return
        self._running = True

        if self._trigger is not TriggerMode.PERIODIC:
            LOGGER.info("Conversion engine started (event-driven, %d sources)", len(self._table))
            return

        for mapping in self._table:
            for kind in kinds_for(mapping.device_kind):
                interval = self.composers[kind].interval_ms / 1000.0
                self.scheduler.schedule(
                    (mapping.source_id, kind),
                    interval,
                    self._make_tick(mapping, kind),
                )

        LOGGER.info(
            "Conversion engine started (periodic, %d sources, %d timers)",
            len(self._table),
            len(self.scheduler),
        )

    def _make_tick(self, mapping: DeviceMapping, kind: MessageKind) -> Callable[[], None]:
        tolerance_ms = self.composers[kind].interval_ms * SCHEDULER_TOLERANCE

        def _tick() -> None:
            self.tick(mapping, kind, tolerance_ms=tolerance_ms)

        return _tick

    async def stop(self) -> None:
        """Cancel timers and discard cache and rate state."""

        await self.scheduler.stop()
        for cache in self._caches.values():
            cache.clear()
        self.rate_limiter.reset()
        self._running = False
        LOGGER.info("Conversion engine stopped (%s)", self.stats.as_dict())
