"""Periodic tick scheduler for message composition.

Each (source, message kind) pair gets its own asyncio task firing at the
kind's mandated interval, independent of telemetry arrival. The scheduler
owns every task it starts so :meth:`Scheduler.stop` cancels all of them
deterministically.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Callable, Dict, Hashable, List, Tuple

LOGGER = logging.getLogger(__name__)

TaskKey = Tuple[str, Hashable]
TickCallback = Callable[[], None]


class Scheduler:
    """Collection of cancellable periodic tasks keyed by (source, kind)."""

    def __init__(self) -> None:
        self._tasks: Dict[TaskKey, asyncio.Task[None]] = {}

    def schedule(
        self,
        key: TaskKey,
        interval_seconds: float,
        callback: TickCallback,
        *,
        initial_delay_seconds: float = 0.0,
    ) -> None:
        """Start calling ``callback`` every ``interval_seconds``.

        Scheduling an existing key replaces its task. Must be called from a
        running event loop.
        """

        self.cancel(key)
        interval = max(interval_seconds, 0.01)
        task = asyncio.create_task(
            self._run(key, interval, callback, max(initial_delay_seconds, 0.0)),
            name=f"tick-{key[0]}-{key[1]}",
        )
        self._tasks[key] = task

    def cancel(self, key: TaskKey) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def stop(self) -> None:
        """Cancel every task and wait for them to finish."""

        if not self._tasks:
            return

        tasks = list(self._tasks.values())
        self._tasks.clear()

        for task in tasks:
            task.cancel()

        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        LOGGER.debug("Scheduler stopped %d tasks", len(tasks))

    def keys(self) -> List[TaskKey]:
        return list(self._tasks)

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def _run(
        self,
        key: TaskKey,
        interval: float,
        callback: TickCallback,
        initial_delay: float,
    ) -> None:
        if initial_delay:
            await asyncio.sleep(initial_delay)

        loop = asyncio.get_running_loop()
        next_run = loop.time()

        while True:
            try:
                callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Tick for %s/%s failed", key[0], key[1])

            # Fixed-rate schedule; a late tick does not shift later ones.
            next_run += interval
            delay = next_run - loop.time()
            if delay < 0:
                next_run = loop.time()
                delay = 0
            await asyncio.sleep(delay)
