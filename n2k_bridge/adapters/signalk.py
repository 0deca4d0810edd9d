"""Signal K adapter providing websocket delta streaming and REST polling."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlparse, urlunparse

import aiohttp

from ..config import SignalKConfig

LOGGER = logging.getLogger(__name__)

UpdateCallback = Callable[[str, Any], Awaitable[None] | None]
ValuesCallback = Callable[[Tuple[Any, ...]], Awaitable[None] | None]
FetchPath = Callable[[str], Awaitable[Any]]

SELF_CONTEXT = "vessels.self"


class SignalKClient:
    """Non-blocking client for a Signal K server."""

    def __init__(
        self,
        config: SignalKConfig,
        *,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config
        self.reconnect_initial = config.reconnect_initial_seconds
        self.reconnect_max = config.reconnect_max_seconds

        self._base_url = self.config.url.rstrip("/")
        self._headers = {}
        if self.config.token:
            self._headers["Authorization"] = f"Bearer {self.config.token}"

        self._session: Optional[aiohttp.ClientSession] = session
        self._owns_session = session is None
        self._callbacks: list[UpdateCallback] = []
        self._paths: List[str] = []
        self._listener_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def start(self, callback: UpdateCallback, paths: Iterable[str]) -> None:
        """Start streaming deltas for ``paths`` to ``callback(path, value)``."""

        if callback in self._callbacks:
            raise ValueError("Callback already registered")

        self._callbacks.append(callback)
        self._paths = sorted(set(self._paths) | set(paths))

        if self._listener_task is not None:
            return

        await self._ensure_session()
        self._stop_event.clear()
        self._listener_task = asyncio.create_task(self._listen_loop())
        await asyncio.sleep(0)

    async def stop(self) -> None:
        """Stop listening and close the underlying resources."""

        self._callbacks.clear()
        self._stop_event.set()

        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def fetch_path(self, path: str, timeout: float = 5.0) -> Any:
        """Fetch the current value of a self-vessel path via REST.

        Returns None when the server has no value for the path.

        Raises:
            asyncio.TimeoutError: If request exceeds timeout
            aiohttp.ClientError: If HTTP request fails
        """

        session = await self._ensure_session()
        url = f"{self._base_url}/signalk/v1/api/vessels/self/{path.replace('.', '/')}"

        try:
            async with asyncio.timeout(timeout):
                async with session.get(url, headers=self._headers) as response:
                    if response.status == 404:
                        return None
                    response.raise_for_status()
                    return await response.json()
        except asyncio.TimeoutError:
            LOGGER.warning("Signal K query timed out after %.1fs (path=%s)", timeout, path)
            raise

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            timeout = aiohttp.ClientTimeout(total=None)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def _listen_loop(self) -> None:
        backoff = self.reconnect_initial

        while not self._stop_event.is_set():
            try:
                session = await self._ensure_session()
                ws_url = _build_ws_url(self._base_url)
                async with session.ws_connect(ws_url, headers=self._headers) as ws:
                    LOGGER.info("Connected to Signal K stream at %s", ws_url)
                    backoff = self.reconnect_initial

                    await ws.send_json(build_subscription(self._paths))
                    async for message in ws:
                        if self._stop_event.is_set():
                            break
                        if message.type == aiohttp.WSMsgType.TEXT:
                            await self._dispatch(message.data)
                        elif message.type == aiohttp.WSMsgType.ERROR:
                            raise ws.exception() or RuntimeError("Websocket error")
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - network failures
                if self._stop_event.is_set():
                    break
                LOGGER.warning("Signal K websocket error: %s", exc)
                # Full jitter on the reconnect delay.
                jittered = random.uniform(0, backoff)
                await asyncio.sleep(jittered)
                backoff = min(backoff * 2, self.reconnect_max)
            else:
                if not self._stop_event.is_set():
                    LOGGER.info("Signal K stream closed; reconnecting")
                    await asyncio.sleep(self.reconnect_initial)

    async def _dispatch(self, raw_data: str) -> None:
        try:
            payload = json.loads(raw_data)
        except json.JSONDecodeError:
            return

        for path, value in iter_delta_values(payload):
            for callback in list(self._callbacks):
                try:
                    result = callback(path, value)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:  # pragma: no cover
                    LOGGER.exception("Signal K update callback failed for %s", path)


def build_subscription(paths: Sequence[str]) -> dict:
    return {
        "context": SELF_CONTEXT,
        "subscribe": [{"path": path, "policy": "instant"} for path in paths],
    }


def iter_delta_values(payload: Any) -> Iterable[Tuple[str, Any]]:
    """Yield ``(path, value)`` pairs from a Signal K delta message.

    Hello messages carry no updates and yield nothing.
    """

    if not isinstance(payload, dict):
        return
    for update in payload.get("updates") or ():
        if not isinstance(update, dict):
            continue
        for entry in update.get("values") or ():
            if not isinstance(entry, dict):
                continue
            path = entry.get("path")
            if isinstance(path, str) and path:
                yield path, entry.get("value")


def _build_ws_url(http_url: str) -> str:
    parsed = urlparse(http_url)
    scheme = "ws"
    if parsed.scheme == "https":
        scheme = "wss"

    path = parsed.path.rstrip("/") + "/signalk/v1/stream"
    return urlunparse((scheme, parsed.netloc, path, "", "subscribe=none", ""))


@dataclass(frozen=True)
class PollGroup:
    """Ordered list of path keys polled together for one source.

    ``timeouts`` holds, per key, the seconds after which an unchanged value
    is reported as absent.
    """

    name: str
    keys: Tuple[str, ...]
    timeouts: Tuple[float, ...]

    def __post_init__(self) -> None:
        if len(self.keys) != len(self.timeouts):
            raise ValueError(f"Poll group '{self.name}' needs one timeout per key")


class _GroupState:
    def __init__(self, size: int) -> None:
        self.values: List[Any] = [None] * size
        self.changed_at: List[Optional[float]] = [None] * size
        self.expired: List[bool] = [True] * size


class PathPoller:
    """Pull-style subscription over the Signal K REST API.

    Each group is polled on its own task. The callback receives the group's
    values as a positional tuple whenever any value changes or any key's
    timeout elapses; keys that have not changed within their timeout are
    passed as None.
    """

    def __init__(
        self,
        *,
        fetch_path: FetchPath,
        interval_seconds: float,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        self._fetch_path = fetch_path
        self._interval = max(interval_seconds, 0.1)
        self._monotonic = monotonic or time.monotonic
        self._groups: List[Tuple[PollGroup, ValuesCallback]] = []
        self._states: dict[str, _GroupState] = {}
        self._poll_tasks: list[asyncio.Task[None]] = []
        self._stop_event = asyncio.Event()

    def add_group(self, group: PollGroup, callback: ValuesCallback) -> None:
        self._groups.append((group, callback))
        self._states[group.name] = _GroupState(len(group.keys))

    def start(self) -> None:
        """Start all polling tasks."""
        if self._poll_tasks:
            return

        self._stop_event.clear()
        for group, callback in self._groups:
            task = asyncio.create_task(self._poll_loop(group, callback))
            self._poll_tasks.append(task)

    async def stop(self) -> None:
        """Stop all polling tasks."""
        self._stop_event.set()
        if not self._poll_tasks:
            return

        for task in self._poll_tasks:
            task.cancel()

        for task in self._poll_tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        self._poll_tasks.clear()

    async def poll_once(self, group: PollGroup, callback: ValuesCallback) -> bool:
        """Poll one group; returns True when the callback was invoked."""

        state = self._states.setdefault(group.name, _GroupState(len(group.keys)))
        now = self._monotonic()
        notify = False

        for index, key in enumerate(group.keys):
            try:
                value = await self._fetch_path(key)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                LOGGER.debug("Polling %s failed: %s", key, exc)
                value = None

            if value is not None and value != state.values[index]:
                state.values[index] = value
                state.changed_at[index] = now
                state.expired[index] = False
                notify = True
                continue

            changed_at = state.changed_at[index]
            if (
                not state.expired[index]
                and changed_at is not None
                and now - changed_at >= group.timeouts[index]
            ):
                state.expired[index] = True
                notify = True

        if not notify:
            return False

        values = tuple(
            None if expired else value
            for value, expired in zip(state.values, state.expired)
        )
        result = callback(values)
        if asyncio.iscoroutine(result):
            await result
        return True

    async def _poll_loop(self, group: PollGroup, callback: ValuesCallback) -> None:
        while not self._stop_event.is_set():
            try:
                await self.poll_once(group, callback)
            except asyncio.CancelledError:
                raise
            except Exception:
                LOGGER.exception("Poll group '%s' failed", group.name)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except asyncio.TimeoutError:
                continue
