"""Watcher lifecycle shared by every trigger source.

A watcher owns one background task (``start``/``stop`` with a stop event)
and hands triggers to its callback as fire-and-forget tasks. Nothing raised
by a tick or by the callback escapes the watcher: it is logged and the
watcher keeps running.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

TriggerCallback = Callable[..., Awaitable[Any]]
"""``async def on_trigger(trigger: str, data: Mapping[str, str] | None = None)``"""


class BaseWatcher(ABC):
    name = "watcher"

    def __init__(self, on_trigger: Optional[TriggerCallback] = None) -> None:
        self._on_trigger = on_trigger
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def _stopped(self) -> bool:
        return self._stop_event.is_set()

    def enabled(self) -> bool:
        """False when there is nothing to watch; `start` is then a no-op."""
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        if not self.enabled():
            logger.info("%s disabled.", self.name)
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._guarded_run(), name=self.name)
        logger.info("%s started.", self.name)

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        self._pending.clear()

    async def wait_idle(self) -> None:
        """Wait for every trigger handed out so far to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @abstractmethod
    async def _run(self) -> None:
        """Main loop; returns once ``_stop_event`` is set."""

    async def _guarded_run(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s crashed", self.name)

    async def _sleep(self, seconds: float) -> bool:
        """Wait ``seconds`` or until stopped; True when a stop was requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, seconds))
            return True
        except asyncio.TimeoutError:
            return self._stopped

    def _emit(self, trigger: str, data: Optional[Mapping[str, str]] = None) -> None:
        if self._on_trigger is None:
            logger.debug("%s: no handler for %s", self.name, trigger)
            return
        self._spawn(self._on_trigger(trigger, data), trigger)

    def _spawn(self, coro: Awaitable[Any], label: str) -> asyncio.Task[Any]:
        task = asyncio.ensure_future(self._guarded_callback(coro, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _guarded_callback(self, coro: Awaitable[Any], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: handler for %s failed", self.name, label)


class PollingWatcher(BaseWatcher):
    """Watcher that samples state periodically.

    Ticks run one after another, so a slow tick delays the next one instead
    of overlapping it.
    """

    interval_s: float = 10.0
    initial_delay_s: float = 0.0

    async def _before_first_tick(self) -> None:
        """Hook for an initial sample taken before the loop starts."""

    @abstractmethod
    async def tick(self) -> None: ...

    async def _run(self) -> None:
        await self._before_first_tick()
        if await self._sleep(self.initial_delay_s):
            return
        while not self._stopped:
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("%s tick failed", self.name)
            if await self._sleep(self.interval_s):
                return
