from __future__ import annotations
import asyncio
import time
from typing import Callable, Optional, Protocol


def now_ms() -> int:
    return int(time.time() * 1000)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Where the engine arms its timers. Callbacks run on the host loop."""

    def call_later(self, delay_ms: float, fn: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_ms: float, fn: Callable[[], None]) -> TimerHandle: ...


class _Repeating:
    def __init__(self, loop: asyncio.AbstractEventLoop, interval_ms: float, fn: Callable[[], None]):
        self._loop = loop
        self._interval = interval_ms / 1000.0
        self._fn = fn
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._arm()

    def _arm(self):
        self._handle = self._loop.call_later(self._interval, self._tick)

    def _tick(self):
        if self._cancelled:
            return
        self._arm()
        self._fn()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """setTimeout / setInterval on top of the running asyncio loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay_ms: float, fn: Callable[[], None]) -> TimerHandle:
        return self.loop.call_later(delay_ms / 1000.0, fn)

    def call_every(self, interval_ms: float, fn: Callable[[], None]) -> TimerHandle:
        return _Repeating(self.loop, interval_ms, fn)
