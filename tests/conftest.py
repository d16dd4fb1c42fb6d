from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional

import pytest

from replayux.config import CaptureOptions
from replayux.capture.engine import CaptureEngine
from replayux.events import UploadBatch


class FakeClock:
    def __init__(self, now: float = 1_000_000):
        self.now = now

    def __call__(self):
        return self.now


class ManualTimer:
    def __init__(self, due: float, fn: Callable[[], None], interval: Optional[float] = None):
        self.due = due
        self.fn = fn
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-time timers. `advance` fires due callbacks in order and lets spawned tasks run."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[ManualTimer] = []

    def call_later(self, delay_ms, fn):
        t = ManualTimer(self.clock.now + delay_ms, fn)
        self.timers.append(t)
        return t

    def call_every(self, interval_ms, fn):
        t = ManualTimer(self.clock.now + interval_ms, fn, interval_ms)
        self.timers.append(t)
        return t

    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    async def advance(self, ms: float) -> None:
        end = self.clock.now + ms
        while True:
            due = [t for t in self.pending() if t.due <= end]
            if not due:
                break
            t = min(due, key=lambda t: t.due)
            self.clock.now = max(self.clock.now, t.due)
            if t.interval:
                t.due += t.interval
            else:
                t.cancelled = True
            t.fn()
            await settle()
        self.clock.now = end
        await settle()


class ManualFrames:
    """requestAnimationFrame stand-in: callbacks run only when the test steps."""

    def __init__(self):
        self.queue: List[ManualTimer] = []

    def request_frame(self, fn):
        t = ManualTimer(0, fn)
        self.queue.append(t)
        return t

    def pending(self) -> List[ManualTimer]:
        return [t for t in self.queue if not t.cancelled]

    def step(self) -> int:
        ready = self.pending()
        self.queue = []
        for t in ready:
            t.cancelled = True
            t.fn()
        return len(ready)


async def settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeScreenshotter:
    def __init__(self):
        self.calls = 0
        self.fail = False
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, target, *, quality, width, height):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("view not mounted")
        return f"img-{self.calls}"


class FakeCollector:
    def __init__(self):
        self.batches: List[UploadBatch] = []
        self.calls = 0
        self.fail = False
        self.closed = False
        self.gate: Optional[asyncio.Event] = None

    async def upload(self, batch: UploadBatch) -> None:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise ConnectionError("collector unreachable")
        self.batches.append(batch)

    async def close(self) -> None:
        self.closed = True


class FakeRedis:
    """The handful of redis commands the session store uses, in memory."""

    def __init__(self):
        self.kv: Dict[str, bytes] = {}
        self.sets: Dict[str, set] = {}

    def ping(self):
        return True

    def get(self, key):
        return self.kv.get(key)

    def set(self, key, value):
        self.kv[key] = value.encode("utf-8") if isinstance(value, str) else value
        return True

    def sadd(self, key, *members):
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(m.encode("utf-8") if isinstance(m, str) else m for m in members)
        return len(s) - before

    def smembers(self, key):
        return set(self.sets.get(key, set()))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock) -> ManualScheduler:
    return ManualScheduler(clock)


@pytest.fixture
def screenshot() -> FakeScreenshotter:
    return FakeScreenshotter()


@pytest.fixture
def collector() -> FakeCollector:
    return FakeCollector()


@pytest.fixture
def make_engine(clock, scheduler, screenshot, collector):
    def make(**overrides) -> CaptureEngine:
        opts = {
            "session_id": "sess-1",
            "user_id": "user-1",
            "device": "Pixel 8",
            "app_version": "1.2.0",
            "sampling_rate": 1.0,
            "max_frames": 500,
            "throttle_ms": 200,
            "flush_interval_ms": 10_000,
            "periodic_capture_ms": 1_000,
            "idle_timeout_ms": 10_000,
        }
        opts.update(overrides)
        return CaptureEngine(CaptureOptions(**opts), screenshot, collector, scheduler=scheduler, clock=clock)
    return make


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
