from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from ..capture.timers import TimerHandle
from ..events import Frame
from .search import require_frames, duration_ms, find_frame_index_for_timestamp, seek_timestamp

log = logging.getLogger(__name__)

RENDER_FPS = 60


def perf_ms() -> float:
    return time.perf_counter() * 1000.0


class FrameScheduler(Protocol):
    """requestAnimationFrame: run `fn` once on the next render tick."""

    def request_frame(self, fn: Callable[[], None]) -> TimerHandle: ...


class AsyncioFrameScheduler:
    def __init__(self, fps: int = RENDER_FPS, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._delay = 1.0 / fps
        self._loop = loop

    def request_frame(self, fn: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(self._delay, fn)


class TimelinePlayer:
    """
    Plays a time-ordered frame sequence at real-time pace times `rate`.

    Each render callback recomputes virtual elapsed time from the clock, so a
    late or irregular callback never slows playback down; it just skips
    ahead. Only one callback chain is ever pending: play, pause, seek and
    load all cancel it before touching the index.
    """

    def __init__(self, frames: Sequence[Frame], scheduler: Optional[FrameScheduler] = None,
                 clock: Callable[[], float] = perf_ms, rate: float = 1.0):
        self._scheduler = scheduler or AsyncioFrameScheduler()
        self._clock = clock
        self._rate = self._check_rate(rate)
        self._listeners: List[Callable[[int, Frame], None]] = []
        self._pending: Optional[TimerHandle] = None
        self._playing = False
        self._start_instant = 0.0
        self._base_ts = 0
        self.load(frames)

    # ---------- state ----------
    @property
    def frames(self) -> Tuple[Frame, ...]:
        return self._frames

    @property
    def index(self) -> int:
        return self._index

    @property
    def frame(self) -> Frame:
        return self._frames[self._index]

    @property
    def playing(self) -> bool:
        return self._playing

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def duration_ms(self) -> int:
        return duration_ms(self._frames)

    @property
    def offset_ms(self) -> int:
        return self.frame.timestamp - self._frames[0].timestamp

    @property
    def progress(self) -> float:
        total = self.duration_ms
        if total <= 0:
            return 0.0
        return min(1.0, max(0.0, self.offset_ms / total))

    def on_frame(self, listener: Callable[[int, Frame], None]) -> Callable[[], None]:
        """Called with (index, frame) whenever the displayed frame changes."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # ---------- controls ----------
    def load(self, frames: Sequence[Frame]) -> None:
        require_frames(frames)
        self._cancel_loop()
        self._playing = False
        self._frames = tuple(frames)
        self._index = 0
        self._emit()

    def play(self) -> None:
        self._cancel_loop()
        self._playing = True
        self._base_ts = self._frames[self._index].timestamp
        self._start_instant = self._clock()
        self._tick()

    def pause(self) -> None:
        self._cancel_loop()
        self._playing = False

    def toggle(self) -> None:
        if self._playing:
            self.pause()
        else:
            self.play()

    def set_rate(self, rate: float) -> None:
        self._rate = self._check_rate(rate)
        if self._playing:
            # restart the clock from where we are so past time isn't rescaled
            self.play()

    def seek(self, position: float) -> int:
        """Scrub to a position in [0, 1] of the session's duration."""
        self.pause()
        return self._set_index(find_frame_index_for_timestamp(self._frames, seek_timestamp(self._frames, position)))

    def seek_to_timestamp(self, timestamp: float) -> int:
        self.pause()
        return self._set_index(find_frame_index_for_timestamp(self._frames, timestamp))

    def seek_to_index(self, index: int) -> int:
        if not 0 <= index < len(self._frames):
            raise ValueError(f"frame index {index} out of range 0..{len(self._frames) - 1}")
        self.pause()
        return self._set_index(index)

    # ---------- render loop ----------
    def _tick(self) -> None:
        self._pending = None
        if not self._playing:
            return
        elapsed = (self._clock() - self._start_instant) * self._rate
        last = len(self._frames) - 1
        i = self._index
        while i < last and self._frames[i + 1].timestamp - self._base_ts <= elapsed:
            i += 1
        self._set_index(i)
        if i < last:
            self._pending = self._scheduler.request_frame(self._tick)
        else:
            self._playing = False
            log.debug("playback reached last frame %d", last)

    def _set_index(self, index: int) -> int:
        if index != self._index:
            self._index = index
            self._emit()
        return index

    def _emit(self) -> None:
        frame = self._frames[self._index]
        for listener in list(self._listeners):
            listener(self._index, frame)

    def _cancel_loop(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    @staticmethod
    def _check_rate(rate: float) -> float:
        if rate <= 0:
            raise ValueError(f"playback rate must be positive, got {rate}")
        return float(rate)
