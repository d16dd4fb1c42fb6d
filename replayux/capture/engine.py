from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Type, TypeVar, Union

from pydantic import BaseModel

from ..config import CaptureOptions
from ..events import DeviceInfo, Frame, NavigationEvent, ScrollEvent, TapEvent, UploadBatch
from .collector import Collector
from .screenshot import Screenshotter
from .timers import AsyncioScheduler, Scheduler, TimerHandle, now_ms

log = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class CaptureResult(str, Enum):
    CAPTURED = "captured"
    THROTTLED = "throttled"
    FAILED = "failed"
    INACTIVE = "inactive"
    CAP_REACHED = "cap_reached"


class FlushResult(str, Enum):
    UPLOADED = "uploaded"
    FAILED = "failed"
    EMPTY = "empty"
    IN_FLIGHT = "in_flight"


class CaptureEngine:
    """
    Throttled screenshot capture with a hard per-session frame cap, idle-aware
    background capture, structured event buffering and batch upload.

    Everything runs on one asyncio loop. The only awaits are the screenshot
    and the upload; buffer mutations around them are synchronous so timer
    and interaction callbacks never observe a half-cleared buffer.
    """

    def __init__(
        self,
        options: CaptureOptions,
        screenshot: Screenshotter,
        collector: Collector,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.opts = options
        self._screenshot = screenshot
        self._collector = collector
        self._scheduler = scheduler or AsyncioScheduler()
        self._clock = clock

        self._frames: List[Frame] = []
        self._taps: List[TapEvent] = []
        self._scrolls: List[ScrollEvent] = []
        self._navigations: List[NavigationEvent] = []
        self._device_info: Optional[DeviceInfo] = None

        self._active = False
        self._idle = False
        self._flushing = False
        self._frame_count = 0
        self._last_capture_ts = 0
        self._last_interaction_ts = 0

        self._flush_timer: Optional[TimerHandle] = None
        self._capture_timer: Optional[TimerHandle] = None
        self._idle_timer: Optional[TimerHandle] = None
        self._periodic_target: Any = None
        self._tasks: Set[asyncio.Task] = set()

    # ---------- state ----------
    @property
    def active(self) -> bool:
        return self._active

    @property
    def idle(self) -> bool:
        return self._idle

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def last_interaction_ts(self) -> int:
        return self._last_interaction_ts

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    @property
    def periodic_capture_running(self) -> bool:
        return self._capture_timer is not None

    @property
    def user_id(self) -> str:
        return self.opts.user_id

    def set_user_id(self, user_id: str) -> None:
        self.opts = self.opts.model_copy(update={"user_id": user_id})

    def buffered(self) -> Dict[str, int]:
        return {
            "frames": len(self._frames),
            "taps": len(self._taps),
            "scrolls": len(self._scrolls),
            "navigations": len(self._navigations),
        }

    # ---------- lifecycle ----------
    def start(self) -> None:
        self._active = True
        self._idle = False
        self._last_interaction_ts = self._clock()
        self._cancel("_flush_timer")
        self._flush_timer = self._scheduler.call_every(self.opts.flush_interval_ms, self._on_flush_tick)
        self._reset_idle_timer()
        log.info("capture started for session %s", self.opts.session_id)

    def start_periodic_capture(self, target: Any) -> None:
        """Capture `target` every periodic_capture_ms while active and not idle."""
        self._periodic_target = target
        self._cancel("_capture_timer")
        if self.opts.periodic_capture_ms <= 0:
            return
        self._capture_timer = self._scheduler.call_every(self.opts.periodic_capture_ms, self._on_capture_tick)
        self._reset_idle_timer()

    def stop(self) -> Optional[asyncio.Task]:
        """Cancel every timer, go inactive, and kick off a final flush."""
        self._active = False
        self._cancel("_flush_timer")
        self._cancel("_capture_timer")
        self._cancel("_idle_timer")
        log.info("capture stopped for session %s after %d frames", self.opts.session_id, self._frame_count)
        return self.spawn(self.flush())

    async def close(self) -> FlushResult:
        """stop(), wait for everything it started, flush what is left and close the collector."""
        self.stop()
        await self.join()
        result = await self.flush()
        await self._collector.close()
        return result

    async def join(self) -> None:
        """Wait for timer-spawned captures and flushes."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ---------- idle detection ----------
    def notify_interaction(self) -> None:
        self._last_interaction_ts = self._clock()
        if self._idle:
            self._idle = False
            if self._periodic_target is not None:
                log.debug("interaction after idle, resuming periodic capture")
                self.start_periodic_capture(self._periodic_target)
        self._reset_idle_timer()

    def _reset_idle_timer(self) -> None:
        self._cancel("_idle_timer")
        if self.opts.idle_timeout_ms <= 0 or not self._active:
            return
        self._idle_timer = self._scheduler.call_later(self.opts.idle_timeout_ms, self._on_idle)

    def _on_idle(self) -> None:
        self._idle_timer = None
        if not self._active:
            return
        self._idle = True
        # only background capture pauses; interaction captures still go through
        self._cancel("_capture_timer")
        log.debug("idle for %dms, periodic capture paused", self.opts.idle_timeout_ms)

    # ---------- structured events ----------
    def set_device_info(self, info: Union[DeviceInfo, Dict]) -> None:
        self._device_info = info if isinstance(info, DeviceInfo) else DeviceInfo.model_validate(info)

    def register_tap(self, tap: Union[TapEvent, Dict]) -> bool:
        if not self._active:
            return False
        self.notify_interaction()
        tap = self._coerce(TapEvent, tap)
        if not tap.is_normalized and self._device_info is not None:
            tap = tap.model_copy(update={
                "normalized_x": tap.x / self._device_info.device_width,
                "normalized_y": tap.y / self._device_info.device_height,
            })
        self._taps.append(tap)
        return True

    def register_scroll(self, scroll: Union[ScrollEvent, Dict]) -> bool:
        if not self._active:
            return False
        self.notify_interaction()
        self._scrolls.append(self._coerce(ScrollEvent, scroll))
        return True

    def register_navigation(self, nav: Union[NavigationEvent, Dict]) -> bool:
        if not self._active:
            return False
        self.notify_interaction()
        self._navigations.append(self._coerce(NavigationEvent, nav))
        return True

    def _coerce(self, model: Type[M], data: Union[M, Dict]) -> M:
        if isinstance(data, model):
            return data
        data = dict(data)
        data.setdefault("timestamp", self._clock())
        return model.model_validate(data)

    # ---------- capture ----------
    async def capture(self, target: Any) -> CaptureResult:
        """Throttled screenshot of `target`."""
        blocked = self._gate()
        if blocked is not None:
            return blocked
        now = self._clock()
        if now - self._last_capture_ts < self.opts.throttle_ms:
            return CaptureResult.THROTTLED
        return await self._do_capture(target, now)

    async def capture_immediate(self, target: Any) -> CaptureResult:
        """Screenshot without the throttle; active state and frame cap still apply."""
        blocked = self._gate()
        if blocked is not None:
            return blocked
        return await self._do_capture(target, self._clock())

    def _gate(self) -> Optional[CaptureResult]:
        if not self._active:
            return CaptureResult.INACTIVE
        if self._frame_count >= self.opts.max_frames:
            log.info("frame cap %d reached, stopping", self.opts.max_frames)
            self.stop()
            return CaptureResult.CAP_REACHED
        return None

    async def _do_capture(self, target: Any, now: int) -> CaptureResult:
        self._last_capture_ts = now
        # count before awaiting so a concurrent attempt sees the cap
        self._frame_count += 1
        try:
            image = await self._screenshot(
                target,
                quality=self.opts.image_quality,
                width=self.opts.image_width,
                height=self.opts.image_height,
            )
        except Exception as e:
            self._frame_count -= 1
            log.warning("screenshot failed: %r", e)
            return CaptureResult.FAILED
        self._frames.append(Frame(timestamp=now, image=image))
        return CaptureResult.CAPTURED

    # ---------- upload ----------
    def _buffers_empty(self) -> bool:
        return not (self._frames or self._taps or self._scrolls or self._navigations)

    def _snapshot(self) -> UploadBatch:
        info = self._device_info
        batch = UploadBatch(
            session_id=self.opts.session_id,
            user_id=self.opts.user_id,
            device=self.opts.device,
            app_version=self.opts.app_version,
            device_width=info.device_width if info else None,
            device_height=info.device_height if info else None,
            frames=self._frames,
            taps=self._taps,
            scrolls=self._scrolls,
            navigations=self._navigations,
        )
        self._frames, self._taps, self._scrolls, self._navigations = [], [], [], []
        return batch

    async def flush(self) -> FlushResult:
        """Snapshot-and-clear every buffer into one batch and upload it."""
        if self._buffers_empty():
            return FlushResult.EMPTY
        if self._flushing:
            return FlushResult.IN_FLIGHT

        batch = self._snapshot()
        self._flushing = True
        try:
            await self._collector.upload(batch)
        except Exception as e:
            # batch is dropped, the engine keeps going
            log.warning("upload of %d frames for %s failed: %r", len(batch.frames), batch.session_id, e)
            return FlushResult.FAILED
        finally:
            self._flushing = False
        log.debug("flushed %d frames, %d taps, %d scrolls, %d navigations",
                  len(batch.frames), len(batch.taps), len(batch.scrolls), len(batch.navigations))
        return FlushResult.UPLOADED

    def on_app_state_change(self, state: str) -> Optional[asyncio.Task]:
        """Host lifecycle hook: anything other than "active" flushes right away."""
        if state == "active":
            return None
        return self.spawn(self.flush())

    # ---------- timer callbacks ----------
    def _on_flush_tick(self) -> None:
        self.spawn(self.flush())

    def _on_capture_tick(self) -> None:
        if self._active and self._periodic_target is not None and not self._idle:
            self.spawn(self.capture(self._periodic_target))

    def spawn(self, coro) -> Optional[asyncio.Task]:
        """Run `coro` on the current loop. Without a running loop it is dropped and None returned."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.warning("no running event loop, dropping %s", getattr(coro, "__qualname__", coro))
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel(self, attr: str) -> None:
        handle = getattr(self, attr)
        if handle is not None:
            handle.cancel()
            setattr(self, attr, None)
