from __future__ import annotations
import functools
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Union

from ..events import DeviceInfo, NavigationTrigger, TrackingEvent
from ..sampling import should_sample
from .engine import CaptureEngine
from .timers import TimerHandle, now_ms

log = logging.getLogger(__name__)

TRACKED_ATTR = "__replayux_tracked__"

# capture timings around interactions, ms
INITIAL_CAPTURE_DELAY = 500
TAP_FOLLOWUP_DELAY = 300
NAVIGATION_SETTLE_DELAYS = (200, 600)

_TRIGGER_LABELS: Dict[str, str] = {
    "back-button": "Back button",
    "swipe-back": "Swipe back",
    "tab": "Tab switch",
    "push": "Navigate",
    "pop": "Pop",
    "replace": "Replace",
    "unknown": "Navigate",
}


def navigation_label(trigger: NavigationTrigger, from_screen: Optional[str], to_screen: Optional[str]) -> str:
    return f"{_TRIGGER_LABELS.get(trigger, 'Navigate')}: {from_screen or '?'} → {to_screen or '?'}"


class TrackingBus:
    """In-process fan-out of tracking events. One per capture session, owned by the caller."""

    def __init__(self, clock: Callable[[], int] = now_ms):
        self._clock = clock
        self._handlers: List[Callable[[TrackingEvent], None]] = []

    def subscribe(self, handler: Callable[[TrackingEvent], None]) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)
        return unsubscribe

    def emit(self, event: Union[TrackingEvent, Dict]) -> TrackingEvent:
        """Stamp and deliver an event. Callers don't supply timestamps."""
        if isinstance(event, TrackingEvent):
            event = event.model_copy(update={"timestamp": self._clock()})
        else:
            event = TrackingEvent.model_validate({**event, "timestamp": self._clock()})
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                # subscriber errors stay on the bus
                log.exception("tracking subscriber %r failed on %s event", handler, event.type)
        return event

    def navigated(self, to_screen: Optional[str], from_screen: Optional[str] = None,
                  trigger: NavigationTrigger = "unknown") -> TrackingEvent:
        return self.emit({
            "type": "navigation",
            "screen": to_screen,
            "from_screen": from_screen,
            "navigation_trigger": trigger,
            "label": navigation_label(trigger, from_screen, to_screen),
        })


def press_coordinates(press: Any) -> Optional[Dict[str, float]]:
    """Pull page coordinates out of a press payload: mapping or object with x/y (or page_x/page_y)."""
    if press is None:
        return None
    if isinstance(press, dict):
        x, y = press.get("x", press.get("page_x")), press.get("y", press.get("page_y"))
    else:
        x, y = getattr(press, "x", getattr(press, "page_x", None)), getattr(press, "y", getattr(press, "page_y", None))
    if x is None or y is None:
        return None
    return {"x": float(x), "y": float(y)}


def tracked(bus: TrackingBus, label: Optional[str] = None, category: Optional[str] = None,
            screen: Optional[str] = None, metadata: Optional[Dict] = None, source: str = "explicit"):
    """
    Decorate a press handler so it emits a "press" tracking event before running.

    The handler's first positional argument is taken as the press payload and
    its coordinates (if any) travel with the event. A handler that is already
    tracked is returned untouched, so wrapping twice never double-counts.

        @tracked(bus, label="Buy now", category="conversion", screen="Product")
        def on_buy(press): ...
    """
    def decorate(handler: Callable) -> Callable:
        if getattr(handler, TRACKED_ATTR, False):
            return handler

        def _emit(args):
            bus.emit({
                "type": "press",
                "source": source,
                "label": label,
                "category": category,
                "screen": screen,
                "metadata": metadata,
                "coordinates": press_coordinates(args[0] if args else None),
            })

        if inspect.iscoroutinefunction(handler):
            @functools.wraps(handler)
            async def wrapper(*args, **kwargs):
                _emit(args)
                return await handler(*args, **kwargs)
        else:
            @functools.wraps(handler)
            def wrapper(*args, **kwargs):
                _emit(args)
                return handler(*args, **kwargs)

        setattr(wrapper, TRACKED_ATTR, True)
        return wrapper
    return decorate


class SessionBridge:
    """
    Wires a TrackingBus into a CaptureEngine and owns the session lifecycle:
    sampling decision, initial capture, screenshots around taps and
    navigations, and the app-state flush hook.
    """

    def __init__(self, engine: CaptureEngine, bus: TrackingBus, target: Any):
        self.engine = engine
        self.bus = bus
        self.target = target
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._pending: Set[TimerHandle] = set()
        self._began = False

    @property
    def sampled(self) -> bool:
        return should_sample(self.engine.user_id, self.engine.opts.sampling_rate)

    def begin(self, device_info: Optional[Union[DeviceInfo, Dict]] = None) -> bool:
        """Subscribe to the bus and start capturing if this user is sampled."""
        if device_info is not None:
            self.engine.set_device_info(device_info)
        if self._unsubscribe is None:
            self._unsubscribe = self.bus.subscribe(self._on_event)
        self._began = True
        return self._apply_sampling()

    def end(self) -> None:
        self._began = False
        self._cancel_pending()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.engine.active:
            self.engine.stop()

    def identify(self, user_id: str) -> bool:
        """Switch to an identified user; sampling is re-evaluated for the new id."""
        self.engine.set_user_id(user_id)
        if not self._began:
            return self.sampled
        return self._apply_sampling()

    def on_app_state_change(self, state: str):
        return self.engine.on_app_state_change(state)

    def _apply_sampling(self) -> bool:
        sampled = self.sampled
        if sampled and not self.engine.active:
            self.engine.start()
            self._later(INITIAL_CAPTURE_DELAY, self._initial_capture)
        elif not sampled and self.engine.active:
            log.info("user %s not sampled, stopping capture", self.engine.user_id)
            self._cancel_pending()
            self.engine.stop()
        return sampled

    def _initial_capture(self) -> None:
        self.engine.spawn(self.engine.capture_immediate(self.target))
        self.engine.start_periodic_capture(self.target)

    def _on_event(self, event: TrackingEvent) -> None:
        if not self.engine.active:
            return
        if event.type == "navigation":
            # departure screen first, then the new screen once it settles
            self._capture_now()
            self.engine.register_navigation({
                "timestamp": event.timestamp,
                "from": event.from_screen,
                "to": event.screen,
                "trigger": event.navigation_trigger or "unknown",
            })
            for delay in NAVIGATION_SETTLE_DELAYS:
                self._later(delay, self._capture_now)
            return

        if not event.coordinates:
            return
        self.engine.register_tap({
            "x": event.coordinates["x"],
            "y": event.coordinates["y"],
            "timestamp": event.timestamp,
            "screen": event.screen,
            "label": event.label,
            "category": event.category,
            "source": event.source,
        })
        # pressed state now, result of the tap a moment later
        self._capture_now()
        self._later(TAP_FOLLOWUP_DELAY, self._capture_throttled)

    def _capture_now(self) -> None:
        self.engine.spawn(self.engine.capture_immediate(self.target))

    def _capture_throttled(self) -> None:
        self.engine.spawn(self.engine.capture(self.target))

    def _later(self, delay_ms: float, fn: Callable[[], None]) -> None:
        handle: Optional[TimerHandle] = None

        def fire():
            self._pending.discard(handle)
            fn()
        handle = self.engine.scheduler.call_later(delay_ms, fire)
        self._pending.add(handle)

    def _cancel_pending(self) -> None:
        for handle in list(self._pending):
            handle.cancel()
        self._pending.clear()
