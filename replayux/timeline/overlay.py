from __future__ import annotations
from typing import Dict, List, Optional, Sequence

from ..events import TapEvent

TAP_FADE_MS = 600
REPLAY_WIDTH = 360


def format_ms(ms: float) -> str:
    """m:ss"""
    total = max(0, int(ms // 1000))
    return f"{total // 60}:{total % 60:02d}"


def replay_size(device_width: Optional[float], device_height: Optional[float],
                replay_width: float = REPLAY_WIDTH) -> Optional[Dict[str, float]]:
    # unknown device size → no overlay geometry
    if not device_width or not device_height or device_width <= 0 or device_height <= 0:
        return None
    return {"width": replay_width, "height": replay_width * device_height / device_width}


def visible_taps(taps: Sequence[TapEvent], base_ts: int, offset_ms: float,
                 device_width: Optional[float], device_height: Optional[float],
                 fade_ms: float = TAP_FADE_MS, replay_width: float = REPLAY_WIDTH) -> List[Dict]:
    """
    Taps to draw on top of the frame at `offset_ms` into the session: those
    that happened in the last `fade_ms`, fading linearly, scaled from device
    pixels into the replay viewport.
    """
    size = replay_size(device_width, device_height, replay_width)
    if size is None:
        return []
    sx = size["width"] / device_width
    sy = size["height"] / device_height
    out = []
    for tap in taps:
        age = offset_ms - (tap.timestamp - base_ts)
        if age < 0 or age > fade_ms:
            continue
        out.append({
            "tap": tap,
            "opacity": max(0.0, 1.0 - age / fade_ms),
            "x": tap.x * sx,
            "y": tap.y * sy,
        })
    return out
