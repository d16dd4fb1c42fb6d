from __future__ import annotations
from typing import Sequence

from ..events import Frame


def require_frames(frames: Sequence[Frame]) -> None:
    if not frames:
        raise ValueError("timeline needs at least one frame")


def find_frame_index_for_timestamp(frames: Sequence[Frame], timestamp: float) -> int:
    """
    Index of the frame closest to `timestamp`. Frames must be sorted by timestamp.

    Lower-bound binary search for the first frame at or after `timestamp`, then
    pick whichever of it and its predecessor is nearer; ties go to the
    predecessor. Before the first frame → 0, past the last → last index.
    """
    require_frames(frames)
    lo, hi = 0, len(frames) - 1
    while lo < hi:
        mid = (lo + hi) // 2
        if frames[mid].timestamp < timestamp:
            lo = mid + 1
        else:
            hi = mid
    prev = max(0, lo - 1)
    if abs(frames[prev].timestamp - timestamp) <= abs(frames[lo].timestamp - timestamp):
        return prev
    return lo


def duration_ms(frames: Sequence[Frame]) -> int:
    require_frames(frames)
    return frames[-1].timestamp - frames[0].timestamp


def seek_timestamp(frames: Sequence[Frame], position: float) -> float:
    """Map a scrub position in [0, 1] (clamped) onto the session's time span."""
    require_frames(frames)
    position = min(1.0, max(0.0, position))
    return frames[0].timestamp + position * duration_ms(frames)


def find_frame_index_for_position(frames: Sequence[Frame], position: float) -> int:
    return find_frame_index_for_timestamp(frames, seek_timestamp(frames, position))
