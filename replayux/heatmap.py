from __future__ import annotations
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .events import HeatmapPoint, SessionDoc

TAP_COLUMNS = ["session_id", "app_version", "screen", "x", "y", "normalized_x", "normalized_y", "timestamp"]


def taps_frame(sessions: Iterable[SessionDoc]) -> pd.DataFrame:
    """One row per tap across sessions, tagged with session id and app version."""
    rows = []
    for s in sessions:
        for t in s.taps:
            rows.append({
                "session_id": s.session_id,
                "app_version": s.app_version,
                "screen": t.screen,
                "x": t.x,
                "y": t.y,
                "normalized_x": t.normalized_x,
                "normalized_y": t.normalized_y,
                "timestamp": t.timestamp,
            })
    return pd.DataFrame(rows, columns=TAP_COLUMNS)


def _positive(v: Optional[float]) -> Optional[float]:
    return v if v is not None and v > 0 else None


def aggregate_heatmap_points(sessions: Iterable[SessionDoc], screen: str, app_version: str,
                             normalization_width: Optional[float] = None,
                             normalization_height: Optional[float] = None) -> List[HeatmapPoint]:
    """
    Heatmap points for one screen of one app version.
    Stored normalized coordinates win; otherwise raw x/y are scaled by the
    given normalization size when both sides are > 0. Taps that can't be
    normalized either way are dropped rather than guessed.
    """
    df = taps_frame(sessions)
    df = df[(df["app_version"] == app_version) & (df["screen"] == screen)]
    if df.empty:
        return []

    w, h = _positive(normalization_width), _positive(normalization_height)
    nx = pd.to_numeric(df["normalized_x"], errors="coerce")
    ny = pd.to_numeric(df["normalized_y"], errors="coerce")
    has_norm = nx.notna() & ny.notna()
    if w and h:
        nx = nx.where(has_norm, df["x"] / w)
        ny = ny.where(has_norm, df["y"] / h)
    keep = nx.notna() & ny.notna()

    xs = np.clip(nx[keep].to_numpy(dtype=float), 0.0, 1.0)
    ys = np.clip(ny[keep].to_numpy(dtype=float), 0.0, 1.0)
    return [HeatmapPoint(x=float(x), y=float(y)) for x, y in zip(xs, ys)]


def heatmap_grid(points: List[HeatmapPoint], cols: int = 36, rows: int = 64) -> np.ndarray:
    """Point density on a rows x cols grid, scaled to [0, 1] (all zeros when empty)."""
    grid = np.zeros((rows, cols), dtype=float)
    if not points:
        return grid
    xs = np.array([p.x for p in points])
    ys = np.array([p.y for p in points])
    grid, _, _ = np.histogram2d(ys, xs, bins=[rows, cols], range=[[0.0, 1.0], [0.0, 1.0]])
    peak = grid.max()
    return grid / peak if peak > 0 else grid


def available_screens(sessions: Iterable[SessionDoc]) -> List[str]:
    df = taps_frame(sessions)
    return [s for s in df["screen"].dropna().unique().tolist() if s]


def available_versions(sessions: Iterable[SessionDoc]) -> List[str]:
    seen = []
    for s in sessions:
        if s.app_version and s.app_version not in seen:
            seen.append(s.app_version)
    return seen
