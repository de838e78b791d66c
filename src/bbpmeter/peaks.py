"""Peak location and time-axis alignment for speed series."""
from __future__ import annotations

from typing import Optional, Sequence

import numpy as np

from .bbp.config import FirstPeakOptions, PeakRobustOptions
from .bbp.packets import ShotProfile
from .signal import smooth_moving_average

ALIGN_MODES = ("start", "peak", "t50", "crossing")


def _first_argmax(values: np.ndarray) -> int:
    return int(np.flatnonzero(values == values.max())[0])


def find_peak_index_robust(
    t: Sequence[float],
    y: Sequence[float],
    options: Optional[PeakRobustOptions] = None,
) -> int:
    """Arg-max of the smoothed series among samples at or after ``min_t``."""

    cfg = options or PeakRobustOptions()
    ts = np.asarray(t, dtype=float)
    ys_raw = np.asarray(y, dtype=float)
    if ts.size == 0 or ys_raw.size == 0:
        return 0

    ys = smooth_moving_average(ys_raw, cfg.window)
    best_idx = 0
    best_val = float("-inf")
    for i in range(min(ts.size, ys.size)):
        if ts[i] < cfg.min_t:
            continue
        if ys[i] > best_val:
            best_val = float(ys[i])
            best_idx = i

    if best_val == float("-inf"):
        return _first_argmax(ys_raw)
    return best_idx


def find_first_peak_index(
    t: Sequence[float],
    sp: Sequence[float],
    options: Optional[FirstPeakOptions] = None,
) -> int:
    """First strict local maximum of the lightly smoothed series that clears the height and time floors."""

    cfg = options or FirstPeakOptions()
    ts = np.asarray(t, dtype=float)
    values = np.asarray(sp, dtype=float)
    if ts.size == 0 or values.size == 0:
        return 0
    if values.size < 3:
        return _first_argmax(values)

    smoothed = smooth_moving_average(values, 3)
    global_max = float(smoothed.max())
    peak_min = max(cfg.min_peak_sp_abs, global_max * cfg.min_peak_ratio)

    for i in range(1, smoothed.size - 1):
        if not (smoothed[i - 1] < smoothed[i] >= smoothed[i + 1]):
            continue
        if smoothed[i] < peak_min:
            continue
        if (ts[i] if i < ts.size else 0.0) < cfg.min_peak_time_ms:
            continue
        return i

    return _first_argmax(smoothed)


def find_crossing_time(t: Sequence[float], y: Sequence[float], ratio: float) -> float:
    """Interpolated time at which *y* first rises through ``ratio * max(y)``; first sample time otherwise."""

    ts = np.asarray(t, dtype=float)
    ys = np.asarray(y, dtype=float)
    if ts.size == 0 or ys.size == 0:
        return 0.0
    threshold = float(ys.max()) * ratio
    for i in range(1, ys.size):
        y0 = ys[i - 1]
        y1 = ys[i]
        if y0 < threshold <= y1:
            x0 = ts[i - 1]
            x1 = ts[i]
            r = 0.0 if y1 == y0 else (threshold - y0) / (y1 - y0)
            return float(x0 + (x1 - x0) * r)
    return float(ts[0])


def alignment_anchor(
    t: Sequence[float],
    y: Sequence[float],
    mode: str = "peak",
    *,
    crossing_ratio: float = 0.7,
    peak_options: Optional[PeakRobustOptions] = None,
) -> float:
    if mode not in ALIGN_MODES:
        raise ValueError(f"Unsupported alignment mode '{mode}'")
    ts = np.asarray(t, dtype=float)
    if ts.size == 0:
        return 0.0
    if mode == "peak":
        idx = find_peak_index_robust(ts, y, peak_options)
        return float(ts[idx]) if idx < ts.size else float(ts[0])
    if mode == "t50":
        return find_crossing_time(ts, y, 0.5)
    if mode == "crossing":
        return find_crossing_time(ts, y, crossing_ratio)
    return float(ts[0])


def align_time(
    t: Sequence[float],
    y: Sequence[float],
    mode: str = "peak",
    *,
    crossing_ratio: float = 0.7,
    peak_options: Optional[PeakRobustOptions] = None,
) -> np.ndarray:
    """Time axis shifted so the chosen anchor sits at zero."""

    ts = np.asarray(t, dtype=float)
    if ts.size == 0 or len(y) == 0:
        return np.zeros(0, dtype=float)
    anchor = alignment_anchor(ts, y, mode, crossing_ratio=crossing_ratio, peak_options=peak_options)
    return ts - anchor


def to_first_peak_profile(
    profile: Optional[ShotProfile],
    options: Optional[FirstPeakOptions] = None,
) -> Optional[ShotProfile]:
    """Truncate *profile* after its first peak."""

    if profile is None or len(profile) == 0:
        return None
    peak_index = find_first_peak_index(profile.t_ms, profile.sp, options)
    end = max(0, min(len(profile) - 1, peak_index))
    return profile.head(end)
