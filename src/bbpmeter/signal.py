"""Numeric primitives shared by the shot analysis modules."""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np

ArrayLike = Sequence[float] | np.ndarray


def smooth_moving_average(y: ArrayLike, window: int = 5) -> np.ndarray:
    """Centered moving average; edge windows shrink and non-finite samples are ignored."""

    values = np.asarray(y, dtype=float)
    if values.size == 0 or window <= 1:
        return values.copy()

    half = max(1, int(window)) // 2
    n = values.size
    out = np.empty(n, dtype=float)
    for i in range(n):
        segment = values[max(0, i - half) : min(n, i + half + 1)]
        segment = segment[np.isfinite(segment)]
        out[i] = segment.sum() / segment.size if segment.size else values[i]
    return out


def derivative_central(x: ArrayLike, y: ArrayLike) -> np.ndarray:
    """Central-difference derivative dy/dx with one-sided ends.

    Interior points whose neighbours share a timestamp inherit the previous
    derivative; non-finite results are replaced by 0.
    """

    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    n = min(xs.size, ys.size)
    if n == 0:
        return np.zeros(0, dtype=float)
    if n == 1:
        return np.zeros(1, dtype=float)

    d = np.empty(n, dtype=float)
    dx0 = xs[1] - xs[0]
    d[0] = (ys[1] - ys[0]) / dx0 if dx0 != 0 else 0.0
    for i in range(1, n - 1):
        dx = xs[i + 1] - xs[i - 1]
        d[i] = (ys[i + 1] - ys[i - 1]) / dx if dx != 0 else d[i - 1]
    dx_n = xs[n - 1] - xs[n - 2]
    d[n - 1] = (ys[n - 1] - ys[n - 2]) / dx_n if dx_n != 0 else d[n - 2]

    d[~np.isfinite(d)] = 0.0
    return d


def build_time_grid(start: float, end: float, step: float) -> np.ndarray:
    """Regular grid ``start, start + step, ...`` up to and including *end*."""

    if step <= 0 or not math.isfinite(step):
        raise ValueError("step must be a positive finite number")
    if end < start:
        return np.zeros(0, dtype=float)
    count = int(math.floor((end - start) / step + 1e-9)) + 1
    return start + step * np.arange(count, dtype=float)


def resample_linear(time: ArrayLike, value: ArrayLike, new_time: ArrayLike) -> np.ndarray:
    """Linearly interpolate *value* onto *new_time*; points outside the source span are NaN."""

    t = np.asarray(time, dtype=float)
    v = np.asarray(value, dtype=float)
    x = np.asarray(new_time, dtype=float)
    if t.size < 2 or v.size < 2:
        return np.full(x.shape, np.nan)
    if t.size != v.size:
        raise ValueError("time and value must have identical length")

    idx = np.clip(np.searchsorted(t, x, side="left"), 1, t.size - 1)
    x0 = t[idx - 1]
    x1 = t[idx]
    y0 = v[idx - 1]
    y1 = v[idx]
    span = x1 - x0
    frac = np.divide(x - x0, span, out=np.zeros_like(x), where=span != 0)
    out = y0 + (y1 - y0) * frac
    out[(x < t[0]) | (x > t[-1])] = np.nan
    return out


def quantile(values: ArrayLike, q: float) -> float:
    """Quantile from linearly interpolated order statistics (NaN for no data)."""

    data = np.sort(np.asarray(values, dtype=float))
    if data.size == 0:
        return float("nan")
    pos = (data.size - 1) * q
    base = int(math.floor(pos))
    rest = pos - base
    if base + 1 < data.size:
        return float(data[base] + rest * (data[base + 1] - data[base]))
    return float(data[base])
