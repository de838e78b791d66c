"""Cross-shot banded statistics on a common time grid."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .bbp.config import AggregateGrid
from .signal import build_time_grid, quantile, resample_linear


@dataclass(frozen=True)
class AggregateSeries:
    new_time: np.ndarray
    mean: np.ndarray
    median: np.ndarray
    p25: np.ndarray
    p75: np.ndarray
    n_valid: np.ndarray

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "t_ms": self.new_time,
                "mean": self.mean,
                "median": self.median,
                "p25": self.p25,
                "p75": self.p75,
                "n_valid": self.n_valid,
            }
        )


def aggregate_series(
    series: Iterable[Tuple[Sequence[float], Sequence[float]]],
    start: float = -600.0,
    end: float = 1200.0,
    step: float = 10.0,
) -> AggregateSeries:
    """Resample each ``(t, y)`` series onto the grid and summarise every grid point.

    Values outside a series' own time span are missing and do not count
    towards ``n_valid``; grid points with no data are NaN.
    """
    new_time = build_time_grid(start, end, step)
    rows = [resample_linear(t, y, new_time) for t, y in series]
    matrix = np.vstack(rows) if rows else np.empty((0, new_time.size))

    size = new_time.size
    mean = np.full(size, np.nan)
    median = np.full(size, np.nan)
    p25 = np.full(size, np.nan)
    p75 = np.full(size, np.nan)
    n_valid = np.zeros(size, dtype=int)

    for i in range(size):
        column = matrix[:, i]
        values = column[np.isfinite(column)]
        n_valid[i] = values.size
        if values.size == 0:
            continue
        mean[i] = values.sum() / values.size
        median[i] = quantile(values, 0.5)
        p25[i] = quantile(values, 0.25)
        p75[i] = quantile(values, 0.75)

    return AggregateSeries(new_time=new_time, mean=mean, median=median, p25=p25, p75=p75, n_valid=n_valid)


def aggregate_on_grid(
    series: Iterable[Tuple[Sequence[float], Sequence[float]]],
    grid: Optional[AggregateGrid] = None,
) -> AggregateSeries:
    grid = grid or AggregateGrid()
    return aggregate_series(series, grid.start, grid.end, grid.step)
