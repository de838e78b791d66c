from __future__ import annotations

import numpy as np
import pytest

from bbpmeter.aggregate import aggregate_series
from bbpmeter.signal import build_time_grid, derivative_central, quantile, resample_linear, smooth_moving_average


def test_moving_average_shrinks_at_edges():
    smoothed = smooth_moving_average([1.0, 2.0, 3.0, 4.0, 5.0], 3)
    assert np.allclose(smoothed, [1.5, 2.0, 3.0, 4.0, 4.5])


def test_moving_average_ignores_nan():
    smoothed = smooth_moving_average([1.0, np.nan, 3.0], 3)
    assert np.allclose(smoothed, [1.0, 2.0, 3.0])


def test_central_derivative():
    assert np.allclose(derivative_central([0.0, 1.0, 2.0], [0.0, 1.0, 4.0]), [1.0, 2.0, 3.0])
    assert np.allclose(derivative_central([5.0], [1.0]), [0.0])


def test_time_grid_is_inclusive():
    assert np.allclose(build_time_grid(0.0, 1.0, 0.25), [0.0, 0.25, 0.5, 0.75, 1.0])
    with pytest.raises(ValueError):
        build_time_grid(0.0, 1.0, 0.0)


def test_resample_outside_span_is_nan():
    out = resample_linear([0.0, 10.0], [0.0, 100.0], [-5.0, 0.0, 2.5, 10.0, 15.0])
    assert np.isnan(out[0]) and np.isnan(out[-1])
    assert np.allclose(out[1:4], [0.0, 25.0, 100.0])


def test_quantile_interpolates_order_statistics():
    assert quantile([4.0, 1.0, 3.0, 2.0], 0.25) == pytest.approx(1.75)
    assert quantile([4.0, 1.0, 3.0, 2.0], 0.5) == pytest.approx(2.5)
    assert np.isnan(quantile([], 0.5))


def test_aggregate_of_single_series_is_identity():
    t = np.arange(0.0, 101.0, 1.0)
    y = np.sin(t / 10.0)
    band = aggregate_series([(t, y)], 0.0, 100.0, 1.0)
    assert np.allclose(band.mean, y)
    assert np.allclose(band.median, y)
    assert np.allclose(band.p25, y)
    assert np.allclose(band.p75, y)
    assert np.all(band.n_valid == 1)


def test_aggregate_counts_only_covered_points():
    series = [([0.0, 10.0, 20.0], [0.0, 10.0, 20.0]), ([0.0, 10.0], [10.0, 20.0])]
    band = aggregate_series(series, 0.0, 30.0, 10.0)
    assert band.n_valid.tolist() == [2, 2, 1, 0]
    assert band.mean[0] == pytest.approx(5.0)
    assert band.p25[0] == pytest.approx(2.5)
    assert band.p75[0] == pytest.approx(7.5)
    assert band.mean[2] == pytest.approx(20.0)
    assert np.isnan(band.mean[3])
    frame = band.to_frame()
    assert list(frame.columns) == ["t_ms", "mean", "median", "p25", "p75", "n_valid"]


def test_aggregate_without_series():
    band = aggregate_series([], 0.0, 20.0, 10.0)
    assert band.n_valid.tolist() == [0, 0, 0]
    assert np.all(np.isnan(band.median))
