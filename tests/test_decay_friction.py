from __future__ import annotations

import numpy as np
import pytest

from bbpmeter.bbp import DecaySettings, ShotProfile
from bbpmeter.decay import DecaySegment, detect_decay_segment
from bbpmeter.friction import fit_drag_model, fit_friction


def linear_decay_profile(points: int = 35) -> ShotProfile:
    rise = [2000, 4000, 6000, 8000, 10000]
    decay = [10000 - 50 * k for k in range(1, points - len(rise) + 1)]
    sp = rise + decay
    t = [10.0 * (i + 1) for i in range(len(sp))]
    return ShotProfile(t_ms=t, sp=sp, n_refs=[7_500_000 // v for v in sp])


def test_linear_decay_segment_spans_tail():
    profile = linear_decay_profile()
    segment = detect_decay_segment(profile)
    assert segment is not None
    assert segment.start_index == 7
    assert segment.end_index == len(profile) - 1
    assert segment.confidence == 1.0
    assert segment.reason == "post-peak monotonic decay"


def test_decay_requires_enough_points():
    profile = linear_decay_profile(points=7)
    assert detect_decay_segment(profile) is None
    assert detect_decay_segment(None) is None


def test_flat_profile_has_no_decay():
    sp = [5000] * 12
    profile = ShotProfile(t_ms=[10.0 * (i + 1) for i in range(12)], sp=sp, n_refs=[1500] * 12)
    assert detect_decay_segment(profile) is None


def test_decay_after_sharp_rise_starts_past_smoothed_peak():
    # raw peak at index 4, then 10 strictly decreasing samples (indices 5..14)
    sp = [2000, 4000, 6000, 8000, 10000] + [10000 - 500 * k for k in range(1, 11)]
    profile = ShotProfile(t_ms=[10.0 * (i + 1) for i in range(len(sp))], sp=sp, n_refs=[7_500_000 // v for v in sp])
    segment = detect_decay_segment(profile)
    # the 5-point smoothed series peaks at index 5 (9000, tied with index 6)
    assert segment == DecaySegment(start_index=6, end_index=14, reason="post-peak monotonic decay", confidence=1.0)
    assert segment.length == 9


def test_min_points_setting_rejects_short_windows():
    profile = linear_decay_profile(points=14)
    assert detect_decay_segment(profile, DecaySettings(min_points=6)) is not None
    assert detect_decay_segment(profile, DecaySettings(min_points=20)) is None


@pytest.mark.parametrize("alpha, beta", [(0.002, 1e-7), (0.01, 0.0005)])
def test_drag_model_recovers_coefficients(alpha, beta):
    omega = np.linspace(1000.0, 5000.0, 20)
    decay = -(alpha * omega + beta * omega**2)
    fit = fit_drag_model(omega, decay)
    assert fit is not None
    assert fit.alpha == pytest.approx(alpha, rel=1e-6)
    assert fit.beta == pytest.approx(beta, rel=1e-6)
    assert fit.r2 == pytest.approx(1.0)
    assert fit.rmse < 1e-9 * np.abs(decay).max()
    assert fit.n_points == 20
    assert fit.warnings == []
    assert np.allclose(fit.predict([1000.0]), [alpha * 1000.0 + beta * 1e6])


def test_drag_model_flags_negative_coefficients():
    omega = np.linspace(1000.0, 5000.0, 20)
    fit = fit_drag_model(omega, -(-0.001 * omega + 2e-7 * omega**2))
    assert "alpha<0" in fit.warnings
    assert "beta<0" not in fit.warnings


def test_drag_model_needs_four_valid_points():
    assert fit_drag_model([1000.0, 2000.0, 3000.0], [-1.0, -2.0, -3.0]) is None
    assert fit_drag_model([0.0, -1.0, 1000.0, 2000.0, np.nan], [-1.0] * 5) is None
    with pytest.raises(ValueError):
        fit_drag_model([1.0, 2.0], [1.0])


def test_friction_fit_uses_segment_samples():
    profile = linear_decay_profile()
    segment = detect_decay_segment(profile)
    fit = fit_friction(profile, segment)
    assert fit is not None
    assert fit.n_points == segment.length
    assert fit_friction(profile, None) is None
    assert fit_friction(profile, DecaySegment(start_index=10, end_index=12, reason="manual", confidence=1.0)) is None
