from __future__ import annotations

import pytest

from bbpmeter.bbp import ScoreSettings, ShotProfile, ShotSnapshot
from bbpmeter.candidates import compute_score_candidates, explore_thresholds
from bbpmeter.features import EMPTY_FEATURES
from bbpmeter.stats import (
    BAND_DEFS,
    build_band_stats,
    build_histogram,
    compute_launcher_efficiency,
    compute_profile_metrics,
    compute_stats,
    get_band,
    is_suspect_shot,
)

CANDIDATE_PROFILE = ShotProfile(
    t_ms=[20.0, 50.0, 90.0, 120.0],
    sp=[5000, 9000, 7000, 6000],
    n_refs=[1500, 833, 1071, 1250],
)


def snapshot(est_sp: int, *, your_sp: int | None = None, max_sp: int | None = None, profile=None) -> ShotSnapshot:
    return ShotSnapshot(
        your_sp=est_sp if your_sp is None else your_sp,
        est_sp=est_sp,
        max_sp=est_sp if max_sp is None else max_sp,
        shot_count=1,
        profile=profile,
        launch_marker_ms=None,
        est_reason="same_as_your",
        received_at=0.0,
    )


def test_score_candidates():
    scores = compute_score_candidates(CANDIDATE_PROFILE, time_trim_ms=80, nrefs_min=1000)
    assert scores.raw_peak == 9000
    assert scores.trim_peak_by_time_40 == 9000
    assert scores.trim_peak_by_time_100 == 6000
    assert scores.trim_peak_by_nrefs == 7000
    assert scores.ma3_peak == 7333
    assert scores.peak_neighborhood == 7000
    assert scores.top3_mean_trim == 6500
    assert compute_score_candidates(None).raw_peak == 0


def test_explore_thresholds_finds_exact_fit():
    result = explore_thresholds(CANDIDATE_PROFILE, 7000)
    assert len(result.all) == 36
    assert result.is_exact_match
    assert (result.best.t_ms_threshold, result.best.nrefs_min) == (0, 1000)
    assert all(fit.error_abs == 0 for fit in result.ties)
    assert explore_thresholds(None, 7000).best is None


def test_session_stats():
    history = [snapshot(5000), snapshot(6000), snapshot(7000)]
    stats = compute_stats(history, "est")
    assert (stats.total, stats.min, stats.max, stats.avg) == (3, 5000, 7000, 6000)
    assert stats.stddev == pytest.approx(816.5)
    assert compute_stats([], "est").total == 0
    with pytest.raises(ValueError):
        compute_stats(history, "median")


def test_histogram_bins():
    history = [snapshot(5100), snapshot(5400), snapshot(6200)]
    bins = build_histogram(history, "est", bin_size=500)
    assert [(b.label, b.count) for b in bins] == [("5000-5499", 2), ("6000-6499", 1)]


def test_bands():
    assert BAND_DEFS[0].id == "0-3999"
    assert BAND_DEFS[-1].id == "12000+"
    assert get_band(3999) == "0-3999"
    assert get_band(4500) == "4000-4999"
    assert get_band(11999) == "11000-11999"
    assert get_band(12000) == "12000+"
    assert get_band(-1) is None

    bands = build_band_stats([(4200.0, EMPTY_FEATURES), (4800.0, EMPTY_FEATURES), (9000.0, EMPTY_FEATURES)])
    assert bands["4000-4999"].count == 2
    assert bands["4000-4999"].mean == pytest.approx(4500.0)
    assert bands["9000-9999"].max == 9000.0
    assert bands["0-3999"].count == 0
    assert bands["4000-4999"].feature_summary["t_peak"].p50 == 0.0


def test_profile_metrics():
    sp = [1000, 3000, 5000, 4000, 3500, 3000, 2500]
    profile = ShotProfile(t_ms=[10.0 * (i + 1) for i in range(7)], sp=sp, n_refs=[7_500_000 // v for v in sp])
    metrics = compute_profile_metrics(snapshot(5000, profile=profile))
    assert metrics.peak_sp == 5000
    assert metrics.time_to_peak_ms == pytest.approx(30.0)
    assert metrics.rise_slope == pytest.approx(166.667)
    assert metrics.decay_rate == pytest.approx(-62.5)
    assert metrics.smoothness == pytest.approx(6500.0)
    assert metrics.hold_ratio == pytest.approx(0.6)
    assert compute_profile_metrics(snapshot(5000)) is None


def test_suspect_shot():
    short = ShotProfile.from_n_refs([1000, 1100, 1200])
    assert is_suspect_shot(snapshot(7000, profile=short))
    long = ShotProfile.from_n_refs([1000] * 10)
    assert not is_suspect_shot(snapshot(7500, profile=long))
    assert is_suspect_shot(snapshot(7500, your_sp=5000, profile=long))
    assert not is_suspect_shot(snapshot(7500, profile=short), ScoreSettings(suspect_min_profile_points=3))
    assert not is_suspect_shot(None)


def test_launcher_efficiency():
    eff = compute_launcher_efficiency(330000.0, "string")
    assert eff.theoretical_auc == 660000.0
    assert eff.eff_ratio == pytest.approx(0.5)
    assert eff.eff_percent == pytest.approx(50.0)
    assert eff.eff_length_cm == pytest.approx(25.0)
    assert compute_launcher_efficiency(0.0, "winder") is None
    with pytest.raises(ValueError):
        compute_launcher_efficiency(1000.0, "ripcord")
