"""Alternative peak scores and the search for the device's own trimming rule."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .bbp.packets import ShotProfile

T_MS_THRESHOLD_CANDIDATES = (0, 40, 60, 80, 100, 120)
NREFS_MIN_CANDIDATES = (0, 500, 800, 1000, 1200, 1500)


@dataclass(frozen=True)
class ScoreCandidates:
    raw_peak: int = 0
    trim_peak_by_time_40: int = 0
    trim_peak_by_time_60: int = 0
    trim_peak_by_time_80: int = 0
    trim_peak_by_time_100: int = 0
    trim_peak_by_nrefs: int = 0
    ma3_peak: int = 0
    peak_neighborhood: int = 0
    top3_mean_trim: int = 0


@dataclass(frozen=True)
class ThresholdFit:
    t_ms_threshold: float
    nrefs_min: int
    score: Optional[int]
    error_abs: Optional[int]


@dataclass(frozen=True)
class ThresholdExploreResult:
    best: Optional[ThresholdFit]
    ties: List[ThresholdFit] = field(default_factory=list)
    is_exact_match: bool = False
    all: List[ThresholdFit] = field(default_factory=list)


def _rounded_mean(values: np.ndarray) -> int:
    if values.size == 0:
        return 0
    # half-up rounding, matching the device UI
    return int(np.floor(values.sum() / values.size + 0.5))


def _peak(values: np.ndarray) -> int:
    return int(values.max()) if values.size else 0


def compute_score_candidates(
    profile: Optional[ShotProfile],
    time_trim_ms: float = 80.0,
    nrefs_min: int = 1000,
) -> ScoreCandidates:
    if profile is None or len(profile) == 0:
        return ScoreCandidates()

    sp = np.asarray(profile.sp, dtype=float)
    t = np.asarray(profile.t_ms, dtype=float)
    n_refs = np.asarray(profile.n_refs, dtype=float)
    raw_peak = int(sp.max())

    ma3_peak = 0
    for i in range(sp.size):
        ma3_peak = max(ma3_peak, _rounded_mean(sp[max(0, i - 1) : i + 2]))

    peak_idx = int(np.argmax(sp))
    peak_neighborhood = _rounded_mean(sp[max(0, peak_idx - 1) : peak_idx + 2])

    trimmed = np.sort(sp[(t >= time_trim_ms) & (n_refs >= nrefs_min)])[::-1][:3]

    return ScoreCandidates(
        raw_peak=raw_peak,
        trim_peak_by_time_40=_peak(sp[t >= 40]),
        trim_peak_by_time_60=_peak(sp[t >= 60]),
        trim_peak_by_time_80=_peak(sp[t >= 80]),
        trim_peak_by_time_100=_peak(sp[t >= 100]),
        trim_peak_by_nrefs=_peak(sp[n_refs >= nrefs_min]),
        ma3_peak=ma3_peak,
        peak_neighborhood=peak_neighborhood,
        top3_mean_trim=_rounded_mean(trimmed),
    )


def explore_thresholds(profile: Optional[ShotProfile], your_sp: int) -> ThresholdExploreResult:
    """Score every (time trim, nRefs floor) pair against the declared speed."""
    fits: List[ThresholdFit] = []
    if profile is None or len(profile) == 0:
        return ThresholdExploreResult(best=None, all=fits)

    sp = np.asarray(profile.sp, dtype=int)
    t = np.asarray(profile.t_ms, dtype=float)
    n_refs = np.asarray(profile.n_refs, dtype=int)

    for t_threshold in T_MS_THRESHOLD_CANDIDATES:
        for floor in NREFS_MIN_CANDIDATES:
            selected = sp[(t >= t_threshold) & (n_refs >= floor)]
            score = int(selected.max()) if selected.size else None
            error = abs(score - your_sp) if score is not None else None
            fits.append(ThresholdFit(t_ms_threshold=t_threshold, nrefs_min=floor, score=score, error_abs=error))

    errors = [fit.error_abs for fit in fits if fit.error_abs is not None]
    if not errors:
        return ThresholdExploreResult(best=None, all=fits)
    min_error = min(errors)
    ties = [fit for fit in fits if fit.error_abs == min_error]
    return ThresholdExploreResult(best=ties[0], ties=ties, is_exact_match=min_error == 0, all=fits)
