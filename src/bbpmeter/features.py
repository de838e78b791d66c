"""Shape and timing features of a single shot profile."""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np

from .bbp.config import FirstPeakOptions
from .bbp.packets import ShotProfile
from .peaks import find_first_peak_index
from .torque import start_relative_time

EARLY_INPUT_WINDOW_MS = 80.0
LATE_INPUT_START_FRAC = 0.67
EARLY_DROP_WINDOW_MS = 80.0
HOLD_RATIO = 0.98
NREFS_PLAUSIBLE = (200, 10000)
SP_PLAUSIBLE_MAX = 20000


@dataclass(frozen=True)
class ShotFeatures:
    best_sp: float
    t_release: float
    t_peak: float
    peak_progress: float
    peak_hold_turns: int
    accel_ratio: float
    early_drop_index: float
    smoothness_index: float
    shot_profile_type: str
    first_peak_sp: float
    second_peak_sp: Optional[float]
    second_peak_t: Optional[float]
    peak_type: str
    t_50: float
    t_90: float
    slope_max: float
    auc_0_peak: float
    spike_score: float
    smoothness: float
    noise_score: float
    early_input_ratio: float
    late_input_ratio: float
    peak_input_time: float
    input_stability: float

    def as_dict(self) -> dict[str, object]:
        return asdict(self)


EMPTY_FEATURES = ShotFeatures(
    best_sp=0.0,
    t_release=0.0,
    t_peak=0.0,
    peak_progress=0.0,
    peak_hold_turns=0,
    accel_ratio=0.0,
    early_drop_index=0.0,
    smoothness_index=0.0,
    shot_profile_type="steady",
    first_peak_sp=0.0,
    second_peak_sp=None,
    second_peak_t=None,
    peak_type="single",
    t_50=0.0,
    t_90=0.0,
    slope_max=0.0,
    auc_0_peak=0.0,
    spike_score=0.0,
    smoothness=0.0,
    noise_score=0.0,
    early_input_ratio=0.0,
    late_input_ratio=0.0,
    peak_input_time=0.0,
    input_stability=0.0,
)


def _safe_div(a: float, b: float) -> float:
    return 0.0 if b == 0 else a / b


def accel_trend(accel_ratio: float) -> str:
    if not math.isfinite(accel_ratio):
        return "steady"
    if accel_ratio >= 1.25:
        return "front"
    if accel_ratio <= 0.8:
        return "late"
    return "steady"


def drop_risk(early_drop_index: float) -> str:
    if not math.isfinite(early_drop_index):
        return "medium"
    if early_drop_index >= 0.3:
        return "high"
    if early_drop_index >= 0.16:
        return "medium"
    return "low"


def _crossing_before(t: np.ndarray, sp: np.ndarray, threshold: float, end_index: int) -> float:
    for i in range(end_index + 1):
        if sp[i] >= threshold:
            if i == 0:
                return float(t[0])
            x0, x1 = t[i - 1], t[i]
            y0, y1 = sp[i - 1], sp[i]
            if x1 == x0 or y1 == y0:
                return float(x1)
            ratio = min(1.0, max(0.0, (threshold - y0) / (y1 - y0)))
            return float(x0 + (x1 - x0) * ratio)
    return 0.0


def compute_shot_features(
    profile: Optional[ShotProfile],
    peak_options: Optional[FirstPeakOptions] = None,
) -> ShotFeatures:
    if profile is None or len(profile) == 0:
        return EMPTY_FEATURES

    t = start_relative_time(profile)
    sp = np.asarray(profile.sp, dtype=float)
    n_refs = np.asarray(profile.n_refs, dtype=float)
    n = sp.size
    fp = find_first_peak_index(t, sp, peak_options)

    second_idx = next((i for i in range(max(1, fp + 1), n - 1) if sp[i - 1] < sp[i] >= sp[i + 1]), None)

    peak = float(sp[fp])
    t_peak = float(t[fp])
    t_release = float(t[-1])

    hold_threshold = peak * HOLD_RATIO
    hold_start = fp
    while hold_start - 1 >= 0 and sp[hold_start - 1] >= hold_threshold:
        hold_start -= 1
    hold_end = fp
    while hold_end + 1 < n and sp[hold_end + 1] >= hold_threshold:
        hold_end += 1
    peak_hold_turns = max(1, hold_end - hold_start + 1)

    t_50 = _crossing_before(t, sp, peak * 0.5, fp)
    t_90 = _crossing_before(t, sp, peak * 0.9, fp)

    slope_max = 0.0
    auc = 0.0
    for i in range(1, fp + 1):
        dt = t[i] - t[i - 1]
        slope_max = max(slope_max, _safe_div(sp[i] - sp[i - 1], dt))
        if dt > 0:
            auc += (sp[i - 1] + sp[i]) * dt / 2.0

    neighbors = sp[max(0, fp - 2) : fp]
    spike_score = _safe_div(peak, float(neighbors.mean()) if neighbors.size else peak)

    # rise only; the peak sample itself is excluded
    second_diffs = np.abs(sp[2:fp] - 2.0 * sp[1 : fp - 1] + sp[: fp - 2]) if fp >= 3 else np.zeros(0)
    smoothness = float(second_diffs.mean()) if second_diffs.size else 0.0

    head_refs = n_refs[: fp + 1]
    head_sp = sp[: fp + 1]
    noisy = (head_refs < NREFS_PLAUSIBLE[0]) | (head_refs > NREFS_PLAUSIBLE[1]) | (head_sp <= 0) | (head_sp > SP_PLAUSIBLE_MAX)
    noise_score = _safe_div(float(noisy.sum()), fp + 1)

    accel = []
    accel_t = []
    for i in range(1, fp + 1):
        dt = t[i] - t[i - 1]
        if dt <= 0:
            continue
        accel.append(max(0.0, (sp[i] - sp[i - 1]) / dt))
        accel_t.append(t[i])
    acc = np.asarray(accel, dtype=float)
    acc_t = np.asarray(accel_t, dtype=float)

    total_input = float(acc.sum())
    early_input = float(acc[acc_t <= EARLY_INPUT_WINDOW_MS].sum())
    late_input = float(acc[acc_t >= t_peak * LATE_INPUT_START_FRAC].sum())
    peak_input_time = float(acc_t[int(np.argmax(acc))]) if acc.size else 0.0
    acc_mean = float(acc.mean()) if acc.size else 0.0
    acc_std = float(acc.std()) if acc.size else 0.0

    first_half = float(acc[acc_t <= t_release * 0.5].sum())
    second_half = float(acc[acc_t > t_release * 0.5].sum())
    accel_ratio = _safe_div(first_half + 1e-9, second_half + 1e-9)

    drop_window = min(t_release, t_peak + EARLY_DROP_WINDOW_MS)
    min_after_peak = peak
    for i in range(fp, n):
        if t[i] > drop_window:
            break
        min_after_peak = min(min_after_peak, float(sp[i]))
    early_drop_index = _safe_div(peak - min_after_peak, max(1.0, peak))

    roughness = _safe_div(smoothness, max(1.0, peak / 20.0))
    smoothness_index = max(0.0, min(100.0, 100.0 / (1.0 + roughness)))

    return ShotFeatures(
        best_sp=peak,
        t_release=t_release,
        t_peak=t_peak,
        peak_progress=_safe_div(t_peak, t_release),
        peak_hold_turns=peak_hold_turns,
        accel_ratio=accel_ratio,
        early_drop_index=early_drop_index,
        smoothness_index=smoothness_index,
        shot_profile_type=f"{accel_trend(accel_ratio)}_{drop_risk(early_drop_index)}",
        first_peak_sp=peak,
        second_peak_sp=float(sp[second_idx]) if second_idx is not None else None,
        second_peak_t=float(t[second_idx]) if second_idx is not None else None,
        peak_type="double" if second_idx is not None else "single",
        t_50=t_50,
        t_90=t_90,
        slope_max=slope_max,
        auc_0_peak=auc,
        spike_score=spike_score,
        smoothness=smoothness,
        noise_score=noise_score,
        early_input_ratio=_safe_div(early_input, total_input),
        late_input_ratio=_safe_div(late_input, total_input),
        peak_input_time=peak_input_time,
        input_stability=_safe_div(acc_std, acc_mean),
    )
