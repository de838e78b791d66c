"""Session-level statistics over decoded shots."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .bbp.config import ScoreSettings
from .bbp.packets import ShotSnapshot
from .features import ShotFeatures

SP_METRICS = ("your", "est", "max")

BAND_LOW_SPLIT = 4000
BAND_STEP = 1000
BAND_TOP = 12000
BAND_FEATURES = ("t_peak", "t_50", "slope_max", "auc_0_peak", "smoothness", "spike_score")


@dataclass(frozen=True)
class MeterStats:
    total: int
    min: int
    max: int
    avg: int
    stddev: float


@dataclass(frozen=True)
class HistogramBin:
    label: str
    count: int


@dataclass(frozen=True)
class BandDef:
    id: str
    min: int
    max_exclusive: Optional[int]


@dataclass(frozen=True)
class FeatureSummary:
    mean: float
    p50: float


@dataclass(frozen=True)
class BandStats:
    band: BandDef
    count: int
    mean: float
    median: float
    max: float
    stddev: float
    feature_summary: Dict[str, FeatureSummary]


@dataclass(frozen=True)
class ProfileMetrics:
    peak_sp: int
    time_to_peak_ms: float
    rise_slope: float
    decay_rate: float
    smoothness: float
    hold_ratio: float


@dataclass(frozen=True)
class LauncherSpec:
    max_rev: int
    length_cm: float

    @property
    def theoretical_auc(self) -> float:
        return 60000.0 * self.max_rev


@dataclass(frozen=True)
class LauncherEfficiency:
    launcher: str
    auc_measured: float
    theoretical_auc: float
    eff_ratio: float
    eff_percent: float
    eff_length_cm: float
    length_cm: float


LAUNCHER_SPECS: Dict[str, LauncherSpec] = {
    "string": LauncherSpec(max_rev=11, length_cm=50.0),
    "winder": LauncherSpec(max_rev=8, length_cm=20.5),
    "long_winder": LauncherSpec(max_rev=9, length_cm=22.5),
}


def _band_defs() -> List[BandDef]:
    defs = [BandDef(id=f"0-{BAND_LOW_SPLIT - 1}", min=0, max_exclusive=BAND_LOW_SPLIT)]
    for start in range(BAND_LOW_SPLIT, BAND_TOP, BAND_STEP):
        defs.append(BandDef(id=f"{start}-{start + BAND_STEP - 1}", min=start, max_exclusive=start + BAND_STEP))
    defs.append(BandDef(id=f"{BAND_TOP}+", min=BAND_TOP, max_exclusive=None))
    return defs


BAND_DEFS = _band_defs()


def select_sp(shot: ShotSnapshot, metric: str) -> int:
    if metric == "your":
        return shot.your_sp
    if metric == "max":
        return shot.max_sp
    if metric == "est":
        return shot.est_sp
    raise ValueError(f"Unknown speed metric '{metric}'")


def compute_stats(history: Sequence[ShotSnapshot], metric: str = "est") -> MeterStats:
    if not history:
        return MeterStats(total=0, min=0, max=0, avg=0, stddev=0.0)
    values = np.array([select_sp(shot, metric) for shot in history], dtype=float)
    avg = float(values.mean())
    return MeterStats(
        total=int(values.size),
        min=int(values.min()),
        max=int(values.max()),
        avg=int(math.floor(avg + 0.5)),
        stddev=round(float(values.std()), 2),
    )


def build_histogram(
    history: Sequence[ShotSnapshot],
    metric: str = "est",
    bin_size: int = 500,
    max_bins: int = 12,
) -> List[HistogramBin]:
    counts: Dict[int, int] = {}
    for shot in history:
        idx = select_sp(shot, metric) // bin_size
        counts[idx] = counts.get(idx, 0) + 1
    bins = []
    for idx in sorted(counts)[:max_bins]:
        start = idx * bin_size
        bins.append(HistogramBin(label=f"{start}-{start + bin_size - 1}", count=counts[idx]))
    return bins


def get_band(score: float) -> Optional[str]:
    if score < 0:
        return None
    if score < BAND_LOW_SPLIT:
        return BAND_DEFS[0].id
    if score >= BAND_TOP:
        return BAND_DEFS[-1].id
    start = int((score - BAND_LOW_SPLIT) // BAND_STEP) * BAND_STEP + BAND_LOW_SPLIT
    return f"{start}-{start + BAND_STEP - 1}"


def build_band_stats(records: Sequence[Tuple[float, ShotFeatures]]) -> Dict[str, BandStats]:
    """Group ``(score, features)`` pairs by speed band."""
    by_band: Dict[str, List[Tuple[float, ShotFeatures]]] = {}
    for score, features in records:
        band_id = get_band(score)
        if band_id is None:
            continue
        by_band.setdefault(band_id, []).append((score, features))

    result: Dict[str, BandStats] = {}
    for band in BAND_DEFS:
        items = by_band.get(band.id, [])
        scores = np.array([score for score, _ in items], dtype=float)
        summary: Dict[str, FeatureSummary] = {}
        for key in BAND_FEATURES:
            vals = np.array([getattr(features, key) for _, features in items], dtype=float)
            vals = vals[np.isfinite(vals)]
            summary[key] = FeatureSummary(
                mean=round(float(vals.mean()), 3) if vals.size else 0.0,
                p50=round(float(np.median(vals)), 3) if vals.size else 0.0,
            )
        result[band.id] = BandStats(
            band=band,
            count=len(items),
            mean=round(float(scores.mean()), 2) if scores.size else 0.0,
            median=round(float(np.median(scores)), 2) if scores.size else 0.0,
            max=float(scores.max()) if scores.size else 0.0,
            stddev=round(float(scores.std()), 2) if scores.size else 0.0,
            feature_summary=summary,
        )
    return result


def compute_profile_metrics(shot: Optional[ShotSnapshot]) -> Optional[ProfileMetrics]:
    if shot is None or shot.profile is None or len(shot.profile) == 0:
        return None
    sp = np.asarray(shot.profile.sp, dtype=float)
    t = np.asarray(shot.profile.t_ms, dtype=float)

    peak_idx = int(np.argmax(sp))
    peak_sp = float(sp[peak_idx])
    time_to_peak = float(t[peak_idx])
    rise_slope = peak_sp / time_to_peak if time_to_peak > 0 else 0.0

    tail_dt = t[-1] - t[peak_idx]
    decay_rate = (sp[-1] - peak_sp) / tail_dt if peak_idx < sp.size - 1 and tail_dt > 0 else 0.0
    total_variation = float(np.abs(np.diff(sp)).sum())

    hold = sp[peak_idx + 2 : min(peak_idx + 5, sp.size - 1) + 1]
    hold_ratio = float(hold.mean()) / peak_sp if hold.size and peak_sp > 0 else 0.0

    return ProfileMetrics(
        peak_sp=int(peak_sp),
        time_to_peak_ms=time_to_peak,
        rise_slope=round(rise_slope, 3),
        decay_rate=round(float(decay_rate), 3),
        smoothness=total_variation,
        hold_ratio=round(hold_ratio, 3),
    )


def is_suspect_shot(shot: Optional[ShotSnapshot], settings: Optional[ScoreSettings] = None) -> bool:
    """Too few samples, or a raw maximum far above the declared speed."""
    if shot is None:
        return False
    cfg = settings or ScoreSettings()
    size = len(shot.profile) if shot.profile is not None else 0
    if size < cfg.suspect_min_profile_points:
        return True
    ratio = shot.max_sp / shot.your_sp if shot.your_sp > 0 else 0.0
    return ratio >= cfg.suspect_max_to_your_ratio


def compute_launcher_efficiency(auc_measured: float, launcher: str) -> Optional[LauncherEfficiency]:
    if launcher not in LAUNCHER_SPECS:
        raise ValueError(f"Unknown launcher '{launcher}'. Expected one of {list(LAUNCHER_SPECS)}")
    if not math.isfinite(auc_measured) or auc_measured <= 0:
        return None
    spec = LAUNCHER_SPECS[launcher]
    ratio = auc_measured / spec.theoretical_auc
    return LauncherEfficiency(
        launcher=launcher,
        auc_measured=auc_measured,
        theoretical_auc=spec.theoretical_auc,
        eff_ratio=ratio,
        eff_percent=ratio * 100.0,
        eff_length_cm=spec.length_cm * ratio,
        length_cm=spec.length_cm,
    )
