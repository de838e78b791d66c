"""Input torque reconstruction from a speed profile and its drag fit."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .bbp.config import FirstPeakOptions
from .bbp.packets import ShotProfile
from .decay import SMOOTH_WINDOW, DecaySegment
from .friction import FrictionFitResult
from .peaks import find_first_peak_index
from .signal import derivative_central, smooth_moving_average

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TorqueSeries:
    t_ms: np.ndarray
    tau: np.ndarray
    degenerate: bool


@dataclass(frozen=True)
class TorqueFeatures:
    max_input_tau: float
    max_tau: float
    auc_tau_pos: float
    tau_smoothness: float
    tau_peak_time: float


def start_relative_time(profile: ShotProfile) -> np.ndarray:
    """Profile time re-zeroed at the first sample with positive ``n_refs`` and speed."""
    t = np.asarray(profile.t_ms, dtype=float)
    if t.size == 0:
        return t
    start = next((i for i, p in enumerate(profile.points) if p.n_refs > 0 and p.sp > 0), 0)
    return t - t[start]


def compute_torque_series(profile: ShotProfile, fit: Optional[FrictionFitResult]) -> TorqueSeries:
    """``tau = dω/dt + alpha·ω + beta·ω²`` on the smoothed speed.

    Without a fit the drag terms are zero and the series is only the
    derivative; it is flagged ``degenerate``.
    """
    t = start_relative_time(profile)
    w = smooth_moving_average(profile.sp, SMOOTH_WINDOW)
    dw = derivative_central(t, w)
    alpha = fit.alpha if fit is not None else 0.0
    beta = fit.beta if fit is not None else 0.0
    with np.errstate(over="ignore", invalid="ignore"):
        tau = dw + alpha * w + beta * w * w
    tau[~np.isfinite(tau)] = 0.0
    return TorqueSeries(t_ms=t, tau=tau, degenerate=fit is None)


def pre_decay_end(
    profile: ShotProfile,
    segment: Optional[DecaySegment],
    peak_options: Optional[FirstPeakOptions] = None,
) -> int:
    end = find_first_peak_index(start_relative_time(profile), profile.sp, peak_options)
    if segment is not None:
        end = min(end, segment.start_index - 1)
    return max(0, min(end, len(profile) - 1))


def compute_torque_features(
    series: TorqueSeries,
    end_index: int,
) -> TorqueFeatures:
    tau = series.tau
    t = series.t_ms
    if tau.size == 0:
        return TorqueFeatures(0.0, 0.0, 0.0, 0.0, 0.0)

    window = tau[: end_index + 1]
    window_t = t[: end_index + 1]
    peak_idx = int(np.argmax(window))
    max_input_tau = float(window[peak_idx])

    positive = np.maximum(window, 0.0)
    if window.size >= 2:
        auc = float(np.sum((positive[1:] + positive[:-1]) * np.diff(window_t) / 2.0))
    else:
        auc = 0.0

    if window.size >= 3:
        smoothness = float(np.mean(np.abs(window[2:] - 2.0 * window[1:-1] + window[:-2])))
    else:
        smoothness = 0.0

    return TorqueFeatures(
        max_input_tau=max_input_tau,
        max_tau=float(tau.max()),
        auc_tau_pos=auc,
        tau_smoothness=smoothness,
        tau_peak_time=float(window_t[peak_idx]),
    )


def compute_torque(
    profile: Optional[ShotProfile],
    fit: Optional[FrictionFitResult],
    segment: Optional[DecaySegment] = None,
    peak_options: Optional[FirstPeakOptions] = None,
) -> tuple[Optional[TorqueSeries], Optional[TorqueFeatures]]:
    """Torque series plus features; features are ``None`` unless a real fit exists."""
    if profile is None or len(profile) < 2:
        return None, None

    series = compute_torque_series(profile, fit)
    if fit is None:
        logger.debug("no friction fit, torque series is derivative only")
        return series, None
    end = pre_decay_end(profile, segment, peak_options)
    return series, compute_torque_features(series, end)
