"""Quadratic drag model fitted over a decay segment."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np

from .bbp.packets import ShotProfile
from .decay import SMOOTH_WINDOW, DecaySegment
from .signal import derivative_central, smooth_moving_average

MIN_FIT_POINTS = 4
DET_EPSILON = 1e-9


@dataclass(frozen=True)
class FrictionFitResult:
    """Coefficients of ``-dω/dt ≈ alpha·ω + beta·ω²`` with fit diagnostics."""

    alpha: float
    beta: float
    rmse: float
    r2: float
    n_points: int
    warnings: List[str] = field(default_factory=list)

    def predict(self, omega: Sequence[float] | np.ndarray) -> np.ndarray:
        w = np.asarray(omega, dtype=float)
        return self.alpha * w + self.beta * w * w


def fit_drag_model(omega: Sequence[float], domega_dt: Sequence[float]) -> Optional[FrictionFitResult]:
    """Least-squares ``(alpha, beta)`` from paired speed and derivative samples.

    Samples with non-positive or non-finite speed, or a non-finite response,
    are skipped. The 2x2 normal equations are solved in closed form.
    """
    w_all = np.asarray(omega, dtype=float)
    y_all = -np.asarray(domega_dt, dtype=float)
    if w_all.size != y_all.size:
        raise ValueError("omega and domega_dt must have identical length")

    keep = np.isfinite(w_all) & (w_all > 0) & np.isfinite(y_all)
    x1 = w_all[keep]
    y = y_all[keep]
    n = int(y.size)
    if n < MIN_FIT_POINTS:
        return None
    x2 = x1 * x1

    s11 = float(np.dot(x1, x1))
    s12 = float(np.dot(x1, x2))
    s22 = float(np.dot(x2, x2))
    b1 = float(np.dot(x1, y))
    b2 = float(np.dot(x2, y))

    det = s11 * s22 - s12 * s12
    if not math.isfinite(det) or abs(det) < DET_EPSILON:
        return None

    alpha = (b1 * s22 - b2 * s12) / det
    beta = (s11 * b2 - s12 * b1) / det
    if not (math.isfinite(alpha) and math.isfinite(beta)):
        return None

    residuals = y - (alpha * x1 + beta * x2)
    ss_res = float(np.dot(residuals, residuals))
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    rmse = math.sqrt(ss_res / n)
    r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    warnings: List[str] = []
    if alpha < 0:
        warnings.append("alpha<0")
    if beta < 0:
        warnings.append("beta<0")

    return FrictionFitResult(alpha=alpha, beta=beta, rmse=rmse, r2=r2, n_points=n, warnings=warnings)


def fit_friction(profile: Optional[ShotProfile], segment: Optional[DecaySegment]) -> Optional[FrictionFitResult]:
    """Fit the drag model on the smoothed speed inside *segment*."""
    if profile is None or segment is None or len(profile) == 0:
        return None

    w = smooth_moving_average(profile.sp, SMOOTH_WINDOW)
    dw = derivative_central(profile.t_ms, w)
    start = max(0, segment.start_index)
    end = min(w.size - 1, segment.end_index)
    if end - start + 1 < MIN_FIT_POINTS:
        return None
    return fit_drag_model(w[start : end + 1], dw[start : end + 1])
