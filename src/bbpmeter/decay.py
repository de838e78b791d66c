"""Post-peak decay window detection."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .bbp.config import DecaySettings
from .bbp.packets import ShotProfile
from .signal import derivative_central, smooth_moving_average

MIN_PROFILE_POINTS = 8
SMOOTH_WINDOW = 5


@dataclass(frozen=True)
class DecaySegment:
    start_index: int
    end_index: int
    reason: str
    confidence: float

    @property
    def length(self) -> int:
        return self.end_index - self.start_index + 1


def detect_decay_segment(
    profile: Optional[ShotProfile],
    settings: Optional[DecaySettings] = None,
) -> Optional[DecaySegment]:
    """Longest monotonic-decay window after the smoothed peak, or ``None``.

    Candidate windows start at every sample after the peak that is above
    ``min_omega``. A window grows while increases stay under
    ``allow_increase_ratio * peak`` and the derivative stays steeper than
    ``max_jitter``; the sample where the derivative flattens or the speed
    drops under ``min_omega`` closes the window and is included in it.
    """
    if profile is None or len(profile) < MIN_PROFILE_POINTS:
        return None

    cfg = settings or DecaySettings()
    w = smooth_moving_average(profile.sp, SMOOTH_WINDOW)
    dw = derivative_central(profile.t_ms, w)

    peak = float(w.max())
    peak_index = int(np.flatnonzero(w == peak)[0])
    allow_increase = peak * cfg.allow_increase_ratio

    best: Optional[DecaySegment] = None
    i = peak_index + 1
    while i < w.size - 1:
        if w[i] < cfg.min_omega:
            i += 1
            continue

        start = i
        end = i
        increases = 0
        for j in range(i + 1, w.size):
            delta = w[j] - w[j - 1]
            if delta > allow_increase:
                break
            if delta > 0:
                increases += 1
            end = j
            if abs(dw[j]) < cfg.max_jitter or w[j] < cfg.min_omega:
                break

        length = end - start + 1
        if length >= cfg.min_points:
            confidence = max(0.0, 1.0 - increases / max(1, length))
            candidate = DecaySegment(
                start_index=start,
                end_index=end,
                reason="post-peak monotonic decay",
                confidence=round(confidence, 3),
            )
            if best is None or candidate.length > best.length:
                best = candidate

        i = max(i + 1, end + 1)

    return best
