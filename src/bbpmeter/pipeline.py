"""High level orchestration: capture replay and per-shot analysis."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from .aggregate import AggregateSeries, aggregate_on_grid
from .bbp.codec import BbpProtocol
from .bbp.config import MeterConfig
from .bbp.packets import ProtocolError, ShotSnapshot
from .bbp.rawlog import RawPacketLog, read_capture
from .candidates import ScoreCandidates, ThresholdExploreResult, compute_score_candidates, explore_thresholds
from .decay import DecaySegment, detect_decay_segment
from .features import EMPTY_FEATURES, ShotFeatures, compute_shot_features
from .friction import FrictionFitResult, fit_friction
from .peaks import align_time
from .stats import is_suspect_shot
from .torque import TorqueFeatures, TorqueSeries, compute_torque

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShotAnalysis:
    snapshot: ShotSnapshot
    decay: Optional[DecaySegment]
    friction: Optional[FrictionFitResult]
    torque_series: Optional[TorqueSeries]
    torque: Optional[TorqueFeatures]
    features: ShotFeatures
    candidates: ScoreCandidates
    thresholds: ThresholdExploreResult
    suspect: bool

    def summary(self) -> dict[str, object]:
        shot = self.snapshot
        row: dict[str, object] = {
            "shot_count": shot.shot_count,
            "received_at": shot.received_at,
            "your_sp": shot.your_sp,
            "est_sp": shot.est_sp,
            "max_sp": shot.max_sp,
            "est_reason": shot.est_reason,
            "launch_marker_ms": shot.launch_marker_ms,
            "points": len(shot.profile) if shot.profile is not None else 0,
            "suspect": self.suspect,
            "decay_start": self.decay.start_index if self.decay else None,
            "decay_end": self.decay.end_index if self.decay else None,
            "decay_confidence": self.decay.confidence if self.decay else None,
            "alpha": self.friction.alpha if self.friction else None,
            "beta": self.friction.beta if self.friction else None,
            "fit_r2": self.friction.r2 if self.friction else None,
            "fit_rmse": self.friction.rmse if self.friction else None,
            "max_input_tau": self.torque.max_input_tau if self.torque else None,
            "auc_tau_pos": self.torque.auc_tau_pos if self.torque else None,
            "tau_smoothness": self.torque.tau_smoothness if self.torque else None,
            "tau_peak_time": self.torque.tau_peak_time if self.torque else None,
        }
        return row


@dataclass(frozen=True)
class CaptureResult:
    analyses: List[ShotAnalysis]
    errors: List[ProtocolError]
    stats: dict[str, int]
    speed_band: AggregateSeries
    torque_band: AggregateSeries
    raw_log: RawPacketLog = field(repr=False, default_factory=RawPacketLog)

    def shots_frame(self) -> pd.DataFrame:
        return pd.DataFrame([analysis.summary() for analysis in self.analyses])

    def features_frame(self) -> pd.DataFrame:
        rows = []
        for analysis in self.analyses:
            row = {"shot_count": analysis.snapshot.shot_count, "received_at": analysis.snapshot.received_at}
            row.update(analysis.features.as_dict())
            rows.append(row)
        return pd.DataFrame(rows)

    def errors_frame(self) -> pd.DataFrame:
        return pd.DataFrame([error.as_dict() for error in self.errors], columns=["code", "message", "detail"])


def analyze_shot(snapshot: ShotSnapshot, config: Optional[MeterConfig] = None) -> ShotAnalysis:
    """Run decay detection, friction fit, torque and feature extraction on one shot."""

    cfg = config or MeterConfig()
    profile = snapshot.profile
    decay = detect_decay_segment(profile, cfg.decay)
    friction = fit_friction(profile, decay)
    torque_series, torque = compute_torque(profile, friction, decay, cfg.first_peak)
    features = compute_shot_features(profile, cfg.first_peak) if profile is not None else EMPTY_FEATURES
    return ShotAnalysis(
        snapshot=snapshot,
        decay=decay,
        friction=friction,
        torque_series=torque_series,
        torque=torque,
        features=features,
        candidates=compute_score_candidates(profile, cfg.score.time_trim_ms, cfg.score.nrefs_min),
        thresholds=explore_thresholds(profile, snapshot.your_sp),
        suspect=is_suspect_shot(snapshot, cfg.score),
    )


def aligned_speed(analysis: ShotAnalysis, config: MeterConfig) -> Optional[Tuple[np.ndarray, np.ndarray]]:
    profile = analysis.snapshot.profile
    if profile is None or len(profile) < 2:
        return None
    t = align_time(
        profile.t_ms,
        profile.sp,
        config.align_mode_enum,
        crossing_ratio=config.crossing_ratio,
        peak_options=config.robust_peak,
    )
    return t, np.asarray(profile.sp, dtype=float)


def decode_packets(
    packets: Iterable[Tuple[Optional[float], bytes]],
    config: Optional[MeterConfig] = None,
) -> CaptureResult:
    """Feed raw packets through a fresh codec and analyse every emitted shot."""

    cfg = config or MeterConfig()
    protocol = BbpProtocol(cfg.estimator, cfg.launch_marker, cfg.first_peak)
    raw_log = RawPacketLog(cfg.raw_log_size)
    analyses: List[ShotAnalysis] = []
    errors: List[ProtocolError] = []

    for timestamp, raw in packets:
        try:
            packet = protocol.parse_packet(raw, timestamp)
            raw_log.push(packet)
            snapshot = protocol.update(packet)
        except ProtocolError as exc:
            errors.append(exc)
            continue
        if snapshot is not None:
            analyses.append(analyze_shot(snapshot, cfg))

    speed_series = [s for s in (aligned_speed(a, cfg) for a in analyses) if s is not None]
    torque_series = [
        (a.torque_series.t_ms, a.torque_series.tau) for a in analyses if a.torque_series is not None and a.torque is not None
    ]
    stats = protocol.stats()
    logger.info("shots=%d packets=%d errors=%d", len(analyses), stats.get("packets", 0), len(errors))
    return CaptureResult(
        analyses=analyses,
        errors=errors,
        stats=stats,
        speed_band=aggregate_on_grid(speed_series, cfg.grid),
        torque_band=aggregate_on_grid(torque_series, cfg.grid),
        raw_log=raw_log,
    )


def decode_capture(path: str | Path, config: Optional[MeterConfig] = None) -> CaptureResult:
    """Replay a capture file written by :func:`bbpmeter.bbp.write_capture` or a BLE sniffer dump."""

    return decode_packets(read_capture(Path(path)), config)
