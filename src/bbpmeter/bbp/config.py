from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Sequence


@dataclass
class EstimatorConfig:
    """Empirical constants of the peak-extrapolation heuristic."""

    min_points: int = 7
    early_window: int = 14
    scan_start: int = 4
    margin: float = 1.04


@dataclass
class LaunchMarkerConfig:
    release_window_ms: float = 2000.0
    max_marker_ms: float = 400.0
    max_peak_gap_ms: float = 180.0


@dataclass
class FirstPeakOptions:
    min_peak_time_ms: float = 20.0
    min_peak_sp_abs: float = 500.0
    min_peak_ratio: float = 0.2


@dataclass
class PeakRobustOptions:
    min_t: float = 80.0
    window: int = 3


@dataclass
class DecaySettings:
    min_points: int = 6
    allow_increase_ratio: float = 0.01
    min_omega: float = 100.0
    max_jitter: float = 0.08


@dataclass
class AggregateGrid:
    start: float = -600.0
    end: float = 1200.0
    step: float = 10.0


@dataclass
class ScoreSettings:
    time_trim_ms: float = 80.0
    nrefs_min: int = 1000
    suspect_min_profile_points: int = 7
    suspect_max_to_your_ratio: float = 1.5


@dataclass
class MeterConfig:
    estimator: EstimatorConfig = field(default_factory=EstimatorConfig)
    launch_marker: LaunchMarkerConfig = field(default_factory=LaunchMarkerConfig)
    first_peak: FirstPeakOptions = field(default_factory=FirstPeakOptions)
    robust_peak: PeakRobustOptions = field(default_factory=PeakRobustOptions)
    decay: DecaySettings = field(default_factory=DecaySettings)
    grid: AggregateGrid = field(default_factory=AggregateGrid)
    score: ScoreSettings = field(default_factory=ScoreSettings)
    align_mode: str = "peak"
    crossing_ratio: float = 0.7
    raw_log_size: int = 3000

    @property
    def align_mode_enum(self) -> str:
        mode = self.align_mode.lower()
        if mode not in {"start", "peak", "t50", "crossing"}:
            raise ValueError(f"Unsupported align_mode '{self.align_mode}'")
        return mode


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Path | str | None = None, overrides: Sequence[str] | None = None) -> MeterConfig:
    """
    Load analysis configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["estimator.margin=1.05", "decay.min_points=8"]
    """
    data = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    return _build(MeterConfig, merged)


def _build(cls: type, data: Dict[str, Any]) -> Any:
    kwargs: Dict[str, Any] = {}
    defaults = cls()
    for item in fields(cls):
        if item.name not in data:
            continue
        value = data[item.name]
        current = getattr(defaults, item.name)
        if is_dataclass(current):
            if not isinstance(value, dict):
                raise ValueError(f"Config section '{item.name}' must be an object")
            kwargs[item.name] = _build(type(current), value)
        elif isinstance(current, bool):
            kwargs[item.name] = bool(value)
        elif isinstance(current, int):
            kwargs[item.name] = int(value)
        elif isinstance(current, float):
            kwargs[item.name] = float(value)
        else:
            kwargs[item.name] = str(value)
    unknown = set(data) - {item.name for item in fields(cls)}
    if unknown:
        raise ValueError(f"Unknown config keys for {cls.__name__}: {sorted(unknown)}")
    return cls(**kwargs)


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
