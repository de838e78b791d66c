"""Plotting helpers for decoded captures."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from .aggregate import AggregateSeries
from .pipeline import CaptureResult


def generate_plots(result: CaptureResult, output_dir: Path) -> Path:
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 3, figsize=(18, 5))

    _plot_profiles(result, axes[0])
    _plot_band(result.speed_band, axes[1], "Aligned speed band", "Speed [rpm]")
    _plot_band(result.torque_band, axes[2], "Input torque band", "tau [rpm/ms]")

    fig.tight_layout()
    out_path = output_dir / "plots.png"
    fig.savefig(out_path, dpi=200)
    plt.close(fig)
    return out_path


def _plot_profiles(result: CaptureResult, ax) -> None:
    for analysis in result.analyses:
        profile = analysis.snapshot.profile
        if profile is None:
            continue
        label = f"#{analysis.snapshot.shot_count} ({analysis.snapshot.est_sp})"
        line = ax.plot(profile.t_ms, profile.sp, marker="o", markersize=3, alpha=0.8, label=label)[0]
        decay = analysis.decay
        if decay is not None:
            ax.axvspan(
                profile.t_ms[decay.start_index],
                profile.t_ms[decay.end_index],
                color=line.get_color(),
                alpha=0.08,
            )

    ax.set_title("Shot profiles")
    ax.set_xlabel("Time [ms]")
    ax.set_ylabel("Speed [rpm]")
    if 0 < len(result.analyses) <= 8:
        ax.legend(loc="best")


def _plot_band(band: AggregateSeries, ax, title: str, ylabel: str) -> None:
    t = band.new_time
    valid = band.n_valid > 0
    if np.any(valid):
        ax.fill_between(t, band.p25, band.p75, where=valid, color="tab:blue", alpha=0.25, label="p25-p75")
        ax.plot(t, band.median, color="tab:blue", label="median")
        ax.plot(t, band.mean, color="black", linestyle="--", linewidth=0.8, label="mean")
        ax.legend(loc="best")
    ax.axvline(0.0, color="gray", linewidth=0.8, linestyle=":")
    ax.set_title(title)
    ax.set_xlabel("Time [ms]")
    ax.set_ylabel(ylabel)


def _require_matplotlib() -> Any:
    from pathlib import Path as _Path

    home_cache = _Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install bbpmeter[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
