"""Report writers for decoded captures."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd

from .pipeline import CaptureResult
from .stats import (
    LAUNCHER_SPECS,
    build_band_stats,
    build_histogram,
    compute_launcher_efficiency,
    compute_stats,
)


def export_results(
    result: CaptureResult,
    output_dir: Path,
    *,
    figure_path: Path | None = None,
    input_path: Path | None = None,
    launcher: str | None = None,
) -> None:
    """Persist per-shot tables, aggregate bands and a markdown report to *output_dir*."""

    if launcher is not None and launcher not in LAUNCHER_SPECS:
        raise ValueError(f"Unknown launcher '{launcher}'. Expected one of {list(LAUNCHER_SPECS)}")
    output_dir.mkdir(parents=True, exist_ok=True)
    _write_shots_csv(result, output_dir, launcher)
    _write_features_csv(result, output_dir)
    result.speed_band.to_frame().to_csv(output_dir / "aggregate_speed.csv", index=False)
    result.torque_band.to_frame().to_csv(output_dir / "aggregate_torque.csv", index=False)
    result.errors_frame().to_csv(output_dir / "errors.csv", index=False)
    _write_report_md(result, output_dir, figure_path=figure_path, input_path=input_path, launcher=launcher)


def _write_shots_csv(result: CaptureResult, output_dir: Path, launcher: Optional[str]) -> None:
    df = result.shots_frame()
    if launcher is not None and not df.empty:
        efficiencies = [
            compute_launcher_efficiency(analysis.features.auc_0_peak, launcher) for analysis in result.analyses
        ]
        df["launcher"] = launcher
        df["eff_percent"] = [eff.eff_percent if eff else None for eff in efficiencies]
        df["eff_length_cm"] = [eff.eff_length_cm if eff else None for eff in efficiencies]
    df.to_csv(output_dir / "shots.csv", index=False)


def _write_features_csv(result: CaptureResult, output_dir: Path) -> None:
    result.features_frame().to_csv(output_dir / "features.csv", index=False)


def _write_report_md(
    result: CaptureResult,
    output_dir: Path,
    *,
    figure_path: Path | None,
    input_path: Path | None,
    launcher: str | None,
) -> None:
    snapshots = [analysis.snapshot for analysis in result.analyses]
    lines: list[str] = []
    lines.append("# BBP Shot Report")
    if input_path is not None:
        lines.append(f"*Input file:* `{input_path}`  ")
    lines.append(f"*Packets:* {result.stats.get('packets', 0)}  ")
    lines.append(f"*Shots:* {len(result.analyses)}  ")
    lines.append(f"*Protocol errors:* {len(result.errors)}  ")
    if launcher:
        lines.append(f"*Launcher:* {launcher}  ")
    lines.append("")

    lines.append("## Session statistics")
    lines.append("| Metric | Count | Min | Max | Mean | Std dev |")
    lines.append("| --- | ---: | ---: | ---: | ---: | ---: |")
    for metric in ("your", "est", "max"):
        stats = compute_stats(snapshots, metric)
        lines.append(f"| {metric} | {stats.total} | {stats.min} | {stats.max} | {stats.avg} | {stats.stddev:.2f} |")
    lines.append("")

    if result.analyses:
        lines.append("## Shots")
        lines.append("| # | Declared | Estimated | Max | Reason | Points | Suspect |")
        lines.append("| ---: | ---: | ---: | ---: | --- | ---: | --- |")
        for analysis in result.analyses:
            shot = analysis.snapshot
            points = len(shot.profile) if shot.profile is not None else 0
            flag = "yes" if analysis.suspect else ""
            lines.append(
                f"| {shot.shot_count} | {shot.your_sp} | {shot.est_sp} | {shot.max_sp} | {shot.est_reason} | {points} | {flag} |"
            )
        lines.append("")

        lines.append("## Speed histogram (estimated)")
        lines.append("| Bin | Count |")
        lines.append("| --- | ---: |")
        for bin_ in build_histogram(snapshots, "est"):
            lines.append(f"| {bin_.label} | {bin_.count} |")
        lines.append("")

        bands = build_band_stats([(float(a.snapshot.est_sp), a.features) for a in result.analyses])
        lines.append("## Speed bands")
        lines.append("| Band | Count | Mean | Median | t_peak p50 | slope_max p50 |")
        lines.append("| --- | ---: | ---: | ---: | ---: | ---: |")
        for band_id, band in bands.items():
            if band.count == 0:
                continue
            summary = band.feature_summary
            lines.append(
                f"| {band_id} | {band.count} | {band.mean:.2f} | {band.median:.2f} "
                f"| {summary['t_peak'].p50:.3f} | {summary['slope_max'].p50:.3f} |"
            )
        lines.append("")

        fitted = [a for a in result.analyses if a.friction is not None]
        if fitted:
            lines.append("## Friction fits")
            lines.append("| # | alpha | beta | R² | RMSE |")
            lines.append("| ---: | ---: | ---: | ---: | ---: |")
            for analysis in fitted:
                fit = analysis.friction
                lines.append(
                    f"| {analysis.snapshot.shot_count} | {fit.alpha:.6g} | {fit.beta:.6g} | {fit.r2:.4f} | {fit.rmse:.6g} |"
                )
            lines.append("")

    if result.errors:
        lines.append("## Protocol errors")
        lines.append("| Code | Count |")
        lines.append("| --- | ---: |")
        counts = result.errors_frame()["code"].value_counts()
        for code, count in counts.items():
            lines.append(f"| {code} | {count} |")
        lines.append("")

    if figure_path is not None:
        lines.append(f"![Shot plots]({figure_path.name})")
        lines.append("")

    lines.append("### Notes")
    lines.append("- Speeds are in rpm; profile times are cumulative milliseconds from the first sample.")
    lines.append("- Aggregate bands use speed curves aligned on their robust peak and linear resampling.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")
