"""Command line interface for the bbpmeter package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .bbp.config import load_config
from .demo import run_demo
from .peaks import ALIGN_MODES
from .pipeline import decode_capture
from .plotting import generate_plots
from .reporting import export_results
from .stats import LAUNCHER_SPECS

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Decode BBP launcher captures and analyse the shots."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def decode(
    input_path: Path = typer.Option(..., "--in", help="Capture file (one '<timestamp_ms> <hex>' packet per line)."),
    report_dir: Path = typer.Option(..., "--report", help="Output directory for reports."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="JSON file with analysis settings."),
    overrides: Optional[List[str]] = typer.Option(None, "--set", help="Override a setting, e.g. estimator.margin=1.05."),
    align: Optional[str] = typer.Option(None, "--align", case_sensitive=False, help="Alignment: peak, start, t50 or crossing."),
    launcher: Optional[str] = typer.Option(None, "--launcher", help="Launcher type for efficiency columns."),
) -> None:
    """Decode a packet capture and write per-shot reports."""

    if not input_path.exists():
        raise typer.BadParameter(f"{input_path} does not exist", param_hint="--in")
    if align is not None and align.lower() not in ALIGN_MODES:
        raise typer.BadParameter(f"Expected one of {', '.join(ALIGN_MODES)}", param_hint="--align")
    if launcher is not None and launcher not in LAUNCHER_SPECS:
        raise typer.BadParameter(f"Expected one of {', '.join(LAUNCHER_SPECS)}", param_hint="--launcher")

    try:
        config = load_config(config_path, overrides or [])
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--set") from exc
    if align is not None:
        config.align_mode = align.lower()

    result = decode_capture(input_path, config)

    figure_path = None
    try:
        figure_path = generate_plots(result, report_dir)
    except RuntimeError as exc:
        typer.echo(f"[warning] plotting skipped: {exc}")

    export_results(result, report_dir, figure_path=figure_path, input_path=input_path, launcher=launcher)

    typer.echo(f"{len(result.analyses)} shots, {len(result.errors)} protocol errors")
    typer.echo(f"Report written to {report_dir}")


@app.command()
def demo(
    out_dir: Path = typer.Option(Path("demo_output"), "--out", help="Target directory for demo report."),
    shots: int = typer.Option(5, "--shots", min=1, max=50, help="Number of synthetic shots."),
) -> None:
    """Generate a synthetic capture and its report."""

    run_demo(out_dir, shots=shots)
    typer.echo(f"Demo capture and report written to {out_dir}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
