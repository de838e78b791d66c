from __future__ import annotations

import json

import pytest

from bbpmeter.bbp import MeterConfig, load_config


def test_defaults():
    cfg = load_config()
    assert cfg.estimator.min_points == 7
    assert cfg.estimator.early_window == 14
    assert cfg.estimator.scan_start == 4
    assert cfg.estimator.margin == pytest.approx(1.04)
    assert cfg.launch_marker.max_peak_gap_ms == pytest.approx(180.0)
    assert cfg.decay.max_jitter == pytest.approx(0.08)
    assert (cfg.grid.start, cfg.grid.end, cfg.grid.step) == (-600.0, 1200.0, 10.0)
    assert cfg.align_mode_enum == "peak"


def test_json_and_overrides(tmp_path):
    path = tmp_path / "meter.json"
    path.write_text(json.dumps({"estimator": {"margin": 1.1, "scan_start": 5}, "align_mode": "start"}), encoding="utf-8")
    cfg = load_config(path, ["estimator.margin=1.05", "decay.min_points=8", "align_mode=t50", "grid.step=5"])
    assert cfg.estimator.margin == pytest.approx(1.05)
    assert cfg.estimator.scan_start == 5
    assert cfg.decay.min_points == 8
    assert cfg.grid.step == pytest.approx(5.0)
    assert isinstance(cfg.grid.step, float)
    assert cfg.align_mode_enum == "t50"


@pytest.mark.parametrize("override", ["estimator.margin", "=3", "estimator.unknown=1", "bogus=1"])
def test_bad_overrides(override):
    with pytest.raises(ValueError):
        load_config(None, [override])


def test_invalid_align_mode():
    cfg = MeterConfig(align_mode="valley")
    with pytest.raises(ValueError):
        _ = cfg.align_mode_enum
