"""Tests for YAML config loading and AnalysisConfig validation."""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest
import yaml

from fmi_pipeline.config import (
    AnalysisConfig,
    ConfigError,
    ReferencePoint,
    cfg_get,
    config_from_mapping,
    load_config,
    load_yaml,
)


REPO_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"


def test_shipped_defaults_match_dataclass_defaults():
    cfg = load_config(REPO_CONFIG)
    d = AnalysisConfig()
    assert (cfg.safe_threshold, cfg.gulland_threshold, cfg.danger_threshold) == (0.75, 1.0, 1.25)
    assert cfg.life_history_breaks == d.life_history_breaks
    assert cfg.metric_priority == ("F", "U", "ER")
    assert cfg.min_stocks == 10 and cfg.min_collapsed == 3
    assert cfg.dataset_candidates == d.dataset_candidates


def test_roc_thresholds_include_stop():
    t = AnalysisConfig().roc_thresholds
    assert t[0] == pytest.approx(0.10)
    assert t[-1] == pytest.approx(6.00)
    assert len(t) == 119


def test_cfg_get_nested_with_default():
    data = {"roc": {"min_stocks": 12}}
    assert cfg_get(data, "roc.min_stocks") == 12
    assert cfg_get(data, "roc.missing", 3) == 3
    assert cfg_get(data, "nope.deeper", None) is None


def test_partial_mapping_falls_back_to_defaults():
    cfg = config_from_mapping({"thresholds": {"danger": 1.5}})
    assert cfg.danger_threshold == 1.5
    assert cfg.safe_threshold == 0.75


@pytest.mark.parametrize(
    "overrides",
    [
        {"safe_threshold": 1.1},
        {"m_aggregate": "mode"},
        {"metric_priority": ()},
        {"life_history_breaks": (0.4, 0.2, 0.8)},
        {"roc_threshold_step": 0.0},
        {"severe_collapse_threshold": 0.9},
    ],
)
def test_invalid_values_rejected(overrides):
    with pytest.raises(ConfigError):
        AnalysisConfig(**overrides)


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_yaml(tmp_path / "missing.yaml")


def test_non_mapping_root(tmp_path):
    p = tmp_path / "list.yaml"
    p.write_text(yaml.safe_dump([1, 2, 3]), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_yaml(p)


def test_config_is_immutable():
    cfg = AnalysisConfig()
    with pytest.raises(FrozenInstanceError):
        cfg.danger_threshold = 2.0
    assert cfg.with_overrides(danger_threshold=2.0).danger_threshold == 2.0
    assert cfg.danger_threshold == 1.25


def test_shipped_reference_points():
    cfg = load_config(REPO_CONFIG)
    assert cfg.reference_points == (ReferencePoint("Diagnostic: Borderline", 2.5, 0.8, "Stress test"),)
    assert AnalysisConfig().reference_points == ()


def test_reference_point_from_total_mortality():
    cfg = config_from_mapping(
        {
            "phase_plot": {
                "reference_points": [
                    {"label": "catch curve", "M": 0.3, "Z": 1.1},
                    {"label": "Z below M", "M": 0.3, "Z": 0.2},
                    {"label": "direct", "M": 0.5, "F": 0.4, "kind": "Stress test"},
                ]
            }
        }
    )
    a, b, c = cfg.reference_points
    assert a.F == pytest.approx(0.8) and a.kind == "Reference"
    assert b.F == 0.0
    assert (c.M, c.F, c.kind) == (0.5, 0.4, "Stress test")


@pytest.mark.parametrize(
    "item",
    [
        {"label": "no mortality"},
        {"label": "no F", "M": 0.3},
        {"label": "zero M", "M": 0.0, "F": 0.2},
        {"label": "negative F", "M": 0.3, "F": -0.1},
        {"M": 0.3, "F": 0.2},
    ],
)
def test_invalid_reference_point_rejected(item):
    with pytest.raises(ConfigError):
        config_from_mapping({"phase_plot": {"reference_points": [item]}})
