"""End-to-end runs of the numbered entry points on the synthetic dataset."""

import json
import runpy
import sys
from pathlib import Path

import pyreadr
import pytest
import yaml

from fmi_pipeline.dataset import DatasetNotFoundError, load_tables
from fmi_pipeline.runner import base_parser, finish_run, start_run

from conftest import make_healthy_tables, make_tables, write_csv_tables


REPO = Path(__file__).resolve().parents[1]


def _write_config(tmp_path: Path, dataset: Path) -> Path:
    cfg = yaml.safe_load((REPO / "configs" / "default.yaml").read_text(encoding="utf-8"))
    cfg["paths"]["dataset_candidates"] = [str(tmp_path / "missing"), str(dataset)]
    cfg["paths"]["known_collapses"] = str(REPO / "configs" / "known_collapses.yaml")
    cfg["paths"]["output_root"] = str(tmp_path / "output")
    cfg["paths"]["log_dir"] = str(tmp_path / "output" / "logs")
    cfg["plot"]["dpi"] = 40
    cfg["plot"]["publication_dpi"] = 40
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    return path


@pytest.fixture
def config_file(tmp_path, csv_dataset):
    return _write_config(tmp_path, csv_dataset)


def _run(script: str, config: Path, monkeypatch, *extra: str) -> None:
    monkeypatch.setattr(sys, "argv", [script, "--config", str(config), "--run_id", "test", *extra])
    runpy.run_path(str(REPO / script), run_name="__main__")


def test_validation_candidates(config_file, tmp_path, monkeypatch):
    _run("01_validation_candidates.py", config_file, monkeypatch)
    out = tmp_path / "output" / "validation"
    assert (out / "fmi_candidates_full.csv").exists()
    assert (out / "fmi_phase_plot.png").exists()
    manifest = json.loads((tmp_path / "output" / "logs" / "run_manifest_01_validation_candidates_test.json").read_text())
    assert manifest["dataset"]["n_files"] == 3


def test_sliding_window_validation(config_file, tmp_path, monkeypatch):
    _run("02_sliding_window_validation.py", config_file, monkeypatch)
    out = tmp_path / "output" / "sliding_window"
    metrics = (out / "validation_metrics.csv").read_text(encoding="utf-8")
    assert "Sensitivity" in metrics
    lead = (out / "lead_times.csv").read_text(encoding="utf-8").splitlines()
    assert lead[1].startswith("CODA,1990,1985")


def test_stratified_roc_with_insufficient_data(config_file, tmp_path, monkeypatch):
    _run("03_stratified_roc.py", config_file, monkeypatch)
    out = tmp_path / "output" / "stratified_roc"
    assert "INSUFFICIENT DATA" in (out / "verdict.txt").read_text(encoding="utf-8")
    assert "Insufficient stocks" in (out / "stratified_results.csv").read_text(encoding="utf-8")


def test_forensic_hindcast_and_false_negatives(config_file, tmp_path, monkeypatch):
    _run("04_forensic_hindcast.py", config_file, monkeypatch)
    _run("05_false_negatives.py", config_file, monkeypatch)
    out = tmp_path / "output" / "forensic_hindcast"
    assert (out / "breach_analysis_full.csv").exists()
    assert (out / "forensic_CODA.png").exists()
    assert (out / "false_negative_diagnosis.csv").exists()


def test_concept_figure(config_file, tmp_path, monkeypatch):
    _run("06_figure_concept.py", config_file, monkeypatch)
    out = tmp_path / "output" / "figures"
    for ext in ("png", "pdf", "tiff"):
        assert (out / f"Fig_1_FMI_concept.{ext}").exists()


def test_missing_dataset_is_fatal(config_file, tmp_path, monkeypatch):
    cfg = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    cfg["paths"]["dataset_candidates"] = [str(tmp_path / "nowhere")]
    config_file.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    with pytest.raises(DatasetNotFoundError):
        _run("02_sliding_window_validation.py", config_file, monkeypatch)
    assert not (tmp_path / "output" / "sliding_window").exists()


def test_build_dataset_h5(csv_dataset, tmp_path, monkeypatch):
    out = tmp_path / "packed" / "ram.h5"
    monkeypatch.setattr(sys, "argv", ["build_dataset_h5.py", "--csv_dir", str(csv_dataset), "--out", str(out)])
    runpy.run_path(str(REPO / "scripts" / "build_dataset_h5.py"), run_name="__main__")
    assert out.exists()


# =============================================================================
# Degenerate datasets
# =============================================================================


def _csv_lines(path: Path):
    return path.read_text(encoding="utf-8").splitlines()


def test_no_usable_natural_mortality(tmp_path, monkeypatch):
    tables = make_tables()
    tables.bioparams["biovalue"] = "9.0"
    config = _write_config(tmp_path, write_csv_tables(tables, tmp_path / "no_m"))

    for script in (
        "01_validation_candidates.py",
        "02_sliding_window_validation.py",
        "03_stratified_roc.py",
        "04_forensic_hindcast.py",
        "05_false_negatives.py",
    ):
        _run(script, config, monkeypatch)

    out = tmp_path / "output"
    breaches = _csv_lines(out / "forensic_hindcast" / "breach_analysis_full.csv")
    assert len(breaches) == 1
    assert "first_breach_danger" in breaches[0].split(",")
    assert len(_csv_lines(out / "forensic_hindcast" / "visualization_targets.csv")) == 1
    assert "N_stocks,0" in _csv_lines(out / "sliding_window" / "validation_metrics.csv")
    assert "INSUFFICIENT DATA" in (out / "stratified_roc" / "verdict.txt").read_text(encoding="utf-8")
    # The configured stress-test point is still drawn.
    assert (out / "validation" / "fmi_phase_plot.png").exists()


def test_no_collapsed_stocks(tmp_path, monkeypatch):
    config = _write_config(tmp_path, write_csv_tables(make_healthy_tables(12), tmp_path / "healthy"))
    _run("02_sliding_window_validation.py", config, monkeypatch)
    _run("03_stratified_roc.py", config, monkeypatch)

    metrics = _csv_lines(tmp_path / "output" / "sliding_window" / "validation_metrics.csv")
    assert "N_stocks,12" in metrics
    assert "N_collapsed,0" in metrics
    assert "ROC_valid,False" in metrics
    assert any(l.startswith("ROC_reason,Insufficient collapsed stocks") for l in metrics)
    assert not (tmp_path / "output" / "sliding_window" / "roc_curve.csv").exists()
    verdict = (tmp_path / "output" / "stratified_roc" / "verdict.txt").read_text(encoding="utf-8")
    assert verdict.startswith("INSUFFICIENT DATA")


# =============================================================================
# Unwritable outputs
# =============================================================================


def test_unwritable_manifest_is_counted(tmp_path):
    config = _write_config(tmp_path, tmp_path)
    logs = tmp_path / "output" / "logs"
    (logs / "run_manifest_06_figure_concept_m1.json.tmp").mkdir(parents=True)
    args = base_parser("t").parse_args(["--config", str(config), "--run_id", "m1"])

    ctx = start_run(args, entrypoint="06_figure_concept", out_name="figures", needs_dataset=False)
    assert ctx.writer.n_failed == 1
    assert ctx.writer.failures[0][0] == "run_manifest_06_figure_concept_m1.json"
    with pytest.raises(RuntimeError, match="run_manifest"):
        finish_run(ctx)


def test_output_dir_under_a_file_fails_at_finish(config_file, tmp_path, monkeypatch):
    blocker = tmp_path / "blocker"
    blocker.write_text("", encoding="utf-8")
    with pytest.raises(RuntimeError, match="artifact"):
        _run("06_figure_concept.py", config_file, monkeypatch, "--out_dir", str(blocker / "figures"))


def test_build_dataset_h5_from_rdata(tables, tmp_path, monkeypatch):
    monkeypatch.setattr(pyreadr, "read_r", lambda path, use_objects=None: tables.as_dict())
    src = tmp_path / "DBdata.RData"
    src.write_bytes(b"RDX3")
    out = tmp_path / "packed" / "ram.h5"
    monkeypatch.setattr(sys, "argv", ["build_dataset_h5.py", "--rdata", str(src), "--out", str(out)])
    runpy.run_path(str(REPO / "scripts" / "build_dataset_h5.py"), run_name="__main__")
    assert len(load_tables(out).stock) == 4
