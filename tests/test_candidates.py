"""Tests for validation candidate ranking."""

import pandas as pd
import pytest

from fmi_pipeline.candidates import (
    candidate_life_history_summary,
    f_summary,
    quality_score,
    rank_candidates,
    top_candidates,
    well_known_stocks,
)
from fmi_pipeline.extract import extract_fishing_mortality, extract_natural_mortality, stock_metadata


@pytest.fixture
def candidates(tables, cfg):
    m = extract_natural_mortality(tables.bioparams, cfg)
    f = extract_fishing_mortality(tables.timeseries, cfg)
    return rank_candidates(f, m, stock_metadata(tables.stock), cfg)


def test_quality_score_components():
    score = quality_score([50, 10], [70, 10], [5, 1], ["F", "ER"])
    assert score[0] == pytest.approx(100.0)
    assert score[1] == pytest.approx(10 / 50 * 30 + 10 / 70 * 20 + 1 / 5 * 20 + 10)


def test_quality_score_is_capped():
    assert quality_score([200], [200], [20], ["F"])[0] == 100.0


def test_f_summary_span():
    f = pd.DataFrame({"stockid": ["A"] * 3, "year": [1990, 1991, 2000], "F": [0.1, 0.3, 0.2], "metric_type": ["U"] * 3})
    s = f_summary(f).iloc[0]
    assert s["F_years"] == 3
    assert s["F_span"] == 11
    assert s["F_mean"] == pytest.approx(0.2)
    assert s["F_metric"] == "U"


class TestRanking:
    def test_only_stocks_with_f_and_m(self, candidates):
        assert set(candidates["stockid"]) == {"CODA", "HERRB", "ANCHC"}

    def test_sorted_by_quality(self, candidates):
        assert candidates["quality_score"].is_monotonic_decreasing
        assert candidates["stockid"].iloc[0] == "CODA"

    def test_fmi_columns(self, candidates):
        cod = candidates.set_index("stockid").loc["CODA"]
        assert cod["FMI_max"] == pytest.approx(2.5)
        assert cod["life_history"] == "Medium"

    def test_life_history_summary(self, candidates):
        lh = candidate_life_history_summary(candidates)
        assert list(lh["life_history"]) == ["Medium", "Moderate turnover", "Fast turnover"]

    def test_top_per_category_sorted_by_m(self, candidates, cfg):
        top = top_candidates(candidates, cfg.with_overrides(candidates_top_per_category=1))
        assert len(top) == 3
        assert top["M"].is_monotonic_increasing

    def test_well_known_stocks(self, candidates):
        famous = well_known_stocks(candidates)
        assert set(famous["stockid"]) == {"CODA", "HERRB", "ANCHC"}
        assert list(famous["commonname"]) == sorted(famous["commonname"])
