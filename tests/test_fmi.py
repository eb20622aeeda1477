"""Tests for the FMI index: ratio, zones and life-history categories."""

import pandas as pd
import pytest

from fmi_pipeline.config import AnalysisConfig, ConfigError
from fmi_pipeline.fmi import (
    LifeHistory,
    Zone,
    add_fmi_columns,
    classify,
    exploitation_rate,
    fmi_ratio,
    life_history_category,
    life_history_series,
    zone_for,
    zone_series,
)


class TestZones:
    @pytest.mark.parametrize(
        "fmi,zone",
        [
            (0.0, Zone.SAFE),
            (0.7499, Zone.SAFE),
            (0.75, Zone.CAUTION),
            (0.99, Zone.CAUTION),
            (1.0, Zone.WARNING),
            (1.2499, Zone.WARNING),
            (1.25, Zone.DANGER),
            (40.0, Zone.DANGER),
        ],
    )
    def test_boundaries_are_lower_inclusive(self, fmi, zone):
        assert zone_for(fmi) is zone

    def test_vectorised_zones_match_scalar(self):
        cfg = AnalysisConfig()
        vals = pd.Series([0.1, 0.75, 1.0, 1.25, 3.0])
        assert list(zone_series(vals, cfg)) == [zone_for(v).value for v in vals]

    def test_zone_series_rejects_missing(self):
        with pytest.raises(ValueError):
            zone_series(pd.Series([0.5, float("nan")]), AnalysisConfig())

    def test_zone_rank_orders_severity(self):
        assert Zone.SAFE.rank < Zone.CAUTION.rank < Zone.WARNING.rank < Zone.DANGER.rank


class TestClassify:
    def test_stock_a_moves_through_safe_warning_danger(self):
        fmis, zones = zip(*(classify(f, 0.2) for f in [0.1, 0.2, 0.3]))
        assert fmis == pytest.approx([0.5, 1.0, 1.5])
        assert list(zones) == [Zone.SAFE, Zone.WARNING, Zone.DANGER]
        assert max(fmis) >= 1.25

    def test_stock_b_stays_safe(self):
        results = [classify(0.5, 1.0) for _ in range(3)]
        assert all(z is Zone.SAFE for _, z in results)
        assert max(f for f, _ in results) < 1.25

    @pytest.mark.parametrize("m", [0.0, -0.1, float("nan")])
    def test_non_positive_m_is_a_config_error(self, m):
        with pytest.raises(ConfigError):
            fmi_ratio(0.3, m)

    def test_custom_thresholds_are_honoured(self):
        cfg = AnalysisConfig(safe_threshold=0.5, gulland_threshold=0.8, danger_threshold=1.0)
        assert classify(0.2, 0.2, cfg)[1] is Zone.DANGER


class TestLifeHistory:
    @pytest.mark.parametrize(
        "m,category",
        [
            (0.05, LifeHistory.LONG_LIVED),
            (0.1999, LifeHistory.LONG_LIVED),
            (0.2, LifeHistory.MEDIUM),
            (0.4, LifeHistory.MODERATE),
            (0.7999, LifeHistory.MODERATE),
            (0.8, LifeHistory.FAST),
            (2.5, LifeHistory.FAST),
        ],
    )
    def test_breakpoints(self, m, category):
        assert life_history_category(m) is category

    def test_series_matches_scalar(self):
        vals = pd.Series([0.1, 0.2, 0.4, 0.8])
        out = life_history_series(vals, AnalysisConfig())
        assert list(out) == [life_history_category(v).value for v in vals]

    def test_label_includes_range(self):
        assert LifeHistory.MEDIUM.label() == "Medium (0.2 <= M < 0.4)"


def test_exploitation_rate_from_fmi():
    assert exploitation_rate(1.0) == pytest.approx(0.5)
    assert exploitation_rate(1.25) == pytest.approx(1.25 / 2.25)


def test_add_fmi_columns_rejects_zero_m():
    df = pd.DataFrame({"stockid": ["X"], "F": [0.2], "M": [0.0]})
    with pytest.raises(ConfigError, match="stock=X"):
        add_fmi_columns(df, AnalysisConfig())
