"""Validation candidate ranking: which stocks carry enough F and M data to
make convincing FMI case studies.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from .config import AnalysisConfig
from .fmi import LIFE_HISTORY_ORDER, life_history_series
from .logging_utils import log_count


METRIC_POINTS = {"F": 30.0, "U": 20.0, "ER": 10.0}

WELL_KNOWN_NAME_PATTERN = r"cod|herring|sardine|anchovy|bluefin|haddock|pollock"
WELL_KNOWN_ID_PATTERN = r"COD|HERR|SARD|ANCH|BFT|HAD|POL"


def f_summary(f: pd.DataFrame) -> pd.DataFrame:
    """Per-stock coverage and level of the selected F series."""
    f = f.sort_values(["stockid", "year"], kind="mergesort")
    g = f.groupby("stockid", sort=True)
    out = g.agg(
        F_years=("year", "size"),
        F_year_start=("year", "min"),
        F_year_end=("year", "max"),
        F_mean=("F", "mean"),
        F_max=("F", "max"),
        F_min=("F", "min"),
        F_metric=("metric_type", "first"),
    ).reset_index()
    out["F_span"] = out["F_year_end"] - out["F_year_start"] + 1
    return out


def quality_score(F_years, F_span, M_n_estimates, F_metric) -> np.ndarray:
    """0-100: series length (30), span (20), number of M estimates (20), metric directness (30/20/10)."""
    metric_pts = pd.Series(F_metric).map(METRIC_POINTS).fillna(10.0).to_numpy(dtype=float)
    raw = (
        np.asarray(F_years, dtype=float) / 50.0 * 30.0
        + np.asarray(F_span, dtype=float) / 70.0 * 20.0
        + np.asarray(M_n_estimates, dtype=float) / 5.0 * 20.0
        + metric_pts
    )
    return np.minimum(100.0, raw)


def rank_candidates(
    f: pd.DataFrame,
    m: pd.DataFrame,
    meta: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    df = f_summary(f).merge(m, on="stockid", how="inner").merge(meta, on="stockid", how="inner")
    df["FMI_mean"] = df["F_mean"] / df["M"]
    df["FMI_max"] = df["F_max"] / df["M"]
    df["life_history"] = life_history_series(df["M"], cfg)
    df["quality_score"] = quality_score(df["F_years"], df["F_span"], df["M_n_estimates"], df["F_metric"])
    df = df.sort_values(["quality_score", "stockid"], ascending=[False, True], kind="mergesort").reset_index(drop=True)
    log_count(logger, "candidates", len(df), "stocks with both F and M")
    return df


def candidate_life_history_summary(candidates: pd.DataFrame) -> pd.DataFrame:
    rows = []
    for lh in LIFE_HISTORY_ORDER:
        sub = candidates[candidates["life_history"] == lh.value]
        if sub.empty:
            continue
        rows.append(
            {
                "life_history": lh.value,
                "n_stocks": len(sub),
                "M_range": f"{sub['M'].min():.2f} - {sub['M'].max():.2f}",
                "example_species": sub["commonname"].iloc[0],
            }
        )
    return pd.DataFrame(rows)


def top_candidates(candidates: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    """Best-scoring stocks per life-history category, ordered by M."""
    ranked = candidates.sort_values(["quality_score", "stockid"], ascending=[False, True], kind="mergesort")
    top = ranked.groupby("life_history", sort=False).head(cfg.candidates_top_per_category)
    return top.sort_values(["M", "stockid"], kind="mergesort").reset_index(drop=True)


def well_known_stocks(candidates: pd.DataFrame, limit: int = 20) -> pd.DataFrame:
    """Iconic, well-studied stocks (cod, herring, sardine, ...) by common name or stock id."""
    by_name = candidates["commonname"].astype(str).str.contains(WELL_KNOWN_NAME_PATTERN, case=False, regex=True)
    by_id = candidates["stockid"].astype(str).str.contains(WELL_KNOWN_ID_PATTERN, case=False, regex=True)
    cols = ["stockid", "commonname", "region", "M", "F_mean", "FMI_mean", "F_years", "quality_score"]
    out = candidates.loc[by_name | by_id, cols]
    return out.sort_values(["commonname", "stockid"], kind="mergesort").head(limit).reset_index(drop=True)
