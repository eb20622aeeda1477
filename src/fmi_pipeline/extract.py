"""Extraction of M, F and B/BMSY from the source tables.

- M: mean (or median) of ``M-*`` bioparams per stock within the sanity bounds.
- F: one value per stock-year, chosen by metric-family priority (F > U > ER);
  families are never averaged together.
- B/BMSY: median per stock-year across biomass-ratio series, used only to
  label collapses.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .config import AnalysisConfig
from .dataset import RamTables
from .fmi import add_fmi_columns
from .logging_utils import log_count


BIOMASS_TSID_PATTERN = r"TBdivTBmsy|SSBdivSSBmsy|BdivBmsy|divBmsy"
M_BIOID_PATTERN = r"^M-"

STOCK_META_COLUMNS = ["stockid", "stocklong", "commonname", "scientificname", "region"]


def _numeric(s: pd.Series) -> pd.Series:
    return pd.to_numeric(s, errors="coerce")


def metric_family(tsid: str, priority: Sequence[str] = ("F", "U", "ER")) -> Optional[str]:
    """Metric family of a timeseries id by prefix ("F-...", "U-...", "ER-..."), or None."""
    for fam in priority:
        if str(tsid).upper().startswith(f"{fam.upper()}-"):
            return fam
    return None


def extract_natural_mortality(
    bioparams: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """One M per stock. Stocks without qualifying rows are absent, not defaulted."""
    bp = bioparams[bioparams["bioid"].astype(str).str.contains(M_BIOID_PATTERN, case=False, regex=True)].copy()
    bp["M"] = _numeric(bp["biovalue"])
    n_raw = len(bp)
    bp = bp[np.isfinite(bp["M"]) & (bp["M"] > cfg.m_min) & (bp["M"] < cfg.m_max)]
    if logger is not None and n_raw != len(bp):
        logger.debug("Discarded %d M rows outside (%g, %g) or non-numeric", n_raw - len(bp), cfg.m_min, cfg.m_max)

    grouped = bp.groupby("stockid", sort=True)["M"]
    out = pd.DataFrame(
        {
            "M": grouped.mean() if cfg.m_aggregate == "mean" else grouped.median(),
            "M_min": grouped.min(),
            "M_max": grouped.max(),
            "M_n_estimates": grouped.size(),
        }
    ).reset_index()
    log_count(logger, "extract.M", len(bp), "qualifying M rows")
    log_count(logger, "extract.M", len(out), "stocks with M")
    return out


def extract_fishing_mortality(
    timeseries: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """One F per (stockid, year) by metric-family priority."""
    ts = timeseries[["stockid", "tsid", "tsyear", "tsvalue"]].copy()
    priority = tuple(cfg.metric_priority)
    ts["metric_type"] = ts["tsid"].map(lambda t: metric_family(t, priority))
    ts = ts[ts["metric_type"].notna()].copy()
    ts["priority"] = ts["metric_type"].map({fam: rank for rank, fam in enumerate(priority)})
    ts["F"] = _numeric(ts["tsvalue"])
    ts["year"] = _numeric(ts["tsyear"])
    ts = ts[np.isfinite(ts["F"]) & (ts["F"] >= 0) & np.isfinite(ts["year"])]
    log_count(logger, "extract.F", len(ts), "F/U/ER rows")

    ts = ts.sort_values(["stockid", "year", "priority", "tsid"], kind="mergesort")
    out = ts.drop_duplicates(subset=["stockid", "year"], keep="first")
    out = out.assign(year=out["year"].astype(int))[["stockid", "year", "F", "metric_type", "tsid"]]
    out = out.reset_index(drop=True)
    log_count(logger, "extract.F", len(out), "stock-years after priority selection")
    log_count(logger, "extract.F", out["stockid"].nunique(), "stocks with F")
    return out


def extract_biomass_ratio(
    timeseries: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    ts = timeseries[timeseries["tsid"].astype(str).str.contains(BIOMASS_TSID_PATTERN, case=False, regex=True)].copy()
    ts["B_BMSY"] = _numeric(ts["tsvalue"])
    ts["year"] = _numeric(ts["tsyear"])
    ts = ts[np.isfinite(ts["B_BMSY"]) & (ts["B_BMSY"] > 0) & (ts["B_BMSY"] < cfg.biomass_ratio_max)]
    ts = ts[np.isfinite(ts["year"])]
    ts["year"] = ts["year"].astype(int)
    out = ts.groupby(["stockid", "year"], sort=True)["B_BMSY"].median().reset_index()
    log_count(logger, "extract.B", len(out), "B/BMSY stock-years")
    log_count(logger, "extract.B", out["stockid"].nunique(), "stocks with B/BMSY")
    return out


def stock_metadata(stock: pd.DataFrame) -> pd.DataFrame:
    cols = [c for c in STOCK_META_COLUMNS if c in stock.columns]
    return stock[cols].drop_duplicates(subset=["stockid"], keep="first").reset_index(drop=True)


def build_stock_years(
    tables: RamTables,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """F x M x stock metadata (inner joins), with FMI, zone and life history."""
    m = extract_natural_mortality(tables.bioparams, cfg, logger=logger)
    f = extract_fishing_mortality(tables.timeseries, cfg, logger=logger)
    return join_stock_years(f, m, stock_metadata(tables.stock), cfg, logger=logger)


def build_analysis_frame(
    tables: RamTables,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Stock-years with FMI joined to B/BMSY, ready for collapse validation."""
    stock_years = build_stock_years(tables, cfg, logger=logger)
    biomass = extract_biomass_ratio(tables.timeseries, cfg, logger=logger)
    return join_biomass(stock_years, biomass, align_years=cfg.align_years, logger=logger)


def join_stock_years(
    f: pd.DataFrame,
    m: pd.DataFrame,
    meta: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    df = f.merge(m[["stockid", "M"]], on="stockid", how="inner")
    log_count(logger, "join", df["stockid"].nunique(), "stocks with F and M")
    df = df.merge(meta, on="stockid", how="inner")
    log_count(logger, "join", df["stockid"].nunique(), "stocks with F, M and metadata")
    log_count(logger, "join", len(df), "stock-years")

    if len(df) and (not (df["M"] > 0).all() or not (df["F"] >= 0).all()):
        raise ValueError("Ingestion invariant violated: expected M > 0 and F >= 0 for every stock-year")

    df = add_fmi_columns(df, cfg)
    return df.sort_values(["stockid", "year"], kind="mergesort").reset_index(drop=True)


def join_biomass(
    stock_years: pd.DataFrame,
    biomass: pd.DataFrame,
    *,
    align_years: bool = True,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Attach B/BMSY to stock-years for validation.

    align_years=True keeps only years carrying both F and B/BMSY. Otherwise all
    years of stocks present in both sources are kept and either side may be NaN.
    """
    if align_years:
        df = stock_years.merge(biomass, on=["stockid", "year"], how="inner")
    else:
        shared = set(stock_years["stockid"]) & set(biomass["stockid"])
        left = stock_years[stock_years["stockid"].isin(shared)]
        right = biomass[biomass["stockid"].isin(shared)]
        df = left.merge(right, on=["stockid", "year"], how="outer")
        # Stock-level attributes are constant per stock; fill biomass-only years.
        const_cols = [c for c in ["M", "life_history", "stocklong", "commonname", "scientificname", "region"] if c in df.columns]
        df[const_cols] = df.groupby("stockid")[const_cols].transform("first")
    df = df.sort_values(["stockid", "year"], kind="mergesort").reset_index(drop=True)
    log_count(logger, "join.B", len(df), "stock-years with B/BMSY")
    log_count(logger, "join.B", df["stockid"].nunique(), "stocks with F, M and B/BMSY")
    return df
