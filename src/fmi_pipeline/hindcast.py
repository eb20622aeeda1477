"""Forensic hindcast: when did each stock first cross each FMI threshold,
and did that happen before its documented collapse?
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .config import AnalysisConfig, ConfigError, load_yaml
from .logging_utils import log_count


META_COLUMNS = ["stockid", "commonname", "region", "M", "life_history"]

BREACH_COLUMNS = [
    "year_start",
    "year_end",
    "n_years",
    "FMI_mean",
    "FMI_max",
    "FMI_min",
    "first_breach_caution",
    "first_breach_warning",
    "first_breach_danger",
    "years_safe",
    "years_caution",
    "years_warning",
    "years_danger",
    "peak_FMI_year",
    "ever_breached_danger",
    "pct_danger",
]

MATCH_COLUMNS = [
    "known_collapse",
    "collapse_name",
    "collapse_notes",
    "lead_time_danger",
    "lead_time_warning",
    "predicted_by_danger",
    "predicted_by_warning",
]

_FIRST_BREACH = ("first_breach_caution", "first_breach_warning", "first_breach_danger")


@dataclass(frozen=True)
class KnownCollapse:
    stockid_pattern: str
    collapse_year: int
    collapse_name: str
    notes: str = ""

    def matches(self, stockid: str) -> bool:
        return re.search(self.stockid_pattern, str(stockid)) is not None


def load_known_collapses(path: Path) -> List[KnownCollapse]:
    raw = load_yaml(path).get("collapses")
    if not isinstance(raw, list):
        raise ConfigError(f"{path}: expected a top-level 'collapses' list")
    out: List[KnownCollapse] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"{path}: collapses[{i}] must be a mapping")
        missing = [k for k in ("stockid_pattern", "collapse_year", "collapse_name") if k not in item]
        if missing:
            raise ConfigError(f"{path}: collapses[{i}] missing keys {missing}")
        out.append(
            KnownCollapse(
                stockid_pattern=str(item["stockid_pattern"]),
                collapse_year=int(item["collapse_year"]),
                collapse_name=str(item["collapse_name"]),
                notes=str(item.get("notes", "")),
            )
        )
    return out


def _first(years: np.ndarray, mask: np.ndarray) -> Optional[int]:
    return int(years[mask].min()) if mask.any() else None


def breach_analysis(
    stock_years: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Per-stock threshold breach summary over the full FMI series."""
    rows: List[Dict[str, Any]] = []
    meta_cols = [c for c in META_COLUMNS if c in stock_years.columns]
    for sid, g in stock_years.sort_values(["stockid", "year"]).groupby("stockid", sort=True):
        years = g["year"].to_numpy(dtype=int)
        fmi = g["FMI"].to_numpy(dtype=float)
        n = len(g)
        caution = fmi >= cfg.safe_threshold
        warning = fmi >= cfg.gulland_threshold
        danger = fmi >= cfg.danger_threshold
        first_danger = _first(years, danger)
        row = {c: g[c].iloc[0] for c in meta_cols}
        row.update(
            {
                "year_start": int(years.min()),
                "year_end": int(years.max()),
                "n_years": n,
                "FMI_mean": float(np.mean(fmi)),
                "FMI_max": float(np.max(fmi)),
                "FMI_min": float(np.min(fmi)),
                "first_breach_caution": _first(years, caution),
                "first_breach_warning": _first(years, warning),
                "first_breach_danger": first_danger,
                "years_safe": int((~caution).sum()),
                "years_caution": int((caution & ~warning).sum()),
                "years_warning": int((warning & ~danger).sum()),
                "years_danger": int(danger.sum()),
                "peak_FMI_year": int(years[int(np.argmax(fmi))]),
                "ever_breached_danger": first_danger is not None,
                "pct_danger": round(100.0 * danger.sum() / n, 1),
            }
        )
        rows.append(row)

    # Same columns whether or not any stock had usable F and M.
    out = pd.DataFrame(rows, columns=META_COLUMNS + BREACH_COLUMNS)
    for c in _FIRST_BREACH:
        out[c] = out[c].astype("Int64")
    out["ever_breached_danger"] = out["ever_breached_danger"].astype(bool)
    log_count(logger, "breach", len(out), "stocks analysed")
    log_count(logger, "breach", int(out["ever_breached_danger"].sum()), "stocks breached danger at least once")
    return out


def _lead(collapse_year: int, breach: Any) -> Optional[int]:
    if breach is None or pd.isna(breach):
        return None
    return int(collapse_year) - int(breach)


def match_known_collapses(
    breaches: pd.DataFrame,
    known: Sequence[KnownCollapse],
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Join breach summaries with documented collapses (first matching pattern wins per stock)."""
    rows: List[Dict[str, Any]] = []
    for _, b in breaches.iterrows():
        hit = next((k for k in known if k.matches(b["stockid"])), None)
        if hit is None:
            continue
        row = b.to_dict()
        lt_danger = _lead(hit.collapse_year, b["first_breach_danger"])
        lt_warning = _lead(hit.collapse_year, b["first_breach_warning"])
        row.update(
            {
                "known_collapse": hit.collapse_year,
                "collapse_name": hit.collapse_name,
                "collapse_notes": hit.notes,
                "lead_time_danger": lt_danger,
                "lead_time_warning": lt_warning,
                "predicted_by_danger": lt_danger is not None and lt_danger > 0,
                "predicted_by_warning": lt_warning is not None and lt_warning > 0,
            }
        )
        rows.append(row)

    out = pd.DataFrame(rows, columns=list(breaches.columns) + MATCH_COLUMNS)
    if out.empty:
        if logger is not None:
            logger.warning("No known collapse events matched in current dataset")
        return out
    for c in ("lead_time_danger", "lead_time_warning"):
        out[c] = out[c].astype("Int64")

    if logger is not None:
        for _, r in out.iterrows():
            if r["predicted_by_danger"]:
                logger.info(
                    "%s: DANGER in %d, collapse in %d (%d years warning)",
                    r["collapse_name"],
                    r["first_breach_danger"],
                    r["known_collapse"],
                    r["lead_time_danger"],
                )
            elif r["predicted_by_warning"]:
                logger.info(
                    "%s: WARNING in %d, collapse in %d (%d years warning)",
                    r["collapse_name"],
                    r["first_breach_warning"],
                    r["known_collapse"],
                    r["lead_time_warning"],
                )
            else:
                first = "never" if pd.isna(r["first_breach_danger"]) else str(int(r["first_breach_danger"]))
                logger.info("%s: not predicted (first danger breach: %s)", r["collapse_name"], first)
    log_count(logger, "collapse", len(out), "stocks with known collapse events")
    return out


def select_visualization_targets(
    breaches: pd.DataFrame,
    matched: pd.DataFrame,
    cfg: AnalysisConfig,
) -> pd.DataFrame:
    """Up to N stocks per life history: known collapses, then long danger series, then any danger."""
    df = breaches[breaches["n_years"] >= cfg.hindcast_min_years].copy()
    if df.empty:
        return df.assign(priority=pd.Series(dtype="int64")).reset_index(drop=True)
    known_ids = set(matched["stockid"]) if not matched.empty else set()
    df["priority"] = np.select(
        [
            df["stockid"].isin(known_ids),
            df["ever_breached_danger"] & (df["n_years"] >= cfg.hindcast_long_series_years),
            df["ever_breached_danger"],
        ],
        [1, 2, 3],
        default=4,
    )
    df = df.sort_values(["priority", "n_years", "stockid"], ascending=[True, False, True], kind="mergesort")
    return df.groupby("life_history", sort=True).head(cfg.hindcast_targets_per_category).reset_index(drop=True)


def diagnose_false_negatives(
    stock_years: pd.DataFrame,
    matched: pd.DataFrame,
    cfg: AnalysisConfig,
) -> pd.DataFrame:
    """Explain documented collapses the danger threshold did not flag in advance.

    never_breached: FMI never reached danger. M_needed is the largest M under
    which the highest pre-collapse F would still have been flagged.
    breach_after_collapse: the first danger breach came in or after the collapse year.
    """
    cols = [
        "stockid",
        "commonname",
        "life_history",
        "collapse_name",
        "known_collapse",
        "kind",
        "M",
        "FMI_max",
        "FMI_max_pre_collapse",
        "F_max_pre_collapse",
        "M_needed",
        "M_too_high",
        "first_breach_danger",
        "years_after_collapse",
    ]
    if matched.empty:
        return pd.DataFrame(columns=cols)

    rows: List[Dict[str, Any]] = []
    for _, r in matched[~matched["predicted_by_danger"].astype(bool)].iterrows():
        g = stock_years[stock_years["stockid"] == r["stockid"]]
        pre = g[g["year"] < r["known_collapse"]]
        f_pre = float(pre["F"].max()) if len(pre) else None
        fmi_pre = float(pre["FMI"].max()) if len(pre) else None
        first = r["first_breach_danger"]
        never = first is None or pd.isna(first)
        m_needed = None
        if never and f_pre is not None:
            m_needed = f_pre / cfg.danger_threshold
        rows.append(
            {
                "stockid": r["stockid"],
                "commonname": r.get("commonname"),
                "life_history": r.get("life_history"),
                "collapse_name": r["collapse_name"],
                "known_collapse": int(r["known_collapse"]),
                "kind": "never_breached" if never else "breach_after_collapse",
                "M": float(r["M"]),
                "FMI_max": float(g["FMI"].max()),
                "FMI_max_pre_collapse": fmi_pre,
                "F_max_pre_collapse": f_pre,
                "M_needed": m_needed,
                "M_too_high": None if m_needed is None else bool(r["M"] > m_needed),
                "first_breach_danger": None if never else int(first),
                "years_after_collapse": None if never else int(first) - int(r["known_collapse"]),
            }
        )
    out = pd.DataFrame(rows, columns=cols)
    for c in ("first_breach_danger", "years_after_collapse"):
        out[c] = out[c].astype("Int64")
    return out


def peer_group_keyword(commonname: str) -> str:
    """Species keyword for peer comparison: last word of the common name ("Atlantic cod" -> "cod")."""
    words = str(commonname).strip().split()
    return words[-1].lower() if words else ""


def peer_m_comparison(stock_years: pd.DataFrame, keyword: str) -> pd.DataFrame:
    """M and mean FMI of every stock whose common name contains the keyword, ordered by M."""
    if not keyword:
        return pd.DataFrame(columns=["stockid", "commonname", "region", "M", "FMI_mean"])
    sub = stock_years[stock_years["commonname"].astype(str).str.contains(keyword, case=False, regex=False)]
    out = (
        sub.groupby("stockid", sort=True)
        .agg(commonname=("commonname", "first"), region=("region", "first"), M=("M", "first"), FMI_mean=("FMI", "mean"))
        .reset_index()
    )
    return out.sort_values(["M", "stockid"], kind="mergesort").reset_index(drop=True)
