"""Validation of FMI against stock collapse.

Predictor: a stock's maximum FMI across its years. Outcome: whether its
B/BMSY ever fell below the collapse threshold.

Rates whose denominator is zero are reported as ``None`` (written as ``NA``),
never as 0 and never as a silent NaN. Strata that fail the sample-size gate
are returned with ``valid=False`` and a reason and take no part in
comparisons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.stats import fisher_exact
from sklearn.metrics import auc as sk_auc
from sklearn.metrics import roc_auc_score, roc_curve
from statsmodels.stats.proportion import proportion_confint

from .config import AnalysisConfig
from .fmi import LIFE_HISTORY_ORDER, LifeHistory, exploitation_rate
from .logging_utils import log_count


METRICS = ("sensitivity", "specificity", "ppv", "npv", "accuracy")


def safe_ratio(num: float, den: float) -> Optional[float]:
    if den == 0:
        return None
    return float(num) / float(den)


def _delta(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None or b is None:
        return None
    return float(a) - float(b)


# ---------------------------------------------------------------------------
# Confusion matrix
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConfusionMatrix:
    tp: int
    fp: int
    fn: int
    tn: int

    @classmethod
    def from_predictions(cls, predicted: Sequence[bool], actual: Sequence[bool]) -> "ConfusionMatrix":
        p = np.asarray(predicted, dtype=bool)
        a = np.asarray(actual, dtype=bool)
        if p.shape != a.shape:
            raise ValueError(f"predicted/actual length mismatch: {p.shape} vs {a.shape}")
        return cls(
            tp=int(np.sum(p & a)),
            fp=int(np.sum(p & ~a)),
            fn=int(np.sum(~p & a)),
            tn=int(np.sum(~p & ~a)),
        )

    @property
    def n(self) -> int:
        return self.tp + self.fp + self.fn + self.tn

    @property
    def sensitivity(self) -> Optional[float]:
        return safe_ratio(self.tp, self.tp + self.fn)

    @property
    def specificity(self) -> Optional[float]:
        return safe_ratio(self.tn, self.tn + self.fp)

    @property
    def ppv(self) -> Optional[float]:
        return safe_ratio(self.tp, self.tp + self.fp)

    @property
    def npv(self) -> Optional[float]:
        return safe_ratio(self.tn, self.tn + self.fn)

    @property
    def accuracy(self) -> Optional[float]:
        return safe_ratio(self.tp + self.tn, self.n)

    def metrics(self) -> Dict[str, Optional[float]]:
        return {m: getattr(self, m) for m in METRICS}

    def _counts_for(self, metric: str) -> Tuple[int, int]:
        return {
            "sensitivity": (self.tp, self.tp + self.fn),
            "specificity": (self.tn, self.tn + self.fp),
            "ppv": (self.tp, self.tp + self.fp),
            "npv": (self.tn, self.tn + self.fn),
            "accuracy": (self.tp + self.tn, self.n),
        }[metric]

    def wilson_intervals(self, alpha: float = 0.05) -> Dict[str, Tuple[Optional[float], Optional[float]]]:
        out: Dict[str, Tuple[Optional[float], Optional[float]]] = {}
        for m in METRICS:
            count, nobs = self._counts_for(m)
            if nobs == 0:
                out[m] = (None, None)
                continue
            lo, hi = proportion_confint(count, nobs, alpha=alpha, method="wilson")
            out[m] = (float(lo), float(hi))
        return out

    def fisher_exact(self) -> Dict[str, Optional[float]]:
        """Fisher's exact test of association between signal and collapse."""
        if self.n == 0:
            return {"odds_ratio": None, "p_value": None}
        odds_ratio, p_value = fisher_exact([[self.tp, self.fp], [self.fn, self.tn]])
        return {
            "odds_ratio": float(odds_ratio) if np.isfinite(odds_ratio) else None,
            "p_value": float(p_value),
        }

    def as_row(self, *, with_intervals: bool = False) -> Dict[str, Any]:
        row: Dict[str, Any] = {"TP": self.tp, "FP": self.fp, "FN": self.fn, "TN": self.tn, "n": self.n}
        row.update(self.metrics())
        if with_intervals:
            for m, (lo, hi) in self.wilson_intervals().items():
                row[f"{m}_ci_low"] = lo
                row[f"{m}_ci_high"] = hi
        return row


def confusion_at_threshold(
    summary: pd.DataFrame,
    threshold: float,
    *,
    predictor: str = "max_FMI",
    outcome: str = "ever_collapsed",
) -> ConfusionMatrix:
    predicted = pd.to_numeric(summary[predictor], errors="coerce").to_numpy(dtype=float) >= float(threshold)
    return ConfusionMatrix.from_predictions(predicted, summary[outcome].astype(bool).to_numpy())


# ---------------------------------------------------------------------------
# Stock-level labels
# ---------------------------------------------------------------------------


def collapsed(biomass: pd.DataFrame, stock_id: str, threshold: float = 0.5) -> bool:
    """True iff any B/BMSY point of the stock lies below the threshold."""
    vals = biomass.loc[biomass["stockid"] == stock_id, "B_BMSY"]
    return bool((pd.to_numeric(vals, errors="coerce") < threshold).any())


def ever_danger(stock_years: pd.DataFrame, stock_id: str, threshold: float = 1.25) -> bool:
    """True iff any stock-year of the stock reaches FMI >= threshold."""
    vals = stock_years.loc[stock_years["stockid"] == stock_id, "FMI"]
    return bool((pd.to_numeric(vals, errors="coerce") >= threshold).any())


def summarise_stocks(
    analysis: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """One row per stock: worst exploitation, worst biomass and the binary labels."""
    df = analysis.copy()
    df["_danger"] = df["FMI"] >= cfg.danger_threshold
    df["_warning"] = df["FMI"] >= cfg.gulland_threshold
    df["_collapsed"] = df["B_BMSY"] < cfg.collapse_threshold
    df["_severe"] = df["B_BMSY"] < cfg.severe_collapse_threshold

    keys = ["stockid"]
    meta_cols = [c for c in ["commonname", "region", "M", "life_history"] if c in df.columns]
    g = df.groupby(keys, sort=True)
    out = g[meta_cols].first()
    out["n_years"] = g["FMI"].count()
    out["max_FMI"] = g["FMI"].max()
    out["min_B_BMSY"] = g["B_BMSY"].min()
    out["ever_danger"] = g["_danger"].any()
    out["ever_warning"] = g["_warning"].any()
    out["ever_collapsed"] = g["_collapsed"].any()
    out["ever_severe"] = g["_severe"].any()
    out = out.reset_index()
    out = out[out["max_FMI"].notna()].reset_index(drop=True)

    log_count(logger, "summary", len(out), "stocks in validation")
    log_count(logger, "summary", int(out["ever_collapsed"].sum()), "stocks collapsed")
    return out


def life_history_summary(summary: pd.DataFrame) -> pd.DataFrame:
    rows: List[Dict[str, Any]] = []
    for lh in LIFE_HISTORY_ORDER:
        sub = summary[summary["life_history"] == lh.value]
        if sub.empty:
            continue
        n = len(sub)
        n_col = int(sub["ever_collapsed"].sum())
        n_dan = int(sub["ever_danger"].sum())
        both = int((sub["ever_collapsed"] & sub["ever_danger"]).sum())
        rows.append(
            {
                "life_history": lh.value,
                "n_stocks": n,
                "n_collapsed": n_col,
                "n_danger": n_dan,
                "n_danger_and_collapsed": both,
                "pct_collapsed": 100.0 * n_col / n,
                "pct_danger": 100.0 * n_dan / n,
                "sensitivity": None if n_col == 0 else 100.0 * both / n_col,
            }
        )
    return pd.DataFrame(rows)


# ---------------------------------------------------------------------------
# ROC
# ---------------------------------------------------------------------------


def roc_sweep(predictor: Sequence[float], outcome: Sequence[bool], thresholds: Sequence[float]) -> pd.DataFrame:
    """TPR/FPR per swept threshold; positive iff predictor >= threshold."""
    x = np.asarray(predictor, dtype=float)
    y = np.asarray(outcome, dtype=bool)
    n_pos = int(y.sum())
    n_neg = int((~y).sum())
    if n_pos == 0 or n_neg == 0:
        raise ValueError(f"ROC needs both outcome classes (positives={n_pos}, negatives={n_neg})")

    rows = []
    for t in thresholds:
        cm = ConfusionMatrix.from_predictions(x >= t, y)
        tpr = cm.tp / n_pos
        fpr = cm.fp / n_neg
        rows.append(
            {
                "threshold": float(t),
                "TPR": tpr,
                "FPR": fpr,
                "TP": cm.tp,
                "FP": cm.fp,
                "FN": cm.fn,
                "TN": cm.tn,
                "youden_j": tpr - fpr,
            }
        )
    return pd.DataFrame(rows)


def trapezoid_auc(fpr: Sequence[float], tpr: Sequence[float], *, anchored: bool = True) -> float:
    """Trapezoidal AUC over points ordered by FPR then TPR, anchored at (0,0) and (1,1).

    The anchors make the area span the whole FPR axis even when some stocks
    fall outside the swept threshold range (max FMI above the last threshold
    or below the first). Integrating the swept points alone would report a
    smaller area in that case; pass ``anchored=False`` for that variant.
    """
    pts = sorted(zip(np.asarray(fpr, dtype=float), np.asarray(tpr, dtype=float)))
    if not anchored:
        if len(pts) < 2:
            return 0.0
        xs = np.asarray([p[0] for p in pts])
        ys = np.asarray([p[1] for p in pts])
        return float(sk_auc(xs, ys))
    pts = [(0.0, 0.0)] + pts + [(1.0, 1.0)]
    xs = np.asarray([p[0] for p in pts])
    ys = np.asarray([p[1] for p in pts])
    return float(sk_auc(xs, ys))


def youden_optimum(curve: pd.DataFrame) -> pd.Series:
    """Row maximising J = TPR - FPR; the lowest threshold wins ties."""
    idx = int(np.argmax(curve["youden_j"].to_numpy(dtype=float)))
    return curve.iloc[idx]


@dataclass
class RocResult:
    valid: bool
    reason: Optional[str] = None
    n_total: int = 0
    n_positive: int = 0
    n_negative: int = 0
    curve: pd.DataFrame = field(default_factory=pd.DataFrame)
    auc: Optional[float] = None
    swept_auc: Optional[float] = None
    empirical_auc: Optional[float] = None
    optimal_threshold: Optional[float] = None
    optimal_sensitivity: Optional[float] = None
    optimal_specificity: Optional[float] = None
    optimal_j: Optional[float] = None

    def as_row(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "n_stocks": self.n_total,
            "n_collapsed": self.n_positive,
            "collapse_rate": safe_ratio(self.n_positive, self.n_total),
            "auc": self.auc,
            "auc_swept": self.swept_auc,
            "auc_empirical": self.empirical_auc,
            "optimal_threshold": self.optimal_threshold,
            "optimal_sensitivity": self.optimal_sensitivity,
            "optimal_specificity": self.optimal_specificity,
        }


def compute_roc(
    summary: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    predictor: str = "max_FMI",
    outcome: str = "ever_collapsed",
) -> RocResult:
    y = summary[outcome].astype(bool).to_numpy()
    x = pd.to_numeric(summary[predictor], errors="coerce").to_numpy(dtype=float)
    n_total = int(len(y))
    n_pos = int(y.sum())
    n_neg = n_total - n_pos
    base = dict(n_total=n_total, n_positive=n_pos, n_negative=n_neg)

    if n_total < cfg.min_stocks:
        return RocResult(valid=False, reason=f"Insufficient stocks ({n_total} < {cfg.min_stocks})", **base)
    if n_pos < cfg.min_collapsed:
        return RocResult(valid=False, reason=f"Insufficient collapsed stocks ({n_pos} < {cfg.min_collapsed})", **base)
    if n_neg == 0:
        return RocResult(valid=False, reason="Outcome has no variance (every stock collapsed)", **base)

    curve = roc_sweep(x, y, cfg.roc_thresholds)
    best = youden_optimum(curve)
    return RocResult(
        valid=True,
        curve=curve,
        auc=trapezoid_auc(curve["FPR"], curve["TPR"]),
        swept_auc=trapezoid_auc(curve["FPR"], curve["TPR"], anchored=False),
        empirical_auc=float(roc_auc_score(y, x)),
        optimal_threshold=float(best["threshold"]),
        optimal_sensitivity=float(best["TPR"]),
        optimal_specificity=float(1.0 - best["FPR"]),
        optimal_j=float(best["youden_j"]),
        **base,
    )


def empirical_roc_curve(summary: pd.DataFrame, *, predictor: str = "max_FMI", outcome: str = "ever_collapsed") -> pd.DataFrame:
    """Every-threshold ROC curve from scikit-learn (used for plotting)."""
    y = summary[outcome].astype(bool).to_numpy()
    x = pd.to_numeric(summary[predictor], errors="coerce").to_numpy(dtype=float)
    fpr, tpr, thr = roc_curve(y, x)
    return pd.DataFrame({"threshold": thr, "TPR": tpr, "FPR": fpr})


# ---------------------------------------------------------------------------
# Stratified ROC and comparison
# ---------------------------------------------------------------------------


@dataclass
class StratumResult:
    life_history: LifeHistory
    roc: RocResult
    universal: Optional[ConfusionMatrix] = None

    @property
    def valid(self) -> bool:
        return self.roc.valid

    def as_row(self, breaks: Sequence[float] = (0.2, 0.4, 0.8)) -> Dict[str, Any]:
        row: Dict[str, Any] = {"life_history": self.life_history.value, "M_range": self.life_history.m_range(breaks)}
        row.update(self.roc.as_row())
        u = self.universal
        row["univ_sensitivity"] = u.sensitivity if u is not None else None
        row["univ_specificity"] = u.specificity if u is not None else None
        row["univ_ppv"] = u.ppv if u is not None else None
        return row


def stratified_roc(
    summary: pd.DataFrame,
    cfg: AnalysisConfig,
    *,
    logger: Optional[logging.Logger] = None,
) -> List[StratumResult]:
    """Independent ROC per life-history category, in category order."""
    results: List[StratumResult] = []
    for lh in LIFE_HISTORY_ORDER:
        sub = summary[summary["life_history"] == lh.value]
        roc = compute_roc(sub, cfg)
        universal = confusion_at_threshold(sub, cfg.danger_threshold) if roc.valid else None
        results.append(StratumResult(life_history=lh, roc=roc, universal=universal))
        if logger is not None:
            if roc.valid:
                logger.info(
                    "[stratum] %s: n=%d collapsed=%d AUC=%.3f optimal=%.2f",
                    lh.value,
                    roc.n_total,
                    roc.n_positive,
                    roc.auc,
                    roc.optimal_threshold,
                )
            else:
                logger.warning("[stratum] %s: n=%d invalid (%s)", lh.value, roc.n_total, roc.reason)
    return results


def stratified_frame(strata: Sequence[StratumResult], cfg: AnalysisConfig) -> pd.DataFrame:
    return pd.DataFrame([s.as_row(cfg.life_history_breaks) for s in strata])


def threshold_table(strata: Sequence[StratumResult], cfg: AnalysisConfig) -> pd.DataFrame:
    """Proposed per-category thresholds, valid strata only."""
    rows = []
    for s in strata:
        if not s.valid:
            continue
        t = float(s.roc.optimal_threshold)
        rows.append(
            {
                "life_history": s.life_history.value,
                "M_range": s.life_history.m_range(cfg.life_history_breaks),
                "n_stocks": s.roc.n_total,
                "optimal_threshold": round(t, 2),
                "E_equivalent": round(exploitation_rate(t), 3),
                "auc": round(float(s.roc.auc), 3),
            }
        )
    return pd.DataFrame(rows, columns=["life_history", "M_range", "n_stocks", "optimal_threshold", "E_equivalent", "auc"])


@dataclass
class Comparison:
    universal: ConfusionMatrix
    stratified: Optional[ConfusionMatrix]
    universal_threshold: float
    stratum_thresholds: Dict[str, float]

    @property
    def deltas(self) -> Dict[str, Optional[float]]:
        """Stratified minus universal, per metric."""
        if self.stratified is None:
            return {m: None for m in METRICS}
        s = self.stratified.metrics()
        u = self.universal.metrics()
        return {m: _delta(s[m], u[m]) for m in METRICS}

    def frame(self) -> pd.DataFrame:
        rows = [{"approach": "Universal", "threshold": self.universal_threshold, **self.universal.as_row()}]
        if self.stratified is not None:
            rows.append({"approach": "Stratified", "threshold": None, **self.stratified.as_row()})
        return pd.DataFrame(rows)


def compare_approaches(summary: pd.DataFrame, strata: Sequence[StratumResult], cfg: AnalysisConfig) -> Comparison:
    """Universal danger threshold on all stocks vs each valid stratum's own optimum."""
    universal = confusion_at_threshold(summary, cfg.danger_threshold)
    lookup = {s.life_history.value: float(s.roc.optimal_threshold) for s in strata if s.valid}
    if not lookup:
        return Comparison(universal, None, cfg.danger_threshold, {})

    sub = summary[summary["life_history"].isin(list(lookup))]
    thr = sub["life_history"].map(lookup).to_numpy(dtype=float)
    predicted = pd.to_numeric(sub["max_FMI"], errors="coerce").to_numpy(dtype=float) >= thr
    stratified = ConfusionMatrix.from_predictions(predicted, sub["ever_collapsed"].astype(bool).to_numpy())
    return Comparison(universal, stratified, cfg.danger_threshold, lookup)


@dataclass(frozen=True)
class Verdict:
    recommendation: str
    reason: str


def generate_verdict(universal_auc: Optional[float], strata: Sequence[StratumResult], comparison: Comparison) -> Verdict:
    valid = [s for s in strata if s.valid]
    if not valid:
        return Verdict("INSUFFICIENT DATA", "No life history category had sufficient data for ROC analysis")

    aucs = [float(s.roc.auc) for s in valid]
    best_auc = max(aucs)
    avg_auc = float(np.mean(aucs))
    spec_gain = comparison.deltas["specificity"]

    if best_auc >= 0.70:
        return Verdict(
            "COMBINED PAPER",
            f"Best stratified AUC = {best_auc:.2f} (>=0.70). Complete story: problem -> insight -> solution.",
        )
    auc_gain = universal_auc is not None and avg_auc > universal_auc + 0.05
    if auc_gain or (spec_gain is not None and spec_gain > 0.10):
        u = "NA" if universal_auc is None else f"{universal_auc:.2f}"
        s = "NA" if spec_gain is None else f"{spec_gain * 100:+.0f}"
        return Verdict(
            "COMBINED PAPER (with caveats)",
            f"Stratification improves performance (AUC: {u} -> {avg_auc:.2f} avg, Spec: {s} pp). "
            "Frame as 'improved, not solved'.",
        )
    u = "NA" if universal_auc is None else f"{universal_auc:.2f}"
    return Verdict(
        "PAPER 1 ONLY",
        f"Stratification provides minimal improvement (AUC: {u} -> {avg_auc:.2f}). "
        "Publish screening tool with limitations.",
    )


# ---------------------------------------------------------------------------
# Lead time
# ---------------------------------------------------------------------------


def lead_time(first_danger_year: Optional[int], first_collapse_year: Optional[int]) -> Optional[int]:
    """Years from the first danger signal to the first collapse; None unless positive."""
    if first_danger_year is None or first_collapse_year is None:
        return None
    lt = int(first_collapse_year) - int(first_danger_year)
    return lt if lt > 0 else None


def _first_year(years: pd.Series, mask: pd.Series) -> Optional[int]:
    hit = years[mask.fillna(False).astype(bool)]
    return int(hit.min()) if len(hit) else None


def collapse_timing(analysis: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    """First collapse and first danger year for every stock that collapsed."""
    rows = []
    for sid, g in analysis.sort_values(["stockid", "year"]).groupby("stockid", sort=True):
        first_collapse = _first_year(g["year"], g["B_BMSY"] < cfg.collapse_threshold)
        if first_collapse is None:
            continue
        first_danger = _first_year(g["year"], g["FMI"] >= cfg.danger_threshold)
        lt = lead_time(first_danger, first_collapse)
        rows.append(
            {
                "stockid": sid,
                "first_collapse_year": first_collapse,
                "first_danger_year": first_danger,
                "had_warning": first_danger is not None,
                "signal_offset": None if first_danger is None else first_collapse - first_danger,
                "lead_time": lt,
                "warning_before_collapse": lt is not None,
            }
        )
    cols = [
        "stockid",
        "first_collapse_year",
        "first_danger_year",
        "had_warning",
        "signal_offset",
        "lead_time",
        "warning_before_collapse",
    ]
    out = pd.DataFrame(rows, columns=cols)
    for c in ["first_danger_year", "signal_offset", "lead_time"]:
        out[c] = out[c].astype("Int64")
    return out


@dataclass(frozen=True)
class LeadTimeSummary:
    n_collapsed: int
    n_with_signal: int
    n_warning_before: int
    median: Optional[float]
    mean: Optional[float]
    minimum: Optional[int]
    maximum: Optional[int]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "n_collapsed": self.n_collapsed,
            "n_with_signal": self.n_with_signal,
            "n_warning_before": self.n_warning_before,
            "lead_time_median": self.median,
            "lead_time_mean": self.mean,
            "lead_time_min": self.minimum,
            "lead_time_max": self.maximum,
        }


def lead_time_summary(timing: pd.DataFrame) -> LeadTimeSummary:
    lt = timing["lead_time"].dropna().astype(int).to_numpy()
    n = int(lt.size)
    return LeadTimeSummary(
        n_collapsed=int(len(timing)),
        n_with_signal=int(timing["had_warning"].sum()),
        n_warning_before=n,
        median=float(np.median(lt)) if n else None,
        mean=float(np.mean(lt)) if n else None,
        minimum=int(lt.min()) if n else None,
        maximum=int(lt.max()) if n else None,
    )


def metrics_table(
    summary: pd.DataFrame,
    cm: ConfusionMatrix,
    roc: RocResult,
) -> pd.DataFrame:
    """Headline validation metrics as a (metric, value) table; rates in percent."""

    def pct(v: Optional[float]) -> Optional[float]:
        return None if v is None else 100.0 * v

    fisher = cm.fisher_exact()
    rows = [
        ("N_stocks", len(summary)),
        ("N_collapsed", int(summary["ever_collapsed"].sum())),
        ("N_healthy", int((~summary["ever_collapsed"].astype(bool)).sum())),
        ("Sensitivity", pct(cm.sensitivity)),
        ("Specificity", pct(cm.specificity)),
        ("PPV", pct(cm.ppv)),
        ("NPV", pct(cm.npv)),
        ("Accuracy", pct(cm.accuracy)),
        ("Fisher_odds_ratio", fisher["odds_ratio"]),
        ("Fisher_p_value", fisher["p_value"]),
        ("ROC_valid", roc.valid),
        ("ROC_reason", roc.reason),
        ("ROC_AUC", roc.auc),
        ("ROC_AUC_swept", roc.swept_auc),
        ("ROC_AUC_empirical", roc.empirical_auc),
        ("Optimal_threshold", roc.optimal_threshold),
    ]
    return pd.DataFrame(rows, columns=["metric", "value"])
