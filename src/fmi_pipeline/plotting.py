"""Figures. Every function returns a matplotlib Figure (or None when there is
nothing to draw); saving and closing is left to `ArtifactWriter`.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import AnalysisConfig
from .fmi import LIFE_HISTORY_ORDER, ZONE_COLORS, Zone
from .validation import Comparison, ConfusionMatrix, RocResult, StratumResult


# Illustrative stocks for the concept figure: (label, M, F, status, label side)
EXAMPLE_SPECIES = (
    ("Shark", 0.06, 0.045, "sustainable", "below"),
    ("Rockfish", 0.08, 0.38, "overexploited", "above"),
    ("Cod", 0.22, 0.35, "overexploited", "above"),
    ("Tuna", 0.35, 0.18, "sustainable", "below"),
    ("Herring", 0.60, 0.55, "fully_exploited", "above"),
    ("Anchovy", 1.40, 0.70, "sustainable", "above"),
)

STATUS_COLORS = {
    "sustainable": "#1B5E20",
    "fully_exploited": "#E65100",
    "overexploited": "#B71C1C",
}
ZONE_FILLS = {"sustainable": "#A5D6A7", "fully_exploited": "#FFE0B2", "overexploited": "#FFCDD2"}

LIFE_HISTORY_COLORS = {
    "Long-lived": "#1f4e79",
    "Medium": "#2e86c1",
    "Moderate turnover": "#f39c12",
    "Fast turnover": "#c0392b",
}

COLLAPSE_COLOR = "#8e44ad"
GULLAND_COLOR = "#34495e"


def _diagonals(ax, cfg: AnalysisConfig, lo: float, hi: float) -> None:
    m = np.geomspace(lo, hi, 200)
    ax.plot(m, m * cfg.safe_threshold, "--", color=STATUS_COLORS["sustainable"], linewidth=1.1,
            label=f"F/M = {cfg.safe_threshold:g}")
    ax.plot(m, m * cfg.gulland_threshold, "-", color="0.15", linewidth=1.4, label="F = M (Gulland)")
    ax.plot(m, m * cfg.danger_threshold, "--", color=STATUS_COLORS["overexploited"], linewidth=1.1,
            label=f"F/M = {cfg.danger_threshold:g}")


def concept_figure(cfg: AnalysisConfig):
    """Log-log M vs F with exploitation zones and illustrative species."""
    lo, hi = 0.035, 2.6
    m = np.geomspace(0.01, 5.0, 300)
    fig, ax = plt.subplots(figsize=(10, 10))
    ax.fill_between(m, 1e-3, m * cfg.safe_threshold, color=ZONE_FILLS["sustainable"], alpha=0.6, linewidth=0)
    ax.fill_between(m, m * cfg.safe_threshold, m * cfg.danger_threshold, color=ZONE_FILLS["fully_exploited"],
                    alpha=0.6, linewidth=0)
    ax.fill_between(m, m * cfg.danger_threshold, 20.0, color=ZONE_FILLS["overexploited"], alpha=0.6, linewidth=0)
    _diagonals(ax, cfg, 0.01, 5.0)

    box = dict(boxstyle="round,pad=0.4", facecolor="white", alpha=0.85, edgecolor="none")
    ax.text(1.6, 0.11, "SUSTAINABLE", color=STATUS_COLORS["sustainable"], fontsize=14, fontweight="bold",
            ha="center", va="center", bbox=box)
    ax.text(1.6, 1.6, "FULLY EXPLOITED", color=STATUS_COLORS["fully_exploited"], fontsize=13, fontweight="bold",
            ha="center", va="center", bbox=box)
    ax.text(0.16, 1.4, "OVEREXPLOITED", color=STATUS_COLORS["overexploited"], fontsize=14, fontweight="bold",
            ha="center", va="center", bbox=box)

    for label, M, F, status, side in EXAMPLE_SPECIES:
        ax.scatter([M], [F], s=110, color=STATUS_COLORS[status], edgecolor="black", linewidth=0.6, zorder=5)
        dy = 1.35 if side == "above" else 0.65
        ax.annotate(label, (M, F), xytext=(M, F * dy), ha="center", fontsize=9, fontweight="bold",
                    color="0.15", bbox=dict(boxstyle="round,pad=0.15", facecolor="white", edgecolor="0.6"),
                    arrowprops=dict(arrowstyle="-", color="0.5", linewidth=0.3))

    ax.annotate("", xy=(2.2, 0.04), xytext=(0.045, 0.04),
                arrowprops=dict(arrowstyle="-|>", color="0.4", linewidth=0.7))
    ax.text(0.32, 0.037, "Life history gradient: long-lived to fast turnover", ha="center", va="top",
            fontsize=8, color="0.3", style="italic")

    ticks = [0.05, 0.1, 0.2, 0.5, 1.0, 2.0]
    ax.set_xscale("log")
    ax.set_yscale("log")
    ax.set_xlim(lo, hi)
    ax.set_ylim(lo, hi)
    ax.set_xticks(ticks, [f"{t:g}" for t in ticks])
    ax.set_yticks(ticks, [f"{t:g}" for t in ticks])
    ax.set_xlabel("Natural mortality, M (year$^{-1}$)")
    ax.set_ylabel("Fishing mortality, F (year$^{-1}$)")
    ax.set_title("Fishing Mortality Index: exploitation relative to natural mortality", fontweight="bold")
    ax.legend(loc="upper left", frameon=False, fontsize=9)
    ax.set_aspect("equal")
    fig.tight_layout()
    return fig


def phase_plot(stock_years: pd.DataFrame, cfg: AnalysisConfig):
    """Mean F against M per stock, coloured by the zone of its mean FMI.

    Configured reference points (external estimates, stress-test values) are
    drawn as labelled diamonds on the same axes.
    """
    refs = list(cfg.reference_points)
    if stock_years.empty:
        g = pd.DataFrame(columns=["stockid", "M", "F"])
    else:
        g = stock_years.groupby("stockid").agg(M=("M", "first"), F=("F", "mean")).reset_index()
        g = g[g["F"] > 0]
    if g.empty and not refs:
        return None

    ms = list(g["M"]) + [r.M for r in refs]
    fs = list(g["F"]) + [r.F for r in refs if r.F > 0]
    lo = float(min(ms + fs)) * 0.8
    hi = float(max(ms + fs)) * 1.25

    fig, ax = plt.subplots(figsize=(8.4, 7.0))
    _diagonals(ax, cfg, lo, hi)
    if not g.empty:
        fmi = g["F"] / g["M"]
        zones = np.searchsorted([cfg.safe_threshold, cfg.gulland_threshold, cfg.danger_threshold], fmi, side="right")
        for i, z in enumerate((Zone.SAFE, Zone.CAUTION, Zone.WARNING, Zone.DANGER)):
            sel = zones == i
            if sel.any():
                ax.scatter(g.loc[sel, "M"], g.loc[sel, "F"], s=22, alpha=0.75, color=ZONE_COLORS[z], label=z.value)
    for r in refs:
        # F = 0 has no place on a log axis; pin it to the bottom edge.
        f = r.F if r.F > 0 else lo
        ax.scatter([r.M], [f], marker="D", s=70, color="black", edgecolor="white", zorder=5)
        ax.annotate(f"{r.label} ({r.kind})", (r.M, f), xytext=(6, 6), textcoords="offset points", fontsize=8)
    ax.set_xscale("log")
    ax.set_yscale("log")
    ax.set_xlim(lo, hi)
    ax.set_ylim(lo, hi)
    ax.set_xlabel("Natural mortality, M")
    ax.set_ylabel("Mean fishing mortality, F")
    title = f"FMI phase plot ({len(g)} stocks)"
    if refs:
        title += f", {len(refs)} reference point(s)"
    ax.set_title(title)
    ax.grid(alpha=0.2, which="both")
    ax.legend(frameon=False, fontsize=8)
    fig.tight_layout()
    return fig


def forensic_plot(
    stock_fmi: pd.DataFrame,
    breach: Mapping,
    cfg: AnalysisConfig,
    *,
    collapse_year: Optional[int] = None,
    title_prefix: str = "",
):
    """FMI time series over zone background bands, with collapse and first-danger markers."""
    if stock_fmi.empty:
        return None
    s = stock_fmi.sort_values("year")
    years = s["year"].to_numpy(dtype=float)
    fmi = s["FMI"].to_numpy(dtype=float)
    top = max(float(np.nanmax(fmi)) * 1.15, cfg.danger_threshold * 1.3)

    fig, ax = plt.subplots(figsize=(12, 7))
    bands = [
        (0.0, cfg.safe_threshold, Zone.SAFE),
        (cfg.safe_threshold, cfg.gulland_threshold, Zone.CAUTION),
        (cfg.gulland_threshold, cfg.danger_threshold, Zone.WARNING),
        (cfg.danger_threshold, top, Zone.DANGER),
    ]
    for y0, y1, z in bands:
        ax.axhspan(y0, y1, color=ZONE_COLORS[z], alpha=0.15, linewidth=0)
    ax.axhline(cfg.safe_threshold, linestyle="--", color=ZONE_COLORS[Zone.SAFE], linewidth=0.8)
    ax.axhline(cfg.gulland_threshold, linestyle="-", color=GULLAND_COLOR, linewidth=1.0)
    ax.axhline(cfg.danger_threshold, linestyle="--", color=ZONE_COLORS[Zone.DANGER], linewidth=0.8)

    ax.plot(years, fmi, color="#2c3e50", linewidth=1.2, zorder=3)
    for z in (Zone.SAFE, Zone.CAUTION, Zone.WARNING, Zone.DANGER):
        sel = (s["zone"] == z.value).to_numpy()
        if sel.any():
            ax.scatter(years[sel], fmi[sel], s=22, color=ZONE_COLORS[z], label=z.value, zorder=4)

    if collapse_year is not None:
        ax.axvline(collapse_year, linestyle=":", color=COLLAPSE_COLOR, linewidth=1.2)
        ax.text(collapse_year, top * 0.9, f" COLLAPSE\n {collapse_year}", color=COLLAPSE_COLOR,
                fontweight="bold", fontsize=9, ha="left", va="top")
        first = breach.get("first_breach_danger")
        if first is not None and not pd.isna(first) and int(first) < collapse_year:
            ax.axvline(int(first), linestyle="--", color=ZONE_COLORS[Zone.DANGER], linewidth=1.0)
            ax.text(int(first), cfg.danger_threshold * 1.1,
                    f"DANGER BREACH\n{collapse_year - int(first)} yrs warning ",
                    color=ZONE_COLORS[Zone.DANGER], fontweight="bold", fontsize=9, ha="right")

    ax.set_ylim(0.0, top)
    ax.set_xlabel("Year")
    ax.set_ylabel("FMI (F/M ratio)")
    ax.set_title(f"{title_prefix}{breach.get('commonname', '')} ({breach.get('region', '')})", fontweight="bold",
                 loc="left")
    ax.text(0.0, 1.01, f"M = {float(breach['M']):.3f} | Life history: {breach.get('life_history', '')} | "
            f"{int(breach.get('n_years', len(s)))} years of data", transform=ax.transAxes, color="0.4",
            fontsize=9, va="bottom")
    ax.legend(loc="upper center", bbox_to_anchor=(0.5, -0.08), ncol=4, frameon=False, title="Zone")
    ax.grid(alpha=0.2)
    fig.tight_layout()
    return fig


def roc_plot(roc: RocResult, universal: ConfusionMatrix, cfg: AnalysisConfig, *, title: str = "ROC: max FMI vs collapse"):
    if not roc.valid:
        return None
    c = roc.curve.sort_values(["FPR", "TPR"])
    fig, ax = plt.subplots(figsize=(7.0, 7.0))
    ax.plot(np.r_[0.0, c["FPR"], 1.0], np.r_[0.0, c["TPR"], 1.0], color="#224b8f", linewidth=2.0,
            label=f"Sweep (AUC = {roc.auc:.3f})")
    ax.plot([0, 1], [0, 1], linestyle="--", color="0.6", linewidth=1.0)
    if universal.sensitivity is not None and universal.specificity is not None:
        ax.scatter([1 - universal.specificity], [universal.sensitivity], s=70, color=ZONE_COLORS[Zone.DANGER],
                   zorder=5, label=f"Danger threshold ({cfg.danger_threshold:g})")
    ax.scatter([1 - roc.optimal_specificity], [roc.optimal_sensitivity], s=70, marker="D", color="#27ae60",
               zorder=5, label=f"Youden optimum ({roc.optimal_threshold:.2f})")
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_xlabel("False positive rate (1 - specificity)")
    ax.set_ylabel("True positive rate (sensitivity)")
    ax.set_title(title)
    ax.grid(alpha=0.2)
    ax.legend(loc="lower right", frameon=False)
    fig.tight_layout()
    return fig


def stratified_roc_plot(curves: Dict[str, pd.DataFrame], strata: Sequence[StratumResult]):
    """Empirical ROC curve per life-history category with a valid ROC."""
    valid = [s for s in strata if s.valid and s.life_history.value in curves]
    if not valid:
        return None
    fig, ax = plt.subplots(figsize=(7.5, 7.0))
    for s in valid:
        c = curves[s.life_history.value]
        ax.plot(c["FPR"], c["TPR"], linewidth=2.0, color=LIFE_HISTORY_COLORS[s.life_history.value],
                label=f"{s.life_history.value} (AUC = {s.roc.auc:.2f}, n = {s.roc.n_total})")
    ax.plot([0, 1], [0, 1], linestyle="--", color="0.6", linewidth=1.0)
    ax.set_xlim(0, 1)
    ax.set_ylim(0, 1)
    ax.set_xlabel("False positive rate")
    ax.set_ylabel("True positive rate")
    ax.set_title("ROC by life history")
    ax.grid(alpha=0.2)
    ax.legend(loc="lower right", frameon=False, fontsize=8)
    fig.tight_layout()
    return fig


def optimal_thresholds_plot(strata: Sequence[StratumResult], cfg: AnalysisConfig):
    valid = [s for s in strata if s.valid]
    if not valid:
        return None
    names = [s.life_history.value for s in valid]
    vals = [float(s.roc.optimal_threshold) for s in valid]
    fig, ax = plt.subplots(figsize=(8.4, 5.0))
    x = np.arange(len(valid))
    ax.bar(x, vals, color=[LIFE_HISTORY_COLORS[n] for n in names], alpha=0.85)
    for xi, v in zip(x, vals):
        ax.text(xi, v, f"{v:.2f}", ha="center", va="bottom", fontsize=9)
    ax.axhline(cfg.danger_threshold, linestyle="--", color=ZONE_COLORS[Zone.DANGER], linewidth=1.0,
               label=f"Universal danger ({cfg.danger_threshold:g})")
    ax.axhline(cfg.gulland_threshold, linestyle="-", color=GULLAND_COLOR, linewidth=1.0,
               label=f"Gulland ({cfg.gulland_threshold:g})")
    ax.set_xticks(x, [s.life_history.label(cfg.life_history_breaks) for s in valid], rotation=15)
    ax.set_ylabel("Optimal FMI threshold (Youden)")
    ax.set_title("Optimal thresholds by life history")
    ax.grid(alpha=0.2, axis="y")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def performance_comparison_plot(comparison: Comparison):
    if comparison.stratified is None:
        return None
    metrics = ["sensitivity", "specificity", "ppv", "npv", "accuracy"]
    u = comparison.universal.metrics()
    s = comparison.stratified.metrics()
    x = np.arange(len(metrics))
    width = 0.38
    fig, ax = plt.subplots(figsize=(8.4, 5.0))
    ax.bar(x - width / 2, [100 * (u[m] or 0.0) for m in metrics], width, color="#7f8c8d", label="Universal")
    ax.bar(x + width / 2, [100 * (s[m] or 0.0) for m in metrics], width, color="#2e86c1", label="Stratified")
    for i, m in enumerate(metrics):
        if u[m] is None:
            ax.text(x[i] - width / 2, 1, "NA", ha="center", fontsize=8)
        if s[m] is None:
            ax.text(x[i] + width / 2, 1, "NA", ha="center", fontsize=8)
    ax.set_xticks(x, ["Sensitivity", "Specificity", "PPV", "NPV", "Accuracy"])
    ax.set_ylim(0, 105)
    ax.set_ylabel("%")
    ax.set_title("Universal vs stratified thresholds")
    ax.grid(alpha=0.2, axis="y")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def auc_comparison_plot(universal_auc: Optional[float], strata: Sequence[StratumResult]):
    valid = [s for s in strata if s.valid]
    if not valid and universal_auc is None:
        return None
    names = (["Universal"] if universal_auc is not None else []) + [s.life_history.value for s in valid]
    vals = ([universal_auc] if universal_auc is not None else []) + [float(s.roc.auc) for s in valid]
    colors = (["#7f8c8d"] if universal_auc is not None else []) + [LIFE_HISTORY_COLORS[s.life_history.value] for s in valid]
    fig, ax = plt.subplots(figsize=(8.4, 5.0))
    x = np.arange(len(names))
    ax.bar(x, vals, color=colors, alpha=0.9)
    for xi, v in zip(x, vals):
        ax.text(xi, v, f"{v:.2f}", ha="center", va="bottom", fontsize=9)
    ax.axhline(0.5, linestyle="--", color="0.5", linewidth=1.0, label="Chance")
    ax.axhline(0.7, linestyle=":", color="#27ae60", linewidth=1.0, label="Acceptable (0.70)")
    ax.set_xticks(x, names, rotation=15)
    ax.set_ylim(0, 1)
    ax.set_ylabel("AUC")
    ax.set_title("Discrimination by life history")
    ax.grid(alpha=0.2, axis="y")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def fmi_vs_collapse_plot(summary: pd.DataFrame, cfg: AnalysisConfig):
    """Max FMI against min B/BMSY per stock (log-log) with threshold lines."""
    d = summary[(summary["max_FMI"] > 0) & (summary["min_B_BMSY"] > 0)]
    if d.empty:
        return None
    fig, ax = plt.subplots(figsize=(8.4, 6.5))
    for lh in LIFE_HISTORY_ORDER:
        sub = d[d["life_history"] == lh.value]
        if not sub.empty:
            ax.scatter(sub["max_FMI"], sub["min_B_BMSY"], s=24, alpha=0.7, color=LIFE_HISTORY_COLORS[lh.value],
                       label=lh.value)
    ax.axvline(cfg.danger_threshold, linestyle="--", color=ZONE_COLORS[Zone.DANGER], linewidth=1.0,
               label=f"FMI = {cfg.danger_threshold:g}")
    ax.axhline(cfg.collapse_threshold, linestyle="--", color=COLLAPSE_COLOR, linewidth=1.0,
               label=f"B/BMSY = {cfg.collapse_threshold:g}")
    ax.set_xscale("log")
    ax.set_yscale("log")
    ax.set_xlabel("Maximum FMI")
    ax.set_ylabel("Minimum B/BMSY")
    ax.set_title("Peak exploitation vs worst biomass state")
    ax.grid(alpha=0.2, which="both")
    ax.legend(frameon=False, fontsize=8)
    fig.tight_layout()
    return fig


def life_history_comparison_plot(lh_summary: pd.DataFrame):
    if lh_summary.empty:
        return None
    x = np.arange(len(lh_summary))
    width = 0.38
    fig, ax = plt.subplots(figsize=(8.4, 5.0))
    ax.bar(x - width / 2, lh_summary["pct_collapsed"], width, color=COLLAPSE_COLOR, alpha=0.8, label="% collapsed")
    ax.bar(x + width / 2, lh_summary["pct_danger"], width, color=ZONE_COLORS[Zone.DANGER], alpha=0.8,
           label="% ever in danger")
    ax.set_xticks(x, [f"{n}\n(n={k})" for n, k in zip(lh_summary["life_history"], lh_summary["n_stocks"])])
    ax.set_ylim(0, 105)
    ax.set_ylabel("% of stocks")
    ax.set_title("Collapse and danger frequency by life history")
    ax.grid(alpha=0.2, axis="y")
    ax.legend(frameon=False)
    fig.tight_layout()
    return fig


def m_comparison_plot(peers: pd.DataFrame, highlight: str, *, m_needed: Optional[float] = None, title: str = ""):
    """Natural mortality of peer stocks, the stock under diagnosis highlighted."""
    if peers.empty:
        return None
    fig, ax = plt.subplots(figsize=(8.4, max(3.0, 0.35 * len(peers) + 1.5)))
    y = np.arange(len(peers))
    colors = [ZONE_COLORS[Zone.DANGER] if sid == highlight else "#7f8c8d" for sid in peers["stockid"]]
    ax.barh(y, peers["M"], color=colors, alpha=0.85)
    if m_needed is not None:
        ax.axvline(m_needed, linestyle="--", color=COLLAPSE_COLOR, linewidth=1.0,
                   label=f"M needed for danger breach ({m_needed:.3f})")
        ax.legend(frameon=False, fontsize=8)
    ax.set_yticks(y, [f"{sid} ({r})" for sid, r in zip(peers["stockid"], peers["region"])])
    ax.set_xlabel("Natural mortality, M")
    ax.set_title(title or f"M comparison ({len(peers)} stocks)")
    ax.grid(alpha=0.2, axis="x")
    fig.tight_layout()
    return fig
