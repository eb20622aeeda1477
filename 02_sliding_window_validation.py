#!/usr/bin/env python3
"""02_sliding_window_validation.py

Validates the universal danger threshold against stock collapse: each
stock's maximum FMI against whether its B/BMSY ever fell below the collapse
threshold.

Outputs (output/sliding_window/):
- stock_summary.csv, stock_years.csv
- validation_metrics.csv, contingency_by_outcome.csv
- roc_curve.csv, lead_times.csv, life_history_validation.csv
- roc_curve.png, fmi_vs_collapse.png, life_history_comparison.png
"""

from __future__ import annotations

import argparse

import pandas as pd

from fmi_pipeline.extract import build_analysis_frame
from fmi_pipeline.plotting import fmi_vs_collapse_plot, life_history_comparison_plot, roc_plot
from fmi_pipeline.runner import base_parser, finish_run, start_run
from fmi_pipeline.validation import (
    collapse_timing,
    compute_roc,
    confusion_at_threshold,
    lead_time_summary,
    life_history_summary,
    metrics_table,
    summarise_stocks,
)


def parse_args() -> argparse.Namespace:
    return base_parser("Validate FMI danger threshold against collapse").parse_args()


def _fmt(v) -> str:
    return "NA" if v is None else f"{100.0 * v:.1f}%"


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="02_sliding_window_validation", out_name="sliding_window")
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        tables = ctx.load_tables()
        analysis = build_analysis_frame(tables, cfg, logger=logger)
        summary = summarise_stocks(analysis, cfg, logger=logger)

        cm = confusion_at_threshold(summary, cfg.danger_threshold)
        logger.info("Contingency at FMI >= %.2f: TP=%d FP=%d FN=%d TN=%d", cfg.danger_threshold, cm.tp, cm.fp, cm.fn, cm.tn)
        logger.info(
            "Sensitivity=%s Specificity=%s PPV=%s NPV=%s Accuracy=%s",
            _fmt(cm.sensitivity),
            _fmt(cm.specificity),
            _fmt(cm.ppv),
            _fmt(cm.npv),
            _fmt(cm.accuracy),
        )

        severe = confusion_at_threshold(summary, cfg.danger_threshold, outcome="ever_severe")
        by_outcome = pd.DataFrame(
            [
                {"outcome": f"B/BMSY < {cfg.collapse_threshold:g}", **cm.as_row(with_intervals=True), **cm.fisher_exact()},
                {
                    "outcome": f"B/BMSY < {cfg.severe_collapse_threshold:g}",
                    **severe.as_row(with_intervals=True),
                    **severe.fisher_exact(),
                },
            ]
        )

        roc = compute_roc(summary, cfg)
        if roc.valid:
            logger.info("ROC AUC=%.3f (empirical %.3f); Youden optimum %.2f", roc.auc, roc.empirical_auc, roc.optimal_threshold)
        else:
            logger.warning("ROC not computed: %s", roc.reason)

        timing = collapse_timing(analysis, cfg)
        lt = lead_time_summary(timing)
        logger.info(
            "Collapsed stocks=%d, danger signal=%d, signal before collapse=%d, median lead=%s years",
            lt.n_collapsed,
            lt.n_with_signal,
            lt.n_warning_before,
            "NA" if lt.median is None else f"{lt.median:.1f}",
        )

        metrics = metrics_table(summary, cm, roc)
        metrics = pd.concat(
            [metrics, pd.DataFrame(list(lt.as_dict().items()), columns=["metric", "value"])],
            ignore_index=True,
        )
        lh = life_history_summary(summary)

        w.csv(summary, "stock_summary.csv")
        w.csv(analysis, "stock_years.csv")
        w.csv(metrics, "validation_metrics.csv")
        w.csv(by_outcome, "contingency_by_outcome.csv")
        if roc.valid:
            w.csv(roc.curve, "roc_curve.csv")
        w.csv(timing, "lead_times.csv")
        w.csv(lh, "life_history_validation.csv")

        w.figure(roc_plot(roc, cm, cfg), "roc_curve")
        w.figure(fmi_vs_collapse_plot(summary, cfg), "fmi_vs_collapse")
        w.figure(life_history_comparison_plot(lh), "life_history_comparison")
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
