#!/usr/bin/env python3
"""03_stratified_roc.py

ROC analysis per life-history category, compared with the universal danger
threshold, and a recommendation on whether stratification earns its place.

Outputs (output/stratified_roc/):
- stratified_results.csv, roc_curves.csv
- proposed_thresholds.csv, performance_comparison.csv, verdict.txt
- stratified_roc_curves.png, optimal_thresholds.png
- performance_comparison.png, auc_comparison.png
"""

from __future__ import annotations

import argparse

import pandas as pd

from fmi_pipeline.extract import build_analysis_frame
from fmi_pipeline.plotting import (
    auc_comparison_plot,
    optimal_thresholds_plot,
    performance_comparison_plot,
    stratified_roc_plot,
)
from fmi_pipeline.runner import base_parser, finish_run, start_run
from fmi_pipeline.validation import (
    compare_approaches,
    compute_roc,
    empirical_roc_curve,
    generate_verdict,
    stratified_frame,
    stratified_roc,
    summarise_stocks,
    threshold_table,
)


def parse_args() -> argparse.Namespace:
    return base_parser("Stratified ROC analysis by life history").parse_args()


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="03_stratified_roc", out_name="stratified_roc")
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        tables = ctx.load_tables()
        analysis = build_analysis_frame(tables, cfg, logger=logger)
        summary = summarise_stocks(analysis, cfg, logger=logger)

        universal = compute_roc(summary, cfg)
        if universal.valid:
            logger.info("Universal AUC=%.3f, optimal threshold=%.2f", universal.auc, universal.optimal_threshold)
        else:
            logger.warning("Universal ROC invalid: %s", universal.reason)

        strata = stratified_roc(summary, cfg, logger=logger)
        comparison = compare_approaches(summary, strata, cfg)
        for metric, d in comparison.deltas.items():
            logger.info("Stratified - universal %s: %s", metric, "NA" if d is None else f"{100.0 * d:+.1f} pp")

        verdict = generate_verdict(universal.auc, strata, comparison)
        logger.info("RECOMMENDATION: %s", verdict.recommendation)
        logger.info("Reason: %s", verdict.reason)

        curves = {}
        curve_rows = []
        for s in strata:
            if not s.valid:
                continue
            sub = summary[summary["life_history"] == s.life_history.value]
            curves[s.life_history.value] = empirical_roc_curve(sub)
            curve_rows.append(s.roc.curve.assign(life_history=s.life_history.value))

        perf = comparison.frame()
        deltas = {"approach": "Stratified - Universal", **{m: d for m, d in comparison.deltas.items()}}
        perf = pd.concat([perf, pd.DataFrame([deltas])], ignore_index=True)

        w.csv(stratified_frame(strata, cfg), "stratified_results.csv")
        w.csv(pd.concat(curve_rows, ignore_index=True) if curve_rows else pd.DataFrame(), "roc_curves.csv")
        w.csv(threshold_table(strata, cfg), "proposed_thresholds.csv")
        w.csv(perf, "performance_comparison.csv")
        w.text(f"{verdict.recommendation}\n{verdict.reason}\n", "verdict.txt")

        w.figure(stratified_roc_plot(curves, strata), "stratified_roc_curves")
        w.figure(optimal_thresholds_plot(strata, cfg), "optimal_thresholds")
        w.figure(performance_comparison_plot(comparison), "performance_comparison")
        w.figure(auc_comparison_plot(universal.auc, strata), "auc_comparison")
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
