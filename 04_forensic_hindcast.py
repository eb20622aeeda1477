#!/usr/bin/env python3
"""04_forensic_hindcast.py

Forensic hindcast over full FMI time series: first threshold breaches per
stock, matched against documented collapses (configs/known_collapses.yaml),
with per-stock time-series plots for a balanced set of stocks.

Outputs (output/forensic_hindcast/):
- breach_analysis_full.csv, fmi_timeseries_full.csv
- collapse_validation.csv, visualization_targets.csv
- forensic_<stockid>.png
"""

from __future__ import annotations

import argparse

from fmi_pipeline.extract import build_stock_years
from fmi_pipeline.hindcast import (
    breach_analysis,
    load_known_collapses,
    match_known_collapses,
    select_visualization_targets,
)
from fmi_pipeline.plotting import forensic_plot
from fmi_pipeline.runner import base_parser, finish_run, start_run


def parse_args() -> argparse.Namespace:
    return base_parser("Forensic hindcast of FMI against known collapses").parse_args()


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="04_forensic_hindcast", out_name="forensic_hindcast")
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        tables = ctx.load_tables()
        stock_years = build_stock_years(tables, cfg, logger=logger)
        breaches = breach_analysis(stock_years, cfg, logger=logger)
        known = load_known_collapses(cfg.known_collapses_path)
        matched = match_known_collapses(breaches, known, logger=logger)
        targets = select_visualization_targets(breaches, matched, cfg)
        logger.info("Selected %d stocks for forensic plots", len(targets))

        w.csv(breaches, "breach_analysis_full.csv")
        w.csv(stock_years, "fmi_timeseries_full.csv")
        w.csv(matched, "collapse_validation.csv")
        w.csv(targets, "visualization_targets.csv")

        collapse_years = dict(zip(matched["stockid"], matched["known_collapse"])) if not matched.empty else {}
        for i, (_, t) in enumerate(targets.iterrows(), start=1):
            sid = t["stockid"]
            logger.info("Plotting %d/%d: %s (%s)", i, len(targets), t.get("commonname", ""), sid)
            cy = collapse_years.get(sid)
            fig = forensic_plot(
                stock_years[stock_years["stockid"] == sid],
                t,
                cfg,
                collapse_year=None if cy is None else int(cy),
            )
            w.figure(fig, f"forensic_{sid}")

        if not breaches.empty:
            logger.info(
                "Stocks analysed=%d, breached danger=%d, breached warning=%d",
                len(breaches),
                int(breaches["ever_breached_danger"].sum()),
                int(breaches["first_breach_warning"].notna().sum()),
            )
        if not matched.empty:
            logger.info(
                "Known collapses predicted by danger: %d/%d, by warning: %d/%d",
                int(matched["predicted_by_danger"].sum()),
                len(matched),
                int(matched["predicted_by_warning"].sum()),
                len(matched),
            )
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
