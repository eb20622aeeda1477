#!/usr/bin/env python3
"""05_false_negatives.py

Diagnoses documented collapses that the danger threshold did not flag in
advance: either FMI never reached danger (the M that would have triggered it
is reported) or the first breach came in or after the collapse year.

Outputs (output/forensic_hindcast/):
- false_negative_diagnosis.csv
- FALSE_NEGATIVE_<stockid>.png
- M_comparison_<species>_stocks.png
"""

from __future__ import annotations

import argparse
from typing import Any, Optional

import pandas as pd

from fmi_pipeline.extract import build_stock_years
from fmi_pipeline.hindcast import (
    breach_analysis,
    diagnose_false_negatives,
    load_known_collapses,
    match_known_collapses,
    peer_group_keyword,
    peer_m_comparison,
)
from fmi_pipeline.plotting import forensic_plot, m_comparison_plot
from fmi_pipeline.runner import base_parser, finish_run, start_run


def parse_args() -> argparse.Namespace:
    return base_parser("Diagnose collapses missed by the danger threshold").parse_args()


def _opt(v: Any) -> Optional[float]:
    return None if v is None or pd.isna(v) else float(v)


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="05_false_negatives", out_name="forensic_hindcast")
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        tables = ctx.load_tables()
        stock_years = build_stock_years(tables, cfg, logger=logger)
        breaches = breach_analysis(stock_years, cfg, logger=logger)
        matched = match_known_collapses(breaches, load_known_collapses(cfg.known_collapses_path), logger=logger)
        diagnosis = diagnose_false_negatives(stock_years, matched, cfg)
        logger.info("False negatives among known collapses: %d", len(diagnosis))
        w.csv(diagnosis, "false_negative_diagnosis.csv")

        done_keywords = set()
        for _, d in diagnosis.iterrows():
            sid = d["stockid"]
            if d["kind"] == "never_breached":
                logger.info(
                    "%s (%s): never reached danger; max pre-collapse F=%s, M=%.3f, M needed < %s",
                    d["collapse_name"],
                    sid,
                    "NA" if _opt(d["F_max_pre_collapse"]) is None else f"{d['F_max_pre_collapse']:.3f}",
                    d["M"],
                    "NA" if _opt(d["M_needed"]) is None else f"{d['M_needed']:.3f}",
                )
            else:
                logger.info(
                    "%s (%s): first danger breach %d, %d years after collapse",
                    d["collapse_name"],
                    sid,
                    d["first_breach_danger"],
                    d["years_after_collapse"],
                )

            breach = breaches[breaches["stockid"] == sid].iloc[0]
            fig = forensic_plot(
                stock_years[stock_years["stockid"] == sid],
                breach,
                cfg,
                collapse_year=int(d["known_collapse"]),
                title_prefix="FALSE NEGATIVE: ",
            )
            w.figure(fig, f"FALSE_NEGATIVE_{sid}")

            keyword = peer_group_keyword(d["commonname"])
            if keyword and keyword not in done_keywords:
                done_keywords.add(keyword)
                peers = peer_m_comparison(stock_years, keyword)
                fig = m_comparison_plot(
                    peers,
                    sid,
                    m_needed=_opt(d["M_needed"]),
                    title=f"M across {keyword} stocks",
                )
                w.figure(fig, f"M_comparison_{keyword}_stocks")
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
