#!/usr/bin/env python3
"""01_validation_candidates.py

Ranks stocks carrying both an F series and an M estimate as FMI validation
candidates, by data quality, per life-history category.

Outputs (output/validation/):
- fmi_candidates_full.csv
- top_validation_candidates.csv
- life_history_summary.csv
- well_known_stocks.csv
- fmi_phase_plot.png
"""

from __future__ import annotations

import argparse

from fmi_pipeline.candidates import (
    candidate_life_history_summary,
    rank_candidates,
    top_candidates,
    well_known_stocks,
)
from fmi_pipeline.extract import (
    extract_fishing_mortality,
    extract_natural_mortality,
    join_stock_years,
    stock_metadata,
)
from fmi_pipeline.plotting import phase_plot
from fmi_pipeline.runner import base_parser, finish_run, start_run


def parse_args() -> argparse.Namespace:
    return base_parser("Rank FMI validation candidates").parse_args()


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="01_validation_candidates", out_name="validation")
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        tables = ctx.load_tables()
        m = extract_natural_mortality(tables.bioparams, cfg, logger=logger)
        f = extract_fishing_mortality(tables.timeseries, cfg, logger=logger)
        meta = stock_metadata(tables.stock)

        candidates = rank_candidates(f, m, meta, cfg, logger=logger)
        lh = candidate_life_history_summary(candidates)
        for _, r in lh.iterrows():
            logger.info("%-20s n=%-4d M %s (e.g. %s)", r["life_history"], r["n_stocks"], r["M_range"], r["example_species"])

        top = top_candidates(candidates, cfg)
        famous = well_known_stocks(candidates)
        if famous.empty:
            logger.info("No well-known stocks found in the filtered dataset")
        else:
            logger.info("Found %d well-known stocks", len(famous))

        w.csv(candidates, "fmi_candidates_full.csv")
        w.csv(top, "top_validation_candidates.csv")
        w.csv(lh, "life_history_summary.csv")
        w.csv(famous, "well_known_stocks.csv")

        stock_years = join_stock_years(f, m, meta, cfg, logger=logger)
        w.figure(phase_plot(stock_years, cfg), "fmi_phase_plot")
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
