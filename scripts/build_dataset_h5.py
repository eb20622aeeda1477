#!/usr/bin/env python3
"""Pack a CSV export (stock.csv, bioparams.csv, timeseries.csv) or an R workspace
(.RData holding the same three data frames) into one HDF5 dataset file."""

from __future__ import annotations

import argparse
import time
from pathlib import Path

from fmi_pipeline.dataset import read_csv_tables, read_rdata_tables, write_tables_h5
from fmi_pipeline.logging_utils import configure_logging, log_count


def parse_args() -> argparse.Namespace:
    ap = argparse.ArgumentParser()
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--csv_dir", type=Path)
    src.add_argument("--rdata", type=Path)
    ap.add_argument("--out", type=Path, default=Path("data/ram.h5"))
    ap.add_argument("--run_id", type=str, default=None)
    return ap.parse_args()


def main() -> None:
    args = parse_args()
    run_id = args.run_id or time.strftime("%Y%m%d_%H%M%S")
    logger = configure_logging(log_dir=None, run_id=run_id, name="build_dataset_h5")

    if args.rdata is not None:
        logger.info("Reading R workspace: %s", args.rdata)
        tables = read_rdata_tables(args.rdata)
    else:
        tables = read_csv_tables(args.csv_dir)
    for name, df in tables.as_dict().items():
        log_count(logger, name, len(df))
    out = write_tables_h5(tables, args.out)
    logger.info("Wrote %s", out)


if __name__ == "__main__":
    main()
