#!/usr/bin/env python3
"""06_figure_concept.py

Conceptual figure: log-log M vs F with the three exploitation zones and a few
illustrative species. Needs no dataset.

Outputs (output/figures/): Fig_1_FMI_concept.{png,pdf,tiff}
"""

from __future__ import annotations

import argparse

from fmi_pipeline.plotting import concept_figure
from fmi_pipeline.runner import base_parser, finish_run, start_run


def parse_args() -> argparse.Namespace:
    return base_parser("Render the FMI concept figure").parse_args()


def main() -> None:
    args = parse_args()
    ctx = start_run(args, entrypoint="06_figure_concept", out_name="figures", needs_dataset=False)
    cfg, logger, w = ctx.cfg, ctx.logger, ctx.writer

    try:
        w.figure(concept_figure(cfg), "Fig_1_FMI_concept", formats=("png", "pdf", "tiff"), dpi=cfg.publication_dpi)
    except Exception as e:
        logger.error("FATAL: %s", e)
        raise

    finish_run(ctx)


if __name__ == "__main__":
    main()
