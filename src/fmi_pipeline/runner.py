"""Shared start-up for the numbered entry points: CLI flags, config, logging,
run manifest and the output directory.
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .artifacts import ArtifactWriter
from .config import DEFAULT_CONFIG_PATH, AnalysisConfig, load_config
from .dataset import RamTables, load_tables, resolve_dataset_path
from .logging_utils import configure_logging
from .manifest import write_manifest


@dataclass
class RunContext:
    run_id: str
    entrypoint: str
    cfg: AnalysisConfig
    logger: logging.Logger
    out_dir: Path
    writer: ArtifactWriter
    dataset_path: Optional[Path] = None

    def load_tables(self) -> RamTables:
        if self.dataset_path is None:
            raise RuntimeError(f"{self.entrypoint} was started without a dataset")
        return load_tables(self.dataset_path, logger=self.logger)


def base_parser(description: str) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description=description)
    ap.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH)
    ap.add_argument("--dataset", type=Path, default=None, help="Override the dataset candidate list")
    ap.add_argument("--out_dir", type=Path, default=None, help="Override the output directory")
    ap.add_argument("--run_id", type=str, default=None)
    return ap


def start_run(
    args: argparse.Namespace,
    *,
    entrypoint: str,
    out_name: str,
    needs_dataset: bool = True,
) -> RunContext:
    """Load config, configure logging, resolve the dataset and write the run manifest.

    A missing dataset raises DatasetNotFoundError before any output is written.
    """
    run_id = args.run_id or time.strftime("%Y%m%d_%H%M%S")
    cfg = load_config(args.config)
    if getattr(args, "dataset", None) is not None:
        cfg = cfg.with_overrides(dataset_candidates=(args.dataset,))

    logger = configure_logging(log_dir=cfg.log_dir, run_id=run_id, name=entrypoint)
    logger.info("Config: %s", args.config)

    dataset_path = None
    if needs_dataset:
        try:
            dataset_path = resolve_dataset_path(cfg.dataset_candidates)
        except FileNotFoundError as e:
            logger.error("FATAL: %s", e)
            raise

    out_dir = args.out_dir or cfg.output_dir(out_name)
    writer = ArtifactWriter(out_dir, logger, dpi=cfg.plot_dpi)

    try:
        manifest_path = write_manifest(
            out_dir=cfg.log_dir,
            run_id=run_id,
            entrypoint=entrypoint,
            args={k: str(v) for k, v in vars(args).items()},
            dataset_path=dataset_path,
            extra={"out_dir": str(out_dir)},
        )
    except OSError as e:
        writer.record_failure(f"run_manifest_{entrypoint}_{run_id}.json", e)
    else:
        logger.info("Wrote manifest: %s", manifest_path)
    return RunContext(
        run_id=run_id,
        entrypoint=entrypoint,
        cfg=cfg,
        logger=logger,
        out_dir=out_dir,
        writer=writer,
        dataset_path=dataset_path,
    )


def finish_run(ctx: RunContext) -> None:
    ctx.logger.info("Artifacts written: %d, failed: %d", len(ctx.writer.written), ctx.writer.n_failed)
    ctx.writer.raise_if_failed()
    ctx.logger.info("Outputs: %s", ctx.out_dir)
