"""Logging utilities.

Every entry point logs through Python's standard logging module with:
- console handler (INFO) so stage counts are visible in batch output
- file handler (DEBUG) with timestamps under the run's log directory
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional


_FORMAT = "%(asctime)s.%(msecs)03d | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    *,
    log_dir: Optional[Path],
    run_id: str,
    name: str = "fmi_pipeline",
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Reconfiguring in the same process replaces handlers instead of stacking them.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / f"{name}_{run_id}.log"
        fh = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(fmt)
        logger.addHandler(fh)
        logger.debug("Logging configured. log_path=%s", log_path)
    return logger


def log_count(logger: Optional[logging.Logger], stage: str, n: int, unit: str = "rows") -> None:
    if logger is None:
        return
    logger.info("[%s] %d %s", stage, int(n), unit)
