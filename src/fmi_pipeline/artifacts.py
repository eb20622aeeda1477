"""Artifact writing with per-artifact failure accounting.

A failed CSV or figure write is logged with the artifact name and counted;
the batch keeps going. Scripts call `raise_if_failed()` last so the process
still exits non-zero.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd


class ArtifactWriter:
    def __init__(self, out_dir: Path, logger: Optional[logging.Logger] = None, *, dpi: int = 150):
        self.out_dir = Path(out_dir)
        self.logger = logger
        self.dpi = int(dpi)
        self.written: List[Path] = []
        self.failures: List[Tuple[str, str]] = []
        # Each later write into a missing directory fails and is counted on its own.
        try:
            self.out_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            self._fail(str(self.out_dir), e)

    def record_failure(self, name: str, err: Exception) -> None:
        """Count an artifact written outside this writer (e.g. the run manifest) as failed."""
        self._fail(name, err)

    def _fail(self, name: str, err: Exception) -> None:
        self.failures.append((name, f"{type(err).__name__}: {err}"))
        if self.logger is not None:
            self.logger.error("Failed to write artifact %s: %s", name, err)

    def _ok(self, path: Path) -> None:
        self.written.append(path)
        if self.logger is not None:
            self.logger.info("Wrote %s", path)

    def csv(self, df: pd.DataFrame, name: str, *, na_rep: str = "NA") -> Optional[Path]:
        path = self.out_dir / name
        try:
            df.to_csv(path, index=False, na_rep=na_rep)
        except OSError as e:
            self._fail(name, e)
            return None
        self._ok(path)
        return path

    def text(self, content: str, name: str) -> Optional[Path]:
        path = self.out_dir / name
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            self._fail(name, e)
            return None
        self._ok(path)
        return path

    def figure(
        self,
        fig,
        name: str,
        *,
        formats: Sequence[str] = ("png",),
        dpi: Optional[int] = None,
    ) -> List[Path]:
        """Save `fig` as `<name>.<fmt>` for each format, then close it."""
        if fig is None:
            if self.logger is not None:
                self.logger.warning("Skipped figure %s (nothing to plot)", name)
            return []
        out: List[Path] = []
        try:
            for fmt in formats:
                path = self.out_dir / f"{name}.{fmt}"
                try:
                    fig.savefig(path, dpi=dpi or self.dpi, bbox_inches="tight")
                except (OSError, ValueError) as e:
                    self._fail(path.name, e)
                    continue
                self._ok(path)
                out.append(path)
        finally:
            plt.close(fig)
        return out

    @property
    def n_failed(self) -> int:
        return len(self.failures)

    def raise_if_failed(self) -> None:
        if self.failures:
            names = ", ".join(n for n, _ in self.failures)
            raise RuntimeError(f"{len(self.failures)} artifact(s) failed to write: {names}")
