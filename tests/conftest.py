"""Pytest configuration and fixtures.

Synthetic RAM-style tables small enough to reason about by hand:

- CODA   Atlantic cod, M=0.2 (two estimates), F-series 1980-1995 rising into
         danger from 1985, SSB/SSBmsy below 0.5 from 1990. Also carries a
         U-series that must lose to F.
- HERRB  Atlantic herring, M=0.5, U-series only, FMI 0.2 throughout, healthy.
- ANCHC  Anchovy, M=1.0, ER-series only, FMI 0.5, healthy.
- NOMST  has F but no M estimate and must be dropped.
"""

from __future__ import annotations

from pathlib import Path
from typing import List

import numpy as np
import pandas as pd
import pytest

from fmi_pipeline.config import AnalysisConfig
from fmi_pipeline.dataset import RamTables


def _series(stockid: str, tsid: str, years, values) -> List[dict]:
    return [
        {"stockid": stockid, "tsid": tsid, "tsyear": int(y), "tsvalue": float(v)}
        for y, v in zip(years, values)
    ]


def make_tables() -> RamTables:
    stock = pd.DataFrame(
        {
            "stockid": ["CODA", "HERRB", "ANCHC", "NOMST"],
            "stocklong": ["Atlantic cod A", "Atlantic herring B", "Anchovy C", "No M stock"],
            "commonname": ["Atlantic cod", "Atlantic herring", "European anchovy", "Mystery fish"],
            "scientificname": ["Gadus morhua", "Clupea harengus", "Engraulis encrasicolus", "Unknown"],
            "region": ["Canada East Coast", "US East Coast", "Europe", "Nowhere"],
        }
    )
    bioparams = pd.DataFrame(
        {
            "stockid": ["CODA", "CODA", "HERRB", "ANCHC", "ANCHC", "NOMST"],
            "bioid": ["M-1/T", "M-2/T", "M-1/T", "M-1/T", "M-bad/T", "TB0-MT"],
            "biovalue": ["0.2", "0.2", "0.5", "1.0", "7.5", "1000"],
        }
    )

    years = np.arange(1980, 1996)
    cod_f = np.where(years < 1985, 0.1, 0.5)
    cod_b = np.where(years < 1990, 1.2, 0.3)
    rows: List[dict] = []
    rows += _series("CODA", "F-1/T", years, cod_f)
    rows += _series("CODA", "UdivUmsypref-ratio", years, np.full(len(years), 9.0))
    rows += _series("CODA", "U-ratio", years, np.full(len(years), 0.05))
    rows += _series("CODA", "SSBdivSSBmsy-dimensionless", years, cod_b)
    rows += _series("HERRB", "U-ratio", years, np.full(len(years), 0.1))
    rows += _series("HERRB", "TBdivTBmsy-dimensionless", years, np.full(len(years), 1.1))
    rows += _series("ANCHC", "ER-ratio", years, np.full(len(years), 0.5))
    rows += _series("ANCHC", "BdivBmsypref-dimensionless", years, np.full(len(years), 0.9))
    rows += _series("NOMST", "F-1/T", years, np.full(len(years), 0.3))
    timeseries = pd.DataFrame(rows)
    return RamTables(stock=stock, bioparams=bioparams, timeseries=timeseries)


def make_healthy_tables(n: int = 12) -> RamTables:
    """n lightly fished stocks (M=0.4, F=0.1, B/BMSY=1.2) with no collapse at all."""
    ids = [f"OK{i:02d}" for i in range(n)]
    stock = pd.DataFrame(
        {
            "stockid": ids,
            "stocklong": [f"Healthy stock {i}" for i in range(n)],
            "commonname": ["Atlantic pollock"] * n,
            "scientificname": ["Pollachius virens"] * n,
            "region": ["Europe"] * n,
        }
    )
    bioparams = pd.DataFrame({"stockid": ids, "bioid": ["M-1/T"] * n, "biovalue": ["0.4"] * n})
    years = np.arange(1980, 1996)
    rows: List[dict] = []
    for sid in ids:
        rows += _series(sid, "F-1/T", years, np.full(len(years), 0.1))
        rows += _series(sid, "SSBdivSSBmsy-dimensionless", years, np.full(len(years), 1.2))
    return RamTables(stock=stock, bioparams=bioparams, timeseries=pd.DataFrame(rows))


def write_csv_tables(tables: RamTables, root: Path) -> Path:
    root.mkdir(parents=True)
    for name, df in tables.as_dict().items():
        df.to_csv(root / f"{name}.csv", index=False)
    return root


def make_summary(
max_fmi, collapsed, life_history="Medium") -> pd.DataFrame:
    """Stock-level summary frame as produced by summarise_stocks."""
    n = len(max_fmi)
    lh = [life_history] * n if isinstance(life_history, str) else list(life_history)
    collapsed = [bool(c) for c in collapsed]
    return pd.DataFrame(
        {
            "stockid": [f"S{i:03d}" for i in range(n)],
            "life_history": lh,
            "max_FMI": [float(x) for x in max_fmi],
            "ever_collapsed": collapsed,
            "ever_severe": collapsed,
            "ever_danger": [float(x) >= 1.25 for x in max_fmi],
        }
    )


@pytest.fixture
def tables() -> RamTables:
    return make_tables()


@pytest.fixture
def cfg(tmp_path: Path) -> AnalysisConfig:
    return AnalysisConfig(
        dataset_candidates=(tmp_path / "ram",),
        output_root=tmp_path / "output",
        log_dir=tmp_path / "output" / "logs",
    )


@pytest.fixture
def csv_dataset(tmp_path: Path, tables: RamTables) -> Path:
    return write_csv_tables(tables, tmp_path / "ram")
