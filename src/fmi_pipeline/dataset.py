"""Source dataset resolution and table IO.

The analysis reads a RAM Legacy style relational dataset of three tables:

- ``stock``      (stockid, stocklong, commonname, scientificname, region)
- ``bioparams``  (stockid, bioid, biovalue)
- ``timeseries`` (stockid, tsid, tsyear, tsvalue)

Three on-disk layouts are accepted:

- a directory with ``stock.csv``, ``bioparams.csv``, ``timeseries.csv``
  (optionally gzipped)
- a single HDF5 file with one group per table and one dataset per column,
  written by :func:`write_tables_h5` (atomic rename, utf-8 string datasets)
- an R workspace (``.RData``/``.rda``) holding data frames named after the
  tables, as the RAM Legacy database is distributed; read with pyreadr
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

import h5py
import numpy as np
import pandas as pd
import pyreadr

from .logging_utils import log_count


TABLE_NAMES = ("stock", "bioparams", "timeseries")

REQUIRED_COLUMNS: Dict[str, List[str]] = {
    "stock": ["stockid", "commonname", "scientificname", "region"],
    "bioparams": ["stockid", "bioid", "biovalue"],
    "timeseries": ["stockid", "tsid", "tsyear", "tsvalue"],
}

HDF5_SUFFIXES = {".h5", ".hdf5"}
RDATA_SUFFIXES = {".rdata", ".rda"}


class DatasetNotFoundError(FileNotFoundError):
    """No source dataset exists at any configured candidate path."""

    def __init__(self, candidates: Sequence[Path]):
        self.candidates = [Path(p) for p in candidates]
        listed = ", ".join(str(p) for p in self.candidates) or "<none configured>"
        super().__init__(f"Source dataset not found. Checked: {listed}")


@dataclass(frozen=True)
class RamTables:
    stock: pd.DataFrame
    bioparams: pd.DataFrame
    timeseries: pd.DataFrame

    def as_dict(self) -> Dict[str, pd.DataFrame]:
        return {"stock": self.stock, "bioparams": self.bioparams, "timeseries": self.timeseries}


def resolve_dataset_path(candidates: Iterable[Path]) -> Path:
    checked: List[Path] = []
    for p in candidates:
        p = Path(p)
        checked.append(p)
        if p.exists():
            return p
    raise DatasetNotFoundError(checked)


def validate_tables(tables: Dict[str, pd.DataFrame]) -> RamTables:
    for name in TABLE_NAMES:
        if name not in tables:
            raise ValueError(f"Dataset is missing table: {name}")
        missing = [c for c in REQUIRED_COLUMNS[name] if c not in tables[name].columns]
        if missing:
            raise ValueError(f"Table '{name}' is missing required columns: {missing}")
    stock = tables["stock"].copy()
    if "stocklong" not in stock.columns:
        stock["stocklong"] = stock["commonname"]
    return RamTables(stock=stock, bioparams=tables["bioparams"].copy(), timeseries=tables["timeseries"].copy())


def _csv_table_path(root: Path, name: str) -> Path:
    for cand in (root / f"{name}.csv", root / f"{name}.csv.gz"):
        if cand.exists():
            return cand
    raise FileNotFoundError(f"Table '{name}' not found under {root} (expected {name}.csv)")


def read_csv_tables(root: Path) -> RamTables:
    tables = {name: pd.read_csv(_csv_table_path(root, name), low_memory=False) for name in TABLE_NAMES}
    return validate_tables(tables)


def _read_h5_group(group: h5py.Group) -> pd.DataFrame:
    raw_cols = group.attrs.get("columns")
    if raw_cols is not None:
        columns = json.loads(raw_cols.decode("utf-8") if isinstance(raw_cols, bytes) else raw_cols)
    else:
        columns = sorted(group.keys())
    data = {}
    for col in columns:
        ds = group[col]
        if h5py.check_string_dtype(ds.dtype) is not None:
            vals = pd.Series(ds.asstr()[()], dtype=object)
            data[col] = vals.replace("", np.nan)
        else:
            data[col] = ds[()]
    return pd.DataFrame(data, columns=columns)


def read_h5_tables(path: Path) -> RamTables:
    with h5py.File(path, "r") as f:
        tables = {name: _read_h5_group(f[name]) for name in TABLE_NAMES if name in f}
    return validate_tables(tables)


def read_rdata_tables(path: Path) -> RamTables:
    result = pyreadr.read_r(str(path), use_objects=list(TABLE_NAMES))
    tables = {}
    for name, df in result.items():
        # R factors arrive as categoricals
        cats = [c for c in df.columns if isinstance(df[c].dtype, pd.CategoricalDtype)]
        tables[name] = df.astype({c: object for c in cats}) if cats else df
    return validate_tables(tables)


def write_tables_h5(tables: RamTables, path: Path) -> Path:
    """Write the three tables into one HDF5 file (tmp file + atomic rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    str_dt = h5py.string_dtype(encoding="utf-8")

    with h5py.File(tmp, "w") as f:
        f.attrs["layout"] = "ram_tables_v1"
        for name, df in tables.as_dict().items():
            g = f.create_group(name)
            g.attrs["columns"] = json.dumps([str(c) for c in df.columns])
            for col in df.columns:
                s = df[col]
                if pd.api.types.is_numeric_dtype(s) and not pd.api.types.is_bool_dtype(s):
                    g.create_dataset(
                        str(col),
                        data=s.to_numpy(dtype=float),
                        compression="gzip",
                        compression_opts=4,
                        shuffle=True,
                    )
                else:
                    as_str = s.astype(object).where(s.notna(), "").astype(str).to_numpy(dtype=object)
                    g.create_dataset(str(col), data=as_str, dtype=str_dt)
        f.flush()

    tmp.replace(path)
    return path


def load_tables(path: Path, *, logger: Optional[logging.Logger] = None) -> RamTables:
    if not path.exists():
        raise DatasetNotFoundError([path])
    if path.is_dir():
        tables = read_csv_tables(path)
    elif path.suffix.lower() in HDF5_SUFFIXES:
        tables = read_h5_tables(path)
    elif path.suffix.lower() in RDATA_SUFFIXES:
        tables = read_rdata_tables(path)
    else:
        raise ValueError(
            f"Unsupported dataset layout: {path} (expected a CSV directory, .h5/.hdf5 or .RData/.rda file)"
        )

    if logger is not None:
        logger.info("Loaded dataset: %s", path)
    log_count(logger, "load", tables.stock["stockid"].nunique(), "stocks in stock table")
    log_count(logger, "load", len(tables.bioparams), "bioparams rows")
    log_count(logger, "load", len(tables.timeseries), "timeseries rows")
    return tables


def load_dataset(candidates: Iterable[Path], *, logger: Optional[logging.Logger] = None) -> RamTables:
    return load_tables(resolve_dataset_path(candidates), logger=logger)
