"""YAML configuration loader and the immutable analysis configuration.

Scripts load `configs/default.yaml` (or `--config`) once and pass the
resulting `AnalysisConfig` into every stage. Nothing reads module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np
import yaml


DEFAULT_CONFIG_PATH = Path("configs/default.yaml")


class ConfigError(ValueError):
    """Raised when configuration values (or an upstream invariant they guard) are invalid."""


def load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ConfigError(f"Config root must be a mapping/dict. Got: {type(data)}")
    return data


def cfg_get(cfg: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """Fetch a nested key like 'roc.min_stocks' with a default."""
    cur: Any = cfg
    for part in key_path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur[part]
    return cur


@dataclass(frozen=True)
class ReferencePoint:
    """Externally estimated (M, F) drawn on the phase plot next to the real stocks."""

    label: str
    M: float
    F: float
    kind: str = "Reference"

    @classmethod
    def from_mapping(cls, item: Dict[str, Any]) -> "ReferencePoint":
        """Accept F directly, or total mortality Z from which F = max(0, Z - M)."""
        if "label" not in item or "M" not in item:
            raise ConfigError(f"reference point needs 'label' and 'M': {item}")
        M = float(item["M"])
        F: Optional[float] = None
        if "F" in item:
            F = float(item["F"])
        elif "Z" in item:
            F = max(0.0, float(item["Z"]) - M)
        if F is None:
            raise ConfigError(f"reference point {item['label']!r} needs F or Z")
        if M <= 0 or F < 0:
            raise ConfigError(f"reference point {item['label']!r} needs M > 0 and F >= 0, got M={M}, F={F}")
        return cls(label=str(item["label"]), M=M, F=F, kind=str(item.get("kind", "Reference")))


@dataclass(frozen=True)
class AnalysisConfig:
    # paths
    dataset_candidates: Tuple[Path, ...] = (
        Path("data/ram"),
        Path("data/ram.h5"),
        Path("data/DBdata.RData"),
        Path("ram.h5"),
        Path("../data/ram"),
        Path("../data/ram.h5"),
    )
    known_collapses_path: Path = Path("configs/known_collapses.yaml")
    output_root: Path = Path("output")
    log_dir: Path = Path("output/logs")

    # FMI zone breakpoints
    safe_threshold: float = 0.75
    gulland_threshold: float = 1.00
    danger_threshold: float = 1.25

    # extraction
    m_min: float = 0.0
    m_max: float = 5.0
    m_aggregate: str = "mean"
    metric_priority: Tuple[str, ...] = ("F", "U", "ER")
    biomass_ratio_max: float = 20.0

    # validation
    collapse_threshold: float = 0.5
    severe_collapse_threshold: float = 0.2
    align_years: bool = True
    roc_threshold_start: float = 0.10
    roc_threshold_stop: float = 6.00
    roc_threshold_step: float = 0.05
    min_stocks: int = 10
    min_collapsed: int = 3
    life_history_breaks: Tuple[float, float, float] = (0.2, 0.4, 0.8)

    # hindcast / candidates
    hindcast_min_years: int = 15
    hindcast_long_series_years: int = 40
    hindcast_targets_per_category: int = 4
    candidates_top_per_category: int = 4

    # rendering
    plot_dpi: int = 150
    publication_dpi: int = 300
    reference_points: Tuple[ReferencePoint, ...] = ()

    extra: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not (0.0 < self.safe_threshold < self.gulland_threshold < self.danger_threshold):
            raise ConfigError(
                "thresholds must satisfy 0 < safe < gulland < danger, got "
                f"{self.safe_threshold}, {self.gulland_threshold}, {self.danger_threshold}"
            )
        if self.m_aggregate not in {"mean", "median"}:
            raise ConfigError(f"mortality.m_aggregate must be 'mean' or 'median', got {self.m_aggregate!r}")
        if not self.metric_priority:
            raise ConfigError("mortality.metric_priority must name at least one metric family")
        if self.m_min < 0 or self.m_max <= self.m_min:
            raise ConfigError(f"invalid M sanity bounds: ({self.m_min}, {self.m_max})")
        b = tuple(self.life_history_breaks)
        if len(b) != 3 or not (0.0 < b[0] < b[1] < b[2]):
            raise ConfigError(f"life_history.breaks must be three increasing positive values, got {b}")
        if self.roc_threshold_step <= 0 or self.roc_threshold_stop <= self.roc_threshold_start:
            raise ConfigError("roc threshold range must be increasing with a positive step")
        if not (0.0 < self.severe_collapse_threshold <= self.collapse_threshold):
            raise ConfigError("collapse thresholds must satisfy 0 < severe <= moderate")

    @property
    def roc_thresholds(self) -> np.ndarray:
        """Swept thresholds, inclusive of the stop value."""
        n = int(round((self.roc_threshold_stop - self.roc_threshold_start) / self.roc_threshold_step)) + 1
        return np.round(self.roc_threshold_start + self.roc_threshold_step * np.arange(n), 10)

    def output_dir(self, name: str) -> Path:
        return self.output_root / name

    def with_overrides(self, **kwargs: Any) -> "AnalysisConfig":
        return replace(self, **kwargs)


def config_from_mapping(cfg: Dict[str, Any]) -> AnalysisConfig:
    d = AnalysisConfig()
    candidates = cfg_get(cfg, "paths.dataset_candidates", None)
    return AnalysisConfig(
        dataset_candidates=tuple(Path(p) for p in candidates) if candidates else d.dataset_candidates,
        known_collapses_path=Path(cfg_get(cfg, "paths.known_collapses", d.known_collapses_path)),
        output_root=Path(cfg_get(cfg, "paths.output_root", d.output_root)),
        log_dir=Path(cfg_get(cfg, "paths.log_dir", d.log_dir)),
        safe_threshold=float(cfg_get(cfg, "thresholds.safe", d.safe_threshold)),
        gulland_threshold=float(cfg_get(cfg, "thresholds.gulland", d.gulland_threshold)),
        danger_threshold=float(cfg_get(cfg, "thresholds.danger", d.danger_threshold)),
        m_min=float(cfg_get(cfg, "mortality.m_min", d.m_min)),
        m_max=float(cfg_get(cfg, "mortality.m_max", d.m_max)),
        m_aggregate=str(cfg_get(cfg, "mortality.m_aggregate", d.m_aggregate)).lower(),
        metric_priority=tuple(str(x) for x in cfg_get(cfg, "mortality.metric_priority", d.metric_priority)),
        biomass_ratio_max=float(cfg_get(cfg, "biomass.ratio_max", d.biomass_ratio_max)),
        collapse_threshold=float(cfg_get(cfg, "collapse.moderate", d.collapse_threshold)),
        severe_collapse_threshold=float(cfg_get(cfg, "collapse.severe", d.severe_collapse_threshold)),
        align_years=bool(cfg_get(cfg, "validation.align_years", d.align_years)),
        roc_threshold_start=float(cfg_get(cfg, "roc.threshold_start", d.roc_threshold_start)),
        roc_threshold_stop=float(cfg_get(cfg, "roc.threshold_stop", d.roc_threshold_stop)),
        roc_threshold_step=float(cfg_get(cfg, "roc.threshold_step", d.roc_threshold_step)),
        min_stocks=int(cfg_get(cfg, "roc.min_stocks", d.min_stocks)),
        min_collapsed=int(cfg_get(cfg, "roc.min_collapsed", d.min_collapsed)),
        life_history_breaks=tuple(float(x) for x in cfg_get(cfg, "life_history.breaks", d.life_history_breaks)),
        hindcast_min_years=int(cfg_get(cfg, "hindcast.min_years", d.hindcast_min_years)),
        hindcast_long_series_years=int(cfg_get(cfg, "hindcast.long_series_years", d.hindcast_long_series_years)),
        hindcast_targets_per_category=int(cfg_get(cfg, "hindcast.targets_per_category", d.hindcast_targets_per_category)),
        candidates_top_per_category=int(cfg_get(cfg, "candidates.top_per_category", d.candidates_top_per_category)),
        plot_dpi=int(cfg_get(cfg, "plot.dpi", d.plot_dpi)),
        publication_dpi=int(cfg_get(cfg, "plot.publication_dpi", d.publication_dpi)),
        reference_points=tuple(
            ReferencePoint.from_mapping(p) for p in (cfg_get(cfg, "phase_plot.reference_points", None) or [])
        ),
        extra=cfg,
    )


def load_config(path: Path = DEFAULT_CONFIG_PATH) -> AnalysisConfig:
    return config_from_mapping(load_yaml(path))
