"""FMI index: F/M ratio, exploitation zones and life-history categories.

Zone bands (lower bound inclusive):

    FMI < 0.75          Safe
    0.75 <= FMI < 1.00  Caution
    1.00 <= FMI < 1.25  Warning
    FMI >= 1.25         Danger

Life-history categories from M (lower bound inclusive):

    M < 0.2             long-lived
    0.2 <= M < 0.4      medium
    0.4 <= M < 0.8      moderate turnover
    M >= 0.8            fast turnover
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from .config import AnalysisConfig, ConfigError


class Zone(str, Enum):
    SAFE = "Safe"
    CAUTION = "Caution"
    WARNING = "Warning"
    DANGER = "Danger"

    @property
    def rank(self) -> int:
        return _ZONE_ORDER.index(self)


_ZONE_ORDER = (Zone.SAFE, Zone.CAUTION, Zone.WARNING, Zone.DANGER)

ZONE_COLORS = {
    Zone.SAFE: "#27ae60",
    Zone.CAUTION: "#f39c12",
    Zone.WARNING: "#e67e22",
    Zone.DANGER: "#c0392b",
}


class LifeHistory(str, Enum):
    LONG_LIVED = "Long-lived"
    MEDIUM = "Medium"
    MODERATE = "Moderate turnover"
    FAST = "Fast turnover"

    def label(self, breaks: Sequence[float] = (0.2, 0.4, 0.8)) -> str:
        return f"{self.value} ({self.m_range(breaks)})"

    def m_range(self, breaks: Sequence[float] = (0.2, 0.4, 0.8)) -> str:
        b0, b1, b2 = breaks
        return {
            LifeHistory.LONG_LIVED: f"M < {b0:g}",
            LifeHistory.MEDIUM: f"{b0:g} <= M < {b1:g}",
            LifeHistory.MODERATE: f"{b1:g} <= M < {b2:g}",
            LifeHistory.FAST: f"M >= {b2:g}",
        }[self]


LIFE_HISTORY_ORDER: Tuple[LifeHistory, ...] = (
    LifeHistory.LONG_LIVED,
    LifeHistory.MEDIUM,
    LifeHistory.MODERATE,
    LifeHistory.FAST,
)


def fmi_ratio(F: float, M: float) -> float:
    if not np.isfinite(M) or M <= 0:
        raise ConfigError(f"Natural mortality must be > 0 to compute FMI, got M={M}")
    return float(F) / float(M)


def zone_for(fmi: float, *, safe: float = 0.75, gulland: float = 1.0, danger: float = 1.25) -> Zone:
    if fmi < safe:
        return Zone.SAFE
    if fmi < gulland:
        return Zone.CAUTION
    if fmi < danger:
        return Zone.WARNING
    return Zone.DANGER


def classify(F: float, M: float, cfg: AnalysisConfig = AnalysisConfig()) -> Tuple[float, Zone]:
    """Return (FMI, zone) for one stock-year."""
    fmi = fmi_ratio(F, M)
    return fmi, zone_for(fmi, safe=cfg.safe_threshold, gulland=cfg.gulland_threshold, danger=cfg.danger_threshold)


def life_history_category(M: float, breaks: Sequence[float] = (0.2, 0.4, 0.8)) -> LifeHistory:
    b0, b1, b2 = breaks
    if M < b0:
        return LifeHistory.LONG_LIVED
    if M < b1:
        return LifeHistory.MEDIUM
    if M < b2:
        return LifeHistory.MODERATE
    return LifeHistory.FAST


def exploitation_rate(fmi: float) -> float:
    """E = F / (F + M) expressed through FMI."""
    return float(fmi) / (1.0 + float(fmi))


def zone_series(fmi: pd.Series, cfg: AnalysisConfig) -> pd.Series:
    vals = pd.to_numeric(fmi, errors="coerce").to_numpy(dtype=float)
    if np.isnan(vals).any():
        raise ValueError("FMI contains missing values; zones are only defined for finite FMI")
    idx = np.searchsorted(
        np.asarray([cfg.safe_threshold, cfg.gulland_threshold, cfg.danger_threshold]),
        vals,
        side="right",
    )
    names = np.asarray([z.value for z in _ZONE_ORDER], dtype=object)
    return pd.Series(names[idx], index=fmi.index, name="zone")


def life_history_series(m: pd.Series, cfg: AnalysisConfig) -> pd.Series:
    vals = pd.to_numeric(m, errors="coerce").to_numpy(dtype=float)
    idx = np.searchsorted(np.asarray(cfg.life_history_breaks, dtype=float), vals, side="right")
    names = np.asarray([lh.value for lh in LIFE_HISTORY_ORDER], dtype=object)
    return pd.Series(names[idx], index=m.index, name="life_history")


def add_fmi_columns(df: pd.DataFrame, cfg: AnalysisConfig) -> pd.DataFrame:
    """Add FMI, zone and life_history to a frame with F and M columns."""
    out = df.copy()
    m = pd.to_numeric(out["M"], errors="coerce")
    bad = ~(m > 0)
    if bad.any():
        sid = out.loc[bad, "stockid"].iloc[0] if "stockid" in out.columns else "<unknown>"
        raise ConfigError(f"Natural mortality must be > 0 before indexing (stock={sid}, M={m[bad].iloc[0]})")
    out["FMI"] = pd.to_numeric(out["F"], errors="coerce") / m
    out["zone"] = zone_series(out["FMI"], cfg)
    out["life_history"] = life_history_series(m, cfg)
    return out
