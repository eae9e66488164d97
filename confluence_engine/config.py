"""Configuration for the confluence engine.

All tunables can be overridden via environment variables.  They are read
at **instantiation** time (not module import time) so callers can set
them programmatically before creating a ``ConfluenceConfig``.

The numeric defaults are display defaults carried over from the
dashboard, not calibrated constants; treat them as starting points.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from .factors import DEFAULT_FACTOR_DEFINITIONS, FactorDefinition, normalize_weights

logger = logging.getLogger(__name__)


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_symbols(key: str, default: str) -> frozenset[str]:
    raw = os.getenv(key, default)
    return frozenset(s.strip().upper() for s in raw.split(",") if s.strip())


class TradingStyle(str, Enum):
    SCALP = "scalp"
    DAY = "day"
    SWING = "swing"


# Fastest (shortest holding period) first.
STYLE_ORDER: tuple[TradingStyle, ...] = (
    TradingStyle.SCALP,
    TradingStyle.DAY,
    TradingStyle.SWING,
)


@dataclass(frozen=True)
class StyleThresholds:
    """Ready threshold per trading style (faster styles need less)."""

    scalp: float = field(default_factory=lambda: _env_float("CONFLUENCE_SCALP_THRESHOLD", 70.0))
    day: float = field(default_factory=lambda: _env_float("CONFLUENCE_DAY_THRESHOLD", 75.0))
    swing: float = field(default_factory=lambda: _env_float("CONFLUENCE_SWING_THRESHOLD", 80.0))

    def as_dict(self) -> dict[TradingStyle, float]:
        return {
            TradingStyle.SCALP: self.scalp,
            TradingStyle.DAY: self.day,
            TradingStyle.SWING: self.swing,
        }

    @property
    def most_permissive(self) -> TradingStyle:
        """Style with the lowest threshold; ties go to the faster style."""
        table = self.as_dict()
        return min(STYLE_ORDER, key=lambda s: (table[s], STYLE_ORDER.index(s)))

    def get(self, style: TradingStyle | str | None) -> float:
        """Threshold for *style*; unknown styles get the most permissive one."""
        table = self.as_dict()
        try:
            return table[TradingStyle(style)]
        except ValueError:
            logger.debug("Unknown style %r, using most permissive threshold", style)
            return table[self.most_permissive]


# Per-style multipliers applied on top of factor weights.  Factors not
# listed use 1.0.
DEFAULT_STYLE_MULTIPLIERS: dict[TradingStyle, dict[str, float]] = {
    TradingStyle.SCALP: {
        "rvol": 1.3,
        "flow": 1.2,
        "rsi": 0.8,
        "vwap": 1.0,
        "mtf": 0.7,
        "levels": 1.2,
        "regime": 0.8,
        "ema": 0.6,
        "iv": 1.0,
    },
    TradingStyle.DAY: {},
    TradingStyle.SWING: {
        "rvol": 0.7,
        "flow": 0.8,
        "rsi": 1.2,
        "vwap": 0.6,
        "mtf": 1.3,
        "levels": 0.8,
        "regime": 1.2,
        "ema": 1.3,
        "iv": 1.1,
    },
}


def _default_multipliers() -> Mapping[TradingStyle, Mapping[str, float]]:
    return _freeze_multipliers(DEFAULT_STYLE_MULTIPLIERS)


def _freeze_multipliers(table: Mapping) -> Mapping[TradingStyle, Mapping[str, float]]:
    """Read-only copy keyed by ``TradingStyle``.

    Unknown style keys are kept verbatim so validation can report them.
    """
    frozen: dict = {}
    for key, per_factor in table.items():
        try:
            key = TradingStyle(key)
        except ValueError:
            pass
        frozen[key] = MappingProxyType(dict(per_factor))
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class ConfluenceConfig:
    """Central scoring configuration: one instance per engine.

    Validation runs in ``__post_init__`` so a bad value fails here, where
    the caller built the config, rather than as a wrong score later.
    """

    # ── Hot / ready classification ──────────────────────────────
    hot_threshold: float = field(default_factory=lambda: _env_float("CONFLUENCE_HOT_THRESHOLD", 67.5))
    hot_mtf_aligned: int = field(default_factory=lambda: _env_int("CONFLUENCE_HOT_MTF_ALIGNED", 3))
    style_thresholds: StyleThresholds = field(default_factory=StyleThresholds)
    style_multipliers: Mapping[TradingStyle, Mapping[str, float]] = field(
        default_factory=_default_multipliers,
    )

    # Index symbols need a higher bar (SPX/NDX/VIX move differently).
    index_symbols: frozenset[str] = field(
        default_factory=lambda: _env_symbols("CONFLUENCE_INDEX_SYMBOLS", "SPX,NDX,VIX"),
    )
    index_threshold_offset: float = field(
        default_factory=lambda: _env_float("CONFLUENCE_INDEX_THRESHOLD_OFFSET", 5.0),
    )

    # ── Factors ─────────────────────────────────────────────────
    factor_definitions: tuple[FactorDefinition, ...] = DEFAULT_FACTOR_DEFINITIONS

    # ── Timeframes ──────────────────────────────────────────────
    mtf_stale_after_s: float = field(default_factory=lambda: _env_float("CONFLUENCE_MTF_STALE_AFTER_S", 60.0))

    # ── Refresh cadence (used by RefreshScheduler) ──────────────
    refresh_interval_s: float = field(default_factory=lambda: _env_float("CONFLUENCE_REFRESH_INTERVAL_S", 2.0))

    # ── Score-drop detection ────────────────────────────────────
    drop_alert_threshold: float = field(default_factory=lambda: _env_float("CONFLUENCE_DROP_ALERT_THRESHOLD", 40.0))

    def __post_init__(self) -> None:
        from .config_validation import validate_config

        object.__setattr__(self, "factor_definitions", normalize_weights(self.factor_definitions))
        object.__setattr__(self, "index_symbols", frozenset(s.upper() for s in self.index_symbols))
        object.__setattr__(self, "style_multipliers", _freeze_multipliers(self.style_multipliers))
        validate_config(self, strict=True)

    # ── Derived helpers ─────────────────────────────────────────

    def is_index(self, symbol: str) -> bool:
        return symbol.upper() in self.index_symbols

    def threshold_for(self, style: TradingStyle | str | None, symbol: str = "") -> float:
        """Ready threshold for *style*, raised for index symbols."""
        base = self.style_thresholds.get(style)
        if symbol and self.is_index(symbol):
            return base + self.index_threshold_offset
        return base

    def multiplier(self, style: TradingStyle, factor_name: str) -> float:
        return self.style_multipliers.get(style, {}).get(factor_name, 1.0)

    def to_dict(self) -> dict[str, object]:
        """Flat view used for logging and config diffs."""
        out: dict[str, object] = {
            "hot_threshold": self.hot_threshold,
            "hot_mtf_aligned": self.hot_mtf_aligned,
            "index_symbols": sorted(self.index_symbols),
            "index_threshold_offset": self.index_threshold_offset,
            "mtf_stale_after_s": self.mtf_stale_after_s,
            "refresh_interval_s": self.refresh_interval_s,
            "drop_alert_threshold": self.drop_alert_threshold,
        }
        for style, value in self.style_thresholds.as_dict().items():
            out[f"{style.value}_threshold"] = value
        for d in self.factor_definitions:
            out[f"weight.{d.name}"] = round(d.weight, 6)
            out[f"threshold.{d.name}"] = d.threshold
        return out
