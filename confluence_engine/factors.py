"""Factor model: one measured market signal for one symbol.

A :class:`FactorDefinition` describes *how* a signal is judged (threshold,
weight, polarity, or scoring zones for band factors such as RSI); a
:class:`FactorReading` carries the raw value the market-data layer measured.  :func:`evaluate_factor` combines the two into
an immutable :class:`Factor` with a 0-100 ``percent_complete`` toward the
threshold, a status bucket and an optional direction.

Everything here is a pure function of its inputs.  Absent data never
raises: it yields a ``missing`` factor with ``display_value == "-"`` and
``percent_complete == 0``.
"""
from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Union

from .error_taxonomy import ConfigError
from .utils import clamp, to_optional_float

logger = logging.getLogger(__name__)


class FactorKind(str, Enum):
    RVOL = "rvol"
    FLOW = "flow"
    RSI = "rsi"
    VWAP = "vwap"
    MTF = "mtf"
    EMA = "ema"
    REGIME = "regime"
    LEVELS = "levels"
    IV = "iv"
    CUSTOM = "custom"


class Polarity(str, Enum):
    HIGHER_IS_BETTER = "higher_is_better"
    LOWER_IS_BETTER = "lower_is_better"
    BAND = "band"


class FactorStatus(str, Enum):
    STRONG = "strong"
    GOOD = "good"
    BUILDING = "building"
    WEAK = "weak"
    MISSING = "missing"


class FactorDirection(str, Enum):
    BULLISH = "bullish"
    BEARISH = "bearish"
    NEUTRAL = "neutral"


# Highest breakpoint first; a value sitting exactly on a breakpoint gets
# the higher status.
STATUS_BREAKPOINTS: tuple[tuple[float, FactorStatus], ...] = (
    (100.0, FactorStatus.STRONG),
    (80.0, FactorStatus.GOOD),
    (50.0, FactorStatus.BUILDING),
    (20.0, FactorStatus.WEAK),
)

MISSING_DISPLAY = "-"


# ---------------------------------------------------------------------------
# Definitions and readings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScoreBand:
    """One scoring zone of a band factor, inclusive on both ends.

    Inside ``[low, high]`` the factor scores ``base - |raw - target| * slope``,
    or a flat ``base`` when there is no target.
    """

    low: float = -math.inf
    high: float = math.inf
    base: float = 100.0
    target: float | None = None
    slope: float = 0.0
    direction: FactorDirection | None = None

    def __post_init__(self) -> None:
        if self.low > self.high:
            raise ConfigError(f"Score band low {self.low!r} exceeds high {self.high!r}")
        if self.slope < 0:
            raise ConfigError(f"Score band slope must be >= 0, got {self.slope!r}")
        if self.direction is not None:
            object.__setattr__(self, "direction", FactorDirection(self.direction))

    def contains(self, raw: float) -> bool:
        return self.low <= raw <= self.high

    def score(self, raw: float) -> float:
        if self.target is None:
            return clamp(self.base)
        return clamp(self.base - abs(raw - self.target) * self.slope)


def band_for(bands: Iterable[ScoreBand], raw: float) -> ScoreBand | None:
    """First band containing *raw*; earlier bands win on shared edges."""
    for band in bands:
        if band.contains(raw):
            return band
    return None


@dataclass(frozen=True)
class FactorDefinition:
    """Static description of one factor.

    ``signed`` factors (order flow, for instance) are scored on the
    magnitude of the raw value; its sign, compared against
    ``direction_band``, yields the direction.

    ``Polarity.BAND`` factors ignore ``threshold`` when scoring and use
    their ``bands`` instead; the matching band also supplies the direction.
    """

    name: str
    label: str
    kind: FactorKind = FactorKind.CUSTOM
    threshold: float = 1.0
    weight: float = 0.1
    polarity: Polarity = Polarity.HIGHER_IS_BETTER
    signed: bool = False
    direction_band: float | None = None
    tooltip: str = ""
    threshold_label: str = ""
    bands: tuple[ScoreBand, ...] = ()

    def __post_init__(self) -> None:
        if not self.name or not str(self.name).strip():
            raise ConfigError("Factor definition requires a non-empty name")
        threshold = to_optional_float(self.threshold)
        if threshold is None or threshold <= 0:
            raise ConfigError(
                f"Factor '{self.name}': threshold must be > 0, got {self.threshold!r}"
            )
        weight = to_optional_float(self.weight)
        if weight is None or not 0.0 <= weight <= 1.0:
            raise ConfigError(
                f"Factor '{self.name}': weight must be within [0, 1], got {self.weight!r}"
            )
        if self.direction_band is not None and self.direction_band < 0:
            raise ConfigError(
                f"Factor '{self.name}': direction_band must be >= 0, got {self.direction_band!r}"
            )
        # Accept plain strings from config files.
        object.__setattr__(self, "kind", FactorKind(self.kind))
        object.__setattr__(self, "polarity", Polarity(self.polarity))
        object.__setattr__(self, "bands", tuple(self.bands or ()))
        if self.polarity == Polarity.BAND and not self.bands:
            raise ConfigError(f"Factor '{self.name}': band polarity requires at least one band")
        object.__setattr__(self, "threshold", threshold)
        object.__setattr__(self, "weight", weight)


@dataclass(frozen=True)
class FactorReading:
    """Raw measurement for one factor; ``raw_value=None`` means no data."""

    raw_value: float | None = None
    direction: FactorDirection | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw_value", to_optional_float(self.raw_value))
        if self.direction is not None:
            object.__setattr__(self, "direction", FactorDirection(self.direction))

    @property
    def is_present(self) -> bool:
        return self.raw_value is not None


ReadingLike = Union[FactorReading, float, int, None]


def as_reading(value: Any) -> FactorReading:
    """Coerce a bare number / ``None`` / reading into a :class:`FactorReading`."""
    if isinstance(value, FactorReading):
        return value
    return FactorReading(raw_value=to_optional_float(value))


@dataclass(frozen=True)
class Factor:
    """Evaluated factor, ready for display and aggregation."""

    name: str
    label: str
    kind: FactorKind
    raw_value: float | None
    display_value: str
    threshold: float
    weight: float
    percent_complete: float
    status: FactorStatus
    direction: FactorDirection | None
    tooltip: str = ""
    threshold_label: str = ""

    @property
    def contribution(self) -> float:
        return self.weight * self.percent_complete

    @property
    def is_missing(self) -> bool:
        return self.raw_value is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "kind": self.kind.value,
            "raw_value": self.raw_value,
            "display_value": self.display_value,
            "threshold": self.threshold,
            "threshold_label": self.threshold_label,
            "weight": self.weight,
            "percent_complete": self.percent_complete,
            "contribution": self.contribution,
            "status": self.status.value,
            "direction": self.direction.value if self.direction else None,
            "tooltip": self.tooltip,
        }


# ---------------------------------------------------------------------------
# Pure scoring helpers
# ---------------------------------------------------------------------------

def percent_complete(
    raw_value: float | None,
    threshold: float,
    polarity: Polarity = Polarity.HIGHER_IS_BETTER,
    bands: Iterable[ScoreBand] = (),
) -> float:
    """Progress of *raw_value* toward *threshold*, clamped to [0, 100].

    Lower-is-better signals invert the ratio; a raw value at or below zero
    counts as fully satisfied.  Band signals score on the first band that
    contains the value and 0 outside every band.
    """
    raw = to_optional_float(raw_value)
    if raw is None or threshold <= 0:
        return 0.0
    if polarity == Polarity.BAND:
        band = band_for(bands, raw)
        return band.score(raw) if band is not None else 0.0
    if polarity == Polarity.LOWER_IS_BETTER:
        if raw <= 0:
            return 100.0
        return clamp(100.0 * threshold / raw)
    return clamp(100.0 * raw / threshold)


def status_for(percent: float, *, present: bool = True) -> FactorStatus:
    """Map a percent-complete value onto its status bucket."""
    if not present:
        return FactorStatus.MISSING
    for breakpoint_, status in STATUS_BREAKPOINTS:
        if percent >= breakpoint_:
            return status
    return FactorStatus.MISSING


def factor_percent(definition: FactorDefinition, reading: ReadingLike) -> float:
    """Percent complete for one definition, without building a :class:`Factor`.

    This is the cheap path used by the watchlist summary tier.
    """
    raw = as_reading(reading).raw_value
    if raw is None:
        return 0.0
    if definition.signed:
        raw = abs(raw)
    return percent_complete(raw, definition.threshold, definition.polarity, definition.bands)


def _resolve_direction(
    definition: FactorDefinition,
    reading: FactorReading,
) -> FactorDirection | None:
    if reading.direction is not None:
        return reading.direction
    if reading.raw_value is not None and definition.polarity == Polarity.BAND:
        band = band_for(definition.bands, reading.raw_value)
        return band.direction if band is not None else None
    if reading.raw_value is None or not definition.signed or definition.direction_band is None:
        return None
    if reading.raw_value >= definition.direction_band:
        return FactorDirection.BULLISH
    if reading.raw_value <= -definition.direction_band:
        return FactorDirection.BEARISH
    return FactorDirection.NEUTRAL


def format_display_value(kind: FactorKind, raw_value: float | None) -> str:
    """Human display string for a raw value of the given kind."""
    if raw_value is None:
        return MISSING_DISPLAY
    if kind == FactorKind.RVOL:
        return f"{raw_value:.1f}x"
    if kind == FactorKind.FLOW:
        return f"{raw_value:+.0f}"
    if kind == FactorKind.VWAP:
        return f"{raw_value:+.2f}%"
    if kind == FactorKind.LEVELS:
        return f"{raw_value:.1f}%"
    if kind == FactorKind.IV:
        return f"{raw_value:.0f}%"
    if kind == FactorKind.RSI:
        return f"{raw_value:.0f}"
    if kind in (FactorKind.MTF, FactorKind.EMA):
        return f"{raw_value:.0f}"
    if kind == FactorKind.REGIME:
        return "TRENDING" if raw_value >= 1 else "RANGING"
    return f"{raw_value:g}"


def evaluate_factor(definition: FactorDefinition, reading: ReadingLike) -> Factor:
    """Evaluate one reading against its definition."""
    rd = as_reading(reading)
    pct = factor_percent(definition, rd)
    display = format_display_value(definition.kind, rd.raw_value)
    if rd.raw_value is not None and definition.kind in (FactorKind.MTF, FactorKind.EMA):
        display = f"{display}/{definition.threshold:g}"
    return Factor(
        name=definition.name,
        label=definition.label,
        kind=definition.kind,
        raw_value=rd.raw_value,
        display_value=display,
        threshold=definition.threshold,
        weight=definition.weight,
        percent_complete=pct,
        status=status_for(pct, present=rd.is_present),
        direction=_resolve_direction(definition, rd),
        tooltip=definition.tooltip,
        threshold_label=definition.threshold_label,
    )


def normalize_weights(
    definitions: Iterable[FactorDefinition],
) -> tuple[FactorDefinition, ...]:
    """Rescale weights proportionally when their sum exceeds 1."""
    defs = tuple(definitions)
    total = sum(d.weight for d in defs)
    if total <= 1.0 + 1e-9:
        return defs
    logger.info("Factor weights sum to %.3f; normalizing to 1.0", total)
    return tuple(replace(d, weight=d.weight / total) for d in defs)


# ---------------------------------------------------------------------------
# Default factor set
# ---------------------------------------------------------------------------

DEFAULT_FACTOR_DEFINITIONS: tuple[FactorDefinition, ...] = (
    FactorDefinition(
        name="rvol", label="RVOL", kind=FactorKind.RVOL,
        threshold=2.0, weight=0.15, threshold_label="≥2.0x",
        tooltip="Relative Volume - current vs 20-bar average",
    ),
    FactorDefinition(
        name="flow", label="Flow", kind=FactorKind.FLOW,
        threshold=60.0, weight=0.15, signed=True, direction_band=40.0,
        threshold_label="≥±40",
        tooltip="Buy/Sell pressure indicator (-100 to +100)",
    ),
    FactorDefinition(
        name="rsi", label="RSI", kind=FactorKind.RSI,
        threshold=100.0, weight=0.10, polarity=Polarity.BAND,
        threshold_label="30-45 / 55-70",
        tooltip="RSI(14) reversal zones",
        bands=(
            ScoreBand(30.0, 45.0, target=38.0, slope=6.0, direction=FactorDirection.BULLISH),
            ScoreBand(55.0, 70.0, target=62.0, slope=6.0, direction=FactorDirection.BEARISH),
            ScoreBand(high=30.0, base=60.0, direction=FactorDirection.BULLISH),
            ScoreBand(low=70.0, base=60.0, direction=FactorDirection.BEARISH),
            ScoreBand(45.0, 55.0, base=30.0, direction=FactorDirection.NEUTRAL),
        ),
    ),
    FactorDefinition(
        name="vwap", label="VWAP", kind=FactorKind.VWAP,
        threshold=0.3, weight=0.10, polarity=Polarity.LOWER_IS_BETTER, signed=True,
        threshold_label="±0.3%",
        tooltip="Distance from Volume Weighted Average Price",
    ),
    FactorDefinition(
        name="mtf", label="MTF", kind=FactorKind.MTF,
        threshold=4.0, weight=0.15, threshold_label="≥3/4",
        tooltip="Multi-timeframe trend alignment",
    ),
    FactorDefinition(
        name="ema", label="EMA Stack", kind=FactorKind.EMA,
        threshold=3.0, weight=0.10, threshold_label="All aligned",
        tooltip="9/21/50 EMA alignment in price direction",
    ),
    FactorDefinition(
        name="regime", label="Regime", kind=FactorKind.REGIME,
        threshold=1.0, weight=0.10, threshold_label="Trending",
        tooltip="Market regime - trending vs ranging",
    ),
    FactorDefinition(
        name="levels", label="Key Levels", kind=FactorKind.LEVELS,
        threshold=0.5, weight=0.10, polarity=Polarity.LOWER_IS_BETTER,
        threshold_label="≤0.5%",
        tooltip="Proximity to ORB, swing highs/lows",
    ),
    FactorDefinition(
        name="iv", label="IV%", kind=FactorKind.IV,
        threshold=100.0, weight=0.05, polarity=Polarity.BAND,
        threshold_label="20-50%",
        tooltip="IV percentile fit for buying premium (0-100)",
        bands=(
            ScoreBand(20.0, 50.0),
            ScoreBand(high=20.0, target=20.0, slope=2.5),
            ScoreBand(low=50.0, target=50.0, slope=2.0),
        ),
    ),
)
