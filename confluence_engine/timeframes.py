"""Timeframe trend model and multi-timeframe (MTF) alignment.

Timeframes are ordered high to low (``1W`` first, ``1m`` last).  Codes
outside the canonical list are kept as-is and sort after every known code,
preserving their original relative order.

A trend direction must always be supplied by the caller.  Missing data is
never turned into ``neutral`` here.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .factors import FactorReading
from .utils import to_optional_float

logger = logging.getLogger(__name__)

TIMEFRAME_ORDER: tuple[str, ...] = ("1W", "1D", "4H", "1H", "15m", "5m", "1m")

_TIMEFRAME_ALIASES: dict[str, str] = {
    "60m": "1H",
    "1h": "1H",
    "4h": "4H",
    "1d": "1D",
    "D": "1D",
    "1w": "1W",
    "W": "1W",
}

_RANK: dict[str, int] = {code: i for i, code in enumerate(TIMEFRAME_ORDER)}

DEFAULT_STALE_AFTER_S: float = 60.0


class TrendDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"

    @classmethod
    def parse(cls, value: Any) -> "TrendDirection":
        """Parse a direction, accepting the feed's ``bull``/``bear`` spelling.

        Raises ``ValueError`` for anything else, including ``None``.
        """
        if isinstance(value, TrendDirection):
            return value
        key = str(value).strip().lower() if value is not None else ""
        try:
            return _DIRECTION_ALIASES[key]
        except KeyError:
            raise ValueError(f"Unknown trend direction: {value!r}") from None


_DIRECTION_ALIASES: dict[str, TrendDirection] = {
    "up": TrendDirection.UP,
    "bull": TrendDirection.UP,
    "bullish": TrendDirection.UP,
    "down": TrendDirection.DOWN,
    "bear": TrendDirection.DOWN,
    "bearish": TrendDirection.DOWN,
    "neutral": TrendDirection.NEUTRAL,
}


def normalize_timeframe(code: str) -> str:
    code = str(code).strip()
    return _TIMEFRAME_ALIASES.get(code, code)


def timeframe_rank(code: str) -> int:
    """Position in the canonical order; unknown codes rank after all known."""
    return _RANK.get(normalize_timeframe(code), len(TIMEFRAME_ORDER))


@dataclass(frozen=True)
class TimeframeTrend:
    """Directional bias of one symbol on one timeframe."""

    timeframe: str
    direction: TrendDirection
    label: str = ""
    last_bar_at: float | None = None

    def __post_init__(self) -> None:
        tf = normalize_timeframe(self.timeframe)
        if not tf:
            raise ValueError("TimeframeTrend requires a timeframe code")
        object.__setattr__(self, "timeframe", tf)
        object.__setattr__(self, "direction", TrendDirection.parse(self.direction))
        if not self.label:
            object.__setattr__(self, "label", tf)
        object.__setattr__(self, "last_bar_at", to_optional_float(self.last_bar_at))

    def is_stale(self, now: float, max_age_s: float = DEFAULT_STALE_AFTER_S) -> bool:
        """True when no bar timestamp is known or the last bar is too old."""
        if self.last_bar_at is None:
            return True
        return (now - self.last_bar_at) > max_age_s

    def to_dict(self) -> dict[str, Any]:
        return {
            "timeframe": self.timeframe,
            "direction": self.direction.value,
            "label": self.label,
            "last_bar_at": self.last_bar_at,
        }


def sort_trends(trends: Iterable[TimeframeTrend]) -> list[TimeframeTrend]:
    """Stable sort into canonical high-to-low order."""
    return sorted(trends, key=lambda t: timeframe_rank(t.timeframe))


@dataclass(frozen=True)
class MTFAlignment:
    aligned: int
    total: int
    direction: TrendDirection | None

    @property
    def percent(self) -> float:
        return 100.0 * self.aligned / self.total if self.total else 0.0


def mtf_alignment(trends: Iterable[TimeframeTrend]) -> MTFAlignment:
    """Count the largest group of timeframes sharing one non-neutral direction.

    Ties go to the direction seen first when walking timeframes in
    canonical order, so the result never depends on input order.
    """
    ordered = sort_trends(trends)
    counts: dict[TrendDirection, int] = {}
    first_seen: list[TrendDirection] = []
    for trend in ordered:
        if trend.direction == TrendDirection.NEUTRAL:
            continue
        if trend.direction not in counts:
            counts[trend.direction] = 0
            first_seen.append(trend.direction)
        counts[trend.direction] += 1

    if not counts:
        return MTFAlignment(aligned=0, total=len(ordered), direction=None)

    best = first_seen[0]
    for direction in first_seen[1:]:
        if counts[direction] > counts[best]:
            best = direction
    return MTFAlignment(aligned=counts[best], total=len(ordered), direction=best)


def mtf_alignment_reading(trends: Iterable[TimeframeTrend]) -> FactorReading:
    """Reading for the ``mtf`` factor derived from timeframe trends.

    No trends at all means no data, not zero alignment.
    """
    trends = list(trends)
    if not trends:
        return FactorReading(raw_value=None)
    result = mtf_alignment(trends)
    if result.direction == TrendDirection.UP:
        direction = "bullish"
    elif result.direction == TrendDirection.DOWN:
        direction = "bearish"
    else:
        direction = "neutral"
    return FactorReading(raw_value=float(result.aligned), direction=direction)
