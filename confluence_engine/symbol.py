"""Per-symbol confluence: factors + timeframe trends -> one readiness view.

``score_symbol`` is the single entry point.  It runs in two tiers:

* **summary** (``detail=False``): percent-complete numbers only, no
  :class:`~confluence_engine.factors.Factor` objects or display strings.
  The watchlist aggregator runs this for every symbol on every refresh.
* **detail** (``detail=True``): the full factor list for the focused
  symbol.

Both tiers produce the same score, thresholds and flags.
"""
from __future__ import annotations

import logging
import math
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from .config import STYLE_ORDER, ConfluenceConfig, TradingStyle
from .factors import (
    Factor,
    FactorDefinition,
    FactorReading,
    ReadingLike,
    as_reading,
    evaluate_factor,
    factor_percent,
)
from .timeframes import (
    TimeframeTrend,
    TrendDirection,
    mtf_alignment,
    mtf_alignment_reading,
    sort_trends,
)
from .utils import clamp, normalize_symbol, to_float, to_optional_float

logger = logging.getLogger(__name__)

AUTO_STYLE = "auto"

_EMPTY_READINGS: Mapping[str, FactorReading] = MappingProxyType({})


# ---------------------------------------------------------------------------
# Input / output records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SymbolInput:
    """Market data captured for one symbol at one logical instant."""

    symbol: str
    price: float = 0.0
    change: float = 0.0
    change_percent: float = 0.0
    readings: Mapping[str, ReadingLike] = field(default_factory=lambda: _EMPTY_READINGS)
    trends: tuple[TimeframeTrend, ...] = ()
    captured_at: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", normalize_symbol(self.symbol))
        object.__setattr__(self, "price", to_float(self.price))
        object.__setattr__(self, "change", to_float(self.change))
        object.__setattr__(self, "change_percent", to_float(self.change_percent))
        object.__setattr__(
            self,
            "readings",
            MappingProxyType({str(k): as_reading(v) for k, v in (self.readings or {}).items()}),
        )
        object.__setattr__(self, "trends", tuple(self.trends or ()))
        object.__setattr__(self, "captured_at", to_optional_float(self.captured_at))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SymbolInput":
        """Build from a feed-style dict.

        Accepts ``changesPercentage`` / ``changePercent`` spellings and
        ``trends`` either as ``TimeframeTrend`` objects, dicts, or a
        ``{timeframe: direction}`` mapping.
        """
        raw_trends = data.get("trends") or data.get("mtf") or ()
        if isinstance(raw_trends, Mapping):
            trends = [TimeframeTrend(tf, direction) for tf, direction in raw_trends.items()]
        else:
            trends = [
                t if isinstance(t, TimeframeTrend) else TimeframeTrend(**t)
                for t in raw_trends
            ]
        change_pct = data.get("change_percent")
        if change_pct is None:
            change_pct = data.get("changePercent", data.get("changesPercentage"))
        return cls(
            symbol=data.get("symbol", ""),
            price=data.get("price", 0.0),
            change=data.get("change", 0.0),
            change_percent=change_pct,
            readings=data.get("readings") or {},
            trends=tuple(trends),
            captured_at=data.get("captured_at"),
        )


@dataclass(frozen=True)
class SymbolConfluence:
    """Immutable readiness view for one symbol."""

    symbol: str
    price: float
    change: float
    change_percent: float
    factors: tuple[Factor, ...]
    mtf: tuple[TimeframeTrend, ...]
    mtf_aligned: int
    mtf_total: int
    mtf_direction: TrendDirection | None
    mtf_has_stale: bool
    mtf_last_updated: float | None
    overall_score: float
    threshold: float
    best_style: TradingStyle
    style_scores: Mapping[TradingStyle, float]
    is_hot: bool
    is_ready: bool
    is_detailed: bool
    last_updated: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "factors": [f.to_dict() for f in self.factors],
            "mtf": [t.to_dict() for t in self.mtf],
            "mtf_aligned": self.mtf_aligned,
            "mtf_total": self.mtf_total,
            "mtf_direction": self.mtf_direction.value if self.mtf_direction else None,
            "mtf_has_stale": self.mtf_has_stale,
            "mtf_last_updated": self.mtf_last_updated,
            "overall_score": self.overall_score,
            "threshold": self.threshold,
            "best_style": self.best_style.value,
            "style_scores": {s.value: v for s, v in self.style_scores.items()},
            "is_hot": self.is_hot,
            "is_ready": self.is_ready,
            "last_updated": self.last_updated,
        }


# ---------------------------------------------------------------------------
# Scoring helpers
# ---------------------------------------------------------------------------

def resolve_readings(
    inp: SymbolInput,
    definitions: Iterable[FactorDefinition],
) -> dict[str, FactorReading]:
    """Readings keyed by factor name, filling ``mtf`` from trends if absent."""
    readings = dict(inp.readings)
    for d in definitions:
        if d.name in readings:
            continue
        if d.name == "mtf" and inp.trends:
            readings[d.name] = mtf_alignment_reading(inp.trends)
    return readings


def weighted_score(parts: Iterable[tuple[float, float]]) -> float:
    """``Σ(pct × w) / Σ(w)`` over parts with ``w > 0``; 0 when there are none."""
    parts = [(pct, w) for pct, w in parts if w > 0]
    total_weight = math.fsum(w for _, w in parts)
    if total_weight <= 0:
        return 0.0
    return clamp(math.fsum(pct * w for pct, w in parts) / total_weight)


def compute_style_scores(
    percents: Mapping[str, float],
    definitions: Iterable[FactorDefinition],
    config: ConfluenceConfig,
) -> dict[TradingStyle, float]:
    definitions = list(definitions)
    scores: dict[TradingStyle, float] = {}
    for style in STYLE_ORDER:
        scores[style] = weighted_score(
            (percents[d.name], d.weight * config.multiplier(style, d.name))
            for d in definitions
        )
    return scores


def select_best_style(
    style_scores: Mapping[TradingStyle, float],
    config: ConfluenceConfig,
    symbol: str = "",
) -> tuple[TradingStyle, bool]:
    """Fastest style whose own score reaches its threshold.

    Returns ``(style, satisfied)``.  Shorter-horizon setups expire first, so
    they win when several styles qualify.  When none qualifies the most
    permissive style comes back as a hint with ``satisfied=False``.
    """
    for style in STYLE_ORDER:
        if style_scores.get(style, 0.0) >= config.threshold_for(style, symbol):
            return style, True
    return config.style_thresholds.most_permissive, False


def resolve_style_context(style: TradingStyle | str | None) -> TradingStyle | None:
    """``None`` means auto-select.  Unknown styles degrade to auto."""
    if style is None or style == AUTO_STYLE:
        return None
    try:
        return TradingStyle(style)
    except ValueError:
        logger.warning("Unknown trading style %r, selecting automatically", style)
        return None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def score_symbol(
    inp: SymbolInput,
    config: ConfluenceConfig,
    *,
    style: TradingStyle | str | None = AUTO_STYLE,
    detail: bool = True,
    now: float | None = None,
) -> SymbolConfluence:
    """Compute the confluence view for one symbol.

    Never raises on missing data: with no usable factor readings the
    result has score 0 and is neither hot nor ready.
    """
    now = time.time() if now is None else now
    definitions = config.factor_definitions
    readings = resolve_readings(inp, definitions)

    percents = {d.name: factor_percent(d, readings.get(d.name)) for d in definitions}
    has_data = any(
        d.weight > 0 and as_reading(readings.get(d.name)).is_present
        for d in definitions
    )

    overall = weighted_score((percents[d.name], d.weight) for d in definitions)
    style_scores = compute_style_scores(percents, definitions, config)

    mtf = tuple(sort_trends(inp.trends))
    alignment = mtf_alignment(mtf)
    bar_times = [t.last_bar_at for t in mtf if t.last_bar_at is not None]
    mtf_has_stale = any(t.is_stale(now, config.mtf_stale_after_s) for t in mtf)

    best_style = resolve_style_context(style)
    style_satisfied = True
    if best_style is None:
        best_style, style_satisfied = select_best_style(style_scores, config, inp.symbol)
    threshold = config.threshold_for(best_style, inp.symbol)

    if has_data:
        # A fallback style never makes a symbol ready.
        is_ready = style_satisfied and overall >= threshold
        is_hot = (
            is_ready
            or overall >= config.hot_threshold
            or alignment.aligned >= config.hot_mtf_aligned
        )
    else:
        overall = 0.0
        style_scores = {s: 0.0 for s in STYLE_ORDER}
        is_hot = is_ready = False

    factors: tuple[Factor, ...] = ()
    if detail:
        factors = tuple(evaluate_factor(d, readings.get(d.name)) for d in definitions)

    return SymbolConfluence(
        symbol=inp.symbol,
        price=inp.price,
        change=inp.change,
        change_percent=inp.change_percent,
        factors=factors,
        mtf=mtf,
        mtf_aligned=alignment.aligned,
        mtf_total=alignment.total,
        mtf_direction=alignment.direction,
        mtf_has_stale=mtf_has_stale,
        mtf_last_updated=max(bar_times) if bar_times else None,
        overall_score=overall,
        threshold=threshold,
        best_style=best_style,
        style_scores=MappingProxyType(dict(style_scores)),
        is_hot=is_hot,
        is_ready=is_ready,
        is_detailed=detail,
        last_updated=inp.captured_at if inp.captured_at is not None else now,
    )
