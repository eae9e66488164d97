"""Watchlist-wide confluence aggregation.

``WatchlistConfluenceAggregator.refresh()`` is the pull-based entry point:
it captures the watchlist inputs once, scores every symbol in the cheap
summary tier, and publishes one immutable :class:`WatchlistSnapshot`.
A snapshot is never built from a mix of two captures.

The expensive detail view is computed lazily, only for the symbol a
consumer asks about, from the inputs captured for the latest snapshot.
"""
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Union

from .config import ConfluenceConfig, TradingStyle
from .dirty_flag_manager import ScoreCache
from .error_taxonomy import ConfigError
from .symbol import AUTO_STYLE, SymbolConfluence, SymbolInput, score_symbol

logger = logging.getLogger(__name__)


class SortMode(str, Enum):
    SCORE = "score"
    HOT = "hot"
    CHANGE = "change"
    ALPHABETICAL = "alphabetical"


class FilterMode(str, Enum):
    ALL = "all"
    HOT = "hot"
    SCALP = "scalp"
    DAY = "day"
    SWING = "swing"


def parse_sort_mode(value: SortMode | str) -> SortMode:
    try:
        return SortMode(value)
    except ValueError:
        raise ConfigError(
            f"Unknown sort mode {value!r}; expected one of {[m.value for m in SortMode]}"
        ) from None


def parse_filter_mode(value: FilterMode | str) -> FilterMode:
    try:
        return FilterMode(value)
    except ValueError:
        raise ConfigError(
            f"Unknown filter mode {value!r}; expected one of {[m.value for m in FilterMode]}"
        ) from None


# ---------------------------------------------------------------------------
# Sort / filter policy
# ---------------------------------------------------------------------------

def _alpha_key(item: SymbolConfluence) -> tuple[str, str]:
    return (item.symbol.lower(), item.symbol)


def sort_symbols(
    items: Iterable[SymbolConfluence],
    mode: SortMode | str = SortMode.SCORE,
) -> list[SymbolConfluence]:
    """Order symbols for display.  Every mode ends in an alphabetical tie-break."""
    mode = parse_sort_mode(mode)
    items = list(items)
    if mode == SortMode.SCORE:
        return sorted(items, key=lambda s: (-s.overall_score, *_alpha_key(s)))
    if mode == SortMode.HOT:
        return sorted(
            items,
            key=lambda s: (not s.is_ready, not s.is_hot, -s.overall_score, *_alpha_key(s)),
        )
    if mode == SortMode.CHANGE:
        return sorted(items, key=lambda s: (-s.change_percent, *_alpha_key(s)))
    return sorted(items, key=_alpha_key)


def filter_symbols(
    items: Iterable[SymbolConfluence],
    mode: FilterMode | str = FilterMode.ALL,
) -> list[SymbolConfluence]:
    """Keep the symbols visible under *mode*.

    Style filters only show symbols that are hot *and* best suited to
    that style.
    """
    mode = parse_filter_mode(mode)
    if mode == FilterMode.ALL:
        return list(items)
    if mode == FilterMode.HOT:
        return [s for s in items if s.is_hot]
    style = TradingStyle(mode.value)
    return [s for s in items if s.is_hot and s.best_style == style]


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WatchlistSnapshot:
    """One consistent, immutable view of the whole watchlist.

    ``symbols`` is filtered and sorted for display.  ``all_symbols``,
    ``hot_symbols``, ``ready_symbols`` and ``avg_score`` always describe
    the full, unfiltered watchlist in watchlist order, so header stats do
    not move with the filter.
    """

    symbols: tuple[SymbolConfluence, ...]
    hot_symbols: tuple[str, ...]
    ready_symbols: tuple[str, ...]
    avg_score: float
    last_updated: float
    sort_mode: SortMode = SortMode.SCORE
    filter_mode: FilterMode = FilterMode.ALL
    total_count: int = 0
    generation: int = 0
    all_symbols: tuple[SymbolConfluence, ...] = ()

    def get(self, symbol: str) -> SymbolConfluence | None:
        """Look up a symbol, including ones hidden by the filter."""
        key = symbol.strip().upper()
        for item in self.all_symbols or self.symbols:
            if item.symbol == key:
                return item
        return None

    @property
    def visible_symbols(self) -> tuple[str, ...]:
        return tuple(s.symbol for s in self.symbols)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbols": [s.to_dict() for s in self.symbols],
            "hot_symbols": list(self.hot_symbols),
            "ready_symbols": list(self.ready_symbols),
            "avg_score": self.avg_score,
            "last_updated": self.last_updated,
            "sort_mode": self.sort_mode.value,
            "filter_mode": self.filter_mode.value,
            "total_count": self.total_count,
            "generation": self.generation,
        }


def build_snapshot(
    results: Sequence[SymbolConfluence],
    *,
    sort_mode: SortMode | str = SortMode.SCORE,
    filter_mode: FilterMode | str = FilterMode.ALL,
    now: float | None = None,
    generation: int = 0,
) -> WatchlistSnapshot:
    """Assemble a snapshot from already-scored symbols (watchlist order)."""
    sort_mode = parse_sort_mode(sort_mode)
    filter_mode = parse_filter_mode(filter_mode)
    visible = sort_symbols(filter_symbols(results, filter_mode), sort_mode)
    avg = sum(s.overall_score for s in results) / len(results) if results else 0.0
    return WatchlistSnapshot(
        symbols=tuple(visible),
        hot_symbols=tuple(s.symbol for s in results if s.is_hot),
        ready_symbols=tuple(s.symbol for s in results if s.is_ready),
        avg_score=avg,
        last_updated=time.time() if now is None else now,
        sort_mode=sort_mode,
        filter_mode=filter_mode,
        total_count=len(results),
        generation=generation,
        all_symbols=tuple(results),
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

WatchlistItem = Union[SymbolInput, Mapping[str, Any]]


def capture_watchlist(
    watchlist: Iterable[WatchlistItem],
    *,
    extra_symbols: Iterable[str] = (),
) -> tuple[SymbolInput, ...]:
    """Freeze the caller's watchlist into one immutable capture.

    Symbols are upper-cased; blank symbols are skipped; a duplicate
    symbol keeps its first position but takes the latest data.
    *extra_symbols* missing from a non-empty watchlist are appended as
    data-less inputs; an empty watchlist stays empty.
    """
    by_symbol: dict[str, SymbolInput] = {}
    for item in watchlist:
        inp = item if isinstance(item, SymbolInput) else SymbolInput.from_dict(item)
        if not inp.symbol:
            continue
        if inp.symbol in by_symbol:
            logger.debug("Duplicate watchlist symbol %s, keeping latest data", inp.symbol)
        by_symbol[inp.symbol] = inp
    if by_symbol:
        for sym in extra_symbols:
            key = sym.strip().upper()
            if key and key not in by_symbol:
                by_symbol[key] = SymbolInput(key)
    return tuple(by_symbol.values())


class WatchlistConfluenceAggregator:
    """Owns every ``SymbolConfluence`` and publishes watchlist snapshots.

    Thread-safe: ``refresh`` calls are serialized, and readers
    (``last_snapshot``, ``detail``) only ever see fully published state.
    """

    def __init__(self, config: ConfluenceConfig | None = None) -> None:
        self.config = config or ConfluenceConfig()
        self._cache = ScoreCache()
        self._refresh_lock = threading.Lock()
        self._state_lock = threading.Lock()

        # Published state (guarded by _state_lock)
        self._generation: int = 0
        self._snapshot: WatchlistSnapshot | None = None
        self._inputs: dict[str, SymbolInput] = {}
        self._results: dict[str, SymbolConfluence] = {}
        self._details: dict[tuple[str, str], SymbolConfluence] = {}

    # ── Pull API ──────────────────────────────────────────────

    def refresh(
        self,
        watchlist: Iterable[WatchlistItem],
        *,
        sort_mode: SortMode | str = SortMode.SCORE,
        filter_mode: FilterMode | str = FilterMode.ALL,
        include_indices: bool = False,
        now: float | None = None,
    ) -> WatchlistSnapshot:
        """Score the whole watchlist and publish a new snapshot.

        With *include_indices*, the configured index symbols join a
        non-empty watchlist even when the caller did not list them.
        """
        sort_mode = parse_sort_mode(sort_mode)
        filter_mode = parse_filter_mode(filter_mode)
        extras = sorted(self.config.index_symbols) if include_indices else ()
        captured = capture_watchlist(watchlist, extra_symbols=extras)

        with self._refresh_lock:
            now = time.time() if now is None else now
            results = [self._score_summary(inp, now) for inp in captured]
            self._cache.retain(inp.symbol for inp in captured)

            with self._state_lock:
                generation = self._generation + 1
            snapshot = build_snapshot(
                results,
                sort_mode=sort_mode,
                filter_mode=filter_mode,
                now=now,
                generation=generation,
            )
            with self._state_lock:
                self._generation = generation
                self._snapshot = snapshot
                self._inputs = {inp.symbol: inp for inp in captured}
                self._results = {r.symbol: r for r in results}
                self._details.clear()

        self._cache.log_stats()
        logger.debug(
            "Watchlist refresh #%d: %d symbols, %d hot, %d ready, avg %.1f",
            generation,
            snapshot.total_count,
            len(snapshot.hot_symbols),
            len(snapshot.ready_symbols),
            snapshot.avg_score,
        )
        return snapshot

    def resort(
        self,
        *,
        sort_mode: SortMode | str = SortMode.SCORE,
        filter_mode: FilterMode | str = FilterMode.ALL,
    ) -> WatchlistSnapshot | None:
        """Re-apply sort/filter to the last capture without re-scoring."""
        with self._state_lock:
            if self._snapshot is None:
                return None
            results = list(self._results.values())
            last = self._snapshot
            generation = self._generation
        return build_snapshot(
            results,
            sort_mode=sort_mode,
            filter_mode=filter_mode,
            now=last.last_updated,
            generation=generation,
        )

    def detail(
        self,
        symbol: str,
        *,
        style: TradingStyle | str | None = AUTO_STYLE,
    ) -> SymbolConfluence | None:
        """Full factor view for one symbol of the latest snapshot.

        Computed on demand and cached until the next refresh.  Returns
        ``None`` for symbols that are not on the watchlist.
        """
        key = symbol.strip().upper()
        style_key = style.value if isinstance(style, TradingStyle) else str(style)
        with self._state_lock:
            inp = self._inputs.get(key)
            if inp is None or self._snapshot is None:
                return None
            cached = self._details.get((key, style_key))
            if cached is not None:
                return cached
            generation = self._generation
            now = self._snapshot.last_updated

        result = score_symbol(inp, self.config, style=style, detail=True, now=now)
        with self._state_lock:
            if self._generation == generation:
                self._details[(key, style_key)] = result
        return result

    # ── Read-only state ───────────────────────────────────────

    @property
    def last_snapshot(self) -> WatchlistSnapshot | None:
        with self._state_lock:
            return self._snapshot

    @property
    def generation(self) -> int:
        with self._state_lock:
            return self._generation

    @property
    def cache_stats(self) -> dict[str, int]:
        return self._cache.stats

    def reset(self) -> None:
        """Forget all published state and cached scores."""
        with self._refresh_lock, self._state_lock:
            self._cache.clear()
            self._snapshot = None
            self._inputs = {}
            self._results = {}
            self._details.clear()

    # ── Internal ──────────────────────────────────────────────

    def _score_summary(self, inp: SymbolInput, now: float) -> SymbolConfluence:
        stale_flags = tuple(t.is_stale(now, self.config.mtf_stale_after_s) for t in inp.trends)
        fp = self._cache.fingerprint(inp, stale_flags)
        last_updated = inp.captured_at if inp.captured_at is not None else now
        if self._cache.is_clean(inp.symbol, fp):
            cached = self._cache.get_cached(inp.symbol)
            if cached.last_updated == last_updated:
                return cached
            return replace(cached, last_updated=last_updated)
        result = score_symbol(inp, self.config, detail=False, now=now)
        self._cache.update(inp.symbol, fp, result)
        return result
