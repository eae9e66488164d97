"""Per-symbol dirty-flag cache for watchlist refreshes.

Avoids re-scoring symbols whose inputs have not changed between
consecutive refresh cycles.  A refresh tick typically changes a handful of
symbols; the rest reuse their previous ``SymbolConfluence``.

The manager keeps a lightweight fingerprint (hash) of everything that
affects a symbol's summary result: quote fields, factor readings, trend
directions and the per-timeframe stale flags (staleness moves with the
clock even when the inputs do not).

Usage::

    cache = ScoreCache()

    fp = cache.fingerprint(inp, stale_flags)
    if cache.is_clean(inp.symbol, fp):
        result = cache.get_cached(inp.symbol)
    else:
        result = score_symbol(inp, config, detail=False)
        cache.update(inp.symbol, fp, result)
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .symbol import SymbolConfluence, SymbolInput

logger = logging.getLogger(__name__)


def _fmt(val: float | None) -> str:
    # Round floats to avoid jitter from upstream arithmetic.
    return "None" if val is None else f"{val:.6f}"


def make_fingerprint(inp: "SymbolInput", stale_flags: Iterable[bool] = ()) -> str:
    """Create a deterministic hash from score-relevant input values.

    ``captured_at`` is deliberately excluded: an unchanged quote captured
    on a later tick must still hit the cache.
    """
    parts: list[str] = [
        f"symbol={inp.symbol}",
        f"price={_fmt(inp.price)}",
        f"change={_fmt(inp.change)}",
        f"change_pct={_fmt(inp.change_percent)}",
    ]
    for name in sorted(inp.readings):
        rd = inp.readings[name]
        direction = rd.direction.value if rd.direction else "-"
        parts.append(f"r.{name}={_fmt(rd.raw_value)}:{direction}")
    for trend in inp.trends:
        parts.append(f"t.{trend.timeframe}={trend.direction.value}@{_fmt(trend.last_bar_at)}")
    parts.append("stale=" + "".join("1" if s else "0" for s in stale_flags))
    raw = "|".join(parts)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class ScoreCache:
    """Track per-symbol input fingerprints to skip redundant scoring."""

    def __init__(self) -> None:
        self._fingerprints: dict[str, str] = {}
        self._cache: dict[str, "SymbolConfluence"] = {}
        self._stats = {"hits": 0, "misses": 0}

    def fingerprint(self, inp: "SymbolInput", stale_flags: Iterable[bool] = ()) -> str:
        """Compute a fingerprint for the given input."""
        return make_fingerprint(inp, stale_flags)

    def is_clean(self, symbol: str, fp: str) -> bool:
        """Return True if *symbol*'s fingerprint matches the cached one."""
        return (
            symbol in self._fingerprints
            and self._fingerprints[symbol] == fp
            and symbol in self._cache
        )

    def get_cached(self, symbol: str) -> "SymbolConfluence":
        """Return the previously cached result for *symbol*.

        Caller must verify ``is_clean()`` first.
        """
        self._stats["hits"] += 1
        return self._cache[symbol]

    def update(self, symbol: str, fp: str, result: "SymbolConfluence") -> None:
        """Store the scoring result and fingerprint for *symbol*."""
        self._stats["misses"] += 1
        self._fingerprints[symbol] = fp
        self._cache[symbol] = result

    def invalidate(self, symbol: str) -> None:
        """Force re-scoring of *symbol* on the next cycle."""
        self._fingerprints.pop(symbol, None)
        self._cache.pop(symbol, None)

    def retain(self, symbols: Iterable[str]) -> None:
        """Drop entries for symbols no longer on the watchlist."""
        keep = set(symbols)
        for sym in [s for s in self._cache if s not in keep]:
            self.invalidate(sym)

    def clear(self) -> None:
        """Flush all cached fingerprints and results."""
        self._fingerprints.clear()
        self._cache.clear()
        self._stats = {"hits": 0, "misses": 0}

    def __len__(self) -> int:
        return len(self._cache)

    @property
    def stats(self) -> dict[str, int]:
        """Return cache hit/miss statistics."""
        return dict(self._stats)

    def log_stats(self, level: int = logging.DEBUG) -> None:
        """Log a summary of cache usage."""
        total = self._stats["hits"] + self._stats["misses"]
        if total > 0:
            hit_rate = 100.0 * self._stats["hits"] / total
            logger.log(
                level,
                "ScoreCache: %d/%d cache hits (%.1f%%), %d re-scored",
                self._stats["hits"],
                total,
                hit_rate,
                self._stats["misses"],
            )
