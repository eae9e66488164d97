"""Ready-set transitions between consecutive watchlist snapshots.

The tracker compares the ``ready_symbols`` of each snapshot with the
previous one and returns plain event records; it never notifies anyone.
A notifier downstream decides what to do with them.

The first snapshot after construction or :meth:`ReadyTransitionTracker.reset`
only establishes the baseline.  Without that, loading a watchlist full of
ready symbols would look like a burst of "newly ready" events.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import TradingStyle
from .watchlist import WatchlistSnapshot

logger = logging.getLogger(__name__)


class TransitionKind(str, Enum):
    BECAME_READY = "became_ready"
    NO_LONGER_READY = "no_longer_ready"


@dataclass(frozen=True)
class ReadyTransition:
    """A symbol entering or leaving the ready set."""

    kind: TransitionKind
    symbol: str
    overall_score: float | None
    threshold: float | None
    best_style: TradingStyle | None
    price: float | None
    change_percent: float | None
    generation: int
    ts: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "symbol": self.symbol,
            "overall_score": self.overall_score,
            "threshold": self.threshold,
            "best_style": self.best_style.value if self.best_style else None,
            "price": self.price,
            "change_percent": self.change_percent,
            "generation": self.generation,
            "ts": self.ts,
        }


def newly_ready(previous: set[str] | frozenset[str], current: set[str] | frozenset[str]) -> set[str]:
    """``current - previous``; the plain set arithmetic behind the tracker."""
    return set(current) - set(previous)


class ReadyTransitionTracker:
    """Stateful wrapper that turns snapshot sequences into transition events."""

    def __init__(self) -> None:
        self._previous: frozenset[str] | None = None
        self._last_generation: int | None = None
        # Details of the previous ready symbols, used for "lost" events
        # when the symbol has been removed from the watchlist.
        self._previous_rows: dict[str, dict[str, Any]] = {}

    @property
    def has_baseline(self) -> bool:
        return self._previous is not None

    @property
    def previous_ready(self) -> frozenset[str]:
        return self._previous or frozenset()

    def reset(self) -> None:
        """Forget the baseline; the next snapshot will be silent again."""
        self._previous = None
        self._last_generation = None
        self._previous_rows = {}

    def observe(self, snapshot: WatchlistSnapshot) -> list[ReadyTransition]:
        """Return transitions since the previously observed snapshot.

        Observing the same snapshot generation twice yields no events.
        """
        current = frozenset(snapshot.ready_symbols)
        rows = {s.symbol: _row(s) for s in snapshot.all_symbols or snapshot.symbols}

        if self._previous is None:
            logger.debug("Ready baseline set: %d symbol(s)", len(current))
            self._remember(snapshot, current, rows)
            return []
        if snapshot.generation and snapshot.generation == self._last_generation:
            return []

        events: list[ReadyTransition] = []
        # Keep watchlist order for deterministic output.
        for symbol in snapshot.ready_symbols:
            if symbol in self._previous:
                continue
            events.append(self._event(TransitionKind.BECAME_READY, symbol, rows.get(symbol), snapshot))
        for symbol in sorted(self._previous - current):
            row = rows.get(symbol) or self._previous_rows.get(symbol)
            events.append(self._event(TransitionKind.NO_LONGER_READY, symbol, row, snapshot))

        if events:
            logger.info(
                "Ready transitions (gen %d): +%s -%s",
                snapshot.generation,
                [e.symbol for e in events if e.kind == TransitionKind.BECAME_READY],
                [e.symbol for e in events if e.kind == TransitionKind.NO_LONGER_READY],
            )
        self._remember(snapshot, current, rows)
        return events

    # ── Internal ──────────────────────────────────────────────

    def _remember(
        self,
        snapshot: WatchlistSnapshot,
        current: frozenset[str],
        rows: dict[str, dict[str, Any]],
    ) -> None:
        self._previous = current
        self._last_generation = snapshot.generation
        self._previous_rows = {sym: rows[sym] for sym in current if sym in rows}

    @staticmethod
    def _event(
        kind: TransitionKind,
        symbol: str,
        row: dict[str, Any] | None,
        snapshot: WatchlistSnapshot,
    ) -> ReadyTransition:
        row = row or {}
        return ReadyTransition(
            kind=kind,
            symbol=symbol,
            overall_score=row.get("overall_score"),
            threshold=row.get("threshold"),
            best_style=row.get("best_style"),
            price=row.get("price"),
            change_percent=row.get("change_percent"),
            generation=snapshot.generation,
            ts=snapshot.last_updated,
        )


def _row(item: Any) -> dict[str, Any]:
    return {
        "overall_score": item.overall_score,
        "threshold": item.threshold,
        "best_style": item.best_style,
        "price": item.price,
        "change_percent": item.change_percent,
    }
