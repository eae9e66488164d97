"""Score-drop detection for open positions.

Compares consecutive overall scores of one symbol and classifies the fall:

  * drop > ``significant_drop`` (10 pts)  → ``SIGNIFICANT``
  * drop > ``moderate_drop`` (5 pts)      → ``MODERATE``
  * anything else (including rises)       → no drop

The significant-drop callback fires once per observed drop, keyed on the
``(previous, current)`` pair: a falling series 60 -> 48 -> 36 alerts twice,
while re-observing the same pair (an explicit ``previous`` replayed, say)
stays silent.  The "low score" flag is level-triggered and simply reports
``current < alert_threshold`` on every observation.

``ScoreDropMonitor`` runs one detector per symbol and is fed from
watchlist snapshots, so a position manager can subscribe to drops
without tracking previous scores itself.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .watchlist import WatchlistSnapshot

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 40.0
DEFAULT_SIGNIFICANT_DROP = 10.0
DEFAULT_MODERATE_DROP = 5.0

# Sentinel: "use the previous observation" (``None`` means "no previous").
_ROLLING: Any = object()


class DropSeverity(str, Enum):
    SIGNIFICANT = "significant"
    MODERATE = "moderate"


def classify_drop(
    previous: float | None,
    current: float,
    *,
    significant_drop: float = DEFAULT_SIGNIFICANT_DROP,
    moderate_drop: float = DEFAULT_MODERATE_DROP,
) -> DropSeverity | None:
    """Severity of the fall from *previous* to *current*, or ``None``."""
    if previous is None:
        return None
    drop = previous - current
    if drop > significant_drop:
        return DropSeverity.SIGNIFICANT
    if drop > moderate_drop:
        return DropSeverity.MODERATE
    return None


@dataclass(frozen=True)
class ScoreDropResult:
    """Outcome of one ``ScoreDropDetector.observe`` call."""

    severity: DropSeverity | None
    drop: float             # previous - current; 0 without a previous score
    is_low: bool            # current < alert_threshold
    fired: bool             # the significant-drop callback ran (or would have)

    @property
    def is_significant(self) -> bool:
        return self.severity == DropSeverity.SIGNIFICANT


class ScoreDropDetector:
    """Stateful drop detector for a single score series.

    Parameters
    ----------
    alert_threshold : float
        Scores below this are flagged ``is_low``.
    significant_drop, moderate_drop : float
        Point drops (strictly greater than) for each severity.
    on_significant_drop : callable or None
        ``cb(current, previous)``; exceptions are logged, never raised.
    """

    def __init__(
        self,
        alert_threshold: float = DEFAULT_ALERT_THRESHOLD,
        *,
        significant_drop: float = DEFAULT_SIGNIFICANT_DROP,
        moderate_drop: float = DEFAULT_MODERATE_DROP,
        on_significant_drop: Callable[[float, float], None] | None = None,
    ) -> None:
        self.alert_threshold = alert_threshold
        self.significant_drop = significant_drop
        self.moderate_drop = moderate_drop
        self.on_significant_drop = on_significant_drop

        self._last: float | None = None
        self._fired_pair: tuple[float, float] | None = None
        self.fire_count: int = 0

    @property
    def last_score(self) -> float | None:
        return self._last

    @property
    def is_low(self) -> bool:
        return self._last is not None and self._last < self.alert_threshold

    def reset(self) -> None:
        self._last = None
        self._fired_pair = None

    def observe(self, current: float, previous: float | None = _ROLLING) -> ScoreDropResult:
        """Record *current* and classify the drop from *previous*.

        By default *previous* is the score passed to the last ``observe``.
        """
        if previous is _ROLLING:
            previous = self._last
        severity = classify_drop(
            previous,
            current,
            significant_drop=self.significant_drop,
            moderate_drop=self.moderate_drop,
        )
        drop = 0.0 if previous is None else previous - current

        fired = False
        if severity == DropSeverity.SIGNIFICANT:
            pair = (previous, current)
            if pair != self._fired_pair:
                fired = True
                self._fired_pair = pair
                self.fire_count += 1
                self._notify(current, previous)
        else:
            self._fired_pair = None

        self._last = current
        return ScoreDropResult(
            severity=severity,
            drop=drop,
            is_low=current < self.alert_threshold,
            fired=fired,
        )

    def _notify(self, current: float, previous: float) -> None:
        if self.on_significant_drop is None:
            return
        try:
            self.on_significant_drop(current, previous)
        except Exception:
            logger.exception("Score-drop callback failed (%.1f -> %.1f)", previous, current)


# ═══════════════════════════════════════════════════════════════════════════
# Per-symbol monitor
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScoreDropEvent:
    """A classified drop for one symbol between two snapshots."""

    symbol: str
    severity: DropSeverity
    previous_score: float
    current_score: float
    drop: float
    is_low: bool
    fired: bool
    ts: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "severity": self.severity.value,
            "previous_score": self.previous_score,
            "current_score": self.current_score,
            "drop": self.drop,
            "is_low": self.is_low,
            "fired": self.fired,
            "ts": self.ts,
        }


class ScoreDropMonitor:
    """One ``ScoreDropDetector`` per symbol, fed from snapshots.

    Only symbols in *symbols* are tracked when given (e.g. open
    positions); otherwise every symbol in the snapshot is.
    """

    def __init__(
        self,
        alert_threshold: float = DEFAULT_ALERT_THRESHOLD,
        *,
        symbols: set[str] | None = None,
        on_significant_drop: Callable[[ScoreDropEvent], None] | None = None,
    ) -> None:
        self.alert_threshold = alert_threshold
        self.on_significant_drop = on_significant_drop
        self._symbols = {s.upper() for s in symbols} if symbols is not None else None
        self._detectors: dict[str, ScoreDropDetector] = {}

    def track(self, symbol: str) -> None:
        if self._symbols is None:
            self._symbols = set()
        self._symbols.add(symbol.upper())

    def untrack(self, symbol: str) -> None:
        key = symbol.upper()
        if self._symbols is not None:
            self._symbols.discard(key)
        self._detectors.pop(key, None)

    def detector(self, symbol: str) -> ScoreDropDetector:
        key = symbol.upper()
        det = self._detectors.get(key)
        if det is None:
            det = ScoreDropDetector(self.alert_threshold)
            self._detectors[key] = det
        return det

    def reset(self) -> None:
        self._detectors.clear()

    def observe_snapshot(self, snapshot: WatchlistSnapshot) -> list[ScoreDropEvent]:
        """Feed every tracked symbol's score; return classified drops."""
        events: list[ScoreDropEvent] = []
        for item in snapshot.all_symbols or snapshot.symbols:
            if self._symbols is not None and item.symbol not in self._symbols:
                continue
            det = self.detector(item.symbol)
            previous = det.last_score
            result = det.observe(item.overall_score)
            if result.severity is None or previous is None:
                continue
            event = ScoreDropEvent(
                symbol=item.symbol,
                severity=result.severity,
                previous_score=previous,
                current_score=item.overall_score,
                drop=result.drop,
                is_low=result.is_low,
                fired=result.fired,
                ts=snapshot.last_updated,
            )
            events.append(event)
            if result.fired:
                logger.info(
                    "Significant score drop %s: %.1f -> %.1f",
                    item.symbol, previous, item.overall_score,
                )
                if self.on_significant_drop is not None:
                    try:
                        self.on_significant_drop(event)
                    except Exception:
                        logger.exception("Score-drop subscriber failed for %s", item.symbol)
        return events
