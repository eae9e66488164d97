from __future__ import annotations

import logging
import math
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)


def to_float(value: Any, default: float = 0.0) -> float:
    """Safely parse numeric-like values to float with default fallback.

    Returns *default* for ``None``, non-numeric strings, **and** ``NaN``
    values so that downstream arithmetic never silently propagates NaN.
    """
    try:
        f = float(value)
        return default if math.isnan(f) else f
    except (TypeError, ValueError):
        return default


def to_optional_float(value: Any) -> float | None:
    """Like :func:`to_float` but keeps "no value" distinguishable from 0.0.

    ``bool`` is rejected on purpose: a ``True`` reading is almost always a
    caller bug, not a 1.0.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(f) or math.isinf(f):
        return None
    return f


def clamp(value: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, value))


def normalize_symbol(symbol: Any) -> str:
    return str(symbol or "").strip().upper()


# ---------------------------------------------------------------------------
# Refresh-cycle timing
# ---------------------------------------------------------------------------

class CycleTimer:
    """Wall-clock timings for one refresh cycle.

    Stages accumulate by name, so a stage entered twice reports its summed
    time.  ``finish`` logs the breakdown at DEBUG, or as a WARNING when the
    cycle ran longer than *slow_after_s*::

        timer = CycleTimer()
        with timer.stage("fetch"):
            inputs = source()
        timings = timer.finish(slow_after_s=interval_s)
    """

    def __init__(self, label: str = "refresh") -> None:
        self.label = label
        self._stages: dict[str, float] = {}
        self._t0: float = time.monotonic()

    @contextmanager
    def stage(self, name: str) -> Generator[None, None, None]:
        start = time.monotonic()
        try:
            yield
        finally:
            self._stages[name] = self._stages.get(name, 0.0) + time.monotonic() - start

    @property
    def elapsed_s(self) -> float:
        return time.monotonic() - self._t0

    def finish(self, slow_after_s: float | None = None) -> dict[str, Any]:
        """Return ``{"stages": {name: seconds}, "total_seconds": float}`` and log it."""
        total = self.elapsed_s
        timings = {"stages": dict(self._stages), "total_seconds": total}
        breakdown = ", ".join(f"{name} {secs:.3f}s" for name, secs in self._stages.items())
        if slow_after_s is not None and total > slow_after_s:
            logger.warning(
                "Slow %s cycle: %.3fs exceeds %.1fs (%s)",
                self.label, total, slow_after_s, breakdown,
            )
        else:
            logger.debug("%s cycle %.3fs (%s)", self.label, total, breakdown)
        return timings
