"""Structured error taxonomy and retry decorator for the confluence engine.

Provides:
  - A small exception hierarchy so callers can tell configuration mistakes
    (raised at construction time) from upstream data-source failures.
    Missing or stale market data is *not* an error anywhere in the engine;
    it degrades to ``missing`` factors and a score of 0.
  - A ``@retry()`` decorator with exponential backoff, jitter, exception-
    type filtering, and an on_retry callback.  The engine itself is pure
    computation and never retries; the refresh scheduler wraps the
    caller-supplied data source with it.
"""
from __future__ import annotations

import functools
import logging
import random
import time
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class ConfluenceError(Exception):
    """Base error for the confluence engine."""
    pass


class ConfigError(ConfluenceError, ValueError):
    """Invalid configuration value or caller-contract violation.

    Subclasses ``ValueError`` so callers validating user input with a
    plain ``except ValueError`` keep working.
    """

    def __init__(self, message: str, *, issues: list[str] | None = None):
        self.issues = list(issues or [])
        super().__init__(message)


class DataSourceError(ConfluenceError):
    """Upstream market-data source failed to deliver a watchlist capture."""

    def __init__(self, message: str, *, source: str = "", symbol: str = ""):
        self.source = source
        self.symbol = symbol
        super().__init__(message)


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------

def retry(
    attempts: int = 3,
    backoff: float = 1.5,
    initial_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_pct: float = 0.10,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Callable[..., Any] | None = None,
):
    """Decorator: retry a function with exponential backoff + jitter.

    Parameters
    ----------
    attempts : int
        Maximum number of tries (including the first).
    backoff : float
        Multiplier applied to the delay after each failure.
    initial_delay : float
        Sleep before the second attempt (seconds).
    max_delay : float
        Upper cap on the sleep between retries (seconds).
    jitter_pct : float
        ±N % random jitter added to the delay (0.10 = ±10 %).
    retryable_exceptions : tuple
        Only retry if the raised exception is an instance of one of these.
    on_retry : callable, optional
        ``on_retry(attempt, exception)`` called before each retry sleep.
    """
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= attempts:
                        raise
                    if on_retry is not None:
                        try:
                            on_retry(attempt, exc)
                        except Exception:
                            logger.debug("on_retry callback failed", exc_info=True)
                    jitter = delay * jitter_pct * (2 * random.random() - 1)
                    sleep_time = min(delay + jitter, max_delay)
                    logger.debug(
                        "retry %d/%d for %s after %.2fs: %s",
                        attempt, attempts, getattr(fn, "__qualname__", fn), sleep_time, exc,
                    )
                    time.sleep(max(sleep_time, 0))
                    delay = min(delay * backoff, max_delay)
            raise ConfluenceError(f"retry exhausted without result ({attempts} attempts)")
        return wrapper
    return decorator
