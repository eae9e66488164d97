"""Background refresh loop for the watchlist aggregator.

Runs the pull -> score -> publish cycle on a dedicated
``threading.Thread`` so readers never block on upstream I/O.  Each cycle:

  1. waits ``interval_s`` or until ``request_refresh()`` wakes it early
     (a data push from the feed),
  2. pulls the current watchlist inputs from ``source`` (retried with
     backoff; a failure that survives the retries becomes
     ``DataSourceError`` and the previous snapshot stays published),
  3. scores them through ``WatchlistConfluenceAggregator.refresh``,
  4. publishes the snapshot atomically, then diffs it for ready
     transitions and score drops and queues those events.

A cycle that was superseded by a newer ``request_refresh()`` while it was
computing is discarded instead of published, at most
``MAX_CONSECUTIVE_DISCARDS`` times in a row.

Usage::

    scheduler = RefreshScheduler(aggregator, source=fetch_watchlist)
    scheduler.start()

    # On each UI tick:
    snapshot = scheduler.latest_snapshot
    for event in scheduler.drain_events():
        ...
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from .config_validation import validate_refresh_interval
from .error_taxonomy import DataSourceError, retry
from .score_drop import ScoreDropMonitor
from .transitions import ReadyTransitionTracker
from .utils import CycleTimer
from .watchlist import (
    FilterMode,
    SortMode,
    WatchlistConfluenceAggregator,
    WatchlistItem,
    WatchlistSnapshot,
    parse_filter_mode,
    parse_sort_mode,
)

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_DISCARDS = 3

Source = Callable[[], Iterable[WatchlistItem]]
Subscriber = Callable[[WatchlistSnapshot, list[Any]], None]


class RefreshScheduler:
    """Periodically refreshes an aggregator and publishes snapshots.

    Thread-safe: the published snapshot is swapped under a lock, events
    travel through a ``queue.Queue``, and status counters are plain
    attribute writes from the worker thread.

    Parameters
    ----------
    aggregator : WatchlistConfluenceAggregator
    source : callable
        ``source()`` returns the current watchlist inputs
        (``SymbolInput`` objects or feed dicts).
    interval_s : float or None
        Refresh cadence; defaults to ``aggregator.config.refresh_interval_s``.
    retry_attempts : int
        Tries per fetch, including the first.
    retry_delay_s : float
        Sleep before the second fetch attempt; grows by 1.5x per retry.
    drop_monitor : ScoreDropMonitor or None
        Fed with every published snapshot when given.
    include_indices : bool
        Add the configured index symbols to every non-empty capture.
    """

    def __init__(
        self,
        aggregator: WatchlistConfluenceAggregator,
        source: Source,
        *,
        interval_s: float | None = None,
        sort_mode: SortMode | str = SortMode.SCORE,
        filter_mode: FilterMode | str = FilterMode.ALL,
        retry_attempts: int = 3,
        retry_delay_s: float = 0.5,
        drop_monitor: ScoreDropMonitor | None = None,
        include_indices: bool = False,
    ) -> None:
        self._aggregator = aggregator
        self._include_indices = include_indices
        self._source_name = getattr(source, "__qualname__", type(source).__name__)
        self._interval_s = validate_refresh_interval(
            aggregator.config.refresh_interval_s if interval_s is None else interval_s
        )
        self._sort_mode = parse_sort_mode(sort_mode)
        self._filter_mode = parse_filter_mode(filter_mode)
        self._fetch = retry(
            attempts=max(1, retry_attempts),
            initial_delay=retry_delay_s,
            max_delay=5.0,
            on_retry=self._on_retry,
        )(source)
        self._tracker = ReadyTransitionTracker()
        self._drop_monitor = drop_monitor

        self._lock = threading.Lock()          # published state + settings
        self._cycle_lock = threading.Lock()    # one cycle at a time
        self._subscribers: list[Subscriber] = []
        self._events: queue.Queue[list[Any]] = queue.Queue(maxsize=100)
        self._wake_event = threading.Event()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self._snapshot: WatchlistSnapshot | None = None
        self._request_seq: int = 0
        self._consecutive_discards: int = 0

        # Observable status (read from the UI thread)
        self.refresh_count: int = 0
        self.discarded_count: int = 0
        self.error_count: int = 0
        self.last_refresh_ts: float = 0.0
        self.last_refresh_duration_s: float = 0.0
        self.last_error: str = ""
        self.last_failure: DataSourceError | None = None
        self.last_profile: dict[str, Any] = {}

    # ── Thread lifecycle ────────────────────────────────────

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval_s(self) -> float:
        with self._lock:
            return self._interval_s

    def start(self) -> None:
        """Start the background refresh thread (idempotent)."""
        if self.is_alive:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="confluence-refresh",
            daemon=True,
        )
        self._thread.start()
        logger.info("Refresh scheduler started (interval=%.1fs)", self._interval_s)

    def stop(self, timeout: float | None = None) -> None:
        """Signal the thread to stop; join for *timeout* seconds when given."""
        self._stop_event.set()
        self._wake_event.set()
        logger.info("Refresh scheduler stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout)

    # ── Control ─────────────────────────────────────────────

    def request_refresh(self) -> None:
        """Wake the loop now; supersedes any cycle currently computing."""
        with self._lock:
            self._request_seq += 1
        self._wake_event.set()

    def update_interval(self, interval_s: float) -> None:
        """Change the cadence at runtime; raises ConfigError when out of range."""
        interval_s = validate_refresh_interval(interval_s)
        with self._lock:
            self._interval_s = interval_s
        logger.info("Refresh interval updated to %.1fs", interval_s)

    def set_modes(
        self,
        *,
        sort_mode: SortMode | str | None = None,
        filter_mode: FilterMode | str | None = None,
    ) -> WatchlistSnapshot | None:
        """Change sort/filter and republish the last capture without re-scoring."""
        with self._lock:
            if sort_mode is not None:
                self._sort_mode = parse_sort_mode(sort_mode)
            if filter_mode is not None:
                self._filter_mode = parse_filter_mode(filter_mode)
            sort_mode, filter_mode = self._sort_mode, self._filter_mode
        snapshot = self._aggregator.resort(sort_mode=sort_mode, filter_mode=filter_mode)
        if snapshot is not None:
            with self._lock:
                self._snapshot = snapshot
        return snapshot

    # ── Push channel ────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback(snapshot, events)``; returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def drain_events(self) -> list[Any]:
        """Drain all pending event batches (newest batch first)."""
        batches: list[list[Any]] = []
        while True:
            try:
                batches.append(self._events.get_nowait())
            except queue.Empty:
                break
        events: list[Any] = []
        for batch in reversed(batches):
            events.extend(batch)
        return events

    @property
    def latest_snapshot(self) -> WatchlistSnapshot | None:
        with self._lock:
            return self._snapshot

    # ── Cycles ──────────────────────────────────────────────

    def refresh_now(self) -> WatchlistSnapshot | None:
        """Run one cycle synchronously and publish it unconditionally.

        Returns the published snapshot, or ``None`` when the fetch failed.
        """
        return self._run_cycle(allow_discard=False)

    def _run_cycle(self, *, allow_discard: bool = True) -> WatchlistSnapshot | None:
        with self._cycle_lock:
            with self._lock:
                seq = self._request_seq
                sort_mode, filter_mode = self._sort_mode, self._filter_mode

            timer = CycleTimer()
            try:
                with timer.stage("fetch"):
                    watchlist = self._fetch_inputs()
            except DataSourceError as exc:
                logger.error("Watchlist fetch failed after retries: %s", exc, exc_info=exc.__cause__)
                self.error_count += 1
                self.last_error = str(exc)
                self.last_failure = exc
                return None

            with timer.stage("score"):
                snapshot = self._aggregator.refresh(
                    watchlist,
                    sort_mode=sort_mode,
                    filter_mode=filter_mode,
                    include_indices=self._include_indices,
                )

            with self._lock:
                superseded = self._request_seq != seq
                if (
                    allow_discard
                    and superseded
                    and self._consecutive_discards < MAX_CONSECUTIVE_DISCARDS
                ):
                    self._consecutive_discards += 1
                    self.discarded_count += 1
                    logger.debug(
                        "Refresh gen %d superseded, discarding (%d in a row)",
                        snapshot.generation, self._consecutive_discards,
                    )
                    return None
                self._consecutive_discards = 0
                self._snapshot = snapshot
                subscribers = list(self._subscribers)

            self.refresh_count += 1
            self.last_refresh_ts = time.time()
            self.last_profile = timer.finish(slow_after_s=self.interval_s)
            self.last_refresh_duration_s = self.last_profile["total_seconds"]
            self.last_error = ""
            self.last_failure = None

            events = self._collect_events(snapshot)

        if events:
            try:
                self._events.put_nowait(events)
            except queue.Full:
                logger.warning("Event queue full, dropping %d event(s)", len(events))
        for cb in subscribers:
            try:
                cb(snapshot, events)
            except Exception:
                logger.exception("Snapshot subscriber failed")
        return snapshot

    def _fetch_inputs(self) -> list[WatchlistItem]:
        """Pull the watchlist; failures surviving the retries become ``DataSourceError``."""
        try:
            return list(self._fetch())
        except DataSourceError:
            raise
        except Exception as exc:
            raise DataSourceError(
                f"{self._source_name} failed: {exc}", source=self._source_name,
            ) from exc

    def _collect_events(self, snapshot: WatchlistSnapshot) -> list[Any]:
        events: list[Any] = list(self._tracker.observe(snapshot))
        if self._drop_monitor is not None:
            events.extend(self._drop_monitor.observe_snapshot(snapshot))
        return events

    def _on_retry(self, attempt: int, exc: Exception) -> None:
        logger.warning("Watchlist fetch attempt %d failed: %s", attempt, exc)

    def _run_loop(self) -> None:
        """Main loop running in the background thread."""
        logger.info("Refresh loop entered")
        while not self._stop_event.is_set():
            self._wake_event.wait(timeout=self.interval_s)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            try:
                self._run_cycle()
            except Exception as exc:
                logger.exception("Refresh cycle failed: %s", exc)
                self.error_count += 1
                self.last_error = str(exc)
                continue
            # A superseded cycle goes straight into the next one.
            with self._lock:
                if self._consecutive_discards:
                    self._wake_event.set()
        logger.info("Refresh loop exited")
