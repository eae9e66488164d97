"""Tests for confluence_engine.error_taxonomy and utils helpers."""
from __future__ import annotations

import logging
import math
from unittest.mock import MagicMock, patch

import pytest

from confluence_engine.error_taxonomy import (
    ConfigError,
    ConfluenceError,
    DataSourceError,
    retry,
)
from confluence_engine.utils import (
    CycleTimer,
    clamp,
    normalize_symbol,
    to_float,
    to_optional_float,
)


class TestExceptionHierarchy:
    def test_config_error(self) -> None:
        err = ConfigError("bad", issues=["a", "b"])
        assert isinstance(err, ConfluenceError)
        assert isinstance(err, ValueError)
        assert err.issues == ["a", "b"]

    def test_data_source_error(self) -> None:
        err = DataSourceError("down", source="fmp", symbol="AAPL")
        assert isinstance(err, ConfluenceError)
        assert (err.source, err.symbol) == ("fmp", "AAPL")


class TestRetry:
    @patch("confluence_engine.error_taxonomy.time.sleep")
    def test_succeeds_after_failures(self, mock_sleep) -> None:
        fn = MagicMock(side_effect=[OSError("x"), OSError("y"), "ok"])
        on_retry = MagicMock()

        @retry(attempts=3, initial_delay=1.0, backoff=2.0, jitter_pct=0.0, on_retry=on_retry)
        def call():
            return fn()

        assert call() == "ok"
        assert fn.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]
        assert on_retry.call_count == 2

    @patch("confluence_engine.error_taxonomy.time.sleep")
    def test_raises_last_error(self, mock_sleep) -> None:
        @retry(attempts=2, jitter_pct=0.0)
        def call():
            raise DataSourceError("down")

        with pytest.raises(DataSourceError):
            call()
        assert mock_sleep.call_count == 1

    @patch("confluence_engine.error_taxonomy.time.sleep")
    def test_non_retryable_propagates_immediately(self, mock_sleep) -> None:
        calls = []

        @retry(attempts=5, retryable_exceptions=(DataSourceError,))
        def call():
            calls.append(1)
            raise KeyError("bug")

        with pytest.raises(KeyError):
            call()
        assert len(calls) == 1
        mock_sleep.assert_not_called()

    @patch("confluence_engine.error_taxonomy.time.sleep")
    def test_delay_capped(self, mock_sleep) -> None:
        @retry(attempts=4, initial_delay=10.0, backoff=10.0, max_delay=15.0, jitter_pct=0.0)
        def call():
            raise OSError("x")

        with pytest.raises(OSError):
            call()
        assert all(c.args[0] <= 15.0 for c in mock_sleep.call_args_list)


class TestUtils:
    @pytest.mark.parametrize(
        "value, expected",
        [(None, 0.0), ("1.5", 1.5), ("abc", 0.0), (float("nan"), 0.0), (3, 3.0)],
    )
    def test_to_float(self, value, expected) -> None:
        assert to_float(value) == expected

    @pytest.mark.parametrize("value", [None, True, "x", float("nan"), math.inf])
    def test_to_optional_float_rejects(self, value) -> None:
        assert to_optional_float(value) is None

    def test_to_optional_float_keeps_zero(self) -> None:
        assert to_optional_float(0) == 0.0

    def test_clamp(self) -> None:
        assert clamp(150.0) == 100.0
        assert clamp(-1.0) == 0.0
        assert clamp(5.0, 0.0, 1.0) == 1.0

    def test_normalize_symbol(self) -> None:
        assert normalize_symbol(" aapl ") == "AAPL"
        assert normalize_symbol(None) == ""

    def test_cycle_timer_sums_repeated_stages(self) -> None:
        timer = CycleTimer()
        with timer.stage("fetch"):
            pass
        first = timer.finish()["stages"]["fetch"]
        with timer.stage("fetch"):
            pass
        timings = timer.finish()
        assert list(timings["stages"]) == ["fetch"]
        assert timings["stages"]["fetch"] >= first

    def test_cycle_timer_finish(self, caplog) -> None:
        timer = CycleTimer()
        with timer.stage("score"):
            pass
        with caplog.at_level(logging.DEBUG, logger="confluence_engine.utils"):
            timings = timer.finish()
        assert list(timings["stages"]) == ["score"]
        assert timings["total_seconds"] >= 0
        assert "refresh cycle" in caplog.text

    def test_slow_cycle_warns(self, caplog) -> None:
        timer = CycleTimer(label="watchlist")
        with caplog.at_level(logging.WARNING, logger="confluence_engine.utils"):
            timer.finish(slow_after_s=-1.0)
        assert "Slow watchlist cycle" in caplog.text
