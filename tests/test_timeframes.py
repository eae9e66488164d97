"""Tests for confluence_engine.timeframes: trend model and MTF alignment."""
from __future__ import annotations

import pytest

from confluence_engine.factors import FactorDirection
from confluence_engine.timeframes import (
    TIMEFRAME_ORDER,
    TimeframeTrend,
    TrendDirection,
    mtf_alignment,
    mtf_alignment_reading,
    normalize_timeframe,
    sort_trends,
    timeframe_rank,
)


def _t(tf: str, direction: str, **kw) -> TimeframeTrend:
    return TimeframeTrend(tf, direction, **kw)


class TestTrendDirection:
    @pytest.mark.parametrize("raw", ["bull", "Bullish", "UP", " up "])
    def test_up_spellings(self, raw: str) -> None:
        assert TrendDirection.parse(raw) == TrendDirection.UP

    @pytest.mark.parametrize("raw", ["bear", "bearish", "down"])
    def test_down_spellings(self, raw: str) -> None:
        assert TrendDirection.parse(raw) == TrendDirection.DOWN

    @pytest.mark.parametrize("raw", [None, "", "sideways", 1])
    def test_unknown_rejected(self, raw) -> None:
        with pytest.raises(ValueError):
            TrendDirection.parse(raw)

    def test_missing_direction_is_never_neutral(self) -> None:
        with pytest.raises(ValueError):
            TimeframeTrend("1H", None)


class TestTimeframeCodes:
    def test_alias_60m(self) -> None:
        assert normalize_timeframe("60m") == "1H"
        assert _t("60m", "up").timeframe == "1H"

    def test_unknown_kept_verbatim(self) -> None:
        assert normalize_timeframe("3m") == "3m"

    def test_rank(self) -> None:
        assert timeframe_rank("1W") == 0
        assert timeframe_rank("1m") == len(TIMEFRAME_ORDER) - 1
        assert timeframe_rank("3m") == len(TIMEFRAME_ORDER)

    def test_label_defaults_to_code(self) -> None:
        assert _t("4H", "up").label == "4H"

    def test_empty_code_rejected(self) -> None:
        with pytest.raises(ValueError):
            TimeframeTrend("", "up")


class TestSortTrends:
    def test_canonical_order(self) -> None:
        trends = [_t("5m", "up"), _t("1D", "up"), _t("1H", "down"), _t("1W", "up")]
        assert [t.timeframe for t in sort_trends(trends)] == ["1W", "1D", "1H", "5m"]

    def test_unknown_codes_last_and_stable(self) -> None:
        trends = [_t("3m", "up"), _t("1m", "up"), _t("2h", "down"), _t("1D", "up")]
        assert [t.timeframe for t in sort_trends(trends)] == ["1D", "1m", "3m", "2h"]


class TestStaleness:
    def test_no_bar_is_stale(self) -> None:
        assert _t("1H", "up").is_stale(now=1000.0)

    def test_fresh_and_stale(self) -> None:
        t = _t("1H", "up", last_bar_at=1000.0)
        assert not t.is_stale(now=1060.0)
        assert t.is_stale(now=1060.5)
        assert t.is_stale(now=1030.0, max_age_s=10.0)

    def test_staleness_keeps_direction(self) -> None:
        t = _t("1H", "up", last_bar_at=0.0)
        assert t.is_stale(now=10_000.0)
        assert t.direction == TrendDirection.UP


class TestMTFAlignment:
    def test_three_of_four(self) -> None:
        trends = [_t("1D", "up"), _t("4H", "up"), _t("1H", "up"), _t("15m", "down")]
        result = mtf_alignment(trends)
        assert result.aligned == 3
        assert result.total == 4
        assert result.direction == TrendDirection.UP
        assert result.percent == pytest.approx(75.0)

    def test_neutral_never_counts(self) -> None:
        trends = [_t("1D", "neutral"), _t("4H", "neutral"), _t("1H", "down")]
        result = mtf_alignment(trends)
        assert result.aligned == 1
        assert result.direction == TrendDirection.DOWN

    def test_all_neutral(self) -> None:
        result = mtf_alignment([_t("1D", "neutral"), _t("1H", "neutral")])
        assert result.aligned == 0
        assert result.direction is None

    def test_empty(self) -> None:
        result = mtf_alignment([])
        assert (result.aligned, result.total, result.direction) == (0, 0, None)
        assert result.percent == 0.0

    def test_tie_goes_to_higher_timeframe_direction(self) -> None:
        a = [_t("1D", "down"), _t("4H", "up"), _t("1H", "up"), _t("15m", "down")]
        b = list(reversed(a))
        assert mtf_alignment(a).direction == TrendDirection.DOWN
        assert mtf_alignment(b).direction == TrendDirection.DOWN
        assert mtf_alignment(a).aligned == 2

    def test_aligned_never_exceeds_total(self) -> None:
        trends = [_t(tf, "up") for tf in TIMEFRAME_ORDER]
        result = mtf_alignment(trends)
        assert result.aligned == result.total == len(TIMEFRAME_ORDER)


class TestAlignmentReading:
    def test_no_trends_is_no_data(self) -> None:
        assert not mtf_alignment_reading([]).is_present

    def test_reading_carries_count_and_direction(self) -> None:
        rd = mtf_alignment_reading([_t("1D", "down"), _t("1H", "down"), _t("5m", "up")])
        assert rd.raw_value == 2.0
        assert rd.direction == FactorDirection.BEARISH
