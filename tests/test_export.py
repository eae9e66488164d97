"""Tests for confluence_engine.export: tabular snapshot views."""
from __future__ import annotations

import pandas as pd
import pytest

from confluence_engine.config import ConfluenceConfig
from confluence_engine.export import (
    FACTOR_COLUMNS,
    SNAPSHOT_COLUMNS,
    factors_to_frame,
    snapshot_to_frame,
    snapshot_to_records,
)
from confluence_engine.symbol import SymbolInput, score_symbol
from confluence_engine.timeframes import TimeframeTrend
from confluence_engine.watchlist import WatchlistConfluenceAggregator, build_snapshot

NOW = 1_700_000_000.0


@pytest.fixture
def snapshot():
    agg = WatchlistConfluenceAggregator(ConfluenceConfig())
    return agg.refresh(
        [
            SymbolInput("AAPL", price=190.0, change_percent=1.2,
                        readings={"rvol": 2.0, "flow": 60, "rsi": 38, "vwap": 0.0, "levels": 0.0, "iv": 35,
                                  "mtf": 4, "ema": 3, "regime": 1}),
            SymbolInput("MSFT", price=410.0, change_percent=-0.4,
                        trends=(TimeframeTrend("1D", "up"), TimeframeTrend("1H", "down"))),
        ],
        now=NOW,
    )


class TestSnapshotRecords:
    def test_records_in_display_order(self, snapshot) -> None:
        records = snapshot_to_records(snapshot)
        assert [r["symbol"] for r in records] == ["AAPL", "MSFT"]
        assert records[0]["is_ready"] is True
        assert records[0]["best_style"] == "scalp"
        assert records[1]["mtf"] == "1/2"

    def test_navigation_fields_always_present(self, snapshot) -> None:
        for rec in snapshot_to_records(snapshot):
            assert {"symbol", "price", "change_percent"} <= set(rec)


class TestFrames:
    def test_snapshot_frame(self, snapshot) -> None:
        df = snapshot_to_frame(snapshot)
        assert isinstance(df, pd.DataFrame)
        assert list(df.columns) == list(SNAPSHOT_COLUMNS)
        assert df["symbol"].tolist() == ["AAPL", "MSFT"]
        assert df.loc[0, "price"] == pytest.approx(190.0)

    def test_empty_snapshot_keeps_columns(self) -> None:
        df = snapshot_to_frame(build_snapshot([], now=NOW))
        assert df.empty
        assert list(df.columns) == list(SNAPSHOT_COLUMNS)

    def test_factors_frame(self) -> None:
        res = score_symbol(SymbolInput("AAPL", readings={"rvol": 1.5}), ConfluenceConfig(), now=NOW)
        df = factors_to_frame(res)
        assert list(df.columns) == list(FACTOR_COLUMNS)
        assert len(df) == len(ConfluenceConfig().factor_definitions)
        rvol = df[df["name"] == "rvol"].iloc[0]
        assert rvol["value"] == "1.5x"
        assert rvol["percent_complete"] == pytest.approx(75.0)
        assert rvol["status"] == "building"

    def test_summary_tier_has_empty_factor_frame(self) -> None:
        res = score_symbol(SymbolInput("AAPL"), ConfluenceConfig(), detail=False, now=NOW)
        df = factors_to_frame(res)
        assert df.empty
        assert list(df.columns) == list(FACTOR_COLUMNS)
