"""Tabular views of snapshots for list and detail displays."""
from __future__ import annotations

from typing import Any

import pandas as pd

from .symbol import SymbolConfluence
from .watchlist import WatchlistSnapshot

# Row columns of the watchlist table, in display order.
SNAPSHOT_COLUMNS: tuple[str, ...] = (
    "symbol",
    "price",
    "change_percent",
    "overall_score",
    "threshold",
    "best_style",
    "is_hot",
    "is_ready",
    "mtf",
    "mtf_direction",
    "mtf_has_stale",
    "last_updated",
)

FACTOR_COLUMNS: tuple[str, ...] = (
    "name",
    "label",
    "value",
    "threshold",
    "percent_complete",
    "status",
    "direction",
    "weight",
    "contribution",
)


def symbol_record(item: SymbolConfluence) -> dict[str, Any]:
    """One flat row per symbol; ``symbol``/``price``/``change_percent`` always set."""
    return {
        "symbol": item.symbol,
        "price": item.price,
        "change_percent": item.change_percent,
        "overall_score": round(item.overall_score, 2),
        "threshold": item.threshold,
        "best_style": item.best_style.value,
        "is_hot": item.is_hot,
        "is_ready": item.is_ready,
        "mtf": f"{item.mtf_aligned}/{item.mtf_total}",
        "mtf_direction": item.mtf_direction.value if item.mtf_direction else None,
        "mtf_has_stale": item.mtf_has_stale,
        "last_updated": item.last_updated,
    }


def snapshot_to_records(snapshot: WatchlistSnapshot) -> list[dict[str, Any]]:
    """Visible rows in display order."""
    return [symbol_record(s) for s in snapshot.symbols]


def snapshot_to_frame(snapshot: WatchlistSnapshot) -> pd.DataFrame:
    """Visible rows as a DataFrame; empty snapshots keep the column layout."""
    return pd.DataFrame(snapshot_to_records(snapshot), columns=list(SNAPSHOT_COLUMNS))


def factors_to_frame(confluence: SymbolConfluence) -> pd.DataFrame:
    """Factor breakdown of a detailed confluence view.

    Summary-tier results carry no factors and yield an empty frame.
    """
    rows = [
        {
            "name": f.name,
            "label": f.label,
            "value": f.display_value,
            "threshold": f.threshold_label or f.threshold,
            "percent_complete": round(f.percent_complete, 1),
            "status": f.status.value,
            "direction": f.direction.value if f.direction else None,
            "weight": f.weight,
            "contribution": f.contribution,
        }
        for f in confluence.factors
    ]
    return pd.DataFrame(rows, columns=list(FACTOR_COLUMNS))
