"""Multi-factor confluence scoring for watchlist symbols.

This package turns per-symbol factor readings and multi-timeframe trends
into a 0-100 readiness score, classifies symbols as hot/ready per trading
style, and publishes consistent watchlist snapshots with ready transitions
and score-drop alerts.
"""

from .config import ConfluenceConfig, StyleThresholds, TradingStyle
from .error_taxonomy import ConfigError, ConfluenceError, DataSourceError
from .factors import (
    DEFAULT_FACTOR_DEFINITIONS,
    Factor,
    FactorDefinition,
    FactorDirection,
    FactorKind,
    FactorReading,
    FactorStatus,
    Polarity,
    ScoreBand,
    evaluate_factor,
)
from .scheduler import RefreshScheduler
from .score_drop import ScoreDropDetector, ScoreDropMonitor, classify_drop
from .symbol import SymbolConfluence, SymbolInput, score_symbol
from .timeframes import TimeframeTrend, TrendDirection, mtf_alignment
from .transitions import ReadyTransition, ReadyTransitionTracker, TransitionKind
from .watchlist import (
    FilterMode,
    SortMode,
    WatchlistConfluenceAggregator,
    WatchlistSnapshot,
)

__all__: list[str] = [
	"ConfigError",
	"ConfluenceConfig",
	"ConfluenceError",
	"DEFAULT_FACTOR_DEFINITIONS",
	"DataSourceError",
	"Factor",
	"FactorDefinition",
	"FactorDirection",
	"FactorKind",
	"FactorReading",
	"FactorStatus",
	"FilterMode",
	"Polarity",
	"ReadyTransition",
	"ReadyTransitionTracker",
	"RefreshScheduler",
	"ScoreBand",
	"ScoreDropDetector",
	"ScoreDropMonitor",
	"SortMode",
	"StyleThresholds",
	"SymbolConfluence",
	"SymbolInput",
	"TimeframeTrend",
	"TradingStyle",
	"TransitionKind",
	"TrendDirection",
	"WatchlistConfluenceAggregator",
	"WatchlistSnapshot",
	"classify_drop",
	"evaluate_factor",
	"mtf_alignment",
	"score_symbol",
]
