"""Tests for confluence_engine.factors: factor evaluation and status buckets."""
from __future__ import annotations

import math

import pytest

from confluence_engine.error_taxonomy import ConfigError
from confluence_engine.factors import (
    DEFAULT_FACTOR_DEFINITIONS,
    MISSING_DISPLAY,
    FactorDefinition,
    FactorDirection,
    FactorKind,
    FactorReading,
    FactorStatus,
    Polarity,
    ScoreBand,
    as_reading,
    evaluate_factor,
    factor_percent,
    format_display_value,
    normalize_weights,
    percent_complete,
    status_for,
)

_DEFS = {d.name: d for d in DEFAULT_FACTOR_DEFINITIONS}


# ═══════════════════════════════════════════════════════════════════════════
# percent_complete
# ═══════════════════════════════════════════════════════════════════════════


class TestPercentComplete:
    def test_higher_is_better_ratio(self) -> None:
        assert percent_complete(1.5, 2.0) == pytest.approx(75.0)

    def test_clamped_to_100(self) -> None:
        assert percent_complete(6.0, 2.0) == 100.0

    def test_clamped_to_0(self) -> None:
        assert percent_complete(-3.0, 2.0) == 0.0

    def test_lower_is_better_inverts(self) -> None:
        assert percent_complete(0.6, 0.3, Polarity.LOWER_IS_BETTER) == pytest.approx(50.0)

    def test_lower_is_better_at_or_below_zero_is_full(self) -> None:
        assert percent_complete(0.0, 0.3, Polarity.LOWER_IS_BETTER) == 100.0
        assert percent_complete(-1.0, 0.3, Polarity.LOWER_IS_BETTER) == 100.0

    @pytest.mark.parametrize("raw", [None, "abc", float("nan"), float("inf")])
    def test_unusable_raw_is_zero(self, raw) -> None:
        assert percent_complete(raw, 2.0) == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# status_for
# ═══════════════════════════════════════════════════════════════════════════


class TestStatusFor:
    @pytest.mark.parametrize(
        "pct, expected",
        [
            (100.0, FactorStatus.STRONG),
            (99.99, FactorStatus.GOOD),
            (80.0, FactorStatus.GOOD),
            (79.9, FactorStatus.BUILDING),
            (50.0, FactorStatus.BUILDING),
            (20.0, FactorStatus.WEAK),
            (19.9, FactorStatus.MISSING),
            (0.0, FactorStatus.MISSING),
        ],
    )
    def test_breakpoints(self, pct: float, expected: FactorStatus) -> None:
        assert status_for(pct) == expected

    def test_absent_is_missing_regardless_of_percent(self) -> None:
        assert status_for(100.0, present=False) == FactorStatus.MISSING

    def test_monotonic(self) -> None:
        order = [FactorStatus.MISSING, FactorStatus.WEAK, FactorStatus.BUILDING,
                 FactorStatus.GOOD, FactorStatus.STRONG]
        ranks = [order.index(status_for(p)) for p in range(0, 101)]
        assert ranks == sorted(ranks)


# ═══════════════════════════════════════════════════════════════════════════
# evaluate_factor
# ═══════════════════════════════════════════════════════════════════════════


class TestEvaluateFactor:
    def test_rvol_three_quarters(self) -> None:
        f = evaluate_factor(_DEFS["rvol"], 1.5)
        assert f.percent_complete == pytest.approx(75.0)
        assert f.status == FactorStatus.BUILDING
        assert f.display_value == "1.5x"
        assert f.direction is None

    def test_flow_three_quarters_bullish(self) -> None:
        f = evaluate_factor(_DEFS["flow"], 45)
        assert f.percent_complete == pytest.approx(75.0)
        assert f.direction == FactorDirection.BULLISH
        assert f.display_value == "+45"

    def test_flow_negative_scores_magnitude(self) -> None:
        f = evaluate_factor(_DEFS["flow"], -45)
        assert f.percent_complete == pytest.approx(75.0)
        assert f.direction == FactorDirection.BEARISH

    def test_flow_inside_band_is_neutral(self) -> None:
        f = evaluate_factor(_DEFS["flow"], 10)
        assert f.direction == FactorDirection.NEUTRAL

    def test_caller_direction_wins(self) -> None:
        f = evaluate_factor(_DEFS["flow"], FactorReading(45, FactorDirection.BEARISH))
        assert f.direction == FactorDirection.BEARISH

    def test_unsigned_factor_has_no_inferred_direction(self) -> None:
        assert evaluate_factor(_DEFS["ema"], 3).direction is None

    def test_missing_data(self) -> None:
        f = evaluate_factor(_DEFS["rvol"], None)
        assert f.display_value == MISSING_DISPLAY
        assert f.percent_complete == 0.0
        assert f.status == FactorStatus.MISSING
        assert f.is_missing
        assert f.direction is None

    def test_nan_is_missing(self) -> None:
        f = evaluate_factor(_DEFS["rvol"], float("nan"))
        assert f.status == FactorStatus.MISSING
        assert f.display_value == MISSING_DISPLAY

    def test_mtf_display_shows_fraction(self) -> None:
        assert evaluate_factor(_DEFS["mtf"], 3).display_value == "3/4"

    def test_vwap_display(self) -> None:
        f = evaluate_factor(_DEFS["vwap"], 0.12)
        assert f.display_value == "+0.12%"
        assert f.percent_complete == 100.0

    def test_contribution(self) -> None:
        f = evaluate_factor(_DEFS["rvol"], 2.0)
        assert f.contribution == pytest.approx(0.15 * 100.0)

    def test_to_dict_uses_plain_values(self) -> None:
        d = evaluate_factor(_DEFS["flow"], 60).to_dict()
        assert d["status"] == "strong"
        assert d["direction"] == "bullish"
        assert d["kind"] == "flow"


class TestFormatDisplayValue:
    def test_rvol(self) -> None:
        assert format_display_value(FactorKind.RVOL, 3.0) == "3.0x"

    def test_regime(self) -> None:
        assert format_display_value(FactorKind.REGIME, 1) == "TRENDING"
        assert format_display_value(FactorKind.REGIME, 0) == "RANGING"

    def test_none(self) -> None:
        assert format_display_value(FactorKind.CUSTOM, None) == "-"


# ═══════════════════════════════════════════════════════════════════════════
# Definitions
# ═══════════════════════════════════════════════════════════════════════════


class TestFactorDefinition:
    def test_non_positive_threshold_rejected(self) -> None:
        with pytest.raises(ConfigError):
            FactorDefinition(name="x", label="X", threshold=0)
        with pytest.raises(ConfigError):
            FactorDefinition(name="x", label="X", threshold=-1)

    def test_weight_out_of_range_rejected(self) -> None:
        with pytest.raises(ConfigError):
            FactorDefinition(name="x", label="X", weight=1.5)

    def test_empty_name_rejected(self) -> None:
        with pytest.raises(ConfigError):
            FactorDefinition(name=" ", label="X")

    def test_string_enums_accepted(self) -> None:
        d = FactorDefinition(name="x", label="X", kind="rvol", polarity="lower_is_better")
        assert d.kind == FactorKind.RVOL
        assert d.polarity == Polarity.LOWER_IS_BETTER

    def test_config_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            FactorDefinition(name="x", label="X", threshold=0)


class TestNormalizeWeights:
    def test_defaults_sum_at_most_one(self) -> None:
        assert sum(d.weight for d in DEFAULT_FACTOR_DEFINITIONS) <= 1.0 + 1e-9
        assert sum(d.weight for d in DEFAULT_FACTOR_DEFINITIONS) == pytest.approx(1.0)
        assert normalize_weights(DEFAULT_FACTOR_DEFINITIONS) == DEFAULT_FACTOR_DEFINITIONS

    def test_rescales_when_above_one(self) -> None:
        defs = (
            FactorDefinition(name="a", label="A", weight=0.8),
            FactorDefinition(name="b", label="B", weight=0.8),
        )
        out = normalize_weights(defs)
        assert [d.weight for d in out] == pytest.approx([0.5, 0.5])
        assert math.isclose(sum(d.weight for d in out), 1.0)


class TestReadings:
    def test_bare_number(self) -> None:
        assert as_reading(2).raw_value == 2.0

    def test_bool_is_not_a_reading(self) -> None:
        assert not as_reading(True).is_present

    def test_factor_percent_signed(self) -> None:
        assert factor_percent(_DEFS["flow"], -60) == 100.0


# ═══════════════════════════════════════════════════════════════════════════
# Band-scored factors
# ═══════════════════════════════════════════════════════════════════════════


class TestScoreBand:
    def test_flat_and_sloped(self) -> None:
        assert ScoreBand(20, 50).score(35) == 100.0
        assert ScoreBand(30, 45, target=38, slope=6).score(41) == pytest.approx(82.0)

    def test_score_clamped(self) -> None:
        assert ScoreBand(low=50, target=50, slope=2).score(120) == 0.0

    def test_inverted_band_rejected(self) -> None:
        with pytest.raises(ConfigError):
            ScoreBand(low=10, high=5)

    def test_negative_slope_rejected(self) -> None:
        with pytest.raises(ConfigError):
            ScoreBand(slope=-1)

    def test_band_polarity_requires_bands(self) -> None:
        with pytest.raises(ConfigError):
            FactorDefinition(name="x", label="X", polarity=Polarity.BAND)

    def test_outside_every_band_scores_zero(self) -> None:
        bands = (ScoreBand(0, 10),)
        assert percent_complete(11, 1.0, Polarity.BAND, bands) == 0.0


class TestRsiFactor:
    @pytest.mark.parametrize(
        "rsi, pct, direction",
        [
            (38, 100.0, FactorDirection.BULLISH),
            (45, 58.0, FactorDirection.BULLISH),
            (30, 52.0, FactorDirection.BULLISH),
            (62, 100.0, FactorDirection.BEARISH),
            (55, 58.0, FactorDirection.BEARISH),
            (22, 60.0, FactorDirection.BULLISH),
            (81, 60.0, FactorDirection.BEARISH),
            (50, 30.0, FactorDirection.NEUTRAL),
        ],
    )
    def test_zones(self, rsi, pct, direction) -> None:
        f = evaluate_factor(_DEFS["rsi"], rsi)
        assert f.percent_complete == pytest.approx(pct)
        assert f.direction == direction

    def test_display_and_status(self) -> None:
        f = evaluate_factor(_DEFS["rsi"], 38.4)
        assert f.display_value == "38"
        assert f.status == FactorStatus.GOOD

    def test_missing(self) -> None:
        f = evaluate_factor(_DEFS["rsi"], None)
        assert f.status == FactorStatus.MISSING
        assert f.direction is None


class TestIvFactor:
    @pytest.mark.parametrize(
        "iv, pct",
        [(20, 100.0), (35, 100.0), (50, 100.0), (10, 75.0), (0, 50.0), (60, 80.0), (100, 0.0)],
    )
    def test_optimal_range(self, iv, pct) -> None:
        assert factor_percent(_DEFS["iv"], iv) == pytest.approx(pct)

    def test_high_iv_is_not_strong(self) -> None:
        f = evaluate_factor(_DEFS["iv"], 100)
        assert f.status == FactorStatus.MISSING
        assert f.display_value == "100%"
        assert f.direction is None
