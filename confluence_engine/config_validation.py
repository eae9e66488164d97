"""Config schema validation for the confluence engine.

Prevents silent misconfiguration: a negative threshold or an inverted
style ladder would otherwise surface only as quietly wrong scores.

Provides:
  validate_config()        sanity-checks a ``ConfluenceConfig``
  compute_config_diff()    detect changes between two config snapshots
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .error_taxonomy import ConfigError

if TYPE_CHECKING:
    from .config import ConfluenceConfig

logger = logging.getLogger(__name__)

# Refresh cadence must stay bounded: sub-second to about a minute.
REFRESH_INTERVAL_RANGE: tuple[float, float] = (0.1, 60.0)

# Style multipliers outside this range almost certainly are typos.
_MULTIPLIER_BOUNDS: tuple[float, float] = (0.0, 5.0)


def _is_number(val: Any) -> bool:
    return isinstance(val, (int, float)) and not isinstance(val, bool)


def validate_config(
    config: "ConfluenceConfig",
    *,
    strict: bool = False,
) -> list[str]:
    """Validate a scoring configuration.

    Parameters
    ----------
    config : ConfluenceConfig
        Configuration to check.
    strict : bool
        If True, raise ConfigError on any issue; otherwise just return them.

    Returns
    -------
    list[str]
        List of issue messages (empty = all ok).
    """
    from .config import STYLE_ORDER, TradingStyle

    issues: list[str] = []

    # --- Hot classification ---
    if not _is_number(config.hot_threshold) or not 0 < config.hot_threshold <= 100:
        issues.append(f"hot_threshold must be within (0, 100], got {config.hot_threshold!r}")
    if not isinstance(config.hot_mtf_aligned, int) or config.hot_mtf_aligned < 1:
        issues.append(f"hot_mtf_aligned must be a positive int, got {config.hot_mtf_aligned!r}")

    # --- Style thresholds ---
    table = config.style_thresholds.as_dict()
    for style in STYLE_ORDER:
        val = table[style]
        if not _is_number(val) or not 0 < val <= 100:
            issues.append(f"{style.value} threshold must be within (0, 100], got {val!r}")
    numeric = [table[s] for s in STYLE_ORDER if _is_number(table[s])]
    if len(numeric) == len(STYLE_ORDER) and not numeric[0] <= numeric[1] <= numeric[2]:
        issues.append(
            "Style thresholds must be ascending scalp <= day <= swing, got "
            + ", ".join(f"{s.value}={table[s]}" for s in STYLE_ORDER)
        )

    # --- Index offset ---
    if not _is_number(config.index_threshold_offset) or config.index_threshold_offset < 0:
        issues.append(
            f"index_threshold_offset must be >= 0, got {config.index_threshold_offset!r}"
        )

    # --- Style multipliers ---
    lo, hi = _MULTIPLIER_BOUNDS
    for style, per_factor in config.style_multipliers.items():
        if not isinstance(style, TradingStyle):
            issues.append(f"Unknown style in style_multipliers: {style!r}")
            continue
        for name, mult in per_factor.items():
            if not _is_number(mult) or not lo <= mult <= hi:
                issues.append(
                    f"Multiplier {style.value}.{name} = {mult!r} outside expected range [{lo}, {hi}]"
                )

    # --- Factor definitions ---
    seen: set[str] = set()
    for d in config.factor_definitions:
        if d.name in seen:
            issues.append(f"Duplicate factor name: {d.name!r}")
        seen.add(d.name)

    # --- Timing ---
    if not _is_number(config.mtf_stale_after_s) or config.mtf_stale_after_s <= 0:
        issues.append(f"mtf_stale_after_s must be > 0, got {config.mtf_stale_after_s!r}")
    r_lo, r_hi = REFRESH_INTERVAL_RANGE
    if not _is_number(config.refresh_interval_s) or not r_lo <= config.refresh_interval_s <= r_hi:
        issues.append(
            f"refresh_interval_s = {config.refresh_interval_s!r} outside allowed range [{r_lo}, {r_hi}]"
        )

    # --- Score-drop alerting ---
    if not _is_number(config.drop_alert_threshold) or not 0 <= config.drop_alert_threshold <= 100:
        issues.append(
            f"drop_alert_threshold must be within [0, 100], got {config.drop_alert_threshold!r}"
        )

    # --- Log and optionally raise ---
    for msg in issues:
        logger.warning("Config validation: %s", msg)

    if strict and issues:
        raise ConfigError(
            f"Config validation failed with {len(issues)} issue(s):\n"
            + "\n".join(f"  • {m}" for m in issues),
            issues=issues,
        )

    return issues


def validate_refresh_interval(interval_s: Any) -> float:
    """Return *interval_s* as float or raise ConfigError when out of range."""
    r_lo, r_hi = REFRESH_INTERVAL_RANGE
    if not _is_number(interval_s) or not r_lo <= interval_s <= r_hi:
        raise ConfigError(
            f"refresh interval {interval_s!r}s outside allowed range [{r_lo}, {r_hi}]"
        )
    return float(interval_s)


# ---------------------------------------------------------------------------
# Config diff
# ---------------------------------------------------------------------------

def compute_config_diff(
    old: "ConfluenceConfig | dict[str, Any]",
    new: "ConfluenceConfig | dict[str, Any]",
) -> dict[str, dict[str, Any]]:
    """Return a dict of changed keys: {key: {"old": ..., "new": ...}}.

    Only includes keys whose values differ.  Accepts configs or their
    ``to_dict()`` output.
    """
    old_d = old if isinstance(old, dict) else old.to_dict()
    new_d = new if isinstance(new, dict) else new.to_dict()
    diff: dict[str, dict[str, Any]] = {}
    for key in sorted(set(old_d) | set(new_d)):
        old_val = old_d.get(key)
        new_val = new_d.get(key)
        if old_val != new_val:
            diff[key] = {"old": old_val, "new": new_val}
    return diff
