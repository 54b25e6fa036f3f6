"""
Geometric derivation of chart coordinates from stop/target placement.

Coordinates are normalized Y values in [0, 100] with 0 at the top of the
chart. The range band is fixed; prices are never converted, so a tick
distance is drawn as `value * VISUAL_SCALE` units.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from canonicalizer import canonicalize_stop_loss, canonicalize_take_profit, is_stop_label, is_target_label
from pattern_extractor import detect_pattern
from rule_accumulator import find_rule, normalize_label
from strategy_models import (
    CanonicalStrategy,
    EntryParameters,
    Rule,
    StrategyParameters,
    TakeProfitConfig,
    VisualCoordinates,
)

RANGE_LOW = 55.0
RANGE_HIGH = 35.0
RANGE_SIZE = RANGE_LOW - RANGE_HIGH
VISUAL_SCALE = 0.5
OPPOSITE_SIDE_BUFFER = 2.0
STRUCTURE_BUFFER = 3.0
APPROX_ATR = RANGE_SIZE / 2
CHART_MIN = 2.0
CHART_MAX = 98.0


def clamp(value: float) -> float:
    return max(CHART_MIN, min(CHART_MAX, value))


def _entry_y(params: StrategyParameters) -> float:
    if params.entry.trigger == "breakout_above":
        return RANGE_HIGH
    if params.entry.trigger == "breakout_below":
        return RANGE_LOW
    return (RANGE_LOW + RANGE_HIGH) / 2


def _stop_y(params: StrategyParameters, entry: float) -> float:
    stop = params.stop_loss
    long = params.direction == "long"
    # +1 moves down the chart (against a long), -1 moves up
    against = 1 if long else -1

    if stop.type == "percentage":
        if long:
            return RANGE_HIGH + RANGE_SIZE * stop.value
        return RANGE_LOW - RANGE_SIZE * stop.value
    if stop.type == "opposite_side":
        if stop.relative_to == "range_low":
            return RANGE_LOW + OPPOSITE_SIDE_BUFFER
        return RANGE_HIGH - OPPOSITE_SIDE_BUFFER
    if stop.type == "fixed_distance":
        return entry + against * stop.value * VISUAL_SCALE
    if stop.type == "atr_multiple":
        return entry + against * stop.value * APPROX_ATR
    # structure and anything unrecognized: just beyond the far boundary
    return RANGE_LOW + STRUCTURE_BUFFER if long else RANGE_HIGH - STRUCTURE_BUFFER


def _target_y(params: StrategyParameters, entry: float, risk_distance: float) -> float:
    target = params.profit_target
    # targets move up the chart for longs
    toward = -1 if params.direction == "long" else 1

    if target.type == "r_multiple":
        return entry + toward * risk_distance * target.value
    if target.type == "extension":
        return entry + toward * RANGE_SIZE * target.value
    if target.type == "fixed_distance":
        return entry + toward * target.value * VISUAL_SCALE
    return entry + toward * risk_distance * 2


def derive_coordinates(params: StrategyParameters) -> VisualCoordinates:
    """Entry, stop and target Y values for `params`, each clamped to [2, 98]."""
    entry = _entry_y(params)
    stop = _stop_y(params, entry)
    target = _target_y(params, entry, abs(stop - entry))

    entry, stop, target = clamp(entry), clamp(stop), clamp(target)
    risk_distance = abs(stop - entry)
    reward_distance = abs(target - entry)
    ratio = f"{reward_distance / risk_distance:.1f}" if risk_distance > 0 else "0"

    return VisualCoordinates(
        entry=entry,
        stop=stop,
        target=target,
        range_low=RANGE_LOW,
        range_high=RANGE_HIGH,
        entry_label=f"Entry: {entry:.1f}",
        stop_label=f"Stop: {stop:.1f}",
        target_label=f"Target: {target:.1f} ({ratio}R)",
        risk_distance=risk_distance,
        reward_distance=reward_distance,
        risk_reward_ratio=f"1:{ratio}",
    )


# ─── Parameter sources ─────────────────────────────────────────────

_STRATEGY_TYPES = {
    "opening_range_breakout": "orb",
    "ema_pullback": "pullback",
    "breakout": "breakout",
}


def _entry_from_text(text: str, short: bool) -> EntryParameters:
    text = text.lower()
    if re.search(r"break(?:\s?out)?\s+above", text):
        trigger = "breakout_above"
    elif re.search(r"break(?:\s?out)?\s+below", text):
        trigger = "breakout_below"
    elif re.search(r"pull\s?back", text):
        trigger = "pullback_to"
    elif "bounce" in text:
        trigger = "bounce_off"
    else:
        trigger = "breakout_below" if short else "breakout_above"

    level = None
    if "high" in text or "top" in text:
        level = "range_high"
    elif "low" in text or "bottom" in text:
        level = "range_low"
    elif "ema" in text:
        level = "ema"
    elif "vwap" in text:
        level = "vwap"

    return EntryParameters(
        trigger=trigger,
        level=level,
        confirmation_required="confirm" in text or "close above" in text,
    )


def parameters_from_rules(rules: Iterable[Rule]) -> Optional[StrategyParameters]:
    """
    Build drawing parameters straight from accumulated rules. Returns None
    when no stop is stated, since nothing meaningful can be drawn.
    """
    rules = list(rules)
    stop_rule = next((r for r in reversed(rules) if is_stop_label(r.label)), None)
    if not stop_rule:
        return None
    target_rule = next((r for r in reversed(rules) if is_target_label(r.label)), None)
    target = (
        canonicalize_take_profit(target_rule.value)
        if target_rule
        else TakeProfitConfig(type="r_multiple", value=2, unit="r", relative_to="stop_distance")
    )

    entry_rules: List[Rule] = [
        r for r in rules if r.category == "entry" or "entry" in normalize_label(r.label) or "trigger" in normalize_label(r.label)
    ]
    entry_text = " ".join(r.value for r in entry_rules if normalize_label(r.label) != "direction")
    direction_rule = find_rule(rules, "direction")
    short = "short" in (direction_rule.value if direction_rule else "").lower()
    entry = _entry_from_text(entry_text, short)
    direction = "short" if short or entry.trigger == "breakout_below" else "long"

    pattern, _confidence = detect_pattern(" ".join(r.value for r in rules))
    range_period = None
    range_rule = find_rule(rules, "range period", "range")
    if range_rule:
        minutes = re.search(r"(\d+)\s*min", range_rule.value, re.IGNORECASE)
        range_period = int(minutes.group(1)) if minutes else 15

    return StrategyParameters(
        strategy_type=_STRATEGY_TYPES.get(pattern or "", "breakout"),
        entry=entry,
        stop_loss=canonicalize_stop_loss(stop_rule.value),
        profit_target=target,
        direction=direction,
        range_period=range_period if pattern == "opening_range_breakout" else None,
    )


def parameters_from_canonical(strategy: CanonicalStrategy) -> Optional[StrategyParameters]:
    """Drawing parameters from a validated canonical strategy; 'both' is drawn long."""
    if strategy.exit.stop_loss is None:
        return None

    direction = "short" if strategy.direction == "short" else "long"
    if strategy.pattern == "opening_range_breakout":
        trigger = "breakout_below" if direction == "short" else "breakout_above"
        level = "range_low" if direction == "short" else "range_high"
        period = strategy.entry.get("opening_range", {}).get("period_minutes")
        entry = EntryParameters(trigger=trigger, level=level)
    elif strategy.pattern == "ema_pullback":
        confirmation = strategy.entry.get("ema_pullback", {}).get("pullback_confirmation")
        entry = EntryParameters(
            trigger="bounce_off" if confirmation == "bounce" else "pullback_to",
            level="ema",
            confirmation_required=confirmation == "close_above",
        )
        period = None
    else:
        confirmation = strategy.entry.get("breakout", {}).get("confirmation")
        entry = EntryParameters(
            trigger="breakout_below" if direction == "short" else "breakout_above",
            level="structure",
            confirmation_required=confirmation in {"close", "volume"},
        )
        period = None

    return StrategyParameters(
        strategy_type=_STRATEGY_TYPES[strategy.pattern],
        entry=entry,
        stop_loss=strategy.exit.stop_loss,
        profit_target=strategy.exit.take_profit,
        direction=direction,
        range_period=period,
    )
