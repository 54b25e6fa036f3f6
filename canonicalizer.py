"""
Canonicalization of accumulated rules into a typed, bounded strategy.

Stop-loss and profit-target text is read through ordered tables: rows are
tried top to bottom and the first hit wins, so "50% below the swing low"
resolves to the 50% row because it is listed first. When nothing matches,
a conservative placement is used and flagged `matched=False`; text that
defers the decision ("mental", "depends") is also flagged `committed=False`
and fails validation.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from canonical_schema import (
    BREAKOUT_LOOKBACK_BOUNDS,
    EMA_PERIOD_BOUNDS,
    ORB_PERIOD_BOUNDS,
    lookup_instrument,
    validate_canonical_strategy,
)
from pattern_extractor import detect_direction, detect_instrument, detect_pattern
from rule_accumulator import find_rule, normalize_label
from rule_table import TableRule, first_match
from strategy_models import (
    PATTERN_DISPLAY_NAMES,
    SUPPORTED_PATTERNS,
    CanonicalizationResult,
    CanonicalStrategy,
    Rule,
    StopLossConfig,
    TakeProfitConfig,
    TypedField,
)

logger = logging.getLogger(__name__)

_NUM = r"(?P<n>\d+(?:\.\d+)?)"


def _number(match: "re.Match[str]", default: float = 0.0) -> float:
    raw = match.groupdict().get("n")
    return float(raw) if raw else default


def _points_unit(match: "re.Match[str]") -> str:
    return "points" if match.group("unit").lower().startswith("p") else "ticks"


# ─── Stop loss ─────────────────────────────────────────────────────

# Phrasings that defer the decision; no placement can be read from them.
NON_COMMITTAL_STOP = re.compile(
    r"\b(?:mental|depends|figure\s+it\s+out|decide\s+later|i'?ll\s+decide|not\s+sure|no\s+stop|discretionary)\b",
    re.IGNORECASE,
)

STOP_LOSS_TABLE: Tuple[TableRule, ...] = (
    TableRule(
        "range_midpoint",
        r"\bmiddle\b|(?<![\d.])50\s*(?:%|percent)|\bhalf\b|\bmid\s?point\b",
        lambda m: StopLossConfig(type="percentage", value=0.5, unit="percentage", relative_to="range_low"),
    ),
    TableRule(
        "range_low",
        r"\bbottom\b|\brange\s+low\b|\blow\s+of\s+(?:the\s+)?(?:opening\s+)?range\b|\bopposite\b",
        lambda m: StopLossConfig(type="opposite_side", value=0, unit="ticks", relative_to="range_low"),
    ),
    TableRule(
        "range_high",
        r"\btop\b|\brange\s+high\b|\bhigh\s+of\s+(?:the\s+)?(?:opening\s+)?range\b",
        lambda m: StopLossConfig(type="opposite_side", value=0, unit="ticks", relative_to="range_high"),
    ),
    TableRule(
        "range_percent",
        _NUM + r"\s*(?:%|percent)\s*(?:of\s+(?:the\s+)?)?(?:opening\s+)?range\b",
        lambda m: StopLossConfig(type="percentage", value=_number(m) / 100, unit="percentage", relative_to="range_low"),
    ),
    TableRule(
        "fixed_ticks",
        _NUM + r"\s*ticks?\b(?:\s+(?:below|above|from|under|over))?",
        lambda m: StopLossConfig(type="fixed_distance", value=_number(m), unit="ticks"),
    ),
    TableRule(
        "fixed_points",
        _NUM + r"\s*(?:points?|pts?)\b",
        lambda m: StopLossConfig(type="fixed_distance", value=_number(m), unit="points"),
    ),
    TableRule(
        "atr_multiple",
        _NUM + r"\s*x?\s*(?:times\s+)?(?:the\s+)?atr\b",
        lambda m: StopLossConfig(type="atr_multiple", value=_number(m), unit="atr"),
    ),
    # "N ticks below the swing low" is already claimed by fixed_ticks
    TableRule(
        "structure",
        r"\b(?:swing|structure|support|resistance|pivot)\b",
        lambda m: StopLossConfig(type="structure", value=0, unit="ticks", relative_to="swing_point"),
    ),
    TableRule(
        "fixed_dollars",
        r"\$\s*" + _NUM,
        lambda m: StopLossConfig(type="fixed_distance", value=_number(m), unit="dollars"),
    ),
)


def _stop_fallback(committed: bool = True) -> StopLossConfig:
    return StopLossConfig(
        type="structure", value=0, unit="ticks", relative_to="swing_point", matched=False, committed=committed
    )


def canonicalize_stop_loss(text: str) -> StopLossConfig:
    """Map free stop-loss text to a typed placement; unmatched text falls back to structure/0."""
    if NON_COMMITTAL_STOP.search(text):
        logger.warning("Stop loss %r does not state a placement; using structure fallback", text)
        return _stop_fallback(committed=False)

    hit = first_match(STOP_LOSS_TABLE, text)
    if hit:
        row, config = hit
        logger.debug("Stop loss %r matched %s", text, row.name)
        return config

    logger.warning("Stop loss %r matched no placement; using structure fallback", text)
    return _stop_fallback()


# ─── Profit target ─────────────────────────────────────────────────

TAKE_PROFIT_TABLE: Tuple[TableRule, ...] = (
    TableRule(
        "risk_reward_ratio",
        r"\b1\s*:\s*" + _NUM + r"(?!\s*(?:am|pm)\b)(?!\d)",
        lambda m: TakeProfitConfig(type="r_multiple", value=_number(m), unit="r", relative_to="stop_distance"),
    ),
    TableRule(
        "r_multiple",
        r"(?<![\w.])" + _NUM + r"\s*R\b(?!:)",
        lambda m: TakeProfitConfig(type="r_multiple", value=_number(m), unit="r", relative_to="stop_distance"),
    ),
    TableRule(
        "range_multiple",
        _NUM + r"\s*x\s*(?:the\s+)?(?:opening\s+)?range\b",
        lambda m: TakeProfitConfig(type="extension", value=_number(m), relative_to="range_size"),
    ),
    TableRule(
        "range_doubled",
        r"\b(?:twice|double)\s+(?:the\s+)?(?:opening\s+)?range\b",
        lambda m: TakeProfitConfig(type="extension", value=2, relative_to="range_size"),
    ),
    TableRule(
        "percent_extension",
        _NUM + r"\s*%\s*extension\b",
        lambda m: TakeProfitConfig(type="extension", value=_number(m) / 100, relative_to="range_size"),
    ),
    TableRule(
        "fixed_distance",
        _NUM + r"\s*(?P<unit>ticks?|points?|pts?)\b",
        lambda m: TakeProfitConfig(type="fixed_distance", value=_number(m), unit=_points_unit(m)),
    ),
    TableRule(
        "fixed_dollars",
        r"\$\s*" + _NUM,
        lambda m: TakeProfitConfig(type="fixed_distance", value=_number(m), unit="dollars"),
    ),
)


def canonicalize_take_profit(text: str) -> TakeProfitConfig:
    """Map free profit-target text to a typed method; unmatched text falls back to 2R."""
    hit = first_match(TAKE_PROFIT_TABLE, text)
    if hit:
        row, config = hit
        logger.debug("Profit target %r matched %s", text, row.name)
        return config

    logger.warning("Profit target %r matched no method; using 2R", text)
    return TakeProfitConfig(type="r_multiple", value=2, unit="r", relative_to="stop_distance", matched=False)


def is_stop_label(label: str) -> bool:
    normalized = normalize_label(label)
    return ("stop" in normalized and "time" not in normalized) or bool(re.search(r"\bsl\b", normalized))


def is_target_label(label: str) -> bool:
    normalized = normalize_label(label)
    return "target" in normalized or "profit" in normalized or bool(re.search(r"\btp\b", normalized))


def canonicalize(rule: Rule) -> Optional[TypedField]:
    """Typed stop or target for `rule`, or None when the rule is neither."""
    if is_stop_label(rule.label):
        return TypedField(field="stop_loss", source_text=rule.value, config=canonicalize_stop_loss(rule.value))
    if is_target_label(rule.label):
        return TypedField(field="take_profit", source_text=rule.value, config=canonicalize_take_profit(rule.value))
    return None


# ─── Strategy-level normalizers ────────────────────────────────────

_PATTERN_BY_NAME = {name.lower(): key for key, name in PATTERN_DISPLAY_NAMES.items()}

_TIMEZONES = {
    "ET": "America/New_York",
    "EST": "America/New_York",
    "EDT": "America/New_York",
    "CT": "America/Chicago",
    "CST": "America/Chicago",
    "PT": "America/Los_Angeles",
    "PST": "America/Los_Angeles",
    "UTC": "UTC",
}

_CLOCK = r"(\d{1,2})(?::(\d{2}))?\s*(am|pm)?"
_TIME_RANGE = re.compile(_CLOCK + r"\s*(?:-|to|until)\s*" + _CLOCK, re.IGNORECASE)
_TZ_SUFFIX = re.compile(r"\b(ET|EST|EDT|CT|CST|PT|PST|UTC)\b")


def _clamp(value: int, bounds: Tuple[int, int], name: str, warnings: List[str]) -> int:
    low, high = bounds
    clamped = max(low, min(high, value))
    if clamped != value:
        warnings.append(f"{name} {value} clamped to {clamped}")
        logger.warning("%s %s out of bounds; clamped to %s", name, value, clamped)
    return clamped


def normalize_pattern(rules: List[Rule], pattern: Optional[str] = None) -> Optional[str]:
    if pattern in SUPPORTED_PATTERNS:
        return pattern
    pattern_rule = find_rule(rules, "pattern", "strategy type")
    candidates = [pattern_rule.value] if pattern_rule else []
    trigger = find_rule(rules, "entry", "trigger")
    if trigger:
        candidates.append(trigger.value)
    for text in candidates:
        key = text.strip().lower().replace(" ", "_")
        if key in SUPPORTED_PATTERNS:
            return key
        if text.strip().lower() in _PATTERN_BY_NAME:
            return _PATTERN_BY_NAME[text.strip().lower()]
        detected, _confidence = detect_pattern(text)
        if detected:
            return detected
    return None


def normalize_instrument(rules: List[Rule]) -> Optional[Dict[str, Any]]:
    rule = find_rule(rules, "instrument", "symbol")
    if not rule:
        return None
    spec = lookup_instrument(rule.value) or lookup_instrument(detect_instrument(rule.value))
    if spec:
        return spec
    # Unknown contract; passed through so validation names it.
    return {"symbol": rule.value.strip().upper()}


def normalize_direction(rules: List[Rule]) -> str:
    rule = find_rule(rules, "direction")
    if not rule:
        return "both"
    value = rule.value.strip().lower()
    if value in {"long", "short", "both"}:
        return value
    return detect_direction(rule.value) or "both"


def _texts(rules: List[Rule], *fragments: str) -> str:
    return " ".join(r.value for r in rules if any(f in normalize_label(r.label) for f in fragments))


def normalize_entry(pattern: Optional[str], direction: str, rules: List[Rule], warnings: List[str]) -> Dict[str, Any]:
    text = _texts(rules, "pattern", "entry", "trigger", "range period", "setup")

    if pattern == "opening_range_breakout":
        found = re.search(r"(\d+)\s*-?\s*min", text, re.IGNORECASE)
        period = _clamp(int(found.group(1)), ORB_PERIOD_BOUNDS, "Opening range period", warnings) if found else 15
        entry_on = {"long": "break_high", "short": "break_low"}.get(direction, "both")
        return {"opening_range": {"period_minutes": period, "entry_on": entry_on}}

    if pattern == "ema_pullback":
        found = re.search(r"(\d+)\s*-?\s*(?:period\s+)?ema", text, re.IGNORECASE)
        period = _clamp(int(found.group(1)), EMA_PERIOD_BOUNDS, "EMA period", warnings) if found else 20
        lowered = text.lower()
        if re.search(r"close\s+(?:above|below|back)", lowered):
            confirmation = "close_above"
        elif "bounce" in lowered or "rejection" in lowered:
            confirmation = "bounce"
        else:
            confirmation = "touch"
        return {"ema_pullback": {"ema_period": period, "pullback_confirmation": confirmation}}

    if pattern == "breakout":
        found = re.search(r"(\d+)\s*-?\s*(?:bars?|candles?|periods?|days?)", text, re.IGNORECASE)
        lookback = _clamp(int(found.group(1)), BREAKOUT_LOOKBACK_BOUNDS, "Breakout lookback", warnings) if found else 20
        lowered = text.lower()
        if "resistance" in lowered and "support" not in lowered:
            level_type = "resistance"
        elif "support" in lowered and "resistance" not in lowered:
            level_type = "support"
        else:
            level_type = {"long": "resistance", "short": "support"}.get(direction, "both")
        confirmation = "volume" if "volume" in lowered else "close"
        return {"breakout": {"lookback_period": lookback, "level_type": level_type, "confirmation": confirmation}}

    return {}


def normalize_risk(rules: List[Rule]) -> Dict[str, Any]:
    rule = find_rule(rules, "position", "sizing", "size", "risk")
    text = rule.value if rule else ""
    percent = re.search(r"(\d+(?:\.\d+)?)\s*%", text)
    if percent:
        return {"position_sizing": "risk_percent", "risk_percent": float(percent.group(1)), "max_contracts": 10}
    contracts = re.search(r"(\d+)\s*(?:contracts?|lots?)", text, re.IGNORECASE)
    if contracts:
        return {"position_sizing": "fixed_contracts", "risk_percent": None, "max_contracts": int(contracts.group(1))}
    return {"position_sizing": "risk_percent", "risk_percent": 1.0, "max_contracts": 10}


def _to_24h(hour: str, minute: Optional[str], meridiem: Optional[str]) -> str:
    h = int(hour)
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "pm" and h < 12:
            h += 12
        if meridiem == "am" and h == 12:
            h = 0
    return f"{h:02d}:{int(minute or 0):02d}"


def parse_time_range(text: str) -> Optional[Tuple[str, str]]:
    """'9:30 AM - 4:00 PM ET' -> ('09:30', '16:00')"""
    match = _TIME_RANGE.search(text)
    if not match:
        return None
    h1, m1, mer1, h2, m2, mer2 = match.groups()
    if not mer1 and mer2:
        # "9:30-4:00 PM": the start is in the morning when its hour is past the end's
        mer1 = "am" if mer2.lower() == "pm" and int(h1) > int(h2) else mer2
    return _to_24h(h1, m1, mer1), _to_24h(h2, m2, mer2)


def normalize_session(rules: List[Rule]) -> Dict[str, Any]:
    rule = find_rule(rules, "session", "hours", "time window")
    config: Dict[str, Any] = {"session": "ny", "timezone": "America/New_York", "custom_start": None, "custom_end": None}
    if not rule:
        return config

    text = rule.value
    tz = _TZ_SUFFIX.search(text)
    if tz:
        config["timezone"] = _TIMEZONES[tz.group(1)]

    window = parse_time_range(text)
    if window:
        if window == ("09:30", "16:00"):
            config["session"] = "ny"
        else:
            config.update(session="custom", custom_start=window[0], custom_end=window[1])
        return config

    lowered = text.lower()
    if re.search(r"\bfirst\s+hour\b", lowered):
        config.update(session="custom", custom_start="09:30", custom_end="10:30")
    elif re.search(r"\blast\s+hour\b", lowered):
        config.update(session="custom", custom_start="15:00", custom_end="16:00")
    elif "london" in lowered:
        config.update(session="london", timezone="Europe/London")
    elif "asia" in lowered or "tokyo" in lowered:
        config.update(session="asia", timezone="Asia/Tokyo")
    elif re.search(r"\b(?:all|24\s*h|24\s*hours?|globex|overnight)\b", lowered):
        config["session"] = "all"
    return config


def build_canonical_strategy(rules: List[Rule], pattern: Optional[str] = None) -> CanonicalizationResult:
    """
    Normalize the full rule set into a CanonicalStrategy and validate it.

    Never raises on bad input: validation failures come back as itemized
    `errors` with `success=False`.
    """
    rules = list(rules)
    warnings: List[str] = []

    resolved_pattern = normalize_pattern(rules, pattern)
    direction = normalize_direction(rules)

    stop_rule = next((r for r in reversed(rules) if is_stop_label(r.label)), None)
    stop_config = canonicalize_stop_loss(stop_rule.value) if stop_rule else None
    if stop_config is not None and not stop_config.matched:
        warnings.append(f"Stop loss {stop_rule.value!r} not recognized; using structure below the swing point")

    target_rule = next((r for r in reversed(rules) if is_target_label(r.label)), None)
    if target_rule:
        target_config = canonicalize_take_profit(target_rule.value)
        if not target_config.matched:
            warnings.append(f"Profit target {target_rule.value!r} not recognized; using 2R")
    else:
        target_config = TakeProfitConfig(type="r_multiple", value=2, unit="r", relative_to="stop_distance")
        warnings.append("No profit target stated; using 2R")

    payload: Dict[str, Any] = {
        "pattern": resolved_pattern,
        "direction": direction,
        "instrument": normalize_instrument(rules),
        "entry": normalize_entry(resolved_pattern, direction, rules, warnings),
        "exit": {
            "stop_loss": stop_config.model_dump() if stop_config else None,
            "take_profit": target_config.model_dump(),
        },
        "risk": normalize_risk(rules),
        "time": normalize_session(rules),
    }

    valid, errors = validate_canonical_strategy(payload)
    if not valid:
        logger.info("Canonical strategy rejected with %d error(s)", len(errors))
        return CanonicalizationResult(success=False, errors=errors, warnings=warnings)

    return CanonicalizationResult(success=True, canonical=CanonicalStrategy.model_validate(payload), warnings=warnings)
